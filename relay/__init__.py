"""Telegram relay that answers customers with Gemini and logs every dialog."""
