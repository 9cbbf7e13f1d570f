"""Configuration package for the Telegram relay.

Import ``config.settings`` for the shared settings object and the
system prompt helpers.
"""
