"""Test doubles and canned payloads shared by the test modules."""


class FakeTelegram:
    """Records outgoing messages instead of calling the Bot API."""

    def __init__(self, file_bytes: bytes = b"\x89PNG fake"):
        self.sent = []
        self.downloads = []
        self._file_bytes = file_bytes

    async def send_message(self, chat_id, text, parse_mode=None):
        self.sent.append((chat_id, text))
        return True

    async def download_file(self, file_id):
        self.downloads.append(file_id)
        return self._file_bytes


def gemini_reply(text: str) -> dict:
    """A minimal successful generateContent response body."""
    return {
        "candidates": [
            {"content": {"role": "model", "parts": [{"text": text}]}, "finishReason": "STOP"}
        ]
    }


def text_update(tg_id: int, text: str, first_name: str = "Anna", last_name=None) -> dict:
    """A Telegram ``message`` object carrying text."""
    sender = {"id": tg_id, "is_bot": False, "first_name": first_name}
    if last_name:
        sender["last_name"] = last_name
    return {
        "message_id": 1,
        "from": sender,
        "chat": {"id": tg_id, "type": "private"},
        "date": 1700000000,
        "text": text,
    }
