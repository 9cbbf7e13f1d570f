"""
Telegram Bot API transport.

``parse_message`` normalises the ``message`` object of a webhook update
into an :class:`InboundMessage`.  ``TelegramClient`` sends replies and
downloads files; send failures are logged and dropped.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from config.settings import RelayConfig, settings

from .logging import get_logger

logger = get_logger(__name__)

# Message fields that carry a file, in the order they are checked.
ATTACHMENT_FIELDS = (
    "photo",
    "document",
    "voice",
    "audio",
    "video",
    "video_note",
    "animation",
    "sticker",
)


@dataclass
class Attachment:
    kind: str
    file_id: str
    mime_type: Optional[str] = None


@dataclass
class InboundMessage:
    tg_id: int
    chat_id: int
    first_name: str
    last_name: Optional[str] = None
    text: Optional[str] = None
    caption: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)


class MalformedUpdateError(ValueError):
    """The update's message lacks a usable sender or chat."""


def _attachment(kind: str, value: Any) -> Optional[Attachment]:
    if kind == "photo":
        # A list of sizes, smallest first.
        if not isinstance(value, list) or not value:
            return None
        value = value[-1]
        mime_type = "image/jpeg"
    else:
        mime_type = value.get("mime_type") if isinstance(value, dict) else None
    if not isinstance(value, dict) or not value.get("file_id"):
        return None
    return Attachment(kind=kind, file_id=value["file_id"], mime_type=mime_type)


def parse_message(message: Dict[str, Any]) -> InboundMessage:
    """Build an :class:`InboundMessage` from a Telegram ``message`` object."""
    sender = message.get("from")
    chat = message.get("chat")
    if not isinstance(sender, dict) or not isinstance(chat, dict):
        raise MalformedUpdateError("message has no sender or chat")
    try:
        tg_id = int(sender["id"])
        chat_id = int(chat["id"])
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedUpdateError("message has no usable sender or chat id") from exc

    attachments = []
    for kind in ATTACHMENT_FIELDS:
        if kind in message:
            attachment = _attachment(kind, message[kind])
            if attachment is not None:
                attachments.append(attachment)

    text = message.get("text")
    return InboundMessage(
        tg_id=tg_id,
        chat_id=chat_id,
        first_name=sender.get("first_name") or "",
        last_name=sender.get("last_name"),
        text=text if isinstance(text, str) else None,
        caption=message.get("caption"),
        attachments=attachments,
    )


class TelegramClient:
    """Outbound calls to the Bot API."""

    def __init__(self, client: httpx.AsyncClient, config: RelayConfig = settings):
        self._client = client
        self._config = config

    def _method_url(self, method: str) -> str:
        base = self._config.telegram_api_base.rstrip("/")
        return f"{base}/bot{self._config.telegram_bot_token}/{method}"

    async def send_message(
        self, chat_id: int, text: str, parse_mode: Optional[str] = None
    ) -> bool:
        """Send ``text`` to ``chat_id``.  Returns False instead of raising on failure."""
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        try:
            resp = await self._client.post(self._method_url("sendMessage"), json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "telegram_send_failed",
                chat_id=chat_id,
                status_code=exc.response.status_code,
                error=exc.response.text,
            )
            return False
        except httpx.HTTPError as exc:
            logger.error("telegram_send_failed", chat_id=chat_id, error=str(exc))
            return False
        logger.info("telegram_message_sent", chat_id=chat_id)
        return True

    async def download_file(self, file_id: str) -> bytes:
        """Fetch a file's bytes through ``getFile``.

        Raises ``httpx.HTTPError`` on transport failures and ``ValueError``
        when Telegram does not return a file path.
        """
        resp = await self._client.get(self._method_url("getFile"), params={"file_id": file_id})
        resp.raise_for_status()
        file_path = (resp.json().get("result") or {}).get("file_path")
        if not file_path:
            raise ValueError(f"no file_path for file_id {file_id}")
        base = self._config.telegram_api_base.rstrip("/")
        file_resp = await self._client.get(
            f"{base}/file/bot{self._config.telegram_bot_token}/{file_path}"
        )
        file_resp.raise_for_status()
        return file_resp.content
