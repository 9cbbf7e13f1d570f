"""
Per-message orchestration.

``MessagePipeline.handle`` runs one inbound Telegram message to
completion: identify the sender, record the turn, answer commands and
attachments, generate a reply from recent context, record it and send
it.  Any unexpected error ends in a single "please try again" message.

``PipelineDispatcher`` runs ``handle`` as a detached task so the
webhook can acknowledge immediately.  Messages from the same user are
processed one at a time, in arrival order.
"""

import asyncio
from typing import Dict, Optional, Set

from config.settings import RelayConfig, get_system_prompt, settings

from .context import assemble_context
from .generator import ResponseGenerator
from .logging import get_logger, tg_id_var
from .models import Assistant
from .store import ConversationStore
from .telegram import Attachment, InboundMessage, TelegramClient
from .utils import attachment_metadata

logger = get_logger(__name__)

START_COMMAND = "/start"

WELCOME_MESSAGE = (
    "Hello! I am the Bellavka AI assistant. "
    "Ask me anything about our products, orders and delivery."
)
ATTACHMENT_NOT_SUPPORTED_MESSAGE = (
    "Sorry, I cannot process files and images yet. Please describe your question in text."
)
UNSUPPORTED_CONTENT_MESSAGE = "Sorry, I can only understand text messages for now."
TRY_AGAIN_MESSAGE = "Sorry, something went wrong. Please try again."


def compose_instruction(assistant: Assistant) -> str:
    """Build a system instruction from a stored assistant."""
    sections = [assistant.system_prompt.strip()]
    if assistant.tov_snippet:
        sections.append(f"Tone of voice:\n{assistant.tov_snippet.strip()}")
    if assistant.handoff_rules:
        sections.append(f"Handoff rules:\n{assistant.handoff_rules.strip()}")
    return "\n\n".join(sections)


def _attachment_content(attachment: Attachment, caption: Optional[str]) -> str:
    content = f"[{attachment.kind}]"
    if caption:
        content = f"{content} {caption}"
    return content


class MessagePipeline:
    def __init__(
        self,
        store: ConversationStore,
        generator: ResponseGenerator,
        telegram: TelegramClient,
        config: RelayConfig = settings,
    ):
        self._store = store
        self._generator = generator
        self._telegram = telegram
        self._config = config

    async def handle(self, inbound: InboundMessage) -> None:
        token = tg_id_var.set(inbound.tg_id)
        try:
            await self._process(inbound)
        except Exception:
            logger.exception("pipeline_failed", chat_id=inbound.chat_id)
            await self._telegram.send_message(inbound.chat_id, TRY_AGAIN_MESSAGE)
        finally:
            tg_id_var.reset(token)

    async def _process(self, inbound: InboundMessage) -> None:
        self._store.get_or_create_user(inbound.tg_id, inbound.first_name, inbound.last_name)

        if inbound.text is not None:
            self._store.append_message(inbound.tg_id, "user", inbound.text)
            if inbound.text.strip() == START_COMMAND:
                await self._telegram.send_message(inbound.chat_id, WELCOME_MESSAGE)
                return
            await self._reply_to_text(inbound)
            return

        if inbound.attachments:
            attachment = inbound.attachments[0]
            self._store.append_message(
                inbound.tg_id,
                "user",
                _attachment_content(attachment, inbound.caption),
                attachment_metadata(attachment.kind, attachment.file_id, attachment.mime_type),
            )
            logger.info("attachment_received", kind=attachment.kind)
            if self._config.vision_enabled and attachment.kind == "photo":
                await self._reply_to_photo(inbound, attachment)
                return
            await self._telegram.send_message(inbound.chat_id, ATTACHMENT_NOT_SUPPORTED_MESSAGE)
            return

        await self._telegram.send_message(inbound.chat_id, UNSUPPORTED_CONTENT_MESSAGE)

    async def _reply_to_text(self, inbound: InboundMessage) -> None:
        context = assemble_context(self._store, inbound.tg_id, self._config.context_window)
        reply = await self._generator.generate(self.select_instruction(), context)
        await self._deliver(inbound, reply)

    async def _reply_to_photo(self, inbound: InboundMessage, attachment: Attachment) -> None:
        image = await self._telegram.download_file(attachment.file_id)
        reply = await self._generator.describe_image(
            self.select_instruction(),
            image,
            attachment.mime_type or "image/jpeg",
            inbound.caption,
        )
        await self._deliver(inbound, reply)

    async def _deliver(self, inbound: InboundMessage, reply: str) -> None:
        self._store.append_message(inbound.tg_id, "assistant", reply)
        await self._telegram.send_message(inbound.chat_id, reply)

    def select_instruction(self) -> str:
        """Return the configured assistant's instruction, or the default one."""
        assistant_id = self._config.active_assistant_id
        if assistant_id:
            assistant = self._store.get_persona(assistant_id)
            if assistant is not None and assistant.is_active and assistant.type == "ai":
                return compose_instruction(assistant)
            logger.warning("active_assistant_unusable", assistant_id=assistant_id)
        return get_system_prompt(self._config)


class PipelineDispatcher:
    """Runs pipeline passes as detached tasks, one at a time per user."""

    def __init__(self, pipeline: MessagePipeline):
        self._pipeline = pipeline
        self._locks: Dict[int, asyncio.Lock] = {}
        self._pending: Dict[int, int] = {}
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, inbound: InboundMessage) -> asyncio.Task:
        """Schedule ``inbound`` and return without waiting for it."""
        tg_id = inbound.tg_id
        self._pending[tg_id] = self._pending.get(tg_id, 0) + 1
        lock = self._locks.setdefault(tg_id, asyncio.Lock())
        task = asyncio.create_task(self._run(inbound, lock))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, inbound: InboundMessage, lock: asyncio.Lock) -> None:
        tg_id = inbound.tg_id
        try:
            async with lock:
                await self._pipeline.handle(inbound)
        except Exception:
            logger.exception("dispatch_failed", tg_id=tg_id)
        finally:
            self._pending[tg_id] -= 1
            if self._pending[tg_id] == 0:
                del self._pending[tg_id]
                del self._locks[tg_id]

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every submitted task to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
