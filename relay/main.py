"""
Main FastAPI application for the Telegram relay.

This module wires the database, the Gemini and Telegram clients and the
message pipeline together, and exposes the Telegram webhook, a health
check and the admin API.  The webhook always answers ``200 OK`` right
away; the reply is produced by a detached pipeline task.
"""

from contextlib import asynccontextmanager
from typing import Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
import httpx
from sqlalchemy.exc import SQLAlchemyError

from config.settings import settings

from .admin import router as admin_router
from .database import init_db
from .generator import GeminiClient, ResponseGenerator
from .logging import configure_logging, get_logger
from .pipeline import MessagePipeline, PipelineDispatcher
from .store import ConversationStore
from .telegram import MalformedUpdateError, TelegramClient, parse_message

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(json_format=settings.log_json, level=settings.log_level)
    try:
        init_db()
    except SQLAlchemyError as exc:
        # The store probes again and falls back to degraded mode.
        logger.error("init_db_failed", error=str(exc))

    # No timeout: generation calls can take a long time.
    http_client = httpx.AsyncClient(timeout=None)
    store = ConversationStore()
    pipeline = MessagePipeline(
        store,
        ResponseGenerator(GeminiClient(http_client)),
        TelegramClient(http_client),
    )
    app.state.store = store
    app.state.dispatcher = PipelineDispatcher(pipeline)
    logger.info("relay_started", store_available=store.available)
    try:
        yield
    finally:
        await app.state.dispatcher.drain()
        await http_client.aclose()


app = FastAPI(title="Bellavka Telegram Relay", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)

app.include_router(admin_router)


@app.get("/", response_class=PlainTextResponse)
async def root_index() -> str:
    return "Bellavka AI Assistant relay is running."


@app.get("/health")
async def health_check() -> Dict[str, str]:
    """Return a simple JSON object indicating service health."""
    return {"status": "ok"}


@app.post("/", response_class=PlainTextResponse)
@app.post("/webhook", response_class=PlainTextResponse)
async def telegram_webhook(request: Request) -> str:
    """Accept a Telegram update and hand its message to the pipeline.

    Every update is acknowledged with ``200 OK``, including malformed
    ones, so Telegram never redelivers it.
    """
    try:
        update = await request.json()
    except ValueError:
        logger.warning("webhook_invalid_json")
        return "OK"

    message = update.get("message") if isinstance(update, dict) else None
    if not isinstance(message, dict):
        logger.info("webhook_without_message")
        return "OK"

    try:
        inbound = parse_message(message)
    except MalformedUpdateError as exc:
        logger.warning("webhook_malformed_message", error=str(exc))
        return "OK"

    logger.info("webhook_message_received", tg_id=inbound.tg_id, chat_id=inbound.chat_id)
    request.app.state.dispatcher.submit(inbound)
    return "OK"
