"""
Structured logging configuration using structlog.

Every entry carries a timestamp, level and logger name.  While a
message is being processed the Telegram user id is bound through a
context variable and added to each entry emitted by that task.

Usage:
    from relay.logging import configure_logging, get_logger

    configure_logging()
    logger = get_logger(__name__)
    logger.info("message_received", tg_id=42)
"""

import logging
import sys
from contextvars import ContextVar

import structlog

tg_id_var: ContextVar[int | None] = ContextVar("tg_id", default=None)


def add_message_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """Inject the current Telegram user id, when one is bound."""
    tg_id = tg_id_var.get()
    if tg_id is not None:
        event_dict.setdefault("tg_id", tg_id)
    return event_dict


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        json_format: If True, output JSON logs. If False, output console-friendly logs.
        level: Root log level name.
    """
    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_message_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # httpx logs every request URL at INFO, and Telegram URLs embed the bot token.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger for a module."""
    return structlog.get_logger(name)
