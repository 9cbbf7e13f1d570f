"""
Configuration and prompt loading for the Telegram relay.

This module centralises every configurable setting (database URL,
Telegram and Gemini credentials, sampling parameters, context window)
and exposes a helper that assembles the default system instruction
from an optional prompt file and an environment override.

Environment variables override the defaults.  For example::

    export TELEGRAM_BOT_TOKEN="123456:ABC..."
    export GEMINI_API_KEY="..."
    export DATABASE_URL="postgresql+psycopg://relay@localhost/relay"
    export CONTEXT_WINDOW=8

Values are read once at import time.  Tests and scripts that need
different values construct their own :class:`RelayConfig` and pass it
to the services explicitly.
"""

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class RelayConfig:
    """Container for all configurable parameters."""

    # SQLAlchemy connection string.  SQLite is the default so the relay
    # runs without any external service.
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./relay.db")

    # Telegram Bot API.  ``telegram_api_base`` is only changed for local
    # Bot API servers.
    telegram_bot_token: Optional[str] = os.getenv("TELEGRAM_BOT_TOKEN")
    telegram_api_base: str = os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org")

    # Gemini generateContent endpoint and sampling parameters.  The
    # vision temperature is lower so image descriptions stay grounded.
    gemini_api_key: Optional[str] = os.getenv("GEMINI_API_KEY")
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-exp")
    gemini_base_url: str = os.getenv(
        "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/models"
    )
    temperature: float = float(os.getenv("GEMINI_TEMPERATURE", "0.7"))
    vision_temperature: float = float(os.getenv("GEMINI_VISION_TEMPERATURE", "0.4"))
    max_output_tokens: int = int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", "1024"))

    # Number of most recent dialog rows forwarded to the model.
    context_window: int = int(os.getenv("CONTEXT_WINDOW", "6"))

    # Optional id of a stored assistant whose prompt replaces the
    # default instruction.  Unset means the default is always used.
    active_assistant_id: Optional[str] = os.getenv("ACTIVE_ASSISTANT_ID") or None

    # When enabled, photos are described by the model instead of being
    # answered with the "not supported yet" message.
    vision_enabled: bool = _env_bool("VISION_ENABLED", False)

    # Prompt file with the default instruction.  Missing files are
    # ignored.
    prompt_path: Path = Path(
        os.getenv("PROMPT_PATH", (Path(__file__).parent / "prompt.txt").as_posix())
    )

    # Used when neither the prompt file nor SYSTEM_PROMPT provide text.
    default_system_prompt: str = (
        "You are the Bellavka AI assistant. Be polite, friendly and "
        "professional. Answer questions about Bellavka products and services. "
        "If you do not know the answer, politely ask the customer to clarify "
        "the question or offer to contact a manager. Be brief and helpful."
    )

    # Appended to the prompt file contents when set.
    system_prompt_override: Optional[str] = os.getenv("SYSTEM_PROMPT")

    log_json: bool = _env_bool("LOG_JSON", True)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


# Single shared settings object.  Other modules import ``settings``
# instead of instantiating RelayConfig themselves.
settings = RelayConfig()


def _read_file(path: Path) -> Optional[str]:
    """Return the stripped contents of a text file, or None if unreadable."""
    try:
        text = path.read_text(encoding="utf-8")
        return text.strip()
    except OSError:
        return None


def get_system_prompt(config: Optional[RelayConfig] = None) -> str:
    """Assemble the default system instruction.

    Concatenates the prompt file and the ``SYSTEM_PROMPT`` override.
    If both are missing, ``default_system_prompt`` is returned so the
    model always receives an instruction.
    """
    config = config or settings
    parts = []
    from_file = _read_file(Path(config.prompt_path))
    if from_file:
        parts.append(from_file)
    if config.system_prompt_override:
        parts.append(config.system_prompt_override)
    if parts:
        return "\n\n".join(parts)
    return config.default_system_prompt
