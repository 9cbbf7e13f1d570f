"""Shared pytest fixtures.

The environment is set before any ``relay`` import so the global
settings point at an in-memory SQLite database and fake credentials.
No test talks to Telegram or Gemini; HTTP calls are mocked with respx
or replaced by the fakes below.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GEMINI_API_KEY"] = "test-gemini-key"
os.environ["TELEGRAM_BOT_TOKEN"] = "123456:test-token"
os.environ["LOG_JSON"] = "false"
os.environ.pop("SYSTEM_PROMPT", None)
os.environ.pop("ACTIVE_ASSISTANT_ID", None)
os.environ.pop("VISION_ENABLED", None)

from dataclasses import replace  # noqa: E402
from pathlib import Path  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402

from config.settings import RelayConfig, settings  # noqa: E402
from relay import models  # noqa: E402, F401
from relay.database import Base, engine  # noqa: E402
from relay.store import ConversationStore  # noqa: E402

from helpers import FakeTelegram  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    """Recreate every table so each test starts empty."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def config() -> RelayConfig:
    return replace(
        settings,
        gemini_api_key="test-gemini-key",
        telegram_bot_token="123456:test-token",
        prompt_path=Path("/nonexistent/prompt.txt"),
        system_prompt_override=None,
        active_assistant_id=None,
        vision_enabled=False,
        context_window=6,
    )


@pytest.fixture
def gemini_url(config) -> str:
    return f"{config.gemini_base_url}/{config.gemini_model}:generateContent"


@pytest.fixture
def store() -> ConversationStore:
    return ConversationStore()


@pytest.fixture
def httpx_client():
    """Create an httpx AsyncClient for testing."""
    return httpx.AsyncClient()


@pytest.fixture
def fake_telegram() -> FakeTelegram:
    return FakeTelegram()
