"""
Gemini text generation.

``GeminiClient`` talks to the REST ``generateContent`` endpoint and
raises :class:`GenerationError` with a typed :class:`FailureKind` when
the call does not produce text.  ``ResponseGenerator`` sits on top and
never raises: every failure becomes a user-facing sentence, so the
pipeline always has something to send.

Request body::

    {
      "contents": [{"role": "user", "parts": [{"text": "..."}]}, ...],
      "systemInstruction": {"parts": [{"text": "<instruction>"}]},
      "generationConfig": {"temperature": 0.7, "maxOutputTokens": 1024}
    }

Auth goes in the ``x-goog-api-key`` header, never in the query string.
"""

import base64
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import httpx

from config.settings import RelayConfig, settings

from .context import Turn
from .logging import get_logger

logger = get_logger(__name__)

GREETING = "Hello! I am the Bellavka assistant. How can I help you?"
EMPTY_REPLY = "Sorry, I could not generate a reply."
CONFIGURATION_ERROR_REPLY = "Error: the AI assistant is not configured correctly (invalid Gemini API key)."
RATE_LIMITED_REPLY = "The AI service quota has been exceeded. Please try again later."
TRANSIENT_FAILURE_REPLY = (
    "Sorry, something went wrong while contacting the AI assistant. "
    "Please try again later."
)


class FailureKind(str, Enum):
    CONFIGURATION = "configuration"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"


FAILURE_REPLIES = {
    FailureKind.CONFIGURATION: CONFIGURATION_ERROR_REPLY,
    FailureKind.RATE_LIMITED: RATE_LIMITED_REPLY,
    FailureKind.TRANSIENT: TRANSIENT_FAILURE_REPLY,
}


class GenerationError(Exception):
    """A Gemini call that produced no text.

    Attributes:
        kind: Why the call failed.
        status_code: HTTP status, when a response was received.
    """

    def __init__(self, kind: FailureKind, message: str, status_code: Optional[int] = None):
        self.kind = kind
        self.status_code = status_code
        super().__init__(message)


def classify_failure(status_code: int, body: Any) -> FailureKind:
    """Map a Gemini error response to a failure kind.

    Gemini reports an invalid key as 400 ``INVALID_ARGUMENT`` with an
    ``API_KEY_INVALID`` reason, so the error details are checked as
    well as the status code.
    """
    error = body.get("error", {}) if isinstance(body, dict) else {}
    status = error.get("status") if isinstance(error, dict) else None
    reasons = set()
    if isinstance(error, dict):
        for detail in error.get("details") or []:
            if isinstance(detail, dict) and detail.get("reason"):
                reasons.add(detail["reason"])

    if status_code in (401, 403) or "API_KEY_INVALID" in reasons or status in (
        "UNAUTHENTICATED",
        "PERMISSION_DENIED",
    ):
        return FailureKind.CONFIGURATION
    if status_code == 429 or status == "RESOURCE_EXHAUSTED":
        return FailureKind.RATE_LIMITED
    return FailureKind.TRANSIENT


class GeminiClient:
    """Minimal async client for ``models/{model}:generateContent``."""

    def __init__(self, client: httpx.AsyncClient, config: RelayConfig = settings):
        self._client = client
        self._config = config

    async def generate_content(
        self,
        instruction: str,
        turns: Sequence[Turn],
        *,
        temperature: float,
        max_output_tokens: int,
    ) -> str:
        contents = [
            {"role": turn.role, "parts": [{"text": turn.content}]} for turn in turns
        ]
        return await self._post(instruction, contents, temperature, max_output_tokens)

    async def generate_from_image(
        self,
        instruction: str,
        image_bytes: bytes,
        mime_type: str,
        prompt: str,
        *,
        temperature: float,
        max_output_tokens: int,
    ) -> str:
        parts: List[Dict[str, Any]] = [
            {
                "inlineData": {
                    "mimeType": mime_type,
                    "data": base64.b64encode(image_bytes).decode("ascii"),
                }
            },
            {"text": prompt},
        ]
        contents = [{"role": "user", "parts": parts}]
        return await self._post(instruction, contents, temperature, max_output_tokens)

    async def _post(
        self,
        instruction: str,
        contents: List[Dict[str, Any]],
        temperature: float,
        max_output_tokens: int,
    ) -> str:
        api_key = self._config.gemini_api_key
        if not api_key:
            raise GenerationError(FailureKind.CONFIGURATION, "GEMINI_API_KEY is not set")

        url = f"{self._config.gemini_base_url.rstrip('/')}/{self._config.gemini_model}:generateContent"
        body = {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": instruction}]},
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
            },
        }
        try:
            resp = await self._client.post(
                url, headers={"x-goog-api-key": api_key}, json=body
            )
        except httpx.HTTPError as exc:
            raise GenerationError(FailureKind.TRANSIENT, f"Gemini request failed: {exc}") from exc

        try:
            data = resp.json()
        except ValueError:
            data = None

        if resp.status_code >= 400:
            kind = classify_failure(resp.status_code, data)
            raise GenerationError(
                kind, f"Gemini API error {resp.status_code}", status_code=resp.status_code
            )
        if not isinstance(data, dict):
            raise GenerationError(FailureKind.TRANSIENT, "Gemini returned a non-JSON body")
        return _extract_text(data)


def _extract_text(data: Dict[str, Any]) -> str:
    """Concatenate ``candidates[0].content.parts[].text``."""
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


class ResponseGenerator:
    """Fail-soft wrapper that always returns text for the user."""

    def __init__(self, client: GeminiClient, config: RelayConfig = settings):
        self._client = client
        self._config = config

    async def generate(self, instruction: str, context: Sequence[Turn]) -> str:
        """Generate a reply to ``context``.

        An empty context is answered with :data:`GREETING` without calling
        the API, since Gemini rejects requests with no contents.
        """
        if not context:
            return GREETING
        logger.info("generation_started", turns=len(context))
        try:
            text = await self._client.generate_content(
                instruction,
                context,
                temperature=self._config.temperature,
                max_output_tokens=self._config.max_output_tokens,
            )
        except GenerationError as exc:
            return self._failure_reply(exc)
        logger.info("generation_finished")
        return text.strip() or EMPTY_REPLY

    async def describe_image(
        self,
        instruction: str,
        image_bytes: bytes,
        mime_type: str,
        caption: Optional[str] = None,
    ) -> str:
        """Answer a photo, using the caption as the question when present."""
        prompt = caption or "Describe what is in this image and how you can help."
        try:
            text = await self._client.generate_from_image(
                instruction,
                image_bytes,
                mime_type,
                prompt,
                temperature=self._config.vision_temperature,
                max_output_tokens=self._config.max_output_tokens,
            )
        except GenerationError as exc:
            return self._failure_reply(exc)
        return text.strip() or EMPTY_REPLY

    @staticmethod
    def _failure_reply(exc: GenerationError) -> str:
        logger.error(
            "generation_failed",
            kind=exc.kind.value,
            status_code=exc.status_code,
            error=str(exc),
        )
        return FAILURE_REPLIES[exc.kind]
