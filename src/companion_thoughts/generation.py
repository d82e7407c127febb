"""Gemini text-generation client with credential rotation.

Each ``generate`` call tries every credential in the pool at most once,
starting at the pool's cursor. Any failure (HTTP error, malformed body, empty
text, transport exception) advances the cursor and, unless it was the last
credential, waits a short delay before the next attempt. The cursor lives in
the pool, so rotation carries over between calls and between callers that
share the client.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Sequence

import httpx

from .clock import SystemClock
from .models import GenerationResult

if TYPE_CHECKING:
    from .protocols import ClockProtocol

logger = logging.getLogger("companion_thoughts.generation")

DEFAULT_ENDPOINT = (
    "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-flash-latest:generateContent"
)

GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 0.9,
    "topK": 50,
    "topP": 0.95,
    "maxOutputTokens": 80,
    "candidateCount": 1,
}

SAFETY_SETTINGS: list[dict[str, str]] = [
    {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]


class GenerationFailure(Exception):
    """A single generation attempt produced no usable text."""


class CredentialPool:
    """Ordered, interchangeable API keys with a wrapping rotation cursor."""

    def __init__(self, credentials: Sequence[str]):
        self._credentials = [c.strip() for c in credentials if c and c.strip()]
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._credentials)

    @property
    def cursor(self) -> int:
        return self._cursor

    def current(self) -> str:
        if not self._credentials:
            raise LookupError("credential pool is empty")
        return self._credentials[self._cursor]

    def advance(self) -> int:
        """Move to the next credential (wrapping) and return the new cursor."""
        if self._credentials:
            self._cursor = (self._cursor + 1) % len(self._credentials)
        return self._cursor


class GeminiClient:
    """Calls ``generateContent`` and rotates through the credential pool on failure."""

    def __init__(
        self,
        pool: CredentialPool,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 20.0,
        retry_delay_seconds: float = 0.2,
        clock: ClockProtocol | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.pool = pool
        self.endpoint = endpoint
        self.retry_delay_seconds = retry_delay_seconds
        self.clock = clock or SystemClock()
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def generate(self, system_instruction: str, user_query: str) -> GenerationResult:
        total = len(self.pool)
        if total == 0:
            logger.warning("No generation credentials configured")
            return GenerationResult(success=False, error="no credentials configured")

        prompt = f"{system_instruction}\n\n{user_query}"
        last_error = ""
        for attempt in range(total):
            index = self.pool.cursor
            try:
                text = await self._request(self.pool.current(), prompt)
                return GenerationResult(success=True, text=text, attempts=attempt + 1, credential_index=index)
            except Exception as exc:
                last_error = str(exc) or exc.__class__.__name__
                logger.warning("Generation failed with credential %d/%d: %s", index + 1, total, last_error)
                self.pool.advance()
                if attempt < total - 1:
                    await self.clock.sleep(self.retry_delay_seconds)

        logger.warning("All %d generation credentials failed", total)
        return GenerationResult(
            success=False,
            error=f"all {total} credentials failed; last error: {last_error}",
            attempts=total,
        )

    async def _request(self, api_key: str, prompt: str) -> str:
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": GENERATION_CONFIG,
            "safetySettings": SAFETY_SETTINGS,
        }
        response = await self._client.post(
            self.endpoint,
            json=body,
            headers={"Content-Type": "application/json", "x-goog-api-key": api_key},
        )
        if response.is_error:
            raise GenerationFailure(f"HTTP {response.status_code}: {response.reason_phrase}")
        return self._extract_text(response.json())

    @staticmethod
    def _extract_text(data: Any) -> str:
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerationFailure("no valid candidate in response") from exc
        if not isinstance(text, str) or not text.strip():
            raise GenerationFailure("empty text in response")
        return text.strip()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
