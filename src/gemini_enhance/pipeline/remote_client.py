"""Single-request client for the ``:generateContent`` REST endpoint.

The client performs exactly one HTTP call per ``call()`` and reports what
happened as an ``Outcome``. It never rotates keys, sleeps or touches
conversation history; those decisions belong to the orchestrator.

All knowledge of the response shape lives in ``decode_response``.
"""

from __future__ import annotations

from collections.abc import Mapping
import json
import logging
from typing import TYPE_CHECKING, Any, Self

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from gemini_enhance.constants import (
    API_KEY_HEADER,
    DEFAULT_RETRY_AFTER_MS,
    NETWORK_TIMEOUT,
)
from gemini_enhance.core.types import (
    FatalError,
    Outcome,
    RateLimited,
    SafetyBlocked,
    Success,
    TransientError,
)
from gemini_enhance.exceptions import APIError

if TYPE_CHECKING:
    from types import TracebackType

    from gemini_enhance.core.types import Credential

logger = logging.getLogger(__name__)

SAFETY_FINISH_REASONS = frozenset(
    {"SAFETY", "BLOCKED_REASON_UNSPECIFIED", "PROHIBITED_CONTENT", "BLOCKLIST"}
)
FATAL_STATUS_CODES = frozenset({400, 401, 403, 404})


# --- Response schema ---


class _Schema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class Part(_Schema):
    text: str | None = None


class Content(_Schema):
    role: str | None = None
    parts: list[Part] = Field(default_factory=list)


class Candidate(_Schema):
    content: Content | None = None
    finish_reason: str | None = None


class PromptFeedback(_Schema):
    block_reason: str | None = None


class ErrorBody(_Schema):
    code: int | None = None
    message: str | None = None
    status: str | None = None


class GenerateContentResponse(_Schema):
    candidates: list[Candidate] = Field(default_factory=list)
    prompt_feedback: PromptFeedback | None = None
    error: ErrorBody | None = None

    def first_text(self) -> str | None:
        """``candidates[0].content.parts[0].text`` when every level exists."""
        if not self.candidates:
            return None
        content = self.candidates[0].content
        if content is None or not content.parts:
            return None
        return content.parts[0].text


# --- Decoding ---


def parse_retry_after(value: str | None) -> int:
    """Convert a ``retry-after`` seconds header into milliseconds."""
    if not value:
        return DEFAULT_RETRY_AFTER_MS
    try:
        seconds = float(value.strip())
    except ValueError:
        return DEFAULT_RETRY_AFTER_MS
    return int(seconds * 1000) if seconds >= 0 else DEFAULT_RETRY_AFTER_MS


def _explain_fatal(status_code: int, message: str) -> str:
    lowered = message.lower()
    if any(
        marker in lowered
        for marker in ("exceeds the maximum", "token limit", "context length", "too long")
    ):
        return (
            "Content exceeds the model's context limit. Use a model with a larger "
            f"context or a smaller chunk size. Original error: {message}"
        )
    if "key" in lowered and ("invalid" in lowered or "not valid" in lowered):
        return f"Invalid API key. Check the configured keys. Original error: {message}"
    return f"API error {status_code}: {message}"


def decode_response(
    status_code: int,
    headers: Mapping[str, str],
    body: bytes | str | Mapping[str, Any] | None,
) -> Outcome:
    """Classify a raw HTTP response into an ``Outcome``."""
    payload: Mapping[str, Any] | None
    if isinstance(body, Mapping):
        payload = body
    else:
        try:
            decoded = json.loads(body) if body else None
        except ValueError:
            decoded = None
        payload = decoded if isinstance(decoded, Mapping) else None

    parsed: GenerateContentResponse | None = None
    if payload is not None:
        try:
            parsed = GenerateContentResponse.model_validate(payload)
        except ValidationError as e:
            logger.debug("Response failed schema validation: %s", e)

    error = parsed.error if parsed is not None else None
    message = (error.message if error and error.message else None) or (
        f"HTTP {status_code}"
    )

    if status_code == 429 or (error is not None and error.status == "RESOURCE_EXHAUSTED"):
        lowered = {k.lower(): v for k, v in headers.items()}
        return RateLimited(
            retry_after_ms=parse_retry_after(lowered.get("retry-after")),
            message=message,
        )
    if status_code in FATAL_STATUS_CODES:
        return FatalError(_explain_fatal(status_code, message))
    if not 200 <= status_code < 300:
        return TransientError(f"API error {status_code}: {message}")

    if parsed is None:
        return TransientError("Malformed or empty response body")
    if parsed.prompt_feedback and parsed.prompt_feedback.block_reason:
        return SafetyBlocked(
            f"Prompt blocked by safety filters ({parsed.prompt_feedback.block_reason})"
        )
    if not parsed.candidates:
        return TransientError("Response contained no candidates")
    finish_reason = parsed.candidates[0].finish_reason
    if finish_reason in SAFETY_FINISH_REASONS:
        return SafetyBlocked(f"Content blocked by safety filters ({finish_reason})")

    text = parsed.first_text()
    if not text or not text.strip():
        return TransientError("Response contained no generated text")
    return Success(text=text, raw_response=dict(payload or {}))


# --- Client ---


class RemoteClient:
    """Issues one generation request with a given credential.

    Owns an ``httpx.AsyncClient`` unless one is injected; an injected client
    is left open on ``aclose()``.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        timeout_seconds: float = NETWORK_TIMEOUT,
    ) -> None:
        """Initialize with an optional shared HTTP client."""
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._timeout = timeout_seconds
        self._closed = False

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and not self._closed:
            await self._http.aclose()
        self._closed = True

    async def call(
        self,
        endpoint: str,
        credential: Credential,
        payload: Mapping[str, Any],
    ) -> Outcome:
        """POST ``payload`` to ``endpoint`` and classify the response."""
        if self._closed:
            raise APIError("RemoteClient is closed")
        try:
            response = await self._http.post(
                endpoint,
                json=dict(payload),
                headers={API_KEY_HEADER: credential.value},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning("Request with key %d timed out", credential.position + 1)
            return TransientError(f"Request timed out: {e}")
        except httpx.RequestError as e:
            logger.warning(
                "Request with key %d failed: %s", credential.position + 1, e
            )
            return TransientError(f"Request failed: {e}")

        outcome = decode_response(
            response.status_code, response.headers, response.content
        )
        logger.debug(
            "Key %d -> HTTP %d -> %s",
            credential.position + 1,
            response.status_code,
            type(outcome).__name__,
        )
        return outcome
