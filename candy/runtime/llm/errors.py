from __future__ import annotations

import json
import re
import threading
from enum import StrEnum
from typing import Any, Mapping

from .types import ProviderKind


class ErrorCode(StrEnum):
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    RATE_LIMIT = "rate_limit"
    CONTEXT_LIMIT = "context_limit"
    BAD_REQUEST = "bad_request"
    AUTH = "auth"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    API_ERROR = "api_error"
    UNKNOWN = "unknown"


class ProviderAdapterError(RuntimeError):
    pass


class TooManyContinuationsError(RuntimeError):
    def __init__(self, max_continuations: int) -> None:
        super().__init__(f"Too many continuations ({max_continuations}). Stopping.")
        self.max_continuations = max_continuations


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout_s: float) -> bool:
        """Sleep up to `timeout_s`; returns True early when cancelled."""
        if timeout_s <= 0:
            return self._event.is_set()
        return self._event.wait(timeout_s)


class LLMRequestError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        provider_kind: ProviderKind | None = None,
        model: str | None = None,
        status_code: int | None = None,
        retryable: bool | None = None,
        retry_after_s: float | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.provider_kind = provider_kind
        self.model = model
        self.status_code = status_code
        self.retryable = is_retryable_error_code(code) if retryable is None else retryable
        self.retry_after_s = retry_after_s
        self.details = details
        self.__cause__ = cause

    @property
    def needs_continuation(self) -> bool:
        return self.code in {ErrorCode.CONTEXT_LIMIT, ErrorCode.TIMEOUT}


def is_retryable_error_code(code: ErrorCode) -> bool:
    return code in {
        ErrorCode.RATE_LIMIT,
        ErrorCode.SERVER_ERROR,
        ErrorCode.NETWORK_ERROR,
    }


# Matched against lower-cased HTTP 400 bodies. Keep in sync with the tests.
CONTEXT_LIMIT_PHRASES: tuple[str, ...] = (
    "context length",
    "token limit",
    "maximum context",
    "resource_exhausted",
    "input too long",
    "context window",
    "exceeded",
    "too many requests",
    "rate limit exceeded",
    "quota exceeded",
    "resource exhausted",
    "service unavailable",
    "temporarily unavailable",
    "try again later",
    "please try again later",
    "please try again",
)

_TRY_AGAIN_RE = re.compile(r"try again in (\d+(?:\.\d+)?)\s*(ms|s)?", re.IGNORECASE)

_ERROR_BODY_MAX_CHARS = 1000


def matches_context_limit(body: str) -> bool:
    lowered = body.lower()
    return any(phrase in lowered for phrase in CONTEXT_LIMIT_PHRASES)


def extract_error_message(body: str) -> str:
    """Unwrap `{"error": {"message": ...}}` style envelopes; fall back to the raw (truncated) body."""
    snippet = (body or "")[:_ERROR_BODY_MAX_CHARS]
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return snippet
    if isinstance(data, list) and data and isinstance(data[0], dict):
        # Gemini wraps errors in a one-element array.
        data = data[0]
    if not isinstance(data, dict):
        return snippet
    err = data.get("error")
    if isinstance(err, dict):
        msg = err.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()[:_ERROR_BODY_MAX_CHARS]
    if isinstance(err, str) and err.strip():
        return err.strip()[:_ERROR_BODY_MAX_CHARS]
    msg = data.get("message")
    if isinstance(msg, str) and msg.strip():
        return msg.strip()[:_ERROR_BODY_MAX_CHARS]
    return snippet


def parse_retry_after(headers: Mapping[str, str] | None, body: str) -> float | None:
    if headers is not None:
        raw = headers.get("retry-after")
        if isinstance(raw, str) and raw.strip():
            try:
                return max(0.0, float(raw.strip()))
            except ValueError:
                pass
    m = _TRY_AGAIN_RE.search(body or "")
    if m is None:
        return None
    value = float(m.group(1))
    if (m.group(2) or "s").lower() == "ms":
        value = value / 1000.0
    return value + 0.5


def classify_http_error(
    status_code: int,
    body: str,
    *,
    headers: Mapping[str, str] | None = None,
    provider_kind: ProviderKind | None = None,
    model: str | None = None,
) -> LLMRequestError:
    message = extract_error_message(body)

    def _err(code: ErrorCode, text: str, *, retry_after_s: float | None = None) -> LLMRequestError:
        return LLMRequestError(
            text,
            code=code,
            provider_kind=provider_kind,
            model=model,
            status_code=status_code,
            retry_after_s=retry_after_s,
            details={"operation": "stream"},
        )

    if status_code == 429:
        return _err(
            ErrorCode.RATE_LIMIT,
            f"Rate limit exceeded: {message}",
            retry_after_s=parse_retry_after(headers, body),
        )
    if status_code == 400:
        if matches_context_limit(message) or matches_context_limit(body[:_ERROR_BODY_MAX_CHARS]):
            return _err(ErrorCode.CONTEXT_LIMIT, f"Context limit reached: {message}")
        return _err(ErrorCode.BAD_REQUEST, f"Bad request: {message}")
    if status_code == 401:
        return _err(ErrorCode.AUTH, f"API error {status_code}: {message}")
    if status_code == 403:
        return _err(ErrorCode.PERMISSION, f"API error {status_code}: {message}")
    if status_code == 404:
        return _err(ErrorCode.NOT_FOUND, f"API error {status_code}: {message}")
    if 500 <= status_code <= 599:
        return _err(ErrorCode.SERVER_ERROR, f"API error {status_code}: {message}")
    return _err(ErrorCode.API_ERROR, f"API error {status_code}: {message}")


def classify_stream_error(
    message: str,
    *,
    provider_kind: ProviderKind | None = None,
    model: str | None = None,
) -> LLMRequestError:
    """Classify an error reported inside an otherwise successful (2xx) stream."""
    lowered = (message or "").lower()
    if "overloaded" in lowered or "internal" in lowered:
        code = ErrorCode.SERVER_ERROR
    elif "rate" in lowered and "limit" in lowered:
        code = ErrorCode.RATE_LIMIT
    elif matches_context_limit(lowered):
        code = ErrorCode.CONTEXT_LIMIT
    else:
        code = ErrorCode.API_ERROR
    return LLMRequestError(
        message or "Provider reported a stream error.",
        code=code,
        provider_kind=provider_kind,
        model=model,
        details={"operation": "stream"},
    )


def deadline_error(
    timeout_s: float, *, provider_kind: ProviderKind | None, model: str | None, operation: str
) -> LLMRequestError:
    secs = int(timeout_s) if float(timeout_s).is_integer() else timeout_s
    return LLMRequestError(
        f"Request timed out ({secs}s).",
        code=ErrorCode.TIMEOUT,
        provider_kind=provider_kind,
        model=model,
        details={"operation": operation, "timeout_s": timeout_s},
    )


def cancelled_error(*, provider_kind: ProviderKind | None, model: str | None, operation: str) -> LLMRequestError:
    return LLMRequestError(
        "Request cancelled.",
        code=ErrorCode.CANCELLED,
        provider_kind=provider_kind,
        model=model,
        retryable=False,
        details={"operation": operation},
    )
