from __future__ import annotations

import httpx

from .errors import ErrorCode, LLMRequestError
from .types import ProviderKind


def wrap_httpx_exception(
    exc: BaseException,
    *,
    provider_kind: ProviderKind,
    model: str | None,
    operation: str,
) -> LLMRequestError:
    if isinstance(exc, LLMRequestError):
        return exc

    if isinstance(exc, httpx.TimeoutException):
        code = ErrorCode.TIMEOUT
        message = f"Request timed out: {exc}" if str(exc) else "Request timed out."
    elif isinstance(exc, httpx.TransportError):
        code = ErrorCode.NETWORK_ERROR
        message = f"Network error: {exc}" if str(exc) else f"Network error: {exc.__class__.__name__}"
    else:
        code = ErrorCode.UNKNOWN
        message = str(exc) or exc.__class__.__name__

    return LLMRequestError(
        message,
        code=code,
        provider_kind=provider_kind,
        model=model,
        status_code=None,
        details={"operation": operation},
        cause=exc,
    )
