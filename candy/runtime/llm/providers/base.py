from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

import httpx

from ..client_httpx_errors import wrap_httpx_exception
from ..client_stream_guard import _start_cancel_closer, _start_stream_deadline_watchdog
from ..decoders import StreamDecoder
from ..errors import (
    CancellationToken,
    LLMRequestError,
    cancelled_error,
    classify_http_error,
    classify_stream_error,
    deadline_error,
)
from ..types import CanonicalRequest, ProviderKind, StreamEvent, StreamEventKind

logger = logging.getLogger(__name__)

_REDACTED = "***"


def _never() -> bool:
    return False


@dataclass(frozen=True, slots=True)
class PreparedRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    json: dict[str, Any] = field(default_factory=dict)

    def redacted_url(self) -> str:
        # Gemini passes the key as a query parameter.
        url = httpx.URL(self.url)
        if "key" not in url.params:
            return self.url
        return str(url.copy_set_param("key", _REDACTED))


class ProviderAdapter:
    """
    One vendor family: request shaping, decoder choice, and the streaming HTTP call.

    Subclasses implement `prepare_request()` and `new_decoder()`; `stream()` is shared.
    """

    kind: ProviderKind
    display_name: str = "Provider"
    requires_api_key: bool = True

    def __init__(self, *, kind: ProviderKind, base_url: str) -> None:
        self.kind = kind
        self.base_url = base_url.rstrip("/") + "/"

    def prepare_request(self, request: CanonicalRequest) -> PreparedRequest:
        raise NotImplementedError

    def new_decoder(self) -> StreamDecoder:
        raise NotImplementedError

    def stream(
        self,
        request: CanonicalRequest,
        *,
        client: httpx.Client,
        cancel: CancellationToken | None = None,
        timeout_s: float | None = None,
    ) -> Iterator[StreamEvent]:
        """
        Send `request` and yield decoded events until the vendor stream ends.

        Raises `LLMRequestError` for non-2xx responses, transport failures, in-stream vendor
        errors and cancellation. The decoder is created per call, so a retried request never
        sees fragments of an earlier attempt.

        `timeout_s` bounds each network step and also the whole request: once it has elapsed
        since the send, the open stream is closed and a `timeout` error is raised even while
        bytes are still arriving. Cancellation closes the open stream too, so a blocked read
        returns promptly.
        """
        prepared = self.prepare_request(request)
        model = request.model

        if cancel is not None and cancel.cancelled:
            raise cancelled_error(provider_kind=self.kind, model=model, operation="stream")

        logger.debug("POST %s (model=%s)", prepared.redacted_url(), model)
        decoder = self.new_decoder()
        extra: dict[str, Any] = {}
        if timeout_s is not None:
            extra["timeout"] = httpx.Timeout(float(timeout_s))
        started = time.monotonic()
        timed_out: Callable[[], bool] = _never

        def _interrupted() -> LLMRequestError | None:
            if cancel is not None and cancel.cancelled:
                return cancelled_error(provider_kind=self.kind, model=model, operation="stream")
            if timed_out() or (timeout_s is not None and time.monotonic() - started >= timeout_s):
                return deadline_error(float(timeout_s or 0), provider_kind=self.kind, model=model, operation="stream")
            return None

        try:
            with client.stream(
                prepared.method,
                prepared.url,
                headers=prepared.headers,
                json=prepared.json,
                **extra,
            ) as resp:
                if resp.status_code < 200 or resp.status_code >= 300:
                    body = resp.read().decode("utf-8", errors="replace")
                    raise classify_http_error(
                        resp.status_code,
                        body,
                        headers=resp.headers,
                        provider_kind=self.kind,
                        model=model,
                    )

                stop_closer = _start_cancel_closer(cancel, resp)
                remaining = None if timeout_s is None else timeout_s - (time.monotonic() - started)
                wd_stop, timed_out = _start_stream_deadline_watchdog(resp, timeout_s=remaining)
                try:
                    for chunk in resp.iter_bytes():
                        err = _interrupted()
                        if err is not None:
                            raise err
                        for ev in decoder.feed(chunk):
                            yield self._check(ev, model=model)

                    err = _interrupted()
                    if err is not None:
                        raise err
                    for ev in decoder.close():
                        yield self._check(ev, model=model)
                finally:
                    if wd_stop is not None:
                        wd_stop()
                    if stop_closer is not None:
                        stop_closer()
        except LLMRequestError:
            raise
        except (httpx.HTTPError, httpx.StreamError) as e:
            # A stream closed underneath a blocked read surfaces as a transport error.
            err = _interrupted()
            if err is not None:
                raise err from e
            raise wrap_httpx_exception(e, provider_kind=self.kind, model=model, operation="stream") from e

    def _check(self, ev: StreamEvent, *, model: str) -> StreamEvent:
        if ev.kind is StreamEventKind.ERROR:
            raise classify_stream_error(ev.error or "", provider_kind=self.kind, model=model)
        return ev
