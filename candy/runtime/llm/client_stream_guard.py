from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from .errors import CancellationToken

logger = logging.getLogger(__name__)

_CANCEL_POLL_S = 0.05


def _maybe_close_stream(stream: Any) -> None:
    close = getattr(stream, "close", None)
    if not callable(close):
        return
    try:
        close()
    except Exception:
        logger.debug("Closing stream failed", exc_info=True)


def _start_cancel_closer(cancel: CancellationToken | None, stream: Any) -> Callable[[], None] | None:
    """
    Close `stream` from a helper thread as soon as `cancel` fires, so a read blocked on the
    network returns instead of waiting for the next byte. Returns a stop function.
    """
    if cancel is None:
        return None
    stopped = threading.Event()

    def _watch() -> None:
        while not stopped.is_set():
            if cancel.wait(_CANCEL_POLL_S):
                if not stopped.is_set():
                    _maybe_close_stream(stream)
                return

    threading.Thread(target=_watch, name="candy-cancel-closer", daemon=True).start()
    return stopped.set


def _start_stream_deadline_watchdog(
    stream: Any, *, timeout_s: float | None
) -> tuple[Callable[[], None] | None, Callable[[], bool]]:
    """
    Close `stream` once `timeout_s` has elapsed, however steadily bytes arrive.

    Returns `(stop, timed_out)`; `timed_out()` tells a closed stream apart from a normal end.
    """
    fired = threading.Event()
    if timeout_s is None:
        return None, fired.is_set
    stopped = threading.Event()

    def _watch() -> None:
        if stopped.wait(max(0.0, timeout_s)):
            return
        fired.set()
        _maybe_close_stream(stream)

    threading.Thread(target=_watch, name="candy-stream-deadline", daemon=True).start()
    return stopped.set, fired.is_set
