from __future__ import annotations

import threading
import time

from ..llm.errors import CancellationToken


class PendingApprovalSet:
    """
    File changes awaiting a human accept/reject.

    The approval collaborator calls `add()` / `resolve()`; the tool executor only reads
    (`has_pending()`, `wait_until_clear()`).
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._pending: set[str] = set()

    def add(self, approval_id: str) -> None:
        with self._cond:
            self._pending.add(approval_id)

    def resolve(self, approval_id: str) -> None:
        with self._cond:
            self._pending.discard(approval_id)
            if not self._pending:
                self._cond.notify_all()

    def clear(self) -> None:
        with self._cond:
            self._pending.clear()
            self._cond.notify_all()

    def has_pending(self) -> bool:
        with self._cond:
            return bool(self._pending)

    def pending_ids(self) -> list[str]:
        with self._cond:
            return sorted(self._pending)

    def wait_until_clear(
        self,
        timeout_s: float,
        *,
        cancel: CancellationToken | None = None,
        poll_s: float = 1.0,
    ) -> bool:
        """
        Block until nothing is pending. Returns True when clear, False on timeout or cancel.

        `poll_s` bounds how long a cancellation can go unnoticed.
        """
        deadline = time.monotonic() + max(0.0, timeout_s)
        with self._cond:
            while self._pending:
                if cancel is not None and cancel.cancelled:
                    return False
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(min(poll_s, remaining))
            return True
