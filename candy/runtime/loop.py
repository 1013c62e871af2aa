from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

logger = logging.getLogger(__name__)


class LoopStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    LIMIT_REACHED = "limit_reached"
    # Handed over to a continuation session after a context/timeout error.
    SUSPENDED = "suspended"
    FAILED = "failed"


_ALLOWED_TRANSITIONS: dict[LoopStatus, frozenset[LoopStatus]] = {
    LoopStatus.IDLE: frozenset({LoopStatus.RUNNING, LoopStatus.ABORTED}),
    LoopStatus.RUNNING: frozenset(
        {LoopStatus.COMPLETED, LoopStatus.ABORTED, LoopStatus.LIMIT_REACHED, LoopStatus.SUSPENDED, LoopStatus.FAILED}
    ),
    LoopStatus.COMPLETED: frozenset(),
    LoopStatus.ABORTED: frozenset(),
    LoopStatus.LIMIT_REACHED: frozenset(),
    LoopStatus.SUSPENDED: frozenset(),
    LoopStatus.FAILED: frozenset(),
}


@dataclass(slots=True)
class LoopState:
    max_iterations: int | None
    iteration: int = 0
    task_completed: bool = False
    status: LoopStatus = LoopStatus.IDLE

    @property
    def is_active(self) -> bool:
        return self.status is LoopStatus.RUNNING

    @property
    def is_aborted(self) -> bool:
        return self.status is LoopStatus.ABORTED

    @property
    def limit_hit(self) -> bool:
        return self.max_iterations is not None and self.iteration >= self.max_iterations


class LoopController:
    """
    Per-run state machine: iteration count, tier ceiling, completion flag.

    It never raises. Transitions that the table does not allow (for example a second
    terminal transition after cancellation) are ignored and reported as `False`.
    """

    def __init__(self, *, max_iterations: int | None) -> None:
        self.state = LoopState(max_iterations=max_iterations)

    @property
    def status(self) -> LoopStatus:
        return self.state.status

    @property
    def iteration(self) -> int:
        return self.state.iteration

    @property
    def task_completed(self) -> bool:
        return self.state.task_completed

    def start(self) -> bool:
        return self._transition(LoopStatus.RUNNING)

    def should_continue(self) -> bool:
        st = self.state
        return st.is_active and not st.task_completed and not st.limit_hit

    def begin_iteration(self) -> bool:
        """Count one outgoing model request. Returns False when no further request is allowed."""
        if not self.should_continue():
            return False
        self.state.iteration += 1
        logger.info(
            "Iteration %d/%s",
            self.state.iteration,
            "unbounded" if self.state.max_iterations is None else self.state.max_iterations,
        )
        return True

    def mark_task_completed(self) -> None:
        self.state.task_completed = True

    def end_turn(self, *, executed_tool_calls: int) -> LoopStatus:
        """
        Decide what follows a finished turn.

        Completion wins over the ceiling; a turn without tool calls ends the run.
        """
        if not self.state.is_active:
            return self.state.status
        if self.state.task_completed or executed_tool_calls == 0:
            self._transition(LoopStatus.COMPLETED)
        elif self.state.limit_hit:
            self._transition(LoopStatus.LIMIT_REACHED)
        return self.state.status

    def abort(self) -> bool:
        return self._transition(LoopStatus.ABORTED)

    def suspend(self) -> bool:
        return self._transition(LoopStatus.SUSPENDED)

    def fail(self) -> bool:
        return self._transition(LoopStatus.FAILED)

    def _transition(self, after: LoopStatus) -> bool:
        before = self.state.status
        if after not in _ALLOWED_TRANSITIONS.get(before, frozenset()):
            logger.debug("Ignoring loop transition %s -> %s", before.value, after.value)
            return False
        self.state.status = after
        return True
