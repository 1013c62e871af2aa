from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class StepStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


_STATUS_MARKERS: dict[StepStatus, str] = {
    StepStatus.COMPLETED: "✓",
    StepStatus.IN_PROGRESS: "▶",
    StepStatus.PENDING: "☐",
    StepStatus.SKIPPED: "☐",
}


def _parse_status(raw: Any) -> StepStatus:
    if isinstance(raw, StepStatus):
        return raw
    if isinstance(raw, str) and raw.strip():
        value = raw.strip().lower().replace("_", "-")
        try:
            return StepStatus(value)
        except ValueError as e:
            raise ValueError(f"Invalid plan status: {raw!r}") from e
    return StepStatus.PENDING


@dataclass(frozen=True, slots=True)
class TodoItem:
    id: str
    description: str
    status: StepStatus = StepStatus.PENDING
    order: int = 0

    @property
    def marker(self) -> str:
        return _STATUS_MARKERS[self.status]

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "description": self.description, "status": self.status.value, "order": self.order}

    @staticmethod
    def from_raw(raw: Any, *, position: int) -> "TodoItem":
        """
        Normalize one `create_plan` step. `position` is 1-based.

        Bare strings are accepted as descriptions; missing ids and orders default to the position.
        """
        if isinstance(raw, str):
            return TodoItem(id=str(position), description=raw.strip(), order=position)
        if not isinstance(raw, dict):
            raise ValueError(f"Plan step {position} must be an object or a string.")

        raw_id = raw.get("id")
        if isinstance(raw_id, (str, int)) and not isinstance(raw_id, bool) and str(raw_id).strip():
            item_id = str(raw_id).strip()
        else:
            item_id = str(position)

        desc = raw.get("description")
        if not isinstance(desc, str) or not desc.strip():
            desc = raw.get("step") if isinstance(raw.get("step"), str) else ""

        order = raw.get("order")
        if not isinstance(order, int) or isinstance(order, bool):
            order = position

        return TodoItem(id=item_id, description=str(desc).strip(), status=_parse_status(raw.get("status")), order=order)


def normalize_plan_steps(steps: Any) -> list[TodoItem]:
    if not isinstance(steps, list):
        raise ValueError("steps must be a list.")
    return [TodoItem.from_raw(s, position=i + 1) for i, s in enumerate(steps)]
