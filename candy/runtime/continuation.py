from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .llm.errors import TooManyContinuationsError
from .llm.types import CanonicalMessage, CanonicalMessageRole
from .plan import TodoItem

logger = logging.getLogger(__name__)

CONTINUATION_ACK = "I'll continue from where we left off. Let me check the current state and proceed."
DEFAULT_RECENT_SUMMARY = "Working on task..."


@dataclass(frozen=True, slots=True)
class LastWrittenFile:
    path: str
    content: str


@dataclass(slots=True)
class RunProgress:
    """
    Agent progress owned by one orchestrator run and threaded through the tool executor.

    Everything a continuation session needs to resume lives here.
    """

    original_goal: str
    todo_list: list[TodoItem] = field(default_factory=list)
    files_created: list[str] = field(default_factory=list)
    last_written: LastWrittenFile | None = None
    # Chunked write_file calls (finalize=false) accumulate per path until finalized.
    pending_chunks: dict[str, list[str]] = field(default_factory=dict)
    recent_summary: str = DEFAULT_RECENT_SUMMARY

    def record_file(self, path: str, content: str) -> None:
        if path not in self.files_created:
            self.files_created.append(path)
        self.last_written = LastWrittenFile(path=path, content=content)

    def replace_plan(self, items: list[TodoItem]) -> None:
        self.todo_list = list(items)


@dataclass(frozen=True, slots=True)
class ContinuationSnapshot:
    original_goal: str
    todo_list: tuple[TodoItem, ...]
    files_created: tuple[str, ...]
    last_written: LastWrittenFile | None
    recent_summary: str

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "original_goal": self.original_goal,
            "todo_list": [t.to_dict() for t in self.todo_list],
            "files_created": list(self.files_created),
            "recent_summary": self.recent_summary,
        }
        if self.last_written is not None:
            out["last_written"] = {"path": self.last_written.path, "content": self.last_written.content}
        return out


class ContinuationManager:
    """
    Checkpoint-and-resume after context-limit or timeout errors.

    A snapshot may only be built while `continuation_count < max_continuations`; past the
    bound `build_snapshot()` raises `TooManyContinuationsError`.
    """

    def __init__(self, *, max_continuations: int, last_file_preview_chars: int = 5000, max_listed_files: int = 10) -> None:
        self.max_continuations = max_continuations
        self.last_file_preview_chars = last_file_preview_chars
        self.max_listed_files = max_listed_files

    def can_continue(self, continuation_count: int) -> bool:
        return continuation_count < self.max_continuations

    def build_snapshot(self, progress: RunProgress, *, continuation_count: int) -> ContinuationSnapshot:
        if not self.can_continue(continuation_count):
            raise TooManyContinuationsError(self.max_continuations)
        last = progress.last_written
        if last is not None:
            last = LastWrittenFile(path=last.path, content=last.content[: self.last_file_preview_chars])
        snapshot = ContinuationSnapshot(
            original_goal=progress.original_goal,
            todo_list=tuple(progress.todo_list),
            files_created=tuple(progress.files_created),
            last_written=last,
            recent_summary=progress.recent_summary or DEFAULT_RECENT_SUMMARY,
        )
        logger.info(
            "Continuation %d/%d: %d steps, %d files",
            continuation_count + 1,
            self.max_continuations,
            len(snapshot.todo_list),
            len(snapshot.files_created),
        )
        return snapshot

    def restore(self, snapshot: ContinuationSnapshot) -> RunProgress:
        return RunProgress(
            original_goal=snapshot.original_goal,
            todo_list=list(snapshot.todo_list),
            files_created=list(snapshot.files_created),
            last_written=snapshot.last_written,
            recent_summary=snapshot.recent_summary,
        )

    def build_seed_prompt(self, snapshot: ContinuationSnapshot, *, project: str | None = None) -> str:
        if snapshot.todo_list:
            todo = "\n".join(f"  {t.marker} [{t.id}] ({t.status.value}) {t.description}" for t in snapshot.todo_list)
        else:
            todo = "No tasks yet"

        files = list(snapshot.files_created)
        if files:
            listed = files[: self.max_listed_files]
            file_lines = "\n".join(f"  • {f}" for f in listed)
            if len(files) > len(listed):
                file_lines += f"\n  ... and {len(files) - len(listed)} more"
        else:
            file_lines = "None"

        last_section = ""
        if snapshot.last_written is not None:
            last_section = (
                "\nLast file being written (may be incomplete - continue if needed):\n"
                f"  Path: {snapshot.last_written.path}\n"
                f"  Content:\n```\n{snapshot.last_written.content}\n```\n"
            )

        project_section = f"\n\nProject context (compressed):\nActive Project: {project}\n" if project else ""

        return (
            "CONTINUATION SESSION - Previous session hit context limit or timeout.\n\n"
            f"Original task: {snapshot.original_goal}\n\n"
            "Current status:\n"
            "To-Do List (fully preserved):\n"
            f"{todo}\n\n"
            f"Files created: {len(files)}\n"
            "Previous files (paths only):\n"
            f"{file_lines}{last_section}\n\n"
            f"Recent progress: {snapshot.recent_summary}\n"
            f"{project_section}\n"
            "IMPORTANT: Continue from where you left off. Check the to-do list, verify files created, "
            "and continue working until task_complete is called. Do NOT restart the task."
        )

    def seed_messages(self, snapshot: ContinuationSnapshot, *, project: str | None = None) -> list[CanonicalMessage]:
        return [
            CanonicalMessage(role=CanonicalMessageRole.USER, content=self.build_seed_prompt(snapshot, project=project)),
            CanonicalMessage(role=CanonicalMessageRole.ASSISTANT, content=CONTINUATION_ACK),
        ]
