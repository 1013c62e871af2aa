from __future__ import annotations

import logging
from typing import Protocol, Sequence

from .llm.types import CanonicalMessage, CanonicalMessageRole
from .protocol import ContextFile, ContextMode, HistoryMessage

logger = logging.getLogger(__name__)

_CHARS_PER_TOKEN = 4


class ContextBuilder(Protocol):
    """Project summarizer collaborator. Output must be deterministic for a fixed file tree."""

    def build_context(self, project_dir: str, mode: ContextMode) -> str: ...


def estimate_tokens(text: str) -> int:
    return len(text) // _CHARS_PER_TOKEN


def clamp_to_budget(text: str, token_budget: int) -> str:
    max_chars = max(0, token_budget) * _CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text
    return text[:max_chars]


def project_pointer(project_dir: str) -> str:
    return (
        f"Active Project: {project_dir}\n"
        "Use tools (list_files, read_file, search_code) to explore the codebase as needed.\n\n"
    )


def assemble_context(
    *,
    builder: ContextBuilder | None,
    project_dir: str | None,
    mode: ContextMode,
    history_len: int,
    files: Sequence[ContextFile],
    token_budget: int,
) -> str:
    """
    Text placed ahead of the user's prompt.

    The project summary is only rebuilt at the start of a session or in `full` mode; otherwise
    a short pointer tells the model to explore with tools.
    """
    out = ""
    if project_dir:
        starting = history_len < 2
        if builder is not None and (starting or mode is ContextMode.FULL):
            try:
                summary = builder.build_context(project_dir, mode)
            except Exception:
                logger.warning("Context builder failed for %s; falling back to pointer", project_dir, exc_info=True)
                out += project_pointer(project_dir)
            else:
                out += clamp_to_budget(summary, token_budget) + "\n\n"
        else:
            out += project_pointer(project_dir)

    if files:
        out += "Context Files:\n"
        out += "\n\n".join(f"File: {f.path}\n{f.content}" for f in files)
        out += "\n\n"
    return out


def compact_history(
    history: Sequence[HistoryMessage], *, keep_recent: int, summarize: bool = True
) -> list[CanonicalMessage]:
    """
    Keep the last `keep_recent` messages verbatim. Older turns collapse to the opening user
    message plus a one-line note saying how many were dropped, or are simply dropped when
    `summarize` is off.
    """
    msgs = [
        CanonicalMessage(
            role=CanonicalMessageRole.ASSISTANT if m.role == "assistant" else CanonicalMessageRole.USER,
            content=m.content,
        )
        for m in history
    ]
    if len(msgs) <= keep_recent:
        return msgs

    recent = msgs[len(msgs) - keep_recent :] if keep_recent > 0 else []
    older = msgs[: len(msgs) - keep_recent]
    if not summarize:
        return recent

    out: list[CanonicalMessage] = []
    if older[0].role is CanonicalMessageRole.USER:
        out.append(older[0])
    out.append(
        CanonicalMessage(
            role=CanonicalMessageRole.ASSISTANT,
            content=(
                f"[Previous conversation history summarized: {len(older)} messages omitted to optimize context usage. "
                "I have already completed several steps of the task.]"
            ),
        )
    )
    out.extend(recent)
    return out
