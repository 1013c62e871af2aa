from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from ..continuation import RunProgress
from ..llm.errors import CancellationToken
from ..llm.types import ToolResult
from ..loop import LoopController
from ..plan import TodoItem, normalize_plan_steps
from .approvals import PendingApprovalSet
from .catalog import BUILTIN_TOOLS, DEPENDENT_TOOLS, ToolName, get_tool_spec, parse_tool_name

logger = logging.getLogger(__name__)

ToolFn = Callable[[dict[str, Any]], Any]
# Returns the current file content, or None when the file does not exist yet.
FileReader = Callable[[str], "str | None"]

APPROVAL_WAIT_NOTICE = "Waiting for file approvals before proceeding..."


@dataclass(frozen=True, slots=True)
class ToolRunContext:
    """Per-run state a tool call may read or update. Passed explicitly on every call."""

    progress: RunProgress
    loop: LoopController
    cancel: CancellationToken | None = None
    notify: Callable[[str], None] | None = None


def _format_seconds(value: float) -> str:
    return f"{value:g}"


def _path_arg(args: dict[str, Any]) -> str | None:
    raw = args.get("path")
    if not isinstance(raw, str) or not raw.strip():
        raw = args.get("file_path")
    return raw.strip() if isinstance(raw, str) and raw.strip() else None


class ToolExecutor:
    """
    Dispatches tool calls from the model.

    `execute()` never raises: failures become `{"error": ...}` results with `is_error=True`,
    because the model consumes results as data.
    """

    def __init__(
        self,
        *,
        implementations: Mapping[str, ToolFn] | None = None,
        read_original: FileReader | None = None,
        approvals: PendingApprovalSet | None = None,
        approval_wait_s: float = 300.0,
        approval_poll_s: float = 1.0,
    ) -> None:
        self._impls: dict[str, ToolFn] = dict(implementations or {})
        self._read_original = read_original
        self._approvals = approvals
        self._approval_wait_s = approval_wait_s
        self._approval_poll_s = approval_poll_s

    def execute(self, name: str, arguments: dict[str, Any], call_id: str, *, run: ToolRunContext) -> ToolResult:
        try:
            response = self._dispatch(name, arguments, run=run)
        except Exception as e:
            logger.warning("Tool %s (%s) failed: %s", name, call_id, e)
            return ToolResult(call_id=call_id, name=name, response={"error": str(e) or e.__class__.__name__}, is_error=True)
        is_error = isinstance(response, dict) and "error" in response
        return ToolResult(call_id=call_id, name=name, response=response, is_error=is_error)

    def error_result(self, name: str, call_id: str, message: str) -> ToolResult:
        return ToolResult(call_id=call_id, name=name, response={"error": message}, is_error=True)

    def _dispatch(self, name: str, arguments: dict[str, Any], *, run: ToolRunContext) -> Any:
        tool = parse_tool_name(name)
        if tool is None:
            return {"error": f"Unknown tool: {name}"}

        args = arguments if isinstance(arguments, dict) else {}
        missing = self._missing_required(tool, args)
        if missing:
            return {"error": f"Missing required argument(s) for {name}: {', '.join(missing)}"}

        if tool in DEPENDENT_TOOLS:
            blocked = self._wait_for_approvals(run)
            if blocked is not None:
                return blocked

        if tool in BUILTIN_TOOLS:
            builtins = {
                ToolName.WRITE_FILE: self._write_file,
                ToolName.CREATE_PLAN: self._create_plan,
                ToolName.TASK_COMPLETE: self._task_complete,
            }
            return builtins[tool](args, run=run)

        impl = self._impls.get(tool.value)
        if impl is None:
            return {"error": f"Tool not available: {name}"}
        return impl(dict(args))

    def _missing_required(self, tool: ToolName, args: dict[str, Any]) -> list[str]:
        spec = get_tool_spec(tool.value)
        if spec is None:
            return []
        missing: list[str] = []
        for key in spec.required:
            value = args.get(key)
            if value is None and key == "path":
                value = args.get("file_path")
            if value is None:
                missing.append(key)
        return missing

    def _wait_for_approvals(self, run: ToolRunContext) -> dict[str, Any] | None:
        approvals = self._approvals
        if approvals is None or not approvals.has_pending():
            return None

        if run.notify is not None:
            run.notify(APPROVAL_WAIT_NOTICE)
        logger.info("Waiting up to %ss for %d pending approval(s)", self._approval_wait_s, len(approvals.pending_ids()))

        cleared = approvals.wait_until_clear(self._approval_wait_s, cancel=run.cancel, poll_s=self._approval_poll_s)
        if cleared:
            return None
        if run.cancel is not None and run.cancel.cancelled:
            return {"error": "Cancelled while waiting for file approvals."}

        notice = f"Approval wait timed out after {_format_seconds(self._approval_wait_s)}s; proceeding."
        logger.warning(notice)
        if run.notify is not None:
            run.notify(notice)
        return None

    def _write_file(self, args: dict[str, Any], *, run: ToolRunContext) -> dict[str, Any]:
        path = _path_arg(args)
        if path is None:
            return {"error": "No path provided"}
        content = args.get("content")
        if not isinstance(content, str):
            return {"error": "content must be a string", "path": path}

        progress = run.progress
        if args.get("finalize") is False:
            chunks = progress.pending_chunks.setdefault(path, [])
            chunks.append(content)
            return {"path": path, "status": "accumulating", "chunks": len(chunks)}

        full = "".join(progress.pending_chunks.pop(path, [])) + content
        original = self._read_original(path) if self._read_original is not None else None
        is_new = original is None
        original_text = original or ""
        modified = original_text + full if args.get("mode") == "append" else full

        progress.record_file(path, modified)
        return {
            "path": path,
            "status": "pending",
            "original": original_text,
            "modified": modified,
            "isNewFile": is_new,
        }

    def _create_plan(self, args: dict[str, Any], *, run: ToolRunContext) -> dict[str, Any]:
        title = args.get("title")
        items = normalize_plan_steps(args.get("steps"))

        after_id = args.get("after_id")
        current = run.progress.todo_list
        if isinstance(after_id, str) and after_id.strip() and any(t.id == after_id.strip() for t in current):
            items = _insert_after(current, items, after_id.strip())

        run.progress.replace_plan(items)
        return {"title": str(title or ""), "steps": [t.to_dict() for t in items]}

    def _task_complete(self, args: dict[str, Any], *, run: ToolRunContext) -> dict[str, Any]:
        summary = args.get("summary")
        summary_text = summary if isinstance(summary, str) else str(summary or "")
        run.loop.mark_task_completed()
        if summary_text:
            run.progress.recent_summary = summary_text
        return {"summary": summary_text, "status": "completed"}


def _insert_after(current: list[TodoItem], new_items: list[TodoItem], after_id: str) -> list[TodoItem]:
    new_ids = {t.id for t in new_items}
    kept = [t for t in current if t.id not in new_ids]
    idx = next((i for i, t in enumerate(kept) if t.id == after_id), len(kept) - 1)
    return kept[: idx + 1] + new_items + kept[idx + 1 :]
