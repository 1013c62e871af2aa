from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import pytest

from candy.runtime.continuation import RunProgress
from candy.runtime.llm.errors import CancellationToken
from candy.runtime.loop import LoopController
from candy.runtime.tools import PendingApprovalSet, ToolExecutor, ToolRunContext
from candy.runtime.tools.executor import APPROVAL_WAIT_NOTICE
from candy.runtime.tools.workspace import WorkspaceTools


class _Commands:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    def __call__(self, args: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(args)
        return {"stdout": "ok", "exit_code": 0}


@pytest.fixture
def notices() -> list[str]:
    return []


@pytest.fixture
def run(notices: list[str]) -> ToolRunContext:
    loop = LoopController(max_iterations=None)
    loop.start()
    return ToolRunContext(progress=RunProgress(original_goal="g"), loop=loop, cancel=CancellationToken(), notify=notices.append)


def _executor(files: dict[str, str] | None = None, **kwargs: Any) -> ToolExecutor:
    store = dict(files or {})
    kwargs.setdefault("approval_wait_s", 0.05)
    kwargs.setdefault("approval_poll_s", 0.01)
    return ToolExecutor(read_original=store.get, **kwargs)


# ============================================================================
# Dispatch
# ============================================================================


def test_unknown_tool_is_an_error_result(run):
    result = _executor().execute("rm_rf", {}, "c1", run=run)
    assert result.is_error
    assert result.response == {"error": "Unknown tool: rm_rf"}
    assert result.call_id == "c1"


def test_missing_required_arguments(run):
    result = _executor().execute("write_file", {"path": "a.py"}, "c1", run=run)
    assert result.is_error
    assert "content" in result.response["error"]


def test_unwired_tool_reports_not_available(run):
    result = _executor().execute("web_search", {"query": "x"}, "c1", run=run)
    assert result.response == {"error": "Tool not available: web_search"}


def test_implementation_exceptions_never_escape(run):
    def _boom(args: dict[str, Any]) -> Any:
        raise RuntimeError("kaboom")

    result = _executor(implementations={"search_code": _boom}).execute("search_code", {"pattern": "x"}, "c1", run=run)
    assert result.is_error
    assert result.response == {"error": "kaboom"}


# ============================================================================
# Built-in tools
# ============================================================================


def test_write_file_returns_pending_diff(run):
    result = _executor({"a.py": "old\n"}).execute("write_file", {"path": "a.py", "content": "new\n"}, "c1", run=run)
    assert not result.is_error
    assert result.response == {"path": "a.py", "status": "pending", "original": "old\n", "modified": "new\n", "isNewFile": False}
    assert run.progress.files_created == ["a.py"]
    assert run.progress.last_written.content == "new\n"


def test_write_file_append_and_new_file(run):
    ex = _executor({"log.txt": "one\n"})
    appended = ex.execute("write_file", {"path": "log.txt", "content": "two\n", "mode": "append"}, "c1", run=run)
    assert appended.response["modified"] == "one\ntwo\n"

    created = ex.execute("write_file", {"file_path": "new.txt", "content": "hi"}, "c2", run=run)
    assert created.response["isNewFile"] is True
    assert created.response["original"] == ""


def test_write_file_accumulates_chunks_until_finalized(run):
    ex = _executor()
    first = ex.execute("write_file", {"path": "big.py", "content": "a", "finalize": False}, "c1", run=run)
    second = ex.execute("write_file", {"path": "big.py", "content": "b", "finalize": False}, "c2", run=run)
    assert first.response == {"path": "big.py", "status": "accumulating", "chunks": 1}
    assert second.response["chunks"] == 2
    assert run.progress.files_created == []

    final = ex.execute("write_file", {"path": "big.py", "content": "c"}, "c3", run=run)
    assert final.response["modified"] == "abc"
    assert run.progress.pending_chunks == {}


def test_create_plan_replaces_and_inserts(run):
    ex = _executor()
    steps = [
        {"id": "1", "description": "first", "status": "completed", "order": 1},
        {"id": "2", "description": "second", "status": "pending", "order": 2},
    ]
    result = ex.execute("create_plan", {"title": "Plan", "steps": steps}, "c1", run=run)
    assert result.response["title"] == "Plan"
    assert [s["id"] for s in result.response["steps"]] == ["1", "2"]

    ex.execute(
        "create_plan",
        {"title": "Plan", "steps": [{"id": "1b", "description": "between", "status": "pending", "order": 2}], "after_id": "1"},
        "c2",
        run=run,
    )
    assert [t.id for t in run.progress.todo_list] == ["1", "1b", "2"]


def test_create_plan_rejects_bad_status(run):
    result = _executor().execute(
        "create_plan", {"title": "P", "steps": [{"id": "1", "description": "x", "status": "bogus", "order": 1}]}, "c1", run=run
    )
    assert result.is_error
    assert run.progress.todo_list == []


@pytest.mark.parametrize("name", ["write_file", "create_plan", "task_complete"])
def test_builtin_tools_are_never_delegated(run, name):
    delegated: list[dict[str, Any]] = []
    args = {"write_file": {"path": "a.py", "content": "x"}, "create_plan": {"title": "t", "steps": []}, "task_complete": {"summary": "s"}}
    ex = _executor(implementations={name: lambda a: delegated.append(a) or {"ok": True}})

    result = ex.execute(name, args[name], "c1", run=run)

    assert delegated == []
    assert not result.is_error


def test_task_complete_marks_the_loop(run):
    result = _executor().execute("task_complete", {"summary": "All done"}, "c1", run=run)
    assert result.response == {"summary": "All done", "status": "completed"}
    assert run.loop.task_completed
    assert run.progress.recent_summary == "All done"


# ============================================================================
# Approval gate
# ============================================================================


def test_dependent_tool_waits_for_approvals(run, notices):
    approvals = PendingApprovalSet()
    approvals.add("a.py")
    commands = _Commands()
    ex = _executor(implementations={"execute_command": commands}, approvals=approvals, approval_wait_s=5.0)

    threading.Timer(0.05, approvals.resolve, args=("a.py",)).start()
    result = ex.execute("execute_command", {"command": "pytest"}, "c1", run=run)

    assert not result.is_error
    assert commands.calls == [{"command": "pytest"}]
    assert notices == [APPROVAL_WAIT_NOTICE]


def test_approval_timeout_proceeds_with_notice(run, notices):
    approvals = PendingApprovalSet()
    approvals.add("a.py")
    commands = _Commands()
    ex = _executor(implementations={"run_tests": commands}, approvals=approvals, approval_wait_s=0.05)

    result = ex.execute("run_tests", {}, "c1", run=run)

    assert not result.is_error
    assert len(commands.calls) == 1
    assert notices == [APPROVAL_WAIT_NOTICE, "Approval wait timed out after 0.05s; proceeding."]


def test_cancel_during_approval_wait_skips_the_tool(run):
    approvals = PendingApprovalSet()
    approvals.add("a.py")
    commands = _Commands()
    ex = _executor(implementations={"execute_command": commands}, approvals=approvals, approval_wait_s=5.0)

    threading.Timer(0.02, run.cancel.cancel).start()
    result = ex.execute("execute_command", {"command": "ls"}, "c1", run=run)

    assert result.is_error
    assert commands.calls == []


def test_independent_tools_ignore_pending_approvals(run, notices):
    approvals = PendingApprovalSet()
    approvals.add("a.py")
    result = _executor(approvals=approvals).execute("write_file", {"path": "b.py", "content": ""}, "c1", run=run)
    assert not result.is_error
    assert notices == []


def test_pending_approval_set_bookkeeping():
    approvals = PendingApprovalSet()
    assert approvals.wait_until_clear(0)
    approvals.add("b")
    approvals.add("a")
    assert approvals.pending_ids() == ["a", "b"]
    assert not approvals.wait_until_clear(0.01, poll_s=0.005)
    approvals.clear()
    assert not approvals.has_pending()


# ============================================================================
# Workspace tools
# ============================================================================


@pytest.fixture
def workspace(tmp_path: Path) -> WorkspaceTools:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("def main():\n    return 'needle'\n", encoding="utf-8")
    (tmp_path / "README.md").write_text("\n".join(f"line {i}" for i in range(1, 201)), encoding="utf-8")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.js").write_text("needle", encoding="utf-8")
    return WorkspaceTools(tmp_path)


def test_workspace_read_and_range(workspace):
    assert workspace.read_file({"path": "src/app.py"})["content"].startswith("def main")
    ranged = workspace.read_file({"path": "README.md", "start_line": 2, "end_line": 3})
    assert ranged["content"] == "line 2\nline 3"
    assert ranged["total_lines"] == 200
    assert workspace.read_file({"path": "missing.py"}) == {"error": "File not found: missing.py"}


def test_workspace_peek_summarizes_long_files(workspace):
    peek = workspace.peek_file({"path": "README.md", "preview_lines": 5})
    assert peek["line_count"] == 200
    assert "--- First 5 lines ---" in peek["content"]
    assert "line 200" in peek["content"]
    assert "line 100" not in peek["content"]


def test_workspace_list_and_search(workspace):
    listing = workspace.list_files({"directory_path": "."})
    assert [f["name"] for f in listing["files"]] == ["README.md", "node_modules", "src"]

    found = workspace.search_code({"pattern": "needle"})
    assert found["matches"] == [{"file": str(Path("src") / "app.py"), "line": 2, "content": "return 'needle'"}]


def test_workspace_refuses_paths_outside_the_project(workspace, run):
    ex = ToolExecutor(implementations=workspace.implementations(), read_original=workspace.read_original)
    result = ex.execute("read_file", {"path": "../../etc/passwd"}, "c1", run=run)
    assert result.is_error
    assert "escapes" in result.response["error"]
