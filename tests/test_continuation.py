from __future__ import annotations

import pytest

from candy.runtime.continuation import (
    CONTINUATION_ACK,
    DEFAULT_RECENT_SUMMARY,
    ContinuationManager,
    RunProgress,
)
from candy.runtime.llm.errors import TooManyContinuationsError
from candy.runtime.llm.types import CanonicalMessageRole
from candy.runtime.plan import StepStatus, TodoItem, normalize_plan_steps

GOAL = 'Build a "todo" app with {braces} and\nmultiple lines'


def _progress() -> RunProgress:
    progress = RunProgress(original_goal=GOAL)
    progress.replace_plan(
        normalize_plan_steps(
            [
                {"id": "s1", "description": "Scaffold", "status": "completed", "order": 1},
                {"id": "s2", "description": "Write API", "status": "in_progress", "order": 2},
                {"id": "s3", "description": "Add tests", "status": "pending", "order": 3},
            ]
        )
    )
    progress.record_file("app.py", "print('hi')")
    progress.record_file("api.py", "x" * 6000)
    progress.recent_summary = "API half done"
    return progress


def test_snapshot_restore_preserves_progress():
    manager = ContinuationManager(max_continuations=10)
    progress = _progress()
    restored = manager.restore(manager.build_snapshot(progress, continuation_count=0))

    assert restored.original_goal == progress.original_goal
    assert restored.todo_list == progress.todo_list
    assert restored.files_created == progress.files_created
    assert restored.recent_summary == "API half done"
    assert restored.last_written is not None
    assert restored.last_written.path == "api.py"
    assert restored.last_written.content == "x" * 5000
    assert restored.pending_chunks == {}


def test_snapshot_is_independent_of_later_mutation():
    manager = ContinuationManager(max_continuations=10)
    progress = _progress()
    snapshot = manager.build_snapshot(progress, continuation_count=0)
    progress.record_file("late.py", "")
    progress.todo_list.clear()

    assert "late.py" not in snapshot.files_created
    assert len(snapshot.todo_list) == 3
    assert snapshot.to_dict()["todo_list"][1]["status"] == "in-progress"


def test_continuation_bound():
    manager = ContinuationManager(max_continuations=3)
    assert manager.can_continue(2)
    manager.build_snapshot(_progress(), continuation_count=2)

    assert not manager.can_continue(3)
    with pytest.raises(TooManyContinuationsError) as info:
        manager.build_snapshot(_progress(), continuation_count=3)
    assert str(info.value) == "Too many continuations (3). Stopping."


def test_seed_prompt_carries_goal_plan_and_files():
    manager = ContinuationManager(max_continuations=10, last_file_preview_chars=20)
    prompt = manager.build_seed_prompt(manager.build_snapshot(_progress(), continuation_count=0), project="/work/app")

    assert prompt.startswith("CONTINUATION SESSION - Previous session hit context limit or timeout.")
    assert f"Original task: {GOAL}\n" in prompt
    assert "  ✓ [s1] (completed) Scaffold" in prompt
    assert "  ▶ [s2] (in-progress) Write API" in prompt
    assert "  ☐ [s3] (pending) Add tests" in prompt
    assert "Files created: 2" in prompt
    assert "  • app.py\n  • api.py" in prompt
    assert "```\n" + "x" * 20 + "\n```" in prompt
    assert "Recent progress: API half done" in prompt
    assert "Active Project: /work/app" in prompt
    assert "Do NOT restart the task." in prompt


def test_seed_prompt_caps_file_list():
    manager = ContinuationManager(max_continuations=10, max_listed_files=10)
    progress = RunProgress(original_goal="g")
    for i in range(13):
        progress.record_file(f"f{i}.py", "")
    prompt = manager.build_seed_prompt(manager.build_snapshot(progress, continuation_count=0))

    assert "Files created: 13" in prompt
    assert "  • f9.py" in prompt
    assert "  • f10.py" not in prompt
    assert "  ... and 3 more" in prompt
    assert "No tasks yet" in prompt
    assert f"Recent progress: {DEFAULT_RECENT_SUMMARY}" in prompt
    assert "Active Project" not in prompt


def test_seed_messages_are_prompt_then_ack():
    manager = ContinuationManager(max_continuations=1)
    user, ack = manager.seed_messages(manager.build_snapshot(RunProgress(original_goal="g"), continuation_count=0))
    assert user.role is CanonicalMessageRole.USER
    assert ack.role is CanonicalMessageRole.ASSISTANT
    assert ack.content == CONTINUATION_ACK


def test_plan_step_normalization():
    items = normalize_plan_steps(["Read code", {"description": "Fix bug", "status": "IN_PROGRESS"}])
    assert items[0] == TodoItem(id="1", description="Read code", status=StepStatus.PENDING, order=1)
    assert items[1].id == "2"
    assert items[1].status is StepStatus.IN_PROGRESS
    assert items[1].marker == "▶"

    with pytest.raises(ValueError):
        normalize_plan_steps([{"id": "a", "description": "x", "status": "done-ish"}])
    with pytest.raises(ValueError):
        normalize_plan_steps("not a list")
