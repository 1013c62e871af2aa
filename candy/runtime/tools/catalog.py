from __future__ import annotations

from enum import StrEnum

from ..llm.types import ToolSpec


class ToolName(StrEnum):
    READ_FILE = "read_file"
    PEEK_FILE = "peek_file"
    WRITE_FILE = "write_file"
    LIST_FILES = "list_files"
    SEARCH_CODE = "search_code"
    EXECUTE_COMMAND = "execute_command"
    RUN_TESTS = "run_tests"
    CREATE_PLAN = "create_plan"
    TASK_COMPLETE = "task_complete"
    WEB_SEARCH = "web_search"


# Must not start while file changes are still awaiting approval.
DEPENDENT_TOOLS: frozenset[ToolName] = frozenset({ToolName.EXECUTE_COMMAND, ToolName.RUN_TESTS})

# Handled inside the executor; every other tool is delegated to an external implementation.
BUILTIN_TOOLS: frozenset[ToolName] = frozenset({ToolName.WRITE_FILE, ToolName.CREATE_PLAN, ToolName.TASK_COMPLETE})


TOOL_SPECS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name=ToolName.READ_FILE.value,
        description=(
            "Read the full content of a file. Use this before editing a file. "
            "Pass start_line/end_line to read a range of a very large file."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path to read"},
                "start_line": {"type": "integer", "description": "Optional 1-based first line"},
                "end_line": {"type": "integer", "description": "Optional 1-based last line"},
            },
            "required": ["path"],
        },
    ),
    ToolSpec(
        name=ToolName.PEEK_FILE.value,
        description="Quick look at a file: first and last lines plus a line count. Use read_file when editing.",
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path to peek at"},
                "preview_lines": {"type": "integer", "description": "Lines to show from start and end (default 50)"},
            },
            "required": ["path"],
        },
    ),
    ToolSpec(
        name=ToolName.WRITE_FILE.value,
        description=(
            "Propose new content for a file; the change waits for user approval. "
            "For large files call repeatedly with finalize=false and once more with finalize=true."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path to write"},
                "content": {"type": "string", "description": "File content, or one chunk of it"},
                "mode": {"type": "string", "enum": ["overwrite", "append"], "description": "Default: overwrite"},
                "finalize": {"type": "boolean", "description": "False to keep accumulating chunks. Default: true"},
            },
            "required": ["path", "content"],
        },
    ),
    ToolSpec(
        name=ToolName.LIST_FILES.value,
        description="List files and directories in a path.",
        input_schema={
            "type": "object",
            "properties": {"directory_path": {"type": "string", "description": "Directory to list"}},
            "required": ["directory_path"],
        },
    ),
    ToolSpec(
        name=ToolName.SEARCH_CODE.value,
        description="Search the codebase for a text pattern.",
        input_schema={
            "type": "object",
            "properties": {"pattern": {"type": "string", "description": "Search pattern"}},
            "required": ["pattern"],
        },
    ),
    ToolSpec(
        name=ToolName.EXECUTE_COMMAND.value,
        description="Run a shell command. Waits for pending file approvals first.",
        input_schema={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command to execute"},
                "needs_elevation": {"type": "boolean", "description": "Whether the command needs elevated privileges"},
            },
            "required": ["command"],
        },
    ),
    ToolSpec(
        name=ToolName.RUN_TESTS.value,
        description="Run the project's tests. Waits for pending file approvals first.",
        input_schema={
            "type": "object",
            "properties": {"framework": {"type": "string", "description": "Test framework (auto-detected if omitted)"}},
        },
    ),
    ToolSpec(
        name=ToolName.CREATE_PLAN.value,
        description=(
            "Create or update the task to-do list. Call at the start of complex work and again "
            "whenever a step changes status or new steps are discovered."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "Title of the plan"},
                "steps": {
                    "type": "array",
                    "description": "Ordered task steps.",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string", "description": "Unique step id"},
                            "description": {"type": "string"},
                            "status": {"type": "string", "enum": ["pending", "in-progress", "completed", "skipped"]},
                            "order": {"type": "number"},
                        },
                        "required": ["id", "description", "status", "order"],
                    },
                },
                "after_id": {"type": "string", "description": "Optional: insert the steps after this step id"},
            },
            "required": ["title", "steps"],
        },
    ),
    ToolSpec(
        name=ToolName.TASK_COMPLETE.value,
        description="Call once every requested task is finished. Signals completion.",
        input_schema={
            "type": "object",
            "properties": {"summary": {"type": "string", "description": "Brief summary of what was accomplished"}},
            "required": ["summary"],
        },
    ),
    ToolSpec(
        name=ToolName.WEB_SEARCH.value,
        description="Search the web for information, documentation or solutions.",
        input_schema={
            "type": "object",
            "properties": {"query": {"type": "string", "description": "Search query"}},
            "required": ["query"],
        },
    ),
)

_SPECS_BY_NAME: dict[str, ToolSpec] = {s.name: s for s in TOOL_SPECS}


def get_tool_spec(name: str) -> ToolSpec | None:
    return _SPECS_BY_NAME.get(name)


def parse_tool_name(name: str) -> ToolName | None:
    try:
        return ToolName(name)
    except ValueError:
        return None
