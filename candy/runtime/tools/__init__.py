from __future__ import annotations

from .approvals import PendingApprovalSet
from .catalog import DEPENDENT_TOOLS, TOOL_SPECS, ToolName
from .executor import ToolExecutor, ToolRunContext

__all__ = [
    "DEPENDENT_TOOLS",
    "PendingApprovalSet",
    "TOOL_SPECS",
    "ToolExecutor",
    "ToolName",
    "ToolRunContext",
]
