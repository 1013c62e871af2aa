from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from .executor import ToolFn

_SEARCH_SUFFIXES = frozenset({".js", ".ts", ".jsx", ".tsx", ".py", ".md", ".json", ".html", ".css", ".scss", ".toml"})
_SKIP_DIRS = frozenset({".git", "node_modules", "dist", "__pycache__", ".venv"})
_MAX_SEARCH_FILES = 100


def _resolve_in_project(project_root: Path, rel: str) -> Path:
    candidate = (project_root / Path(rel).expanduser()).resolve()
    root = project_root.resolve()
    if candidate != root and root not in candidate.parents:
        raise PermissionError("Path escapes project root.")
    return candidate


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


class WorkspaceTools:
    """
    Read-only filesystem tools rooted at a project directory.

    Writes never happen here; `write_file` stays a pending diff inside the executor.
    """

    def __init__(self, project_root: str | Path) -> None:
        self.root = Path(project_root)

    def implementations(self) -> dict[str, ToolFn]:
        return {
            "read_file": self.read_file,
            "peek_file": self.peek_file,
            "list_files": self.list_files,
            "search_code": self.search_code,
        }

    def read_original(self, path: str) -> str | None:
        target = _resolve_in_project(self.root, path)
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8", errors="replace")

    def read_file(self, args: dict[str, Any]) -> dict[str, Any]:
        path = str(args.get("path") or "")
        target = _resolve_in_project(self.root, path)
        if not target.is_file():
            return {"error": f"File not found: {path}"}
        content = target.read_text(encoding="utf-8", errors="replace")

        start = _as_int(args.get("start_line"))
        end = _as_int(args.get("end_line"))
        if start is None and end is None:
            return {"path": path, "content": content}
        lines = content.split("\n")
        lo = max(1, start or 1)
        hi = min(len(lines), end or len(lines))
        return {"path": path, "content": "\n".join(lines[lo - 1 : hi]), "start_line": lo, "end_line": hi, "total_lines": len(lines)}

    def peek_file(self, args: dict[str, Any]) -> dict[str, Any]:
        path = str(args.get("path") or "")
        target = _resolve_in_project(self.root, path)
        if not target.is_file():
            return {"error": f"File not found: {path}"}
        content = target.read_text(encoding="utf-8", errors="replace")
        lines = content.split("\n")
        preview = _as_int(args.get("preview_lines")) or 50
        if len(lines) <= preview * 2:
            return {"path": path, "content": content, "line_count": len(lines)}
        head = "\n".join(lines[:preview])
        tail = "\n".join(lines[-preview:])
        summary = (
            f"File: {target.name}\nLines: {len(lines)}\n\n"
            f"--- First {preview} lines ---\n{head}\n...\n--- Last {preview} lines ---\n{tail}"
        )
        return {"path": path, "content": summary, "line_count": len(lines)}

    def list_files(self, args: dict[str, Any]) -> dict[str, Any]:
        rel = str(args.get("directory_path") or ".")
        target = _resolve_in_project(self.root, rel)
        if not target.is_dir():
            return {"error": f"Directory not found: {rel}"}
        files: list[dict[str, Any]] = []
        for entry in sorted(target.iterdir(), key=lambda p: p.name):
            item: dict[str, Any] = {
                "name": entry.name,
                "path": str(entry.relative_to(self.root.resolve())),
                "type": "folder" if entry.is_dir() else "file",
            }
            if entry.is_file():
                item["size"] = entry.stat().st_size
            files.append(item)
        return {"directory_path": rel, "files": files}

    def search_code(self, args: dict[str, Any]) -> dict[str, Any]:
        pattern = args.get("pattern")
        if not isinstance(pattern, str) or not pattern:
            return {"error": "No search term provided"}
        root = self.root.resolve()
        matches: list[dict[str, Any]] = []
        scanned = 0
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
            for fname in sorted(filenames):
                if Path(fname).suffix not in _SEARCH_SUFFIXES:
                    continue
                if scanned >= _MAX_SEARCH_FILES:
                    return {"pattern": pattern, "matches": matches, "truncated": True}
                scanned += 1
                fpath = Path(dirpath) / fname
                try:
                    text = fpath.read_text(encoding="utf-8", errors="replace")
                except OSError:
                    continue
                for lineno, line in enumerate(text.split("\n"), start=1):
                    if pattern in line:
                        matches.append({"file": str(fpath.relative_to(root)), "line": lineno, "content": line.strip()})
        return {"pattern": pattern, "matches": matches}
