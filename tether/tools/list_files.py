"""Recursive directory listing tool."""

import asyncio
import fnmatch
import os
from pathlib import Path
from typing import Any

from tether.config import Config, get_config
from tether.exceptions import ToolExecutionError
from tether.logging import get_logger
from tether.tools.registry import Tool

log = get_logger(__name__)


def find_files(
    root: Path,
    pattern: str = "",
    max_depth: int = 0,
    include_hidden: bool = False,
    limit: int = 0,
) -> list[str]:
    """Walk ``root`` and return relative file paths, sorted.

    ``max_depth`` of 0 means unlimited; depth 1 is the root directory itself.
    A pattern is matched against the file name and the relative path.
    """
    found: list[str] = []
    for current, dirs, files in os.walk(root):
        rel_dir = Path(current).relative_to(root)
        depth = 0 if str(rel_dir) == "." else len(rel_dir.parts)
        if not include_hidden:
            dirs[:] = [d for d in dirs if not d.startswith(".")]
        if max_depth and depth + 1 >= max_depth:
            dirs[:] = []
        dirs.sort()

        for name in sorted(files):
            if not include_hidden and name.startswith("."):
                continue
            rel_path = (rel_dir / name).as_posix()
            if pattern and not (fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(rel_path, pattern)):
                continue
            found.append(rel_path)
            if limit and len(found) >= limit:
                return found
    return found


class ListFilesTool(Tool):
    """List files under a directory."""

    name = "listFiles"
    description = "Recursively lists all files in a directory with optional pattern matching"
    parameters = {
        "type": "object",
        "properties": {
            "dir": {
                "type": "string",
                "description": "Directory to search (defaults to the current directory)",
            },
            "pattern": {
                "type": "string",
                "description": "Optional glob pattern to filter files (e.g., '*.py')",
            },
            "max_depth": {
                "type": "integer",
                "description": "Maximum recursion depth (0 for unlimited)",
                "default": 0,
            },
            "include_hidden": {
                "type": "boolean",
                "description": "Whether to include hidden files and directories",
                "default": False,
            },
        },
        "required": [],
    }

    def __init__(self, config: Config | None = None):
        self.config = config or get_config()

    async def execute(
        self,
        dir: str | None = None,
        pattern: str | None = None,
        max_depth: int = 0,
        include_hidden: bool = False,
        **kwargs: Any,
    ) -> dict[str, Any]:
        root = Path(str(dir)).expanduser().resolve() if dir else Path.cwd()
        if not root.exists():
            raise ToolExecutionError(self.name, f"Directory not found: {dir}")
        if not root.is_dir():
            raise ToolExecutionError(self.name, f"Path is not a directory: {dir}")

        limit = int(self.config.tools.files.max_list_results or 0)
        files = await asyncio.to_thread(
            find_files,
            root,
            str(pattern or ""),
            int(max_depth or 0),
            bool(include_hidden),
            limit,
        )
        log.debug("Listed files", directory=str(root), count=len(files))
        result: dict[str, Any] = {
            "directory": str(root),
            "files": files,
            "count": len(files),
        }
        if limit and len(files) >= limit:
            result["truncated"] = True
        return result
