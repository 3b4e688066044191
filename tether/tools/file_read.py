"""Read tool for file contents."""

import asyncio
from pathlib import Path
from typing import Any

from tether.config import Config, get_config
from tether.exceptions import InvalidToolParamsError, ToolExecutionError
from tether.logging import get_logger
from tether.tools.registry import Tool

log = get_logger(__name__)


class FileReadTool(Tool):
    """Read a text file, optionally a line range."""

    name = "fileRead"
    description = "Reads the contents of a file, optionally limited to a range of lines"
    parameters = {
        "type": "object",
        "properties": {
            "file_path": {
                "type": "string",
                "description": "Path to the file to read",
            },
            "start_line": {
                "type": "integer",
                "description": "First line to return (1-indexed)",
            },
            "end_line": {
                "type": "integer",
                "description": "Last line to return (inclusive)",
            },
        },
        "required": ["file_path"],
    }

    def __init__(self, config: Config | None = None):
        self.config = config or get_config()

    async def execute(
        self,
        file_path: str,
        start_line: int | None = None,
        end_line: int | None = None,
        **kwargs: Any,
    ) -> str:
        """Read a file.

        Returns:
            Header line with the resolved path followed by the content.
        """
        for label, value in (("start_line", start_line), ("end_line", end_line)):
            if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value < 1):
                raise InvalidToolParamsError(self.name, f"{label} must be a positive integer")

        path = Path(str(file_path)).expanduser().resolve()
        if not path.exists():
            raise ToolExecutionError(self.name, f"File not found: {file_path}")
        if not path.is_file():
            raise ToolExecutionError(self.name, f"Not a file: {file_path}")

        max_bytes = int(self.config.tools.files.max_read_bytes)
        size = path.stat().st_size
        if size > max_bytes:
            raise ToolExecutionError(self.name, f"File too large: {size} bytes (max {max_bytes})")

        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
        except OSError as e:
            log.error("Read failed", path=str(path), error=str(e))
            raise ToolExecutionError(self.name, str(e))

        if start_line is None and end_line is None:
            return f"[{path} {len(content)} chars]\n{content}"

        lines = content.splitlines()
        first = start_line or 1
        last = min(end_line or len(lines), len(lines))
        selected = lines[first - 1:last]
        return f"[{path} lines {first}-{last} of {len(lines)}]\n" + "\n".join(selected)
