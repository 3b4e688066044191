"""Write tool for file contents."""

import asyncio
from pathlib import Path
from typing import Any

from tether.config import Config, get_config
from tether.exceptions import InvalidToolParamsError, ToolExecutionError
from tether.logging import get_logger
from tether.tools.registry import Tool

log = get_logger(__name__)


def _write(path: Path, content: str, append: bool) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a" if append else "w", encoding="utf-8") as f:
        f.write(content)


class FileWriteTool(Tool):
    """Create, overwrite or append to a file."""

    name = "fileWrite"
    description = "Writes content to a file, creating parent directories as needed"
    parameters = {
        "type": "object",
        "properties": {
            "file_path": {
                "type": "string",
                "description": "Path to the file to write",
            },
            "content": {
                "type": "string",
                "description": "Content to write to the file",
            },
            "append": {
                "type": "boolean",
                "description": "Append to the file instead of overwriting",
                "default": False,
            },
        },
        "required": ["file_path", "content"],
    }

    def __init__(self, config: Config | None = None):
        self.config = config or get_config()

    async def execute(self, file_path: str, content: Any, append: bool = False, **kwargs: Any) -> dict[str, Any]:
        """Write content to a file.

        Returns:
            Mapping with the resolved path, bytes written and mode flags.
        """
        if not str(file_path or "").strip():
            raise InvalidToolParamsError(self.name, "file_path is empty")
        # XML-decoded content may arrive coerced to a number or bool.
        if isinstance(content, bool):
            text = "true" if content else "false"
        else:
            text = "" if content is None else str(content)

        size = len(text.encode("utf-8"))
        max_bytes = int(self.config.tools.files.max_write_bytes)
        if max_bytes and size > max_bytes:
            raise ToolExecutionError(self.name, f"Content too large: {size} bytes (max {max_bytes})")

        path = Path(str(file_path)).expanduser().resolve()
        existed = path.exists()
        if existed and path.is_dir():
            raise ToolExecutionError(self.name, f"Path is a directory: {file_path}")

        try:
            await asyncio.to_thread(_write, path, text, bool(append))
        except OSError as e:
            log.error("Write failed", path=str(path), error=str(e))
            raise ToolExecutionError(self.name, str(e))

        log.info("File written", path=str(path), bytes=size, append=bool(append))
        return {
            "success": True,
            "file_path": str(path),
            "bytes": size,
            "appended": bool(append),
            "file_exists": existed,
        }
