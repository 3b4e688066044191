"""Tools package for Tether."""

from tether.config import Config, get_config
from tether.logging import get_logger
from tether.tools.execute import ExecuteTool
from tether.tools.file_read import FileReadTool
from tether.tools.file_write import FileWriteTool
from tether.tools.list_files import ListFilesTool
from tether.tools.registry import Tool, ToolRegistry

log = get_logger(__name__)

BUILTIN_TOOLS = {
    "execute": ExecuteTool,
    "fileRead": FileReadTool,
    "fileWrite": FileWriteTool,
    "listFiles": ListFilesTool,
}


def create_default_registry(config: Config | None = None) -> ToolRegistry:
    """Registry holding the bundled tools enabled in config."""
    config = config or get_config()
    registry = ToolRegistry()
    for name in config.tools.enabled:
        tool_cls = BUILTIN_TOOLS.get(name)
        if tool_cls is None:
            log.warning("Unknown tool in config", tool=name)
            continue
        registry.register(tool_cls(config=config))
    return registry


__all__ = [
    "Tool",
    "ToolRegistry",
    "ExecuteTool",
    "FileReadTool",
    "FileWriteTool",
    "ListFilesTool",
    "BUILTIN_TOOLS",
    "create_default_registry",
]
