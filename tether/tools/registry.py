"""Tool registry and base tool class."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

from tether.exceptions import (
    InvalidToolParamsError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
)
from tether.logging import get_logger

log = get_logger(__name__)

DEFAULT_TOOL_TIMEOUT = 30.0


class Tool(ABC):
    """Base class for all tools.

    ``execute`` returns a tool-defined value (string, dict, list...) and
    raises ``ToolError`` subclasses on failure.
    """

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}
    timeout_seconds: float = DEFAULT_TOOL_TIMEOUT

    @abstractmethod
    async def execute(self, **kwargs: Any) -> Any:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments

        Returns:
            Tool-defined result value
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        """Get the tool definition for the system prompt."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Check required arguments are present.

        Raises:
            InvalidToolParamsError: on the first missing field
        """
        for field in self.parameters.get("required", []):
            if field not in arguments:
                raise InvalidToolParamsError(self.name, f"missing required parameter: {field}")


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool, replacing any tool with the same name."""
        if not tool.name:
            raise ValueError("Tool must have a name")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def get_tool(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names in registration order."""
        return list(self._tools)

    def get_definitions(self) -> list[dict[str, Any]]:
        return [tool.get_definition() for tool in self._tools.values()]

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        """Cancel task and await it to avoid pending task warnings."""
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.debug("Cancelled tool task raised", error=str(e))

    @staticmethod
    def _resolve_timeout(tool: Tool, arguments: dict[str, Any], timeout: float | None) -> float:
        if timeout is not None:
            return max(1.0, float(timeout))
        timeout_seconds = float(getattr(tool, "timeout_seconds", DEFAULT_TOOL_TIMEOUT) or DEFAULT_TOOL_TIMEOUT)
        override = arguments.get("timeout")
        if isinstance(override, (int, float)) and not isinstance(override, bool):
            # Leave headroom for the tool's own timeout handling.
            timeout_seconds = max(timeout_seconds, float(override) + 5.0)
        return max(1.0, timeout_seconds)

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        timeout: float | None = None,
    ) -> Any:
        """Execute a tool by name.

        Args:
            name: Tool name
            arguments: Tool arguments
            timeout: Optional hard limit in seconds for this call

        Returns:
            Whatever the tool returns

        Raises:
            ToolNotFoundError if tool not found
            InvalidToolParamsError if required arguments are missing
            ToolExecutionError if execution fails or times out
        """
        tool = self.get(name)
        arguments = dict(arguments or {})
        tool.validate_arguments(arguments)

        timeout_seconds = self._resolve_timeout(tool, arguments, timeout)
        execute_task: asyncio.Task[Any] | None = None
        try:
            log.info("Executing tool", tool=name, args=arguments)
            execute_task = asyncio.create_task(tool.execute(**arguments))
            done, _ = await asyncio.wait({execute_task}, timeout=timeout_seconds)

            if execute_task in done:
                result = execute_task.result()
                log.info("Tool executed", tool=name)
                return result

            await self._cancel_task(execute_task)
            timeout_label = int(timeout_seconds) if timeout_seconds.is_integer() else timeout_seconds
            raise ToolExecutionError(name, f"Execution timed out after {timeout_label}s")
        except asyncio.CancelledError:
            await self._cancel_task(execute_task)
            raise
        except ToolError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise ToolExecutionError(name, str(e))
