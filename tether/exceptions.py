"""Custom exceptions for Tether."""


class TetherError(Exception):
    """Base exception for Tether."""

    pass


class ConfigurationError(TetherError):
    """Configuration-related errors."""

    pass


class LLMError(TetherError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (non-2xx status, transport failures)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GenerationFailedError(TetherError):
    """The language model could not produce a reply for this turn."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class InvalidResponseFormatError(TetherError):
    """Model output could not be parsed into any known shape."""

    pass


class ToolError(TetherError):
    """Tool execution errors."""

    pass


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class InvalidToolParamsError(ToolError):
    """Tool parameters failed schema validation."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Invalid parameters for tool '{tool_name}': {message}")
        self.tool_name = tool_name


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class PermissionDeniedError(ToolError):
    """Tool execution refused by policy or by the user."""

    def __init__(self, tool_name: str, reason: str = "permission denied for tool execution"):
        super().__init__(f"Tool '{tool_name}' blocked: {reason}")
        self.tool_name = tool_name
        self.reason = reason
