"""Conversation message types and parameter value handling."""

import copy
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, model_validator

ParamValue = Union[str, bool, int, float, list["ParamValue"], dict[str, "ParamValue"]]

_INT_RE = re.compile(r"^-?\d+$")
_FLOAT_RE = re.compile(r"^-?\d+\.\d+$")


def coerce_scalar(text: str) -> ParamValue | None:
    """Coerce XML character data into a typed scalar.

    `true`/`false` become booleans, integer and decimal literals become
    numbers, anything else is returned trimmed. Empty text yields None.
    """
    value = str(text or "").strip()
    if not value:
        return None
    if value in ("true", "false"):
        return value == "true"
    if _INT_RE.match(value):
        return int(value)
    if _FLOAT_RE.match(value):
        return float(value)
    return value


def normalize_value(value: Any) -> ParamValue | None:
    """Map an arbitrary decoded value onto the ParamValue union."""
    if value is None:
        return None
    if isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, dict):
        return {str(k): normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [normalize_value(item) for item in value]
    return str(value)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Role(str, Enum):
    """Speaker of a conversation turn."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation decoded from model text."""

    tool_name: str
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        name = str(self.tool_name or "").strip()
        if not name:
            raise ValueError("Tool call requires a tool name")
        object.__setattr__(self, "tool_name", name)
        params = normalize_value(copy.deepcopy(dict(self.params or {})))
        object.__setattr__(self, "params", params)


class ToolResult(BaseModel):
    """Outcome of executing a tool call."""

    result: Any = None
    error: str | None = None

    @model_validator(mode="after")
    def _normalize_error(self) -> "ToolResult":
        """Treat blank error text as no error."""
        if self.error is not None and not self.error.strip():
            self.error = None
        return self

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class Message:
    """One turn in the conversation."""

    role: Role
    content: str
    tool_call: ToolCall | None = None
    tool_result: ToolResult | None = None
    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", Role(self.role))
        if self.tool_call is not None and self.tool_result is not None:
            raise ValueError("Message may carry a tool call or a tool result, not both")
        if self.role is Role.TOOL and self.tool_result is None:
            raise ValueError("Tool messages must carry a tool result")
