"""Token-bounded conversation history."""

import json
import threading
from typing import Any

from tether.logging import get_logger
from tether.messages import Message, Role, ToolCall, ToolResult

log = get_logger(__name__)

DEFAULT_MAX_TOKENS = 4000

# Fixed per-node overheads for the token heuristic.
_TOOL_CALL_OVERHEAD = 20
_TOOL_RESULT_OVERHEAD = 20
_MAP_OVERHEAD = 10
_LIST_OVERHEAD = 5
_SCALAR_COST = 5


def estimate_tokens(text: str) -> int:
    """Very rough token estimate: ~4 characters per token."""
    return len(text or "") // 4


def estimate_value_tokens(value: Any) -> int:
    """Estimate tokens for a structured value, recursing into containers."""
    if isinstance(value, str):
        return len(value) // 4
    if isinstance(value, bytes):
        return len(value) // 4
    if isinstance(value, dict):
        return _MAP_OVERHEAD + sum(len(str(k)) + estimate_value_tokens(v) for k, v in value.items())
    if isinstance(value, (list, tuple)):
        return _LIST_OVERHEAD + sum(estimate_value_tokens(item) for item in value)
    return _SCALAR_COST


def estimate_message_tokens(msg: Message) -> int:
    """Estimate the cost of one message including any tool payload."""
    tokens = estimate_tokens(msg.content)
    if msg.tool_call is not None:
        tokens += _TOOL_CALL_OVERHEAD + len(msg.tool_call.tool_name)
        for key, value in msg.tool_call.params.items():
            tokens += len(key) + estimate_value_tokens(value)
    if msg.tool_result is not None:
        tokens += _TOOL_RESULT_OVERHEAD + len(msg.tool_result.error or "")
        tokens += estimate_value_tokens(msg.tool_result.result)
    return tokens


def escape_xml(text: str) -> str:
    """Escape XML special characters."""
    return (
        str(text)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def format_xml_value(value: Any) -> str:
    """Render a value for inclusion inside an XML element."""
    if isinstance(value, str):
        return escape_xml(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        lines = ["\n"]
        for idx, item in enumerate(value):
            lines.append(f'    <item index="{idx}">{format_xml_value(item)}</item>\n')
        lines.append("  ")
        return "".join(lines)
    if isinstance(value, dict):
        lines = ["\n"]
        for key in sorted(value):
            lines.append(f"    <{key}>{format_xml_value(value[key])}</{key}>\n")
        lines.append("  ")
        return "".join(lines)
    return str(value)


def format_tool_result(result: ToolResult) -> str:
    """Render a tool result as conversable text for the model."""
    if result.error:
        return f"<tool_result>\n  <error>{escape_xml(result.error)}</error>\n</tool_result>"

    value = result.result
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, dict):
        lines = ["<tool_result>"]
        for key in sorted(value):
            lines.append(f"  <{key}>{format_xml_value(value[key])}</{key}>")
        lines.append("</tool_result>")
        return "\n".join(lines)
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value), default=str)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ConversationContext:
    """Ordered message history kept under an approximate token budget.

    System messages are never evicted. When the running estimate exceeds
    ``max_tokens`` the newest non-system messages that fit are kept and the
    rest are dropped, preserving chronological order.
    """

    def __init__(self, max_tokens: int = DEFAULT_MAX_TOKENS, truncate_oldest: bool = True):
        if max_tokens is None or max_tokens <= 0:
            max_tokens = DEFAULT_MAX_TOKENS
        self.max_tokens = int(max_tokens)
        self.truncate_oldest = truncate_oldest
        self.current_tokens = 0
        self._messages: list[Message] = []
        self._lock = threading.Lock()

    @property
    def messages(self) -> tuple[Message, ...]:
        """Snapshot of the current history."""
        with self._lock:
            return tuple(self._messages)

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def add_system_message(self, content: str) -> None:
        self.add_message(Message(role=Role.SYSTEM, content=content))

    def add_user_message(self, content: str) -> None:
        self.add_message(Message(role=Role.USER, content=content))

    def add_assistant_message(self, content: str) -> None:
        self.add_message(Message(role=Role.ASSISTANT, content=content))

    def add_tool_call_message(self, tool_name: str, params: dict[str, Any]) -> None:
        """Record that the assistant decided to use a tool."""
        call = ToolCall(tool_name=tool_name, params=params)
        self.add_message(
            Message(
                role=Role.ASSISTANT,
                content=f"I'm using the {call.tool_name} tool.",
                tool_call=call,
            )
        )

    def add_tool_result_message(self, result: Any, error: BaseException | str | None = None) -> None:
        """Record a tool outcome; ``error`` wins over ``result`` when set."""
        error_text = str(error) if error is not None else None
        self.add_message(
            Message(
                role=Role.TOOL,
                content="Tool execution result",
                tool_result=ToolResult(result=result, error=error_text),
            )
        )

    def add_message(self, msg: Message) -> None:
        """Append a message, update the estimate, and truncate if over budget."""
        tokens = estimate_message_tokens(msg)
        with self._lock:
            log.debug(
                "Adding message to context",
                role=msg.role.value,
                tokens=tokens,
                current_tokens=self.current_tokens,
            )
            self._messages.append(msg)
            self.current_tokens += tokens
            if self.truncate_oldest:
                self._truncate_locked()

    def clear(self) -> None:
        """Drop every non-system message."""
        with self._lock:
            kept = [msg for msg in self._messages if msg.role is Role.SYSTEM]
            self._messages = kept
            self.current_tokens = sum(estimate_message_tokens(msg) for msg in kept)

    def truncate_if_needed(self) -> None:
        with self._lock:
            self._truncate_locked()

    def _truncate_locked(self) -> None:
        if self.current_tokens <= self.max_tokens:
            return

        system_messages = [msg for msg in self._messages if msg.role is Role.SYSTEM]
        total = sum(estimate_message_tokens(msg) for msg in system_messages)

        retained: list[Message] = []
        for msg in reversed(self._messages):
            if msg.role is Role.SYSTEM:
                continue
            cost = estimate_message_tokens(msg)
            if total + cost > self.max_tokens:
                # Older, smaller messages may still fit.
                continue
            retained.append(msg)
            total += cost
        retained.reverse()

        dropped = len(self._messages) - len(system_messages) - len(retained)
        log.debug(
            "Truncated conversation context",
            dropped=dropped,
            tokens_before=self.current_tokens,
            tokens_after=total,
            max_tokens=self.max_tokens,
        )
        self._messages = system_messages + retained
        self.current_tokens = total

    def get_formatted_messages(self) -> list[dict[str, Any]]:
        """Return role/content pairs ready for the language model client."""
        formatted: list[dict[str, Any]] = []
        for msg in self.messages:
            entry: dict[str, Any] = {"role": msg.role.value}
            if msg.tool_call is not None:
                entry["content"] = msg.content
                entry["tool_call"] = {
                    "name": msg.tool_call.tool_name,
                    "params": dict(msg.tool_call.params),
                }
            elif msg.tool_result is not None:
                entry["content"] = format_tool_result(msg.tool_result)
            else:
                entry["content"] = msg.content
            formatted.append(entry)
        return formatted
