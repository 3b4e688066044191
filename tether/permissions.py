"""Per-tool execution permissions and remembered approval decisions."""

import asyncio
import copy
import inspect
import json
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from tether.logging import get_logger

log = get_logger(__name__)


class PermissionLevel(str, Enum):
    """How often a tool needs live approval."""

    ALWAYS_ASK = "always_ask"
    ASK_ONCE = "ask_once"
    NEVER_ASK = "never_ask"

    @classmethod
    def parse(cls, value: "PermissionLevel | str") -> "PermissionLevel":
        """Parse config spellings such as ``ask-once`` or ``AskOnce``."""
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip()
        normalized = raw.replace("-", "_").lower()
        if normalized in ("alwaysask", "askonce", "neverask"):
            normalized = normalized[:-3] + "_ask"
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown permission level: {raw!r}") from None


DEFAULT_LEVELS: dict[str, PermissionLevel] = {
    "fileRead": PermissionLevel.NEVER_ASK,
    "listFiles": PermissionLevel.NEVER_ASK,
    "fileWrite": PermissionLevel.ALWAYS_ASK,
    "execute": PermissionLevel.ALWAYS_ASK,
}
UNKNOWN_TOOL_LEVEL = PermissionLevel.ALWAYS_ASK


@dataclass
class PermissionPolicy:
    """Level for one tool plus decisions keyed by parameter signature."""

    level: PermissionLevel
    decisions: dict[str, bool] = field(default_factory=dict)


@dataclass(frozen=True)
class PermissionRequest:
    """What the approval callback is asked to decide on."""

    tool_name: str
    params: dict[str, Any]
    description: str
    requested_at: datetime
    tool: Any = None


@dataclass(frozen=True)
class PermissionResponse:
    granted: bool
    remember: bool = False


ApprovalCallback = Callable[
    [PermissionRequest],
    Union[PermissionResponse, Awaitable[PermissionResponse]],
]


def params_signature(params: dict[str, Any] | None) -> str:
    """Canonical, key-order independent signature for a parameter map."""
    return json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)


def describe_action(tool_name: str, params: dict[str, Any] | None) -> str:
    """Human-readable summary shown when asking for approval."""
    params = params or {}
    if tool_name == "execute":
        return f"Execute shell command: {params.get('command', '')}"
    if tool_name == "fileRead":
        return f"Read file: {params.get('file_path', '')}"
    if tool_name == "fileWrite":
        verb = "Append to file" if params.get("append") else "Write to file"
        return f"{verb}: {params.get('file_path', '')}"
    if tool_name == "listFiles":
        return f"List files in: {params.get('dir') or '.'}"
    return f"Execute tool: {tool_name}"


class PermissionManager:
    """Gate tool execution by policy and remembered user decisions.

    One lock protects the policy table. The approval callback is always
    called with the lock released, since it may wait on a human.
    """

    def __init__(
        self,
        overrides: dict[str, PermissionLevel | str] | None = None,
        approval_callback: ApprovalCallback | None = None,
    ):
        self._policies: dict[str, PermissionPolicy] = {}
        self._lock = threading.Lock()
        self._overrides: dict[str, PermissionLevel] = {}
        for tool_name, level in (overrides or {}).items():
            try:
                self._overrides[tool_name] = PermissionLevel.parse(level)
            except ValueError as e:
                log.warning("Ignoring invalid permission level", tool=tool_name, error=str(e))
        self._approval_callback = approval_callback

    @classmethod
    def from_config(cls, config, approval_callback: ApprovalCallback | None = None) -> "PermissionManager":
        return cls(overrides=config.permissions.tools, approval_callback=approval_callback)

    def set_approval_callback(self, callback: ApprovalCallback | None) -> None:
        self._approval_callback = callback

    def _default_level(self, tool_name: str) -> PermissionLevel:
        if tool_name in self._overrides:
            return self._overrides[tool_name]
        return DEFAULT_LEVELS.get(tool_name, UNKNOWN_TOOL_LEVEL)

    def _policy_locked(self, tool_name: str) -> PermissionPolicy:
        policy = self._policies.get(tool_name)
        if policy is None:
            policy = PermissionPolicy(level=self._default_level(tool_name))
            self._policies[tool_name] = policy
        return policy

    def get_policy(self, tool_name: str) -> PermissionPolicy:
        """Return a copy of the policy, creating the default on first access."""
        with self._lock:
            policy = self._policy_locked(tool_name)
            return PermissionPolicy(level=policy.level, decisions=dict(policy.decisions))

    def set_policy(self, tool_name: str, level: PermissionLevel | str) -> None:
        level = PermissionLevel.parse(level)
        with self._lock:
            self._policy_locked(tool_name).level = level
        log.info("Permission level updated", tool=tool_name, level=level.value)

    def remember(self, tool_name: str, params: dict[str, Any] | None, granted: bool) -> None:
        """Store a decision for this exact parameter signature."""
        signature = params_signature(params)
        with self._lock:
            self._policy_locked(tool_name).decisions[signature] = bool(granted)

    def forget(self, tool_name: str | None = None) -> None:
        """Drop remembered decisions for one tool, or for all tools."""
        with self._lock:
            if tool_name is None:
                for policy in self._policies.values():
                    policy.decisions.clear()
            elif tool_name in self._policies:
                self._policies[tool_name].decisions.clear()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Levels and remembered-decision counts for every known tool."""
        with self._lock:
            names = set(DEFAULT_LEVELS) | set(self._overrides) | set(self._policies)
            result = {}
            for name in sorted(names):
                policy = self._policies.get(name)
                level = policy.level if policy else self._default_level(name)
                result[name] = {
                    "level": level.value,
                    "remembered": len(policy.decisions) if policy else 0,
                }
            return result

    async def request_permission(
        self,
        tool_name: str,
        params: dict[str, Any] | None,
        tool: Any = None,
    ) -> bool:
        """Decide whether a tool call may run.

        Returns:
            True when execution is allowed.

        Raises:
            Whatever the approval callback raises; nothing is granted then.
        """
        params = params or {}
        signature = params_signature(params)
        with self._lock:
            policy = self._policy_locked(tool_name)
            level = policy.level
            remembered = policy.decisions.get(signature)

        if level is PermissionLevel.NEVER_ASK:
            return True
        if level is PermissionLevel.ASK_ONCE and remembered is not None:
            log.debug("Using remembered permission", tool=tool_name, granted=remembered)
            return remembered

        callback = self._approval_callback
        if callback is None:
            log.warning("No approval callback configured; denying", tool=tool_name)
            return False

        request = PermissionRequest(
            tool_name=tool_name,
            params=copy.deepcopy(dict(params)),
            description=describe_action(tool_name, params),
            requested_at=datetime.now(UTC),
            tool=tool,
        )
        if inspect.iscoroutinefunction(callback):
            response = await callback(request)
        else:
            # Sync callbacks may block on input; run them off the event loop.
            response = await asyncio.to_thread(callback, request)
        if inspect.isawaitable(response):
            response = await response

        granted = bool(response.granted)
        if response.remember:
            self.remember(tool_name, params, granted)
        log.info(
            "Permission decision",
            tool=tool_name,
            granted=granted,
            remembered=bool(response.remember),
        )
        return granted
