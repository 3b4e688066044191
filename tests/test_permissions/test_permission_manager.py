import asyncio

import pytest

from tether.config import Config
from tether.permissions import (
    PermissionLevel,
    PermissionManager,
    PermissionRequest,
    PermissionResponse,
    describe_action,
    params_signature,
)


class RecordingCallback:
    def __init__(self, *responses: PermissionResponse):
        self.responses = list(responses)
        self.requests: list[PermissionRequest] = []

    def __call__(self, request: PermissionRequest) -> PermissionResponse:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def test_default_levels():
    manager = PermissionManager()

    assert manager.get_policy("fileRead").level is PermissionLevel.NEVER_ASK
    assert manager.get_policy("listFiles").level is PermissionLevel.NEVER_ASK
    assert manager.get_policy("fileWrite").level is PermissionLevel.ALWAYS_ASK
    assert manager.get_policy("execute").level is PermissionLevel.ALWAYS_ASK
    assert manager.get_policy("somethingNew").level is PermissionLevel.ALWAYS_ASK


def test_config_overrides_default_levels():
    cfg = Config(permissions={"tools": {"execute": "ask_once", "fileRead": "always-ask"}})

    manager = PermissionManager.from_config(cfg)

    assert manager.get_policy("execute").level is PermissionLevel.ASK_ONCE
    assert manager.get_policy("fileRead").level is PermissionLevel.ALWAYS_ASK


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("always_ask", PermissionLevel.ALWAYS_ASK),
        ("ask-once", PermissionLevel.ASK_ONCE),
        ("NeverAsk", PermissionLevel.NEVER_ASK),
        (PermissionLevel.ASK_ONCE, PermissionLevel.ASK_ONCE),
    ],
)
def test_permission_level_parse(raw, expected):
    assert PermissionLevel.parse(raw) is expected


def test_permission_level_parse_rejects_unknown():
    with pytest.raises(ValueError):
        PermissionLevel.parse("sometimes")


@pytest.mark.asyncio
async def test_never_ask_skips_callback():
    callback = RecordingCallback(PermissionResponse(granted=False))
    manager = PermissionManager(approval_callback=callback)

    granted = await manager.request_permission("fileRead", {"file_path": "a.txt"})

    assert granted is True
    assert callback.requests == []


@pytest.mark.asyncio
async def test_always_ask_invokes_callback_every_time():
    callback = RecordingCallback(PermissionResponse(granted=True))
    manager = PermissionManager(approval_callback=callback)

    for _ in range(3):
        assert await manager.request_permission("execute", {"command": "ls"}) is True

    assert len(callback.requests) == 3
    request = callback.requests[0]
    assert request.tool_name == "execute"
    assert request.params == {"command": "ls"}
    assert request.description == "Execute shell command: ls"
    assert request.requested_at.tzinfo is not None


@pytest.mark.asyncio
async def test_ask_once_reuses_remembered_decision_for_same_signature():
    callback = RecordingCallback(PermissionResponse(granted=True, remember=True))
    manager = PermissionManager(approval_callback=callback)
    manager.set_policy("execute", PermissionLevel.ASK_ONCE)

    assert await manager.request_permission("execute", {"command": "ls", "timeout": 5}) is True
    assert await manager.request_permission("execute", {"timeout": 5, "command": "ls"}) is True
    assert len(callback.requests) == 1

    assert await manager.request_permission("execute", {"command": "pwd"}) is True
    assert len(callback.requests) == 2


@pytest.mark.asyncio
async def test_remembered_denial_is_returned_without_asking():
    callback = RecordingCallback(PermissionResponse(granted=False, remember=True))
    manager = PermissionManager(approval_callback=callback)
    manager.set_policy("fileWrite", "ask_once")

    assert await manager.request_permission("fileWrite", {"file_path": "x"}) is False
    assert await manager.request_permission("fileWrite", {"file_path": "x"}) is False
    assert len(callback.requests) == 1


@pytest.mark.asyncio
async def test_decision_remembered_under_always_ask_applies_after_downgrade():
    callback = RecordingCallback(PermissionResponse(granted=True, remember=True))
    manager = PermissionManager(approval_callback=callback)
    params = {"command": "make test"}

    assert await manager.request_permission("execute", params) is True
    assert await manager.request_permission("execute", params) is True
    assert len(callback.requests) == 2

    manager.set_policy("execute", PermissionLevel.ASK_ONCE)
    assert await manager.request_permission("execute", params) is True
    assert len(callback.requests) == 2


@pytest.mark.asyncio
async def test_async_callback_is_awaited():
    seen: list[str] = []

    async def callback(request: PermissionRequest) -> PermissionResponse:
        await asyncio.sleep(0)
        seen.append(request.description)
        return PermissionResponse(granted=True)

    manager = PermissionManager(approval_callback=callback)

    assert await manager.request_permission("fileWrite", {"file_path": "out.txt", "append": True}) is True
    assert seen == ["Append to file: out.txt"]


@pytest.mark.asyncio
async def test_callback_error_propagates_and_nothing_is_remembered():
    def callback(request: PermissionRequest) -> PermissionResponse:
        raise RuntimeError("terminal closed")

    manager = PermissionManager(approval_callback=callback)
    manager.set_policy("execute", "ask_once")

    with pytest.raises(RuntimeError, match="terminal closed"):
        await manager.request_permission("execute", {"command": "ls"})

    assert manager.get_policy("execute").decisions == {}


@pytest.mark.asyncio
async def test_missing_callback_denies():
    manager = PermissionManager()

    assert await manager.request_permission("execute", {"command": "ls"}) is False


@pytest.mark.asyncio
async def test_request_params_are_a_copy():
    captured: list[PermissionRequest] = []

    def callback(request: PermissionRequest) -> PermissionResponse:
        captured.append(request)
        request.params["command"] = "rm -rf /"
        return PermissionResponse(granted=True)

    manager = PermissionManager(approval_callback=callback)
    params = {"command": "ls"}

    await manager.request_permission("execute", params)

    assert params == {"command": "ls"}


def test_forget_and_snapshot():
    manager = PermissionManager()
    manager.remember("execute", {"command": "ls"}, True)
    manager.remember("fileWrite", {"file_path": "a"}, False)

    snapshot = manager.snapshot()
    assert snapshot["execute"] == {"level": "always_ask", "remembered": 1}
    assert snapshot["fileRead"] == {"level": "never_ask", "remembered": 0}

    manager.forget("execute")
    assert manager.get_policy("execute").decisions == {}
    assert len(manager.get_policy("fileWrite").decisions) == 1

    manager.forget()
    assert manager.get_policy("fileWrite").decisions == {}


def test_get_policy_returns_copy():
    manager = PermissionManager()
    policy = manager.get_policy("execute")
    policy.decisions["x"] = True
    policy.level = PermissionLevel.NEVER_ASK

    assert manager.get_policy("execute").decisions == {}
    assert manager.get_policy("execute").level is PermissionLevel.ALWAYS_ASK


def test_params_signature_is_key_order_independent():
    assert params_signature({"a": 1, "b": {"y": 2, "x": 1}}) == params_signature({"b": {"x": 1, "y": 2}, "a": 1})
    assert params_signature(None) == params_signature({})
    assert params_signature({"a": 1}) != params_signature({"a": "1"})


@pytest.mark.parametrize(
    ("tool", "params", "expected"),
    [
        ("execute", {"command": "ls -la"}, "Execute shell command: ls -la"),
        ("fileRead", {"file_path": "a.py"}, "Read file: a.py"),
        ("fileWrite", {"file_path": "b.py"}, "Write to file: b.py"),
        ("fileWrite", {"file_path": "b.py", "append": True}, "Append to file: b.py"),
        ("listFiles", {"dir": "src"}, "List files in: src"),
        ("listFiles", {}, "List files in: ."),
        ("calculator", {"x": 1}, "Execute tool: calculator"),
    ],
)
def test_describe_action(tool, params, expected):
    assert describe_action(tool, params) == expected
