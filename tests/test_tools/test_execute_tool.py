import pytest

from tether.config import Config
from tether.exceptions import InvalidToolParamsError, ToolExecutionError
from tether.tools.execute import (
    ExecuteTool,
    base_commands,
    find_blocked_pattern,
    split_command_segments,
)


def test_split_command_segments_on_operators():
    assert split_command_segments("make build && make test | tee out; echo 'a && b'") == [
        ["make", "build"],
        ["make", "test"],
        ["tee", "out"],
        ["echo", "a && b"],
    ]


def test_base_commands_skip_wrappers_and_assignments():
    assert base_commands("FOO=1 sudo /usr/bin/python x.py && ls | grep y") == ["python", "ls", "grep"]


@pytest.mark.parametrize(
    ("command", "expected"),
    [
        ("rm -rf /", "rm -rf /"),
        ("rm   -rf   /", "rm -rf /"),
        ("sudo mkfs.ext4 /dev/sda1", "mkfs"),
        ("ls && mkfs /dev/sdb", "mkfs"),
        ("ls -la", None),
        ("git status", None),
    ],
)
def test_find_blocked_pattern(command, expected):
    blocked = Config().tools.execute.blocked

    assert find_blocked_pattern(command, blocked) == expected


@pytest.mark.asyncio
async def test_execute_captures_stdout():
    result = await ExecuteTool(config=Config()).execute(command="echo hello")

    assert result["command"] == "echo hello"
    assert result["stdout"] == "hello"
    assert result["stderr"] == ""
    assert result["exit_code"] == 0
    assert result["success"] is True
    assert result["duration_ms"] >= 0


@pytest.mark.asyncio
async def test_execute_reports_non_zero_exit_without_raising():
    result = await ExecuteTool(config=Config()).execute(command="echo oops >&2; exit 3")

    assert result["exit_code"] == 3
    assert result["stderr"] == "oops"
    assert result["error"] == "command exited with code 3"
    assert "success" not in result


@pytest.mark.asyncio
async def test_execute_blocks_configured_patterns():
    tool = ExecuteTool(config=Config(tools={"execute": {"blocked": ["shutdown"]}}))

    with pytest.raises(ToolExecutionError, match="blocked pattern: shutdown"):
        await tool.execute(command="sudo shutdown -h now")


@pytest.mark.asyncio
async def test_execute_rejects_empty_and_unbalanced_commands():
    tool = ExecuteTool(config=Config())

    with pytest.raises(InvalidToolParamsError, match="empty"):
        await tool.execute(command="   ")
    with pytest.raises(InvalidToolParamsError, match="not parseable"):
        await tool.execute(command="echo 'unterminated")
    with pytest.raises(InvalidToolParamsError, match="must be a string"):
        await tool.execute(command=42)


@pytest.mark.asyncio
async def test_execute_timeout_is_reported_in_result():
    result = await ExecuteTool(config=Config()).execute(command="sleep 5", timeout=1)

    assert result["timed_out"] is True
    assert result["error"] == "command timed out after 1s"


@pytest.mark.asyncio
async def test_execute_truncates_long_output():
    tool = ExecuteTool(config=Config(tools={"execute": {"max_output_chars": 5}}))

    result = await tool.execute(command="echo abcdefghij")

    assert result["stdout"] == "abcde\n... [truncated, 10 total chars]"


def test_tool_timeout_follows_config():
    tool = ExecuteTool(config=Config(tools={"execute": {"timeout": 90}}))

    assert tool.timeout_seconds == 90.0
