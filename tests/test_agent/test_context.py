import pytest

from tether.context import (
    DEFAULT_MAX_TOKENS,
    ConversationContext,
    estimate_message_tokens,
    estimate_value_tokens,
    format_tool_result,
)
from tether.messages import Message, Role, ToolCall, ToolResult


def test_non_positive_budget_uses_default():
    assert ConversationContext(max_tokens=0).max_tokens == DEFAULT_MAX_TOKENS
    assert ConversationContext(max_tokens=-5).max_tokens == DEFAULT_MAX_TOKENS


def test_token_estimates_follow_heuristic():
    assert estimate_value_tokens("abcdefgh") == 2
    assert estimate_value_tokens(7) == 5
    assert estimate_value_tokens(["abcd", True]) == 5 + 1 + 5
    assert estimate_value_tokens({"key": "abcd"}) == 10 + 3 + 1

    call_msg = Message(
        role=Role.ASSISTANT,
        content="abcd",
        tool_call=ToolCall(tool_name="run", params={"cmd": "abcdefgh"}),
    )
    assert estimate_message_tokens(call_msg) == 1 + 20 + 3 + 3 + 2

    result_msg = Message(
        role=Role.TOOL,
        content="",
        tool_result=ToolResult(result=None, error="bad"),
    )
    assert estimate_message_tokens(result_msg) == 20 + 3 + 5


def test_messages_accumulate_token_estimate():
    ctx = ConversationContext(max_tokens=1000)
    ctx.add_system_message("s" * 40)
    ctx.add_user_message("u" * 80)

    assert len(ctx) == 2
    assert ctx.current_tokens == 10 + 20


def test_truncation_keeps_system_messages_and_recent_order():
    ctx = ConversationContext(max_tokens=30)
    ctx.add_system_message("s" * 40)  # 10 tokens
    ctx.add_user_message("first " * 4)  # 6
    ctx.add_assistant_message("second " * 4)  # 7
    ctx.add_user_message("third " * 4)  # 6
    ctx.add_assistant_message("fourth " * 4)  # 7

    roles = [m.role for m in ctx.messages]
    contents = [m.content for m in ctx.messages]

    assert roles[0] is Role.SYSTEM
    assert contents[0] == "s" * 40
    assert contents[1:] == ["second " * 4, "third " * 4, "fourth " * 4]
    assert ctx.current_tokens <= ctx.max_tokens


def test_truncation_skips_oversized_message_but_keeps_older_ones():
    ctx = ConversationContext(max_tokens=40)
    ctx.add_system_message("sys")
    ctx.add_user_message("old " * 5)  # 5
    ctx.add_assistant_message("x" * 400)  # 100, never fits
    ctx.add_user_message("new " * 5)  # 5

    contents = [m.content for m in ctx.messages]

    assert contents == ["sys", "old " * 5, "new " * 5]


def test_system_messages_survive_when_budget_is_tiny():
    ctx = ConversationContext(max_tokens=5)
    ctx.add_system_message("a" * 40)
    ctx.add_system_message("b" * 40)
    ctx.add_user_message("hello there")

    roles = [m.role for m in ctx.messages]

    assert roles == [Role.SYSTEM, Role.SYSTEM]


def test_truncation_disabled_keeps_everything():
    ctx = ConversationContext(max_tokens=5, truncate_oldest=False)
    for idx in range(5):
        ctx.add_user_message(f"message number {idx}")

    assert len(ctx) == 5
    assert ctx.current_tokens > ctx.max_tokens


def test_clear_keeps_only_system_messages():
    ctx = ConversationContext()
    ctx.add_system_message("You are helpful.")
    ctx.add_user_message("hi")
    ctx.add_tool_call_message("listFiles", {"dir": "."})
    ctx.add_tool_result_message({"count": 0})
    ctx.add_system_message("Second rule.")
    ctx.add_assistant_message("done")

    ctx.clear()

    assert ctx.get_formatted_messages() == [
        {"role": "system", "content": "You are helpful."},
        {"role": "system", "content": "Second rule."},
    ]
    assert ctx.current_tokens == estimate_message_tokens(ctx.messages[0]) + estimate_message_tokens(
        ctx.messages[1]
    )


def test_tool_messages_are_formatted_for_the_model():
    ctx = ConversationContext()
    ctx.add_tool_call_message("execute", {"command": "ls"})
    ctx.add_tool_result_message({"stdout": "a.txt", "exit_code": 0})
    ctx.add_tool_result_message(None, RuntimeError("disk <full>"))

    formatted = ctx.get_formatted_messages()

    assert formatted[0] == {
        "role": "assistant",
        "content": "I'm using the execute tool.",
        "tool_call": {"name": "execute", "params": {"command": "ls"}},
    }
    assert formatted[1]["role"] == "tool"
    assert formatted[1]["content"] == (
        "<tool_result>\n  <exit_code>0</exit_code>\n  <stdout>a.txt</stdout>\n</tool_result>"
    )
    assert formatted[2]["content"] == "<tool_result>\n  <error>disk &lt;full&gt;</error>\n</tool_result>"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("plain text", "plain text"),
        (b"bytes", "bytes"),
        (None, ""),
        (True, "true"),
        (42, "42"),
        (["a", 1], '["a", 1]'),
    ],
)
def test_format_tool_result_scalars(value, expected):
    assert format_tool_result(ToolResult(result=value)) == expected


def test_format_tool_result_nested_mapping():
    rendered = format_tool_result(ToolResult(result={"files": ["a", "b"], "meta": {"n": 2}}))

    assert rendered.startswith("<tool_result>\n  <files>")
    assert '<item index="0">a</item>' in rendered
    assert '<item index="1">b</item>' in rendered
    assert "<n>2</n>" in rendered
    assert rendered.endswith("</tool_result>")


def test_message_invariants():
    with pytest.raises(ValueError):
        Message(role=Role.TOOL, content="missing result")
    with pytest.raises(ValueError):
        Message(
            role=Role.ASSISTANT,
            content="both",
            tool_call=ToolCall(tool_name="x"),
            tool_result=ToolResult(result=1),
        )
    with pytest.raises(ValueError):
        ToolCall(tool_name="   ")


def test_tool_call_params_are_copied():
    params = {"nested": {"value": 1}}
    call = ToolCall(tool_name="demo", params=params)
    params["nested"]["value"] = 2

    assert call.params == {"nested": {"value": 1}}


def test_blank_tool_error_counts_as_success():
    result = ToolResult(result="ok", error="   ")

    assert result.error is None
    assert result.success is True
