import io

import httpx
import pytest
from rich.console import Console
from typer.testing import CliRunner

from tether.cli import TerminalUI
from tether.config import Config
from tether.llm import OllamaProvider
from tether.main import app, build_agent, handle_action
from tether.permissions import PermissionLevel


def _ui() -> tuple[TerminalUI, io.StringIO]:
    buffer = io.StringIO()
    return TerminalUI(console=Console(file=buffer, width=200, color_system=None)), buffer


def _agent(ui: TerminalUI, models: list[str] | None = None):
    agent = build_agent(Config(), ui)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"models": [{"name": name} for name in models or []]})

    agent.provider = OllamaProvider(transport=httpx.MockTransport(handler))
    return agent


def test_build_agent_wires_builtin_tools_and_ui_callbacks():
    ui, _ = _ui()

    agent = build_agent(Config(), ui)

    assert agent.tools.list_tools() == ["execute", "fileRead", "fileWrite", "listFiles"]
    assert agent.status_callback == ui.set_runtime_status
    assert agent.tool_output_callback == ui.show_tool_output


@pytest.mark.asyncio
async def test_exit_action_stops_session():
    ui, _ = _ui()

    assert await handle_action("EXIT", _agent(ui), ui) is False


@pytest.mark.asyncio
async def test_model_and_temperature_actions():
    ui, buffer = _ui()
    agent = _agent(ui, models=["llama3.2:latest"])

    assert await handle_action("MODEL mistral", agent, ui) is True
    assert agent.model == "mistral"

    await handle_action("MODEL", agent, ui)
    assert "Current model: mistral" in buffer.getvalue()
    assert "Available: llama3.2:latest" in buffer.getvalue()

    await handle_action("TEMPERATURE 0.25", agent, ui)
    assert agent.temperature == 0.25

    await handle_action("TEMPERATURE warm", agent, ui)
    assert "Invalid temperature: warm" in buffer.getvalue()
    assert agent.temperature == 0.25


@pytest.mark.asyncio
async def test_permissions_action_sets_and_lists_levels():
    ui, buffer = _ui()
    agent = _agent(ui)

    await handle_action("PERMISSIONS execute never_ask", agent, ui)
    assert agent.permissions.get_policy("execute").level is PermissionLevel.NEVER_ASK

    await handle_action("PERMISSIONS execute sometimes", agent, ui)
    assert "Unknown permission level" in buffer.getvalue()

    await handle_action("PERMISSIONS", agent, ui)
    assert "never_ask" in buffer.getvalue()


@pytest.mark.asyncio
async def test_clear_action_keeps_system_prompt():
    ui, buffer = _ui()
    agent = _agent(ui)
    agent.context.add_user_message("hello")

    await handle_action("CLEAR", agent, ui)

    assert len(agent.context) == 1
    assert "Conversation cleared" in buffer.getvalue()


def test_version_command():
    result = CliRunner().invoke(app, ["version"])

    assert result.exit_code == 0
    assert "Tether v0.1.0" in result.output
