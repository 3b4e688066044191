"""Main entry point for Tether."""

import asyncio
import sys
from pathlib import Path

import typer

from tether.agent import Agent
from tether.cli import TerminalUI, get_ui
from tether.config import Config, set_config
from tether.exceptions import ConfigurationError, GenerationFailedError, TetherError
from tether.llm import OllamaProvider, create_provider_from_config
from tether.logging import configure_logging, log, set_log_sink
from tether.permissions import PermissionManager
from tether.tools import create_default_registry

app = typer.Typer(help="Tether - a console agent that connects a local model to tools")


def build_agent(cfg: Config, ui: TerminalUI) -> Agent:
    """Wire provider, tools and permissions into an agent."""
    provider = create_provider_from_config(cfg)
    tools = create_default_registry(cfg)
    permissions = PermissionManager.from_config(cfg, approval_callback=ui.ask_approval)
    return Agent(
        provider=provider,
        tools=tools,
        permissions=permissions,
        config=cfg,
        status_callback=ui.set_runtime_status,
        tool_output_callback=ui.show_tool_output,
    )


async def handle_action(action: str, agent: Agent, ui: TerminalUI) -> bool:
    """Apply a slash-command action. Returns False when the session should end."""
    name, _, arg = action.partition(" ")
    arg = arg.strip()

    if name == "EXIT":
        return False
    if name == "CLEAR":
        agent.clear_context()
        ui.print_success("Conversation cleared")
    elif name == "MODEL":
        if arg:
            agent.set_model(arg)
            ui.print_success(f"Model set to {arg}")
        else:
            ui.print_message("system", f"Current model: {agent.model}")
            if isinstance(agent.provider, OllamaProvider):
                try:
                    models = await agent.provider.list_models()
                except TetherError as e:
                    ui.print_warning(f"Could not list models: {e}")
                else:
                    if models:
                        ui.print_message("system", "Available: " + ", ".join(models))
    elif name == "TEMPERATURE":
        try:
            agent.set_temperature(float(arg))
        except ValueError:
            ui.print_error(f"Invalid temperature: {arg}")
        else:
            ui.print_success(f"Temperature set to {agent.temperature}")
    elif name == "PERMISSIONS":
        parts = arg.split()
        if len(parts) == 2:
            try:
                agent.permissions.set_policy(parts[0], parts[1])
            except ValueError as e:
                ui.print_error(str(e))
            else:
                ui.print_success(f"{parts[0]} is now {parts[1]}")
        elif parts:
            ui.print_error("Usage: /permissions [TOOL LEVEL]")
        else:
            ui.print_permissions(agent.permissions.snapshot())
    return True


async def run_interactive(cfg: Config) -> None:
    """Run the interactive agent loop."""
    ui = get_ui()
    agent = build_agent(cfg, ui)
    ui.print_welcome()

    try:
        while True:
            try:
                user_input = await asyncio.to_thread(ui.prompt, "> ")
            except (KeyboardInterrupt, EOFError):
                log.info("Input closed")
                break

            result = ui.handle_special_command(user_input)
            if not result:
                continue
            if result != user_input.strip():
                if not await handle_action(result, agent, ui):
                    break
                continue

            try:
                answer = await agent.process_message(result)
            except GenerationFailedError as e:
                ui.print_error(str(e))
                continue
            ui.print_message("assistant", answer)
            ui.print_tokens(agent.last_usage)
    finally:
        await agent.provider.close()


def main(config: str = "", model: str = "", verbose: bool = False) -> None:
    """Start an interactive Tether session."""
    try:
        cfg = Config.from_yaml(Path(config)) if config else Config.load()
    except (ConfigurationError, OSError, ValueError) as e:
        print(f"Failed to load config {config or 'file'}: {e}", file=sys.stderr)
        sys.exit(1)

    if model:
        cfg.model.model = model
    set_config(cfg)

    ui = get_ui()
    set_log_sink(ui.print_log_line)
    configure_logging("DEBUG" if verbose else None)

    try:
        asyncio.run(run_interactive(cfg))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)


@app.command()
def run(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Start an interactive session."""
    main(config, model, verbose)


@app.command()
def version() -> None:
    """Show version information."""
    from tether import __version__

    print(f"Tether v{__version__}")


if __name__ == "__main__":
    app()
