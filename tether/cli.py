"""Terminal UI for Tether."""

import asyncio
import json
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from tether.config import get_config
from tether.logging import get_logger
from tether.permissions import PermissionRequest, PermissionResponse

log = get_logger(__name__)

HELP_TEXT = """Commands:
  /help                     - Show this help message
  /clear                    - Clear the conversation (system prompt is kept)
  /model [NAME]             - Show or change the model
  /temperature X            - Change sampling temperature
  /permissions [TOOL LEVEL] - Show permission levels, or set one
                              (always_ask, ask_once, never_ask)
  /exit                     - Quit"""

# Approval answers: (granted, remember)
_APPROVAL_CHOICES = {
    "y": (True, False),
    "n": (False, False),
    "a": (True, True),
    "d": (False, True),
}


class TerminalUI:
    """Terminal UI using Rich."""

    def __init__(self, console: Console | None = None):
        self.config = get_config()
        colors = bool(self.config.ui.colors)
        self.console = console or Console(
            highlight=False,
            no_color=not colors,
            color_system="auto" if colors else None,
        )

    def print_welcome(self) -> None:
        """Print welcome message."""
        self.console.print(
            Panel(
                "Console agent for local models.\nType '/help' for commands.",
                title="Tether",
                expand=False,
            )
        )

    def print_help(self) -> None:
        self.console.print(HELP_TEXT, markup=False)

    def print_message(self, role: str, content: str) -> None:
        """Print a message with a role prefix."""
        styles = {
            "user": "bold cyan",
            "assistant": "bold green",
            "system": "bold magenta",
            "tool": "bold yellow",
        }
        style = styles.get(role, "bold")
        self.console.print(f"[{style}]\\[{role.upper()}][/{style}] {escape(content)}")

    def print_error(self, error: str) -> None:
        self.console.print(f"[red]Error:[/red] {escape(error)}")

    def print_warning(self, warning: str) -> None:
        self.console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")

    def print_success(self, message: str) -> None:
        self.console.print(f"[green]OK:[/green] {escape(message)}")

    def print_log_line(self, line: str) -> None:
        """Sink for structured log lines while the UI owns the terminal."""
        self.console.print(escape(line), style="dim")

    def print_tokens(self, usage: dict[str, int]) -> None:
        prompt_tokens = int(usage.get("prompt_tokens", 0))
        completion_tokens = int(usage.get("completion_tokens", 0))
        self.console.print(
            f"Tokens: {prompt_tokens} + {completion_tokens} = {prompt_tokens + completion_tokens}",
            style="dim",
        )

    def print_tool_call(self, tool_name: str, arguments: dict[str, Any]) -> None:
        args = json.dumps(arguments, default=str)
        self.console.print(f"[bold yellow]\\[TOOL][/bold yellow] {escape(tool_name)}: {escape(args)}")

    def print_tool_result(self, tool_name: str, result: str) -> None:
        """Print a shortened tool result."""
        result_text = result[:200] + "..." if len(result) > 200 else result
        self.console.print(f"[yellow]\\[TOOL RESULT][/yellow] {escape(tool_name)}: {escape(result_text)}")

    def show_tool_output(self, tool_name: str, arguments: dict[str, Any], output: str) -> None:
        """Agent callback: show each executed tool call when enabled."""
        if not self.config.ui.show_tool_calls:
            return
        self.print_tool_call(tool_name, arguments)
        self.print_tool_result(tool_name, output)

    def set_runtime_status(self, status: str) -> None:
        log.debug("Runtime status", status=status)

    def print_permissions(self, snapshot: dict[str, dict[str, Any]]) -> None:
        table = Table(title="Tool permissions")
        table.add_column("Tool")
        table.add_column("Level")
        table.add_column("Remembered", justify="right")
        for name, info in snapshot.items():
            table.add_row(name, str(info["level"]), str(info["remembered"]))
        self.console.print(table)

    def prompt(self, prompt_text: str = "> ") -> str:
        """Prompt for input."""
        return self.console.input(prompt_text)

    def _ask_approval_blocking(self, request: PermissionRequest) -> PermissionResponse:
        body = request.description
        if request.tool_name not in ("execute", "fileRead", "fileWrite", "listFiles"):
            body += "\n" + json.dumps(request.params, indent=2, default=str)
        self.console.print(Panel(escape(body), title=f"Permission: {request.tool_name}", expand=False))
        choice = Prompt.ask(
            escape("Allow? [y]es / [n]o / [a]lways allow / [d]on't ever allow"),
            choices=list(_APPROVAL_CHOICES),
            default="n",
            console=self.console,
            show_choices=False,
        )
        granted, remember = _APPROVAL_CHOICES[choice]
        return PermissionResponse(granted=granted, remember=remember)

    async def ask_approval(self, request: PermissionRequest) -> PermissionResponse:
        """Approval callback; reads the answer off the event loop thread."""
        return await asyncio.to_thread(self._ask_approval_blocking, request)

    def handle_special_command(self, cmd: str) -> str | None:
        """Translate slash commands into actions.

        Returns the input unchanged when it is not a command, an action
        string such as ``CLEAR`` or ``MODEL qwen2.5`` for commands the
        caller must act on, or None when the command was handled here.
        """
        cmd = cmd.strip()

        if not cmd.startswith("/"):
            return cmd

        parts = cmd.split(None, 1)
        command = parts[0].lower()
        args = parts[1].strip() if len(parts) > 1 else ""

        if command in ("/help", "/h", "/?"):
            self.print_help()
            return None
        elif command == "/clear":
            return "CLEAR"
        elif command == "/model":
            return f"MODEL {args}".strip()
        elif command == "/temperature":
            if not args:
                self.print_error("Usage: /temperature X")
                return None
            return f"TEMPERATURE {args}"
        elif command == "/permissions":
            return f"PERMISSIONS {args}".strip()
        elif command in ("/exit", "/quit", "/q"):
            return "EXIT"
        else:
            self.print_error(f"Unknown command: {command}")
            return None


# Global UI instance
_ui: TerminalUI | None = None


def get_ui() -> TerminalUI:
    """Get the global UI instance."""
    global _ui
    if _ui is None:
        _ui = TerminalUI()
    return _ui


def set_ui(ui: TerminalUI) -> None:
    """Set the global UI instance."""
    global _ui
    _ui = ui
