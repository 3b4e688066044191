"""Shell command tool."""

import asyncio
import fnmatch
import os
import shlex
import time
from typing import Any

from tether.config import Config, get_config
from tether.exceptions import InvalidToolParamsError, ToolExecutionError
from tether.logging import get_logger
from tether.tools.registry import Tool

log = get_logger(__name__)

_SEPARATORS = {";", "&&", "||", "|", "&"}
_WRAPPERS = {"sudo", "command", "builtin", "nohup", "time", "env"}


def split_command_segments(command: str) -> list[list[str]]:
    """Tokenize a shell command into segments split on control operators.

    Raises:
        ValueError: on unbalanced quoting
    """
    lexer = shlex.shlex(command, posix=True, punctuation_chars=";&|")
    lexer.whitespace_split = True
    lexer.commenters = ""
    segments: list[list[str]] = [[]]
    for token in lexer:
        if token in _SEPARATORS:
            segments.append([])
        else:
            segments[-1].append(token)
    return [segment for segment in segments if segment]


def base_commands(command: str) -> list[str]:
    """Executable name of every segment, skipping wrappers and VAR=value prefixes."""
    result = []
    for segment in split_command_segments(command):
        for token in segment:
            if token in _WRAPPERS:
                continue
            name, sep, _ = token.partition("=")
            if sep and name.isidentifier():
                continue
            result.append(os.path.basename(token))
            break
    return result


def find_blocked_pattern(command: str, blocked: list[str]) -> str | None:
    """Return the first blocked pattern that matches, or None."""
    normalized = " ".join(command.split())
    try:
        bases = base_commands(command)
    except ValueError:
        bases = []
    for raw in blocked or []:
        pattern = str(raw or "").strip()
        if not pattern:
            continue
        if pattern in normalized:
            return pattern
        if " " not in pattern:
            for base in bases:
                if fnmatch.fnmatchcase(base, pattern) or fnmatch.fnmatchcase(base, f"{pattern}.*"):
                    return pattern
    return None


class ExecuteTool(Tool):
    """Run a shell command and capture its output."""

    name = "execute"
    description = "Executes a shell command and returns its output"
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute",
            },
            "timeout": {
                "type": "integer",
                "description": "Timeout in seconds (optional, default from config)",
            },
        },
        "required": ["command"],
    }

    def __init__(self, config: Config | None = None):
        self.config = config or get_config()
        self.timeout_seconds = float(self.config.tools.execute.timeout or 30)

    def _check_command(self, command: str) -> None:
        if not command.strip():
            raise InvalidToolParamsError(self.name, "command is empty")
        try:
            split_command_segments(command)
        except ValueError:
            raise InvalidToolParamsError(self.name, "command is not parseable")
        matched = find_blocked_pattern(command, self.config.tools.execute.blocked)
        if matched:
            log.warning("Blocked command", command=command, pattern=matched)
            raise ToolExecutionError(self.name, f"Command matches blocked pattern: {matched}")

    def _truncate(self, text: str) -> str:
        limit = int(self.config.tools.execute.max_output_chars or 0)
        if limit and len(text) > limit:
            return text[:limit] + f"\n... [truncated, {len(text)} total chars]"
        return text

    async def execute(self, command: str, timeout: int | None = None, **kwargs: Any) -> dict[str, Any]:
        """Execute a shell command.

        Args:
            command: Shell command to execute
            timeout: Optional timeout override in seconds

        Returns:
            Mapping with command, stdout, stderr, exit_code and duration_ms.
            A non-zero exit or timeout is reported in the mapping, not raised.
        """
        if not isinstance(command, str):
            raise InvalidToolParamsError(self.name, "command must be a string")
        self._check_command(command)

        timeout = max(1, int(timeout if timeout is not None else self.config.tools.execute.timeout))
        result: dict[str, Any] = {"command": command}

        log.info("Executing shell command", command=command, timeout=timeout)
        started = time.monotonic()
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=os.environ.copy(),
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            result.update(
                stdout="",
                stderr="",
                duration_ms=int((time.monotonic() - started) * 1000),
                timed_out=True,
                error=f"command timed out after {timeout}s",
            )
            return result
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        result["stdout"] = self._truncate(stdout.decode("utf-8", errors="replace").rstrip("\n"))
        result["stderr"] = self._truncate(stderr.decode("utf-8", errors="replace").rstrip("\n"))
        result["exit_code"] = process.returncode
        result["duration_ms"] = int((time.monotonic() - started) * 1000)
        if process.returncode == 0:
            result["success"] = True
        else:
            result["error"] = f"command exited with code {process.returncode}"
        return result
