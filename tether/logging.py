"""structlog setup shared by the agent loop, tools and console."""

import logging
import sys
from typing import Any, Callable, TextIO

import structlog

from tether.config import get_config

LineSink = Callable[[str], None]

_line_sink: LineSink | None = None


class _LineSinkStream:
    """Stream handed to structlog while the console UI owns the terminal.

    Rendered events arrive through ``write``; each complete line goes to the
    sink and a trailing fragment waits for the next write or ``flush``.
    """

    def __init__(self, sink: LineSink):
        self._sink = sink
        self._pending: list[str] = []

    def write(self, text: str) -> int:
        *complete, tail = text.split("\n")
        if complete:
            complete[0] = "".join(self._pending) + complete[0]
            self._pending = []
            for line in complete:
                if line:
                    self._sink(line)
        if tail:
            self._pending.append(tail)
        return len(text)

    def flush(self) -> None:
        if self._pending:
            line, self._pending = "".join(self._pending), []
            self._sink(line)


def set_log_sink(sink: LineSink | None) -> None:
    """Send rendered log lines to ``sink``; ``None`` restores stderr.

    Takes effect on the next ``configure_logging`` call.
    """
    global _line_sink
    _line_sink = sink


def _resolve_level(name: str | None) -> int:
    level = logging.getLevelName((name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _renderer(fmt: str, colors: bool) -> Any:
    if fmt == "console":
        return structlog.dev.ConsoleRenderer(colors=colors)
    return structlog.processors.JSONRenderer()


def _output_stream() -> TextIO | _LineSinkStream:
    return _LineSinkStream(_line_sink) if _line_sink else sys.stderr


def configure_logging(level: str | None = None) -> None:
    """Apply the ``logging`` config section; ``level`` overrides it (``--verbose``)."""
    config = get_config()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(config.logging.format, config.ui.colors),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _resolve_level(level or config.logging.level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=_output_stream()),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return structlog.get_logger(name) if name else structlog.get_logger()


log = get_logger(__name__)
