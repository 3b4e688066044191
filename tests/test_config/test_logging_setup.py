import json

import pytest
import structlog

import tether.config as config_module
import tether.logging as logging_module
from tether.config import Config
from tether.logging import _LineSinkStream, configure_logging, get_logger, set_log_sink


@pytest.fixture
def restore_logging(monkeypatch):
    monkeypatch.setattr(config_module, "_config", None)
    yield
    set_log_sink(None)
    structlog.reset_defaults()


def test_line_sink_stream_joins_partial_writes():
    lines: list[str] = []
    stream = _LineSinkStream(lines.append)

    stream.write("first li")
    stream.write("ne\nsecond\n\nthi")
    assert lines == ["first line", "second"]

    stream.flush()
    assert lines == ["first line", "second", "thi"]
    stream.flush()
    assert lines == ["first line", "second", "thi"]


def test_configured_json_logs_reach_sink(restore_logging):
    config_module.set_config(Config(logging={"format": "json", "level": "INFO"}))
    lines: list[str] = []
    set_log_sink(lines.append)

    configure_logging()
    log = get_logger("tether.test")
    log.debug("hidden")
    log.info("tool finished", tool="execute")

    assert len(lines) == 1
    event = json.loads(lines[0])
    assert event["event"] == "tool finished"
    assert event["tool"] == "execute"
    assert event["level"] == "info"


def test_level_argument_overrides_config(restore_logging):
    config_module.set_config(Config(logging={"format": "json", "level": "WARNING"}))
    lines: list[str] = []
    set_log_sink(lines.append)

    configure_logging("debug")
    get_logger("tether.test").debug("visible")

    assert [json.loads(line)["event"] for line in lines] == ["visible"]


@pytest.mark.parametrize(
    ("name", "expected"),
    [("debug", 10), ("WARNING", 30), (None, 20), ("chatty", 20)],
)
def test_resolve_level(name, expected):
    assert logging_module._resolve_level(name) == expected
