# tests/test_logging.py
"""Tests for console helpers and structlog file logging."""

import json
import logging

import pytest
import structlog

from helibuffer import logging as hlog
from helibuffer.config import Config
from tests.conftest import make_buffer, make_segment


@pytest.fixture
def log_file(tmp_path):
    """Route structlog to a JSON-lines file under tmp_path."""
    path = tmp_path / "logs" / "helibuffer.log"
    hlog.configure(Config(), log_path=path)
    yield path
    root = logging.getLogger()
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)
    structlog.reset_defaults()


def read_events(path):
    for handler in logging.getLogger().handlers:
        handler.flush()
    return [json.loads(line) for line in path.read_text().splitlines() if line]


class TestConsole:
    """Tests for Rich console helpers."""

    def test_info_prints_level_and_message(self, capsys) -> None:
        hlog.info("buffer ready", hlog.Icon.OK)
        out = capsys.readouterr().out
        assert "[info]" in out
        assert "buffer ready" in out

    def test_warn_and_error_levels(self, capsys) -> None:
        hlog.warn("late packet")
        hlog.error("bad config")
        out = capsys.readouterr().out
        assert "[warn]" in out
        assert "[err]" in out

    def test_domain_helpers(self, capsys) -> None:
        hlog.hole_pending("UW.JCW..EHZ", "2024-01-23T08:53:20.250Z", 400)
        hlog.stream_opened("UW.JCW..EHZ", 360000, 100.0)
        hlog.config_created("/tmp/config.toml")
        out = capsys.readouterr().out
        assert "hole at 2024-01-23T08:53:20.250Z" in out
        assert "(400 samples)" in out
        assert "buffer ready" in out
        assert "360000 samples at 100Hz" in out
        assert "Created config at /tmp/config.toml" in out


class TestStructlogFile:
    """Tests for configure()."""

    def test_configure_creates_log_dir(self, log_file) -> None:
        assert log_file.parent.is_dir()

    def test_events_written_as_json(self, log_file) -> None:
        hlog.get_structlog().info("test_event", stream="UW.JCW..EHZ", samples=3)

        events = read_events(log_file)
        event = events[-1]
        assert event["event"] == "test_event"
        assert event["stream"] == "UW.JCW..EHZ"
        assert event["samples"] == 3
        assert event["level"] == "info"
        assert event["source"] == "helibuffer"
        assert "ts" in event

    def test_buffer_events_reach_file(self, log_file) -> None:
        buffer = make_buffer([1, 2, 3])
        buffer.add_segment(make_segment([10], start_index=5))
        buffer.add_segment(make_segment([9], start_index=1))

        names = [e["event"] for e in read_events(log_file)]
        assert "hole_opened" in names
        assert "segment_out_of_order" in names

    def test_debug_filtered(self, log_file) -> None:
        hlog.get_structlog().debug("noisy_event")
        names = [e["event"] for e in read_events(log_file)]
        assert "noisy_event" not in names
