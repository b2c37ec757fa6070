"""Tests for CLI commands."""

from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from helibuffer.cli import main
from helibuffer.config import Config


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


def make_sim_config() -> Config:
    """Small stream: 10Hz, 20-sample packets, one-minute window."""
    config = Config()
    config.buffer.window_minutes = 1.0
    config.stream.sample_rate = 10.0
    config.stream.packet_samples = 20
    return config


class TestSimulateCommand:
    """Tests for the simulate command."""

    def test_simulate_prints_summary(self, runner: CliRunner) -> None:
        with (
            patch("helibuffer.config.Config.load", return_value=make_sim_config()),
            patch("helibuffer.logging.configure") as mock_configure,
        ):
            result = runner.invoke(main, ["simulate", "--seconds", "20"])

        assert result.exit_code == 0, result.output
        mock_configure.assert_called_once()
        assert "UW.JCW..EHZ" in result.output
        assert "capacity" in result.output
        assert "600" in result.output
        assert "late packets" in result.output
        assert "mean" in result.output
        assert "simulation done" in result.output
        assert "1 holes patched" in result.output

    def test_simulate_verbose_prints_promotions(self, runner: CliRunner) -> None:
        with (
            patch("helibuffer.config.Config.load", return_value=make_sim_config()),
            patch("helibuffer.logging.configure"),
        ):
            result = runner.invoke(main, ["simulate", "--seconds", "6", "--verbose"])

        assert result.exit_code == 0, result.output
        assert "promoted" in result.output

    def test_simulate_window_override(self, runner: CliRunner) -> None:
        """--window sets the buffer size in minutes."""
        with (
            patch("helibuffer.config.Config.load", return_value=make_sim_config()),
            patch("helibuffer.logging.configure"),
        ):
            result = runner.invoke(
                main, ["simulate", "--seconds", "20", "--window", "0.1", "--late-every", "0"]
            )

        assert result.exit_code == 0, result.output
        assert "60" in result.output

    def test_simulate_rejects_bad_window(self, runner: CliRunner) -> None:
        with (
            patch("helibuffer.config.Config.load", return_value=make_sim_config()),
            patch("helibuffer.logging.configure"),
        ):
            result = runner.invoke(main, ["simulate", "--window", "0"])

        assert result.exit_code == 1
        assert "--window must be > 0" in result.output

    def test_simulate_invalid_config(self, runner: CliRunner) -> None:
        with patch("helibuffer.config.Config.load", side_effect=ValueError("bad policy")):
            result = runner.invoke(main, ["simulate"])

        assert result.exit_code == 1
        assert "bad policy" in result.output


class TestConfigCommands:
    """Tests for config show/edit/reset."""

    def test_config_show(self, runner: CliRunner) -> None:
        with patch("helibuffer.config.Config.load", return_value=Config()):
            result = runner.invoke(main, ["config", "show"])

        assert result.exit_code == 0
        assert "[buffer]" in result.output
        assert "window_minutes = 60.0" in result.output
        assert "policy = warn" in result.output
        assert "station = JCW" in result.output

    def test_config_reset(self, runner: CliRunner, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("HOME", str(tmp_path))
        result = runner.invoke(main, ["config", "reset", "--yes"])

        config_path = tmp_path / ".config" / "helibuffer" / "config.toml"
        assert result.exit_code == 0
        assert config_path.exists()
        assert Config.load(config_path) == Config()

    def test_config_edit_creates_file(self, runner: CliRunner, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setenv("EDITOR", "vi")

        with patch("subprocess.run") as mock_run:
            result = runner.invoke(main, ["config", "edit"])

        config_path = tmp_path / ".config" / "helibuffer" / "config.toml"
        assert result.exit_code == 0
        assert config_path.exists()
        mock_run.assert_called_once_with(["vi", str(config_path)])
