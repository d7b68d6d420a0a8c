"""Tests for CLI commands."""

import logging
import os

import pytest
from typer.testing import CliRunner
from bitchat.cli.main import app
from bitchat.core.errors import NetworkError, StorageError


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def _restore_logging():
    """The CLI attaches handlers to the bitchat logger; drop them afterwards."""
    yield
    logging.getLogger("bitchat").handlers = []


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    """No user or project config files, no BITCHAT_* variables."""
    home, work = tmp_path / "home", tmp_path / "work"
    home.mkdir()
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)
    for name in [n for n in os.environ if n.startswith("BITCHAT_")]:
        monkeypatch.delenv(name)
    return work


@pytest.fixture
def export_file(handler, tmp_path):
    """An export_log() document with a nested cause."""
    handler.handle_error(NetworkError.offline({"component": "relay-pool"}))
    handler.handle_error(
        StorageError.write_failed("messages", cause=OSError("disk full")),
        context={"component": "message-store"},
    )
    path = tmp_path / "errors.json"
    path.write_text(handler.export_log(), encoding="utf-8")
    return path


def test_version(runner):
    """bitchat-errors version shows version."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.stdout


def test_verbose_flag(runner):
    result = runner.invoke(app, ["--verbose", "version"])
    assert result.exit_code == 0
    assert logging.getLogger("bitchat").handlers[0].level == logging.DEBUG


def test_codes_lists_everything(runner):
    result = runner.invoke(app, ["codes"])
    assert result.exit_code == 0
    assert "2014" in result.stdout
    assert "9003" in result.stdout


def test_codes_filtered_by_category(runner):
    result = runner.invoke(app, ["codes", "--category", "crypto"])
    assert result.exit_code == 0
    assert "3007" in result.stdout
    assert "2014" not in result.stdout


def test_codes_unknown_category(runner):
    result = runner.invoke(app, ["codes", "--category", "weather"])
    assert result.exit_code == 1
    assert "Unknown category" in result.stdout


@pytest.mark.parametrize("code", ["2014", "relay_rate_limited", "RELAY_RATE_LIMITED"])
def test_classify(runner, code):
    result = runner.invoke(app, ["classify", code])
    assert result.exit_code == 0
    assert "RELAY_RATE_LIMITED (2014)" in result.stdout
    assert "Transient:     yes" in result.stdout
    assert "30000ms" in result.stdout


def test_classify_non_transient(runner):
    result = runner.invoke(app, ["classify", "3000"])
    assert result.exit_code == 0
    assert "Transient:     no" in result.stdout
    assert "1000ms" in result.stdout


def test_classify_unknown_code(runner):
    result = runner.invoke(app, ["classify", "7777"])
    assert result.exit_code == 1
    assert "Unknown error code" in result.stdout


def test_inspect(runner, export_file, handler):
    result = runner.invoke(app, ["inspect", str(export_file)])
    assert result.exit_code == 0
    assert handler.session_id in result.stdout
    assert "Total errors: 2" in result.stdout
    assert "network" in result.stdout
    assert "storage" in result.stdout


def test_inspect_missing_file(runner, tmp_path):
    result = runner.invoke(app, ["inspect", str(tmp_path / "nope.json")])
    assert result.exit_code == 1
    assert "Cannot read" in result.stdout


def test_inspect_not_an_export(runner, tmp_path):
    path = tmp_path / "other.json"
    path.write_text('{"hello": "world"}', encoding="utf-8")

    result = runner.invoke(app, ["inspect", str(path)])
    assert result.exit_code == 1
    assert "Not an error log export" in result.stdout


def test_show(runner, export_file, handler):
    entry = handler.get_log()[0]

    result = runner.invoke(app, ["show", str(export_file), entry.id])
    assert result.exit_code == 0
    assert "StorageError" in result.stdout
    assert "caused by:" in result.stdout
    assert "disk full" in result.stdout


def test_show_unknown_id(runner, export_file):
    result = runner.invoke(app, ["show", str(export_file), "err_missing"])
    assert result.exit_code == 1
    assert "No entry" in result.stdout


def test_config_shows_effective_values(runner, monkeypatch):
    monkeypatch.setenv("BITCHAT_RETRY_MAX_ATTEMPTS", "7")

    result = runner.invoke(app, ["config"])
    assert result.exit_code == 0
    assert '"max_attempts": 7' in result.stdout
    assert '"max_log_size": 100' in result.stdout


def test_log_level_from_project_config(runner, _isolated_config):
    (_isolated_config / "bitchat.toml").write_text('[logging]\nlevel = "info"\n', encoding="utf-8")

    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert logging.getLogger("bitchat").handlers[0].level == logging.INFO


def test_invalid_config_exits(runner, monkeypatch):
    monkeypatch.setenv("BITCHAT_RETRY_MAX_ATTEMPTS", "0")

    result = runner.invoke(app, ["version"])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.stdout


def test_classify_help_example_is_a_real_code(runner):
    result = runner.invoke(app, ["classify", "--help"])
    assert result.exit_code == 0
    assert "2014" in result.stdout

    example = runner.invoke(app, ["classify", "2014"])
    assert example.exit_code == 0
