"""
CLI grammar and command behaviour with the runtime services mocked out.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from typer.testing import CliRunner

from echoplayer.cli import core
from echoplayer.cli.main import app

runner = CliRunner()

COMMANDS = [
    "binaries", "install", "uninstall", "bootstrap", "run", "serve",
    "start", "stop", "restart", "status", "doctor", "version",
]


# --- Fixtures ---

@pytest.fixture(autouse=True)
def quiet_cli(mocker):
    """No log files or console handlers, fresh services per test."""
    mocker.patch("echoplayer.cli.main.setup_default_logging")
    core.reset_services()
    yield
    core.reset_services()


# --- Grammar ---

def test_help_lists_every_command():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in COMMANDS:
        assert command in result.stdout


@pytest.mark.parametrize("command", COMMANDS)
def test_command_help(command):
    result = runner.invoke(app, [command, "--help"])
    assert result.exit_code == 0


def test_unknown_command_fails():
    result = runner.invoke(app, ["frobnicate"])
    assert result.exit_code != 0


def test_install_rejects_unknown_tool():
    result = runner.invoke(app, ["install", "vlc"])
    assert result.exit_code != 0


# --- Local commands ---

def test_version(mocker):
    mocker.patch("importlib.metadata.version", return_value="0.1.0")
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "echoplayer-runtime version: 0.1.0" in result.stdout


def test_binaries_lists_current_platform():
    result = runner.invoke(app, ["binaries"])
    assert result.exit_code == 0
    assert "ffmpeg" in result.stdout
    assert "uv" in result.stdout


def test_uninstall_missing_binary():
    result = runner.invoke(app, ["uninstall", "ffprobe"])
    assert result.exit_code == 0
    assert "ffprobe is not installed." in result.stdout


def test_bootstrap_reports_failure(mocker):
    services = MagicMock()
    services.bootstrap.initialize = AsyncMock(return_value=False)
    mocker.patch("echoplayer.cli.core.get_services", return_value=services)

    result = runner.invoke(app, ["bootstrap", "--python", "3.11"])

    assert result.exit_code == 1
    assert "bootstrap failed" in result.stdout
    assert services.bootstrap.initialize.call_args.kwargs["python_version"] == "3.11"


def test_bootstrap_reinstall_removes_venv(mocker):
    services = MagicMock()
    services.bootstrap.initialize = AsyncMock(return_value=True)
    mocker.patch("echoplayer.cli.core.get_services", return_value=services)

    result = runner.invoke(app, ["bootstrap", "--reinstall"])

    assert result.exit_code == 0
    services.bootstrap.remove_venv.assert_called_once()
    assert "Environment ready." in result.stdout


# --- Control API commands ---

def test_start_without_control_api(mocker):
    mocker.patch("echoplayer.cli.core.is_runtime_active", return_value=False)
    result = runner.invoke(app, ["start"])
    assert result.exit_code == 1
    assert "echoplayer serve" in result.stdout


def test_start_reports_port(mocker):
    mocker.patch("echoplayer.cli.core.is_runtime_active", return_value=True)
    mocker.patch("echoplayer.cli.core.runtime_call", return_value={"ok": True, "port": 8765})

    result = runner.invoke(app, ["start"])

    assert result.exit_code == 0
    assert "port 8765" in result.stdout


def test_start_failure_shows_error_code(mocker):
    mocker.patch("echoplayer.cli.core.is_runtime_active", return_value=True)
    mocker.patch(
        "echoplayer.cli.core.runtime_call",
        return_value={"ok": False, "status": "error", "error_code": "precondition_failed"},
    )

    result = runner.invoke(app, ["start"])

    assert result.exit_code == 1
    assert "precondition_failed" in result.stdout


def test_stop_without_control_api_is_noop(mocker):
    mocker.patch("echoplayer.cli.core.is_runtime_active", return_value=False)
    result = runner.invoke(app, ["stop"])
    assert result.exit_code == 0


def test_restart_calls_control_api(mocker):
    mocker.patch("echoplayer.cli.core.is_runtime_active", return_value=True)
    call = mocker.patch("echoplayer.cli.core.runtime_call", return_value={"ok": True, "port": 8800})

    result = runner.invoke(app, ["restart"])

    assert result.exit_code == 0
    call.assert_called_once_with("restart_media_server")


def test_status_when_unreachable(mocker):
    mocker.patch("echoplayer.cli.core.runtime_call", return_value=None)
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 1


def test_is_runtime_active_handles_connection_errors():
    client = MagicMock()
    client.health = AsyncMock(side_effect=ConnectionError("refused"))
    assert core.is_runtime_active(client) is False

    client.health = AsyncMock(return_value={"status": "ok"})
    assert core.is_runtime_active(client) is True
