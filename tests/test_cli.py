"""Tests for the command line interface."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from adbwire.adb.devices import DeviceRecord
from adbwire.adb.errors import NotFoundError, RemoteFailure
from adbwire.cli import cli


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("server:\n  port: 5099\n")
    return path


@pytest.fixture
def client():
    """Patch ADBClient in the CLI with an async mock."""
    with patch("adbwire.cli.ADBClient") as client_class:
        instance = MagicMock()
        for name in (
            "version", "devices", "shell", "get_pid", "start_app", "stop_app",
            "install_app", "push", "pull", "forward", "logcat", "start_server", "stop_server",
        ):
            setattr(instance, name, AsyncMock())
        client_class.return_value = instance
        instance.client_class = client_class
        yield instance


class TestCLI:
    """Test CLI commands."""

    def test_version(self, client, config_file):
        client.version.return_value = "1.0.41"

        result = CliRunner().invoke(cli, ["--config", str(config_file), "version"])

        assert result.exit_code == 0
        assert "1.0.41" in result.output

    def test_config_and_port_override(self, client, config_file):
        """--port takes precedence over the config file."""
        client.version.return_value = "1.0.41"

        CliRunner().invoke(cli, ["--config", str(config_file), "version"])
        settings = client.client_class.call_args[0][0]
        assert settings.server.port == 5099

        CliRunner().invoke(cli, ["--config", str(config_file), "--port", "5100", "--debug-adb", "version"])
        settings = client.client_class.call_args[0][0]
        assert settings.server.port == 5100
        assert settings.server.debug is True

    def test_devices_json(self, client, config_file):
        client.devices.return_value = [
            DeviceRecord(id="emulator-5554", state="device", emulator=True, release="11", abi=["x86_64"]),
        ]

        result = CliRunner().invoke(cli, ["--config", str(config_file), "devices", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data[0]["id"] == "emulator-5554"
        assert data[0]["emulator"] is True
        assert data[0]["abi"] == ["x86_64"]

    def test_devices_table(self, client, config_file):
        client.devices.return_value = [DeviceRecord(id="R58M", state="unauthorized")]

        result = CliRunner().invoke(cli, ["--config", str(config_file), "devices"])

        assert result.exit_code == 0
        assert "R58M" in result.output

    def test_no_devices(self, client, config_file):
        client.devices.return_value = []

        result = CliRunner().invoke(cli, ["--config", str(config_file), "devices"])

        assert result.exit_code == 0
        assert "No devices found" in result.output

    def test_shell_joins_arguments(self, client, config_file):
        client.shell.return_value = b"hello\r\n"

        result = CliRunner().invoke(cli, ["--config", str(config_file), "shell", "abc", "echo", "hello"])

        assert result.exit_code == 0
        assert "hello" in result.output
        client.shell.assert_awaited_once_with("abc", "echo hello")

    def test_pid(self, client, config_file):
        client.get_pid.return_value = 4321

        result = CliRunner().invoke(cli, ["--config", str(config_file), "pid", "abc", "com.example.app"])

        assert result.exit_code == 0
        assert result.output.strip() == "4321"

    def test_stop_app_not_running(self, client, config_file):
        """ADB errors are printed and exit with status 1."""
        client.stop_app.side_effect = NotFoundError('Application "com.example.app" is not running')

        result = CliRunner().invoke(cli, ["--config", str(config_file), "stop-app", "abc", "com.example.app"])

        assert result.exit_code == 1
        assert "is not running" in result.output

    def test_remote_failure_exit_code(self, client, config_file):
        client.version.side_effect = RemoteFailure("device offline")

        result = CliRunner().invoke(cli, ["--config", str(config_file), "version"])

        assert result.exit_code == 1
        assert "device offline" in result.output

    def test_install(self, client, config_file, tmp_path):
        apk = tmp_path / "app.apk"

        result = CliRunner().invoke(cli, ["--config", str(config_file), "install", "abc", str(apk)])

        assert result.exit_code == 0
        assert "Installed app.apk" in result.output
        client.install_app.assert_awaited_once_with("abc", apk)

    def test_forward(self, client, config_file):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "forward", "abc", "tcp:5000", "tcp:6000"])

        assert result.exit_code == 0
        client.forward.assert_awaited_once_with("abc", "tcp:5000", "tcp:6000")

    def test_kill_server(self, client, config_file):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "kill-server"])

        assert result.exit_code == 0
        client.stop_server.assert_awaited_once_with()

    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "track" in result.output
        assert "logcat" in result.output
