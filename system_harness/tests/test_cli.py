"""Tests for CLI commands."""
import json

import pytest
from click.testing import CliRunner
from unittest.mock import patch

from system_harness.base import Status, SystemHarness, SystemTerminal
from system_harness.cli import cli
from system_harness.container import ContainerSystemConfig
from system_harness.errors import ErrorKind, SystemHarnessError


class FakeTerminal(SystemTerminal):
    def __init__(self, output=b""):
        self.output = output
        self.keys = []
        self.closed = False

    def read(self, size=4096):
        data, self.output = self.output, b""
        return data

    def write(self, data):
        return len(data)

    def flush(self):
        pass

    def send_key(self, key):
        raise SystemHarnessError.unsupported("Sending a keystroke")

    def close(self):
        self.closed = True


class FakeSystem(SystemHarness):
    """Harness that reports a scripted sequence of statuses."""

    def __init__(self, statuses, output=b""):
        self.statuses = list(statuses)
        self.console = FakeTerminal(output)
        self.closed = False

    def terminal(self):
        return self.console

    def pause(self):
        pass

    def resume(self):
        pass

    def shutdown(self):
        pass

    def status(self):
        status = self.statuses.pop(0)
        if isinstance(status, Exception):
            raise status
        return status

    def close(self):
        self.closed = True


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def vm_config(tmp_path):
    path = tmp_path / "vm.json"
    path.write_text(json.dumps({
        "arch": "i386",
        "machine": {"type": "q35"},
        "memory": 512,
    }))
    return str(path)


@pytest.fixture
def container_config(tmp_path):
    path = tmp_path / "container.yaml"
    path.write_text("tool: docker\nimage: alpine\n")
    return str(path)


class TestCommandCommand:
    """Tests for `system-harness command`."""

    def test_prints_qemu_command(self, runner, vm_config):
        result = runner.invoke(cli, ["command", vm_config])

        assert result.exit_code == 0
        assert result.output.strip() == "qemu-system-i386 -machine type=q35 -m 512"

    def test_prints_container_command(self, runner, container_config):
        result = runner.invoke(cli, ["command", container_config])

        assert result.exit_code == 0
        assert result.output.strip() == "docker create -t alpine"

    def test_invalid_config(self, runner, tmp_path):
        """An unusable config exits with an error message."""
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"memory": 512}))

        result = runner.invoke(cli, ["command", str(path)])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["command", str(tmp_path / "nope.json")])
        assert result.exit_code != 0


class TestShowCommand:
    """Tests for `system-harness show`."""

    def test_show_qemu(self, runner, vm_config):
        result = runner.invoke(cli, ["show", vm_config])

        assert result.exit_code == 0
        assert "System (qemu)" in result.output
        assert "arch" in result.output
        assert "i386" in result.output

    def test_show_container(self, runner, container_config):
        result = runner.invoke(cli, ["show", container_config])

        assert result.exit_code == 0
        assert "System (container)" in result.output
        assert "alpine" in result.output


class TestRunCommand:
    """Tests for `system-harness run`."""

    @patch("system_harness.cli.POLL_INTERVAL", 0)
    @patch.object(ContainerSystemConfig, "build")
    def test_run_until_shutdown(self, mock_build, runner, container_config):
        """run should stream the console and stop once the system shuts down."""
        system = FakeSystem([Status.RUNNING, Status.SHUTDOWN], output=b"login: ")
        mock_build.return_value = system

        result = runner.invoke(cli, ["run", container_config])

        assert result.exit_code == 0
        assert "Image: alpine" in result.output
        assert "Status: running" in result.output
        assert "System stopped" in result.output
        assert system.closed
        assert system.console.closed

    @patch.object(ContainerSystemConfig, "build")
    def test_run_build_failure(self, mock_build, runner, container_config):
        """run should report a system that fails to start."""
        mock_build.side_effect = SystemHarnessError("'docker create -t alpine' failed: no space left")

        result = runner.invoke(cli, ["run", container_config])

        assert result.exit_code == 1
        assert "Failed to start" in result.output
        assert "no space left" in result.output

    @patch("system_harness.cli.POLL_INTERVAL", 0)
    @patch.object(ContainerSystemConfig, "build")
    def test_run_enter_unsupported(self, mock_build, runner, container_config):
        """--enter on a backend without keystrokes is reported, not fatal."""
        mock_build.return_value = FakeSystem([Status.RUNNING, Status.SHUTDOWN])

        result = runner.invoke(cli, ["run", container_config, "--enter"])

        assert result.exit_code == 0
        assert "Could not send Enter" in result.output

    @patch.object(ContainerSystemConfig, "build")
    def test_run_timeout(self, mock_build, runner, container_config):
        """A zero timeout stops right after the first status check."""
        system = FakeSystem([Status.RUNNING])
        mock_build.return_value = system

        result = runner.invoke(cli, ["run", container_config, "--timeout", "0"])

        assert result.exit_code == 0
        assert system.closed

    @patch("system_harness.cli.POLL_INTERVAL", 0)
    @patch.object(ContainerSystemConfig, "build")
    def test_run_harness_error(self, mock_build, runner, container_config):
        """A failing status query exits non-zero but still disposes the system."""
        system = FakeSystem([
            Status.RUNNING,
            SystemHarnessError("Container doesn't exist: abc"),
        ])
        mock_build.return_value = system

        result = runner.invoke(cli, ["run", container_config])

        assert result.exit_code == 1
        assert "Harness error" in result.output
        assert system.closed

    @patch("system_harness.cli.POLL_INTERVAL", 0)
    @patch.object(ContainerSystemConfig, "build")
    def test_run_control_connection_closed(self, mock_build, runner, container_config):
        system = FakeSystem([
            Status.RUNNING,
            SystemHarnessError("QMP connection closed", ErrorKind.IO),
        ])
        mock_build.return_value = system

        result = runner.invoke(cli, ["run", container_config])

        assert result.exit_code == 0
        assert "Control connection closed" in result.output

    @patch("system_harness.cli.POLL_INTERVAL", 0.01)
    @patch.object(ContainerSystemConfig, "build")
    def test_run_streams_console_output(self, mock_build, runner, container_config):
        """Console bytes are copied to stdout until the terminal reaches EOF."""
        system = FakeSystem([Status.RUNNING], output=b"login: ")
        system.status = lambda: Status.RUNNING
        mock_build.return_value = system

        result = runner.invoke(cli, ["run", container_config])

        assert result.exit_code == 0
        assert "login: " in result.output


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.6.0" in result.output


def test_log_level_option(runner, vm_config):
    result = runner.invoke(cli, ["--log-level", "debug", "command", vm_config])
    assert result.exit_code == 0


def test_invalid_log_level_env(runner, vm_config):
    """An unknown SYSTEM_HARNESS_LOG_LEVEL is reported, not a traceback."""
    result = runner.invoke(cli, ["command", vm_config], env={"SYSTEM_HARNESS_LOG_LEVEL": "verbose"})

    assert result.exit_code == 1
    assert "Configuration error" in result.output
    assert "log_level must be one of" in result.output
