"""Integration tests against a real container runtime.

Skipped unless docker is on PATH and its daemon answers.

Run with:
    pytest tests/integration/test_container_integration.py -v
"""
import shutil
import subprocess
import time
from pathlib import Path

import pytest

from system_harness import Key, Status, SystemHarnessError
from system_harness.config import load_config

DATA_DIR = Path(__file__).parent.parent / "data"


def docker_available():
    if shutil.which("docker") is None:
        return False
    result = subprocess.run(["docker", "info"], capture_output=True)
    return result.returncode == 0


pytestmark = pytest.mark.skipif(not docker_available(), reason="docker not available")


def wait_until_running(system, timeout=30.0):
    deadline = time.monotonic() + timeout
    while not system.running():
        if time.monotonic() > deadline:
            pytest.fail("container did not start")
        time.sleep(0.1)


def test_lifecycle():
    """Pause and resume a container, then shut it down."""
    config = load_config(DATA_DIR / "container-config.json")
    system = config.build()
    with system:
        wait_until_running(system)
        assert system.status() == Status.RUNNING
        system.pause()
        assert system.status() == Status.PAUSED
        system.resume()
        assert system.status() == Status.RUNNING
        assert system.running()
        system.shutdown()
        assert system.status() == Status.SHUTDOWN


def test_close_removes_running_container():
    config = load_config(DATA_DIR / "container-config.json")
    system = config.build()
    wait_until_running(system)

    system.close()

    with pytest.raises(SystemHarnessError, match="Container doesn't exist"):
        system.status()


def test_terminal():
    """Commands written to the terminal run in the container."""
    config = load_config(DATA_DIR / "container-config.json")
    with config.build() as system:
        wait_until_running(system)
        with system.terminal() as terminal:
            terminal.write(b"echo harness-ok\n")
            terminal.flush()
            assert b"harness-ok" in terminal.read()
            with pytest.raises(SystemHarnessError):
                terminal.send_key(Key.ENTER)
