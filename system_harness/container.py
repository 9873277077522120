"""Container backend for system-harness.

This module implements the SystemHarness interface by driving a container
runtime CLI (docker, podman, ...) with ``subprocess``. State is never
cached: every status query runs ``<tool> inspect``.
"""
import json
import logging
import shlex
import subprocess
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from system_harness.base import Key, Status, SystemHarness, SystemTerminal
from system_harness.errors import ErrorKind, SystemHarnessError

logger = logging.getLogger(__name__)


def _run(argv: list[str]) -> str:
    """Run a runtime subcommand and return its trimmed stdout.

    Raises:
        SystemHarnessError: IO if the tool can't be executed, HARNESS_ERROR
            (with the tool's stderr) on a non-zero exit
    """
    result = _execute(argv)
    if result.returncode != 0:
        raise SystemHarnessError.command_failed(argv, result.stderr)
    return result.stdout.strip()


def _execute(argv: list[str]) -> subprocess.CompletedProcess:
    logger.debug("Running: %s", shlex.join(argv))
    try:
        return subprocess.run(argv, capture_output=True, text=True)
    except OSError as e:
        raise SystemHarnessError.from_os_error(e, f"Running {argv[0]}")


class ContainerState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    running: bool = Field(alias="Running")
    paused: bool = Field(alias="Paused")

    def to_status(self) -> Status:
        # Docker keeps Running=true while a container is paused
        if self.paused:
            return Status.PAUSED
        if self.running:
            return Status.RUNNING
        return Status.SHUTDOWN


class ContainerInspect(BaseModel):
    model_config = ConfigDict(extra="ignore")

    state: ContainerState = Field(alias="State")


_inspect_adapter = TypeAdapter(list[ContainerInspect])


class ContainerSystemConfig(BaseModel):
    """A container system config.

    Attributes:
        tool: Container runtime CLI
        image: Container image
    """

    model_config = ConfigDict(extra="forbid")

    tool: str = "docker"
    image: str

    def command(self) -> list[str]:
        """Invocation that creates the container."""
        return [self.tool, "create", "-t", self.image]

    def build(self) -> "ContainerSystem":
        """Create and start a container from the image.

        Returns:
            A started ContainerSystem

        Raises:
            SystemHarnessError: If the container can't be created or started
        """
        try:
            container_id = _run(self.command())
        except SystemHarnessError as e:
            logger.warning("%s", e)
            raise
        if not container_id:
            raise SystemHarnessError(
                f"'{self.tool} create' printed no container id", ErrorKind.HARNESS_ERROR
            )
        logger.debug("Created container: %s", container_id)

        system = ContainerSystem(tool=self.tool, id=container_id)
        try:
            system.start()
        except SystemHarnessError:
            system.remove()
            raise
        return system


class ContainerSystemTerminal(SystemTerminal):
    """Console on a container through an interactive ``exec`` process.

    Reads and writes go to the exec process's stdout/stdin pipes and only
    work while those pipes are open.
    """

    def __init__(self, process: subprocess.Popen):
        self.process = process

    def send_key(self, key: Key) -> None:
        raise SystemHarnessError.unsupported("Sending a keystroke")

    def read(self, size: int = 4096) -> bytes:
        stdout = self.process.stdout
        if stdout is None or stdout.closed:
            raise SystemHarnessError.pipe_closed("read from")
        try:
            return stdout.read1(size)
        except OSError as e:
            raise SystemHarnessError(f"Can't read from container: {e}", ErrorKind.PIPE_ERROR)

    def write(self, data: bytes) -> int:
        stdin = self.process.stdin
        if stdin is None or stdin.closed:
            raise SystemHarnessError.pipe_closed("write to")
        try:
            return stdin.write(data)
        except OSError as e:
            raise SystemHarnessError(f"Can't write to container: {e}", ErrorKind.PIPE_ERROR)

    def flush(self) -> None:
        stdin = self.process.stdin
        if stdin is None or stdin.closed:
            raise SystemHarnessError.pipe_closed("write to")
        try:
            stdin.flush()
        except OSError as e:
            raise SystemHarnessError(f"Can't write to container: {e}", ErrorKind.PIPE_ERROR)

    def close(self, timeout: float = 5.0) -> None:
        for pipe in (self.process.stdin, self.process.stdout):
            if pipe is None:
                continue
            try:
                pipe.close()
            except OSError as e:
                logger.debug("Error closing exec pipe: %s", e)
        try:
            self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self.process.kill()
            self.process.wait()


class ContainerSystem(SystemHarness):
    """A container managed through its runtime CLI."""

    def __init__(self, tool: str, id: str):
        self.tool = tool
        self.id = id
        self._closed = False

    def start(self) -> None:
        _run([self.tool, "start", self.id])
        logger.debug("Started container: %s", self.id)

    def terminal(self) -> ContainerSystemTerminal:
        argv = [self.tool, "exec", "-i", self.id, "sh"]
        logger.debug("Attaching: %s", shlex.join(argv))
        try:
            process = subprocess.Popen(argv, stdin=subprocess.PIPE, stdout=subprocess.PIPE)
        except OSError as e:
            raise SystemHarnessError.from_os_error(e, f"Running {self.tool} exec")
        return ContainerSystemTerminal(process)

    def pause(self) -> None:
        logger.debug("Pausing container: %s", self.id)
        _run([self.tool, "pause", self.id])
        logger.debug("Paused container: %s", self.id)

    def resume(self) -> None:
        logger.debug("Resuming container: %s", self.id)
        _run([self.tool, "unpause", self.id])
        logger.debug("Resumed container: %s", self.id)

    def shutdown(self) -> None:
        logger.debug("Shutting down container: %s", self.id)
        _run([self.tool, "stop", self.id])
        logger.debug("Stopped container: %s", self.id)

    def inspect(self) -> Optional[ContainerInspect]:
        """Return the runtime's view of the container, or None if it's gone."""
        argv = [self.tool, "inspect", self.id]
        result = _execute(argv)
        stdout = result.stdout.strip()
        # A missing container exits non-zero but still prints an empty array
        if result.returncode != 0 and stdout != "[]":
            error = SystemHarnessError.command_failed(argv, result.stderr)
            logger.warning("%s", error)
            raise error
        try:
            entries = _inspect_adapter.validate_python(json.loads(stdout))
        except (json.JSONDecodeError, ValidationError) as e:
            raise SystemHarnessError(
                f"Unreadable '{self.tool} inspect' output: {e}",
                ErrorKind.SERIALIZATION_ERROR,
            )
        return entries[0] if entries else None

    def status(self) -> Status:
        inspect = self.inspect()
        if inspect is None:
            raise SystemHarnessError.container_not_found(self.id)
        return inspect.state.to_status()

    def remove(self) -> None:
        """Force-remove the container, ignoring failures."""
        logger.debug("Deleting container: %s", self.id)
        try:
            result = _execute([self.tool, "rm", "-f", self.id])
        except SystemHarnessError as e:
            logger.debug("Error deleting container %s: %s", self.id, e)
            return
        if result.returncode != 0:
            logger.debug("Error deleting container %s: %s", self.id, result.stderr.strip())

    def close(self) -> None:
        """Stop and remove the container if it is running or paused."""
        if self._closed:
            return
        self._closed = True
        try:
            status = self.status()
        except SystemHarnessError as e:
            logger.debug("Not cleaning up %s: %s", self.id, e)
            return
        if status == Status.SHUTDOWN:
            return
        try:
            self.shutdown()
        except SystemHarnessError as e:
            logger.warning("Failed to shutdown: %s (%s)", self.id, e)
            return
        self.remove()
