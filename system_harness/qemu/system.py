"""QEMU-backed harness.

A QemuSystemConfig compiles to a ``qemu-system-<arch>`` command line. The
spawned QEMU serves two Unix sockets: QMP for control and the first serial
port for console data.
"""
import logging
import os
import shlex
import shutil
import socket
import subprocess
import tempfile
import time
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from system_harness.base import (
    EventPublisher,
    Key,
    Status,
    SubscriberLike,
    SystemHarness,
    SystemTerminal,
)
from system_harness.errors import ErrorKind, SystemHarnessError
from system_harness.qemu.models import (
    BlockDev,
    Boot,
    CharDevBackend,
    Device,
    Machine,
    NetDevBackend,
    Smp,
)
from system_harness.qemu.qmp import QmpCommand, QmpStatusInfo, QmpStream
from system_harness.settings import HarnessSettings, load_settings

logger = logging.getLogger(__name__)

QMP_SOCKET = "qmp.sock"
SERIAL_SOCKET = "serial.sock"

# Config field -> QEMU option, in command-line order
_OPTIONS = (
    ("boot", "-boot"),
    ("cpu", "-cpu"),
    ("machine", "-machine"),
    ("smp", "-smp"),
    ("accel", "-accel"),
    ("bios", "-bios"),
    ("memory", "-m"),
    ("cdrom", "-cdrom"),
    ("hda", "-hda"),
    ("hdb", "-hdb"),
    ("device", "-device"),
    ("chardev", "-chardev"),
    ("netdev", "-netdev"),
    ("blockdev", "-blockdev"),
)


def _render(value: Any) -> str:
    to_arg = getattr(value, "to_arg", None)
    if to_arg is not None:
        return to_arg()
    return str(value)


def _unix_server(path: str) -> str:
    return f"unix:{path},server=on,wait=off"


def _open_unix(path: str) -> socket.socket:
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(path)
    except OSError:
        sock.close()
        raise
    return sock


def _claim_socket_path(path: str) -> None:
    """Remove a stale socket file, refusing if something still serves it."""
    if not os.path.exists(path):
        return
    try:
        peer = _open_unix(path)
    except OSError:
        logger.debug("Removing stale socket: %s", path)
        try:
            os.unlink(path)
        except OSError as e:
            raise SystemHarnessError.from_os_error(e, f"Removing stale socket {path}")
        return
    peer.close()
    raise SystemHarnessError.already_running(path)


def _connect_with_backoff(
    process: subprocess.Popen, path: str, settings: HarnessSettings
) -> socket.socket:
    """Connect to ``path`` until it works or ``process`` exits."""
    backoff = settings.connect_backoff
    last_error: Optional[OSError] = None
    while process.poll() is None:
        try:
            return _open_unix(path)
        except OSError as e:
            last_error = e
        time.sleep(backoff)
        backoff = min(backoff * 2, settings.max_backoff)
    detail = f": {last_error}" if last_error else ""
    raise SystemHarnessError(
        f"QEMU exited with code {process.returncode} before QMP was ready{detail}",
        ErrorKind.HARNESS_ERROR,
    )


class QemuSystemConfig(BaseModel):
    """A configuration for running QEMU.

    Keys line up with QEMU option names; nested mappings line up with the
    option's properties or backends. Loadable from JSON or YAML.
    """

    model_config = ConfigDict(extra="forbid")

    arch: str
    boot: Optional[Boot] = None
    cpu: Optional[str] = None
    machine: Optional[Machine] = None
    smp: Optional[Smp] = None
    accel: Optional[str] = None
    bios: Optional[str] = None
    memory: Optional[int] = None
    cdrom: Optional[str] = None
    hda: Optional[str] = None
    hdb: Optional[str] = None
    device: Optional[list[Device]] = None
    chardev: Optional[list[CharDevBackend]] = None
    netdev: Optional[list[NetDevBackend]] = None
    blockdev: Optional[list[BlockDev]] = None
    # Extra QEMU args, appended after everything else
    extra_args: Optional[list[str]] = None
    socket_dir: Optional[str] = None

    @property
    def executable(self) -> str:
        return f"qemu-system-{self.arch}"

    def command(self) -> list[str]:
        """Compile the configuration to an argument vector."""
        argv = [self.executable]
        for field, option in _OPTIONS:
            value = getattr(self, field)
            if value is None:
                continue
            values = value if isinstance(value, list) else [value]
            for item in values:
                argv.extend([option, _render(item)])
        return argv

    def build(self, settings: Optional[HarnessSettings] = None) -> "QemuSystem":
        """Start QEMU and connect to it.

        Args:
            settings: Harness settings (loaded from the environment if omitted)

        Returns:
            A running QemuSystem

        Raises:
            SystemHarnessError: If QEMU cannot be spawned or its sockets
                cannot be reached
        """
        settings = settings or load_settings()
        socket_dir = self.socket_dir or settings.socket_dir
        owned_dir = None
        if socket_dir is None:
            socket_dir = owned_dir = tempfile.mkdtemp(prefix="system-harness-")
        qmp_path = os.path.join(socket_dir, QMP_SOCKET)
        serial_path = os.path.join(socket_dir, SERIAL_SOCKET)

        argv = self.command()
        argv.append("-nographic")
        argv.extend(["-qmp", _unix_server(qmp_path)])
        argv.extend(["-serial", _unix_server(serial_path)])
        if self.extra_args:
            argv.extend(self.extra_args)

        try:
            if owned_dir is None:
                try:
                    os.makedirs(socket_dir, exist_ok=True)
                except OSError as e:
                    raise SystemHarnessError.from_os_error(e, f"Creating {socket_dir}")
            _claim_socket_path(qmp_path)
            _claim_socket_path(serial_path)
            logger.debug("Starting system: %s", shlex.join(argv))
            try:
                process = subprocess.Popen(argv, stdin=subprocess.DEVNULL)
            except OSError as e:
                raise SystemHarnessError.from_os_error(e, f"Starting {argv[0]}")
        except SystemHarnessError:
            if owned_dir:
                shutil.rmtree(owned_dir, ignore_errors=True)
            raise

        try:
            logger.debug("Connecting to QMP socket...")
            qmp_socket = _connect_with_backoff(process, qmp_path, settings)
            try:
                qmp = QmpStream(qmp_socket)
            except SystemHarnessError:
                qmp_socket.close()
                raise
            logger.debug("Connecting to serial socket...")
            try:
                serial = _open_unix(serial_path)
            except OSError as e:
                qmp.close()
                raise SystemHarnessError.from_os_error(e, "Connecting to serial socket")
        except SystemHarnessError:
            _kill(process)
            if owned_dir:
                shutil.rmtree(owned_dir, ignore_errors=True)
            raise

        logger.debug("System ready.")
        return QemuSystem(
            process=process,
            serial=serial,
            qmp=qmp,
            socket_dir=owned_dir,
            shutdown_timeout=settings.shutdown_timeout,
        )


def _kill(process: subprocess.Popen) -> None:
    if process.poll() is not None:
        return
    try:
        process.kill()
        process.wait()
    except OSError as e:
        logger.warning("Error killing QEMU (pid %s): %s", process.pid, e)


class QemuSystemTerminal(SystemTerminal, EventPublisher):
    """Console and keyboard access to a QEMU system.

    Owns duplicates of the harness's serial socket and QMP connection.
    Events seen on the duplicate QMP connection go to this terminal's own
    subscribers only.
    """

    def __init__(self, serial: socket.socket, qmp: QmpStream):
        self.serial = serial
        self.qmp = qmp

    def read(self, size: int = 4096) -> bytes:
        try:
            return self.serial.recv(size)
        except OSError as e:
            raise SystemHarnessError.from_os_error(e, "Reading serial console")

    def write(self, data: bytes) -> int:
        try:
            self.serial.sendall(data)
        except OSError as e:
            raise SystemHarnessError.from_os_error(e, "Writing serial console")
        return len(data)

    def flush(self) -> None:
        pass

    def send_key(self, key: Key) -> None:
        self.qmp.send_command(QmpCommand.send_key(key))

    def subscribe(self, subscriber: SubscriberLike) -> None:
        self.qmp.subscribe(subscriber)

    def close(self) -> None:
        self.qmp.close()
        self.serial.close()


class QemuSystem(SystemHarness, EventPublisher):
    """A running QEMU system."""

    def __init__(
        self,
        process: subprocess.Popen,
        serial: socket.socket,
        qmp: QmpStream,
        socket_dir: Optional[str] = None,
        shutdown_timeout: float = 10.0,
    ):
        self.process = process
        self.serial = serial
        self.qmp = qmp
        self.socket_dir = socket_dir
        self.shutdown_timeout = shutdown_timeout
        self._closed = False

    def _send(self, command: QmpCommand) -> Any:
        if self._closed:
            raise SystemHarnessError.not_running("QEMU system")
        return self.qmp.send_command(command)

    def terminal(self) -> QemuSystemTerminal:
        if self._closed:
            raise SystemHarnessError.not_running("QEMU system")
        try:
            serial = self.serial.dup()
        except OSError as e:
            raise SystemHarnessError.from_os_error(e, "Duplicating serial socket")
        try:
            qmp = self.qmp.try_clone()
        except SystemHarnessError:
            serial.close()
            raise
        return QemuSystemTerminal(serial=serial, qmp=qmp)

    def pause(self) -> None:
        self._send(QmpCommand.stop())

    def resume(self) -> None:
        self._send(QmpCommand.cont())

    def shutdown(self) -> None:
        self._send(QmpCommand.system_powerdown())

    def status(self) -> Status:
        ret = self._send(QmpCommand.query_status())
        try:
            info = QmpStatusInfo.model_validate(ret)
        except ValidationError:
            raise SystemHarnessError.unexpected_response(repr(ret)) from None
        return info.to_status()

    def alive(self) -> bool:
        """Check whether the QEMU process is still running."""
        return self.process.poll() is None

    def subscribe(self, subscriber: SubscriberLike) -> None:
        self.qmp.subscribe(subscriber)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.alive():
            logger.debug("Stopping running system...")
            try:
                self.qmp.send_command(QmpCommand.quit())
            except SystemHarnessError as e:
                logger.warning("Error quitting system: %s", e)
            try:
                self.process.wait(timeout=self.shutdown_timeout)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "QEMU (pid %s) still running %ss after quit, killing it",
                    self.process.pid,
                    self.shutdown_timeout,
                )
                _kill(self.process)
        for resource in (self.qmp, self.serial):
            try:
                resource.close()
            except OSError as e:
                logger.warning("Error closing QEMU channel: %s", e)
        if self.socket_dir:
            shutil.rmtree(self.socket_dir, ignore_errors=True)
