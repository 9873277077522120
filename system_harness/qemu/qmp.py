"""QMP (QEMU Machine Protocol) client.

Speaks newline-delimited JSON over a connected Unix domain socket:

    * reads the server greeting and negotiates capabilities
    * sends one command at a time and blocks until its result arrives
    * hands asynchronous event frames, in arrival order, to subscribers
      while waiting for that result

There is no pipelining, no timeout and no retry at this layer.
"""

import json
import logging
import socket
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from system_harness.base import (
    Event,
    EventKind,
    EventPublisher,
    EventSubscriber,
    Key,
    Status,
    SubscriberLike,
    as_subscriber,
)
from system_harness.errors import ErrorKind, SystemHarnessError

logger = logging.getLogger(__name__)


# -- greeting ---------------------------------------------------------------


class QemuVersion(BaseModel):
    major: int
    minor: int
    micro: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.micro}"


class QmpVersion(BaseModel):
    qemu: QemuVersion
    package: str = ""


class QmpCapabilities(BaseModel):
    version: QmpVersion
    capabilities: list[Any] = Field(default_factory=list)


class QmpGreeting(BaseModel):
    qmp: QmpCapabilities = Field(alias="QMP")


# -- commands ---------------------------------------------------------------


class KeyValue(BaseModel):
    """A key as QEMU's send-key command expects it."""

    type: str
    data: Union[str, int]

    @classmethod
    def from_key(cls, key: Key) -> "KeyValue":
        if key == Key.ENTER:
            return cls(type="qcode", data="ret")
        raise SystemHarnessError.unsupported(f"Key {key}")


class KeyCommand(BaseModel):
    keys: list[KeyValue]


class QmpCommand(BaseModel):
    """A single QMP request.

    ``arguments`` is left out of the wire form when there are none.
    """

    execute: str
    arguments: Optional[dict[str, Any]] = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def qmp_capabilities(cls) -> "QmpCommand":
        return cls(execute="qmp_capabilities")

    @classmethod
    def send_key(cls, *keys: Key) -> "QmpCommand":
        command = KeyCommand(keys=[KeyValue.from_key(key) for key in keys])
        return cls(execute="send-key", arguments=command.model_dump())

    @classmethod
    def query_status(cls) -> "QmpCommand":
        return cls(execute="query-status")

    @classmethod
    def stop(cls) -> "QmpCommand":
        return cls(execute="stop")

    @classmethod
    def cont(cls) -> "QmpCommand":
        return cls(execute="cont")

    @classmethod
    def quit(cls) -> "QmpCommand":
        return cls(execute="quit")

    @classmethod
    def system_powerdown(cls) -> "QmpCommand":
        return cls(execute="system_powerdown")


# -- responses --------------------------------------------------------------


class QmpTimestamp(BaseModel):
    seconds: int
    microseconds: int

    def to_datetime(self) -> datetime:
        epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
        return epoch + timedelta(seconds=self.seconds, microseconds=self.microseconds)


class QmpErrorDetail(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error_class: str = Field(default="GenericError", alias="class")
    desc: str


class QmpSuccess(BaseModel):
    return_data: Any = Field(alias="return")


class QmpError(BaseModel):
    error: Union[str, QmpErrorDetail]

    @property
    def message(self) -> str:
        if isinstance(self.error, QmpErrorDetail):
            return self.error.desc
        return self.error


class QmpEvent(BaseModel):
    event: str
    timestamp: QmpTimestamp
    data: Optional[dict[str, Any]] = None


# Frames carry no common tag; the variant is whichever shape validates.
QmpResponse = Union[QmpSuccess, QmpError, QmpEvent]
_response_adapter = TypeAdapter(QmpResponse)


class QmpStatusInfo(BaseModel):
    """Return value of ``query-status``."""

    running: bool
    singlestep: bool = False
    status: str

    def to_status(self) -> Status:
        try:
            return _RUN_STATES[self.status]
        except KeyError:
            raise SystemHarnessError.unsupported_status(self.status) from None


_RUN_STATES = {
    "running": Status.RUNNING,
    "shutdown": Status.SHUTDOWN,
    "paused": Status.PAUSED,
    "save-vm": Status.PAUSED,
}

_EVENT_KINDS = {
    "POWERDOWN": EventKind.SHUTDOWN,
    "STOP": EventKind.PAUSE,
    "RESUME": EventKind.RESUME,
}


def create_event(frame: QmpEvent) -> Optional[Event]:
    """Translate an event frame, or return None for events we don't track."""
    logger.debug("Saw %s event", frame.event)
    kind = _EVENT_KINDS.get(frame.event)
    if kind is None:
        return None
    return Event(kind=kind, timestamp=frame.timestamp.to_datetime())


# -- stream -----------------------------------------------------------------


class QmpStream(EventPublisher):
    """A negotiated QMP connection.

    A stream is not safe for concurrent use from several threads. Use
    ``try_clone()`` to get a peer handle for another thread.

    Attributes:
        version: QEMU version announced in the greeting
    """

    def __init__(self, sock: socket.socket):
        """Read the greeting from ``sock`` and enable capabilities.

        Args:
            sock: Connected QMP socket; the stream takes ownership of it
        """
        self._attach(sock)
        try:
            greeting = self._read_model(QmpGreeting)
            self.version: QemuVersion = greeting.qmp.version.qemu
            logger.debug("Connected to QEMU %s", self.version)
            self.send_command(QmpCommand.qmp_capabilities())
        except SystemHarnessError:
            self.close()
            raise

    def _attach(self, sock: socket.socket) -> None:
        self._sock = sock
        self._reader = sock.makefile("rb")
        self._subscribers: list[EventSubscriber] = []

    def try_clone(self) -> "QmpStream":
        """Return a peer stream over a duplicate of this socket.

        The clone keeps the negotiated version but starts with no
        subscribers and does not repeat the handshake.
        """
        try:
            duplicate = self._sock.dup()
        except OSError as e:
            raise SystemHarnessError.from_os_error(e, "Duplicating QMP socket")
        clone = QmpStream.__new__(QmpStream)
        clone._attach(duplicate)
        clone.version = self.version
        return clone

    def subscribe(self, subscriber: SubscriberLike) -> None:
        logger.debug("Subscribing events...")
        self._subscribers.append(as_subscriber(subscriber))

    def send_command(self, command: QmpCommand) -> Any:
        """Send ``command`` and block until its result arrives.

        Returns:
            The ``return`` value of the success response

        Raises:
            SystemHarnessError: HARNESS_ERROR for error replies or malformed
                frames, IO for socket failures
        """
        message = command.to_json()
        logger.debug("Sending command: %s", message)
        try:
            self._sock.sendall(message.encode("utf-8") + b"\n")
        except OSError as e:
            raise SystemHarnessError.from_os_error(e, "Writing to QMP socket")
        return self._wait_for_return()

    def close(self) -> None:
        self._reader.close()
        self._sock.close()

    def _wait_for_return(self) -> Any:
        while True:
            response = self._read_model(_response_adapter)
            if isinstance(response, QmpSuccess):
                return response.return_data
            if isinstance(response, QmpError):
                raise SystemHarnessError(response.message, ErrorKind.HARNESS_ERROR)
            event = create_event(response)
            if event is not None:
                self._publish(event)

    def _publish(self, event: Event) -> None:
        for subscriber in self._subscribers:
            try:
                subscriber.on_event(event)
            except Exception:
                logger.exception("Event subscriber failed on %s", event.kind.name)

    def _read_line(self) -> str:
        try:
            line = self._reader.readline()
        except OSError as e:
            raise SystemHarnessError.from_os_error(e, "Reading from QMP socket")
        if not line:
            raise SystemHarnessError("QMP connection closed", ErrorKind.IO)
        try:
            text = line.decode("utf-8").rstrip("\r\n")
        except UnicodeDecodeError as e:
            raise SystemHarnessError(f"Malformed QMP frame: {e}", ErrorKind.HARNESS_ERROR)
        logger.debug("Received response: %s", text)
        return text

    def _read_model(self, model):
        text = self._read_line()
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise SystemHarnessError(f"Malformed QMP frame: {e}", ErrorKind.HARNESS_ERROR)
        try:
            if isinstance(model, TypeAdapter):
                return model.validate_python(payload)
            return model.model_validate(payload)
        except ValidationError:
            raise SystemHarnessError.unexpected_response(text) from None
