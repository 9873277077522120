"""Pytest fixtures for system_harness tests."""
import json
import socket

import pytest

GREETING = {
    "QMP": {
        "version": {
            "qemu": {"major": 8, "minor": 2, "micro": 1},
            "package": "Debian 1:8.2.1+ds-1",
        },
        "capabilities": ["oob"],
    }
}


class FakeQmpServer:
    """The QEMU end of a QMP connection, scripted from the test.

    Frames are queued on the socket before the client reads them; commands
    the client wrote can be read back with ``receive()``.
    """

    def __init__(self):
        self.client, self.server = socket.socketpair()
        self.server.settimeout(5.0)
        self._reader = self.server.makefile("rb")

    def send(self, *frames: dict) -> None:
        for frame in frames:
            self.server.sendall(json.dumps(frame).encode("utf-8") + b"\r\n")

    def send_raw(self, data: bytes) -> None:
        self.server.sendall(data)

    def event(self, name: str, seconds: int = 1700000000, microseconds: int = 0) -> None:
        self.send({
            "event": name,
            "timestamp": {"seconds": seconds, "microseconds": microseconds},
        })

    def receive(self, count: int = 1) -> list:
        return [json.loads(self._reader.readline()) for _ in range(count)]

    def close(self) -> None:
        self._reader.close()
        self.server.close()


@pytest.fixture
def qmp_greeting():
    """Greeting frame a QEMU 8.2.1 server sends on connect."""
    return GREETING


@pytest.fixture
def qmp_server():
    """Fake QMP peer; the client socket is ``qmp_server.client``."""
    server = FakeQmpServer()
    yield server
    server.close()
    server.client.close()


@pytest.fixture
def qmp_stream(qmp_server):
    """A QmpStream that has completed its handshake with ``qmp_server``."""
    from system_harness.qemu.qmp import QmpStream

    qmp_server.send(GREETING, {"return": {}})
    stream = QmpStream(qmp_server.client)
    qmp_server.receive()  # qmp_capabilities
    return stream


@pytest.fixture
def serial_pair():
    """(harness end, console end) of a fake serial socket."""
    harness_end, console_end = socket.socketpair()
    console_end.settimeout(5.0)
    yield harness_end, console_end
    harness_end.close()
    console_end.close()
