"""Tests for the base harness interface."""
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from system_harness.base import (
    Event,
    EventKind,
    EventSubscriber,
    Status,
    SystemHarness,
    SystemTerminal,
    as_subscriber,
)


class FakeHarness(SystemHarness):
    """Minimal harness that records calls."""

    def __init__(self, status=Status.RUNNING):
        self._status = status
        self.closed = 0

    def terminal(self):
        raise NotImplementedError

    def pause(self):
        self._status = Status.PAUSED

    def resume(self):
        self._status = Status.RUNNING

    def shutdown(self):
        self._status = Status.SHUTDOWN

    def status(self):
        return self._status

    def close(self):
        self.closed += 1


class FakeTerminal(SystemTerminal):
    def __init__(self):
        self.closed = False

    def read(self, size=4096):
        return b""

    def write(self, data):
        return len(data)

    def flush(self):
        pass

    def send_key(self, key):
        pass

    def close(self):
        self.closed = True


def test_harness_cannot_be_instantiated():
    """SystemHarness is abstract."""
    with pytest.raises(TypeError):
        SystemHarness()


@pytest.mark.parametrize("status,expected", [
    (Status.RUNNING, True),
    (Status.PAUSED, False),
    (Status.SUSPENDED, False),
    (Status.SHUTDOWN, False),
])
def test_running_follows_status(status, expected):
    """running() is true only for RUNNING."""
    assert FakeHarness(status).running() is expected


def test_harness_context_manager_closes():
    """Leaving the with-block closes the harness."""
    with FakeHarness() as harness:
        harness.pause()
    assert harness.closed == 1


def test_harness_context_manager_closes_on_error():
    harness = FakeHarness()
    with pytest.raises(RuntimeError):
        with harness:
            raise RuntimeError("test failure")
    assert harness.closed == 1


def test_terminal_context_manager_closes():
    with FakeTerminal() as terminal:
        assert terminal.write(b"abc") == 3
    assert terminal.closed


def test_event_is_immutable():
    event = Event(kind=EventKind.PAUSE, timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc))
    with pytest.raises(AttributeError):
        event.kind = EventKind.RESUME


class TestAsSubscriber:
    """Tests for subscriber normalisation."""

    def test_callable_wrapped(self):
        seen = []
        subscriber = as_subscriber(seen.append)
        event = Event(kind=EventKind.SHUTDOWN, timestamp=datetime.now(timezone.utc))

        subscriber.on_event(event)

        assert isinstance(subscriber, EventSubscriber)
        assert seen == [event]

    def test_object_passed_through(self):
        subscriber = MagicMock(spec=["on_event"])
        assert as_subscriber(subscriber) is subscriber

    def test_rejects_other_values(self):
        with pytest.raises(TypeError, match="Expected an EventSubscriber or callable"):
            as_subscriber("not a subscriber")
