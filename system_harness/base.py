"""Base harness interface for system-harness.

This module defines the abstract classes that every harnessed system
(QEMU virtual machines, containers) implements, along with the shared
status, key and event vocabulary.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Protocol, Union, runtime_checkable


class Key(Enum):
    """Keyboard keys that can be injected into a system."""

    ENTER = "enter"


class Status(Enum):
    """Observed state of a harnessed system."""

    RUNNING = "running"
    PAUSED = "paused"
    SUSPENDED = "suspended"
    SHUTDOWN = "shutdown"


class EventKind(Enum):
    """Type of machine event."""

    SHUTDOWN = "shutdown"
    RESUME = "resume"
    PAUSE = "pause"
    SUSPEND = "suspend"


@dataclass(frozen=True)
class Event:
    """A machine event.

    Attributes:
        kind: Type of event
        timestamp: Time the event occurred (UTC)
    """

    kind: EventKind
    timestamp: datetime


@runtime_checkable
class EventSubscriber(Protocol):
    """Anything that wants to be told about events."""

    def on_event(self, event: Event) -> None:
        ...


class _CallableSubscriber:
    """Adapts a plain function to the EventSubscriber interface."""

    def __init__(self, func: Callable[[Event], None]):
        self.func = func

    def on_event(self, event: Event) -> None:
        self.func(event)


SubscriberLike = Union[EventSubscriber, Callable[[Event], None]]


def as_subscriber(subscriber: SubscriberLike) -> EventSubscriber:
    """Return ``subscriber`` as an EventSubscriber, wrapping callables."""
    if isinstance(subscriber, EventSubscriber):
        return subscriber
    if callable(subscriber):
        return _CallableSubscriber(subscriber)
    raise TypeError(
        f"Expected an EventSubscriber or callable, got {type(subscriber).__name__}"
    )


class EventPublisher(ABC):
    """Source of machine events."""

    @abstractmethod
    def subscribe(self, subscriber: SubscriberLike) -> None:
        """Register a subscriber for every future event on this publisher.

        Args:
            subscriber: Object with ``on_event`` or a callable taking an Event
        """
        pass


class SystemTerminal(ABC):
    """Console view onto a running system.

    A terminal owns its own I/O endpoints; closing it leaves the harness
    that produced it untouched.
    """

    @abstractmethod
    def read(self, size: int = 4096) -> bytes:
        """Read up to ``size`` bytes of console output."""
        pass

    @abstractmethod
    def write(self, data: bytes) -> int:
        """Write console input, returning the number of bytes written."""
        pass

    @abstractmethod
    def flush(self) -> None:
        """Flush buffered console input."""
        pass

    @abstractmethod
    def send_key(self, key: Key) -> None:
        """Inject a keystroke into the system."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the terminal's endpoints."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class SystemHarness(ABC):
    """Abstract base class for harnessed systems.

    All backends (QEMU, containers) implement this interface so callers can
    drive a system's lifecycle without knowing how it is run. Use the
    harness as a context manager, or call ``close()``, to make sure the
    underlying system does not outlive its owner.
    """

    @abstractmethod
    def terminal(self) -> SystemTerminal:
        """Open a new console handle on the system."""
        pass

    @abstractmethod
    def pause(self) -> None:
        """Pause the system."""
        pass

    @abstractmethod
    def resume(self) -> None:
        """Resume a paused system."""
        pass

    @abstractmethod
    def shutdown(self) -> None:
        """Request that the system shut down."""
        pass

    @abstractmethod
    def status(self) -> Status:
        """Query the backend for the system's current status."""
        pass

    def running(self) -> bool:
        """Check if the system is currently running."""
        return self.status() == Status.RUNNING

    @abstractmethod
    def close(self) -> None:
        """Best-effort teardown of the system. Never raises."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
