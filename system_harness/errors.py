"""Error types for system-harness.

Every fallible operation raises a SystemHarnessError carrying an ErrorKind
and a human-readable message. Disposal (``close()``) is the only operation
that never raises.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Category of a harness failure."""

    ALREADY_RUNNING = "already_running"
    HARNESS_ERROR = "harness_error"
    PIPE_ERROR = "pipe_error"
    SERIALIZATION_ERROR = "serialization_error"
    IO = "io"


class SystemHarnessError(Exception):
    """Harness error with a kind and an actionable message."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.HARNESS_ERROR):
        super().__init__(message)
        self.message = message
        self.kind = kind

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, kind={self.kind.name})"

    @classmethod
    def from_os_error(cls, error: OSError, action: Optional[str] = None) -> "SystemHarnessError":
        """Wrap a low-level I/O failure."""
        message = f"{action}: {error}" if action else str(error)
        return cls(message, ErrorKind.IO)

    @classmethod
    def already_running(cls, path: str) -> "SystemHarnessError":
        """Create error for a control socket that is already being served."""
        return cls(
            f"A system is already listening on '{path}'. "
            "Stop it or choose a different socket directory.",
            ErrorKind.ALREADY_RUNNING,
        )

    @classmethod
    def unsupported(cls, operation: str) -> "SystemHarnessError":
        """Create error for an operation the backend cannot perform."""
        return cls(f"{operation} not supported", ErrorKind.HARNESS_ERROR)

    @classmethod
    def unsupported_status(cls, status: str) -> "SystemHarnessError":
        """Create error for a run state with no Status equivalent."""
        return cls(f"Unsupported status: {status}", ErrorKind.HARNESS_ERROR)

    @classmethod
    def unexpected_response(cls, detail: str) -> "SystemHarnessError":
        """Create error for a control-protocol message of the wrong shape."""
        return cls(f"Unexpected response: {detail}", ErrorKind.HARNESS_ERROR)

    @classmethod
    def container_not_found(cls, container_id: str) -> "SystemHarnessError":
        """Create error for a container the runtime no longer knows about."""
        return cls(f"Container doesn't exist: {container_id}", ErrorKind.HARNESS_ERROR)

    @classmethod
    def not_running(cls, what: str = "System") -> "SystemHarnessError":
        """Create error for an operation that needs a running system."""
        return cls(f"{what} is not running", ErrorKind.HARNESS_ERROR)

    @classmethod
    def pipe_closed(cls, direction: str) -> "SystemHarnessError":
        """Create error for data-channel use after its pipe went away."""
        return cls(f"Can't {direction} container: pipe is closed", ErrorKind.PIPE_ERROR)

    @classmethod
    def command_failed(cls, argv: list, stderr: str) -> "SystemHarnessError":
        """Create error for an external command that exited non-zero."""
        detail = stderr.strip() or "no error output"
        return cls(f"'{' '.join(argv)}' failed: {detail}", ErrorKind.HARNESS_ERROR)


class ConfigError(SystemHarnessError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str):
        super().__init__(message, ErrorKind.SERIALIZATION_ERROR)
