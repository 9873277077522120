"""Runtime settings for system-harness.

Settings tune how harnesses are started and torn down; they are separate
from the per-system configuration files handled by ``config.py``.
"""
import os
from dataclasses import dataclass
from typing import Optional

from system_harness.errors import ConfigError

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class HarnessSettings:
    """Settings shared by all harnesses.

    Attributes:
        socket_dir: Directory for QEMU control/serial sockets (private
            temporary directory per system if not set)
        connect_backoff: Initial delay between QMP connection attempts
        max_backoff: Upper bound for the connection retry delay
        shutdown_timeout: Seconds to wait for QEMU to exit after ``quit``
        container_tool: Container runtime CLI used when a config names none
        log_level: Log level applied by the CLI
    """

    socket_dir: Optional[str] = None
    connect_backoff: float = 0.01
    max_backoff: float = 0.5
    shutdown_timeout: float = 10.0
    container_tool: str = "docker"
    log_level: str = "WARNING"

    def validate(self) -> list[str]:
        """Validate settings and return list of errors.

        Returns:
            List of error messages, empty if valid
        """
        errors = []
        if self.connect_backoff <= 0:
            errors.append("connect_backoff must be positive")
        if self.max_backoff < self.connect_backoff:
            errors.append("max_backoff must not be smaller than connect_backoff")
        if self.shutdown_timeout < 0:
            errors.append("shutdown_timeout must not be negative")
        if not self.container_tool:
            errors.append("container_tool must not be empty")
        if self.log_level.upper() not in LOG_LEVELS:
            errors.append(f"log_level must be one of: {', '.join(LOG_LEVELS)}")
        return errors


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"Invalid value for {name}: {raw!r} is not a number")


def load_settings() -> HarnessSettings:
    """Load settings from environment variables.

    Environment variables:
        SYSTEM_HARNESS_SOCKET_DIR: Directory for QEMU sockets
        SYSTEM_HARNESS_CONNECT_BACKOFF: Initial QMP connect retry delay (default: 0.01)
        SYSTEM_HARNESS_MAX_BACKOFF: Maximum QMP connect retry delay (default: 0.5)
        SYSTEM_HARNESS_SHUTDOWN_TIMEOUT: Seconds to wait for QEMU to exit (default: 10)
        SYSTEM_HARNESS_CONTAINER_TOOL: Container runtime CLI (default: docker)
        SYSTEM_HARNESS_LOG_LEVEL: CLI log level (default: WARNING)

    Returns:
        HarnessSettings instance

    Raises:
        ConfigError: If a value is malformed or out of range
    """
    settings = HarnessSettings(
        socket_dir=os.environ.get("SYSTEM_HARNESS_SOCKET_DIR") or None,
        connect_backoff=_float_env("SYSTEM_HARNESS_CONNECT_BACKOFF", 0.01),
        max_backoff=_float_env("SYSTEM_HARNESS_MAX_BACKOFF", 0.5),
        shutdown_timeout=_float_env("SYSTEM_HARNESS_SHUTDOWN_TIMEOUT", 10.0),
        container_tool=os.environ.get("SYSTEM_HARNESS_CONTAINER_TOOL", "docker"),
        log_level=os.environ.get("SYSTEM_HARNESS_LOG_LEVEL", "WARNING").upper(),
    )
    errors = settings.validate()
    if errors:
        raise ConfigError("; ".join(errors))
    return settings
