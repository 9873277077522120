"""system-harness: one lifecycle interface for QEMU virtual machines and containers.

A QemuSystemConfig or ContainerSystemConfig is loaded (see
``system_harness.config.load_config``) and ``build()`` turns it into a
running SystemHarness:

    with load_config("vm.json").build() as system:
        system.subscribe(print)
        system.pause()
        system.resume()
"""

__version__ = "0.6.0"

from system_harness.base import (  # noqa: E402
    Event,
    EventKind,
    EventPublisher,
    EventSubscriber,
    Key,
    Status,
    SystemHarness,
    SystemTerminal,
)
from system_harness.errors import ConfigError, ErrorKind, SystemHarnessError  # noqa: E402
from system_harness.container import (  # noqa: E402
    ContainerSystem,
    ContainerSystemConfig,
    ContainerSystemTerminal,
)
from system_harness.qemu import QemuSystem, QemuSystemConfig, QemuSystemTerminal  # noqa: E402

__all__ = [
    "ConfigError",
    "ContainerSystem",
    "ContainerSystemConfig",
    "ContainerSystemTerminal",
    "ErrorKind",
    "Event",
    "EventKind",
    "EventPublisher",
    "EventSubscriber",
    "Key",
    "QemuSystem",
    "QemuSystemConfig",
    "QemuSystemTerminal",
    "Status",
    "SystemHarness",
    "SystemHarnessError",
    "SystemTerminal",
]
