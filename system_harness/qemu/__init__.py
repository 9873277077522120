"""QEMU backend for system-harness.

Note: the QMP client lives in ``system_harness.qemu.qmp``; import it
directly when you need protocol-level access.
"""

from system_harness.qemu.system import (
    QemuSystem,
    QemuSystemConfig,
    QemuSystemTerminal,
)

__all__ = [
    "QemuSystem",
    "QemuSystemConfig",
    "QemuSystemTerminal",
]
