"""Structured values for QEMU command-line options."""

from enum import Enum
from typing import ClassVar, Optional

from pydantic import ConfigDict, Field

from system_harness.qemu.args import BackendArg, PropertyModel


class OnOff(str, Enum):
    ON = "on"
    OFF = "off"


class Discard(str, Enum):
    IGNORE = "ignore"
    UNMAP = "unmap"


class Boot(PropertyModel):
    """``-boot`` options."""

    menu: Optional[OnOff] = None
    strict: Optional[OnOff] = None
    reboot_time: Optional[str] = Field(default=None, alias="reboot-time")
    splash_time: Optional[str] = Field(default=None, alias="splash-time")
    splash: Optional[str] = None
    once: Optional[str] = None
    order: Optional[str] = None


class BlockDev(PropertyModel):
    """``-blockdev`` node.

    Attributes:
        driver: Block device driver
        node_name: Block node name
        discard: Discard strategy
    """

    model_config = ConfigDict(extra="allow")

    driver: str
    node_name: str = Field(alias="node-name")
    discard: Optional[Discard] = None


class Device(PropertyModel):
    """``-device``: a driver plus its driver-specific properties."""

    model_config = ConfigDict(extra="allow")

    driver: str


class Smp(PropertyModel):
    """``-smp`` CPU topology."""

    cpus: Optional[int] = None
    maxcpus: Optional[int] = None
    dies: Optional[int] = None
    sockets: Optional[int] = None
    clusters: Optional[int] = None
    cores: Optional[int] = None
    threads: Optional[int] = None


class Machine(PropertyModel):
    """``-machine`` type plus machine properties."""

    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None


class CharDevBackend(BackendArg):
    """``-chardev`` backend."""

    variants: ClassVar[dict[str, tuple[str, ...]]] = {
        "stdio": (),
        "socket": ("path",),
    }


class NetDevBackend(BackendArg):
    """``-netdev`` backend."""

    variants: ClassVar[dict[str, tuple[str, ...]]] = {
        "user": ("ipv4", "net", "host"),
    }
