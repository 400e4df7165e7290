"""Data models for VPN checks."""

import re
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

DEVICE_NAME_RE = re.compile(r"^([A-Za-z]+)(\d+)$")
MAX_DEVICE_INDEX = 255


class CheckStatus(IntEnum):
    """Monitoring plugin status, valued by its exit code"""
    OK = 0
    WARNING = 1
    CRITICAL = 2
    UNKNOWN = 3


# CRITICAL outranks WARNING which outranks OK
_SEVERITY = {
    CheckStatus.OK: 0,
    CheckStatus.WARNING: 1,
    CheckStatus.UNKNOWN: 2,
    CheckStatus.CRITICAL: 3,
}


def worst_status(*statuses: CheckStatus) -> CheckStatus:
    return max(statuses, key=_SEVERITY.__getitem__)


class DevicePrefix(Enum):
    """Virtual interface classes, valued by their routing table base"""
    TAP = 2000
    TUN = 3000
    PPP = 4000
    OTHER = 5000

    @classmethod
    def from_str(cls, prefix: str) -> "DevicePrefix":
        try:
            return cls[prefix.upper()]
        except KeyError:
            return cls.OTHER


class LifecycleState(Enum):
    """States a single check walks through"""
    IDLE = "idle"
    LOCKED = "locked"
    DEVICE_READY = "device_ready"
    STALE_CLEARED = "stale_cleared"
    STARTING = "starting"
    WAITING_UP = "waiting_up"
    ROUTING_UP = "routing_up"
    CONNECTIVITY_CHECKED = "connectivity_checked"
    ROUTING_DOWN = "routing_down"
    STOPPING = "stopping"
    WAITING_DOWN = "waiting_down"
    UNLOCKED = "unlocked"


def table_number(prefix: DevicePrefix, index: int) -> int:
    """Routing table owned by a device, reconstructible from its name alone."""
    if not 0 <= index <= MAX_DEVICE_INDEX:
        raise ValueError(f"Device index {index} out of range")
    return prefix.value + index


@dataclass(frozen=True)
class VPNDevice:
    """Virtual network interface carrying one end of a tunnel"""
    name: str
    prefix: DevicePrefix
    index: int

    @classmethod
    def from_name(cls, name: str) -> "VPNDevice":
        match = DEVICE_NAME_RE.match(name)
        if not match:
            raise ValueError(f"Invalid device name '{name}'")
        index = int(match.group(2))
        if index > MAX_DEVICE_INDEX:
            raise ValueError(f"Device index of '{name}' out of range")
        return cls(name=name, prefix=DevicePrefix.from_str(match.group(1)), index=index)

    @property
    def table(self) -> int:
        return table_number(self.prefix, self.index)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class RoutingTableBinding:
    """Source based routing installed for a device"""
    device: VPNDevice
    table: int
    local_address: str
    remote_address: str
    gateway: Optional[str] = None


@dataclass(frozen=True)
class LockHandle:
    path: str


class CheckRequest(BaseModel):
    """A single check invocation"""
    model_config = ConfigDict(frozen=True)

    vpn_type: str
    host: str
    username: str = ""
    password: str = Field(default="", repr=False)
    device: Optional[str] = None
    url: Optional[str] = None
    lock: bool = False
    extra_args: List[str] = Field(default_factory=list)

    @field_validator("vpn_type", "host")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("device")
    @classmethod
    def _device_name(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            VPNDevice.from_name(value)
        return value


class CheckResult(BaseModel):
    """Verdict of a check, rendered as one monitoring plugin line"""
    status: CheckStatus
    message: str

    @computed_field
    @property
    def exit_code(self) -> int:
        return int(self.status)

    @computed_field
    @property
    def line(self) -> str:
        return f"{self.status.name}: {self.message}"
