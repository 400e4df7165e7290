"""Contract every VPN backend implements."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, Sequence

import psutil

from ..models import VPNDevice
from ..utils import InterfaceTable, Runner, interface_exists, interface_ipv4, run_command
from ...config import Settings


class VPNType(Enum):
    """Backends known to check_vpn"""
    SSH = "ssh"


class VPNPlugin(ABC):
    """
    One VPN technology.

    start_vpn may return before the tunnel is usable; the caller polls
    is_vpn_up to learn when it is.
    """

    vpn_type: VPNType

    def __init__(self, settings: Settings, runner: Runner = run_command,
                 interfaces: InterfaceTable = psutil.net_if_addrs):
        self.settings = settings
        self.runner = runner
        self.interfaces = interfaces
        # local polls spent inside start_vpn, deducted from the caller's up-wait
        self.startup_polls = 0

    @abstractmethod
    def allocate_device(self, extra_args: Sequence[str]) -> VPNDevice:
        """Pick a device for the tunnel (DeviceAllocationError if none)."""

    @abstractmethod
    def start_vpn(self, host: str, username: str, password: str,
                  device: VPNDevice, extra_args: Sequence[str]) -> None:
        """Establish the tunnel, raising a StartError with the reason on failure."""

    @abstractmethod
    def stop_vpn(self, host: str, device: Optional[VPNDevice] = None) -> None:
        """Tear down tunnels to host (only the one on device, if given)."""

    def is_vpn_up(self, host: str, device: VPNDevice) -> bool:
        """Up means the interface exists and carries an IPv4 address."""
        return (interface_exists(device.name, self.interfaces)
                and bool(interface_ipv4(device.name, self.interfaces)))

    def diagnostics(self, device: VPNDevice) -> None:
        """Log whatever helps explain a tunnel that never came up."""
