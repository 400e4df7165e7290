"""Allocation of free virtual network interface names."""

from typing import Iterable

import psutil

from .exceptions import NoDeviceAvailableError
from .models import MAX_DEVICE_INDEX, VPNDevice
from .utils import InterfaceTable, interface_exists
from ..logging_utility import logger


class DeviceAllocator:
    """
    Picks the lowest unused index for a device prefix.

    Nothing is reserved on the OS side, so two unlocked runs may pick the
    same name; run with the lock when checks can overlap.
    """

    def __init__(self, interfaces: InterfaceTable = psutil.net_if_addrs):
        self.interfaces = interfaces

    def allocate(self, prefix: str, excluding: Iterable[str] = ()) -> VPNDevice:
        excluded = set(excluding)
        for index in range(MAX_DEVICE_INDEX + 1):
            name = f"{prefix}{index}"
            if name in excluded:
                continue
            if interface_exists(name, self.interfaces):
                continue
            logger.info(f"Allocated device {name}")
            return VPNDevice.from_name(name)
        raise NoDeviceAvailableError(f"Error: Could not allocate '{prefix}' device")
