"""Source based routing for a single tunnel device.

Traffic sourced from the device's local address is looked up in a table
owned by the device, whose default route leaves through the device. This
forces the connectivity probe through the tunnel without touching the main
routing table.
"""

import ipaddress
from typing import Optional

import psutil

from .command_factory import VPNCommandFactory
from .commands import CommandError
from .exceptions import RoutingError
from .models import RoutingTableBinding, VPNDevice
from .utils import InterfaceTable, Runner, interface_ipv4, run_command
from ..logging_utility import logger


class RoutingManager:
    def __init__(self, runner: Runner = run_command, use_sudo: bool = False,
                 gateway: Optional[str] = None, interfaces: InterfaceTable = psutil.net_if_addrs):
        self.runner = runner
        self.use_sudo = use_sudo
        self.gateway = gateway
        self.interfaces = interfaces

    def _run(self, cmd: list[str], check: bool = True) -> None:
        try:
            self.runner(cmd, use_sudo=self.use_sudo)
        except CommandError as e:
            if check:
                raise
            # rules and routes may legitimately be missing already
            logger.debug(f"Ignoring: {e}")

    def _addresses(self, device: VPNDevice) -> tuple[str, str]:
        addresses = interface_ipv4(device.name, self.interfaces)
        if not addresses:
            raise RoutingError(f"No IPv4 address on '{device}'")
        addr = addresses[0]
        if addr.ptp:
            return addr.address, addr.ptp
        # no peer (tap), route the connected network instead
        network = ipaddress.ip_interface(f"{addr.address}/{addr.netmask}").network
        return addr.address, str(network)

    def up(self, device: VPNDevice) -> RoutingTableBinding:
        """
        Install the per-device table and the rule pointing at it.

        Raises:
            RoutingError: the device has no address or a command failed
        """
        table = device.table
        local, remote = self._addresses(device)
        logger.info(f"Setting up source routing for {device}: from {local} table {table}")
        try:
            self._run(VPNCommandFactory.add_route(remote, device.name, table))
            self._run(VPNCommandFactory.add_routing_rule(local, table))
            self._run(VPNCommandFactory.add_route("default", device.name, table, self.gateway))
        except CommandError as e:
            raise RoutingError(f"Could not set up routing for '{device}': {e}")
        return RoutingTableBinding(
            device=device,
            table=table,
            local_address=local,
            remote_address=remote,
            gateway=self.gateway,
        )

    def down(self, device: VPNDevice) -> None:
        """Remove the rule and flush the device's table. Best-effort."""
        table = device.table
        logger.info(f"Removing source routing for {device} (table {table})")
        self._run(VPNCommandFactory.delete_routing_rule(table), check=False)
        self._run(VPNCommandFactory.flush_routing_table(table), check=False)
