"""Factory for creating VPN-related commands."""

from typing import Optional, Sequence, Tuple
from .commands import (
    CHECK_URL,
    IP_ADDR_ADD,
    IP_LINK_SET,
    IP_ROUTE_ADD,
    IP_ROUTE_FLUSH,
    IP_RULE_ADD,
    IP_RULE_DEL,
    SSH,
    SSHPASS,
)

REMOTE_ALLOCATE_SCRIPT = (
    "for i in $(seq 0 255); do "
    "ip link show {prefix}$i >/dev/null 2>&1 || {{ echo {prefix}$i; break; }}; "
    "done"
)


class VPNCommandFactory:
    """Factory for creating VPN check commands."""

    @staticmethod
    def check_url(interface: str, url: str, connect_timeout: int, speed_time: int) -> list[str]:
        """Create command fetching a URL through one interface."""
        return (
            CHECK_URL
            .with_option("interface", interface)
            .with_options(connect_timeout=connect_timeout, speed_time=speed_time)
            .with_arg(url)
            .build()
        )

    @staticmethod
    def add_address(interface: str, local: str, peer: Optional[str], prefixlen: int) -> list[str]:
        """Create command configuring a tunnel endpoint address."""
        cmd = IP_ADDR_ADD.with_arg(f"{local}/{prefixlen}")
        if peer:
            cmd = IP_ADDR_ADD.with_args(local, "peer", f"{peer}/{prefixlen}")
        return cmd.with_args("dev", interface).build()

    @staticmethod
    def link_up(interface: str) -> list[str]:
        return IP_LINK_SET.with_args("dev", interface, "up").build()

    @staticmethod
    def add_route(destination: str, interface: str, table: int, gateway: Optional[str] = None) -> list[str]:
        """Create route command for a per-device table."""
        cmd = IP_ROUTE_ADD.with_arg(destination)
        if gateway:
            cmd = cmd.with_args("via", gateway)
        return cmd.with_args("dev", interface, "table", table).build()

    @staticmethod
    def add_routing_rule(source: str, table: int) -> list[str]:
        """Command to add a source routing rule."""
        return IP_RULE_ADD.with_args("from", source, "table", table).build()

    @staticmethod
    def delete_routing_rule(table: int) -> list[str]:
        """Command to delete routing rule."""
        return IP_RULE_DEL.with_args("table", table).build()

    @staticmethod
    def flush_routing_table(table: int) -> list[str]:
        """Command to flush routing table."""
        return IP_ROUTE_FLUSH.with_args("table", table).build()

    @staticmethod
    def ssh(destination: str, extra_args: Sequence[str], remote_cmd: str,
            batch_mode: bool = False, use_sshpass: bool = False,
            tunnel: Optional[Tuple[int, int]] = None, ethernet: bool = False) -> list[str]:
        """
        Create an ssh invocation.

        Args:
            destination: user@host
            extra_args: Backend arguments given by the user
            remote_cmd: Command run on the remote side
            batch_mode: Refuse interactive authentication
            use_sshpass: Wrap in sshpass, password taken from $SSHPASS
            tunnel: Local and remote device numbers to bridge with -w
            ethernet: Layer 2 tunnel (tap) instead of point-to-point
        """
        cmd = SSH
        if batch_mode:
            cmd = cmd.with_option("o", "BatchMode=yes")
        if tunnel:
            mode = "ethernet" if ethernet else "point-to-point"
            cmd = cmd.with_option("o", f"Tunnel={mode}").with_option("w", "%d:%d" % tunnel)
        cmd = cmd.with_args(*extra_args).with_args(destination, remote_cmd)
        if use_sshpass:
            return SSHPASS.build() + cmd.build()
        return cmd.build()

    @staticmethod
    def remote_allocate(prefix: str) -> str:
        """Remote shell loop printing the first free device name."""
        return REMOTE_ALLOCATE_SCRIPT.format(prefix=prefix)

    @staticmethod
    def remote_configure(interface: str, local: str, peer: Optional[str], prefixlen: int) -> str:
        """Remote shell command bringing up the LNS end of the tunnel."""
        address = " ".join(VPNCommandFactory.add_address(interface, local, peer, prefixlen))
        link = " ".join(VPNCommandFactory.link_up(interface))
        # keep the session, and with it the tunnel, alive until ssh is killed
        return f"{address} && {link} && while :; do sleep 3600; done"
