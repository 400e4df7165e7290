"""Reachability probes run before and through a tunnel."""

import socket

from .command_factory import VPNCommandFactory
from .commands import CommandError
from .exceptions import ConnectivityProbeFailure
from .models import VPNDevice
from .utils import Runner, run_command
from ..logging_utility import logger


class PortProber:
    """TCP connect test against the LNS."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    def is_open(self, host: str, port: int) -> bool:
        try:
            with socket.create_connection((host, port), timeout=self.timeout):
                return True
        except OSError as e:
            logger.info(f"Port {port} on {host} not reachable: {e}")
            return False


class ConnectivityProber:
    """Single fetch of a URL, egressing through one device."""

    def __init__(self, runner: Runner = run_command, use_sudo: bool = False,
                 connect_timeout: int = 10, speed_time: int = 5):
        self.runner = runner
        self.use_sudo = use_sudo
        self.connect_timeout = connect_timeout
        self.speed_time = speed_time

    def probe(self, device: VPNDevice, url: str) -> None:
        """
        Fetch url through device, once.

        Raises:
            ConnectivityProbeFailure: curl exited non-zero
        """
        cmd = VPNCommandFactory.check_url(device.name, url, self.connect_timeout, self.speed_time)
        try:
            self.runner(cmd, use_sudo=self.use_sudo)
        except CommandError as e:
            logger.warning(f"Connectivity probe through {device} failed: {e}")
            raise ConnectivityProbeFailure(f"Could not fetch '{url}' through '{device}'")
        logger.info(f"Fetched {url} through {device}")
