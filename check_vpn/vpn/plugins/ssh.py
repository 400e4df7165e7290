"""SSH backend: a tun/tap tunnel set up with ``ssh -w``.

The SSH server needs ``PermitTunnel yes``. The check usually runs as root,
since creating tunnel devices locally requires it.
"""

import ipaddress
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import psutil

from .base import VPNPlugin, VPNType
from ..command_factory import VPNCommandFactory
from ..commands import CommandError
from ..devices import DeviceAllocator
from ..exceptions import (
    AuthenticationError,
    PortClosedError,
    RemoteAllocationError,
    StartError,
)
from ..models import VPNDevice
from ..probes import PortProber
from ..utils import (
    InterfaceTable,
    RetryPolicy,
    Runner,
    interface_exists,
    log_vpn_output,
    run_command,
    spawn_command,
    wait_for,
)
from ...config import Settings
from ...logging_utility import logger

SSH_PORT = 22
ENDPOINT_PREFIXLEN = 30
PORT_OPTION_RE = re.compile(r"^port=(\d+)$", re.IGNORECASE)


def guess_port(extra_args: Sequence[str]) -> int:
    """Port given through '-p PORT' or '-o Port=PORT' in the ssh arguments."""
    args = list(extra_args)
    for i, arg in enumerate(args):
        following = args[i + 1] if i + 1 < len(args) else ""
        if arg == "-p" and following.isdigit():
            return int(following)
        if arg.startswith("-p") and arg[2:].isdigit():
            return int(arg[2:])
        if arg == "-o":
            match = PORT_OPTION_RE.match(following)
            if match:
                return int(match.group(1))
        if arg.startswith("-o"):
            match = PORT_OPTION_RE.match(arg[2:])
            if match:
                return int(match.group(1))
    return SSH_PORT


class SSHPlugin(VPNPlugin):
    vpn_type = VPNType.SSH

    def __init__(self, settings: Settings, runner: Runner = run_command,
                 interfaces: InterfaceTable = psutil.net_if_addrs,
                 spawner: Callable[..., subprocess.Popen] = spawn_command,
                 port_prober: Optional[PortProber] = None,
                 process_iter: Callable = psutil.process_iter,
                 which: Callable[[str], Optional[str]] = shutil.which,
                 policy: Optional[RetryPolicy] = None,
                 log_dir: Optional[str] = None):
        super().__init__(settings, runner, interfaces)
        self.prefix = settings.ssh_device_prefix
        self.allocator = DeviceAllocator(interfaces)
        self.spawner = spawner
        self.port_prober = port_prober or PortProber()
        self.process_iter = process_iter
        self.which = which
        self.policy = policy or RetryPolicy(settings.poll_interval, settings.poll_attempts)
        self.log_dir = Path(log_dir or tempfile.gettempdir())
        # tunnels started by this run, keyed by (host, device name)
        self.processes: Dict[Tuple[str, str], subprocess.Popen] = {}

    @property
    def ethernet(self) -> bool:
        return self.prefix == "tap"

    def allocate_device(self, extra_args: Sequence[str]) -> VPNDevice:
        return self.allocator.allocate(self.prefix)

    def endpoints(self, device: VPNDevice) -> Tuple[str, str]:
        """
        Tunnel addresses of a device: the index-th /30 of the tunnel network.

        Returns:
            (local address, remote address)
        """
        network = ipaddress.ip_network(self.settings.ssh_vpn_net)
        size = 2 ** (32 - ENDPOINT_PREFIXLEN)
        if (device.index + 1) * size > network.num_addresses:
            raise StartError(f"Error: no tunnel subnet left in {network} for '{device}'")
        base = network.network_address + device.index * size
        return str(base + 2), str(base + 1)

    def log_file(self, device: VPNDevice) -> Path:
        return self.log_dir / f"check_vpn_ssh_{device.name}.log"

    def _ssh(self, destination: str, extra_args: Sequence[str], remote_cmd: str,
             password: str) -> str:
        use_sshpass = bool(password) and self.which("sshpass") is not None
        cmd = VPNCommandFactory.ssh(destination, extra_args, remote_cmd,
                                    batch_mode=not use_sshpass, use_sshpass=use_sshpass)
        stdout, _ = self.runner(cmd, use_sudo=self.settings.use_sudo,
                                env={"SSHPASS": password} if use_sshpass else None)
        return stdout

    def start_vpn(self, host: str, username: str, password: str,
                  device: VPNDevice, extra_args: Sequence[str]) -> None:
        if self.which("ssh") is None:
            raise StartError("Error: ssh not installed")

        port = guess_port(extra_args)
        if not self.port_prober.is_open(host, port):
            raise PortClosedError(f"Port '{port}' closed on '{host}'")

        destination = f"{username}@{host}" if username else host
        try:
            self._ssh(destination, extra_args, "true", password)
        except CommandError as e:
            logger.error(f"SSH login to {destination} failed: {e}")
            raise AuthenticationError(f"Could not SSH to '{destination}'")

        remote_device = self._allocate_remote_device(destination, host, extra_args, password)
        local_ip, remote_ip = self.endpoints(device)
        peer = None if self.ethernet else local_ip
        remote_cmd = VPNCommandFactory.remote_configure(
            remote_device.name, remote_ip, peer, ENDPOINT_PREFIXLEN)

        use_sshpass = bool(password) and self.which("sshpass") is not None
        cmd = VPNCommandFactory.ssh(
            destination, extra_args, remote_cmd,
            batch_mode=not use_sshpass,
            use_sshpass=use_sshpass,
            tunnel=(device.index, remote_device.index),
            ethernet=self.ethernet,
        )
        if self.settings.use_sudo:
            cmd = ["sudo"] + cmd

        log_file = self.log_file(device)
        try:
            if log_file.exists():
                log_file.unlink()
        except OSError as e:
            raise StartError(f"Error: could not reset SSH log '{log_file}': {e}")
        logger.info(f"Starting SSH tunnel {device}<->{remote_device} to {destination}")
        try:
            process = self.spawner(cmd, log_file=log_file,
                                   env={"SSHPASS": password} if use_sshpass else None)
        except CommandError as e:
            raise StartError(f"Error: SSH connection failed to '{host}': {e}")
        self.processes[(host, device.name)] = process

        self._configure_local_end(host, device, process, local_ip, remote_ip)

    def _allocate_remote_device(self, destination: str, host: str,
                                extra_args: Sequence[str], password: str) -> VPNDevice:
        try:
            stdout = self._ssh(destination, extra_args,
                               VPNCommandFactory.remote_allocate(self.prefix), password)
        except CommandError as e:
            logger.error(f"Remote device allocation on {host} failed: {e}")
            stdout = ""
        try:
            return VPNDevice.from_name(stdout.strip())
        except ValueError:
            raise RemoteAllocationError(
                f"Error: Could not allocate '{self.prefix}' device on '{host}'"
            )

    def _configure_local_end(self, host: str, device: VPNDevice, process: subprocess.Popen,
                             local_ip: str, remote_ip: str) -> None:
        self.startup_polls = 0

        def device_or_exit() -> bool:
            self.startup_polls += 1
            return process.poll() is not None or interface_exists(device.name, self.interfaces)

        wait_for(device_or_exit, self.policy, f"local device {device}")
        if process.poll() is not None or not interface_exists(device.name, self.interfaces):
            log_vpn_output(str(self.log_file(device)))
            raise StartError(f"Error: SSH connection failed to '{host}'")

        peer = None if self.ethernet else remote_ip
        try:
            self.runner(VPNCommandFactory.add_address(device.name, local_ip, peer, ENDPOINT_PREFIXLEN),
                        use_sudo=self.settings.use_sudo)
            self.runner(VPNCommandFactory.link_up(device.name), use_sudo=self.settings.use_sudo)
        except CommandError as e:
            logger.error(f"Configuring {device} failed: {e}")
            raise StartError(f"Error: SSH connection failed to '{host}'")

    def stop_vpn(self, host: str, device: Optional[VPNDevice] = None) -> None:
        tracked = [key for key in self.processes
                   if key[0] == host and (device is None or key[1] == device.name)]
        for key in tracked:
            self._terminate(self.processes.pop(key))
        if not tracked:
            # nothing started by this run, look for leftovers of an earlier one
            for proc in self._find_processes(host, device):
                logger.warning(f"Killing stray ssh process {proc.pid} to {host}")
                try:
                    proc.terminate()
                except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                    logger.warning(f"Could not kill ssh process {proc.pid}: {e}")

    @staticmethod
    def _terminate(process: subprocess.Popen) -> None:
        if process.poll() is not None:
            return
        logger.info(f"Terminating ssh process {process.pid}")
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def _find_processes(self, host: str, device: Optional[VPNDevice]) -> List:
        """ssh processes whose command line names host (and device, if given)."""
        found = []
        for proc in self.process_iter(["pid", "name", "cmdline"]):
            if proc.info.get("name") != "ssh":
                continue
            cmdline = proc.info.get("cmdline") or []
            if not any(arg == host or arg.endswith(f"@{host}") for arg in cmdline):
                continue
            if device is not None and not self._bridges(cmdline, device):
                continue
            found.append(proc)
        return found

    @staticmethod
    def _bridges(cmdline: Sequence[str], device: VPNDevice) -> bool:
        for i, arg in enumerate(cmdline[:-1]):
            if arg == "-w" and cmdline[i + 1].split(":")[0] == str(device.index):
                return True
        return False

    def diagnostics(self, device: VPNDevice) -> None:
        log_vpn_output(str(self.log_file(device)))
