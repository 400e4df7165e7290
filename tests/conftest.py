"""
Pytest configuration and fixtures for check_vpn tests.

The fakes below stand in for the host: FakeHost plays the part of ``ip``,
``ssh`` and ``curl`` (recording every command) and exposes its interfaces in
the shape of ``psutil.net_if_addrs``.
"""

import ipaddress
import os
import socket
import tempfile
from collections import namedtuple
from typing import Dict, List, Optional

# must be set before check_vpn.logging_utility is imported
os.environ.setdefault("CHECK_VPN_LOG_DIR", tempfile.mkdtemp(prefix="check_vpn_logs_"))

import psutil
import pytest

from check_vpn.config import Settings
from check_vpn.vpn.commands import CommandError
from check_vpn.vpn.plugins.ssh import SSHPlugin
from check_vpn.vpn.utils import RetryPolicy

Addr = namedtuple("Addr", "family address netmask broadcast ptp")


def link_addr() -> Addr:
    return Addr(psutil.AF_LINK, "", None, None, None)


def inet_addr(address: str, netmask: str = "255.255.255.255", ptp: Optional[str] = None) -> Addr:
    return Addr(socket.AF_INET, address, netmask, None, ptp)


class FakeHost:
    """Command runner and interface table of a pretend machine."""

    def __init__(self):
        self.interfaces: Dict[str, List[Addr]] = {
            "lo": [link_addr(), inet_addr("127.0.0.1", "255.0.0.0")],
            "eth0": [link_addr(), inet_addr("10.0.0.5", "255.255.255.0")],
        }
        self.rules = set()
        self.routes: Dict[str, List[str]] = {}
        self.calls: List[str] = []
        self.envs: List[Optional[dict]] = []
        self.failures: List[str] = []
        self.outputs: Dict[str, str] = {}

    def net_if_addrs(self):
        return {name: list(addrs) for name, addrs in self.interfaces.items()}

    def __call__(self, cmd, check=True, use_sudo=False, timeout=None, env=None):
        line = " ".join(cmd)
        self.calls.append(line)
        self.envs.append(env)
        for pattern in self.failures:
            if pattern in line:
                raise CommandError(f"Command failed: {line}")

        if cmd[:3] == ["ip", "rule", "add"]:
            self.rules.add((cmd[4], cmd[6]))
        elif cmd[:3] == ["ip", "rule", "del"]:
            matching = {rule for rule in self.rules if rule[1] == cmd[4]}
            if not matching:
                raise CommandError(f"Command failed: {line}\nRTNETLINK answers: No such file or directory")
            self.rules.remove(sorted(matching)[0])
        elif cmd[:3] == ["ip", "route", "add"]:
            self.routes.setdefault(cmd[-1], []).append(cmd[3])
        elif cmd[:3] == ["ip", "route", "flush"]:
            self.routes.pop(cmd[-1], None)
        elif cmd[:3] == ["ip", "addr", "add"]:
            self._add_address(cmd)

        for pattern, output in self.outputs.items():
            if pattern in line:
                return output, ""
        return "", ""

    def _add_address(self, cmd):
        device = cmd[cmd.index("dev") + 1]
        if device not in self.interfaces:
            raise CommandError(f"Command failed: ip addr add\nCannot find device \"{device}\"")
        if "peer" in cmd:
            addr = inet_addr(cmd[3], ptp=cmd[5].split("/")[0])
        else:
            interface = ipaddress.ip_interface(cmd[3])
            addr = inet_addr(str(interface.ip), str(interface.netmask))
        self.interfaces[device].append(addr)

    def add_tunnel(self, name: str, address: Optional[str] = None, peer: Optional[str] = None):
        self.interfaces[name] = [link_addr()]
        if address:
            self.interfaces[name].append(inet_addr(address, ptp=peer))

    def remove(self, name: str):
        self.interfaces.pop(name, None)


class FakeProcess:
    """Popen stand-in; terminating it tears its tunnel device down."""

    _next_pid = 4000

    def __init__(self, on_exit=None, returncode=None):
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.returncode = returncode
        self.on_exit = on_exit
        self.terminated = False

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.returncode = -15
        if self.on_exit:
            self.on_exit()

    def kill(self):
        self.terminate()

    def wait(self, timeout=None):
        return self.returncode


class FakeSpawner:
    """Starts pretend ssh tunnels: the local device appears when spawned."""

    def __init__(self, host: FakeHost, creates_device: bool = True, exits: bool = False):
        self.host = host
        self.creates_device = creates_device
        self.exits = exits
        self.calls = []
        self.processes: List[FakeProcess] = []

    def __call__(self, cmd, log_file=None, env=None):
        self.calls.append((cmd, log_file, env))
        device = "tun%s" % cmd[cmd.index("-w") + 1].split(":")[0]
        if "Tunnel=ethernet" in cmd:
            device = "tap" + device[3:]
        if self.creates_device:
            self.host.add_tunnel(device)
        process = FakeProcess(on_exit=lambda: self.host.remove(device),
                              returncode=255 if self.exits else None)
        self.processes.append(process)
        return process


class FakePortProber:
    def __init__(self, open_=True):
        self.open = open_
        self.probed = []

    def is_open(self, host, port):
        self.probed.append((host, port))
        return self.open


class FakeSleep:
    def __init__(self, on_sleep=None):
        self.calls = 0
        self.on_sleep = on_sleep

    def __call__(self, seconds):
        self.calls += 1
        if self.on_sleep:
            self.on_sleep(self.calls)


def which_without_sshpass(name):
    return None if name == "sshpass" else f"/usr/bin/{name}"


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(lock_path=str(tmp_path / "check_vpn.lock"))


@pytest.fixture
def policy(fake_sleep) -> RetryPolicy:
    return RetryPolicy(1.0, 30, fake_sleep)


@pytest.fixture
def spawner(fake_host) -> FakeSpawner:
    return FakeSpawner(fake_host)


@pytest.fixture
def port_prober() -> FakePortProber:
    return FakePortProber()


@pytest.fixture
def ssh_plugin(settings, fake_host, spawner, port_prober, policy, tmp_path) -> SSHPlugin:
    fake_host.outputs["seq 0 255"] = "tun0\n"
    return SSHPlugin(
        settings,
        runner=fake_host,
        interfaces=fake_host.net_if_addrs,
        spawner=spawner,
        port_prober=port_prober,
        process_iter=lambda attrs: [],
        which=which_without_sshpass,
        policy=policy,
        log_dir=str(tmp_path),
    )
