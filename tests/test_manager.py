import os
import signal
import threading

import pytest

from check_vpn.vpn.exceptions import (
    AuthenticationError,
    NoDeviceAvailableError,
    RoutingError,
    VPNError,
)
from check_vpn.vpn.lock import LockManager
from check_vpn.vpn.manager import VPNCheckManager
from check_vpn.vpn.models import CheckRequest, CheckStatus, LifecycleState, VPNDevice
from check_vpn.vpn.plugins.base import VPNPlugin, VPNType
from check_vpn.vpn.probes import ConnectivityProber
from check_vpn.vpn.routing import RoutingManager
from check_vpn.vpn.utils import RetryPolicy


@pytest.fixture
def make_manager(settings, fake_host, policy):
    def factory(plugin, **kwargs):
        kwargs.setdefault("routing", RoutingManager(runner=fake_host, interfaces=fake_host.net_if_addrs))
        kwargs.setdefault("prober", ConnectivityProber(runner=fake_host))
        kwargs.setdefault("lock_manager", LockManager(settings.lock_path, RetryPolicy(1.0, 30, policy.sleep)))
        return VPNCheckManager(settings, plugin_factory=lambda name, s: plugin, policy=policy, **kwargs)
    return factory


def ssh_request(**kwargs):
    kwargs.setdefault("vpn_type", "ssh")
    kwargs.setdefault("host", "lns")
    kwargs.setdefault("username", "root")
    kwargs.setdefault("url", "http://example.com")
    return CheckRequest(**kwargs)


def assert_clean(fake_host, spawner):
    assert fake_host.rules == set()
    assert fake_host.routes == {}
    assert not [name for name in fake_host.interfaces if name.startswith("tun")]
    assert all(p.poll() is not None for p in spawner.processes)


def test_ok(make_manager, ssh_plugin, fake_host, spawner):
    manager = make_manager(ssh_plugin)
    result = manager.run(ssh_request())

    assert result.status is CheckStatus.OK
    assert result.exit_code == 0
    assert result.line == "OK: ssh VPN to 'lns' via 'tun0'"
    assert manager.state is LifecycleState.UNLOCKED
    assert any(call.startswith("curl ") and "--interface tun0" in call for call in fake_host.calls)
    assert "ip rule add from 192.168.8.2 table 3000" in fake_host.calls
    assert_clean(fake_host, spawner)


def test_unreachable_url_warns_and_tears_down(make_manager, ssh_plugin, fake_host, spawner):
    fake_host.failures.append("curl")
    result = make_manager(ssh_plugin).run(ssh_request())

    assert result.status is CheckStatus.WARNING
    assert result.exit_code == 1
    assert "Could not fetch 'http://example.com'" in result.message
    assert "ip rule del table 3000" in fake_host.calls
    assert_clean(fake_host, spawner)


def test_port_closed_is_critical(make_manager, ssh_plugin, fake_host, spawner, port_prober):
    port_prober.open = False
    result = make_manager(ssh_plugin).run(ssh_request())

    assert result.status is CheckStatus.CRITICAL
    assert result.exit_code == 2
    assert "closed" in result.message
    assert spawner.processes == []
    assert ssh_plugin.processes == {}


def test_lock_held_elsewhere_is_critical(make_manager, ssh_plugin, fake_host, spawner, settings, fake_sleep):
    os.mkdir(settings.lock_path)
    result = make_manager(ssh_plugin).run(ssh_request(lock=True))

    assert result.status is CheckStatus.CRITICAL
    assert result.exit_code == 2
    assert "lock" in result.message
    assert "via 'none'" in result.message
    assert fake_sleep.calls == 30
    assert fake_host.calls == []
    assert spawner.calls == []
    # still the other run's lock
    assert os.path.isdir(settings.lock_path)


def test_lock_released_after_check(make_manager, ssh_plugin, settings):
    result = make_manager(ssh_plugin).run(ssh_request(lock=True))
    assert result.status is CheckStatus.OK
    assert not os.path.exists(settings.lock_path)


def test_user_supplied_device(make_manager, ssh_plugin, fake_host, spawner):
    result = make_manager(ssh_plugin).run(ssh_request(device="tun7"))
    assert result.status is CheckStatus.OK
    assert "via 'tun7'" in result.message
    assert "ip rule add from 192.168.8.30 table 3007" in fake_host.calls
    assert_clean(fake_host, spawner)


def test_stale_tunnel_is_stopped_first(make_manager, ssh_plugin):
    stopped = []
    original = ssh_plugin.stop_vpn
    ssh_plugin.stop_vpn = lambda host, device=None: stopped.append((host, device)) or original(host, device)
    make_manager(ssh_plugin).run(ssh_request())
    assert stopped[0] == ("lns", None)
    assert stopped[-1][1].name == "tun0"


class StubPlugin(VPNPlugin):
    """Scripted backend recording what the lifecycle asked of it."""

    vpn_type = VPNType.SSH

    def __init__(self, settings, start_error=None, comes_up=True, goes_down=True,
                 allocation_error=None, on_start=None):
        super().__init__(settings)
        self.on_start = on_start
        self.start_error = start_error
        self.comes_up = comes_up
        self.goes_down = goes_down
        self.allocation_error = allocation_error
        self.events = []
        self.up = False

    def allocate_device(self, extra_args):
        if self.allocation_error:
            raise self.allocation_error
        return VPNDevice.from_name("tun4")

    def start_vpn(self, host, username, password, device, extra_args):
        self.events.append("start")
        if self.on_start:
            self.on_start()
        if self.start_error:
            raise self.start_error
        self.up = self.comes_up

    def stop_vpn(self, host, device=None):
        self.events.append(("stop", device.name if device else None))
        if self.goes_down:
            self.up = False

    def is_vpn_up(self, host, device):
        return self.up

    def diagnostics(self, device):
        self.events.append("diagnostics")


class RecordingRouting:
    def __init__(self, up_error=None, down_error=None):
        self.up_error = up_error
        self.down_error = down_error
        self.events = []

    def up(self, device):
        self.events.append(("up", device.name))
        if self.up_error:
            raise self.up_error

    def down(self, device):
        self.events.append(("down", device.name))
        if self.down_error:
            raise self.down_error


def test_teardown_runs_when_start_fails(make_manager, settings):
    plugin = StubPlugin(settings, start_error=AuthenticationError("Could not SSH to 'root@lns'"))
    routing = RecordingRouting()
    result = make_manager(plugin, routing=routing).run(ssh_request(lock=True))

    assert result.status is CheckStatus.CRITICAL
    assert result.message.endswith("Could not SSH to 'root@lns'")
    assert plugin.events == [("stop", None), "start", ("stop", "tun4")]
    assert routing.events == [("down", "tun4")]
    assert not os.path.exists(settings.lock_path)


def test_up_timeout_is_critical(make_manager, settings, fake_sleep):
    plugin = StubPlugin(settings, comes_up=False)
    routing = RecordingRouting()
    result = make_manager(plugin, routing=routing).run(ssh_request())

    assert result.status is CheckStatus.CRITICAL
    assert "Timed out" in result.message
    assert "diagnostics" in plugin.events
    assert routing.events == [("down", "tun4")]
    assert plugin.events[-1] == ("stop", "tun4")
    assert fake_sleep.calls == 30


def test_routing_failure_is_critical(make_manager, settings, fake_host):
    plugin = StubPlugin(settings)
    routing = RecordingRouting(up_error=RoutingError("No IPv4 address on 'tun4'"))
    result = make_manager(plugin, routing=routing).run(ssh_request())

    assert result.status is CheckStatus.CRITICAL
    assert not any(call.startswith("curl") for call in fake_host.calls)
    assert routing.events == [("up", "tun4"), ("down", "tun4")]


def test_teardown_failure_does_not_change_verdict(make_manager, settings, fake_host):
    fake_host.failures.append("curl")
    plugin = StubPlugin(settings, goes_down=False)
    routing = RecordingRouting(down_error=VPNError("boom"))
    result = make_manager(plugin, routing=routing).run(ssh_request())

    assert result.status is CheckStatus.WARNING


def test_teardown_failure_keeps_ok(make_manager, settings):
    plugin = StubPlugin(settings)
    routing = RecordingRouting(down_error=VPNError("boom"))
    result = make_manager(plugin, routing=routing).run(ssh_request())
    assert result.status is CheckStatus.OK


def test_no_device_available(make_manager, settings):
    plugin = StubPlugin(settings, allocation_error=NoDeviceAvailableError("Error: Could not allocate 'tun' device"))
    routing = RecordingRouting()
    result = make_manager(plugin, routing=routing).run(ssh_request(lock=True))

    assert result.status is CheckStatus.CRITICAL
    assert "Could not allocate" in result.message
    assert plugin.events == []
    assert routing.events == []
    assert not os.path.exists(settings.lock_path)


def test_default_url_from_settings(make_manager, settings, fake_host):
    plugin = StubPlugin(settings)
    make_manager(plugin, routing=RecordingRouting()).run(ssh_request(url=None))
    assert any(call.endswith(settings.default_url) for call in fake_host.calls)


def test_unusable_tunnel_log_is_critical(make_manager, ssh_plugin, fake_host, spawner, tmp_path):
    (tmp_path / "check_vpn_ssh_tun0.log").mkdir()
    result = make_manager(ssh_plugin).run(ssh_request())

    assert result.status is CheckStatus.CRITICAL
    assert "could not reset SSH log" in result.message
    assert spawner.calls == []
    assert_clean(fake_host, spawner)


def test_interrupt_during_check_tears_down_and_releases_lock(make_manager, settings, capsys):
    plugin = StubPlugin(settings)
    routing = RecordingRouting()
    manager = make_manager(plugin, routing=routing)
    plugin.on_start = lambda: manager.lock_manager._on_interrupt(signal.SIGTERM, None)

    with pytest.raises(SystemExit) as excinfo:
        manager.run(ssh_request(lock=True))

    assert excinfo.value.code == 2
    assert plugin.events == [("stop", None), "start", ("stop", "tun4")]
    assert routing.events == [("down", "tun4")]
    assert not os.path.exists(settings.lock_path)
    assert capsys.readouterr().out.startswith("CRITICAL: interrupted by signal")


def test_concurrent_locked_runs_do_not_overlap(make_manager, settings, fake_sleep):
    plugin = StubPlugin(settings)
    manager = make_manager(plugin, routing=RecordingRouting())
    inner = []

    def run_second_check():
        thread = threading.Thread(target=lambda: inner.append(manager.run(ssh_request(lock=True))))
        thread.start()
        thread.join()
        # the losing run must leave the holder's marker alone
        assert os.path.isdir(settings.lock_path)

    plugin.on_start = run_second_check
    result = manager.run(ssh_request(lock=True))

    assert result.status is CheckStatus.OK
    assert inner[0].status is CheckStatus.CRITICAL
    assert "Could not acquire lock" in inner[0].message
    assert plugin.events.count("start") == 1
    assert fake_sleep.calls == 30
    assert not os.path.exists(settings.lock_path)


def test_start_polls_count_against_up_window(make_manager, settings, fake_sleep):
    plugin = StubPlugin(settings, comes_up=False)
    plugin.startup_polls = 25
    result = make_manager(plugin, routing=RecordingRouting()).run(ssh_request())

    assert result.status is CheckStatus.CRITICAL
    assert "Timed out" in result.message
    assert fake_sleep.calls == 5
