"""VPN check lifecycle."""

from dataclasses import replace
from typing import Callable, Optional

from .exceptions import (
    ConnectivityProbeFailure,
    DeviceAllocationError,
    LockTimeoutError,
    RoutingError,
    StartError,
    TunnelUpTimeoutError,
    VPNError,
)
from .lock import LockManager
from .models import (
    CheckRequest,
    CheckResult,
    CheckStatus,
    LifecycleState,
    VPNDevice,
    worst_status,
)
from .plugins.base import VPNPlugin
from .plugins.registry import load_plugin
from .probes import ConnectivityProber
from .routing import RoutingManager
from .utils import RetryPolicy, wait_for
from ..config import Settings
from ..logging_utility import logger


class VPNCheckManager:
    """
    Runs one check: lock, bring a tunnel up, probe through it, tear it down.

    Once a device has been picked, routing removal, tunnel stop and the
    down-wait always run, whatever happened before them.
    """

    def __init__(self, settings: Settings,
                 plugin_factory: Callable[[str, Settings], VPNPlugin] = load_plugin,
                 lock_manager: Optional[LockManager] = None,
                 routing: Optional[RoutingManager] = None,
                 prober: Optional[ConnectivityProber] = None,
                 policy: Optional[RetryPolicy] = None):
        self.settings = settings
        self.plugin_factory = plugin_factory
        self.policy = policy or RetryPolicy(settings.poll_interval, settings.poll_attempts)
        self.lock_manager = lock_manager or LockManager(
            settings.lock_path,
            RetryPolicy(1.0, settings.lock_attempts, self.policy.sleep),
        )
        self.routing = routing or RoutingManager(use_sudo=settings.use_sudo, gateway=settings.gateway)
        self.prober = prober or ConnectivityProber(
            use_sudo=settings.use_sudo,
            connect_timeout=settings.connect_timeout,
            speed_time=settings.speed_time,
        )
        self.state = LifecycleState.IDLE

    def _enter(self, state: LifecycleState) -> None:
        logger.info(f"{self.state.value} -> {state.value}")
        self.state = state

    @staticmethod
    def _result(status: CheckStatus, request: CheckRequest, device: Optional[VPNDevice],
                detail: Optional[str] = None) -> CheckResult:
        message = f"{request.vpn_type} VPN to '{request.host}' via '{device or 'none'}'"
        if detail:
            message = f"{message}: {detail}"
        return CheckResult(status=status, message=message)

    def run(self, request: CheckRequest) -> CheckResult:
        """
        Perform the whole check.

        Returns:
            CheckResult: OK, WARNING when only the connectivity probe failed,
            CRITICAL when the tunnel could not be locked, allocated or started
        """
        self.state = LifecycleState.IDLE
        plugin = self.plugin_factory(request.vpn_type, self.settings)
        device: Optional[VPNDevice] = None
        locked = False
        try:
            if request.lock:
                self.lock_manager.acquire()
                locked = True
                self._enter(LifecycleState.LOCKED)

            if request.device:
                device = VPNDevice.from_name(request.device)
            else:
                device = plugin.allocate_device(request.extra_args)
            self._enter(LifecycleState.DEVICE_READY)

            status, detail = self._check(plugin, request, device)
        except LockTimeoutError as e:
            logger.error(str(e))
            status, detail = CheckStatus.CRITICAL, str(e)
        except DeviceAllocationError as e:
            logger.error(str(e))
            status, detail = CheckStatus.CRITICAL, str(e)
        finally:
            if locked:
                self.lock_manager.release()
            self._enter(LifecycleState.UNLOCKED)

        result = self._result(status, request, device, detail)
        logger.info(f"Result: {result.line}")
        return result

    def _check(self, plugin: VPNPlugin, request: CheckRequest, device: VPNDevice):
        """Start, verify and tear down the tunnel on device."""
        status, detail = CheckStatus.OK, None

        plugin.stop_vpn(request.host)
        self._enter(LifecycleState.STALE_CLEARED)

        try:
            try:
                self._enter(LifecycleState.STARTING)
                plugin.start_vpn(request.host, request.username, request.password,
                                 device, request.extra_args)

                self._enter(LifecycleState.WAITING_UP)
                # polls the backend already spent on start come out of the same window
                up_policy = replace(self.policy, max_attempts=max(
                    1, self.policy.max_attempts - plugin.startup_polls))
                if not wait_for(lambda: plugin.is_vpn_up(request.host, device),
                                up_policy, f"{device} to come up"):
                    plugin.diagnostics(device)
                    raise TunnelUpTimeoutError(f"Timed out waiting for '{device}' to come up")

                self.routing.up(device)
                self._enter(LifecycleState.ROUTING_UP)

                url = request.url or self.settings.default_url
                try:
                    self.prober.probe(device, url)
                except ConnectivityProbeFailure as e:
                    status, detail = worst_status(status, CheckStatus.WARNING), str(e)
                self._enter(LifecycleState.CONNECTIVITY_CHECKED)
            except (StartError, TunnelUpTimeoutError, RoutingError) as e:
                logger.error(f"Check of {device} failed: {e}")
                status, detail = CheckStatus.CRITICAL, str(e)
        finally:
            self._teardown(plugin, request.host, device)

        return status, detail

    def _teardown(self, plugin: VPNPlugin, host: str, device: VPNDevice) -> None:
        """Never raises: a teardown problem must not hide the verdict."""
        self._enter(LifecycleState.ROUTING_DOWN)
        try:
            self.routing.down(device)
        except VPNError as e:
            logger.error(f"Removing routing for {device} failed: {e}")

        self._enter(LifecycleState.STOPPING)
        try:
            plugin.stop_vpn(host, device)
        except VPNError as e:
            logger.error(f"Stopping tunnel on {device} failed: {e}")

        self._enter(LifecycleState.WAITING_DOWN)
        if not wait_for(lambda: not plugin.is_vpn_up(host, device),
                        self.policy, f"{device} to go down"):
            logger.error(f"{device} still up after stopping the tunnel")
