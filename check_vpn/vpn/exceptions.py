"""Custom exceptions for VPN checks.

Every exception carries the human readable detail that ends up on the
single result line, so callers attach ``str(exc)`` to the final verdict.
"""


class VPNError(Exception):
    """Base exception for VPN-related errors."""
    pass


class UsageError(VPNError):
    """Raised for bad or missing arguments, or an unknown VPN type"""
    pass


class ConfigurationError(VPNError):
    """Raised when there's an issue with the check_vpn configuration"""
    pass


class LockTimeoutError(VPNError):
    """Raised when the host-wide lock could not be obtained in time"""
    pass


class DeviceAllocationError(VPNError):
    """Raised when a VPN device cannot be allocated"""
    pass


class NoDeviceAvailableError(DeviceAllocationError):
    """Raised when every index of a device prefix is taken"""
    pass


class StartError(VPNError):
    """Raised when a backend fails to start a tunnel"""
    pass


class PortClosedError(StartError):
    """Raised when the LNS port is not reachable"""
    pass


class AuthenticationError(StartError):
    """Raised when authentication against the LNS fails"""
    pass


class RemoteAllocationError(StartError):
    """Raised when no device could be allocated on the LNS side"""
    pass


class TunnelUpTimeoutError(VPNError):
    """Raised when the tunnel never reported up within the polling window"""
    pass


class RoutingError(VPNError):
    """Raised when source based routing cannot be set up"""
    pass


class ConnectivityProbeFailure(VPNError):
    """Raised when the test URL is unreachable through the tunnel"""
    pass
