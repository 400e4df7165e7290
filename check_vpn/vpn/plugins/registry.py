"""Registry of VPN backends, looked up by type name."""

from typing import Dict, List, Type

from .base import VPNPlugin, VPNType
from .ssh import SSHPlugin
from ..exceptions import UsageError
from ...config import Settings

PLUGINS: Dict[VPNType, Type[VPNPlugin]] = {
    VPNType.SSH: SSHPlugin,
}


def available_plugins() -> List[str]:
    return sorted(vpn_type.value for vpn_type in PLUGINS)


def load_plugin(name: str, settings: Settings, **kwargs) -> VPNPlugin:
    """
    Instantiate the backend registered under name.

    Raises:
        UsageError: no backend of that name
    """
    try:
        vpn_type = VPNType(name.lower())
        plugin_cls = PLUGINS[vpn_type]
    except (ValueError, KeyError):
        raise UsageError(
            f"Unknown VPN type '{name}', available: {', '.join(available_plugins())}"
        )
    return plugin_cls(settings, **kwargs)
