"""Runtime settings for check_vpn.

Values come from an optional INI file (section ``[check_vpn]``) and are then
overridden by environment variables, so a monitoring host can tweak a single
knob (the gateway, typically) without shipping a config file.
"""

import configparser
import os
import tempfile
from dataclasses import dataclass, fields, replace
from typing import Optional

from .vpn.exceptions import ConfigurationError

DEFAULT_CONFIG_FILE = "/etc/check_vpn/check_vpn.conf"
SECTION = "check_vpn"

ENV_OVERRIDES = {
    "CHECK_VPN_GATEWAY": "gateway",
    "CHECK_VPN_LOCK_PATH": "lock_path",
    "CHECK_VPN_USE_SUDO": "use_sudo",
    "SSH_DEVICE_PREFIX": "ssh_device_prefix",
}


@dataclass(frozen=True)
class Settings:
    lock_path: str = os.path.join(tempfile.gettempdir(), "check_vpn.lock")
    lock_attempts: int = 30
    poll_interval: float = 1.0
    poll_attempts: int = 30
    gateway: Optional[str] = None
    use_sudo: bool = False
    connect_timeout: int = 10
    speed_time: int = 5
    default_url: str = "http://www.google.com"
    ssh_device_prefix: str = "tun"
    ssh_vpn_net: str = "192.168.8.0/22"


def _coerce(name: str, raw: str):
    """Convert a raw string to the type of the matching Settings field."""
    defaults = Settings()
    default = getattr(defaults, name)
    try:
        if isinstance(default, bool):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid value '{raw}' for setting '{name}'")
    if default is None and not raw:
        return None
    return raw


def _load_config(config_file: str) -> configparser.ConfigParser:
    config = configparser.ConfigParser()
    try:
        config.read(config_file)
    except configparser.Error as e:
        raise ConfigurationError(f"Could not parse '{config_file}': {e}")
    return config


def load_settings(config_file: Optional[str] = None, environ=None) -> Settings:
    """Build Settings from the config file and environment."""
    environ = os.environ if environ is None else environ
    config_file = config_file or environ.get("CHECK_VPN_CONFIG", DEFAULT_CONFIG_FILE)

    values = {}
    config = _load_config(config_file)
    if config.has_section(SECTION):
        known = {field.name for field in fields(Settings)}
        for key, raw in config.items(SECTION):
            if key not in known:
                raise ConfigurationError(f"Unknown setting '{key}' in '{config_file}'")
            values[key] = _coerce(key, raw)

    for variable, name in ENV_OVERRIDES.items():
        if variable in environ:
            values[name] = _coerce(name, environ[variable])

    settings = replace(Settings(), **values)
    if settings.ssh_device_prefix not in ("tun", "tap"):
        raise ConfigurationError(
            f"SSH device prefix must be 'tun' or 'tap', not '{settings.ssh_device_prefix}'"
        )
    return settings
