"""Command templates and builders for VPN checks."""

from typing import List, Optional, Dict
from dataclasses import dataclass
from pathlib import Path

from .exceptions import VPNError


class CommandError(VPNError):
    """Base exception for command-related errors."""
    pass


class ValidationError(CommandError):
    """Raised when command validation fails."""
    pass


@dataclass
class Command:
    """Command builder with validation.

    Single letter options render POSIX style (``-o value``), longer ones
    GNU style (``--connect-timeout value``).
    """
    base_cmd: List[str]
    use_sudo: bool = False
    _valid_options: Optional[Dict[str, type]] = None

    def _validate_option(self, opt: str, value: Optional[str]) -> None:
        """Validate option and its value if validation rules exist."""
        if self._valid_options is not None:
            # Remove leading dashes for validation
            opt_name = opt.lstrip('-').replace('-', '_')

            if opt_name not in self._valid_options:
                valid_opts = ", ".join(self._render_option(opt)
                                       for opt in self._valid_options.keys())
                raise ValidationError(
                    f"Invalid option '{opt}' for command {self.base_cmd[0]}. "
                    f"Valid options are: {valid_opts}"
                )

            expected_type = self._valid_options[opt_name]
            if value is None:
                if expected_type is not type(None):
                    raise ValidationError(
                        f"Option '{opt}' requires a {expected_type.__name__} value"
                    )
                return
            try:
                if expected_type == Path:
                    Path(value)
                elif expected_type is type(None):
                    raise ValueError(value)
                else:
                    expected_type(value)
            except ValueError:
                raise ValidationError(
                    f"Invalid value '{value}' for option '{opt}'. Expected {expected_type.__name__}"
                )

    def _validate_executable(self) -> None:
        """Validate that base command exists."""
        if not self.base_cmd:
            raise ValidationError("Command cannot be empty")

    @staticmethod
    def _render_option(opt: str) -> str:
        opt_clean = opt.lstrip('-')
        if len(opt_clean) == 1:
            return f"-{opt_clean}"
        return "--" + opt_clean.replace("_", "-")

    @classmethod
    def from_str(cls, cmd: str, use_sudo: bool = False, valid_options: Optional[Dict[str, type]] = None) -> 'Command':
        """Create command from string with optional validation rules."""
        command = cls(cmd.split(), use_sudo, valid_options)
        command._validate_executable()
        return command

    def with_arg(self, arg: str) -> 'Command':
        """Add single argument."""
        return Command(self.base_cmd + [str(arg)], self.use_sudo, self._valid_options)

    def with_args(self, *args: str) -> 'Command':
        """Add multiple arguments."""
        return Command(self.base_cmd + [str(arg) for arg in args], self.use_sudo, self._valid_options)

    def with_option(self, opt: str, value: Optional[str] = None) -> 'Command':
        """Add option with validation."""
        value = str(value) if value is not None else None
        self._validate_option(opt, value)
        cmd = self.base_cmd.copy()
        cmd.append(self._render_option(opt))
        if value is not None:
            cmd.append(value)
        return Command(cmd, self.use_sudo, self._valid_options)

    def with_options(self, **kwargs: Optional[str]) -> 'Command':
        """Add multiple options with validation."""
        cmd = self
        for opt, value in kwargs.items():
            cmd = cmd.with_option(opt, value)
        return cmd

    def build(self) -> List[str]:
        """Get final command list."""
        self._validate_executable()
        return ["sudo"] + self.base_cmd if self.use_sudo else self.base_cmd


CURL_OPTIONS = {
    'interface': str,
    'silent': type(None),
    'output': Path,
    'connect_timeout': int,
    'speed_time': int,
}

SSH_OPTIONS = {
    'o': str,
    'w': str,
}

SSHPASS_OPTIONS = {
    'e': type(None),
}


IP = Command.from_str("ip")
IP_LINK = IP.with_arg("link")
IP_ADDR = IP.with_arg("addr")
IP_ROUTE = IP.with_arg("route")
IP_RULE = IP.with_arg("rule")

IP_ADDR_ADD = IP_ADDR.with_arg("add")
IP_LINK_SET = IP_LINK.with_arg("set")
IP_ROUTE_ADD = IP_ROUTE.with_arg("add")
IP_ROUTE_FLUSH = IP_ROUTE.with_arg("flush")
IP_RULE_ADD = IP_RULE.with_arg("add")
IP_RULE_DEL = IP_RULE.with_arg("del")

CHECK_URL = (
    Command.from_str("curl", valid_options=CURL_OPTIONS)
    .with_options(
        silent=None,
        output="/dev/null",
    )
)

SSH = (
    Command.from_str("ssh", valid_options=SSH_OPTIONS)
    .with_option("o", "ServerAliveInterval=10")
    .with_option("o", "TCPKeepAlive=yes")
)

SSHPASS = Command.from_str("sshpass", valid_options=SSHPASS_OPTIONS).with_option("e")
