"""Utility functions for VPN checks."""

from dataclasses import dataclass, field
from pathlib import Path
import os
import socket
import subprocess
from typing import Callable, Dict, List, Mapping, Optional, Tuple
import time

import psutil

from .commands import CommandError
from ..logging_utility import logger

Runner = Callable[..., Tuple[str, str]]
InterfaceTable = Callable[[], Mapping[str, list]]


def run_command(cmd: list[str], check: bool = True, use_sudo: bool = False,
                timeout: Optional[float] = None, env: Optional[Dict[str, str]] = None) -> Tuple[str, str]:
    """
    Run shell command and return output.

    Args:
        cmd: Command as list of strings
        check: Whether to raise exception on error
        use_sudo: Whether to prepend sudo to the command
        timeout: Seconds before the command is killed
        env: Extra environment variables

    Returns:
        Tuple of (stdout, stderr)
    """
    if use_sudo and cmd[0] != "sudo":
        cmd = ["sudo"] + cmd

    logger.debug(f"Running: {' '.join(cmd)}")
    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=check,
                                stdin=subprocess.DEVNULL, timeout=timeout, env=full_env)
        return result.stdout, result.stderr
    except subprocess.CalledProcessError as e:
        raise CommandError(f"Command failed: {' '.join(cmd)}\n{e.stderr}")
    except subprocess.TimeoutExpired:
        raise CommandError(f"Command timed out: {' '.join(cmd)}")
    except OSError as e:
        raise CommandError(f"Could not run {cmd[0]}: {e}")


def spawn_command(cmd: list[str], log_file: Optional[Path] = None,
                  env: Optional[Dict[str, str]] = None) -> subprocess.Popen:
    """
    Start a command in its own session and return without waiting for it.

    Args:
        cmd: Command as list of strings
        log_file: File receiving the command's stderr
        env: Extra environment variables

    Returns:
        The Popen handle of the detached process
    """
    logger.debug(f"Spawning: {' '.join(cmd)}")
    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)

    stderr = subprocess.DEVNULL
    try:
        if log_file:
            stderr = open(log_file, "ab")
        return subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=stderr,
            env=full_env,
            start_new_session=True,
        )
    except OSError as e:
        raise CommandError(f"Could not run {cmd[0]}: {e}")
    finally:
        if stderr is not subprocess.DEVNULL:
            stderr.close()


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-interval polling bound."""
    interval: float = 1.0
    max_attempts: int = 30
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)


def wait_for(predicate: Callable[[], bool], policy: RetryPolicy, description: str) -> bool:
    """
    Poll predicate until it holds or the policy is exhausted.

    Args:
        predicate: Zero-argument check
        policy: Interval and attempt bound
        description: What is being waited for, for the log

    Returns:
        bool: True if predicate held within the bound
    """
    logger.info(f"Waiting for {description}...")
    for i in range(policy.max_attempts):
        if predicate():
            logger.info(f"{description}: done after {i + 1} attempt(s)")
            return True
        policy.sleep(policy.interval)
        logger.debug(f"Waiting for {description}... ({i + 1}/{policy.max_attempts})")
    logger.warning(f"Gave up waiting for {description} after {policy.max_attempts} attempts")
    return False


def interface_exists(interface: str, interfaces: InterfaceTable = psutil.net_if_addrs) -> bool:
    return interface in interfaces()


def interface_ipv4(interface: str, interfaces: InterfaceTable = psutil.net_if_addrs) -> List:
    """
    IPv4 addresses configured on an interface.

    Args:
        interface: Interface name

    Returns:
        psutil address records (address, netmask, ptp) with family AF_INET
    """
    return [addr for addr in interfaces().get(interface, [])
            if addr.family == socket.AF_INET]


def log_vpn_output(log_file: str) -> None:
    """
    Log tunnel process output from log file.

    Args:
        log_file: Path to log file
    """
    log_path = Path(log_file)
    if not log_path.is_file():
        return
    try:
        with open(log_file, "r") as f:
            vpn_output = f.read()
    except OSError as e:
        logger.warning(f"Could not read tunnel output {log_file}: {e}")
        return
    logger.error(f"Tunnel output:\n{vpn_output}")
