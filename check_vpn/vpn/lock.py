"""Host-wide lock serializing check_vpn runs."""

import os
import signal
import sys
import threading
from typing import Dict, Optional

from .exceptions import LockTimeoutError
from .models import CheckStatus, LockHandle
from .utils import RetryPolicy, wait_for
from ..logging_utility import logger

INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class LockManager:
    """
    Directory based lock: mkdir is atomic, so whoever creates the marker
    holds the lock until it is removed.
    """

    def __init__(self, path: str, policy: Optional[RetryPolicy] = None):
        self.path = path
        self.policy = policy or RetryPolicy()
        self.handle: Optional[LockHandle] = None
        self._previous_handlers: Dict[int, object] = {}

    def _try_create(self) -> bool:
        try:
            os.mkdir(self.path)
        except FileExistsError:
            return False
        return True

    def acquire(self) -> LockHandle:
        """
        Take the lock, waiting for a concurrent holder to finish.

        Returns:
            LockHandle of the created marker

        Raises:
            LockTimeoutError: the lock stayed taken for the whole policy window
        """
        if not wait_for(self._try_create, self.policy, f"lock '{self.path}'"):
            raise LockTimeoutError(f"Could not acquire lock '{self.path}'")

        self.handle = LockHandle(path=self.path)
        self._install_signal_handlers()
        logger.info(f"Acquired lock '{self.path}'")
        return self.handle

    def release(self) -> None:
        """Remove the marker. Safe to call repeatedly or without holding it."""
        self._restore_signal_handlers()
        if self.handle is None:
            return
        self.handle = None
        try:
            os.rmdir(self.path)
            logger.info(f"Released lock '{self.path}'")
        except FileNotFoundError:
            logger.warning(f"Lock '{self.path}' was already gone")
        except OSError as e:
            logger.error(f"Could not release lock '{self.path}': {e}")

    def _on_interrupt(self, signum, frame) -> None:
        logger.error(f"Interrupted by signal {signum} while holding the lock")
        self.release()
        print(f"{CheckStatus.CRITICAL.name}: interrupted by signal {signum}")
        sys.exit(CheckStatus.CRITICAL.value)

    def _install_signal_handlers(self) -> None:
        # signal handlers can only be set from the main thread
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in INTERRUPT_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._on_interrupt)

    def _restore_signal_handlers(self) -> None:
        while self._previous_handlers:
            signum, handler = self._previous_handlers.popitem()
            signal.signal(signum, handler)

    def __enter__(self) -> LockHandle:
        return self.acquire()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
