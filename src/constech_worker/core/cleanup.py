"""Cleanup registry for interrupt-safe teardown.

The CLI constructs one registry per invocation and hands it to whatever
starts a run. Runs register teardown callables before they allocate
external resources and unregister them once their own ``finally`` block
has run, so every callable fires at most once whichever path gets there
first.
"""

import logging
import os
import signal
import sys
import threading
from typing import Callable, Iterable, List, Optional

logger = logging.getLogger(__name__)

CleanupFunction = Callable[[], None]

DEFAULT_SIGNALS = tuple(
    sig for sig in (signal.SIGINT, signal.SIGTERM, getattr(signal, "SIGHUP", None)) if sig
)


class CleanupRegistry:
    """Ordered set of pending cleanup callables."""

    def __init__(self) -> None:
        self._functions: List[CleanupFunction] = []
        self._lock = threading.RLock()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._functions)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def register(self, cleanup: CleanupFunction) -> None:
        with self._lock:
            if cleanup not in self._functions:
                self._functions.append(cleanup)

    def unregister(self, cleanup: CleanupFunction) -> bool:
        """Remove a callable. Returns False if it was not registered."""
        with self._lock:
            try:
                self._functions.remove(cleanup)
            except ValueError:
                return False
            return True

    def run_all(self) -> int:
        """Run every registered callable, most recent first.

        Each callable is removed before it is invoked. Failures are logged and
        do not stop the remaining callables.

        Returns:
            Number of callables invoked
        """
        count = 0
        while True:
            with self._lock:
                if not self._functions:
                    break
                cleanup = self._functions.pop()
            count += 1
            try:
                cleanup()
            except Exception as e:
                logger.warning(f"Cleanup function failed: {e}")
        if count == 0:
            logger.debug("No cleanup functions registered")
        return count

    def handle_signal(self, signum: int, frame: Optional[object] = None) -> None:
        """Signal handler: clean up and exit, or force-exit on a repeated signal."""
        if self._shutting_down:
            logger.error("Force terminating...")
            os._exit(1)

        self._shutting_down = True
        name = signal.Signals(signum).name
        logger.info(f"Received {name}, cleaning up...")
        self.run_all()
        logger.info("Cleanup completed")
        sys.exit(1)

    def install_signal_handlers(self, signals: Iterable[int] = DEFAULT_SIGNALS) -> None:
        for sig in signals:
            signal.signal(sig, self.handle_signal)
