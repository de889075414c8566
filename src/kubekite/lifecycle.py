"""Graceful shutdown coordination for kubekite.

The Lifecycle owns the cancellation event shared by the watcher threads and
the dispatcher loop, translates SIGINT/SIGTERM into cancellation, and keeps
track of every background thread so shutdown can wait for them to finish.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable
from enum import StrEnum
from types import FrameType

from kubekite.logging import get_logger


class LifecycleState(StrEnum):
    RUNNING = "running"
    CANCEL_REQUESTED = "cancel_requested"
    DRAINING = "draining"
    STOPPED = "stopped"


class Lifecycle:
    """Cancellable execution context plus a wait group of background threads.

    States move strictly forward:
    ``RUNNING -> CANCEL_REQUESTED -> DRAINING -> STOPPED``.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger if logger is not None else get_logger(__name__)
        self._cancelled = threading.Event()
        # Reentrant: request_cancel() can run from a signal handler on the
        # main thread while that thread already holds the lock.
        self._lock = threading.RLock()
        self._threads: list[threading.Thread] = []
        self._state = LifecycleState.RUNNING

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def cancelled(self) -> threading.Event:
        """The event set once cancellation has been requested."""
        return self._cancelled

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def request_cancel(self) -> None:
        """Request cancellation. Only the first call has any effect."""
        with self._lock:
            if self._state is not LifecycleState.RUNNING:
                return
            self._state = LifecycleState.CANCEL_REQUESTED
        self._logger.info("Cancellation requested")
        self._cancelled.set()

    def wait(self, timeout: float) -> bool:
        """Sleep for up to ``timeout`` seconds, waking early on cancellation.

        Returns:
            True if cancellation was requested before or during the wait.
        """
        return self._cancelled.wait(timeout)

    def handle_signal(self, signum: int, frame: FrameType | None) -> None:
        """Handle shutdown signals (SIGINT, SIGTERM).

        Args:
            signum: The signal number received.
            frame: The current stack frame (unused).
        """
        signal_name = signal.Signals(signum).name
        self._logger.info("Received %s, initiating graceful shutdown...", signal_name)
        self.request_cancel()

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to :meth:`request_cancel`.

        Must be called from the main thread.
        """
        signal.signal(signal.SIGINT, self.handle_signal)
        signal.signal(signal.SIGTERM, self.handle_signal)
        self._logger.debug("Signal handlers installed for SIGINT and SIGTERM")

    def spawn(self, name: str, target: Callable[[], None]) -> threading.Thread:
        """Start ``target`` on a background thread tracked by :meth:`drain`.

        Args:
            name: Thread name, used in log output.
            target: Callable run on the new thread. It must return once
                :attr:`cancelled` is set.

        Returns:
            The started thread.
        """
        thread = threading.Thread(target=target, name=name, daemon=True)
        with self._lock:
            self._threads.append(thread)
        thread.start()
        self._logger.debug("Started background thread %s", name)
        return thread

    @property
    def active_count(self) -> int:
        """Number of registered threads still running."""
        with self._lock:
            return sum(1 for t in self._threads if t.is_alive())

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for every registered thread to finish.

        Requests cancellation first if nobody has yet, so draining can never
        wait on threads that were not told to stop.

        Args:
            timeout: Overall limit in seconds, or None to wait indefinitely.

        Returns:
            True if all threads finished, False if the timeout elapsed first.
        """
        self.request_cancel()
        with self._lock:
            self._state = LifecycleState.DRAINING
            threads = list(self._threads)

        alive = [t for t in threads if t.is_alive()]
        if alive:
            self._logger.info("Waiting for %s background thread(s) to finish", len(alive))

        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in threads:
            if deadline is None:
                thread.join()
            else:
                thread.join(max(0.0, deadline - time.monotonic()))

        still_running = [t.name for t in threads if t.is_alive()]
        if still_running:
            self._logger.warning(
                "Shutdown timeout reached after %.1fs with %s thread(s) still running: %s",
                timeout,
                len(still_running),
                still_running,
            )
            return False

        with self._lock:
            self._state = LifecycleState.STOPPED
        self._logger.info("All background work finished")
        return True


__all__ = [
    "Lifecycle",
    "LifecycleState",
]
