"""The Kubekite coordinator that runs the watch-and-dispatch pipeline.

The module structure follows single responsibility:
- cli.py: Command-line argument parsing
- bootstrap.py: Startup and dependency wiring
- app.py: Application entry point
- lifecycle.py: Cancellation and draining of background work
- watcher.py: Buildkite polling
- router.py: Template selection and dispatch
"""

from __future__ import annotations

import logging
from typing import Any

from kubekite.app import main
from kubekite.buildkite import BuildkiteClient
from kubekite.config import Config
from kubekite.lifecycle import Lifecycle, LifecycleState
from kubekite.logging import get_logger
from kubekite.registry import TemplateRegistry
from kubekite.router import Dispatcher
from kubekite.watcher import BuildkiteWatcher

logger = get_logger(__name__)


__all__ = [
    "Kubekite",
    "main",
]


class Kubekite:
    """Wires one watcher to the dispatcher and runs them until shutdown.

    The watcher runs on a background thread; the dispatcher loop runs on the
    calling thread. ``run`` returns only after the watcher has finished.

    An injected ``logger`` is handed to the lifecycle, dispatcher and watcher
    it creates; without one each uses its own module logger.
    """

    def __init__(
        self,
        config: Config,
        registry: TemplateRegistry,
        buildkite_client: BuildkiteClient,
        lifecycle: Lifecycle | None = None,
        dispatcher: Dispatcher | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.buildkite_client = buildkite_client
        self._logger = logger if logger is not None else get_logger(__name__)
        self.lifecycle = lifecycle or Lifecycle(logger=logger)
        self.dispatcher = dispatcher or Dispatcher(registry, logger=logger)
        self.watcher = BuildkiteWatcher(
            buildkite_client,
            config.buildkite.org,
            config.buildkite.queue,
            self.lifecycle,
            interval=config.polling.interval,
            capacity=config.polling.queue_capacity,
            logger=logger,
        )

    @property
    def state(self) -> LifecycleState:
        return self.lifecycle.state

    def request_shutdown(self) -> None:
        """Request graceful shutdown programmatically."""
        self.lifecycle.request_cancel()

    def run(self, install_signal_handlers: bool = True) -> None:
        """Run until SIGINT/SIGTERM (or :meth:`request_shutdown`).

        Args:
            install_signal_handlers: Route SIGINT/SIGTERM to shutdown. Only
                possible from the main thread.
        """
        if install_signal_handlers:
            self.lifecycle.install_signal_handlers()

        self._logger.info(
            "Starting kubekite for queue %s, polling every %ss",
            self.config.buildkite.queue,
            self.config.polling.interval,
        )

        try:
            notifications = self.watcher.start()
            self.dispatcher.run(notifications, self.lifecycle)
        finally:
            self.lifecycle.drain()
            self._close_clients()

        self._logger.info("kubekite shutdown complete")

    def _close_clients(self) -> None:
        closers: list[Any] = [self.buildkite_client, *(b.launcher for b in self.registry)]
        for client in closers:
            close = getattr(client, "close", None)
            if callable(close):
                close()


if __name__ == "__main__":
    import sys
    sys.exit(main())
