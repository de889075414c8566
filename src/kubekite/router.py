"""Tag-based router that picks a job template for each waiting job.

Routing is best effort: every job is launched under some template. A job
goes to the template whose filters share the most tags with it; ties, and
jobs matching nothing, go to the template registered first.
"""

from __future__ import annotations

import logging
import queue
from collections.abc import Iterable, Sequence

from kubekite.lifecycle import Lifecycle
from kubekite.logging import ContextAdapter, get_logger
from kubekite.registry import TemplateBinding, TemplateRegistry
from kubekite.watcher import JobNotification

# Upper bound on how long the dispatcher waits before re-checking cancellation
DEFAULT_WAIT_SECONDS = 0.5


def score(tags: Iterable[str], binding: TemplateBinding) -> int:
    """Count the tags found in the binding's filter set."""
    return sum(1 for tag in tags if binding.has_filter(tag))


def select_binding(
    tags: Sequence[str], bindings: Sequence[TemplateBinding]
) -> TemplateBinding | None:
    """Pick the binding a job with ``tags`` should run under.

    A single binding is always selected without scoring. Otherwise the
    highest score wins and the earliest binding wins a tie.

    Returns:
        The selected binding, or None if ``bindings`` is empty.
    """
    if len(bindings) == 1:
        return bindings[0]

    highest_score = -1
    selected: TemplateBinding | None = None
    for binding in bindings:
        binding_score = score(tags, binding)
        if binding_score > highest_score:
            highest_score = binding_score
            selected = binding

    if highest_score < 0:
        return None
    return selected


class Dispatcher:
    """Launches each notified job under the template selected for it.

    The dispatch loop is the error boundary: a failed launch is logged and
    the loop moves on to the next notification.
    """

    def __init__(
        self,
        registry: TemplateRegistry,
        wait_seconds: float = DEFAULT_WAIT_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            registry: Template bindings to route to.
            wait_seconds: How long a queue read blocks before cancellation is
                checked again.
            logger: Logger to use; defaults to this module's logger.
        """
        self.registry = registry
        self.wait_seconds = wait_seconds
        self._logger = logger if logger is not None else get_logger(__name__)
        self._logger.info("Dispatcher initialized with %s job template(s)", len(registry))

    def dispatch(self, notification: JobNotification) -> bool:
        """Route one notification and launch it.

        Returns:
            True if a launch was attempted and succeeded.
        """
        job_logger = ContextAdapter(self._logger, {"job_id": notification.id})

        binding = select_binding(notification.tags, self.registry)
        if binding is None:
            job_logger.debug("No job template selected, dropping job")
            return False

        job_logger.debug(
            "Routing job with tags %s to %s", list(notification.tags), binding.name
        )
        try:
            binding.launcher.launch_job(notification.id)
        except Exception as e:
            # Launch failures are per-job; the next notification must still run.
            job_logger.error(
                "Error launching job under %s: %s",
                binding.name,
                e,
                extra={"template": binding.name},
            )
            return False
        return True

    def run(self, notifications: queue.Queue[JobNotification], lifecycle: Lifecycle) -> None:
        """Dispatch notifications until cancellation is requested.

        Cancellation wins over pending work: a notification taken off the
        queue after cancellation is dropped instead of launched.
        """
        while not lifecycle.is_cancelled:
            try:
                notification = notifications.get(timeout=self.wait_seconds)
            except queue.Empty:
                continue

            if lifecycle.is_cancelled:
                self._logger.info(
                    "Dropping job received during shutdown",
                    extra={"job_id": notification.id},
                )
                break

            self.dispatch(notification)

        self._logger.info("Cancellation request received. Cancelling job processor.")


__all__ = [
    "DEFAULT_WAIT_SECONDS",
    "Dispatcher",
    "score",
    "select_binding",
]
