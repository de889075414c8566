"""Buildkite watcher that turns scheduled jobs into dispatch notifications."""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass

from kubekite.buildkite import (
    QUEUE_RULE_PREFIX,
    BuildkiteClient,
    BuildkiteClientError,
    BuildkiteJob,
)
from kubekite.config import DEFAULT_POLL_INTERVAL, MIN_QUEUE_CAPACITY
from kubekite.lifecycle import Lifecycle
from kubekite.logging import get_logger

# How often a blocked put re-checks for cancellation
PUT_RETRY_SECONDS = 0.5


@dataclass(frozen=True)
class JobNotification:
    """A Buildkite job waiting on the watched queue."""

    id: str
    tags: tuple[str, ...] = ()


def job_in_target_queue(job: BuildkiteJob, queue_name: str) -> bool:
    """Return True if one of the job's agent query rules is exactly ``queue=<queue_name>``."""
    target_rule = f"{QUEUE_RULE_PREFIX}{queue_name}"
    return any(rule == target_rule for rule in job.agent_query_rules)


class BuildkiteWatcher:
    """Polls Buildkite and emits scheduled jobs bound for one queue.

    Matching jobs are put on a bounded FIFO queue. When the queue is full the
    watcher blocks until the dispatcher makes room, so a stalled consumer
    also stalls discovery; the blocked put still gives up as soon as
    cancellation is requested.
    """

    def __init__(
        self,
        client: BuildkiteClient,
        org: str,
        queue_name: str,
        lifecycle: Lifecycle,
        interval: float = DEFAULT_POLL_INTERVAL,
        capacity: int = MIN_QUEUE_CAPACITY,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the watcher.

        Args:
            client: Buildkite client implementation.
            org: Organization slug to list builds for.
            queue_name: Buildkite queue whose jobs are emitted.
            lifecycle: Shared lifecycle providing cancellation and thread tracking.
            interval: Seconds to wait between polls.
            capacity: Size of the notification queue.
            logger: Logger to use; defaults to this module's logger.
        """
        self.client = client
        self.org = org
        self.queue_name = queue_name
        self.lifecycle = lifecycle
        self.interval = interval
        self.notifications: queue.Queue[JobNotification] = queue.Queue(maxsize=capacity)
        self._logger = logger if logger is not None else get_logger(__name__)

    def poll_once(self) -> list[JobNotification]:
        """Fetch builds once and return notifications for matching jobs.

        A failed fetch is logged and yields no notifications.
        """
        self._logger.debug(
            "Checking Buildkite API for builds and jobs...",
            extra={"diagnostic_tag": "polling"},
        )
        try:
            builds = self.client.list_builds(self.org)
        except BuildkiteClientError as e:
            self._logger.error("Error fetching builds from Buildkite API: %s", e)
            return []

        notifications = [
            JobNotification(id=job.id, tags=job.tags())
            for build in builds
            for job in build.jobs
            if job.is_scheduled and job_in_target_queue(job, self.queue_name)
        ]
        self._logger.debug(
            "Found %s scheduled job(s) for queue %s in %s build(s)",
            len(notifications),
            self.queue_name,
            len(builds),
            extra={"diagnostic_tag": "polling"},
        )
        return notifications

    def _emit(self, notification: JobNotification) -> bool:
        """Put a notification on the queue, blocking while it is full.

        Returns:
            False if cancellation was requested before the put succeeded.
        """
        warned = False
        while not self.lifecycle.is_cancelled:
            try:
                self.notifications.put(notification, timeout=PUT_RETRY_SECONDS)
                return True
            except queue.Full:
                if not warned:
                    self._logger.warning(
                        "Notification queue full (%s), waiting for the dispatcher",
                        self.notifications.maxsize,
                        extra={"job_id": notification.id},
                    )
                    warned = True
        return False

    def run_cycle(self) -> int:
        """Poll once and emit every match. Returns the number emitted."""
        emitted = 0
        for notification in self.poll_once():
            if not self._emit(notification):
                break
            self._logger.info(
                "Scheduled job found on queue %s",
                self.queue_name,
                extra={"job_id": notification.id, "queue": self.queue_name},
            )
            emitted += 1
        return emitted

    def watch(self) -> None:
        """Poll until cancelled. Errors never leave this loop."""
        while not self.lifecycle.is_cancelled:
            try:
                self.run_cycle()
            except Exception as e:
                # Anything the client did not wrap still must not kill the watcher.
                self._logger.exception("Unexpected error in watch cycle: %s", e)

            if self.lifecycle.wait(self.interval):
                break

        self._logger.info("Cancellation request received. Stopping Buildkite watcher.")

    def start(self) -> queue.Queue[JobNotification]:
        """Start watching on a background thread tracked by the lifecycle.

        Returns:
            The queue notifications are emitted on.
        """
        self.lifecycle.spawn(f"buildkite-watcher-{self.queue_name}", self.watch)
        self._logger.info("Buildkite job watcher started.")
        return self.notifications


def start_buildkite_watcher(
    client: BuildkiteClient,
    org: str,
    queue_name: str,
    lifecycle: Lifecycle,
    interval: float = DEFAULT_POLL_INTERVAL,
    capacity: int = MIN_QUEUE_CAPACITY,
) -> queue.Queue[JobNotification]:
    """Create a watcher for ``queue_name`` and start it.

    Returns:
        The watcher's notification queue.
    """
    watcher = BuildkiteWatcher(
        client, org, queue_name, lifecycle, interval=interval, capacity=capacity
    )
    return watcher.start()


__all__ = [
    "BuildkiteWatcher",
    "JobNotification",
    "job_in_target_queue",
    "start_buildkite_watcher",
]
