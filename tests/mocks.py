"""Mock classes for kubekite tests.

These mocks stand in for the Buildkite API and the Kubernetes launcher so
the watcher, router and coordinator can be tested without network access.

Usage::

    from tests.mocks import MockBuildkiteClient, RecordingLauncher

    def test_example():
        client = MockBuildkiteClient(builds=[make_build([make_job_data()])])
        launcher = RecordingLauncher()
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from kubekite.buildkite import BuildkiteBuild, BuildkiteClient, BuildkiteClientError


class MockBuildkiteClient(BuildkiteClient):
    """Mock Buildkite client returning canned builds.

    Args:
        builds: Builds returned by every ``list_builds`` call.
        fail_times: Number of initial calls that raise BuildkiteClientError.

    Attributes:
        calls: Organization slugs passed to each ``list_builds`` call.
    """

    def __init__(
        self,
        builds: list[BuildkiteBuild] | None = None,
        fail_times: int = 0,
    ) -> None:
        self.builds = builds or []
        self.fail_times = fail_times
        self.calls: list[str] = []
        self.closed = False
        self.called = threading.Event()

    def list_builds(self, org: str) -> list[BuildkiteBuild]:
        self.calls.append(org)
        self.called.set()
        if len(self.calls) <= self.fail_times:
            raise BuildkiteClientError("API error")
        return self.builds

    def close(self) -> None:
        self.closed = True


class RecordingLauncher:
    """Launcher that records job IDs instead of creating Kubernetes jobs.

    Args:
        fail_for: Job IDs whose launch raises RuntimeError.
        on_launch: Optional callback invoked with each job ID after recording.
    """

    def __init__(
        self,
        fail_for: set[str] | None = None,
        on_launch: Callable[[str], None] | None = None,
    ) -> None:
        self.fail_for = fail_for or set()
        self.on_launch = on_launch
        self.launched: list[str] = []
        self.closed = False
        self._lock = threading.Lock()

    def launch_job(self, job_id: str) -> None:
        with self._lock:
            self.launched.append(job_id)
        if self.on_launch is not None:
            self.on_launch(job_id)
        if job_id in self.fail_for:
            raise RuntimeError(f"launch failed for {job_id}")

    def close(self) -> None:
        self.closed = True
