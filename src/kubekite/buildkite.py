"""Buildkite API client used by the watcher to list builds and their jobs.

Only the read side of the REST API is used: kubekite lists the builds of an
organization and looks at the jobs inside them. Agents started by the
Kubernetes jobs acquire the Buildkite job themselves.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Self

import httpx

from kubekite.config import DEFAULT_BUILDKITE_API_URL
from kubekite.logging import get_logger

# Default timeout for HTTP requests (connect, read, write, pool)
DEFAULT_TIMEOUT = httpx.Timeout(10.0, read=30.0)

# Job state Buildkite reports while a job waits for an agent
SCHEDULED_STATE = "scheduled"

QUEUE_RULE_PREFIX = "queue="

# Largest page the builds endpoint serves
PER_PAGE = 100


@dataclass(frozen=True)
class BuildkiteJob:
    """A job inside a Buildkite build, reduced to the fields kubekite needs."""

    id: str
    state: str = ""
    type: str = ""
    name: str = ""
    web_url: str = ""
    agent_query_rules: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> BuildkiteJob:
        """Create a BuildkiteJob from a job object of the builds listing.

        Waiter and trigger jobs have no ``agent_query_rules``; they parse
        with an empty rule list.
        """
        rules = data.get("agent_query_rules") or []
        return cls(
            id=data.get("id") or "",
            state=data.get("state") or "",
            type=data.get("type") or "",
            name=data.get("name") or "",
            web_url=data.get("web_url") or "",
            agent_query_rules=tuple(str(rule) for rule in rules),
        )

    @property
    def is_scheduled(self) -> bool:
        return self.state == SCHEDULED_STATE

    def tags(self) -> tuple[str, ...]:
        """Agent query rules other than queue routing, in API order."""
        return tuple(
            rule for rule in self.agent_query_rules if not rule.startswith(QUEUE_RULE_PREFIX)
        )


@dataclass(frozen=True)
class BuildkiteBuild:
    """A Buildkite build and its jobs."""

    id: str
    number: int = 0
    pipeline: str = ""
    jobs: list[BuildkiteJob] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> BuildkiteBuild:
        pipeline = data.get("pipeline") or {}
        return cls(
            id=data.get("id") or "",
            number=data.get("number") or 0,
            pipeline=pipeline.get("slug", "") if isinstance(pipeline, dict) else "",
            jobs=[
                BuildkiteJob.from_api_response(job)
                for job in data.get("jobs") or []
                if isinstance(job, dict)
            ],
        )


class BuildkiteClientError(Exception):
    """Raised when a Buildkite API operation fails."""

    pass


class BuildkiteClient(ABC):
    """Abstract interface for the Buildkite operations the watcher needs.

    This allows the watcher to work with different implementations:
    - REST client (direct HTTP)
    - Mock client (testing)
    """

    @abstractmethod
    def list_builds(self, org: str) -> list[BuildkiteBuild]:
        """List the builds of an organization.

        Args:
            org: Organization slug.

        Returns:
            Builds as returned by the API, newest first.

        Raises:
            BuildkiteClientError: If the request fails.
        """
        pass


class BuildkiteRestClient(BuildkiteClient):
    """Buildkite client that calls the REST API with a bearer token.

    Uses a reusable httpx.Client for connection pooling across poll cycles.
    """

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_BUILDKITE_API_URL,
        timeout: httpx.Timeout | None = None,
        debug: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the Buildkite REST client.

        Args:
            api_token: Buildkite API access token with ``read_builds`` scope.
            base_url: REST API root.
            timeout: Optional custom timeout configuration.
            debug: Log every request and response status at DEBUG level.
            logger: Logger to use; defaults to this module's logger.

        Raises:
            BuildkiteClientError: If no token is given.
        """
        if not api_token:
            raise BuildkiteClientError("unable to configure a new Buildkite client: empty API token")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or DEFAULT_TIMEOUT
        self.debug = debug
        self._logger = logger if logger is not None else get_logger(__name__)
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Accept": "application/json",
        }
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(headers=self._headers, timeout=self.timeout)
        return self._client

    def list_builds(self, org: str) -> list[BuildkiteBuild]:
        """List the newest builds of an organization.

        Only the first page is read: the ``PER_PAGE`` most recently created
        builds. Jobs still scheduled in older builds are not seen.
        """
        url = f"{self.base_url}/organizations/{org}/builds"
        if self.debug:
            self._logger.debug("GET %s", url)

        try:
            response = self._get_client().get(url, params={"per_page": PER_PAGE})
            if self.debug:
                self._logger.debug("GET %s -> %s", url, response.status_code)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise BuildkiteClientError(
                f"listing builds for {org} failed: HTTP {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise BuildkiteClientError(f"listing builds for {org} failed: {e}") from e
        except ValueError as e:
            raise BuildkiteClientError(f"invalid JSON listing builds for {org}: {e}") from e

        if not isinstance(data, list):
            raise BuildkiteClientError(
                f"unexpected builds payload for {org}: {type(data).__name__}"
            )

        return [BuildkiteBuild.from_api_response(build) for build in data if isinstance(build, dict)]

    def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


__all__ = [
    "BuildkiteBuild",
    "BuildkiteClient",
    "BuildkiteClientError",
    "BuildkiteJob",
    "BuildkiteRestClient",
    "SCHEDULED_STATE",
]
