"""Configuration loading from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Valid log levels
VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

DEFAULT_BUILDKITE_API_URL = "https://api.buildkite.com/v2"
DEFAULT_KUBE_NAMESPACE = "default"
DEFAULT_KUBE_TIMEOUT = 15
DEFAULT_POLL_INTERVAL = 5

# The notification queue never shrinks below this many slots
MIN_QUEUE_CAPACITY = 10


class ConfigError(Exception):
    """Raised when the configuration cannot be used to start kubekite."""

    pass


@dataclass(frozen=True)
class BuildkiteConfig:
    """Buildkite API access and the queue to watch."""

    api_token: str = ""
    org: str = ""
    queue: str = ""
    api_url: str = DEFAULT_BUILDKITE_API_URL


@dataclass(frozen=True)
class KubernetesConfig:
    """Cluster access used when launching jobs.

    An empty ``kubeconfig`` selects the in-cluster service account.
    A ``timeout`` of 0 disables the request timeout.
    """

    kubeconfig: str = ""
    namespace: str = DEFAULT_KUBE_NAMESPACE
    timeout: int = DEFAULT_KUBE_TIMEOUT


@dataclass(frozen=True)
class JobsConfig:
    """Where the job templates come from.

    Exactly one of ``template`` or ``mapping`` must be set.
    """

    template: Path | None = None
    mapping: Path | None = None


@dataclass(frozen=True)
class PollingConfig:
    interval: int = DEFAULT_POLL_INTERVAL
    queue_capacity: int = MIN_QUEUE_CAPACITY


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    json: bool = False
    debug: bool = False
    diagnostic_tags: str = ""

    @property
    def effective_level(self) -> str:
        """Return the level to configure, honoring the debug switch."""
        return "DEBUG" if self.debug else self.level


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment.

    This dataclass is frozen (immutable) to prevent accidental modification
    after creation. Use ``dataclasses.replace`` to derive overrides.
    """

    buildkite: BuildkiteConfig = field(default_factory=BuildkiteConfig)
    kubernetes: KubernetesConfig = field(default_factory=KubernetesConfig)
    jobs: JobsConfig = field(default_factory=JobsConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    logging_config: LoggingConfig = field(default_factory=LoggingConfig)


def _parse_int(value: str, name: str, default: int, minimum: int = 1) -> int:
    """Parse an integer setting, falling back to ``default`` with a warning.

    Args:
        value: Raw value from the environment.
        name: Variable name, used in the warning.
        default: Value used when ``value`` is not an integer or is below ``minimum``.
        minimum: Smallest accepted value.
    """
    try:
        parsed = int(value)
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d", name, value, default
        )
        return default
    if parsed < minimum:
        logging.warning(
            "Invalid %s: %d is below %d, using default %d", name, parsed, minimum, default
        )
        return default
    return parsed


def _validate_log_level(value: str, default: str = "INFO") -> str:
    """Validate and normalize a log level string.

    Args:
        value: The log level string to validate.
        default: The default value to use if invalid.

    Returns:
        The validated log level (uppercase), or the default if invalid.
    """
    normalized = value.upper()
    if normalized not in VALID_LOG_LEVELS:
        logging.warning(
            "Invalid KUBEKITE_LOG_LEVEL: '%s' is not valid, using default '%s'. Valid values: %s",
            value,
            default,
            ", ".join(sorted(VALID_LOG_LEVELS)),
        )
        return default
    return normalized


def _parse_bool(value: str) -> bool:
    """Return True if value is "true", "1", or "yes" (case-insensitive)."""
    return value.lower() in ("true", "1", "yes")


def _optional_path(value: str) -> Path | None:
    return Path(value) if value else None


def load_config(env_file: Path | None = None) -> Config:
    """Load configuration from environment variables.

    Args:
        env_file: Optional path to .env file. If not provided,
                  looks for .env in current directory.

    Returns:
        Config object with loaded values.

    Invalid numeric values and log levels fall back to their defaults with a
    warning. Missing required values are not rejected here; see
    :func:`validate_config`.
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    buildkite = BuildkiteConfig(
        api_token=os.getenv("BUILDKITE_API_TOKEN", ""),
        org=os.getenv("BUILDKITE_ORG", ""),
        queue=os.getenv("BUILDKITE_QUEUE", ""),
        api_url=os.getenv("BUILDKITE_API_URL", "") or DEFAULT_BUILDKITE_API_URL,
    )

    kubernetes = KubernetesConfig(
        kubeconfig=os.getenv("KUBECONFIG", ""),
        namespace=os.getenv("KUBE_NAMESPACE", "") or DEFAULT_KUBE_NAMESPACE,
        timeout=_parse_int(
            os.getenv("KUBE_TIMEOUT", str(DEFAULT_KUBE_TIMEOUT)),
            "KUBE_TIMEOUT",
            DEFAULT_KUBE_TIMEOUT,
            minimum=0,
        ),
    )

    jobs = JobsConfig(
        template=_optional_path(os.getenv("JOB_TEMPLATE", "")),
        mapping=_optional_path(os.getenv("JOB_MAPPING", "")),
    )

    queue_capacity = _parse_int(
        os.getenv("KUBEKITE_QUEUE_CAPACITY", str(MIN_QUEUE_CAPACITY)),
        "KUBEKITE_QUEUE_CAPACITY",
        MIN_QUEUE_CAPACITY,
    )
    if queue_capacity < MIN_QUEUE_CAPACITY:
        logging.warning(
            "KUBEKITE_QUEUE_CAPACITY %d is below the minimum, using %d",
            queue_capacity,
            MIN_QUEUE_CAPACITY,
        )
        queue_capacity = MIN_QUEUE_CAPACITY

    polling = PollingConfig(
        interval=_parse_int(
            os.getenv("KUBEKITE_POLL_INTERVAL", str(DEFAULT_POLL_INTERVAL)),
            "KUBEKITE_POLL_INTERVAL",
            DEFAULT_POLL_INTERVAL,
        ),
        queue_capacity=queue_capacity,
    )

    logging_config = LoggingConfig(
        level=_validate_log_level(os.getenv("KUBEKITE_LOG_LEVEL", "INFO")),
        json=_parse_bool(os.getenv("KUBEKITE_LOG_JSON", "")),
        debug=_parse_bool(os.getenv("KUBEKITE_DEBUG", "")),
        diagnostic_tags=os.getenv("KUBEKITE_DIAGNOSTIC_TAGS", ""),
    )

    return Config(
        buildkite=buildkite,
        kubernetes=kubernetes,
        jobs=jobs,
        polling=polling,
        logging_config=logging_config,
    )


def validate_config(config: Config) -> None:
    """Check that the configuration is complete enough to start.

    Args:
        config: Configuration to check.

    Raises:
        ConfigError: If a required Buildkite setting is missing, or if the
            job template and job mapping are both set or both unset.
    """
    if not config.buildkite.api_token:
        raise ConfigError(
            "must provide API token via --buildkite-api-token flag "
            "or BUILDKITE_API_TOKEN environment variable"
        )
    if not config.buildkite.org:
        raise ConfigError(
            "must provide a Buildkite organization via --buildkite-org flag "
            "or BUILDKITE_ORG environment variable"
        )
    if not config.buildkite.queue:
        raise ConfigError(
            "must provide a Buildkite queue via --buildkite-queue flag "
            "or BUILDKITE_QUEUE environment variable"
        )

    if config.jobs.template is None and config.jobs.mapping is None:
        raise ConfigError(
            "must provide a Kubernetes job template via --job-template flag or "
            "JOB_TEMPLATE environment variable, or a job mapping via --job-mapping "
            "flag or JOB_MAPPING environment variable"
        )
    if config.jobs.template is not None and config.jobs.mapping is not None:
        raise ConfigError("--job-template and --job-mapping are mutually exclusive")


__all__ = [
    "BuildkiteConfig",
    "Config",
    "ConfigError",
    "JobsConfig",
    "KubernetesConfig",
    "LoggingConfig",
    "PollingConfig",
    "load_config",
    "validate_config",
]
