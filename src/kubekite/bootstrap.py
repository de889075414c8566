"""Bootstrap and dependency wiring for kubekite.

This module is the composition root. It:
- loads configuration and applies CLI overrides
- sets up logging
- builds the template registry (one Kubernetes job manager per template)
- creates the Buildkite client

Any failure here is fatal: it is logged and nothing is started.
"""

from __future__ import annotations

import argparse
from collections.abc import Callable
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from kubekite.buildkite import BuildkiteClient, BuildkiteClientError, BuildkiteRestClient
from kubekite.config import Config, ConfigError, JobsConfig, load_config, validate_config
from kubekite.kube_jobs import KubeJobManager, KubeJobManagerError
from kubekite.logging import get_logger, setup_logging
from kubekite.registry import (
    JobLauncher,
    JobMapping,
    MappingError,
    TemplateRegistry,
    build_registry,
    mappings_from_config,
)

if TYPE_CHECKING:
    from kubekite.main import Kubekite

logger = get_logger(__name__)


class BootstrapContext:
    """Container for all bootstrapped dependencies."""

    def __init__(
        self,
        config: Config,
        registry: TemplateRegistry,
        buildkite_client: BuildkiteClient,
    ) -> None:
        self.config = config
        self.registry = registry
        self.buildkite_client = buildkite_client


def apply_cli_overrides(config: Config, parsed: argparse.Namespace) -> Config:
    """Apply CLI argument overrides to the configuration.

    Choosing a job template or a job mapping on the command line replaces
    whichever of the two the environment selected.

    Args:
        config: Base configuration loaded from environment.
        parsed: Parsed command-line arguments.

    Returns:
        New Config instance with CLI overrides applied.
    """
    buildkite: dict[str, Any] = {}
    if parsed.buildkite_api_token:
        buildkite["api_token"] = parsed.buildkite_api_token
    if parsed.buildkite_org:
        buildkite["org"] = parsed.buildkite_org
    if parsed.buildkite_queue:
        buildkite["queue"] = parsed.buildkite_queue

    kubernetes: dict[str, Any] = {}
    if parsed.kube_config:
        kubernetes["kubeconfig"] = parsed.kube_config
    if parsed.kube_namespace:
        kubernetes["namespace"] = parsed.kube_namespace
    if parsed.kube_timeout is not None:
        kubernetes["timeout"] = max(0, parsed.kube_timeout)

    logging_overrides: dict[str, Any] = {}
    if parsed.log_level:
        logging_overrides["level"] = parsed.log_level
    if parsed.debug:
        logging_overrides["debug"] = True

    overrides: dict[str, Any] = {}
    if buildkite:
        overrides["buildkite"] = replace(config.buildkite, **buildkite)
    if kubernetes:
        overrides["kubernetes"] = replace(config.kubernetes, **kubernetes)
    if logging_overrides:
        overrides["logging_config"] = replace(config.logging_config, **logging_overrides)
    if parsed.job_template:
        overrides["jobs"] = JobsConfig(template=parsed.job_template)
    elif parsed.job_mapping:
        overrides["jobs"] = JobsConfig(mapping=parsed.job_mapping)
    if parsed.poll_interval and parsed.poll_interval > 0:
        overrides["polling"] = replace(config.polling, interval=parsed.poll_interval)

    if overrides:
        return replace(config, **overrides)
    return config


def create_launcher_factory(config: Config) -> Callable[[JobMapping], JobLauncher]:
    """Return a factory building a KubeJobManager for a mapping."""

    def factory(mapping: JobMapping) -> JobLauncher:
        return KubeJobManager(
            mapping.template,
            kubeconfig=config.kubernetes.kubeconfig,
            namespace=config.kubernetes.namespace,
            timeout=config.kubernetes.timeout,
            org=config.buildkite.org,
        )

    return factory


def bootstrap(parsed: argparse.Namespace) -> BootstrapContext | None:
    """Bootstrap the application with all dependencies.

    Args:
        parsed: Parsed command-line arguments.

    Returns:
        BootstrapContext with all initialized dependencies, or None if
        initialization failed.
    """
    config = load_config(parsed.env_file)
    config = apply_cli_overrides(config, parsed)

    setup_logging(
        config.logging_config.effective_level,
        json_format=config.logging_config.json,
        diagnostic_tags=config.logging_config.diagnostic_tags,
    )

    try:
        validate_config(config)
    except ConfigError as e:
        logger.error("Error: %s", e)
        return None

    try:
        mappings = mappings_from_config(config)
    except MappingError as e:
        logger.error("Error loading job mapping: %s", e)
        return None

    try:
        registry = build_registry(mappings, create_launcher_factory(config))
    except KubeJobManagerError as e:
        logger.error("Error starting job manager: %s", e)
        return None
    except MappingError as e:
        logger.error("Error building template registry: %s", e)
        return None

    try:
        buildkite_client = BuildkiteRestClient(
            config.buildkite.api_token,
            base_url=config.buildkite.api_url,
            debug=config.logging_config.debug,
        )
    except BuildkiteClientError as e:
        logger.error("Error starting Buildkite API client: %s", e)
        return None

    logger.info(
        "Watching queue %s of %s with %s job template(s)",
        config.buildkite.queue,
        config.buildkite.org,
        len(registry),
    )

    return BootstrapContext(
        config=config,
        registry=registry,
        buildkite_client=buildkite_client,
    )


def create_kubekite_from_context(context: BootstrapContext) -> Kubekite:
    """Create a Kubekite instance from a bootstrap context."""
    from kubekite.main import Kubekite

    return Kubekite(
        config=context.config,
        registry=context.registry,
        buildkite_client=context.buildkite_client,
    )


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "BootstrapContext",
    "apply_cli_overrides",
    "bootstrap",
    "create_kubekite_from_context",
    "create_launcher_factory",
]
