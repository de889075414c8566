"""Command-line interface argument parsing for kubekite.

Every flag overrides the matching environment variable; flags left unset
keep the value loaded from the environment or the .env file.
"""

from __future__ import annotations

import argparse
from pathlib import Path


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Optional list of arguments to parse. If None, uses sys.argv.

    Returns:
        Parsed arguments namespace. Options not given on the command line
        are None (or False for ``--debug``).
    """
    parser = argparse.ArgumentParser(
        description="kubekite - launch Kubernetes jobs for waiting Buildkite jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    buildkite = parser.add_argument_group("buildkite")
    buildkite.add_argument(
        "--buildkite-api-token",
        default=None,
        help="Buildkite API token (overrides BUILDKITE_API_TOKEN)",
    )
    buildkite.add_argument(
        "--buildkite-org",
        default=None,
        help="Your Buildkite organization (overrides BUILDKITE_ORG)",
    )
    buildkite.add_argument(
        "--buildkite-queue",
        default=None,
        help="Buildkite queue to watch for new jobs (overrides BUILDKITE_QUEUE)",
    )

    kube = parser.add_argument_group("kubernetes")
    kube.add_argument(
        "--kube-config",
        default=None,
        help="Path to your kubeconfig file (default: in-cluster service account)",
    )
    kube.add_argument(
        "--kube-namespace",
        default=None,
        help="Kubernetes namespace to run jobs in (default: default)",
    )
    kube.add_argument(
        "--kube-timeout",
        type=int,
        default=None,
        help="Timeout in seconds for Kubernetes API requests, 0 for no timeout (default: 15)",
    )

    jobs = parser.add_mutually_exclusive_group()
    jobs.add_argument(
        "--job-template",
        type=Path,
        default=None,
        help="Path to your job template YAML file (overrides JOB_TEMPLATE)",
    )
    jobs.add_argument(
        "--job-mapping",
        type=Path,
        default=None,
        help="Path to your job mapping YAML file (overrides JOB_MAPPING)",
    )

    parser.add_argument(
        "--poll-interval",
        type=int,
        default=None,
        help="Seconds between Buildkite polls (overrides KUBEKITE_POLL_INTERVAL)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (overrides KUBEKITE_LOG_LEVEL)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Turn on debugging",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: ./.env)",
    )

    return parser.parse_args(args)


__all__ = ["parse_args"]
