"""Core application runner for kubekite.

It ties together argument parsing, bootstrap and the Kubekite coordinator,
and turns their outcome into a process exit code: 1 when startup fails,
0 after a graceful shutdown.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from kubekite.bootstrap import BootstrapContext, bootstrap, create_kubekite_from_context
from kubekite.cli import parse_args
from kubekite.logging import get_logger

if TYPE_CHECKING:
    from kubekite.main import Kubekite

logger = get_logger(__name__)


def run_continuous_mode(kubekite: Kubekite) -> int:
    """Run until shutdown is requested.

    Returns:
        Exit code: 0 for success.
    """
    kubekite.run()
    return 0


def run_application(context: BootstrapContext) -> int:
    """Run the main application with the given context.

    Args:
        context: Bootstrap context with all dependencies.

    Returns:
        Exit code for the application.
    """
    kubekite = create_kubekite_from_context(context)
    return run_continuous_mode(kubekite)


def main(args: list[str] | None = None) -> int:
    """Main entry point for the application.

    Args:
        args: Optional list of command-line arguments.

    Returns:
        Exit code for the application.
    """
    parsed = parse_args(args)

    context = bootstrap(parsed)
    if context is None:
        # Bootstrap failed (logged internally)
        return 1

    return run_application(context)


__all__ = [
    "main",
    "run_application",
    "run_continuous_mode",
]
