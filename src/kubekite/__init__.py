"""kubekite - launch Kubernetes jobs for Buildkite jobs waiting on a queue."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kubekite")
except PackageNotFoundError:
    # Package is not installed (e.g., running from source without pip install)
    __version__ = "0.0.0.dev0"

# Re-export core public API
from kubekite.app import main
from kubekite.main import Kubekite

# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "__version__",
    "Kubekite",
    "main",
]
