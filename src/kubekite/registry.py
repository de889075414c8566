"""Template registry: the fixed set of job templates jobs are routed to.

A job mapping file lists templates with the filter tags they serve::

    - template: templates/linux.yaml
      filters: ["os=linux"]
    - template: templates/gpu.yaml
      filters: ["os=linux", "gpu=true"]

The registry is built once at startup, keeps the file's order (the first
entry wins ties when routing), and never changes afterwards.
"""

from __future__ import annotations

import logging
from bisect import bisect_left
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

import yaml

from kubekite.config import Config
from kubekite.logging import get_logger

_module_logger = get_logger(__name__)


class MappingError(Exception):
    """Raised when a job mapping file is missing or malformed."""

    pass


@runtime_checkable
class JobLauncher(Protocol):
    """Anything that can launch cluster work for a Buildkite job."""

    def launch_job(self, job_id: str) -> None:
        """Launch work for ``job_id``; raise on failure."""
        ...


@dataclass(frozen=True)
class JobMapping:
    """One entry of the job mapping file."""

    template: Path
    filters: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TemplateBinding:
    """A launcher paired with the filter tags it serves.

    ``filters`` is sorted and de-duplicated so membership can be tested by
    binary search.
    """

    name: str
    launcher: JobLauncher
    filters: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "filters", tuple(sorted(set(self.filters))))

    def has_filter(self, tag: str) -> bool:
        index = bisect_left(self.filters, tag)
        return index < len(self.filters) and self.filters[index] == tag


class TemplateRegistry(Sequence[TemplateBinding]):
    """Ordered, non-empty, read-only collection of template bindings."""

    def __init__(self, bindings: Sequence[TemplateBinding]) -> None:
        if not bindings:
            raise MappingError("at least one job template must be configured")
        self._bindings: tuple[TemplateBinding, ...] = tuple(bindings)

    def __getitem__(self, index: int) -> TemplateBinding:  # type: ignore[override]
        return self._bindings[index]

    def __len__(self) -> int:
        return len(self._bindings)

    def __iter__(self) -> Iterator[TemplateBinding]:
        return iter(self._bindings)

    def __repr__(self) -> str:
        return f"TemplateRegistry({[b.name for b in self._bindings]!r})"


def _parse_mapping_entry(entry: object, index: int, path: Path) -> JobMapping:
    if not isinstance(entry, dict):
        raise MappingError(f"Entry {index} in {path} must be a mapping")

    template = entry.get("template")
    if not isinstance(template, str) or not template:
        raise MappingError(f"Entry {index} in {path} needs a 'template' path")

    filters = entry.get("filters") or []
    if not isinstance(filters, list) or not all(isinstance(f, str) for f in filters):
        raise MappingError(f"'filters' of entry {index} in {path} must be a list of strings")

    return JobMapping(template=Path(template), filters=list(filters))


def load_job_mapping(path: Path) -> list[JobMapping]:
    """Load a job mapping file.

    Args:
        path: Path to the YAML file.

    Returns:
        Mappings in file order.

    Raises:
        MappingError: If the file cannot be read or parsed, or lists nothing.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise MappingError(f"Failed to parse job mapping yaml {path}: {e}") from e
    except OSError as e:
        raise MappingError(f"Failed to read job mapping yaml {path}: {e}") from e

    if not isinstance(data, list):
        raise MappingError(f"Job mapping {path} must be a list of template entries")
    if not data:
        raise MappingError(f"Job mapping {path} lists no templates")

    return [_parse_mapping_entry(entry, i, path) for i, entry in enumerate(data)]


def mappings_from_config(config: Config) -> list[JobMapping]:
    """Return the mappings selected by the configuration.

    A single job template becomes one mapping without filters.
    """
    if config.jobs.template is not None:
        return [JobMapping(template=config.jobs.template)]
    if config.jobs.mapping is None:
        raise MappingError("no job template or job mapping configured")
    return load_job_mapping(config.jobs.mapping)


def build_registry(
    mappings: Sequence[JobMapping],
    launcher_factory: Callable[[JobMapping], JobLauncher],
    logger: logging.Logger | None = None,
) -> TemplateRegistry:
    """Create one binding per mapping, in order.

    Errors raised by ``launcher_factory`` propagate unchanged.
    """
    log = logger if logger is not None else _module_logger
    bindings = []
    for mapping in mappings:
        launcher = launcher_factory(mapping)
        binding = TemplateBinding(
            name=str(mapping.template),
            launcher=launcher,
            filters=tuple(mapping.filters),
        )
        log.info(
            "Registered job template %s with filters %s", binding.name, list(binding.filters)
        )
        bindings.append(binding)
    return TemplateRegistry(bindings)


__all__ = [
    "JobLauncher",
    "JobMapping",
    "MappingError",
    "TemplateBinding",
    "TemplateRegistry",
    "build_registry",
    "load_job_mapping",
    "mappings_from_config",
]
