"""Structured logging configuration for kubekite."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import UTC, datetime
from typing import Any

# Context fields rendered by the formatters when present on a record
CONTEXT_FIELDS = ("job_id", "template", "queue")


class DiagnosticFilter(logging.Filter):
    """Gate tagged DEBUG records on a set of enabled diagnostic tags.

    A DEBUG record carrying ``diagnostic_tag`` (passed through ``extra``) is
    emitted only when its tag is enabled. Untagged records and records above
    DEBUG always pass.

    The watcher tags its per-poll chatter ``polling``, so running at DEBUG
    stays readable until ``KUBEKITE_DIAGNOSTIC_TAGS=polling`` is set::

        logger.debug("Found %s builds", len(builds), extra={"diagnostic_tag": "polling"})
    """

    def __init__(self, enabled_tags: frozenset[str] | None = None) -> None:
        super().__init__()
        self.enabled_tags: frozenset[str] = enabled_tags or frozenset()
        self.allow_all: bool = "*" in self.enabled_tags

    def filter(self, record: logging.LogRecord) -> bool:
        tag: str | None = getattr(record, "diagnostic_tag", None)
        if record.levelno != logging.DEBUG or tag is None:
            return True
        return self.allow_all or tag in self.enabled_tags

    @classmethod
    def from_config_string(cls, tags_csv: str) -> DiagnosticFilter:
        """Build a filter from ``"polling,dispatch"`` style settings; ``"*"`` enables all."""
        return cls(frozenset(tag.strip() for tag in tags_csv.split(",") if tag.strip()))


def _component(record: logging.LogRecord) -> str:
    """Last dotted part of the logger name: ``kubekite.watcher`` -> ``watcher``."""
    return record.name.rpartition(".")[2]


def _job_context(record: logging.LogRecord) -> dict[str, Any]:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)}


class StructuredFormatter(logging.Formatter):
    """Human-readable single-line formatter.

    Renders ``<time> [LEVEL] [component] [job_id=.. template=..] message``;
    the context block only appears when the record carries job context.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        line = (
            f"{created:%Y-%m-%d %H:%M:%S}.{created.microsecond // 1000:03d} "
            f"[{record.levelname:8}] [{_component(record):10}]"
        )

        context = _job_context(record)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"

        line += f" {record.getMessage()}"
        if record.exc_info:
            line += f" {self.formatException(record.exc_info)}"
        return line


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "component": _component(record),
            "message": record.getMessage(),
            **_job_context(record),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


class ContextAdapter(logging.LoggerAdapter[logging.Logger]):
    """Logger adapter that adds context to all log messages.

    Usage:
        logger = get_logger(__name__)
        job_logger = logger.with_context(job_id="0190-abc", template="gpu.yaml")
        job_logger.info("Launching job")
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.get("extra", {})
        if self.extra is not None:
            extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


class KubekiteLogger(logging.Logger):
    """Logger class installed for every logger created after import."""

    def with_context(self, **context: Any) -> ContextAdapter:
        """Return an adapter that attaches ``context`` to every record."""
        return ContextAdapter(self, context)


logging.setLoggerClass(KubekiteLogger)


def get_logger(name: str) -> KubekiteLogger:
    """Get a logger with the custom KubekiteLogger class.

    Args:
        name: Logger name (typically __name__).

    Returns:
        KubekiteLogger instance.
    """
    return logging.getLogger(name)  # type: ignore[return-value]


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    replace_handlers: bool = True,
    diagnostic_tags: str = "",
) -> None:
    """Send all records to stderr through a single configured handler.

    Args:
        level: Log level name; unknown names fall back to INFO.
        json_format: Emit one JSON object per line instead of text.
        replace_handlers: Drop handlers already attached to the root logger.
        diagnostic_tags: Comma-separated diagnostic tags whose DEBUG records
            are let through. ``"*"`` enables all of them.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if json_format else StructuredFormatter())
    handler.addFilter(DiagnosticFilter.from_config_string(diagnostic_tags))

    root = logging.getLogger()
    if replace_handlers:
        for existing in list(root.handlers):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)

    logging.getLogger("kubekite").setLevel(numeric_level)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))


__all__ = [
    "ContextAdapter",
    "DiagnosticFilter",
    "JSONFormatter",
    "KubekiteLogger",
    "StructuredFormatter",
    "get_logger",
    "setup_logging",
]
