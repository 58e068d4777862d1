"""Logging utilities for state ingestion.

Provides a structured JSON logging option for production environments and
a logger that stamps every record with the backend being ingested.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

__all__ = [
    "CONTEXT_FIELDS",
    "setup_logging",
    "JSONFormatter",
    "BackendContextFilter",
    "IngestLogger",
    "get_ingest_logger",
]

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


CONTEXT_FIELDS = ("backend", "kind")


class JSONFormatter(logging.Formatter):
    """Formatter that outputs log records as one JSON object per line.

    Backend context set by :class:`IngestLogger` is lifted to the top level
    so records can be filtered by backend; any other ``extra=`` attributes
    are nested under ``"extra"``.

    Example output:
        {"timestamp": "2025-01-15T10:30:00.123Z", "level": "INFO",
         "logger": "tfingest.lib.tables", "message": "Produced rows for backend prod",
         "backend": "prod", "kind": "s3"}
    """

    def __init__(self, context_fields: Sequence[str] = CONTEXT_FIELDS):
        super().__init__()
        self.context_fields = tuple(context_fields)

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in self.context_fields:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        # structured error from TerraformIngestError.to_dict()
        error = getattr(record, "error", None)
        if isinstance(error, dict):
            log_data["error"] = error

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        skip = _RESERVED_ATTRS | set(self.context_fields) | {"error"}
        extra = {k: v for k, v in record.__dict__.items() if k not in skip}
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, default=str)


class IngestLogger:
    """Logger that carries backend context into every record.

    Example:
        logger = IngestLogger(__name__)
        logger.set_context(backend="prod", kind="s3")
        logger.info("Fetched state")  # record has backend/kind attributes
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)
        self._context: Dict[str, Any] = {}

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self._context)

    def set_context(self, **kwargs: Any) -> None:
        """Set context fields that will be included in all log records."""
        self._context.update(kwargs)

    def clear_context(self) -> None:
        self._context.clear()

    def _log(self, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
        extra = dict(kwargs.pop("extra", None) or {})
        extra.update(self._context)
        self._logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, **kwargs)


def get_ingest_logger(name: str, **context: Any) -> IngestLogger:
    """Get an ingest logger, optionally pre-populated with context."""
    logger = IngestLogger(name)
    if context:
        logger.set_context(**context)
    return logger


class BackendContextFilter(logging.Filter):
    """Give every record a ``backend`` attribute so text formats can show it.

    Records logged outside a backend (registry loading, config parsing) get
    ``"-"``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "backend"):
            record.backend = "-"
        return True


TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(backend)s]: %(message)s"

NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer")


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure root logging for an ingestion run.

    Replaces any handlers already on the root logger. AWS SDK loggers are
    held at WARNING even when ``verbose`` is set.

    Args:
        verbose: Enable debug-level logging
        json_format: One JSON object per record, with backend/kind at the top level
        log_file: Also write records to this file
    """
    level = logging.DEBUG if verbose else logging.INFO

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(level)

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(BackendContextFilter())
        root_logger.addHandler(handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
