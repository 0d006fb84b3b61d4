"""
Bridge from the standard logging module into a RemoteLogPipeline.

Usage:
    pipeline = RemoteLogPipeline(destinations=[...])
    setup_logging(pipeline)

    import logging
    logger = logging.getLogger(__name__)
    logger.info("Payment processed", extra={"user_id": "u123", "amount": 99.99})
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

from .pipeline import RemoteLogPipeline
from .records import LogLevel, LogRecord

# Anything on a logging.LogRecord beyond these came from `extra`
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# Our own chatter (and the HTTP client's) must not be shipped back through the pipeline
_EXCLUDED_LOGGERS = ("logrelay", "httpx", "httpcore")

_CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def level_from_stdlib(levelno: int) -> LogLevel:
    if levelno >= logging.CRITICAL:
        return LogLevel.CRITICAL
    if levelno >= logging.ERROR:
        return LogLevel.ERROR
    if levelno >= logging.WARNING:
        return LogLevel.WARNING
    if levelno >= logging.INFO:
        return LogLevel.INFO
    return LogLevel.DEBUG


def _is_json_value(value: Any) -> bool:
    if isinstance(value, str | int | float | bool | type(None)):
        return True
    if not isinstance(value, list | dict):
        return False
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


def extract_metadata(record: logging.LogRecord) -> dict[str, Any]:
    """Collect the logger name and JSON-safe `extra` fields of a record."""
    metadata: dict[str, Any] = {"logger": record.name}
    metadata.update(
        (key, value)
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and not key.startswith("_") and _is_json_value(value)
    )
    if record.exc_info:
        metadata["exception"] = logging.Formatter().formatException(record.exc_info)
    return metadata


class LogRelayHandler(logging.Handler):
    """
    Python logging handler that hands records to a RemoteLogPipeline.

    Integrates with standard Python logging so existing code
    works without modification. Records emitted after the pipeline
    has shut down are discarded.
    """

    def __init__(self, pipeline: RemoteLogPipeline, min_level: int = logging.INFO):
        """
        Initialize the handler.

        Args:
            pipeline: RemoteLogPipeline instance
            min_level: Minimum stdlib log level to ship (default: INFO)
        """
        super().__init__(level=min_level)
        self.pipeline = pipeline

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith(_EXCLUDED_LOGGERS):
            return False
        return super().filter(record)

    def emit(self, record: logging.LogRecord):
        if self.pipeline.is_closed:
            return
        try:
            metadata = extract_metadata(record)
            self.pipeline.log(
                LogRecord(
                    timestamp=datetime.fromtimestamp(record.created, UTC),
                    level=level_from_stdlib(record.levelno),
                    message=record.getMessage(),
                    metadata=metadata,
                )
            )
        except Exception:
            self.handleError(record)


def setup_logging(
    pipeline: RemoteLogPipeline,
    min_level: int = logging.INFO,
    also_console: bool = True,
) -> LogRelayHandler:
    """
    Route the root logger into a pipeline.

    Args:
        pipeline: Pipeline that receives the records
        min_level: Minimum log level to ship
        also_console: Also log to console (default: True)

    Returns:
        The installed handler (remove it with logging.getLogger().removeHandler)
    """
    root_logger = logging.getLogger()

    handler = LogRelayHandler(pipeline, min_level=min_level)
    root_logger.addHandler(handler)

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
        root_logger.addHandler(console)

    # Lower the root level so min_level records reach the handler
    if root_logger.level == logging.NOTSET or root_logger.level > min_level:
        root_logger.setLevel(min_level)

    return handler
