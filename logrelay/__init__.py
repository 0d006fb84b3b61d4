"""
logrelay - Resilient delivery of structured log records to remote collectors.

This package provides:
- RemoteLogPipeline: batched, non-blocking log shipping to many destinations
- resilience: per-destination circuit breaker
- handler: bridge from the standard logging module

Usage:
    from logrelay import RemoteLogPipeline, presets

    async with RemoteLogPipeline(
        destinations=[presets.custom("primary", "https://logs.example.com/ingest", token="svc_xxx")],
    ) as pipeline:
        pipeline.info("Service started")

Example:
    # Ship existing logging calls
    from logrelay import RemoteLogPipeline, setup_logging

    pipeline = RemoteLogPipeline(destinations=[...])
    setup_logging(pipeline)

    import logging
    logger = logging.getLogger(__name__)
    logger.info("Service started")
"""

from . import presets
from .config import PipelineConfig, from_env
from .delivery import DeliveryResult
from .destinations import Destination
from .errors import (
    DeliveryError,
    DuplicateDestinationError,
    InvalidDestinationError,
    InvalidRecordError,
    LogRelayError,
    PipelineClosedError,
    UnknownDestinationError,
)
from .handler import LogRelayHandler, setup_logging
from .health import DestinationHealth, PipelineStats
from .pipeline import PipelineState, RemoteLogPipeline
from .records import Batch, LogLevel, LogRecord
from .resilience import CircuitBreaker, CircuitBreakerConfig, CircuitState

__all__ = [
    # Pipeline
    "RemoteLogPipeline",
    "PipelineConfig",
    "PipelineState",
    "from_env",
    # Records and destinations
    "LogRecord",
    "LogLevel",
    "Batch",
    "Destination",
    "presets",
    # Results and health
    "DeliveryResult",
    "DestinationHealth",
    "PipelineStats",
    # Resilience
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Logging bridge
    "LogRelayHandler",
    "setup_logging",
    # Errors
    "LogRelayError",
    "InvalidRecordError",
    "InvalidDestinationError",
    "DuplicateDestinationError",
    "UnknownDestinationError",
    "DeliveryError",
    "PipelineClosedError",
]

__version__ = "1.0.0"
