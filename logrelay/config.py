"""
Pipeline configuration.

Every recognized option is declared here with its default. A config is
built once and is immutable for the lifetime of the pipeline.
"""

import os
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .destinations import DEFAULT_TIMEOUT, Destination
from .records import LogLevel

_T = TypeVar("_T", int, float)

ENV_PREFIX = "LOGRELAY_"


class PipelineConfig(BaseModel):
    """Settings for a RemoteLogPipeline."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    destinations: tuple[Destination, ...] = Field(default=(), description="Initial destinations")
    batch_size: int = Field(default=10, ge=1, description="Records that trigger an immediate flush")
    max_buffer_size: int = Field(default=10_000, ge=1, description="Records held before new ones are dropped")
    flush_interval: float | None = Field(
        default=5.0,
        description="Seconds between periodic flushes; None or 0 disables the timer",
    )
    min_level: LogLevel = Field(default=LogLevel.INFO, description="Records below this level are dropped")
    enable_circuit_breaker: bool = Field(default=True, description="Isolate failing destinations")
    circuit_breaker_threshold: int = Field(default=5, ge=1, description="Consecutive failures that open a circuit")
    circuit_breaker_timeout: float = Field(default=60.0, gt=0, description="Seconds open before a probe")
    enable_compression: bool = Field(default=False, description="Gzip payloads by default")
    shutdown_grace_period: float = Field(default=10.0, gt=0, description="Max seconds shutdown waits")
    on_success: Callable[[Destination, int], Any] | None = Field(
        default=None, description="Called with (destination, record_count) after a delivery"
    )
    on_error: Callable[[Exception, Destination], Any] | None = Field(
        default=None, description="Called with (error, destination) after a failed delivery"
    )

    @field_validator("min_level", mode="before")
    @classmethod
    def validate_min_level(cls, v):
        return LogLevel.parse(v)

    @field_validator("flush_interval")
    @classmethod
    def validate_flush_interval(cls, v: float | None) -> float | None:
        if v is None or v == 0:
            return None
        if v < 0:
            raise ValueError(f"flush_interval must be positive. Got: {v!r}")
        return v

    @model_validator(mode="after")
    def validate_unique_destinations(self) -> "PipelineConfig":
        names = [d.name for d in self.destinations]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate destination names: {', '.join(duplicates)}")
        return self


def _get_env_bool(name: str, default: bool) -> bool:
    """Read a boolean env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    normalized = raw.strip().lower()
    if normalized in {"true", "1", "yes", "y", "on"}:
        return True
    if normalized in {"false", "0", "no", "n", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean (true/false). Got: {raw!r}")


def _get_env_number(name: str, default: _T, cast: type[_T]) -> _T:
    """Read an int/float env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a {cast.__name__}. Got: {raw!r}") from exc


def from_env(**overrides) -> PipelineConfig:
    """
    Build a single-destination config from environment variables.

    Environment variables:
        LOGRELAY_ENDPOINT: collector URL (required)
        LOGRELAY_TOKEN: bearer token (optional)
        LOGRELAY_DESTINATION: destination name (default: "default")
        LOGRELAY_TIMEOUT, LOGRELAY_BATCH_SIZE, LOGRELAY_FLUSH_INTERVAL,
        LOGRELAY_MIN_LEVEL, LOGRELAY_CIRCUIT_BREAKER, LOGRELAY_CIRCUIT_THRESHOLD,
        LOGRELAY_CIRCUIT_TIMEOUT, LOGRELAY_COMPRESSION: optional tuning

    Keyword overrides take precedence over the environment.
    """
    endpoint = os.environ.get(f"{ENV_PREFIX}ENDPOINT", "").strip()
    if not endpoint:
        raise ValueError(f"{ENV_PREFIX}ENDPOINT environment variable required")

    destination = Destination(
        name=os.environ.get(f"{ENV_PREFIX}DESTINATION", "default"),
        endpoint=endpoint,
        credential=os.environ.get(f"{ENV_PREFIX}TOKEN") or None,
        timeout=_get_env_number(f"{ENV_PREFIX}TIMEOUT", DEFAULT_TIMEOUT, float),
    )

    settings: dict[str, Any] = {
        "destinations": (destination,),
        "batch_size": _get_env_number(f"{ENV_PREFIX}BATCH_SIZE", 10, int),
        "flush_interval": _get_env_number(f"{ENV_PREFIX}FLUSH_INTERVAL", 5.0, float),
        "min_level": os.environ.get(f"{ENV_PREFIX}MIN_LEVEL", "info"),
        "enable_circuit_breaker": _get_env_bool(f"{ENV_PREFIX}CIRCUIT_BREAKER", True),
        "circuit_breaker_threshold": _get_env_number(f"{ENV_PREFIX}CIRCUIT_THRESHOLD", 5, int),
        "circuit_breaker_timeout": _get_env_number(f"{ENV_PREFIX}CIRCUIT_TIMEOUT", 60.0, float),
        "enable_compression": _get_env_bool(f"{ENV_PREFIX}COMPRESSION", False),
    }
    settings.update(overrides)
    return PipelineConfig(**settings)
