"""
Log record model for logrelay.

Records are immutable once created. A Batch is the ordered group of
records captured from the buffer by a single flush.
"""

import copy
import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidRecordError


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


class LogLevel(str, Enum):
    """Ordered severity levels."""

    DEBUG = "debug"
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    def __ge__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def parse(cls, value: "str | LogLevel") -> "LogLevel":
        """Parse a level name case-insensitively ("WARN" is accepted)."""
        if isinstance(value, LogLevel):
            return value
        normalized = str(value).strip().lower()
        if normalized == "warn":
            normalized = "warning"
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidRecordError(f"Unknown log level: {value!r}") from None


_LEVEL_ORDER = list(LogLevel)


class LogRecord(BaseModel):
    """A single structured log entry."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    timestamp: datetime = Field(default_factory=utc_now)
    level: LogLevel = LogLevel.INFO
    message: str
    metadata: Mapping[str, Any] | None = None

    @field_validator("level", mode="before")
    @classmethod
    def _parse_level(cls, v):
        try:
            return LogLevel.parse(v)
        except InvalidRecordError as e:
            raise ValueError(str(e)) from None

    @field_validator("timestamp")
    @classmethod
    def _ensure_aware(cls, v: datetime) -> datetime:
        # Naive timestamps are taken as UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @field_validator("metadata")
    @classmethod
    def _freeze_metadata(cls, v: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
        if v is None:
            return v
        v = dict(v)
        try:
            json.dumps(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"metadata must be JSON-serializable: {e}") from None
        # Read-only and detached from the caller's dict
        return MappingProxyType(copy.deepcopy(v))

    @classmethod
    def create(cls, level: "str | LogLevel", message: str, **metadata) -> "LogRecord":
        """Build a record, raising InvalidRecordError on malformed input."""
        try:
            return cls(level=level, message=message, metadata=metadata or None)
        except ValidationError as e:
            raise InvalidRecordError(str(e)) from e

    def to_payload(self) -> dict[str, Any]:
        """Wire representation of this record."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
            "metadata": None if self.metadata is None else copy.deepcopy(dict(self.metadata)),
        }


@dataclass(frozen=True)
class Batch:
    """Records captured atomically from the buffer, in insertion order."""

    records: tuple[LogRecord, ...]
    captured_at: datetime = field(default_factory=utc_now)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[LogRecord]:
        return iter(self.records)

    def __bool__(self) -> bool:
        return bool(self.records)
