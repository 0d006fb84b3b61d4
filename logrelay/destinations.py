"""
Delivery targets and the registry that owns them.

The registry is mutated by add/remove calls while a flush may be iterating
over it, so every access goes through a lock and flushes work from a
snapshot taken when they start.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import DuplicateDestinationError, InvalidDestinationError, UnknownDestinationError
from .resilience import CircuitBreaker

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class Destination(BaseModel):
    """A remote collector that accepts batches over HTTP."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., description="Unique name within the registry")
    endpoint: str = Field(..., description="Collector URL")
    credential: str | None = Field(default=None, description="Bearer token")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra request headers")
    method: Literal["POST", "PUT"] = Field(default="POST", description="HTTP method")
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0, description="Per-request timeout (seconds)")
    compression_enabled: bool | None = Field(
        default=None,
        description="Gzip the payload; None falls back to the pipeline setting",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Names are primary keys; reject blank ones."""
        v = v.strip()
        if not v:
            raise ValueError("Destination name must not be empty")
        return v

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Only http(s) endpoints are supported."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Destination endpoint must be an http(s) URL. Got: {v!r}")
        return v

    def uses_compression(self, default: bool) -> bool:
        if self.compression_enabled is None:
            return default
        return self.compression_enabled

    def request_headers(self, compressed: bool) -> dict[str, str]:
        """Headers sent with every request to this destination."""
        headers = {"Content-Type": "application/json", **self.headers}
        if self.credential:
            headers["Authorization"] = f"Bearer {self.credential}"
        if compressed:
            headers["Content-Encoding"] = "gzip"
        return headers


def build_destination(**fields) -> Destination:
    """Build a Destination, mapping validation failures to the domain error."""
    try:
        return Destination(**fields)
    except ValidationError as e:
        raise InvalidDestinationError(str(e)) from e


@dataclass(frozen=True)
class RegistryEntry:
    """A destination together with the breaker that guards it."""

    destination: Destination
    breaker: CircuitBreaker

    @property
    def name(self) -> str:
        return self.destination.name


class DestinationRegistry:
    """Concurrency-safe set of destinations keyed by name.

    Duplicate names are rejected with DuplicateDestinationError.
    """

    def __init__(self, breaker_factory: Callable[[str], CircuitBreaker]):
        self._breaker_factory = breaker_factory
        self._entries: dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()

    def add(self, destination: Destination) -> RegistryEntry:
        with self._lock:
            if destination.name in self._entries:
                raise DuplicateDestinationError(destination.name)
            entry = RegistryEntry(destination, self._breaker_factory(destination.name))
            self._entries[destination.name] = entry
        logger.info(f"Destination '{destination.name}' added ({destination.endpoint})")
        return entry

    def remove(self, name: str) -> bool:
        """Remove a destination and its breaker. Returns False if unknown."""
        with self._lock:
            entry = self._entries.pop(name, None)
        if entry is None:
            return False
        logger.info(f"Destination '{name}' removed")
        return True

    def update(self, name: str, **changes) -> Destination:
        """Replace a destination's settings, keeping its breaker state."""
        if "name" in changes and changes["name"] != name:
            raise InvalidDestinationError("Destination name cannot be changed")
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                raise UnknownDestinationError(name)
            updated = build_destination(**{**entry.destination.model_dump(), **changes})
            self._entries[name] = RegistryEntry(updated, entry.breaker)
        return updated

    def get(self, name: str) -> RegistryEntry | None:
        with self._lock:
            return self._entries.get(name)

    def snapshot(self) -> tuple[RegistryEntry, ...]:
        """Insertion-ordered snapshot of all entries."""
        with self._lock:
            return tuple(self._entries.values())

    def names(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._entries
