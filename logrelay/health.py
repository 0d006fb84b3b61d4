"""
Delivery statistics per destination, plus aggregates folded on demand.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime

from .records import utc_now
from .resilience import CircuitBreaker, CircuitState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DestinationHealth:
    """Point-in-time view of a destination's delivery history."""

    name: str
    total_requests: int
    successful_requests: int
    failed_requests: int
    average_latency: float
    last_success: datetime | None
    last_failure: datetime | None
    last_error: str | None
    circuit_state: CircuitState
    consecutive_failures: int

    @property
    def is_healthy(self) -> bool:
        """Healthy means the breaker is not open."""
        return self.circuit_state != CircuitState.OPEN

    @property
    def success_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.successful_requests / self.total_requests


@dataclass(frozen=True)
class PipelineStats:
    """Aggregate statistics across all destinations."""

    buffer_size: int
    total_destinations: int
    healthy_destinations: int
    unhealthy_destinations: int
    open_circuit_breakers: int
    total_requests: int
    total_successful_requests: int
    total_failed_requests: int
    average_latency: float
    dropped_records: int = 0
    total_flushes: int = 0


@dataclass
class _Counters:
    total: int = 0
    successful: int = 0
    failed: int = 0
    average_latency: float = 0.0
    last_success: datetime | None = None
    last_failure: datetime | None = None
    last_error: str | None = None


class HealthTracker:
    """Tracks request counters and latency per destination.

    Counters only ever increase. Latency is a running mean over completed
    attempts, successes and failures alike.
    """

    def __init__(self):
        self._counters: dict[str, _Counters] = {}
        self._lock = threading.Lock()

    def register(self, name: str):
        with self._lock:
            self._counters.setdefault(name, _Counters())

    def forget(self, name: str):
        with self._lock:
            self._counters.pop(name, None)

    def record_attempt(self, name: str, success: bool, latency: float, error: str | None = None):
        """Fold one completed attempt into the destination's counters.

        Attempts for destinations that were removed mid-flush are ignored.
        """
        now = utc_now()
        with self._lock:
            counters = self._counters.get(name)
            if counters is None:
                logger.debug(f"Ignoring attempt for unknown destination '{name}'")
                return

            counters.total += 1
            counters.average_latency += (latency - counters.average_latency) / counters.total
            if success:
                counters.successful += 1
                counters.last_success = now
            else:
                counters.failed += 1
                counters.last_failure = now
                counters.last_error = error

    def snapshot(self, name: str, breaker: CircuitBreaker) -> DestinationHealth | None:
        with self._lock:
            counters = self._counters.get(name)
            if counters is None:
                return None
            return DestinationHealth(
                name=name,
                total_requests=counters.total,
                successful_requests=counters.successful,
                failed_requests=counters.failed,
                average_latency=counters.average_latency,
                last_success=counters.last_success,
                last_failure=counters.last_failure,
                last_error=counters.last_error,
                circuit_state=breaker.state,
                consecutive_failures=breaker.consecutive_failures,
            )

    @staticmethod
    def aggregate(
        snapshots: list[DestinationHealth],
        buffer_size: int,
        dropped_records: int = 0,
        total_flushes: int = 0,
    ) -> PipelineStats:
        """Fold destination snapshots into pipeline-wide statistics.

        Average latency is weighted by request count, not a mean of means.
        """
        total = sum(h.total_requests for h in snapshots)
        weighted_latency = sum(h.average_latency * h.total_requests for h in snapshots)
        healthy = sum(1 for h in snapshots if h.is_healthy)

        return PipelineStats(
            buffer_size=buffer_size,
            total_destinations=len(snapshots),
            healthy_destinations=healthy,
            unhealthy_destinations=len(snapshots) - healthy,
            open_circuit_breakers=sum(1 for h in snapshots if h.circuit_state == CircuitState.OPEN),
            total_requests=total,
            total_successful_requests=sum(h.successful_requests for h in snapshots),
            total_failed_requests=sum(h.failed_requests for h in snapshots),
            average_latency=weighted_latency / total if total else 0.0,
            dropped_records=dropped_records,
            total_flushes=total_flushes,
        )
