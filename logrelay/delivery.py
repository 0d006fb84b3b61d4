"""
Batch delivery to remote collectors.

One flush produces one request per destination. Every attempt runs
concurrently and independently: a slow or failing destination never
blocks or fails another one. Outcomes are published as DeliveryResult
events instead of being raised.
"""

import asyncio
import gzip
import json
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

import httpx

from .destinations import Destination, RegistryEntry
from .errors import DeliveryError
from .health import HealthTracker
from .records import Batch, LogRecord, utc_now

logger = logging.getLogger(__name__)

PAYLOAD_VERSION = "1.0"


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one batch delivery attempt to one destination."""

    destination: Destination
    record_count: int
    success: bool
    latency: float = 0.0
    status_code: int | None = None
    error: DeliveryError | None = None
    skipped: bool = False

    @property
    def destination_name(self) -> str:
        return self.destination.name


ResultListener = Callable[[DeliveryResult], None]


def encode_batch(batch: Batch | Iterable[LogRecord]) -> bytes:
    """Serialize records into the canonical JSON envelope."""
    logs = [record.to_payload() for record in batch]
    envelope = {
        "version": PAYLOAD_VERSION,
        "timestamp": utc_now().isoformat(),
        "count": len(logs),
        "logs": logs,
    }
    return json.dumps(envelope, separators=(",", ":")).encode("utf-8")


def compress_payload(payload: bytes) -> bytes:
    return gzip.compress(payload)


class DeliveryPipeline:
    """Sends batches to destinations and records every outcome.

    For each completed attempt the destination's circuit breaker is
    updated first, then its health counters, then listeners are notified.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        health: HealthTracker,
        enable_compression: bool = False,
    ):
        self._client = client
        self._health = health
        self.enable_compression = enable_compression
        self._listeners: list[ResultListener] = []

    def subscribe(self, listener: ResultListener):
        """Register a listener for every DeliveryResult."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: ResultListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def deliver(self, batch: Batch, entries: Iterable[RegistryEntry]) -> list[DeliveryResult]:
        """Fan a batch out to every destination whose breaker allows it.

        Only serialization errors propagate; transport failures are
        contained in the returned results.
        """
        if not batch:
            return []

        payload = encode_batch(batch)
        results = await asyncio.gather(
            *(self._deliver_to(entry, payload, len(batch)) for entry in entries)
        )
        return list(results)

    async def _deliver_to(self, entry: RegistryEntry, payload: bytes, record_count: int) -> DeliveryResult:
        destination = entry.destination

        if not entry.breaker.should_allow_request():
            logger.warning(f"Circuit breaker open for '{destination.name}', skipping {record_count} records")
            result = DeliveryResult(destination, record_count, success=False, skipped=True)
            self._publish(result)
            return result

        try:
            result = await self._send(destination, payload, record_count)
        except asyncio.CancelledError:
            # No outcome to record, but a trial slot must not stay taken
            entry.breaker.release_trial_slot()
            raise

        if result.success:
            entry.breaker.record_success()
        else:
            entry.breaker.record_failure(str(result.error))
        self._health.record_attempt(
            destination.name,
            success=result.success,
            latency=result.latency,
            error=None if result.error is None else str(result.error),
        )
        self._publish(result)
        return result

    async def _send(self, destination: Destination, payload: bytes, record_count: int) -> DeliveryResult:
        """Issue one request bounded by the destination timeout."""
        compressed = destination.uses_compression(self.enable_compression)
        body = compress_payload(payload) if compressed else payload
        headers = destination.request_headers(compressed)

        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self._client.request(
                    destination.method,
                    destination.endpoint,
                    content=body,
                    headers=headers,
                    timeout=destination.timeout,
                ),
                timeout=destination.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            error = DeliveryError(destination.name, f"timed out after {destination.timeout:.1f}s")
            logger.warning(f"Failed to send {record_count} records to '{destination.name}': {error}")
            return DeliveryResult(destination, record_count, success=False, latency=destination.timeout, error=error)
        except Exception as e:  # noqa: BLE001 - any transport error is a delivery failure
            latency = time.perf_counter() - started
            error = DeliveryError(destination.name, f"{type(e).__name__}: {e}")
            logger.warning(f"Failed to send {record_count} records to '{destination.name}': {error}")
            return DeliveryResult(destination, record_count, success=False, latency=latency, error=error)

        latency = time.perf_counter() - started
        if response.is_success:
            logger.debug(f"Sent {record_count} records to '{destination.name}' in {latency * 1000:.1f}ms")
            return DeliveryResult(
                destination, record_count, success=True, latency=latency, status_code=response.status_code
            )

        error = DeliveryError(
            destination.name,
            f"HTTP {response.status_code}: {response.reason_phrase}",
            status_code=response.status_code,
        )
        logger.warning(f"Failed to send {record_count} records to '{destination.name}': {error}")
        return DeliveryResult(
            destination,
            record_count,
            success=False,
            latency=latency,
            status_code=response.status_code,
            error=error,
        )

    async def probe(self, entries: Iterable[RegistryEntry]) -> dict[str, bool]:
        """Send a minimal test record to every destination.

        Diagnostic only: breakers, health counters and listeners are left
        untouched.
        """
        entries = list(entries)
        payload = encode_batch([LogRecord.create("info", "Connection test", test=True)])
        results = await asyncio.gather(
            *(self._send(entry.destination, payload, 1) for entry in entries)
        )
        return {entry.name: result.success for entry, result in zip(entries, results)}

    def _publish(self, result: DeliveryResult):
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception as e:
                logger.warning(f"Delivery listener error for '{result.destination_name}': {e}")
