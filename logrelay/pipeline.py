"""
logrelay pipeline - batched, non-blocking log delivery to remote collectors.

Usage:
    from logrelay import Destination, LogRecord, RemoteLogPipeline

    async with RemoteLogPipeline(
        destinations=[Destination(name="primary", endpoint="https://logs.example.com/ingest", credential="tok")],
        batch_size=50,
        flush_interval=5.0,
    ) as pipeline:
        pipeline.log(LogRecord(level="info", message="Service started"))
        pipeline.error("Payment failed", user_id="u123")

    # Leaving the block flushes whatever is buffered and stops the timer.

log() may be called from any thread and never waits on the network.
Batches are flushed when batch_size records accumulate, on every
flush_interval tick, on an explicit flush(), and once more at shutdown().
"""

import asyncio
import logging
import time
from collections.abc import Callable
from enum import Enum

import httpx

from .buffer import BatchBuffer
from .config import PipelineConfig
from .delivery import DeliveryPipeline, DeliveryResult, ResultListener
from .destinations import Destination, DestinationRegistry, build_destination
from .errors import InvalidRecordError, PipelineClosedError, UnknownDestinationError
from .health import DestinationHealth, HealthTracker, PipelineStats
from .records import LogLevel, LogRecord
from .resilience import CircuitBreaker, CircuitBreakerConfig

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    """Lifecycle states."""

    IDLE = "idle"  # Constructed outside an event loop, timer not armed yet
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class RemoteLogPipeline:
    """
    Buffers log records and delivers them to every registered destination.

    Each destination has its own circuit breaker and health counters; a
    failing destination is isolated and never slows the others down.
    Failed batches are not retried.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        **options,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Complete configuration; when omitted, keyword options
                are used to build one (see PipelineConfig for the fields)
            client: HTTP client to send with; the pipeline creates and
                closes its own when none is given
            clock: Monotonic clock driving circuit breaker timeouts
            **options: PipelineConfig fields, when config is omitted
        """
        if config is not None and options:
            raise TypeError("Pass either a PipelineConfig or keyword options, not both")
        self.config = config or PipelineConfig(**options)

        self._clock = clock
        self._breaker_config = CircuitBreakerConfig(
            failure_threshold=self.config.circuit_breaker_threshold,
            reset_timeout=self.config.circuit_breaker_timeout,
            enabled=self.config.enable_circuit_breaker,
        )

        self._buffer = BatchBuffer(
            batch_size=self.config.batch_size,
            min_level=self.config.min_level,
            max_size=self.config.max_buffer_size,
        )
        self._health = HealthTracker()
        self._registry = DestinationRegistry(self._create_breaker)

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self._delivery = DeliveryPipeline(self._client, self._health, self.config.enable_compression)
        if self.config.on_success or self.config.on_error:
            self._delivery.subscribe(self._notify_callbacks)

        self._state = PipelineState.IDLE
        self._loop: asyncio.AbstractEventLoop | None = None
        self._flush_lock = asyncio.Lock()
        self._timer_task: asyncio.Task | None = None
        self._flush_task: asyncio.Task | None = None
        self._timer_flush: asyncio.Task | None = None
        self._stopped = asyncio.Event()
        self._flush_count = 0

        for destination in self.config.destinations:
            self.add_destination(destination)

        # Arm the timer right away when constructed inside a running loop
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            self.start()

    def _create_breaker(self, name: str) -> CircuitBreaker:
        return CircuitBreaker(self._breaker_config, name=name, clock=self._clock)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state in (PipelineState.SHUTTING_DOWN, PipelineState.STOPPED)

    def start(self):
        """Bind to the running event loop and arm the flush timer.

        Must be called from inside the loop. Calling it again is a no-op.
        """
        if self.is_closed:
            raise PipelineClosedError("Pipeline has been shut down")
        if self._state == PipelineState.RUNNING:
            return

        self._loop = asyncio.get_running_loop()
        self._state = PipelineState.RUNNING
        if self.config.flush_interval:
            self._timer_task = self._loop.create_task(self._run_timer(), name="logrelay-flush-timer")
        logger.info(
            f"Pipeline started with {len(self._registry)} destinations "
            f"(batch_size={self.config.batch_size}, flush_interval={self.config.flush_interval})"
        )

        # Batches sealed before the loop was available
        if self._buffer.has_sealed():
            self._schedule_flush()

    async def __aenter__(self) -> "RemoteLogPipeline":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.shutdown()

    async def _run_timer(self):
        """Background loop that periodically flushes buffered records."""
        while True:
            await asyncio.sleep(self.config.flush_interval)
            if not self._buffer.pending_count():
                continue
            self._timer_flush = self._loop.create_task(self._flush(), name="logrelay-timer-flush")
            try:
                # Cancelling the timer must not abandon a batch mid-delivery
                await asyncio.shield(self._timer_flush)
            except Exception as e:
                logger.error(f"Periodic flush failed: {e}", exc_info=True)

    async def shutdown(self):
        """
        Stop the timer, flush remaining records and wait for in-flight
        deliveries, bounded by shutdown_grace_period.

        A second call is a no-op; a call made while shutdown is already in
        progress waits for it to finish.
        """
        if self._state == PipelineState.STOPPED:
            return
        if self._state == PipelineState.SHUTTING_DOWN:
            await self._stopped.wait()
            return

        self._state = PipelineState.SHUTTING_DOWN
        logger.info("Initiating shutdown...")

        if self._timer_task is not None:
            self._timer_task.cancel()
            await asyncio.gather(self._timer_task, return_exceptions=True)
            self._timer_task = None

        pending = self._buffer.pending_count()
        if pending:
            logger.info(f"Flushing {pending} remaining records...")

        try:
            await asyncio.wait_for(self._drain_for_shutdown(), timeout=self.config.shutdown_grace_period)
        except asyncio.TimeoutError:
            logger.warning(
                f"Shutdown grace period of {self.config.shutdown_grace_period:.1f}s expired "
                f"with deliveries still in flight; abandoning them"
            )
            for task in (self._flush_task, self._timer_flush):
                if task is not None and not task.done():
                    task.cancel()
        except Exception as e:
            logger.error(f"Final flush failed: {e}", exc_info=True)

        if self._owns_client:
            await self._client.aclose()

        self._state = PipelineState.STOPPED
        self._stopped.set()
        logger.info("Shutdown complete")

    async def _drain_for_shutdown(self):
        # Flushes already under way hold batches taken from the buffer
        in_flight = [t for t in (self._flush_task, self._timer_flush) if t is not None]
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        while self._buffer.pending_count():
            await self._flush()
        # A caller's flush() may still be delivering what it drained
        async with self._flush_lock:
            pass

    # ------------------------------------------------------------------
    # Logging and flushing
    # ------------------------------------------------------------------

    def log(self, record: LogRecord):
        """
        Buffer a record. Never blocks on I/O and is safe from any thread.

        Records below min_level are dropped silently.

        Raises:
            InvalidRecordError: record is not a LogRecord
            PipelineClosedError: shutdown has started
        """
        if not isinstance(record, LogRecord):
            raise InvalidRecordError(f"Expected LogRecord, got {type(record).__name__}")
        if self.is_closed:
            raise PipelineClosedError("Pipeline is shutting down, log record rejected")

        if self._buffer.append(record):
            self._request_flush()

    def debug(self, message: str, **metadata):
        """Log a DEBUG message."""
        self.log(LogRecord.create(LogLevel.DEBUG, message, **metadata))

    def info(self, message: str, **metadata):
        """Log an INFO message."""
        self.log(LogRecord.create(LogLevel.INFO, message, **metadata))

    def success(self, message: str, **metadata):
        """Log a SUCCESS message."""
        self.log(LogRecord.create(LogLevel.SUCCESS, message, **metadata))

    def warning(self, message: str, **metadata):
        """Log a WARNING message."""
        self.log(LogRecord.create(LogLevel.WARNING, message, **metadata))

    def error(self, message: str, **metadata):
        """Log an ERROR message."""
        self.log(LogRecord.create(LogLevel.ERROR, message, **metadata))

    def critical(self, message: str, **metadata):
        """Log a CRITICAL message."""
        self.log(LogRecord.create(LogLevel.CRITICAL, message, **metadata))

    def _request_flush(self):
        """Ask the loop to flush sealed batches, from whichever thread we're on."""
        if self._loop is None:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                # No loop yet: start() picks up sealed batches
                return
            self.start()
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._schedule_flush()
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._schedule_flush)

    def _schedule_flush(self):
        if self._flush_task is not None and not self._flush_task.done():
            # The running task re-checks for sealed batches before it exits
            return
        self._flush_task = self._loop.create_task(self._flush_sealed(), name="logrelay-threshold-flush")

    async def _flush_sealed(self):
        try:
            while True:
                await self._flush(sealed_only=True)
                if not self._buffer.has_sealed():
                    return
        except Exception as e:
            logger.error(f"Threshold flush failed: {e}", exc_info=True)

    async def flush(self) -> list[DeliveryResult]:
        """
        Drain the buffer and deliver it to every destination not circuit-open.

        Flushes never overlap: a call made while another flush is running
        waits for it and then delivers whatever is left (often nothing).
        Delivery failures are reported in the returned results, via
        subscribers and via on_error; they are never raised.

        Raises:
            PipelineClosedError: the pipeline is stopped
        """
        if self._state == PipelineState.STOPPED:
            raise PipelineClosedError("Pipeline is stopped")
        return await self._flush()

    async def _flush(self, sealed_only: bool = False) -> list[DeliveryResult]:
        async with self._flush_lock:
            if sealed_only:
                # Records logged after the threshold belong to the next batch
                batches = self._buffer.drain_sealed()
            else:
                batches = self._buffer.drain_batches()
            if not batches:
                return []

            entries = self._registry.snapshot()
            results: list[DeliveryResult] = []
            for batch in batches:
                results.extend(await self._delivery.deliver(batch, entries))
                self._flush_count += 1
            return results

    # ------------------------------------------------------------------
    # Delivery events
    # ------------------------------------------------------------------

    def subscribe(self, listener: ResultListener):
        """Receive a DeliveryResult for every attempted or skipped delivery."""
        self._delivery.subscribe(listener)

    def unsubscribe(self, listener: ResultListener):
        self._delivery.unsubscribe(listener)

    def _notify_callbacks(self, result: DeliveryResult):
        if result.skipped:
            return
        if result.success:
            if self.config.on_success:
                self.config.on_success(result.destination, result.record_count)
        elif self.config.on_error:
            self.config.on_error(result.error, result.destination)

    # ------------------------------------------------------------------
    # Destinations
    # ------------------------------------------------------------------

    def add_destination(self, destination: Destination | None = None, **fields) -> Destination:
        """
        Register a destination.

        Raises:
            DuplicateDestinationError: the name is already registered
            PipelineClosedError: shutdown has started
        """
        if self.is_closed:
            raise PipelineClosedError("Pipeline is shutting down, cannot add destinations")
        if destination is None:
            destination = build_destination(**fields)
        self._registry.add(destination)
        self._health.register(destination.name)
        return destination

    def remove_destination(self, name: str) -> bool:
        """Unregister a destination with its breaker and health state.

        Deliveries already in flight to it complete normally; their
        outcome is not recorded.
        """
        removed = self._registry.remove(name)
        self._health.forget(name)
        return removed

    def update_destination(self, name: str, **changes) -> Destination:
        """Change a destination's settings; breaker and health are kept."""
        return self._registry.update(name, **changes)

    def get_destinations(self) -> list[Destination]:
        return [entry.destination for entry in self._registry.snapshot()]

    def reset_circuit_breaker(self, name: str):
        entry = self._registry.get(name)
        if entry is None:
            raise UnknownDestinationError(name)
        entry.breaker.reset()

    def reset_all_circuit_breakers(self):
        for entry in self._registry.snapshot():
            entry.breaker.reset()

    async def test_connection(self, name: str) -> bool:
        """Probe one destination without touching its breaker or health."""
        entry = self._registry.get(name)
        if entry is None:
            raise UnknownDestinationError(name)
        results = await self._delivery.probe([entry])
        return results[name]

    async def test_all_connections(self) -> dict[str, bool]:
        """Probe every destination concurrently; diagnostic only."""
        return await self._delivery.probe(self._registry.snapshot())

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_buffer_size(self) -> int:
        """Records accepted but not yet taken by a flush."""
        return self._buffer.pending_count()

    def clear_buffer(self) -> int:
        """Discard every pending record without delivering it."""
        discarded = self._buffer.clear()
        if discarded:
            logger.warning(f"Discarded {discarded} buffered records")
        return discarded

    def get_health(self) -> dict[str, DestinationHealth]:
        health = {}
        for entry in self._registry.snapshot():
            snapshot = self._health.snapshot(entry.name, entry.breaker)
            if snapshot is not None:
                health[entry.name] = snapshot
        return health

    def get_destination_health(self, name: str) -> DestinationHealth | None:
        entry = self._registry.get(name)
        if entry is None:
            return None
        return self._health.snapshot(name, entry.breaker)

    def get_stats(self) -> PipelineStats:
        return HealthTracker.aggregate(
            list(self.get_health().values()),
            buffer_size=self.get_buffer_size(),
            dropped_records=self._buffer.dropped_count,
            total_flushes=self._flush_count,
        )
