"""
Integration test harness for resilience patterns.

Runs real HTTP collectors on localhost, simulates endpoint failures and
verifies circuit breaker isolation, timeouts and shutdown behave
correctly end-to-end with real timing and a real HTTP client.
"""

import asyncio
import gzip
import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import pytest_asyncio

from logrelay import CircuitState, Destination, RemoteLogPipeline


class CollectorState:
    """Shared state for one mock collector; failure_mode is None, "slow", "503" or "401"."""

    def __init__(self):
        self.failure_mode = None
        self.slow_seconds = 1.0
        self.request_count = 0
        self.received_batches: list[dict] = []
        self.received_headers: list[dict] = []
        self.lock = threading.Lock()

    @property
    def received_messages(self) -> list[str]:
        with self.lock:
            return [log["message"] for batch in self.received_batches for log in batch["logs"]]


def make_handler(state: CollectorState) -> type[BaseHTTPRequestHandler]:
    class MockEndpointHandler(BaseHTTPRequestHandler):
        """HTTP handler that can simulate various failure modes."""

        def log_message(self, format, *args):
            """Suppress HTTP server logs."""
            pass

        def do_POST(self):
            with state.lock:
                state.request_count += 1

            content_length = int(self.headers.get("Content-Length", 0))
            body = self.rfile.read(content_length)

            if state.failure_mode == "slow":
                time.sleep(state.slow_seconds)

            if state.failure_mode in ("503", "401"):
                self.send_response(int(state.failure_mode))
                self.end_headers()
                self.wfile.write(b"failure")
                return

            if self.headers.get("Content-Encoding") == "gzip":
                body = gzip.decompress(body)

            with state.lock:
                state.received_batches.append(json.loads(body))
                state.received_headers.append(dict(self.headers))

            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.end_headers()
            self.wfile.write(b'{"status": "ok"}')

        do_PUT = do_POST

    return MockEndpointHandler


@pytest.fixture
def mock_server():
    """Factory starting mock HTTP collectors; returns (endpoint, state)."""
    servers = []

    def start() -> tuple[str, CollectorState]:
        state = CollectorState()
        server = ThreadingHTTPServer(("127.0.0.1", 0), make_handler(state))
        server.daemon_threads = True
        port = server.server_address[1]

        thread = threading.Thread(target=server.serve_forever)
        thread.daemon = True
        thread.start()
        servers.append(server)
        return f"http://127.0.0.1:{port}/ingest", state

    yield start

    for server in servers:
        server.shutdown()
        server.server_close()


@pytest_asyncio.fixture
async def pipelines():
    """Tracks pipelines so each one is shut down after the test."""
    created: list[RemoteLogPipeline] = []
    yield created
    for pipeline in created:
        await pipeline.shutdown()


class TestDeliveryIntegration:
    """Batches reach real collectors intact."""

    @pytest.mark.asyncio
    async def test_batches_reach_every_collector(self, mock_server, pipelines):
        primary_url, primary = mock_server()
        backup_url, backup = mock_server()

        pipeline = RemoteLogPipeline(
            destinations=[
                Destination(name="primary", endpoint=primary_url, credential="svc_primary"),
                Destination(name="backup", endpoint=backup_url, method="PUT", compression_enabled=True),
            ],
            batch_size=100,
            flush_interval=None,
        )
        pipelines.append(pipeline)

        pipeline.info("Application started", version="1.0.0")
        pipeline.error("Database connection failed", port=5432)
        results = await pipeline.flush()

        assert all(r.success for r in results)
        assert primary.received_messages == ["Application started", "Database connection failed"]
        assert backup.received_messages == primary.received_messages
        assert primary.received_headers[0]["Authorization"] == "Bearer svc_primary"
        assert backup.received_headers[0]["Content-Encoding"] == "gzip"

        batch = primary.received_batches[0]
        assert batch["version"] == "1.0"
        assert batch["count"] == 2
        assert batch["logs"][1]["level"] == "error"
        assert batch["logs"][1]["metadata"] == {"port": 5432}

    @pytest.mark.asyncio
    async def test_shutdown_delivers_buffered_logs(self, mock_server):
        url, state = mock_server()

        async with RemoteLogPipeline(
            destinations=[Destination(name="primary", endpoint=url)],
            batch_size=100,
            flush_interval=30.0,
        ) as pipeline:
            for i in range(7):
                pipeline.info(f"Message {i}")

        assert state.received_messages == [f"Message {i}" for i in range(7)]
        assert pipeline.get_buffer_size() == 0


class TestCircuitBreakerIntegration:
    """Integration tests for circuit breaker with real timing."""

    @pytest.mark.asyncio
    async def test_circuit_opens_and_recovers(self, mock_server, pipelines):
        """Test full circuit breaker lifecycle with mock endpoint."""
        url, state = mock_server()
        pipeline = RemoteLogPipeline(
            destinations=[Destination(name="primary", endpoint=url, timeout=0.5)],
            circuit_breaker_threshold=3,
            circuit_breaker_timeout=0.3,  # Fast reset for testing
            flush_interval=None,
        )
        pipelines.append(pipeline)

        # Phase 1: Endpoint is down
        state.failure_mode = "503"
        for i in range(3):
            pipeline.info(f"Test message {i}")
            await pipeline.flush()

        health = pipeline.get_destination_health("primary")
        assert health.circuit_state == CircuitState.OPEN
        assert health.failed_requests == 3

        # Blocked while open: no new requests
        pipeline.info("blocked")
        [skipped] = await pipeline.flush()
        assert skipped.skipped
        assert state.request_count == 3

        # Phase 2: Wait for reset timeout and recover
        await asyncio.sleep(0.4)
        state.failure_mode = None

        pipeline.info("Recovery message")
        [result] = await pipeline.flush()

        assert result.success
        health = pipeline.get_destination_health("primary")
        assert health.circuit_state == CircuitState.CLOSED
        assert health.is_healthy
        assert state.received_messages == ["Recovery message"]

    @pytest.mark.asyncio
    async def test_failing_collector_is_isolated(self, mock_server, pipelines):
        bad_url, bad = mock_server()
        good_url, good = mock_server()
        bad.failure_mode = "401"

        pipeline = RemoteLogPipeline(
            destinations=[
                Destination(name="bad", endpoint=bad_url),
                Destination(name="good", endpoint=good_url),
            ],
            circuit_breaker_threshold=2,
            circuit_breaker_timeout=60.0,
            flush_interval=None,
        )
        pipelines.append(pipeline)

        for i in range(5):
            pipeline.info(f"Message {i}")
            await pipeline.flush()

        assert bad.request_count == 2
        assert good.received_messages == [f"Message {i}" for i in range(5)]

        stats = pipeline.get_stats()
        assert stats.open_circuit_breakers == 1
        assert stats.healthy_destinations == 1


class TestTimeouts:
    """A slow collector never holds up a fast one."""

    @pytest.mark.asyncio
    async def test_slow_collector_times_out_independently(self, mock_server, pipelines):
        slow_url, slow = mock_server()
        fast_url, fast = mock_server()
        slow.failure_mode = "slow"

        pipeline = RemoteLogPipeline(
            destinations=[
                Destination(name="slow", endpoint=slow_url, timeout=0.2),
                Destination(name="fast", endpoint=fast_url, timeout=5.0),
            ],
            flush_interval=None,
        )
        pipelines.append(pipeline)

        pipeline.warning("Slow query", ms=1200)
        started = time.perf_counter()
        results = {r.destination_name: r for r in await pipeline.flush()}
        elapsed = time.perf_counter() - started

        assert elapsed < 0.9
        assert results["fast"].success
        assert results["fast"].latency < 0.5
        assert not results["slow"].success
        assert results["slow"].latency == 0.2
        assert fast.received_messages == ["Slow query"]

    @pytest.mark.asyncio
    async def test_grace_period_bounds_shutdown(self, mock_server):
        url, state = mock_server()
        state.failure_mode = "slow"
        state.slow_seconds = 2.0

        pipeline = RemoteLogPipeline(
            destinations=[Destination(name="slow", endpoint=url, timeout=10.0)],
            flush_interval=None,
            shutdown_grace_period=0.3,
        )
        pipeline.info("in flight at shutdown")

        started = time.perf_counter()
        await pipeline.shutdown()

        assert time.perf_counter() - started < 1.5
        assert pipeline.is_closed


class TestConnectionProbe:
    """Diagnostic probes against real collectors."""

    @pytest.mark.asyncio
    async def test_probe_reports_reachability(self, mock_server, pipelines):
        up_url, up = mock_server()
        down_url, down = mock_server()
        down.failure_mode = "503"

        pipeline = RemoteLogPipeline(
            destinations=[
                Destination(name="up", endpoint=up_url),
                Destination(name="down", endpoint=down_url),
            ],
            flush_interval=None,
        )
        pipelines.append(pipeline)

        assert await pipeline.test_all_connections() == {"up": True, "down": False}
        assert up.received_messages == ["Connection test"]
        assert pipeline.get_stats().total_requests == 0
