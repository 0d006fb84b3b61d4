"""Pytest configuration and shared fixtures for logrelay tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from logrelay import Destination, LogRecord, RemoteLogPipeline
from tests.mocks import FakeClock, MockCollector


@pytest.fixture
def clock() -> FakeClock:
    """Manually advanced clock for breaker timing."""
    return FakeClock()


@pytest.fixture
def collector() -> MockCollector:
    """In-process collector that records every request."""
    return MockCollector()


@pytest.fixture
def primary() -> Destination:
    return Destination(name="primary", endpoint="http://primary.test/ingest", credential="svc_primary")


@pytest.fixture
def backup() -> Destination:
    return Destination(name="backup", endpoint="http://backup.test/ingest", timeout=0.5)


@pytest_asyncio.fixture
async def make_pipeline(collector: MockCollector, clock: FakeClock) -> AsyncGenerator:
    """Factory building pipelines wired to the mock collector; all are shut down afterwards."""
    pipelines: list[RemoteLogPipeline] = []

    def factory(**options) -> RemoteLogPipeline:
        options.setdefault("flush_interval", None)
        pipeline = RemoteLogPipeline(client=collector.client(), clock=clock, **options)
        pipelines.append(pipeline)
        return pipeline

    yield factory

    for pipeline in pipelines:
        await pipeline.shutdown()


@pytest.fixture
def sample_record() -> LogRecord:
    """Return a sample log record for testing."""
    return LogRecord(
        level="info",
        message="Test log message",
        metadata={"key": "value"},
    )


@pytest.fixture
def sample_records() -> list[LogRecord]:
    """Return a batch of sample records of mixed severity."""
    return [
        LogRecord(level="info", message="Application started"),
        LogRecord(level="error", message="Database connection failed", metadata={"port": 5432}),
        LogRecord(level="warning", message="Slow query", metadata={"ms": 1200}),
    ]
