"""
Pytest configuration and shared fixtures.

The store is an in-memory fakeredis server (with Lua support, so the atomic
scripts run); every test gets its own server and metrics registry.
"""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any
from uuid import uuid4

import fakeredis
import httpx
import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from jobqueue.config import Settings
from jobqueue.observability.metrics import MetricsRecorder
from jobqueue.registry import QueueSystem
from jobqueue.store.repository import JobRepository
from jobqueue.store.scripts import QueueScripts

TEST_REDIS_URL = "redis://localhost:6379/15"


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        queue_redis_url=TEST_REDIS_URL,
        queue_key_prefix="test",
        worker_id="test-worker",
        log_level="DEBUG",
        log_format="console",
        worker_poll_interval_seconds=0.01,
        worker_heartbeat_interval_seconds=0.05,
        worker_lock_duration_seconds=5,
        worker_shutdown_timeout_seconds=2,
        reaper_interval_seconds=0.05,
        scheduler_poll_interval_seconds=0.05,
    )


@pytest.fixture
def unavailable_settings() -> Settings:
    """Settings without a store connection string."""
    return Settings(_env_file=None, queue_redis_url=None, redis_url=None)


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    """In-memory async Redis client on a private server."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def metrics_registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(metrics_registry: CollectorRegistry) -> MetricsRecorder:
    return MetricsRecorder(registry=metrics_registry)


@pytest_asyncio.fixture
async def system(
    test_settings: Settings,
    redis_client: fakeredis.FakeAsyncRedis,
    metrics: MetricsRecorder,
) -> AsyncGenerator[QueueSystem, None]:
    """A queue system backed by the fake store."""
    queue_system = QueueSystem(settings=test_settings, client=redis_client, metrics=metrics)
    yield queue_system
    await queue_system.disconnect_all()


@pytest.fixture
def unavailable_system(unavailable_settings: Settings) -> QueueSystem:
    """A queue system with no store configured."""
    return QueueSystem(
        settings=unavailable_settings,
        metrics=MetricsRecorder(registry=CollectorRegistry()),
    )


@pytest.fixture
def repo(redis_client: fakeredis.FakeAsyncRedis) -> JobRepository:
    """Repository of a standalone queue."""
    return JobRepository(redis_client, "unit", "test", scripts=QueueScripts(redis_client))


@pytest.fixture
def idempotency_key() -> str:
    """Generate a unique idempotency key."""
    return f"test-{uuid4().hex}"


@pytest.fixture
def sample_email_payload() -> dict[str, Any]:
    return {"to": "a@b.com", "subject": "hi", "body": "x"}


@pytest.fixture
def webhook_requests() -> list[httpx.Request]:
    """Requests captured by the mock webhook transport."""
    return []


@pytest.fixture
def webhook_transport_factory(
    webhook_requests: list[httpx.Request],
) -> Callable[[int], httpx.MockTransport]:
    """Build a mock transport answering every request with a fixed status."""

    def factory(status_code: int) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            webhook_requests.append(request)
            return httpx.Response(status_code, json={"ok": status_code < 400})

        return httpx.MockTransport(handler)

    return factory


WaitUntil = Callable[[Callable[[], Awaitable[bool]]], Awaitable[None]]


@pytest.fixture
def wait_until() -> WaitUntil:
    """Poll an async predicate until it holds or a timeout passes."""

    async def wait(predicate: Callable[[], Awaitable[bool]], timeout: float = 5.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not await predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(0.02)

    return wait
