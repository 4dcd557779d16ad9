"""Pytest fixtures for planning integration tests.

Tests run against a real Redis instance and skip when it is unreachable.
"""

import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
import pytest_asyncio
import redis.asyncio as redis


class SteppingClock:
    """Clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(scope="session")
def redis_url() -> str:
    """Get Redis URL for tests."""
    return os.environ.get("TEST_REDIS_URL", "redis://localhost:6379/0")


@pytest_asyncio.fixture(scope="function")
async def redis_client(redis_url: str) -> AsyncIterator[redis.Redis]:
    """Create Redis client for tests.

    Skips tests if Redis is not available.
    Uses function scope to avoid event loop issues across tests.
    """
    client = redis.from_url(redis_url, decode_responses=True)

    try:
        await client.ping()
    except (redis.ConnectionError, OSError):
        await client.aclose()
        pytest.skip(f"Redis not available at {redis_url}")

    yield client

    await client.aclose()


@pytest.fixture
def run_id() -> str:
    """Unique token keeping keys of concurrent test runs apart."""
    return uuid4().hex[:12]


@pytest_asyncio.fixture
async def clean_redis(redis_client: redis.Redis, run_id: str):
    """Delete keys created by the test after it finishes."""
    yield

    async for key in redis_client.scan_iter(match=f"*{run_id}*"):
        await redis_client.delete(key)


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()
