"""
Test configuration and fixtures.
Uses SQLite (aiosqlite) for persistence tests. Mocks Redis and Square.
"""
import os

# Settings() requires DATABASE_URL; set before anything imports storefront.config
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SQUARE_WEBHOOK_SIGNATURE_KEYS", "test-signature-key")

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.pool import StaticPool

import storefront.models  # noqa: F401  (registers every table on Base.metadata)
from storefront.database import Base, ConnectionHandle
from storefront.services.connection_guard import ConnectionGuard
from storefront.utils.retry import RetryPolicy

async def _no_sleep(seconds: float) -> None:
    return None


@pytest.fixture(autouse=True)
def _redis_unavailable():
    """Redis is never reachable in tests unless mock_redis overrides it."""
    with patch(
        "storefront.utils.redis_client.get_redis",
        new_callable=AsyncMock,
        side_effect=ConnectionError("redis disabled in tests"),
    ):
        yield


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("storefront.utils.redis_client.get_redis", new_callable=AsyncMock) as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture
async def handle():
    """Open ConnectionHandle over a shared in-memory SQLite database with all tables."""
    db_handle = ConnectionHandle(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await db_handle.open()
    async with db_handle.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db_handle
    await db_handle.close()


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_attempts=3, initial_delay_ms=1, max_delay_ms=4, backoff_factor=2.0)


@pytest.fixture
def guard(handle, fast_policy):
    return ConnectionGuard(handle, policy=fast_policy, sleep=_no_sleep)


@pytest.fixture
def seed(handle):
    """Insert rows in their own committed transaction."""

    async def _seed(*rows):
        async with handle.transaction() as session:
            session.add_all(rows)
        return rows

    return _seed

