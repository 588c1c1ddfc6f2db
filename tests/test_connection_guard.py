"""
ConnectionGuard tests - retry envelope, health checks, reconnects.
Uses a fake handle so connection behaviour is fully scripted.
"""
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import exc as sa_exc
from sqlalchemy import select

from storefront.models.product import Product
from storefront.services.connection_guard import ConnectionGuard
from storefront.utils.retry import RetryExhaustedError, RetryPolicy

from tests.factories import make_product


class FakeHandle:
    def __init__(self, healthy=True):
        self.is_open = False
        self.open = AsyncMock(side_effect=self._open)
        self.healthcheck = AsyncMock(return_value=healthy)
        self.reconnect = AsyncMock()
        self.session_obj = MagicMock()

    async def _open(self):
        self.is_open = True

    @asynccontextmanager
    async def transaction(self):
        yield self.session_obj


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def _unreachable():
    return sa_exc.OperationalError("SELECT 1", {}, Exception("connection refused"))


@pytest.fixture
def sleep():
    return RecordingSleep()


class TestExecute:
    async def test_success_first_attempt(self, sleep):
        handle = FakeHandle()
        guard = ConnectionGuard(handle, sleep=sleep)
        op = AsyncMock(return_value="ok")

        assert await guard.execute(op, "op") == "ok"
        assert op.await_count == 1
        assert sleep.calls == []
        handle.open.assert_awaited_once()

    async def test_retries_transient_then_succeeds(self, sleep):
        guard = ConnectionGuard(FakeHandle(), sleep=sleep)
        op = AsyncMock(side_effect=[_unreachable(), _unreachable(), "ok"])

        assert await guard.execute(op, "op") == "ok"
        assert op.await_count == 3
        assert sleep.calls == [0.1, 0.2]

    async def test_exhaustion_raises_terminal_error(self, sleep):
        guard = ConnectionGuard(FakeHandle(), sleep=sleep)
        op = AsyncMock(side_effect=_unreachable())

        with pytest.raises(RetryExhaustedError) as exc_info:
            await guard.execute(op, "load order")

        assert exc_info.value.attempts == 3
        assert exc_info.value.operation == "load order"
        assert isinstance(exc_info.value.last_error, sa_exc.OperationalError)
        assert op.await_count == 3
        # No sleep after the final attempt
        assert sleep.calls == [0.1, 0.2]

    async def test_backoff_follows_policy(self, sleep):
        policy = RetryPolicy(max_attempts=8, initial_delay_ms=100, max_delay_ms=2000, backoff_factor=2)
        guard = ConnectionGuard(FakeHandle(), policy=policy, sleep=sleep)
        op = AsyncMock(side_effect=_unreachable())

        with pytest.raises(RetryExhaustedError):
            await guard.execute(op, "op")

        assert [round(s * 1000) for s in sleep.calls] == [100, 200, 400, 800, 1600, 2000, 2000]

    async def test_non_retryable_propagates_immediately(self, sleep):
        guard = ConnectionGuard(FakeHandle(), sleep=sleep)
        err = sa_exc.IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        op = AsyncMock(side_effect=err)

        with pytest.raises(sa_exc.IntegrityError):
            await guard.execute(op, "op")
        assert op.await_count == 1
        assert sleep.calls == []

    async def test_per_call_policy_overrides_default(self, sleep):
        guard = ConnectionGuard(FakeHandle(), sleep=sleep)
        op = AsyncMock(side_effect=_unreachable())

        with pytest.raises(RetryExhaustedError) as exc_info:
            await guard.execute(op, "op", policy=RetryPolicy(max_attempts=1))
        assert exc_info.value.attempts == 1
        assert sleep.calls == []


class TestConnectionHealth:
    async def test_healthcheck_before_every_attempt(self, sleep):
        handle = FakeHandle()
        guard = ConnectionGuard(handle, sleep=sleep)
        op = AsyncMock(side_effect=[_unreachable(), "ok"])

        await guard.execute(op, "op")
        assert handle.healthcheck.await_count == 2

    async def test_unhealthy_connection_reconnects(self, sleep):
        handle = FakeHandle(healthy=False)
        guard = ConnectionGuard(handle, sleep=sleep)

        await guard.execute(AsyncMock(return_value=1), "op")
        handle.reconnect.assert_awaited_once()

    async def test_failed_open_is_retried(self, sleep):
        handle = FakeHandle()
        handle.open = AsyncMock(side_effect=[ConnectionRefusedError("down"), None])
        guard = ConnectionGuard(handle, sleep=sleep)

        assert await guard.execute(AsyncMock(return_value="ok"), "op") == "ok"
        assert handle.open.await_count == 2


class TestRunInTransaction:
    async def test_work_receives_session(self, sleep):
        handle = FakeHandle()
        guard = ConnectionGuard(handle, sleep=sleep)
        work = AsyncMock(return_value="done")

        assert await guard.run_in_transaction(work, "op") == "done"
        work.assert_awaited_once_with(handle.session_obj)

    async def test_failed_attempt_rolls_back(self, guard, seed, handle):
        """A retried transaction must not leave the first attempt's writes behind."""
        await seed(make_product("SQ-1"))
        calls = {"n": 0}

        async def work(session):
            calls["n"] += 1
            product = (await session.execute(
                select(Product).where(Product.square_id == "SQ-1")
            )).scalar_one()
            product.name = f"attempt {calls['n']}"
            await session.flush()
            if calls["n"] == 1:
                raise ConnectionResetError("connection reset by peer")
            return product.name

        assert await guard.run_in_transaction(work, "rename") == "attempt 2"

        async with handle.transaction() as session:
            names = (await session.execute(select(Product.name))).scalars().all()
        assert names == ["attempt 2"]
