"""
PaymentStatusSync tests - polling fallback for missed webhooks.
"""
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy import select

from storefront.integrations.square import ProviderTimeoutError
from storefront.models.payment import Payment
from storefront.models.payment_transition import PaymentTransition
from storefront.services.payment_sync import PaymentStatusSync

from tests.factories import make_order, make_payment


def _square(statuses: dict):
    async def get_payment(payment_id):
        status = statuses[payment_id]
        if isinstance(status, Exception):
            raise status
        return {"id": payment_id, "status": status}

    client = MagicMock()
    client.get_payment = AsyncMock(side_effect=get_payment)
    return client


async def _statuses(handle) -> dict:
    async with handle.transaction() as session:
        rows = (await session.execute(select(Payment.square_payment_id, Payment.status))).all()
    return dict(rows)


class TestSyncPending:
    async def test_applies_provider_status(self, guard, handle, seed):
        o1, o2, o3 = make_order("o1"), make_order("o2"), make_order("o3")
        await seed(
            o1, o2, o3,
            make_payment(o1, "p1"),
            make_payment(o2, "p2"),
            make_payment(o3, "p3", status="PAID"),
        )
        square = _square({"p1": "COMPLETED", "p2": "APPROVED"})

        result = await PaymentStatusSync(guard, square).sync_pending()

        assert result == {"checked": 2, "updated": 2, "errors": 0}
        assert await _statuses(handle) == {"p1": "PAID", "p2": "PAID", "p3": "PAID"}
        async with handle.transaction() as session:
            sources = (await session.execute(select(PaymentTransition.source))).scalars().all()
        assert sources == ["payment_sync", "payment_sync"]

    async def test_still_pending_is_not_counted(self, guard, handle, seed):
        order = make_order()
        await seed(order, make_payment(order, "p1"))

        result = await PaymentStatusSync(guard, _square({"p1": "PENDING"})).sync_pending()

        assert result == {"checked": 1, "updated": 0, "errors": 0}

    async def test_provider_failure_isolated(self, guard, handle, seed):
        o1, o2 = make_order("o1"), make_order("o2")
        await seed(o1, o2, make_payment(o1, "p1"), make_payment(o2, "p2"))
        square = _square({"p1": ProviderTimeoutError("timed out"), "p2": "CANCELED"})

        result = await PaymentStatusSync(guard, square).sync_pending()

        assert result == {"checked": 2, "updated": 1, "errors": 1}
        assert await _statuses(handle) == {"p1": "PENDING", "p2": "FAILED"}

    async def test_limit_respected(self, guard, handle, seed):
        orders = [make_order(f"o{i}") for i in range(5)]
        await seed(*orders, *[make_payment(o, f"p{i}") for i, o in enumerate(orders)])
        square = _square({f"p{i}": "COMPLETED" for i in range(5)})

        result = await PaymentStatusSync(guard, square).sync_pending(limit=2)

        assert result["checked"] == 2
        assert square.get_payment.await_count == 2
