"""
Payment status reconciliation - fallback for missed or delayed webhooks.

Polls Square for every local PENDING payment (oldest first) and applies the
provider status through the same transition rules the webhook path uses.
Each payment is handled in its own guarded transaction; one failure is logged
and counted without stopping the run.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.integrations.square import SquareClient
from storefront.models.order import Order
from storefront.models.payment import Payment, PaymentStatus
from storefront.services import payment_status
from storefront.services.connection_guard import ConnectionGuard

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50


class PaymentStatusSync:

    def __init__(self, guard: ConnectionGuard, square: SquareClient):
        self.guard = guard
        self.square = square

    async def _pending_payment_ids(self, limit: int) -> list[str]:
        async def _load(session: AsyncSession) -> list[str]:
            result = await session.execute(
                select(Payment.square_payment_id)
                .where(Payment.status == PaymentStatus.PENDING.value)
                .order_by(Payment.created_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

        return await self.guard.run_in_transaction(_load, name="payment sync load pending")

    async def sync_one(self, square_payment_id: str) -> str:
        """Fetch one payment from Square and apply its status. Returns the transition outcome."""
        remote = await self.square.get_payment(square_payment_id)
        target = payment_status.map_payment_status(remote.get("status"))

        async def _work(session: AsyncSession) -> str:
            payment = (await session.execute(
                select(Payment)
                .where(Payment.square_payment_id == square_payment_id)
                .with_for_update()
            )).scalar_one_or_none()
            if payment is None:
                return payment_status.NO_OP
            order = (await session.execute(
                select(Order).where(Order.id == payment.order_id).with_for_update()
            )).scalar_one_or_none()
            return payment_status.apply_transition(
                session, payment, order, target, source="payment_sync",
            )

        return await self.guard.run_in_transaction(
            _work, name=f"payment sync {square_payment_id}",
        )

    async def sync_pending(self, limit: int = DEFAULT_LIMIT) -> dict:
        started = datetime.now(timezone.utc)
        ids = await self._pending_payment_ids(limit)
        checked = updated = errors = 0

        for square_payment_id in ids:
            checked += 1
            try:
                outcome = await self.sync_one(square_payment_id)
            except Exception as e:
                errors += 1
                logger.error(
                    "Payment sync failed for %s: %s", square_payment_id, str(e),
                    extra={"payment_id": square_payment_id, "operation": "payment sync"},
                )
                continue
            if outcome == payment_status.APPLIED:
                updated += 1

        elapsed = (datetime.now(timezone.utc) - started).total_seconds()
        logger.info(
            "Payment sync finished in %.1fs: checked=%d updated=%d errors=%d",
            elapsed, checked, updated, errors,
        )
        return {"checked": checked, "updated": updated, "errors": errors}
