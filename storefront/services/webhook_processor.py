"""
Square webhook processing.

Pipeline per delivery:
1. Signature verification (401, no state change on failure)
2. Parse the envelope (malformed -> acknowledged, nothing written)
3. Inside one ConnectionGuard-retried transaction:
   claim event_id -> extract identifiers -> re-read order/payment -> apply
   the mapped status through the transition table -> commit

The provider only ever gets a non-2xx for a bad signature (401) or when the
database stayed unreachable through every retry (503). Business outcomes
(duplicate, no-op, blocked transition, unknown order) are all acknowledged.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.order import Order
from storefront.models.payment import Payment, PaymentStatus
from storefront.schemas.square_webhooks import (
    SquareWebhookEnvelope,
    extract_order_update,
    extract_payment_update,
    extract_refund_update,
)
from storefront.services import order_status, payment_status
from storefront.services.connection_guard import ConnectionGuard
from storefront.services.event_dedup import EventDeduplicator
from storefront.utils.alerting import AlertType, send_alert
from storefront.utils.retry import RetryExhaustedError
from storefront.utils.webhook_signatures import verify_signature

logger = logging.getLogger(__name__)

PAYMENT_EVENTS = frozenset({"payment.created", "payment.updated"})
REFUND_EVENTS = frozenset({"refund.created", "refund.updated"})
ORDER_EVENTS = frozenset({"order.created", "order.updated"})


class WebhookOutcome:
    UNAUTHORIZED = "unauthorized"
    MALFORMED = "malformed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    ORDER_NOT_FOUND = "order_not_found"
    PAYMENT_NOT_FOUND = "payment_not_found"
    APPLIED = payment_status.APPLIED
    NO_OP = payment_status.NO_OP
    REJECTED = payment_status.REJECTED
    RETRY_EXHAUSTED = "retry_exhausted"


@dataclass(frozen=True)
class WebhookResult:
    status_code: int
    outcome: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None

    def body(self) -> dict:
        payload = {"received": self.status_code == 200, "outcome": self.outcome}
        if self.event_id:
            payload["event_id"] = self.event_id
        return payload


class WebhookProcessor:

    def __init__(
        self,
        guard: ConnectionGuard,
        signature_keys: Iterable[str],
        notification_url: str = "",
        deduplicator: Optional[EventDeduplicator] = None,
    ):
        self.guard = guard
        self.signature_keys = [k for k in signature_keys if k]
        self.notification_url = notification_url
        self.deduplicator = deduplicator or EventDeduplicator()

    @classmethod
    def from_settings(cls, settings, guard: ConnectionGuard) -> "WebhookProcessor":
        return cls(
            guard=guard,
            signature_keys=settings.webhook_signature_keys,
            notification_url=settings.square_webhook_notification_url,
        )

    async def process(self, raw_body: bytes, signature: Optional[str]) -> WebhookResult:
        if not verify_signature(raw_body, signature, self.signature_keys, self.notification_url):
            logger.warning("Rejected Square webhook: invalid signature")
            await send_alert(
                AlertType.WEBHOOK_SIGNATURE_INVALID,
                "Square webhook rejected: signature did not match any configured key",
                severity="warning",
            )
            return WebhookResult(401, WebhookOutcome.UNAUTHORIZED)

        try:
            envelope = SquareWebhookEnvelope.model_validate_json(raw_body)
        except ValidationError as e:
            logger.warning(
                "Malformed Square webhook acknowledged without processing: %s",
                str(e).splitlines()[0],
            )
            return WebhookResult(200, WebhookOutcome.MALFORMED)

        event_id, event_type = envelope.event_id, envelope.type
        log_extra = {"event_id": event_id, "event_type": event_type}
        logger.info("Square webhook received: %s", event_type, extra=log_extra)

        try:
            outcome = await self.guard.run_in_transaction(
                lambda session: self._handle(session, envelope, raw_body),
                name=f"webhook {event_type} {event_id}",
            )
        except RetryExhaustedError as e:
            logger.error(
                "Webhook %s not processed, database unavailable after %d attempts",
                event_id, e.attempts, extra=log_extra,
            )
            await send_alert(
                AlertType.DATABASE_RETRY_EXHAUSTED,
                f"Square webhook {event_type} {event_id} could not be processed: {e.last_error}",
                extra={"event_id": event_id, "operation": e.operation},
            )
            return WebhookResult(503, WebhookOutcome.RETRY_EXHAUSTED, event_id, event_type)

        logger.info("Square webhook %s outcome: %s", event_id, outcome, extra=log_extra)
        return WebhookResult(200, outcome, event_id, event_type)

    async def _handle(
        self,
        session: AsyncSession,
        envelope: SquareWebhookEnvelope,
        raw_body: bytes,
    ) -> str:
        claim = await self.deduplicator.claim(
            session, envelope.event_id, envelope.type, raw_body,
        )
        if not claim.fresh:
            return WebhookOutcome.DUPLICATE

        if envelope.type in PAYMENT_EVENTS:
            return await self._handle_payment(session, envelope)
        if envelope.type in REFUND_EVENTS:
            return await self._handle_refund(session, envelope)
        if envelope.type in ORDER_EVENTS:
            return await self._handle_order(session, envelope)

        logger.info(
            "Unhandled Square event type: %s", envelope.type,
            extra={"event_id": envelope.event_id},
        )
        return WebhookOutcome.IGNORED

    async def _handle_payment(self, session: AsyncSession, envelope: SquareWebhookEnvelope) -> str:
        event_id = envelope.event_id
        try:
            update = extract_payment_update(envelope)
        except ValidationError:
            update = None
        if update is None:
            logger.warning(
                "%s %s missing payment object or order_id - acknowledged",
                envelope.type, event_id,
                extra={"event_id": event_id},
            )
            return WebhookOutcome.MALFORMED

        log_extra = {
            "event_id": event_id,
            "payment_id": update.payment_id,
            "order_id": update.order_id,
        }

        order = (await session.execute(
            select(Order)
            .where(Order.square_order_id == update.order_id)
            .with_for_update()
        )).scalar_one_or_none()
        if order is None:
            logger.warning(
                "Order %s not found for payment %s", update.order_id, update.payment_id,
                extra=log_extra,
            )
            return WebhookOutcome.ORDER_NOT_FOUND

        payment = await _load_payment(session, update.payment_id)
        if payment is None:
            payment = Payment(
                id=uuid.uuid4(),
                square_payment_id=update.payment_id,
                order_id=order.id,
                amount=update.amount or 0,
                status=PaymentStatus.PENDING.value,
            )
            session.add(payment)
            logger.info("Recorded new payment %s", update.payment_id, extra=log_extra)

        target = payment_status.map_payment_status(update.status)
        return payment_status.apply_transition(
            session, payment, order, target, event_id=event_id,
        )

    async def _handle_refund(self, session: AsyncSession, envelope: SquareWebhookEnvelope) -> str:
        event_id = envelope.event_id
        try:
            update = extract_refund_update(envelope)
        except ValidationError:
            update = None
        if update is None:
            logger.warning(
                "%s %s missing refund object or payment_id - acknowledged",
                envelope.type, event_id,
                extra={"event_id": event_id},
            )
            return WebhookOutcome.MALFORMED

        log_extra = {"event_id": event_id, "payment_id": update.payment_id}

        if (update.status or "").upper() != "COMPLETED":
            logger.info(
                "Refund %s for payment %s is %s - nothing to apply",
                update.refund_id, update.payment_id, update.status,
                extra=log_extra,
            )
            return WebhookOutcome.NO_OP

        payment = await _load_payment(session, update.payment_id)
        if payment is None:
            logger.warning("Payment %s not found for refund", update.payment_id, extra=log_extra)
            return WebhookOutcome.PAYMENT_NOT_FOUND

        order = (await session.execute(
            select(Order).where(Order.id == payment.order_id).with_for_update()
        )).scalar_one_or_none()
        return payment_status.apply_transition(
            session, payment, order, PaymentStatus.REFUNDED, event_id=event_id,
        )


    async def _handle_order(self, session: AsyncSession, envelope: SquareWebhookEnvelope) -> str:
        event_id = envelope.event_id
        try:
            update = extract_order_update(envelope)
        except ValidationError:
            update = None
        if update is None:
            logger.warning(
                "%s %s missing order state object - acknowledged",
                envelope.type, event_id,
                extra={"event_id": event_id},
            )
            return WebhookOutcome.MALFORMED

        log_extra = {"event_id": event_id, "order_id": update.order_id}

        order = (await session.execute(
            select(Order)
            .where(Order.square_order_id == update.order_id)
            .with_for_update()
        )).scalar_one_or_none()
        if order is None:
            logger.warning("Order %s not found for %s", update.order_id, envelope.type, extra=log_extra)
            return WebhookOutcome.ORDER_NOT_FOUND

        target = order_status.map_order_state(update.state)
        if target is None:
            logger.info(
                "Square order %s state %s not mirrored", update.order_id, update.state,
                extra=log_extra,
            )
        return order_status.apply_order_state(order, target, event_id=event_id)

async def _load_payment(session: AsyncSession, square_payment_id: str) -> Optional[Payment]:
    result = await session.execute(
        select(Payment)
        .where(Payment.square_payment_id == square_payment_id)
        .with_for_update()
    )
    return result.scalar_one_or_none()
