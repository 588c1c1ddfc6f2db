"""
Payment status mapping and transition rules.

    PENDING -> PAID
    PENDING -> FAILED
    PAID    -> REFUNDED

FAILED and REFUNDED are terminal. Each event is judged on its own against this
table; delivery order is never assumed.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from storefront.models.order import Order, OrderStatus
from storefront.models.payment import Payment, PaymentStatus
from storefront.models.payment_transition import PaymentTransition

logger = logging.getLogger(__name__)

PROVIDER_STATUS_MAP = {
    "APPROVED": PaymentStatus.PAID,
    "COMPLETED": PaymentStatus.PAID,
    "CAPTURED": PaymentStatus.PAID,
    "FAILED": PaymentStatus.FAILED,
    "CANCELED": PaymentStatus.FAILED,
    "REFUNDED": PaymentStatus.REFUNDED,
}

ALLOWED_TRANSITIONS = frozenset({
    (PaymentStatus.PENDING, PaymentStatus.PAID),
    (PaymentStatus.PENDING, PaymentStatus.FAILED),
    (PaymentStatus.PAID, PaymentStatus.REFUNDED),
})

TERMINAL_STATUSES = frozenset({PaymentStatus.FAILED, PaymentStatus.REFUNDED})

# apply_transition outcomes
APPLIED = "applied"
NO_OP = "no_op"
REJECTED = "rejected"


def map_payment_status(provider_status: Optional[Any]) -> PaymentStatus:
    """Total, case-insensitive. Unknown or missing -> PENDING."""
    if not isinstance(provider_status, str):
        return PaymentStatus.PENDING
    return PROVIDER_STATUS_MAP.get(provider_status.strip().upper(), PaymentStatus.PENDING)


def can_transition(
    current: PaymentStatus,
    target: PaymentStatus,
    override: bool = False,
) -> bool:
    """Whether current -> target is legal. override permits any change."""
    if current == target:
        return False
    if override:
        return True
    return (current, target) in ALLOWED_TRANSITIONS


def apply_transition(
    session,
    payment: Payment,
    order: Optional[Order],
    target: PaymentStatus,
    event_id: Optional[str] = None,
    source: str = "webhook",
    override: bool = False,
) -> str:
    """
    Move `payment` to `target` inside the caller's transaction.

    Writes a PaymentTransition row and mirrors the status onto the order only
    when the change is applied. Returns APPLIED, NO_OP or REJECTED.
    """
    current = PaymentStatus(payment.status)
    log_extra = {"payment_id": payment.square_payment_id, "event_id": event_id}

    if current == target:
        logger.info(
            "Payment %s already %s - no-op", payment.square_payment_id, current.value,
            extra=log_extra,
        )
        return NO_OP

    if not can_transition(current, target, override=override):
        logger.info(
            "Blocked payment transition %s -> %s for %s",
            current.value, target.value, payment.square_payment_id,
            extra=log_extra,
        )
        return REJECTED

    now = datetime.now(timezone.utc)
    payment.status = target.value
    payment.updated_at = now

    if order is not None:
        order.payment_status = target.value
        if target == PaymentStatus.PAID and order.status == OrderStatus.PENDING.value:
            order.status = OrderStatus.PROCESSING.value
        order.updated_at = now

    session.add(PaymentTransition(
        payment_id=payment.id,
        event_id=event_id,
        from_status=current.value,
        to_status=target.value,
        source=source,
    ))
    logger.info(
        "Payment %s transitioned %s -> %s",
        payment.square_payment_id, current.value, target.value,
        extra=log_extra,
    )
    return APPLIED
