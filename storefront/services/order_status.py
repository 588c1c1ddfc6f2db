"""
Order state mirroring for Square order.created / order.updated events.

    DRAFT -> PENDING, OPEN -> PROCESSING, COMPLETED -> COMPLETED, CANCELED -> CANCELLED

Orders only move forward along PENDING -> PROCESSING -> READY -> COMPLETED.
CANCELLED is reachable from any non-terminal state. Once COMPLETED or CANCELLED
the order is never changed by a Square order event.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from storefront.models.order import Order, OrderStatus
from storefront.models.payment import PaymentStatus
from storefront.services.payment_status import APPLIED, NO_OP, REJECTED

logger = logging.getLogger(__name__)

SQUARE_ORDER_STATE_MAP = {
    "DRAFT": OrderStatus.PENDING,
    "OPEN": OrderStatus.PROCESSING,
    "COMPLETED": OrderStatus.COMPLETED,
    "CANCELED": OrderStatus.CANCELLED,
}

ORDER_PROGRESSION = (
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.READY,
    OrderStatus.COMPLETED,
)

TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


def map_order_state(square_state: Optional[Any]) -> Optional[OrderStatus]:
    """Case-insensitive. Unknown or missing -> None (leave the order alone)."""
    if not isinstance(square_state, str):
        return None
    return SQUARE_ORDER_STATE_MAP.get(square_state.strip().upper())


def can_advance(current: OrderStatus, target: OrderStatus) -> bool:
    if current == target or current in TERMINAL_ORDER_STATUSES:
        return False
    if target == OrderStatus.CANCELLED:
        return True
    return ORDER_PROGRESSION.index(target) > ORDER_PROGRESSION.index(current)


def apply_order_state(
    order: Order,
    target: Optional[OrderStatus],
    event_id: Optional[str] = None,
) -> str:
    """
    Move `order` to `target` inside the caller's transaction. A cancelled order
    that had been paid is marked REFUNDED. Returns APPLIED, NO_OP or REJECTED.
    """
    log_extra = {"order_id": order.square_order_id, "event_id": event_id}
    current = OrderStatus(order.status)

    if target is None or current == target:
        return NO_OP

    if not can_advance(current, target):
        logger.info(
            "Blocked order transition %s -> %s for %s",
            current.value, target.value, order.square_order_id,
            extra=log_extra,
        )
        return REJECTED

    order.status = target.value
    if target == OrderStatus.CANCELLED and order.payment_status == PaymentStatus.PAID.value:
        order.payment_status = PaymentStatus.REFUNDED.value
    order.updated_at = datetime.now(timezone.utc)

    logger.info(
        "Order %s moved %s -> %s", order.square_order_id, current.value, target.value,
        extra=log_extra,
    )
    return APPLIED
