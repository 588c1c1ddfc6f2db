"""
Row and payload builders shared across test modules.
"""
import json
import uuid

from storefront.models.order import Order
from storefront.models.payment import Payment
from storefront.models.product import Product
from storefront.utils.webhook_signatures import compute_signature

SIGNATURE_KEY = "test-signature-key"


def make_order(square_order_id: str = "sq-order-1", **kwargs) -> Order:
    kwargs.setdefault("status", "PENDING")
    kwargs.setdefault("payment_status", "PENDING")
    kwargs.setdefault("total", 4500)
    return Order(id=uuid.uuid4(), square_order_id=square_order_id, **kwargs)


def make_payment(order: Order, square_payment_id: str = "sq-pay-1", **kwargs) -> Payment:
    kwargs.setdefault("status", "PENDING")
    kwargs.setdefault("amount", order.total)
    return Payment(
        id=uuid.uuid4(), square_payment_id=square_payment_id, order_id=order.id, **kwargs,
    )


def make_product(square_id, active: bool = True, name: str = None) -> Product:
    return Product(
        id=uuid.uuid4(),
        square_id=square_id,
        name=name or f"Item {square_id}",
        category="catering",
        active=active,
    )


def payment_event(
    event_id: str = "evt-1",
    status: str = "COMPLETED",
    payment_id: str = "sq-pay-1",
    order_id: str = "sq-order-1",
    event_type: str = "payment.updated",
    amount: int = 4500,
) -> bytes:
    payment = {"id": payment_id, "status": status, "amount_money": {"amount": amount, "currency": "USD"}}
    if order_id is not None:
        payment["order_id"] = order_id
    body = {
        "merchant_id": "MERCHANT1",
        "type": event_type,
        "event_id": event_id,
        "created_at": "2026-10-01T12:00:00Z",
        "data": {"type": "payment", "id": payment_id, "object": {"payment": payment}},
    }
    return json.dumps(body).encode("utf-8")


def refund_event(
    event_id: str = "evt-refund-1",
    status: str = "COMPLETED",
    payment_id: str = "sq-pay-1",
    refund_id: str = "sq-refund-1",
    event_type: str = "refund.updated",
) -> bytes:
    body = {
        "merchant_id": "MERCHANT1",
        "type": event_type,
        "event_id": event_id,
        "data": {
            "type": "refund",
            "id": refund_id,
            "object": {"refund": {"id": refund_id, "payment_id": payment_id, "status": status}},
        },
    }
    return json.dumps(body).encode("utf-8")


def sign(body: bytes, key: str = SIGNATURE_KEY, notification_url: str = "") -> str:
    return compute_signature(key, body, notification_url)


def order_event(
    event_id: str = "evt-order-1",
    state: str = "COMPLETED",
    order_id: str = "sq-order-1",
    event_type: str = "order.updated",
) -> bytes:
    key = "order_created" if event_type == "order.created" else "order_updated"
    body = {
        "merchant_id": "MERCHANT1",
        "type": event_type,
        "event_id": event_id,
        "data": {
            "type": "order",
            "id": order_id,
            "object": {key: {"order_id": order_id, "state": state, "version": 2}},
        },
    }
    return json.dumps(body).encode("utf-8")
