"""
Pydantic models for Square webhook payloads.
Only the fields this core reads are declared; everything else is ignored.
"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Money(_Lenient):
    amount: Optional[int] = None
    currency: Optional[str] = None


class PaymentObject(_Lenient):
    id: Optional[str] = None
    order_id: Optional[str] = None
    status: Optional[str] = None
    amount_money: Optional[Money] = None


class RefundObject(_Lenient):
    id: Optional[str] = None
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    status: Optional[str] = None
    amount_money: Optional[Money] = None


class OrderStateObject(_Lenient):
    """order_created / order_updated: a summary, not the full order."""
    order_id: Optional[str] = None
    state: Optional[str] = None
    version: Optional[int] = None


class EventData(_Lenient):
    type: Optional[str] = None
    id: Optional[str] = None
    object: dict[str, Any] = Field(default_factory=dict)


class SquareWebhookEnvelope(_Lenient):
    """Top-level webhook body: {merchant_id, type, event_id, created_at, data}."""
    type: str = Field(min_length=1, max_length=100)
    event_id: str = Field(min_length=1, max_length=255)
    merchant_id: Optional[str] = None
    created_at: Optional[str] = None
    data: EventData = Field(default_factory=EventData)

    def payment(self) -> Optional[PaymentObject]:
        raw = self.data.object.get("payment")
        if not isinstance(raw, dict):
            return None
        return PaymentObject.model_validate(raw)

    def refund(self) -> Optional[RefundObject]:
        raw = self.data.object.get("refund")
        if not isinstance(raw, dict):
            return None
        return RefundObject.model_validate(raw)

    def order_state(self) -> Optional[OrderStateObject]:
        for key in ("order_updated", "order_created"):
            raw = self.data.object.get(key)
            if isinstance(raw, dict):
                return OrderStateObject.model_validate(raw)
        return None


class PaymentUpdate(BaseModel):
    """Fields extracted from a payment.* event that drive a status change."""
    payment_id: str
    order_id: str
    status: Optional[str] = None
    amount: Optional[int] = None


class OrderUpdate(BaseModel):
    """Fields extracted from an order.* event."""
    order_id: str
    state: Optional[str] = None


class RefundUpdate(BaseModel):
    """Fields extracted from a refund.* event."""
    refund_id: Optional[str] = None
    payment_id: str
    status: Optional[str] = None


def extract_payment_update(envelope: SquareWebhookEnvelope) -> Optional[PaymentUpdate]:
    """None when the payment object, its order_id, or data.id is missing."""
    payment = envelope.payment()
    if payment is None or not payment.order_id:
        return None
    payment_id = envelope.data.id or payment.id
    if not payment_id:
        return None
    amount = payment.amount_money.amount if payment.amount_money else None
    return PaymentUpdate(
        payment_id=payment_id,
        order_id=payment.order_id,
        status=payment.status,
        amount=amount,
    )


def extract_refund_update(envelope: SquareWebhookEnvelope) -> Optional[RefundUpdate]:
    refund = envelope.refund()
    if refund is None or not refund.payment_id:
        return None
    return RefundUpdate(
        refund_id=envelope.data.id or refund.id,
        payment_id=refund.payment_id,
        status=refund.status,
    )


def extract_order_update(envelope: SquareWebhookEnvelope) -> Optional[OrderUpdate]:
    """None when there is no order_created/order_updated object or no order id."""
    order = envelope.order_state()
    if order is None:
        return None
    order_id = order.order_id or envelope.data.id
    if not order_id:
        return None
    return OrderUpdate(order_id=order_id, state=order.state)
