"""
Database models - import all models here so Alembic can discover them.
"""
from storefront.models.order import Order, OrderStatus
from storefront.models.payment import Payment, PaymentStatus
from storefront.models.payment_transition import PaymentTransition
from storefront.models.product import Product
from storefront.models.webhook_event import WebhookEvent

__all__ = [
    "Order",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "PaymentTransition",
    "Product",
    "WebhookEvent",
]
