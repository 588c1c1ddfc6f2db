"""
Append-only log of applied payment status transitions.
One row per applied change - replays and no-ops never write here.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from storefront.database import Base


class PaymentTransition(Base):
    __tablename__ = "payment_transitions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_id = Column(UUID(as_uuid=True), ForeignKey("payments.id"), nullable=False, index=True)
    event_id = Column(String(255), nullable=True, index=True)  # null when not webhook-driven
    from_status = Column(String(20), nullable=False)
    to_status = Column(String(20), nullable=False)
    source = Column(String(30), nullable=False, default="webhook")  # webhook, payment_sync, override
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
