"""
Webhook event log - one row per provider event_id, written when the event is
claimed. The unique constraint on event_id is the idempotency boundary.
Rows are never updated after commit.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, LargeBinary
from sqlalchemy.dialects.postgresql import UUID
from storefront.database import Base


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(String(255), unique=True, nullable=False)
    event_type = Column(String(100), nullable=False, index=True)
    received_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    payload = Column(LargeBinary, nullable=False)
    payload_hash = Column(String(64), nullable=False, index=True)
    correlation_id = Column(String(64), nullable=True, index=True)
