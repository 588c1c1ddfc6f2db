"""
Webhook event deduplication - the at-most-once boundary.

claim() is an atomic insert-if-absent on webhook_events.event_id
(ON CONFLICT DO NOTHING). The row is written inside the caller's transaction,
so a claim only becomes durable together with the mutations it guards: a
rolled-back attempt releases the claim and a redelivery can process the event.
Concurrent deliveries of the same event_id block on the unique index; exactly
one inserts.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.webhook_event import WebhookEvent
from storefront.utils.logging import get_correlation_id
from storefront.utils.webhook_signatures import compute_payload_hash

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass(frozen=True)
class ClaimResult:
    fresh: bool


class EventDeduplicator:

    async def claim(
        self,
        session: AsyncSession,
        event_id: str,
        event_type: str = "",
        payload: bytes = b"",
        received_at: Optional[datetime] = None,
    ) -> ClaimResult:
        if not event_id:
            raise ValueError("event_id is required to claim an event")

        dialect = session.bind.dialect.name
        insert_fn = _DIALECT_INSERTS.get(dialect)
        if insert_fn is None:
            raise NotImplementedError(f"insert-if-absent not supported for dialect {dialect}")

        stmt = (
            insert_fn(WebhookEvent)
            .values(
                id=uuid.uuid4(),
                event_id=event_id,
                event_type=event_type or "unknown",
                received_at=received_at or datetime.now(timezone.utc),
                payload=payload,
                payload_hash=compute_payload_hash(payload),
                correlation_id=get_correlation_id(),
            )
            .on_conflict_do_nothing(index_elements=["event_id"])
        )
        result = await session.execute(stmt)

        if result.rowcount == 1:
            return ClaimResult(fresh=True)

        logger.info(
            "Duplicate webhook event %s (%s) - already claimed", event_id, event_type,
            extra={"event_id": event_id, "event_type": event_type},
        )
        return ClaimResult(fresh=False)
