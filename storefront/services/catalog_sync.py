"""
Catalog reconciliation between the live Square catalog and local products.

    archive  = {active products with non-empty square_id} - live ids
    restore  = {archived products with non-empty square_id} & live ids

Each archive/restore is its own ConnectionGuard transaction that re-reads the
product before writing, so one failing item never blocks the rest. Products
without a square_id are not provider-managed and are never touched.

Runs are expected to be exclusive (one sync process at a time); nothing here
locks against a concurrent run.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.product import Product
from storefront.services.connection_guard import ConnectionGuard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemFailure:
    square_id: str
    action: str
    error: str


@dataclass
class SyncSummary:
    archived: int = 0
    restored: int = 0
    errors: int = 0
    failures: list[ItemFailure] = field(default_factory=list)
    dry_run: bool = False
    archive_candidates: list[str] = field(default_factory=list)
    restore_candidates: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "archived": self.archived,
            "restored": self.restored,
            "errors": self.errors,
        }


def _managed(square_id) -> bool:
    return bool(square_id and square_id.strip())


class CatalogDiffSync:

    def __init__(self, guard: ConnectionGuard):
        self.guard = guard

    async def _square_ids(self, active: bool) -> set[str]:
        async def _load(session: AsyncSession) -> set[str]:
            result = await session.execute(
                select(Product.square_id).where(
                    Product.active == active,
                    Product.square_id.is_not(None),
                    Product.square_id != "",
                )
            )
            return {sid for sid in result.scalars().all() if _managed(sid)}

        state = "active" if active else "archived"
        return await self.guard.run_in_transaction(_load, name=f"catalog load {state} products")

    async def find_archive_candidates(self, live_ids: Iterable[str]) -> list[str]:
        live = set(live_ids)
        return sorted(await self._square_ids(active=True) - live)

    async def find_restore_candidates(self, live_ids: Iterable[str]) -> list[str]:
        live = set(live_ids)
        return sorted(await self._square_ids(active=False) & live)

    async def _set_active(self, square_id: str, active: bool) -> bool:
        """Flip every product for square_id still in the opposite state. Returns whether any changed."""
        if not _managed(square_id):
            raise ValueError("square_id is required")

        async def _work(session: AsyncSession) -> bool:
            result = await session.execute(
                select(Product)
                .where(Product.square_id == square_id, Product.active == (not active))
                .with_for_update()
            )
            products = list(result.scalars().all())
            if not products:
                return False
            now = datetime.now(timezone.utc)
            for product in products:
                product.active = active
                product.updated_at = now
            return True

        action = "restore" if active else "archive"
        changed = await self.guard.run_in_transaction(_work, name=f"catalog {action} {square_id}")
        if changed:
            logger.info(
                "Product %s %s", square_id, "restored" if active else "archived",
                extra={"square_id": square_id},
            )
        return changed

    async def archive(self, square_id: str) -> bool:
        return await self._set_active(square_id, active=False)

    async def restore(self, square_id: str) -> bool:
        return await self._set_active(square_id, active=True)

    async def reconcile(self, live_ids: Iterable[str], dry_run: bool = False) -> SyncSummary:
        """
        Archive products missing from live_ids and restore archived ones that
        reappeared. With dry_run the candidates are computed and nothing is written.
        """
        live = {sid for sid in live_ids if _managed(sid)}
        summary = SyncSummary(dry_run=dry_run)
        summary.archive_candidates = await self.find_archive_candidates(live)
        summary.restore_candidates = await self.find_restore_candidates(live)

        logger.info(
            "Catalog diff: %d live, %d to archive, %d to restore%s",
            len(live), len(summary.archive_candidates), len(summary.restore_candidates),
            " (dry run)" if dry_run else "",
        )
        if dry_run:
            return summary

        for square_id in summary.archive_candidates:
            await self._apply(summary, square_id, "archive")
        for square_id in summary.restore_candidates:
            await self._apply(summary, square_id, "restore")

        logger.info(
            "Catalog reconcile finished: archived=%d restored=%d errors=%d",
            summary.archived, summary.restored, summary.errors,
        )
        return summary

    async def _apply(self, summary: SyncSummary, square_id: str, action: str) -> None:
        try:
            if action == "archive":
                changed = await self.archive(square_id)
            else:
                changed = await self.restore(square_id)
        except Exception as e:
            summary.errors += 1
            summary.failures.append(ItemFailure(square_id, action, str(e)))
            logger.error(
                "Catalog %s failed for %s: %s", action, square_id, str(e),
                extra={"square_id": square_id, "operation": f"catalog {action}"},
            )
            return

        if not changed:
            return
        if action == "archive":
            summary.archived += 1
        else:
            summary.restored += 1
