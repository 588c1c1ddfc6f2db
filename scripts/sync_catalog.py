"""
Catalog sync - archive local products Square no longer lists, restore ones
that came back.

Steps:
1. Require the confirmation flag before touching Square
2. Fetch live catalog item ids from Square (paginated, deleted items excluded)
3. Run the full safety gate: confirmation flag, target check, minimum source items
4. Reconcile archive/restore, one guarded transaction per product

Exit codes:
    0  success
    1  safety check rejected the run (nothing written)
    2  Square catalog fetch failed (nothing written)
    3  reconcile finished with per-item errors

Run one sync at a time against a given database.

Usage:
    python -m scripts.sync_catalog --dry-run --confirm-sync   # report diff only
    python -m scripts.sync_catalog --confirm-sync             # apply
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SAFETY_REJECTED = 1
EXIT_FETCH_FAILED = 2
EXIT_ITEM_ERRORS = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reconcile local products against the live Square catalog",
    )
    parser.add_argument(
        "--confirm-sync", action="store_true",
        help="Required to run (the flag name is configurable via SYNC_CONFIRMATION_FLAG)",
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Compute and print the diff without writing",
    )
    return parser


async def _refuse(safety, mode: str) -> int:
    from storefront.services.safety_gate import SafetyGuard
    from storefront.utils.alerting import AlertType, send_alert

    logger.warning("Catalog sync refused: %s", safety.describe())
    await send_alert(
        AlertType.SYNC_SAFETY_REJECTED,
        f"Catalog sync refused: {safety.describe()}",
        severity="critical" if safety.guard == SafetyGuard.TARGET else "error",
    )
    print(f"{mode} Refused: {safety.describe()}")
    return EXIT_SAFETY_REJECTED


async def sync(
    argv: Sequence[str],
    settings=None,
    handle=None,
    square=None,
) -> int:
    """Run one catalog sync. Returns the process exit code."""
    from storefront.config import get_settings
    from storefront.database import ConnectionHandle
    from storefront.integrations.square import ProviderError, SquareClient
    from storefront.services.catalog_sync import CatalogDiffSync
    from storefront.services.connection_guard import ConnectionGuard
    from storefront.services.safety_gate import check_confirmation_flag, run_safety_checks
    from storefront.utils.alerting import AlertType, send_alert

    # Unknown args pass through so a custom confirmation flag still parses
    args, _ = build_parser().parse_known_args(list(argv))
    settings = settings or get_settings()

    handle = handle or ConnectionHandle.from_settings(settings)
    square = square or SquareClient.from_settings(settings)
    mode = "[DRY RUN]" if args.dry_run else "[COMMIT]"
    safety_config = settings.sync_safety_config()

    confirmation = check_confirmation_flag(list(argv), safety_config)
    if not confirmation.passed:
        return await _refuse(confirmation, mode)

    try:
        live_ids = await square.list_catalog_item_ids()
    except ProviderError as e:
        logger.error("Square catalog fetch failed: %s", str(e))
        await send_alert(AlertType.CATALOG_FETCH_FAILED, f"Catalog sync aborted: {e}")
        print(f"{mode} Aborted: could not fetch Square catalog: {e}")
        return EXIT_FETCH_FAILED

    safety = run_safety_checks(
        list(argv), handle.target_descriptor, len(live_ids), safety_config,
    )
    if not safety.passed:
        return await _refuse(safety, mode)

    await handle.open()
    try:
        guard = ConnectionGuard(handle, policy=settings.retry_policy())
        summary = await CatalogDiffSync(guard).reconcile(live_ids, dry_run=args.dry_run)
    finally:
        await handle.close()

    print(f"\n{mode} Catalog sync against {handle.target_descriptor}")
    print(f"  Live Square items: {len(live_ids)}")
    if args.dry_run:
        print(f"  Would archive: {len(summary.archive_candidates)}")
        for square_id in summary.archive_candidates:
            print(f"    - {square_id}")
        print(f"  Would restore: {len(summary.restore_candidates)}")
        for square_id in summary.restore_candidates:
            print(f"    + {square_id}")
        return EXIT_OK

    print(f"  Archived: {summary.archived}")
    print(f"  Restored: {summary.restored}")
    print(f"  Errors:   {summary.errors}")
    for failure in summary.failures:
        print(f"    ! {failure.action} {failure.square_id}: {failure.error}")

    if summary.errors:
        await send_alert(
            AlertType.CATALOG_SYNC_ITEM_FAILED,
            f"Catalog sync finished with {summary.errors} failed item(s)",
            extra={"failed": [f.square_id for f in summary.failures][:20]},
        )
        return EXIT_ITEM_ERRORS
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> None:
    from storefront.utils.logging import correlation_scope

    argv = sys.argv[1:] if argv is None else argv
    with correlation_scope():
        code = asyncio.run(sync(argv))
    sys.exit(code)


if __name__ == "__main__":
    main()
