"""
Payment sync - poll Square for local payments still PENDING and apply their
current status. Fallback for webhooks that never arrived.

Usage:
    python -m scripts.sync_payments              # up to 50 oldest pending payments
    python -m scripts.sync_payments --limit 200
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def sync(limit: int, settings=None, handle=None, square=None) -> dict:
    from storefront.config import get_settings
    from storefront.database import ConnectionHandle
    from storefront.integrations.square import SquareClient
    from storefront.services.connection_guard import ConnectionGuard
    from storefront.services.payment_sync import PaymentStatusSync
    from storefront.utils.alerting import AlertType, send_alert

    settings = settings or get_settings()

    handle = handle or ConnectionHandle.from_settings(settings)
    square = square or SquareClient.from_settings(settings)

    await handle.open()
    try:
        guard = ConnectionGuard(handle, policy=settings.retry_policy())
        result = await PaymentStatusSync(guard, square).sync_pending(limit=limit)
    finally:
        await handle.close()

    if result["errors"]:
        await send_alert(
            AlertType.PAYMENT_SYNC_FAILED,
            f"Payment sync: {result['errors']} of {result['checked']} payment(s) failed",
        )
    return result


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Reconcile PENDING payments against Square",
    )
    parser.add_argument(
        "--limit", type=int, default=50,
        help="Maximum number of pending payments to check (default: 50)",
    )
    args = parser.parse_args(argv)

    from storefront.utils.logging import correlation_scope
    with correlation_scope():
        result = asyncio.run(sync(args.limit))
    print(
        f"Checked: {result['checked']}  Updated: {result['updated']}  Errors: {result['errors']}"
    )
    sys.exit(1 if result["errors"] else 0)


if __name__ == "__main__":
    main()
