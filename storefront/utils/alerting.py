"""
Operator alerts for failures a human has to look at: exhausted database
retries, refused or failed catalog syncs, payment polling errors.

Every alert is logged. When ALERT_WEBHOOK_URL is set it is also posted to that
Discord/Slack-compatible webhook. Each alert type has a cooldown, held in Redis
(SET NX EX) and in process memory while Redis is unreachable.
"""
import logging
import time
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

ALERT_COOLDOWN_SECONDS = 300

ALERT_COOLDOWN_OVERRIDES: dict[str, int] = {
    # The sync summary already lists every failed item
    "catalog_sync_item_failed": 3600,
}

COOLDOWN_KEY_PREFIX = "storefront:alert_cooldown:"
WEBHOOK_TIMEOUT_SECONDS = 5.0

# alert_type -> monotonic expiry, used only when Redis is down
_local_cooldowns: dict[str, float] = {}


class AlertType:
    DATABASE_RETRY_EXHAUSTED = "database_retry_exhausted"
    WEBHOOK_SIGNATURE_INVALID = "webhook_signature_invalid"
    SYNC_SAFETY_REJECTED = "sync_safety_rejected"
    CATALOG_FETCH_FAILED = "catalog_fetch_failed"
    CATALOG_SYNC_ITEM_FAILED = "catalog_sync_item_failed"
    PAYMENT_SYNC_FAILED = "payment_sync_failed"


async def send_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str] = None,
    severity: str = "error",
    extra: Optional[dict] = None,
) -> None:
    """Log and deliver an alert unless the same type fired within its cooldown."""
    if not await _acquire_cooldown(alert_type):
        logger.debug("Alert %s suppressed by cooldown", alert_type)
        return

    from storefront.utils.logging import get_correlation_id
    cid = correlation_id or get_correlation_id()

    level = logging.CRITICAL if severity == "critical" else logging.ERROR
    logger.log(level, "ALERT [%s]: %s", alert_type, message, extra={"error_code": alert_type})

    await _send_webhook_alert(alert_type, message, severity, cid, extra)


def _take_local_cooldown(alert_type: str, cooldown: int) -> bool:
    now = time.monotonic()
    if _local_cooldowns.get(alert_type, 0) > now:
        return False
    _local_cooldowns[alert_type] = now + cooldown
    return True


async def _acquire_cooldown(alert_type: str) -> bool:
    cooldown = ALERT_COOLDOWN_OVERRIDES.get(alert_type, ALERT_COOLDOWN_SECONDS)
    try:
        from storefront.utils.redis_client import get_redis
        redis = await get_redis()
        acquired = await redis.set(f"{COOLDOWN_KEY_PREFIX}{alert_type}", "1", nx=True, ex=cooldown)
    except Exception as e:
        logger.debug("Redis unavailable for alert cooldown (%s), using local state", str(e))
        return _take_local_cooldown(alert_type, cooldown)
    return bool(acquired)


def _webhook_content(
    alert_type: str,
    message: str,
    severity: str,
    correlation_id: Optional[str],
    extra: Optional[dict],
) -> str:
    lines = [f"[{severity.upper()}] **{alert_type}**", message]
    details = dict(extra or {})
    if correlation_id:
        details = {"correlation_id": correlation_id, **details}
    lines.extend(f"`{key}: {value}`" for key, value in details.items())
    return "\n".join(lines)


async def _send_webhook_alert(
    alert_type: str,
    message: str,
    severity: str,
    correlation_id: Optional[str],
    extra: Optional[dict],
) -> None:
    from storefront.config import get_settings
    webhook_url = get_settings().alert_webhook_url
    if not webhook_url:
        return

    content = _webhook_content(alert_type, message, severity, correlation_id, extra)
    try:
        async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS) as client:
            await client.post(webhook_url, json={"content": content})
    except Exception as e:
        # Never propagate: alerts fire from inside failure paths
        logger.warning("Alert webhook delivery failed for %s: %s", alert_type, str(e))
