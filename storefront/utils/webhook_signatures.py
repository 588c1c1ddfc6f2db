"""
Webhook signature validation - verify incoming Square webhooks are authentic.

Square signs with HMAC-SHA256 and sends the base64 digest in the
x-square-hmacsha256-signature header. The digest covers the exact raw bytes
received; never re-serialize the parsed JSON before verifying.
"""
import base64
import hashlib
import hmac
import logging
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

SQUARE_SIGNATURE_HEADER = "x-square-hmacsha256-signature"


def compute_signature(secret: str, body: bytes, notification_url: str = "") -> str:
    """Base64 HMAC-SHA256 of notification_url + body under secret."""
    signed = notification_url.encode("utf-8") + body
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(
    body: bytes,
    signature: Optional[str],
    secrets: Iterable[str],
    notification_url: str = "",
) -> bool:
    """
    Validate a webhook signature against every active secret.
    Returns True on the first match. Fails closed: no secret configured,
    missing header, or no match all return False.
    """
    active = [s for s in (secrets or []) if s]
    if not active:
        logger.error("No webhook signature key configured - rejecting webhook")
        return False
    if not signature:
        logger.warning("Missing %s header", SQUARE_SIGNATURE_HEADER)
        return False

    provided = signature.strip().encode("ascii", errors="replace")
    for secret in active:
        expected = compute_signature(secret, body, notification_url).encode("ascii")
        if hmac.compare_digest(expected, provided):
            return True
    return False


def compute_payload_hash(body: bytes) -> str:
    """Compute SHA-256 hash of raw payload for audit."""
    return hashlib.sha256(body).hexdigest()
