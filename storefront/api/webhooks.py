"""
Square webhook endpoint.

The body is read raw: the signature covers the exact bytes, so nothing may
parse or re-serialize it before verification. All decisions are made by
WebhookProcessor; this layer only maps its result onto HTTP.
"""
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from storefront.services.webhook_processor import WebhookProcessor
from storefront.utils.webhook_signatures import SQUARE_SIGNATURE_HEADER

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


def get_webhook_processor(request: Request) -> WebhookProcessor:
    return request.app.state.webhook_processor


@router.post("/square")
async def square_webhook(request: Request):
    """Receive a Square event. 401 on bad signature, 503 when the database is unavailable."""
    raw_body = await request.body()
    signature = request.headers.get(SQUARE_SIGNATURE_HEADER)

    processor = get_webhook_processor(request)
    result = await processor.process(raw_body, signature)

    if result.status_code == 401:
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})
    if result.status_code == 503:
        return JSONResponse(
            status_code=503,
            content={"error": "Temporarily unavailable", "event_id": result.event_id},
            headers={"Retry-After": "30"},
        )
    return JSONResponse(status_code=result.status_code, content=result.body())
