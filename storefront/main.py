"""
FastAPI entry point for the storefront reconciliation service.

The process owns exactly one ConnectionHandle, opened in the lifespan and
closed on shutdown. Request handlers reach it (and the WebhookProcessor built
on top of it) through app.state.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from storefront.config import Settings, get_settings
from storefront.api.router import api_router
from storefront.database import ConnectionHandle
from storefront.services.connection_guard import ConnectionGuard
from storefront.services.webhook_processor import WebhookProcessor
from storefront.utils.logging import configure_structured_logging, correlation_scope

logger = logging.getLogger("storefront")

CORRELATION_HEADER = "X-Correlation-ID"
# webhook_events.correlation_id column width
MAX_CORRELATION_ID_LENGTH = 64


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds the caller's correlation ID (or a fresh one) for the request and echoes it back."""

    async def dispatch(self, request: Request, call_next) -> Response:
        incoming = request.headers.get(CORRELATION_HEADER)
        if incoming and len(incoming) > MAX_CORRELATION_ID_LENGTH:
            incoming = None
        with correlation_scope(incoming) as cid:
            response = await call_next(request)
        response.headers[CORRELATION_HEADER] = cid
        return response


def _init_sentry(settings: Settings) -> None:
    if not settings.sentry_dsn:
        return
    try:
        import sentry_sdk
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.app_env,
            traces_sample_rate=0.1,
        )
    except Exception as e:
        logger.warning("Sentry disabled, init failed: %s", str(e))
        return
    logger.info("Sentry enabled for %s", settings.app_env)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("Starting storefront reconciliation (env=%s)", settings.app_env)
    if not settings.webhook_signature_keys:
        logger.warning("No Square webhook signature keys configured; all webhooks will get 401")
    _init_sentry(settings)

    # A handle already on app.state (tests) wins over the configured one
    handle: ConnectionHandle = getattr(app.state, "db_handle", None) or ConnectionHandle.from_settings(settings)
    await handle.open()
    app.state.db_handle = handle

    if getattr(app.state, "webhook_processor", None) is None:
        guard = ConnectionGuard(handle, policy=settings.retry_policy())
        app.state.webhook_processor = WebhookProcessor.from_settings(settings, guard)

    try:
        yield
    finally:
        await handle.close()
        logger.info("Database handle for %s closed", handle.target_descriptor)


def create_app() -> FastAPI:
    settings = get_settings()
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="Storefront",
        description="Square payment webhooks and catalog reconciliation",
        version="1.0.0",
        lifespan=lifespan,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.app_base_url],
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", CORRELATION_HEADER],
        expose_headers=[CORRELATION_HEADER],
    )
    # Outermost, so CORS responses carry the header too
    application.add_middleware(CorrelationIdMiddleware)
    application.include_router(api_router)
    return application


app = create_app()
