"""
TillPoint Bridge — FastAPI Application Entry Point
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware

from tillpoint_bridge.api.router import api_router
from tillpoint_bridge.core.config import Settings, get_settings
from tillpoint_bridge.core.errors import error_response, register_error_handlers
from tillpoint_bridge.models.schemas import HealthResponse
from tillpoint_bridge.services.messaging_client import BaseMessagingClient
from tillpoint_bridge.services.session_lifecycle import SessionLifecycle
from tillpoint_bridge.services.webhook_notifier import WebhookNotifier
from tillpoint_bridge.services.whatsapp_web_client import WhatsAppWebClient

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """ISO-8601 UTC with milliseconds, e.g. ``2024-05-01T12:00:00.000Z``."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: bring the WhatsApp session up and down with the server."""
    settings: Settings = app.state.settings
    lifecycle: SessionLifecycle = app.state.lifecycle
    logger.info("🚀 %s starting — env=%s", settings.APP_NAME, settings.ENVIRONMENT)
    if not settings.BASE_WEBHOOK_URL:
        logger.warning("BASE_WEBHOOK_URL not set, lifecycle webhooks are disabled")

    # Session startup runs in the background so the server can accept requests
    lifecycle.start()

    yield

    await lifecycle.stop()
    logger.info("👋 %s shutting down", settings.APP_NAME)


def create_app(
    settings: Settings | None = None,
    client: BaseMessagingClient | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Send WhatsApp messages and relay session events for the TillPoint POS",
        version="0.1.0",
        docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # -- Session state --
    app.state.settings = settings
    app.state.lifecycle = SessionLifecycle(
        client=client or WhatsAppWebClient(settings),
        notifier=WebhookNotifier(settings),
        settings=settings,
    )

    register_error_handlers(app)

    # -- Body size limit --
    @app.middleware("http")
    async def limit_body_size(request: Request, call_next):
        content_length = request.headers.get("content-length", "")
        if content_length.isdigit() and int(content_length) > settings.MAX_BODY_BYTES:
            return error_response(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "request entity too large")
        return await call_next(request)

    # -- Logging Middleware --
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("Incoming request: %s %s", request.method, request.url.path)
        response = await call_next(request)
        logger.info("Response status: %s", response.status_code)
        return response

    # -- CORS --
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Routers --
    app.include_router(api_router)

    # -- Health check --
    @app.get("/health", tags=["system"], response_model=HealthResponse)
    async def health_check() -> dict[str, Any]:
        """Liveness probe. Needs no API key and does not touch the session."""
        return {"status": "ok", "timestamp": utc_timestamp()}

    return app


app = create_app()
