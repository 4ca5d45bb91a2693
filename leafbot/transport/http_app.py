# leafbot/transport/http_app.py
"""
HTTP surface for the messenger.

Routes:
- GET  /health             - liveness, public
- POST /webhooks/telegram  - Telegram updates
- GET  /webhooks/facebook  - Facebook verification handshake
- POST /webhooks/facebook  - Facebook messaging events
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from leafbot.config import settings
from leafbot.core.engine.errors import EngineError
from leafbot.infra.db_async import close_pool
from leafbot.infra.http_client import close_all_sessions
from leafbot.infra.logging_config import setup_logging, get_logger
from leafbot.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)
from leafbot.transport.processor import Messenger
from leafbot.transport.webhook import (
    facebook_webhook_handler,
    facebook_webhook_verify,
    telegram_webhook_handler,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""
    logger.info(f"Starting application: env={settings.app_env}")
    await fastapi_app.state.messenger.start()

    yield

    logger.info("Shutting down application")
    await fastapi_app.state.messenger.close()
    await close_all_sessions()
    await close_pool()
    logger.info("Application shutdown complete")


def create_app(messenger: Messenger) -> FastAPI:
    """FastAPI app dispatching webhook payloads to ``messenger``."""
    setup_logging(level=settings.log_level, use_json=settings.is_production)

    app = FastAPI(
        title="leafbot",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
        openapi_url=None if settings.is_production else "/openapi.json",
    )
    app.state.messenger = messenger

    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        if exc.status_code >= 500:
            logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        logger.warning(f"Engine error on {request.url.path}: {exc.__class__.__name__}: {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    app.add_api_route("/webhooks/telegram", telegram_webhook_handler, methods=["POST"])
    app.add_api_route("/webhooks/facebook", facebook_webhook_verify, methods=["GET"])
    app.add_api_route("/webhooks/facebook", facebook_webhook_handler, methods=["POST"])

    return app
