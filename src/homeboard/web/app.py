"""FastAPI application factory with the maintenance scheduler."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from homeboard.config import Settings
from homeboard.db import MarketplaceStorage
from homeboard.errors import MarketplaceError
from homeboard.logging import configure_logging, get_logger
from homeboard.notifiers.email import ZeptoMailClient
from homeboard.scheduler import build_scheduler

logger = get_logger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


async def marketplace_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, MarketplaceError)
    if exc.status_code >= 500:
        logger.warning("request_failed", path=request.url.path, error=exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


def create_app(settings: Settings | None = None, *, run_scheduler: bool = True) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Application settings. Loaded from env if not provided.
        run_scheduler: Whether to start the cron jobs. Also gated by
            ``settings.enable_scheduler``.
    """
    if settings is None:
        settings = Settings()

    configure_logging(json_output=settings.json_logs)

    storage = MarketplaceStorage(settings.database_path)
    mailer = ZeptoMailClient.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await storage.initialize()
        app.state.storage = storage
        app.state.settings = settings
        app.state.mailer = mailer if mailer.is_configured else None
        if app.state.mailer is None:
            logger.warning("email_not_configured")

        scheduler = None
        if run_scheduler and settings.enable_scheduler:
            scheduler = build_scheduler(storage, settings, app.state.mailer)
            scheduler.start()
            logger.info("web_server_started", scheduler="enabled")
        else:
            logger.info("web_server_started", scheduler="disabled")

        yield

        if scheduler is not None:
            scheduler.shutdown(wait=False)
        await storage.close()
        logger.info("web_server_stopped")

    app = FastAPI(title="HaDirot", lifespan=lifespan)

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)

    from homeboard.web.admin_routes import router as admin_router
    from homeboard.web.routes import router
    from homeboard.web.tracking_routes import router as tracking_router

    app.include_router(router)
    app.include_router(tracking_router)
    app.include_router(admin_router)

    return app
