"""
FastAPI Relay Application Factory
=================================

Main entry point for the relay that sits between the chat-platform mini-app
and the school portal (SGO) / identity provider (ESIA).

Architecture:
    Mini-app → Relay (this service) → School system / Identity provider

Routers:
    - /api/login, /api/auth/*, /api/logout : Authentication flows
    - /api/user, /api/diary, ...            : Session-scoped data forwarding
    - /health                               : Health check endpoint

Running the Service:
    Development:
        uvicorn sgo_relay.main:app --reload --host 0.0.0.0 --port 3000

    With custom log level:
        LOG_LEVEL=DEBUG uvicorn sgo_relay.main:app --reload
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth.routes import auth_router
from .config import Settings, get_settings
from .dependencies import AppState
from .errors import RelayError
from .gateway.routes import gateway_router
from .models import HealthResponse

SERVICE_NAME = "sgo-relay"
SERVICE_VERSION = "1.0.0"

logger = logging.getLogger("sgo_relay.main")


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


async def sweep_forever(app_state: AppState, interval_seconds: float) -> None:
    """Periodically drop expired sessions and pending authorizations."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await app_state.session_store.sweep_expired()
            await app_state.state_store.sweep_expired()
        except Exception as e:
            logger.error(f"Sweep failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup: configure logging and start the background sweeper.
    Shutdown: stop the sweeper.
    """
    app_state: AppState = app.state.app_state
    settings = app_state.settings

    setup_logging(settings.LOG_LEVEL)
    logger.info(
        "Starting relay service",
        extra={
            "default_school_url": settings.SGO_DEFAULT_URL,
            "regions": sorted(settings.SGO_REGION_URLS),
            "esia_configured": settings.esia_configured,
        }
    )

    sweeper = asyncio.create_task(sweep_forever(app_state, settings.SWEEP_INTERVAL_SECONDS))

    yield

    logger.info("Shutting down relay service")
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    logger.info("Relay service shutdown complete")


def create_app(settings: Optional[Settings] = None, app_state: Optional[AppState] = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - CORS middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Settings to use instead of the environment
        app_state: Pre-built state (stores, upstream transport), mainly for tests

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or (app_state.settings if app_state else get_settings())

    app = FastAPI(
        title="School Portal Relay",
        description="Session relay between the mini-app, the school portal and the identity provider",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.app_state = app_state or AppState(settings)

    origins = settings.allowed_origins_list
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials="*" not in origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(auth_router)
    app.include_router(gateway_router)

    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        """Service status and number of live sessions."""
        state: AppState = request.app.state.app_state
        return HealthResponse(
            status="ok",
            sessions=len(state.session_store),
            pendingAuthorizations=len(state.state_store),
        )

    @app.get("/", tags=["System"])
    async def root() -> Dict[str, Any]:
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "endpoints": {
                "health": "/health",
                "docs": "/docs",
                "login": "/api/login",
                "esia_login": "/api/auth/esia/login",
            },
        }

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        logger.info(
            f"Request failed: {exc.error_code}",
            extra={"path": request.url.path, "status_code": exc.status_code},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "details": str(exc) if settings.LOG_LEVEL == "DEBUG" else None
            }
        )

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "sgo_relay.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
