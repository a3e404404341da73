"""
FastAPI Application Factory
===========================

Main entry point of the auth broker service.

Routers:
    - /auth/*   : Provider and quick-connect login flows, current user
    - /health   : Health check endpoint

Running the Service:
    Development:
        uvicorn authbroker.main:create_app --factory --reload --port 8080

    Production:
        authbroker

    With custom log level:
        LOG_LEVEL=DEBUG authbroker

The broker keeps login requests in memory, so run a single worker process.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .auth.errors import AuthServiceError
from .auth.routes import auth_error_handler, auth_router
from .auth.service import AuthBroker
from .auth.utils import Clock, utc_now
from .config import Settings, get_settings
from .database import Database, InMemoryDatabase

logger = logging.getLogger("authbroker.main")


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # httpx logs every request line at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup: starts the request cleaner.
    Shutdown: stops the cleaner; in-flight login requests are dropped.
    """
    broker: AuthBroker = app.state.broker
    settings: Settings = app.state.settings

    logger.info(
        "Starting auth broker",
        extra={
            "providers": sorted(settings.OIDC_PROVIDERS),
            "log_level": settings.LOG_LEVEL,
        },
    )
    logger.debug(f"Current config: {settings.masked()}")

    broker.start()
    logger.info("Started auth request cleaner")

    yield

    logger.info("Shutting down auth broker")
    await broker.stop()
    logger.info("Auth broker shutdown complete")


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[Database] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """
    Application factory function.

    Args:
        settings: Settings to use instead of the environment
        db: User / identity data access, defaults to an in-memory database
        http_client: Client used for provider discovery and code exchange
        clock: Time source for request expiry

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    if db is None:
        logger.warning("No database configured, users are kept in memory")
        db = InMemoryDatabase()

    app = FastAPI(
        title="Auth Broker",
        description="Provider and quick-connect login flows issuing session tokens",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.broker = AuthBroker.from_settings(settings, db, http_client=http_client, clock=clock)

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(auth_router)
    app.add_exception_handler(AuthServiceError, auth_error_handler)

    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, str]:
        return {
            "status": "ok",
            "service": "authbroker",
            "version": __version__,
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Log unhandled errors and return a standardized 500 response."""
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    return app


def run() -> None:
    """Console entry point."""
    settings = get_settings()

    uvicorn.run(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
