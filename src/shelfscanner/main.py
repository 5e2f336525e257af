"""FastAPI application factory for ShelfScanner.

This module creates and configures the FastAPI application with:
- Lifespan management for startup/shutdown events
- Middleware configuration (CORS, request ID, logging)
- Exception handlers
- API routers
"""

import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shelfscanner.config import Settings, get_settings
from shelfscanner.core.exceptions import ShelfScannerError
from shelfscanner.core.logging import (
    clear_correlation_id,
    configure_logging,
    get_logger,
    set_correlation_id,
)
from shelfscanner.schemas.common import HealthCheckResponse

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifespan events.

    Handles initialization and cleanup of:
    - Logging configuration
    - Database engine and session factory
    - Rate limiter, cache, providers and enrichment services

    Args:
        app: The FastAPI application instance

    Yields:
        None: Control back to the application
    """
    from shelfscanner.core.database import (
        close_db,
        create_tables,
        get_session_factory,
        init_db,
    )
    from shelfscanner.dependencies import (
        build_services,
        close_services,
        install_services,
    )

    settings = app.state.settings

    # ========================================
    # Startup
    # ========================================
    configure_logging(settings)
    startup_logger = get_logger(__name__)

    await init_db(settings)
    if settings.database_url.startswith("sqlite"):
        # Local SQLite databases are created on the fly; PostgreSQL uses Alembic
        await create_tables()

    services = build_services(settings, get_session_factory())
    install_services(services)
    app.state.services = services

    startup_logger.info(
        "application_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.app_env.value,
        debug=settings.debug,
        openai_configured=settings.openai_configured,
    )

    yield

    # ========================================
    # Shutdown
    # ========================================
    await close_services(services)
    await close_db()

    startup_logger.info("application_shutting_down", app_name=settings.app_name)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings override for testing

    Returns:
        FastAPI: Configured application instance
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Bookshelf photo to book recommendations. Caches book ratings and "
            "summaries and keeps paid API usage inside per-API quotas."
        ),
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings

    configure_middleware(app, settings)
    configure_exception_handlers(app)
    configure_routes(app)

    return app


def configure_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure application middleware."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next: Any) -> Any:
        """Log requests and responses with correlation ID."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        set_correlation_id(request_id)

        request_logger = get_logger("shelfscanner.request")
        start_time = time.perf_counter()

        request_logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            request_logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            request_logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
                error=str(exc),
            )
            raise

        finally:
            clear_correlation_id()


def configure_exception_handlers(app: FastAPI) -> None:
    """Configure global exception handlers."""
    exception_logger = get_logger("shelfscanner.exceptions")

    @app.exception_handler(ShelfScannerError)
    async def shelfscanner_exception_handler(
        request: Request, exc: ShelfScannerError
    ) -> JSONResponse:
        """Render ShelfScanner exceptions as structured error responses."""
        request_id = getattr(request.state, "request_id", None)

        log = exception_logger.error if exc.status_code >= 500 else exception_logger.warning
        log(
            "application_error" if exc.status_code >= 500 else "client_error",
            error_code=exc.code,
            error_message=exc.message,
            status_code=exc.status_code,
            path=request.url.path,
        )

        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(request_id=request_id),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions without leaking their text."""
        request_id = getattr(request.state, "request_id", None)

        exception_logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": "An unexpected error occurred",
                    "request_id": request_id,
                }
            },
        )


def configure_routes(app: FastAPI) -> None:
    """Configure application routes."""

    @app.get(
        "/health/live",
        tags=["Health"],
        summary="Liveness probe",
        description="Returns OK if the service is running",
    )
    async def liveness() -> dict[str, str]:
        return {"status": "ok"}

    @app.get(
        "/health/ready",
        tags=["Health"],
        response_model=HealthCheckResponse,
        summary="Readiness probe",
        description="Returns OK if the database is reachable",
    )
    async def readiness(request: Request) -> HealthCheckResponse:
        """Readiness probe checking dependent services.

        A missing OpenAI key only degrades the service (estimated ratings),
        it does not make it unready.
        """
        from shelfscanner.core.database import check_db_connection

        settings: Settings = request.app.state.settings
        db_ok = await check_db_connection()

        return HealthCheckResponse(
            status="ok" if db_ok else "error",
            checks={
                "database": "ok" if db_ok else "error",
                "openai": "ok" if settings.openai_configured else "not_configured",
            },
        )

    @app.get(
        "/",
        tags=["Root"],
        summary="API root",
        description="Returns API information",
    )
    async def root(request: Request) -> dict[str, str]:
        settings: Settings = request.app.state.settings
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
            "health": "/health/live",
        }

    from shelfscanner.api.v1.router import router as v1_router

    app.include_router(v1_router, prefix="/api/v1")


def cli() -> None:
    """CLI entry point for running the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "shelfscanner.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.value.lower(),
    )


if __name__ == "__main__":
    cli()
