"""FastAPI application entry point."""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from safewatch.api.deps import Services, build_services
from safewatch.api.v1.router import api_router
from safewatch.config import settings
from safewatch.core.exceptions import register_exception_handlers
from safewatch.middleware import RequestLoggingMiddleware, setup_logging


# Setup logging early
setup_logging()
logger = logging.getLogger(__name__)


def validate_startup_security() -> None:
    """
    Validate security configuration at startup.
    Exits with error in production if requirements are not met.
    """
    errors = settings.validate_production_settings()

    if errors:
        logger.error("=" * 60)
        logger.error("SECURITY CONFIGURATION ERRORS")
        logger.error("=" * 60)
        for error in errors:
            logger.error(f"  - {error}")
        logger.error("=" * 60)

        if settings.is_production():
            logger.critical("Refusing to start in production with insecure configuration!")
            sys.exit(1)

    if not settings.is_production() and settings.secret_key == "dev-only-change-in-production-0000":
        logger.warning(
            "Running with the development token secret. "
            "DO NOT use this configuration in production!"
        )

    logger.info(f"Environment: {settings.app_env}")
    logger.info(f"Storage backend: {settings.storage_backend}")
    logger.info(
        f"Alerting: threshold={settings.alert_threshold} "
        f"radius={settings.cluster_radius_meters}m window={settings.cluster_time_window_hours}h"
    )
    logger.info(f"Debug Mode: {settings.debug}")


async def create_tables() -> None:
    from safewatch.db.session import get_engine
    from safewatch.models import Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    logger.info(f"Starting {settings.app_name}...")

    validate_startup_security()

    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)

    if settings.storage_backend == "postgres":
        try:
            await create_tables()
            logger.info("Database connection established")
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            if settings.is_production():
                sys.exit(1)

    logger.info(f"{settings.app_name} started successfully")

    yield

    logger.info("Shutting down...")
    # Let detached alert runs finish before the stores go away
    await app.state.services.dispatcher.drain()
    if settings.storage_backend == "postgres":
        from safewatch.db.session import get_engine

        await get_engine().dispose()
        logger.info("Database connections closed")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the application. Passing ``services`` skips settings-based wiring."""
    app = FastAPI(
        title=settings.app_name,
        description="""
Community incident reporting with vote-based verification and area alerts.

## Authentication

Send the token issued by the identity service as a Bearer token:

```
Authorization: Bearer <token>
```

Reading reports, vote counts and alerts is public. Submitting reports and
voting require a user token; resolving alerts requires a police, municipal
or admin token.

## Error Responses

All errors follow a consistent format:
```json
{
  "error": {
    "code": "ERROR_CODE",
    "message": "Human-readable message",
    "request_id": "abc123"
  }
}
```
        """,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production() else None,
        redoc_url="/redoc" if not settings.is_production() else None,
        openapi_url="/openapi.json" if not settings.is_production() else None,
    )
    app.state.services = services

    # ========================================================================
    # Register Exception Handlers (before middleware)
    # ========================================================================
    register_exception_handlers(app)

    # ========================================================================
    # Middleware Stack (order matters - first added = last executed)
    # ========================================================================

    # 1. Request logging (outermost - captures everything)
    app.add_middleware(RequestLoggingMiddleware)

    # 2. CORS (innermost for preflight handling)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        expose_headers=["X-Request-ID"],
        max_age=600,  # Cache preflight for 10 minutes
    )

    # ========================================================================
    # API Routes
    # ========================================================================
    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Basic health check endpoint."""
        return {
            "status": "healthy",
            "service": settings.app_name,
            "environment": settings.app_env,
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        response = {
            "name": settings.app_name,
            "version": "1.0.0",
            "health": "/health",
        }

        if not settings.is_production():
            response["docs"] = "/docs"
            response["redoc"] = "/redoc"

        return response

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
