"""Health check endpoints."""

import logging

from fastapi import APIRouter, Depends, Response

from safewatch.api.deps import Services, get_services
from safewatch.config import settings
from safewatch.core.rbac import Permission, require_permissions

router = APIRouter(dependencies=[Depends(require_permissions(Permission.SYSTEM_HEALTH))])
logger = logging.getLogger(__name__)


@router.get("")
async def health_check():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "healthy"}


@router.get("/db")
async def database_health(response: Response, services: Services = Depends(get_services)):
    """Check storage connection health.

    Returns HTTP 503 if the store is unavailable.
    """
    try:
        await services.stores.ping()
        return {"status": "healthy", "database": "connected", "backend": settings.storage_backend}
    except Exception as e:
        logger.error(f"Storage health check failed: {e}")
        response.status_code = 503
        return {"status": "unhealthy", "database": "disconnected", "backend": settings.storage_backend}
