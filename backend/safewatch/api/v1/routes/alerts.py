"""Area alert endpoints."""

import math
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from safewatch.api.deps import Services, get_services
from safewatch.core.exceptions import ResourceNotFoundException, ValidationException
from safewatch.core.rbac import AuthContext, Permission, require_permissions
from safewatch.models.alert import AlertSeverity
from safewatch.models.report import Category
from safewatch.schemas.alert import (
    AlertFilters,
    AlertListResponse,
    AlertRecord,
    AlertStats,
    AreaClusterResponse,
    ClusterCheckRequest,
    ClusterCheckResponse,
)
from safewatch.schemas.common import Coordinate, coordinate_or_none
from safewatch.services.alert_synthesizer import resolve_alert

router = APIRouter()

_can_view = Depends(require_permissions(Permission.ALERT_VIEW))


@router.get("", response_model=AlertListResponse, dependencies=[_can_view])
async def list_alerts(
    severity: Optional[AlertSeverity] = None,
    category: Optional[Category] = None,
    is_active: Optional[bool] = None,
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    radius: int = Query(5000, ge=1, le=50000, description="Search radius in meters"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    services: Services = Depends(get_services),
) -> AlertListResponse:
    """
    List alerts, newest first.

    With a location, returns every matching alert whose centre lies within
    ``radius`` metres instead of a paginated listing.
    """
    filters = AlertFilters(
        severity=severity, category=category, is_active=is_active, page=page, limit=limit
    )
    center = coordinate_or_none(latitude, longitude)

    async with services.stores.session() as stores:
        if center is not None:
            alerts = await stores.alerts.list_near(center, radius, filters)
            return AlertListResponse(
                count=len(alerts), total=len(alerts), page=1, pages=1 if alerts else 0, data=alerts
            )

        alerts, total = await stores.alerts.list(filters)

    return AlertListResponse(
        count=len(alerts),
        total=total,
        page=page,
        pages=math.ceil(total / limit) if total else 0,
        data=alerts,
    )


@router.get("/stats", response_model=AlertStats, dependencies=[_can_view])
async def alert_stats(services: Services = Depends(get_services)) -> AlertStats:
    """Alert counts by severity and category."""
    async with services.stores.session() as stores:
        return await stores.alerts.stats()


@router.get("/severity/{severity}", dependencies=[_can_view])
async def active_alerts_by_severity(
    severity: str,
    services: Services = Depends(get_services),
) -> dict:
    """Active alerts of one severity, case insensitive."""
    try:
        level = AlertSeverity(severity.upper())
    except ValueError:
        raise ValidationException(
            f"Invalid severity level. Valid values: {', '.join(s.value for s in AlertSeverity)}",
            field="severity",
        ) from None

    async with services.stores.session() as stores:
        alerts, _ = await stores.alerts.list(
            AlertFilters(severity=level, is_active=True, limit=100)
        )

    return {
        "count": len(alerts),
        "data": [a.model_dump(mode="json") for a in alerts],
    }


@router.post(
    "/check-clusters",
    response_model=ClusterCheckResponse,
    dependencies=[Depends(require_permissions(Permission.ALERT_CHECK))],
)
async def check_clusters(
    data: ClusterCheckRequest,
    services: Services = Depends(get_services),
) -> ClusterCheckResponse:
    """
    Scan around a point for category groups that already reach the alert
    threshold. Read only; no alert is created.
    """
    if data.latitude is None or data.longitude is None:
        raise ValidationException("Please provide latitude and longitude", field="location")
    center = Coordinate(latitude=data.latitude, longitude=data.longitude)

    async with services.stores.session() as stores:
        clusters = await services.detector.scan_area(stores.reports, center, data.category)

    return ClusterCheckResponse(
        count=len(clusters),
        data=[
            AreaClusterResponse(
                category=c.category,
                count=c.count,
                report_ids=[r.id for r in c.reports],
            )
            for c in clusters
        ],
        message=(
            "Potential clusters detected in this area"
            if clusters
            else "No significant clusters detected"
        ),
    )


@router.get("/{alert_id}", response_model=AlertRecord, dependencies=[_can_view])
async def get_alert(
    alert_id: UUID,
    services: Services = Depends(get_services),
) -> AlertRecord:
    async with services.stores.session() as stores:
        alert = await stores.alerts.get(alert_id)
    if alert is None:
        raise ResourceNotFoundException("Alert", str(alert_id))
    return alert


@router.put("/{alert_id}/resolve")
async def resolve(
    alert_id: UUID,
    context: AuthContext = Depends(require_permissions(Permission.ALERT_RESOLVE)),
    services: Services = Depends(get_services),
) -> dict:
    """Resolve an active alert. Police, municipal and admin accounts only."""
    async with services.stores.session() as stores:
        alert = await resolve_alert(stores.alerts, alert_id, resolver_id=context.subject_id)

    return {
        "message": "Alert resolved successfully",
        "data": alert.model_dump(mode="json"),
    }
