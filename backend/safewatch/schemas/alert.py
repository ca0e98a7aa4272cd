"""Alert schemas."""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, computed_field

from safewatch.models.alert import AlertSeverity
from safewatch.models.report import Category
from safewatch.schemas.common import Coordinate


class AlertRecord(BaseModel):
    """A stored alert.

    ``report_count`` is derived from ``report_ids`` so the two can never
    disagree; stores keep ``report_ids`` free of duplicates.
    """

    id: UUID
    message: str
    area_name: str
    center: Coordinate
    radius_meters: int
    affected_area: Optional[str] = None
    severity: AlertSeverity
    category: Category
    report_ids: List[UUID] = Field(default_factory=list)
    threshold: int
    time_window_hours: int
    is_active: bool = True
    created_at: datetime
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @computed_field
    @property
    def report_count(self) -> int:
        return len(self.report_ids)


class AlertDraft(BaseModel):
    """Fields for a new alert, before the store assigns identity."""

    message: str = Field(..., max_length=500)
    area_name: str
    center: Coordinate
    radius_meters: int
    affected_area: Optional[str] = None
    severity: AlertSeverity
    category: Category
    report_ids: List[UUID]
    threshold: int
    time_window_hours: int


class AlertFilters(BaseModel):
    """Filters for listing alerts."""

    severity: Optional[AlertSeverity] = None
    category: Optional[Category] = None
    is_active: Optional[bool] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class AlertListResponse(BaseModel):
    """Paginated alert listing."""

    count: int
    total: int
    page: int
    pages: int
    data: List[AlertRecord]


class GroupCount(BaseModel):
    """Alert count for one severity or category."""

    count: int = 0
    active: int = 0


class AlertStats(BaseModel):
    """Aggregate alert statistics."""

    by_severity: Dict[str, GroupCount] = Field(default_factory=dict)
    by_category: Dict[str, GroupCount] = Field(default_factory=dict)
    total: int = 0
    active: int = 0
    resolved: int = 0
    avg_report_count: float = 0.0


class ClusterCheckRequest(BaseModel):
    """Request body for scanning an area for potential clusters."""

    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    category: Optional[Category] = None


class AreaClusterResponse(BaseModel):
    """A category group found by an area scan."""

    category: Category
    count: int
    report_ids: List[UUID]


class ClusterCheckResponse(BaseModel):
    """Result of an area scan."""

    count: int
    data: List[AreaClusterResponse]
    message: str
