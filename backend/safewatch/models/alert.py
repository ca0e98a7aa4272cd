"""Area-level alert database model."""

import enum
from datetime import datetime
from typing import Optional

from geoalchemy2 import Geometry
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from safewatch.models.base import Base, utcnow
from safewatch.models.report import Category


class AlertSeverity(str, enum.Enum):
    """Severity levels for alerts, lowest first."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


SEVERITY_ORDER = [
    AlertSeverity.LOW,
    AlertSeverity.MEDIUM,
    AlertSeverity.HIGH,
    AlertSeverity.CRITICAL,
]


# Composite primary key keeps membership a set
alert_reports = Table(
    "alert_reports",
    Base.metadata,
    Column(
        "alert_id",
        UUID(as_uuid=True),
        ForeignKey("alerts.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "report_id",
        UUID(as_uuid=True),
        ForeignKey("reports.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("added_at", DateTime(timezone=True), default=utcnow, nullable=False),
)


class Alert(Base):
    """Alert synthesized from a cluster of related reports."""

    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alerts_center", "center", postgresql_using="gist"),
        Index("ix_alerts_active_created", "is_active", "created_at"),
        Index("ix_alerts_category_severity", "category", "severity"),
    )

    message: Mapped[str] = mapped_column(String(500), nullable=False)

    # Area
    area_name: Mapped[str] = mapped_column(String(500), nullable=False)
    center: Mapped[str] = mapped_column(
        Geometry(geometry_type="POINT", srid=4326, spatial_index=False),
        nullable=False,
    )
    radius_meters: Mapped[int] = mapped_column(Integer, default=1000, nullable=False)
    affected_area: Mapped[Optional[str]] = mapped_column(String(600), nullable=True)

    # Classification
    severity: Mapped[AlertSeverity] = mapped_column(
        Enum(AlertSeverity),
        default=AlertSeverity.LOW,
        nullable=False,
    )
    category: Mapped[Category] = mapped_column(Enum(Category), nullable=False)
    report_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Detection parameters in force at creation
    threshold: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    time_window_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolved_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
