"""Incident report database model."""

import enum
from typing import Optional

from geoalchemy2 import Geometry
from sqlalchemy import Boolean, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from safewatch.models.base import Base


class Category(str, enum.Enum):
    """Incident categories citizens can report."""

    CRIME = "CRIME"
    MISSING = "MISSING"
    DOG = "DOG"
    HAZARD = "HAZARD"
    NATURAL_DISASTER = "NATURAL_DISASTER"


class Priority(str, enum.Enum):
    """Report priority."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ReportStatus(str, enum.Enum):
    """Workflow status of a report."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    UNDER_REVIEW = "UNDER_REVIEW"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


# Priorities that let an unverified report seed or join a cluster
URGENT_PRIORITIES = (Priority.HIGH, Priority.CRITICAL)


class Report(Base):
    """Citizen-submitted incident report."""

    __tablename__ = "reports"
    __table_args__ = (
        Index("ix_reports_location", "location", postgresql_using="gist"),
        Index("ix_reports_category_created", "category", "created_at"),
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Classification
    category: Mapped[Category] = mapped_column(Enum(Category), nullable=False)
    priority: Mapped[Priority] = mapped_column(
        Enum(Priority),
        default=Priority.MEDIUM,
        nullable=False,
    )
    status: Mapped[ReportStatus] = mapped_column(
        Enum(ReportStatus),
        default=ReportStatus.PENDING,
        nullable=False,
    )

    # Location
    location: Mapped[str] = mapped_column(
        Geometry(geometry_type="POINT", srid=4326, spatial_index=False),
        nullable=False,
    )
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    author_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Verification, owned by the vote ledger
    up_vote_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    down_vote_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    flag_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    verification_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
