"""Report schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from safewatch.models.report import Category, Priority, ReportStatus, URGENT_PRIORITIES
from safewatch.schemas.common import Coordinate


class ReportCreate(BaseModel):
    """Schema for submitting a report."""

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    category: Category
    priority: Priority = Priority.MEDIUM
    location: Coordinate
    address: Optional[str] = Field(None, max_length=500)


class ReportRecord(BaseModel):
    """A stored report as seen by the verification and alerting services."""

    id: UUID
    title: str
    description: Optional[str] = None
    category: Category
    priority: Priority = Priority.MEDIUM
    status: ReportStatus = ReportStatus.PENDING
    location: Coordinate
    address: Optional[str] = None
    author_id: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    up_vote_count: int = Field(default=0, ge=0)
    down_vote_count: int = Field(default=0, ge=0)
    flag_count: int = Field(default=0, ge=0)
    verification_score: int = 0
    verified: bool = False

    @property
    def latitude(self) -> float:
        return self.location.latitude

    @property
    def longitude(self) -> float:
        return self.location.longitude

    @property
    def total_votes(self) -> int:
        return self.up_vote_count + self.down_vote_count + self.flag_count

    def qualifies_for_clustering(self) -> bool:
        """Verified or urgent reports may seed or join a cluster."""
        return self.verified or self.priority in URGENT_PRIORITIES


class ReportResponse(BaseModel):
    """Schema for report responses."""

    id: UUID
    title: str
    description: Optional[str] = None
    category: Category
    priority: Priority
    status: ReportStatus
    location: Coordinate
    address: Optional[str] = None
    author_id: str
    created_at: datetime
    up_vote_count: int
    down_vote_count: int
    flag_count: int
    verification_score: int
    verified: bool

    @classmethod
    def from_record(cls, report: ReportRecord) -> "ReportResponse":
        return cls(**report.model_dump(exclude={"updated_at"}))


class TopVotedReport(BaseModel):
    """Compact report entry for the top-voted listing."""

    id: UUID
    title: str
    category: Category
    verification_score: int
    up_vote_count: int
    down_vote_count: int
    flag_count: int
    verified: bool
    location: Coordinate
