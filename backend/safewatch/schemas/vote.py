"""Vote schemas."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from safewatch.models.report import ReportStatus
from safewatch.models.vote import VoteType


class VoteCreate(BaseModel):
    """Request body for casting or changing a vote."""

    report_id: UUID
    vote_type: str = Field(..., description="UP, DOWN or FLAG (case insensitive)")
    reason: Optional[str] = Field(None, max_length=200)
    user_latitude: Optional[float] = Field(None, ge=-90, le=90)
    user_longitude: Optional[float] = Field(None, ge=-180, le=180)


class VoteRecord(BaseModel):
    """A stored vote."""

    id: UUID
    report_id: UUID
    voter_id: str
    vote_type: VoteType
    reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class VerificationSummary(BaseModel):
    """Verification fields of a report after a recount."""

    verification_score: int
    verified: bool
    status: ReportStatus
    up_vote_count: int
    down_vote_count: int
    flag_count: int


class VoteResponse(BaseModel):
    """Response for a cast vote."""

    message: str
    created: bool
    vote: VoteRecord
    report: VerificationSummary


class VoteStats(BaseModel):
    """Read-only vote aggregates for one report."""

    report_id: UUID
    up_votes: int = 0
    down_votes: int = 0
    flags: int = 0
    total_votes: int = 0
    verification_score: int = 0
    verified: bool = False


class UserVotesPage(BaseModel):
    """Paginated list of a voter's votes."""

    total: int
    pages: int
    current_page: int
    votes: List[VoteRecord]
