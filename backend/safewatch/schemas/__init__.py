# Pydantic schemas
from safewatch.schemas.common import Coordinate, coordinate_or_none
from safewatch.schemas.report import ReportCreate, ReportRecord, ReportResponse, TopVotedReport
from safewatch.schemas.vote import (
    VoteCreate,
    VoteRecord,
    VoteResponse,
    VoteStats,
    VerificationSummary,
    UserVotesPage,
)
from safewatch.schemas.alert import (
    AlertRecord,
    AlertDraft,
    AlertFilters,
    AlertListResponse,
    AlertStats,
    ClusterCheckRequest,
    ClusterCheckResponse,
)

__all__ = [
    "Coordinate",
    "coordinate_or_none",
    "ReportCreate",
    "ReportRecord",
    "ReportResponse",
    "TopVotedReport",
    "VoteCreate",
    "VoteRecord",
    "VoteResponse",
    "VoteStats",
    "VerificationSummary",
    "UserVotesPage",
    "AlertRecord",
    "AlertDraft",
    "AlertFilters",
    "AlertListResponse",
    "AlertStats",
    "ClusterCheckRequest",
    "ClusterCheckResponse",
]
