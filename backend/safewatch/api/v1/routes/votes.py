"""Community voting endpoints."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from safewatch.api.deps import get_vote_ledger
from safewatch.core.rbac import AuthContext, Permission, require_permissions
from safewatch.schemas.common import coordinate_or_none
from safewatch.schemas.report import TopVotedReport
from safewatch.schemas.vote import UserVotesPage, VoteCreate, VoteResponse, VoteStats
from safewatch.services.vote_ledger import VoteLedger, summarize

router = APIRouter()

_can_view = Depends(require_permissions(Permission.VOTE_VIEW))


@router.post("", response_model=VoteResponse)
async def cast_vote(
    data: VoteCreate,
    response: Response,
    context: AuthContext = Depends(require_permissions(Permission.VOTE_CAST)),
    ledger: VoteLedger = Depends(get_vote_ledger),
) -> VoteResponse:
    """
    Cast or change a vote on a report.

    A voter holds at most one vote per report; voting again replaces the
    earlier vote type. When the voter's position is supplied it must lie
    within the proximity limit of the incident.
    """
    result = await ledger.cast_vote(
        report_id=data.report_id,
        voter_id=context.subject_id,
        vote_type=data.vote_type,
        reason=data.reason,
        voter_location=coordinate_or_none(data.user_latitude, data.user_longitude),
    )

    if result.created:
        response.status_code = status.HTTP_201_CREATED

    return VoteResponse(
        message="Vote recorded successfully" if result.created else "Vote updated successfully",
        created=result.created,
        vote=result.vote,
        report=result.summary,
    )


@router.get("/me", response_model=UserVotesPage)
async def get_my_votes(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    context: AuthContext = Depends(require_permissions(Permission.VOTE_CAST)),
    ledger: VoteLedger = Depends(get_vote_ledger),
) -> UserVotesPage:
    """List the caller's votes, newest first."""
    return await ledger.list_user_votes(context.subject_id, page=page, limit=limit)


@router.get("/top", response_model=List[TopVotedReport], dependencies=[_can_view])
async def get_top_voted_reports(
    min_votes: int = Query(5, ge=0),
    limit: int = Query(20, ge=1, le=100),
    ledger: VoteLedger = Depends(get_vote_ledger),
) -> List[TopVotedReport]:
    """Reports with at least ``min_votes`` votes, highest score first."""
    reports = await ledger.top_voted_reports(min_votes=min_votes, limit=limit)
    return [TopVotedReport(**r.model_dump()) for r in reports]


@router.get("/report/{report_id}", response_model=VoteStats, dependencies=[_can_view])
async def get_vote_stats(
    report_id: UUID,
    ledger: VoteLedger = Depends(get_vote_ledger),
) -> VoteStats:
    """Vote counts for a report."""
    return await ledger.get_stats(report_id)


@router.get("/report/{report_id}/me")
async def get_my_vote(
    report_id: UUID,
    context: AuthContext = Depends(require_permissions(Permission.VOTE_CAST)),
    ledger: VoteLedger = Depends(get_vote_ledger),
) -> dict:
    """The caller's vote on a report, if any."""
    vote = await ledger.get_user_vote(report_id, context.subject_id)
    return {
        "has_voted": vote is not None,
        "vote": vote.model_dump(mode="json") if vote else None,
    }


@router.delete("/{report_id}")
async def retract_vote(
    report_id: UUID,
    context: AuthContext = Depends(require_permissions(Permission.VOTE_CAST)),
    ledger: VoteLedger = Depends(get_vote_ledger),
) -> dict:
    """Remove the caller's vote and recount the report."""
    report = await ledger.retract_vote(report_id, context.subject_id)
    return {
        "message": "Vote removed successfully",
        "report": summarize(report).model_dump(mode="json"),
    }
