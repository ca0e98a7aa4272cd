"""Community voting: one vote per voter per report, full recount on every change."""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Union
from uuid import UUID

from safewatch.core.audit import AuditAction, audit_log
from safewatch.core.exceptions import (
    ConflictException,
    ForbiddenException,
    ResourceNotFoundException,
    ValidationException,
    VoterTooFarException,
)
from safewatch.models.report import ReportStatus
from safewatch.models.vote import VoteType
from safewatch.repositories.base import ReportStore, StoreProvider, Stores, VoteConflictError
from safewatch.schemas.common import Coordinate
from safewatch.schemas.report import ReportRecord
from safewatch.schemas.vote import UserVotesPage, VerificationSummary, VoteRecord, VoteStats
from safewatch.services.alert_dispatcher import AlertDispatcher
from safewatch.services.geo import distance_km
from safewatch.services.verification import (
    FLAG_THRESHOLD,
    VERIFICATION_THRESHOLD,
    apply_verification_policy,
)

logger = logging.getLogger(__name__)

MAX_VOTING_DISTANCE_KM = 5.0


def parse_vote_type(value: Union[str, VoteType]) -> VoteType:
    """Accept UP/DOWN/FLAG in any case."""
    if isinstance(value, VoteType):
        return value
    try:
        return VoteType(str(value).strip().upper())
    except ValueError:
        raise ValidationException(
            "Invalid vote type. Must be UP, DOWN, or FLAG", field="vote_type"
        ) from None


def summarize(report: ReportRecord) -> VerificationSummary:
    return VerificationSummary(
        verification_score=report.verification_score,
        verified=report.verified,
        status=report.status,
        up_vote_count=report.up_vote_count,
        down_vote_count=report.down_vote_count,
        flag_count=report.flag_count,
    )


@dataclass
class VoteResult:
    """Outcome of a cast vote."""

    vote: VoteRecord
    report: ReportRecord
    created: bool
    newly_verified: bool = False

    @property
    def summary(self) -> VerificationSummary:
        return summarize(self.report)


class VoteLedger:
    """
    Records votes and keeps each report's verification fields in step with
    the full set of current votes.

    Counts are never incremented: every create, update or delete is
    followed by a recount of the report's votes and a fresh application of
    the verification policy.
    """

    def __init__(
        self,
        stores: StoreProvider,
        dispatcher: Optional[AlertDispatcher] = None,
        max_distance_km: float = MAX_VOTING_DISTANCE_KM,
        verification_threshold: int = VERIFICATION_THRESHOLD,
        flag_threshold: int = FLAG_THRESHOLD,
    ):
        self.stores = stores
        self.dispatcher = dispatcher
        self.max_distance_km = max_distance_km
        self.verification_threshold = verification_threshold
        self.flag_threshold = flag_threshold

    # =========================================================================
    # Mutations
    # =========================================================================

    async def cast_vote(
        self,
        report_id: UUID,
        voter_id: str,
        vote_type: Union[str, VoteType],
        reason: Optional[str] = None,
        voter_location: Optional[Coordinate] = None,
    ) -> VoteResult:
        """
        Create the voter's vote on a report, or replace its type and reason.

        Raises:
            ResourceNotFoundException: report does not exist
            ForbiddenException: voter authored the report
            VoterTooFarException: voter_location is beyond the proximity limit
            ValidationException: unknown vote type
        """
        vote_type = parse_vote_type(vote_type)

        async with self.stores.session() as stores:
            report = await self._require_report(stores.reports, report_id, for_update=True)
            self._check_eligibility(report, voter_id, voter_location)

            vote, created = await self._upsert(stores, report_id, voter_id, vote_type, reason)
            updated = await self._recount(stores, report)

        newly_verified = updated.verified and not report.verified
        audit_log.log_vote(
            AuditAction.VOTE_CAST if created else AuditAction.VOTE_CHANGE,
            voter_id,
            str(report_id),
            details={"vote_type": vote_type.value, "verification_score": updated.verification_score},
        )
        self._audit_transitions(report, updated)

        # Becoming verified can seed or join a cluster
        if newly_verified and self.dispatcher is not None:
            self.dispatcher.dispatch(report_id)

        return VoteResult(vote=vote, report=updated, created=created, newly_verified=newly_verified)

    async def retract_vote(self, report_id: UUID, voter_id: str) -> ReportRecord:
        """Delete the voter's vote and recount. Verification is not sticky."""
        async with self.stores.session() as stores:
            report = await self._require_report(stores.reports, report_id, for_update=True)

            removed = await stores.votes.delete(report_id, voter_id)
            if removed is None:
                raise ResourceNotFoundException("Vote", f"{report_id}/{voter_id}")

            updated = await self._recount(stores, report)

        audit_log.log_vote(
            AuditAction.VOTE_RETRACT,
            voter_id,
            str(report_id),
            details={"vote_type": removed.vote_type.value, "verification_score": updated.verification_score},
        )
        self._audit_transitions(report, updated)
        return updated

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_stats(self, report_id: UUID) -> VoteStats:
        """Read-only vote aggregates, counted from the ledger."""
        async with self.stores.session() as stores:
            report = await self._require_report(stores.reports, report_id)
            counts = await stores.votes.tally(report_id)

        return VoteStats(
            report_id=report_id,
            up_votes=counts.up,
            down_votes=counts.down,
            flags=counts.flags,
            total_votes=counts.total,
            verification_score=counts.up - counts.down,
            verified=report.verified,
        )

    async def get_user_vote(self, report_id: UUID, voter_id: str) -> Optional[VoteRecord]:
        async with self.stores.session() as stores:
            return await stores.votes.get(report_id, voter_id)

    async def list_user_votes(self, voter_id: str, page: int = 1, limit: int = 20) -> UserVotesPage:
        async with self.stores.session() as stores:
            votes, total = await stores.votes.list_for_voter(
                voter_id, offset=(page - 1) * limit, limit=limit
            )
        return UserVotesPage(
            total=total,
            pages=math.ceil(total / limit) if total else 0,
            current_page=page,
            votes=votes,
        )

    async def top_voted_reports(self, min_votes: int = 5, limit: int = 20) -> List[ReportRecord]:
        async with self.stores.session() as stores:
            return await stores.reports.list_top_voted(min_votes=min_votes, limit=limit)

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    async def _require_report(
        reports: ReportStore, report_id: UUID, for_update: bool = False
    ) -> ReportRecord:
        # Mutations hold the report row lock across the upsert and the recount
        if for_update:
            report = await reports.get_for_update(report_id)
        else:
            report = await reports.get(report_id)
        if report is None:
            raise ResourceNotFoundException("Report", str(report_id))
        return report

    def _check_eligibility(
        self,
        report: ReportRecord,
        voter_id: str,
        voter_location: Optional[Coordinate],
    ) -> None:
        if report.author_id == voter_id:
            raise ForbiddenException("You cannot vote on your own report", error_code="SELF_VOTE")

        if voter_location is not None:
            distance = distance_km(
                voter_location.latitude, voter_location.longitude,
                report.latitude, report.longitude,
            )
            if distance > self.max_distance_km:
                logger.info(
                    f"Rejected vote on {report.id}: voter {voter_id} is {distance:.2f}km away"
                )
                raise VoterTooFarException(distance, self.max_distance_km)

    async def _upsert(
        self,
        stores: Stores,
        report_id: UUID,
        voter_id: str,
        vote_type: VoteType,
        reason: Optional[str],
    ):
        existing = await stores.votes.get(report_id, voter_id)
        if existing is not None:
            return await stores.votes.update(existing.id, vote_type, reason), False

        try:
            return await stores.votes.create(report_id, voter_id, vote_type, reason), True
        except VoteConflictError:
            # A concurrent request created the vote first; treat ours as a revote
            existing = await stores.votes.get(report_id, voter_id)
            if existing is None:
                raise ConflictException("You have already voted on this report") from None
            return await stores.votes.update(existing.id, vote_type, reason), False

    async def _recount(self, stores: Stores, report: ReportRecord) -> ReportRecord:
        counts = await stores.votes.tally(report.id)
        outcome = apply_verification_policy(
            counts,
            currently_verified=report.verified,
            current_status=report.status,
            verification_threshold=self.verification_threshold,
            flag_threshold=self.flag_threshold,
        )
        updated = await stores.reports.update_verification(report.id, counts, outcome)
        if updated is None:
            raise ResourceNotFoundException("Report", str(report.id))
        return updated

    @staticmethod
    def _audit_transitions(before: ReportRecord, after: ReportRecord) -> None:
        details = {"verification_score": after.verification_score}
        if after.verified and not before.verified:
            audit_log.log_report_transition(AuditAction.REPORT_VERIFIED, str(after.id), details)
        elif before.verified and not after.verified:
            audit_log.log_report_transition(AuditAction.REPORT_UNVERIFIED, str(after.id), details)

        if after.status == ReportStatus.UNDER_REVIEW and before.status != ReportStatus.UNDER_REVIEW:
            audit_log.log_report_transition(
                AuditAction.REPORT_UNDER_REVIEW, str(after.id), {"flags": after.flag_count}
            )
