"""Storage interfaces consumed by the verification and alerting services.

Each store is bound to one unit of work (a database session for the SQL
backend). ``StoreProvider.session()`` opens a unit of work and yields the
three stores together; it commits on success and rolls back on error.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import AsyncContextManager, List, Optional, Protocol, Tuple
from uuid import UUID

from safewatch.models.alert import AlertSeverity
from safewatch.models.report import Category
from safewatch.models.vote import VoteType
from safewatch.schemas.alert import AlertDraft, AlertFilters, AlertRecord, AlertStats
from safewatch.schemas.common import Coordinate
from safewatch.schemas.report import ReportCreate, ReportRecord
from safewatch.schemas.vote import VoteRecord
from safewatch.services.verification import VerificationOutcome, VoteCounts


class VoteConflictError(Exception):
    """A vote for the (report, voter) pair already exists."""

    def __init__(self, report_id: UUID, voter_id: str):
        self.report_id = report_id
        self.voter_id = voter_id
        super().__init__(f"Vote already exists for report {report_id} and voter {voter_id}")


class ReportStore(Protocol):
    async def get(self, report_id: UUID) -> Optional[ReportRecord]: ...

    async def get_for_update(self, report_id: UUID) -> Optional[ReportRecord]:
        """Read the report and hold its row lock until the unit of work ends."""
        ...

    async def create(self, data: ReportCreate, author_id: str) -> ReportRecord: ...

    async def update_verification(
        self,
        report_id: UUID,
        counts: VoteCounts,
        outcome: VerificationOutcome,
    ) -> Optional[ReportRecord]: ...

    async def find_cluster_candidates(
        self,
        category: Category,
        center: Coordinate,
        radius_meters: float,
        since: datetime,
        exclude_id: UUID,
    ) -> List[ReportRecord]:
        """Same-category reports near ``center`` created since ``since`` that
        are verified or urgent, excluding ``exclude_id``."""
        ...

    async def find_qualifying_near(
        self,
        center: Coordinate,
        radius_meters: float,
        since: datetime,
        category: Optional[Category] = None,
    ) -> List[ReportRecord]: ...

    async def list_top_voted(self, min_votes: int, limit: int) -> List[ReportRecord]: ...


class VoteStore(Protocol):
    async def get(self, report_id: UUID, voter_id: str) -> Optional[VoteRecord]: ...

    async def create(
        self,
        report_id: UUID,
        voter_id: str,
        vote_type: VoteType,
        reason: Optional[str],
    ) -> VoteRecord:
        """Insert a vote; raises VoteConflictError if the pair already voted."""
        ...

    async def update(
        self,
        vote_id: UUID,
        vote_type: VoteType,
        reason: Optional[str],
    ) -> VoteRecord: ...

    async def delete(self, report_id: UUID, voter_id: str) -> Optional[VoteRecord]: ...

    async def tally(self, report_id: UUID) -> VoteCounts:
        """Count every current vote on the report."""
        ...

    async def list_for_voter(
        self, voter_id: str, offset: int, limit: int
    ) -> Tuple[List[VoteRecord], int]: ...


class AlertStore(Protocol):
    async def lock_category(self, category: Category) -> None:
        """Serialize alert synthesis for a category within this unit of work."""
        ...

    async def find_active_near(
        self,
        category: Category,
        center: Coordinate,
        radius_meters: float,
        since: datetime,
    ) -> Optional[AlertRecord]: ...

    async def create(self, draft: AlertDraft) -> AlertRecord: ...

    async def add_member(self, alert_id: UUID, report_id: UUID) -> AlertRecord: ...

    async def update_severity(
        self, alert_id: UUID, severity: AlertSeverity, message: str
    ) -> AlertRecord: ...

    async def resolve(
        self, alert_id: UUID, resolver_id: str, resolved_at: datetime
    ) -> Optional[AlertRecord]:
        """Deactivate the alert only if it is still active; None otherwise."""
        ...

    async def get(self, alert_id: UUID) -> Optional[AlertRecord]: ...

    async def list(self, filters: AlertFilters) -> Tuple[List[AlertRecord], int]: ...

    async def list_near(
        self,
        center: Coordinate,
        radius_meters: float,
        filters: AlertFilters,
    ) -> List[AlertRecord]: ...

    async def stats(self) -> AlertStats: ...


@dataclass
class Stores:
    """The stores of one unit of work."""

    reports: ReportStore
    votes: VoteStore
    alerts: AlertStore


class StoreProvider(Protocol):
    def session(self) -> AsyncContextManager[Stores]: ...

    async def ping(self) -> None:
        """Raise if the backing store is unreachable."""
        ...
