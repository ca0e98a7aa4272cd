"""In-process storage backend for local development and tests.

Enforces the same constraints as the PostGIS schema: one vote per
(report, voter) pair and set membership for alert reports. Proximity
queries use the haversine distance instead of ST_DWithin.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from safewatch.core.exceptions import ResourceNotFoundException
from safewatch.models.alert import AlertSeverity
from safewatch.models.report import Category
from safewatch.models.vote import VoteType
from safewatch.repositories.base import Stores, VoteConflictError
from safewatch.schemas.alert import (
    AlertDraft,
    AlertFilters,
    AlertRecord,
    AlertStats,
    GroupCount,
)
from safewatch.schemas.common import Coordinate
from safewatch.schemas.report import ReportCreate, ReportRecord
from safewatch.schemas.vote import VoteRecord
from safewatch.services.geo import distance_meters
from safewatch.services.verification import VerificationOutcome, VoteCounts


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _within(a: Coordinate, b: Coordinate, radius_meters: float) -> bool:
    return distance_meters(a.latitude, a.longitude, b.latitude, b.longitude) <= radius_meters


class MemoryStorage:
    """Shared state behind the in-memory stores."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or _utcnow
        self.reports: Dict[UUID, ReportRecord] = {}
        self.votes: Dict[Tuple[UUID, str], VoteRecord] = {}
        self.alerts: Dict[UUID, AlertRecord] = {}

    def add_report(self, report: ReportRecord) -> ReportRecord:
        """Seed a report as-is, keeping its timestamps."""
        self.reports[report.id] = report
        return report

    def clear(self) -> None:
        self.reports.clear()
        self.votes.clear()
        self.alerts.clear()


class MemoryReportStore:
    def __init__(self, storage: MemoryStorage):
        self._storage = storage

    async def get(self, report_id: UUID) -> Optional[ReportRecord]:
        return self._storage.reports.get(report_id)

    async def get_for_update(self, report_id: UUID) -> Optional[ReportRecord]:
        return self._storage.reports.get(report_id)

    async def create(self, data: ReportCreate, author_id: str) -> ReportRecord:
        now = self._storage.clock()
        report = ReportRecord(
            id=uuid.uuid4(),
            title=data.title,
            description=data.description,
            category=data.category,
            priority=data.priority,
            location=data.location,
            address=data.address,
            author_id=author_id,
            created_at=now,
            updated_at=now,
        )
        self._storage.reports[report.id] = report
        return report

    async def update_verification(
        self,
        report_id: UUID,
        counts: VoteCounts,
        outcome: VerificationOutcome,
    ) -> Optional[ReportRecord]:
        report = self._storage.reports.get(report_id)
        if report is None:
            return None

        updated = report.model_copy(update={
            "up_vote_count": counts.up,
            "down_vote_count": counts.down,
            "flag_count": counts.flags,
            "verification_score": outcome.verification_score,
            "verified": outcome.verified,
            "status": outcome.status,
            "updated_at": self._storage.clock(),
        })
        self._storage.reports[report_id] = updated
        return updated

    async def find_cluster_candidates(
        self,
        category: Category,
        center: Coordinate,
        radius_meters: float,
        since: datetime,
        exclude_id: UUID,
    ) -> List[ReportRecord]:
        return [
            report
            for report in await self.find_qualifying_near(center, radius_meters, since, category)
            if report.id != exclude_id
        ]

    async def find_qualifying_near(
        self,
        center: Coordinate,
        radius_meters: float,
        since: datetime,
        category: Optional[Category] = None,
    ) -> List[ReportRecord]:
        matches = []
        for report in self._storage.reports.values():
            if category is not None and report.category != category:
                continue
            if report.created_at < since:
                continue
            if not report.qualifies_for_clustering():
                continue
            if not _within(report.location, center, radius_meters):
                continue
            matches.append(report)

        matches.sort(key=lambda r: distance_meters(
            center.latitude, center.longitude, r.latitude, r.longitude
        ))
        return matches

    async def list_top_voted(self, min_votes: int, limit: int) -> List[ReportRecord]:
        candidates = [r for r in self._storage.reports.values() if r.total_votes >= min_votes]
        candidates.sort(key=lambda r: (r.verification_score, r.up_vote_count), reverse=True)
        return candidates[:limit]


class MemoryVoteStore:
    def __init__(self, storage: MemoryStorage):
        self._storage = storage

    async def get(self, report_id: UUID, voter_id: str) -> Optional[VoteRecord]:
        return self._storage.votes.get((report_id, voter_id))

    async def create(
        self,
        report_id: UUID,
        voter_id: str,
        vote_type: VoteType,
        reason: Optional[str],
    ) -> VoteRecord:
        key = (report_id, voter_id)
        if key in self._storage.votes:
            raise VoteConflictError(report_id, voter_id)

        now = self._storage.clock()
        vote = VoteRecord(
            id=uuid.uuid4(),
            report_id=report_id,
            voter_id=voter_id,
            vote_type=vote_type,
            reason=reason,
            created_at=now,
            updated_at=now,
        )
        self._storage.votes[key] = vote
        return vote

    async def update(
        self,
        vote_id: UUID,
        vote_type: VoteType,
        reason: Optional[str],
    ) -> VoteRecord:
        for key, vote in self._storage.votes.items():
            if vote.id == vote_id:
                updated = vote.model_copy(update={
                    "vote_type": vote_type,
                    "reason": reason,
                    "updated_at": self._storage.clock(),
                })
                self._storage.votes[key] = updated
                return updated
        raise ResourceNotFoundException("Vote", str(vote_id))

    async def delete(self, report_id: UUID, voter_id: str) -> Optional[VoteRecord]:
        return self._storage.votes.pop((report_id, voter_id), None)

    async def tally(self, report_id: UUID) -> VoteCounts:
        return VoteCounts.from_vote_types(
            vote.vote_type
            for (vote_report_id, _), vote in self._storage.votes.items()
            if vote_report_id == report_id
        )

    async def list_for_voter(
        self, voter_id: str, offset: int, limit: int
    ) -> Tuple[List[VoteRecord], int]:
        votes = [v for v in self._storage.votes.values() if v.voter_id == voter_id]
        votes.sort(key=lambda v: v.created_at, reverse=True)
        return votes[offset:offset + limit], len(votes)


class MemoryAlertStore:
    def __init__(self, storage: MemoryStorage):
        self._storage = storage

    async def lock_category(self, category: Category) -> None:
        # Single process; the synthesizer's asyncio lock is sufficient
        return None

    async def find_active_near(
        self,
        category: Category,
        center: Coordinate,
        radius_meters: float,
        since: datetime,
    ) -> Optional[AlertRecord]:
        candidates = [
            alert
            for alert in self._storage.alerts.values()
            if alert.is_active
            and alert.category == category
            and alert.created_at >= since
            and _within(alert.center, center, radius_meters)
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda a: distance_meters(
            center.latitude, center.longitude, a.center.latitude, a.center.longitude
        ))

    async def create(self, draft: AlertDraft) -> AlertRecord:
        now = self._storage.clock()
        report_ids = list(dict.fromkeys(draft.report_ids))
        alert = AlertRecord(
            id=uuid.uuid4(),
            created_at=now,
            updated_at=now,
            **draft.model_dump(exclude={"report_ids"}),
            report_ids=report_ids,
        )
        self._storage.alerts[alert.id] = alert
        return alert

    def _require(self, alert_id: UUID) -> AlertRecord:
        alert = self._storage.alerts.get(alert_id)
        if alert is None:
            raise ResourceNotFoundException("Alert", str(alert_id))
        return alert

    def _save(self, alert: AlertRecord, **changes) -> AlertRecord:
        changes["updated_at"] = self._storage.clock()
        updated = alert.model_copy(update=changes)
        self._storage.alerts[alert.id] = updated
        return updated

    async def add_member(self, alert_id: UUID, report_id: UUID) -> AlertRecord:
        alert = self._require(alert_id)
        if report_id in alert.report_ids:
            return alert
        return self._save(alert, report_ids=[*alert.report_ids, report_id])

    async def update_severity(
        self, alert_id: UUID, severity: AlertSeverity, message: str
    ) -> AlertRecord:
        return self._save(self._require(alert_id), severity=severity, message=message)

    async def resolve(
        self, alert_id: UUID, resolver_id: str, resolved_at: datetime
    ) -> Optional[AlertRecord]:
        alert = self._require(alert_id)
        if not alert.is_active:
            return None
        return self._save(
            alert,
            is_active=False,
            resolved_at=resolved_at,
            resolved_by=resolver_id,
        )

    async def get(self, alert_id: UUID) -> Optional[AlertRecord]:
        return self._storage.alerts.get(alert_id)

    def _matching(self, filters: AlertFilters) -> List[AlertRecord]:
        alerts = [
            alert
            for alert in self._storage.alerts.values()
            if (filters.severity is None or alert.severity == filters.severity)
            and (filters.category is None or alert.category == filters.category)
            and (filters.is_active is None or alert.is_active == filters.is_active)
        ]
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        return alerts

    async def list(self, filters: AlertFilters) -> Tuple[List[AlertRecord], int]:
        alerts = self._matching(filters)
        offset = (filters.page - 1) * filters.limit
        return alerts[offset:offset + filters.limit], len(alerts)

    async def list_near(
        self,
        center: Coordinate,
        radius_meters: float,
        filters: AlertFilters,
    ) -> List[AlertRecord]:
        return [
            alert
            for alert in self._matching(filters)
            if _within(alert.center, center, radius_meters)
        ]

    async def stats(self) -> AlertStats:
        stats = AlertStats()
        alerts = list(self._storage.alerts.values())
        for alert in alerts:
            for groups, key in (
                (stats.by_severity, alert.severity.value),
                (stats.by_category, alert.category.value),
            ):
                group = groups.setdefault(key, GroupCount())
                group.count += 1
                if alert.is_active:
                    group.active += 1

        stats.total = len(alerts)
        stats.active = sum(1 for a in alerts if a.is_active)
        stats.resolved = stats.total - stats.active
        if alerts:
            stats.avg_report_count = sum(a.report_count for a in alerts) / len(alerts)
        return stats


class MemoryStoreProvider:
    """Hands out stores over one shared MemoryStorage."""

    def __init__(self, storage: Optional[MemoryStorage] = None):
        self.storage = storage or MemoryStorage()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Stores]:
        yield Stores(
            reports=MemoryReportStore(self.storage),
            votes=MemoryVoteStore(self.storage),
            alerts=MemoryAlertStore(self.storage),
        )

    async def ping(self) -> None:
        return None
