"""PostGIS-backed stores over an async SQLAlchemy session."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional, Tuple
from uuid import UUID

from geoalchemy2 import Geography
from geoalchemy2.functions import ST_Distance, ST_DWithin, ST_MakePoint, ST_SetSRID
from geoalchemy2.shape import from_shape, to_shape
from shapely.geometry import Point
from sqlalchemy import and_, case, cast, delete, func, select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from safewatch.core.exceptions import ResourceNotFoundException, ServiceUnavailableException
from safewatch.models.alert import Alert, AlertSeverity, alert_reports
from safewatch.models.base import utcnow
from safewatch.models.report import Category, Report, URGENT_PRIORITIES
from safewatch.models.vote import Vote, VoteType
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
from safewatch.services.verification import VerificationOutcome, VoteCounts

logger = logging.getLogger(__name__)


# =============================================================================
# Geometry helpers
# =============================================================================

def _point(center: Coordinate):
    return ST_SetSRID(ST_MakePoint(center.longitude, center.latitude), 4326)


def _geography(column):
    return cast(column, Geography(srid=4326))


def _within(column, center: Coordinate, radius_meters: float):
    return ST_DWithin(_geography(column), _geography(_point(center)), radius_meters)


def _distance(column, center: Coordinate):
    return ST_Distance(_geography(column), _geography(_point(center)))


def _to_coordinate(geometry) -> Coordinate:
    shape = to_shape(geometry)
    return Coordinate(latitude=shape.y, longitude=shape.x)


def _from_coordinate(coordinate: Coordinate):
    return from_shape(Point(coordinate.longitude, coordinate.latitude), srid=4326)


def _report_record(report: Report) -> ReportRecord:
    return ReportRecord(
        id=report.id,
        title=report.title,
        description=report.description,
        category=report.category,
        priority=report.priority,
        status=report.status,
        location=_to_coordinate(report.location),
        address=report.address,
        author_id=report.author_id,
        created_at=report.created_at,
        updated_at=report.updated_at,
        up_vote_count=report.up_vote_count,
        down_vote_count=report.down_vote_count,
        flag_count=report.flag_count,
        verification_score=report.verification_score,
        verified=report.verified,
    )


def _vote_record(vote: Vote) -> VoteRecord:
    return VoteRecord(
        id=vote.id,
        report_id=vote.report_id,
        voter_id=vote.voter_id,
        vote_type=vote.vote_type,
        reason=vote.reason,
        created_at=vote.created_at,
        updated_at=vote.updated_at,
    )


# =============================================================================
# Reports
# =============================================================================

class SqlReportStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, report_id: UUID) -> Optional[ReportRecord]:
        report = await self.session.get(Report, report_id)
        return _report_record(report) if report else None

    async def get_for_update(self, report_id: UUID) -> Optional[ReportRecord]:
        # Concurrent voters on one report queue here; each tally sees the
        # previous voter's committed row
        report = await self.session.get(
            Report, report_id, with_for_update=True, populate_existing=True
        )
        return _report_record(report) if report else None

    async def create(self, data: ReportCreate, author_id: str) -> ReportRecord:
        report = Report(
            title=data.title,
            description=data.description,
            category=data.category,
            priority=data.priority,
            location=_from_coordinate(data.location),
            address=data.address,
            author_id=author_id,
        )
        self.session.add(report)
        await self.session.flush()
        await self.session.refresh(report)
        return _report_record(report)

    async def update_verification(
        self,
        report_id: UUID,
        counts: VoteCounts,
        outcome: VerificationOutcome,
    ) -> Optional[ReportRecord]:
        report = await self.session.get(Report, report_id, with_for_update=True)
        if report is None:
            return None

        report.up_vote_count = counts.up
        report.down_vote_count = counts.down
        report.flag_count = counts.flags
        report.verification_score = outcome.verification_score
        report.verified = outcome.verified
        report.status = outcome.status
        await self.session.flush()
        await self.session.refresh(report)
        return _report_record(report)

    def _qualifying_query(
        self,
        center: Coordinate,
        radius_meters: float,
        since: datetime,
    ):
        return (
            select(Report)
            .where(
                and_(
                    Report.created_at >= since,
                    (Report.verified == True) | Report.priority.in_(URGENT_PRIORITIES),
                    _within(Report.location, center, radius_meters),
                )
            )
            .order_by(_distance(Report.location, center))
        )

    async def find_cluster_candidates(
        self,
        category: Category,
        center: Coordinate,
        radius_meters: float,
        since: datetime,
        exclude_id: UUID,
    ) -> List[ReportRecord]:
        query = self._qualifying_query(center, radius_meters, since).where(
            Report.category == category,
            Report.id != exclude_id,
        )
        result = await self.session.execute(query)
        return [_report_record(r) for r in result.scalars().all()]

    async def find_qualifying_near(
        self,
        center: Coordinate,
        radius_meters: float,
        since: datetime,
        category: Optional[Category] = None,
    ) -> List[ReportRecord]:
        query = self._qualifying_query(center, radius_meters, since)
        if category is not None:
            query = query.where(Report.category == category)
        result = await self.session.execute(query)
        return [_report_record(r) for r in result.scalars().all()]

    async def list_top_voted(self, min_votes: int, limit: int) -> List[ReportRecord]:
        total = Report.up_vote_count + Report.down_vote_count + Report.flag_count
        query = (
            select(Report)
            .where(total >= min_votes)
            .order_by(Report.verification_score.desc(), Report.up_vote_count.desc())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [_report_record(r) for r in result.scalars().all()]


# =============================================================================
# Votes
# =============================================================================

class SqlVoteStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, report_id: UUID, voter_id: str) -> Optional[VoteRecord]:
        result = await self.session.execute(
            select(Vote).where(Vote.report_id == report_id, Vote.voter_id == voter_id)
        )
        vote = result.scalar_one_or_none()
        return _vote_record(vote) if vote else None

    async def create(
        self,
        report_id: UUID,
        voter_id: str,
        vote_type: VoteType,
        reason: Optional[str],
    ) -> VoteRecord:
        vote = Vote(
            report_id=report_id,
            voter_id=voter_id,
            vote_type=vote_type,
            reason=reason,
        )
        # Savepoint so a lost race leaves the outer transaction usable
        try:
            async with self.session.begin_nested():
                self.session.add(vote)
                await self.session.flush()
        except IntegrityError as e:
            logger.info(f"Duplicate vote on report {report_id} by {voter_id}: {e.orig}")
            raise VoteConflictError(report_id, voter_id) from e

        await self.session.refresh(vote)
        return _vote_record(vote)

    async def update(
        self,
        vote_id: UUID,
        vote_type: VoteType,
        reason: Optional[str],
    ) -> VoteRecord:
        vote = await self.session.get(Vote, vote_id)
        if vote is None:
            raise ResourceNotFoundException("Vote", str(vote_id))

        vote.vote_type = vote_type
        vote.reason = reason
        vote.updated_at = utcnow()
        await self.session.flush()
        await self.session.refresh(vote)
        return _vote_record(vote)

    async def delete(self, report_id: UUID, voter_id: str) -> Optional[VoteRecord]:
        result = await self.session.execute(
            delete(Vote)
            .where(Vote.report_id == report_id, Vote.voter_id == voter_id)
            .returning(Vote)
        )
        vote = result.scalar_one_or_none()
        return _vote_record(vote) if vote else None

    async def tally(self, report_id: UUID) -> VoteCounts:
        result = await self.session.execute(
            select(Vote.vote_type, func.count())
            .where(Vote.report_id == report_id)
            .group_by(Vote.vote_type)
        )
        by_type = {vote_type: count for vote_type, count in result.all()}
        return VoteCounts(
            up=by_type.get(VoteType.UP, 0),
            down=by_type.get(VoteType.DOWN, 0),
            flags=by_type.get(VoteType.FLAG, 0),
        )

    async def list_for_voter(
        self, voter_id: str, offset: int, limit: int
    ) -> Tuple[List[VoteRecord], int]:
        total = await self.session.scalar(
            select(func.count()).select_from(Vote).where(Vote.voter_id == voter_id)
        )
        result = await self.session.execute(
            select(Vote)
            .where(Vote.voter_id == voter_id)
            .order_by(Vote.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return [_vote_record(v) for v in result.scalars().all()], total or 0


# =============================================================================
# Alerts
# =============================================================================

class SqlAlertStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def lock_category(self, category: Category) -> None:
        # Released when the surrounding transaction ends
        await self.session.execute(
            select(func.pg_advisory_xact_lock(func.hashtext(f"alerts:{category.value}")))
        )

    async def _members(self, alert_id: UUID) -> List[UUID]:
        result = await self.session.execute(
            select(alert_reports.c.report_id)
            .where(alert_reports.c.alert_id == alert_id)
            .order_by(alert_reports.c.added_at)
        )
        return list(result.scalars().all())

    async def _record(self, alert: Alert) -> AlertRecord:
        return AlertRecord(
            id=alert.id,
            message=alert.message,
            area_name=alert.area_name,
            center=_to_coordinate(alert.center),
            radius_meters=alert.radius_meters,
            affected_area=alert.affected_area,
            severity=alert.severity,
            category=alert.category,
            report_ids=await self._members(alert.id),
            threshold=alert.threshold,
            time_window_hours=alert.time_window_hours,
            is_active=alert.is_active,
            created_at=alert.created_at,
            updated_at=alert.updated_at,
            resolved_at=alert.resolved_at,
            resolved_by=alert.resolved_by,
        )

    async def _require(self, alert_id: UUID) -> Alert:
        alert = await self.session.get(Alert, alert_id, with_for_update=True)
        if alert is None:
            raise ResourceNotFoundException("Alert", str(alert_id))
        return alert

    async def find_active_near(
        self,
        category: Category,
        center: Coordinate,
        radius_meters: float,
        since: datetime,
    ) -> Optional[AlertRecord]:
        result = await self.session.execute(
            select(Alert)
            .where(
                and_(
                    Alert.is_active == True,
                    Alert.category == category,
                    Alert.created_at >= since,
                    _within(Alert.center, center, radius_meters),
                )
            )
            .order_by(_distance(Alert.center, center))
            .limit(1)
        )
        alert = result.scalar_one_or_none()
        return await self._record(alert) if alert else None

    async def create(self, draft: AlertDraft) -> AlertRecord:
        report_ids = list(dict.fromkeys(draft.report_ids))
        alert = Alert(
            message=draft.message,
            area_name=draft.area_name,
            center=_from_coordinate(draft.center),
            radius_meters=draft.radius_meters,
            affected_area=draft.affected_area,
            severity=draft.severity,
            category=draft.category,
            report_count=len(report_ids),
            threshold=draft.threshold,
            time_window_hours=draft.time_window_hours,
        )
        self.session.add(alert)
        await self.session.flush()

        if report_ids:
            await self.session.execute(
                insert(alert_reports),
                [{"alert_id": alert.id, "report_id": rid, "added_at": utcnow()} for rid in report_ids],
            )
        await self.session.refresh(alert)
        return await self._record(alert)

    async def add_member(self, alert_id: UUID, report_id: UUID) -> AlertRecord:
        alert = await self._require(alert_id)
        await self.session.execute(
            insert(alert_reports)
            .values(alert_id=alert_id, report_id=report_id, added_at=utcnow())
            .on_conflict_do_nothing(index_elements=["alert_id", "report_id"])
        )
        count = await self.session.scalar(
            select(func.count())
            .select_from(alert_reports)
            .where(alert_reports.c.alert_id == alert_id)
        )
        alert.report_count = count or 0
        await self.session.flush()
        await self.session.refresh(alert)
        return await self._record(alert)

    async def update_severity(
        self, alert_id: UUID, severity: AlertSeverity, message: str
    ) -> AlertRecord:
        alert = await self._require(alert_id)
        alert.severity = severity
        alert.message = message
        await self.session.flush()
        await self.session.refresh(alert)
        return await self._record(alert)

    async def resolve(
        self, alert_id: UUID, resolver_id: str, resolved_at: datetime
    ) -> Optional[AlertRecord]:
        resolved_id = await self.session.scalar(
            update(Alert)
            .where(Alert.id == alert_id, Alert.is_active == True)
            .values(is_active=False, resolved_at=resolved_at, resolved_by=resolver_id)
            .returning(Alert.id)
        )
        if resolved_id is None:
            return None

        alert = await self._require(alert_id)
        await self.session.refresh(alert)
        return await self._record(alert)

    async def get(self, alert_id: UUID) -> Optional[AlertRecord]:
        alert = await self.session.get(Alert, alert_id)
        return await self._record(alert) if alert else None

    @staticmethod
    def _apply_filters(query, filters: AlertFilters):
        if filters.severity is not None:
            query = query.where(Alert.severity == filters.severity)
        if filters.category is not None:
            query = query.where(Alert.category == filters.category)
        if filters.is_active is not None:
            query = query.where(Alert.is_active == filters.is_active)
        return query

    async def list(self, filters: AlertFilters) -> Tuple[List[AlertRecord], int]:
        total = await self.session.scalar(
            self._apply_filters(select(func.count()).select_from(Alert), filters)
        )
        result = await self.session.execute(
            self._apply_filters(select(Alert), filters)
            .order_by(Alert.created_at.desc())
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )
        alerts = [await self._record(a) for a in result.scalars().all()]
        return alerts, total or 0

    async def list_near(
        self,
        center: Coordinate,
        radius_meters: float,
        filters: AlertFilters,
    ) -> List[AlertRecord]:
        result = await self.session.execute(
            self._apply_filters(select(Alert), filters)
            .where(_within(Alert.center, center, radius_meters))
            .order_by(Alert.created_at.desc())
        )
        return [await self._record(a) for a in result.scalars().all()]

    async def stats(self) -> AlertStats:
        stats = AlertStats()
        active = func.sum(case((Alert.is_active == True, 1), else_=0))

        for column, groups in (
            (Alert.severity, stats.by_severity),
            (Alert.category, stats.by_category),
        ):
            result = await self.session.execute(
                select(column, func.count(), active).group_by(column)
            )
            for key, count, active_count in result.all():
                groups[key.value] = GroupCount(count=count, active=active_count or 0)

        row = (
            await self.session.execute(
                select(func.count(), active, func.avg(Alert.report_count)).select_from(Alert)
            )
        ).one()
        stats.total = row[0] or 0
        stats.active = row[1] or 0
        stats.resolved = stats.total - stats.active
        stats.avg_report_count = float(row[2] or 0.0)
        return stats


# =============================================================================
# Provider
# =============================================================================

class SqlStoreProvider:
    """Opens one transaction per unit of work."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def ping(self) -> None:
        async with self.session_maker() as session:
            await session.execute(text("SELECT 1"))

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Stores]:
        async with self.session_maker() as session:
            try:
                yield Stores(
                    reports=SqlReportStore(session),
                    votes=SqlVoteStore(session),
                    alerts=SqlAlertStore(session),
                )
                await session.commit()
            except (OperationalError, OSError) as e:
                logger.error(f"Database unavailable: {e}")
                raise ServiceUnavailableException("Database") from e
            except Exception:
                await session.rollback()
                raise
