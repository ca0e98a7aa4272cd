"""Spatio-temporal cluster detection over qualifying reports."""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from safewatch.models.report import Category
from safewatch.repositories.base import ReportStore
from safewatch.schemas.common import Coordinate
from safewatch.schemas.report import ReportRecord

logger = logging.getLogger(__name__)

ALERT_THRESHOLD = 3
CLUSTER_RADIUS_METERS = 1000
TIME_WINDOW_HOURS = 24

# Area scans look this many cluster radii out from the query point
AREA_SCAN_RADIUS_FACTOR = 3


@dataclass(frozen=True)
class ClusterResult:
    """Neighbors found for a triggering report.

    ``members`` excludes the trigger itself. When the trigger fails the
    verified-or-urgent gate no query runs and ``members`` is empty.
    """

    trigger: ReportRecord
    members: List[ReportRecord] = field(default_factory=list)
    gated: bool = True

    @property
    def total_count(self) -> int:
        return len(self.members) + 1

    @property
    def report_ids(self):
        return [self.trigger.id, *(m.id for m in self.members)]


@dataclass(frozen=True)
class AreaCluster:
    """Qualifying reports of one category around a scanned point."""

    category: Category
    reports: List[ReportRecord]

    @property
    def count(self) -> int:
        return len(self.reports)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClusterDetector:
    """Finds same-category qualifying reports near a triggering report."""

    def __init__(
        self,
        alert_threshold: int = ALERT_THRESHOLD,
        radius_meters: int = CLUSTER_RADIUS_METERS,
        time_window_hours: int = TIME_WINDOW_HOURS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.alert_threshold = alert_threshold
        self.radius_meters = radius_meters
        self.time_window_hours = time_window_hours
        self.clock = clock or _utcnow

    def window_start(self) -> datetime:
        return self.clock() - timedelta(hours=self.time_window_hours)

    async def find_cluster(self, reports: ReportStore, report: ReportRecord) -> ClusterResult:
        """Query the trigger's qualifying neighbors. Read only."""
        if not report.qualifies_for_clustering():
            logger.debug(
                f"Report {report.id} is neither verified nor urgent; skipping cluster detection"
            )
            return ClusterResult(trigger=report, gated=False)

        neighbors = await reports.find_cluster_candidates(
            category=report.category,
            center=report.location,
            radius_meters=self.radius_meters,
            since=self.window_start(),
            exclude_id=report.id,
        )
        result = ClusterResult(trigger=report, members=neighbors)
        logger.debug(
            f"Report {report.id} ({report.category.value}) has "
            f"{len(neighbors)} qualifying neighbors, total {result.total_count}"
        )
        return result

    def meets_threshold(self, cluster: ClusterResult) -> bool:
        return cluster.gated and cluster.total_count >= self.alert_threshold

    async def scan_area(
        self,
        reports: ReportStore,
        center: Coordinate,
        category: Optional[Category] = None,
    ) -> List[AreaCluster]:
        """
        Group qualifying reports around a point by category.

        Looks out to three cluster radii and returns only the groups that
        already reach the alert threshold. Nothing is persisted.
        """
        found = await reports.find_qualifying_near(
            center=center,
            radius_meters=self.radius_meters * AREA_SCAN_RADIUS_FACTOR,
            since=self.window_start(),
            category=category,
        )

        groups: "OrderedDict[Category, List[ReportRecord]]" = OrderedDict()
        for report in found:
            groups.setdefault(report.category, []).append(report)

        return [
            AreaCluster(category=cat, reports=members)
            for cat, members in groups.items()
            if len(members) >= self.alert_threshold
        ]
