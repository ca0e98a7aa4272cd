"""Turns qualifying clusters into area-level alerts."""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional
from uuid import UUID

from safewatch.core.audit import AuditAction, audit_log
from safewatch.core.exceptions import AlertAlreadyResolvedException, ResourceNotFoundException
from safewatch.models.alert import AlertSeverity, SEVERITY_ORDER
from safewatch.models.report import Category
from safewatch.repositories.base import AlertStore
from safewatch.schemas.alert import AlertDraft, AlertRecord
from safewatch.schemas.report import ReportRecord
from safewatch.services.cluster_detector import (
    ALERT_THRESHOLD,
    CLUSTER_RADIUS_METERS,
    TIME_WINDOW_HOURS,
    ClusterResult,
)

logger = logging.getLogger(__name__)


MESSAGE_TEMPLATES: Dict[Category, str] = {
    Category.CRIME: (
        "{count} crime incidents reported in {area} within the last {hours} hours. "
        "Exercise caution in this area."
    ),
    Category.MISSING: "{count} missing person reports in {area}. Community assistance requested.",
    Category.DOG: "{count} stray dog incidents reported in {area}. Avoid the area if possible.",
    Category.HAZARD: "{count} hazards reported in {area}. Area may be unsafe.",
    Category.NATURAL_DISASTER: (
        "{count} natural disaster reports in {area}. "
        "Seek shelter and follow safety protocols."
    ),
}
DEFAULT_TEMPLATE = "{count} incidents reported in {area}."

SEVERITY_PREFIXES = {
    AlertSeverity.CRITICAL: "CRITICAL ALERT: ",
    AlertSeverity.HIGH: "HIGH ALERT: ",
}

MAX_MESSAGE_LENGTH = 500
MAX_AREA_IN_MESSAGE = 200


# =============================================================================
# Severity and wording
# =============================================================================

def severity_for_count(count: int) -> AlertSeverity:
    """Severity ladder: <5 LOW, 5-6 MEDIUM, 7-9 HIGH, 10+ CRITICAL."""
    if count >= 10:
        return AlertSeverity.CRITICAL
    if count >= 7:
        return AlertSeverity.HIGH
    if count >= 5:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW


def escalate(current: AlertSeverity, proposed: AlertSeverity) -> AlertSeverity:
    """Return the higher of the two severities."""
    if SEVERITY_ORDER.index(proposed) > SEVERITY_ORDER.index(current):
        return proposed
    return current


def area_name_for(report: ReportRecord) -> str:
    if report.address and report.address.strip():
        return report.address.strip()
    return f"{report.latitude:.4f}, {report.longitude:.4f}"


def build_alert_message(
    category: Category,
    count: int,
    area_name: str,
    severity: AlertSeverity,
    time_window_hours: int = TIME_WINDOW_HOURS,
) -> str:
    area = area_name
    if len(area) > MAX_AREA_IN_MESSAGE:
        area = area[: MAX_AREA_IN_MESSAGE - 3] + "..."

    template = MESSAGE_TEMPLATES.get(category, DEFAULT_TEMPLATE)
    message = SEVERITY_PREFIXES.get(severity, "") + template.format(
        count=count, area=area, hours=time_window_hours
    )
    return message[:MAX_MESSAGE_LENGTH]


# =============================================================================
# Synthesis
# =============================================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertSynthesizer:
    """
    Creates a new alert for a cluster or folds the trigger into an existing one.

    At most one active alert exists per category within the clustering
    radius and time window. Synthesis for a category is serialized by an
    in-process lock plus the store's ``lock_category``, so two triggers
    racing for the same area cannot both create an alert.
    """

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
        self._locks: Dict[Category, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def synthesize(
        self,
        alerts: AlertStore,
        report: ReportRecord,
        cluster: ClusterResult,
    ) -> Optional[AlertRecord]:
        """
        Apply a cluster to the alert set.

        Returns the created or updated alert, or None when the cluster is
        below the alert threshold.
        """
        if not cluster.gated or cluster.total_count < self.alert_threshold:
            return None

        async with self._locks[report.category]:
            await alerts.lock_category(report.category)

            existing = await alerts.find_active_near(
                category=report.category,
                center=report.location,
                radius_meters=self.radius_meters,
                since=self.clock() - timedelta(hours=self.time_window_hours),
            )
            if existing is not None:
                return await self._join(alerts, existing, report, cluster)
            return await self._create(alerts, report, cluster)

    async def _create(
        self,
        alerts: AlertStore,
        report: ReportRecord,
        cluster: ClusterResult,
    ) -> AlertRecord:
        severity = severity_for_count(cluster.total_count)
        area_name = area_name_for(report)

        alert = await alerts.create(
            AlertDraft(
                message=build_alert_message(
                    report.category, cluster.total_count, area_name, severity,
                    self.time_window_hours,
                ),
                area_name=area_name,
                center=report.location,
                radius_meters=self.radius_meters,
                affected_area=f"{area_name} and surrounding {self.radius_meters}m radius",
                severity=severity,
                category=report.category,
                report_ids=cluster.report_ids,
                threshold=self.alert_threshold,
                time_window_hours=self.time_window_hours,
            )
        )

        logger.info(
            f"Created {severity.value} {report.category.value} alert {alert.id} "
            f"for {alert.report_count} reports near {area_name}"
        )
        audit_log.log_alert_event(
            AuditAction.ALERT_CREATE,
            str(alert.id),
            details={
                "trigger_report_id": str(report.id),
                "report_count": alert.report_count,
                "severity": severity.value,
            },
        )
        return alert

    async def _join(
        self,
        alerts: AlertStore,
        alert: AlertRecord,
        report: ReportRecord,
        cluster: ClusterResult,
    ) -> AlertRecord:
        # Only the trigger joins; neighbors already belong or will trigger on their own
        updated = await alerts.add_member(alert.id, report.id)

        severity = escalate(updated.severity, severity_for_count(cluster.total_count))
        message = build_alert_message(
            updated.category, updated.report_count, updated.area_name, severity,
            updated.time_window_hours,
        )
        if severity != updated.severity or message != updated.message:
            updated = await alerts.update_severity(updated.id, severity, message)

        if updated.report_count != alert.report_count:
            audit_log.log_alert_event(
                AuditAction.ALERT_JOIN,
                str(alert.id),
                details={"report_id": str(report.id), "report_count": updated.report_count},
            )
        if severity != alert.severity:
            logger.info(
                f"Alert {alert.id} escalated {alert.severity.value} -> {severity.value}"
            )
            audit_log.log_alert_event(
                AuditAction.ALERT_ESCALATE,
                str(alert.id),
                details={"from": alert.severity.value, "to": severity.value},
            )
        return updated


async def resolve_alert(
    alerts: AlertStore,
    alert_id: UUID,
    resolver_id: str,
    resolved_at: Optional[datetime] = None,
) -> AlertRecord:
    """
    Deactivate an alert on behalf of an authority.

    Resolution is terminal. Raises AlertAlreadyResolvedException when the
    alert is no longer active.
    """
    alert = await alerts.get(alert_id)
    if alert is None:
        raise ResourceNotFoundException("Alert", str(alert_id))
    if not alert.is_active:
        raise AlertAlreadyResolvedException(str(alert_id))

    # The store only deactivates a still-active row; a concurrent resolver
    # that got there first leaves nothing to update
    resolved = await alerts.resolve(alert_id, resolver_id, resolved_at or _utcnow())
    if resolved is None:
        raise AlertAlreadyResolvedException(str(alert_id))

    audit_log.log_alert_event(
        AuditAction.ALERT_RESOLVE,
        str(alert_id),
        actor_id=resolver_id,
        details={"report_count": resolved.report_count, "severity": resolved.severity.value},
    )
    return resolved
