"""Report submission and lookup."""

import logging
from typing import Optional
from uuid import UUID

from safewatch.core.audit import AuditAction, audit_log
from safewatch.core.exceptions import ResourceNotFoundException
from safewatch.repositories.base import StoreProvider
from safewatch.schemas.report import ReportCreate, ReportRecord
from safewatch.services.alert_dispatcher import AlertDispatcher

logger = logging.getLogger(__name__)


class ReportService:
    def __init__(self, stores: StoreProvider, dispatcher: Optional[AlertDispatcher] = None):
        self.stores = stores
        self.dispatcher = dispatcher

    async def submit_report(self, data: ReportCreate, author_id: str) -> ReportRecord:
        """
        Persist a report, then hand it to the alert pipeline.

        The pipeline is dispatched only after the report is committed and
        runs detached; its outcome never affects this call.
        """
        async with self.stores.session() as stores:
            report = await stores.reports.create(data, author_id)

        logger.info(
            f"Report {report.id} submitted: {report.category.value}/{report.priority.value}"
        )
        audit_log.log(
            AuditAction.REPORT_SUBMIT,
            actor_id=author_id,
            resource_type="report",
            resource_id=str(report.id),
            details={"category": report.category.value, "priority": report.priority.value},
        )

        if self.dispatcher is not None:
            self.dispatcher.dispatch(report.id)
        return report

    async def get_report(self, report_id: UUID) -> ReportRecord:
        async with self.stores.session() as stores:
            report = await stores.reports.get(report_id)
        if report is None:
            raise ResourceNotFoundException("Report", str(report_id))
        return report
