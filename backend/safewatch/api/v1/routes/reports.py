"""Incident report endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from safewatch.api.deps import get_report_service
from safewatch.core.rbac import AuthContext, Permission, require_permissions
from safewatch.schemas.report import ReportCreate, ReportResponse
from safewatch.services.reports import ReportService

router = APIRouter()


@router.post("", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def submit_report(
    data: ReportCreate,
    context: AuthContext = Depends(require_permissions(Permission.REPORT_SUBMIT)),
    service: ReportService = Depends(get_report_service),
) -> ReportResponse:
    """
    Submit a new incident report.

    Cluster detection runs in the background after the report is stored,
    so any alert it raises may appear after this response is returned.
    """
    report = await service.submit_report(data, author_id=context.subject_id)
    return ReportResponse.from_record(report)


@router.get(
    "/{report_id}",
    response_model=ReportResponse,
    dependencies=[Depends(require_permissions(Permission.REPORT_VIEW))],
)
async def get_report(
    report_id: UUID,
    service: ReportService = Depends(get_report_service),
) -> ReportResponse:
    """Get a report with its current verification fields."""
    return ReportResponse.from_record(await service.get_report(report_id))
