# Database models
from safewatch.models.base import Base
from safewatch.models.report import Report, Category, Priority, ReportStatus
from safewatch.models.vote import Vote, VoteType
from safewatch.models.alert import Alert, AlertSeverity, alert_reports

__all__ = [
    "Base",
    "Report",
    "Category",
    "Priority",
    "ReportStatus",
    "Vote",
    "VoteType",
    "Alert",
    "AlertSeverity",
    "alert_reports",
]
