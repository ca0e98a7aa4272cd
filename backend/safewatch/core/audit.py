"""Audit logging for state changes made on behalf of users and authorities."""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel

logger = logging.getLogger("api.audit")


class AuditAction(str, Enum):
    """Audit action types."""

    # Authentication
    AUTH_FAILURE = "auth.failure"
    ACCESS_DENIED = "auth.access_denied"

    # Reports
    REPORT_SUBMIT = "report.submit"
    REPORT_VERIFIED = "report.verified"
    REPORT_UNVERIFIED = "report.unverified"
    REPORT_UNDER_REVIEW = "report.under_review"

    # Votes
    VOTE_CAST = "vote.cast"
    VOTE_CHANGE = "vote.change"
    VOTE_RETRACT = "vote.retract"

    # Alerts
    ALERT_CREATE = "alert.create"
    ALERT_JOIN = "alert.join"
    ALERT_ESCALATE = "alert.escalate"
    ALERT_RESOLVE = "alert.resolve"


class AuditSeverity(str, Enum):
    """Audit event severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEntry(BaseModel):
    """Audit log entry structure."""

    timestamp: datetime
    action: AuditAction
    severity: AuditSeverity
    request_id: Optional[str] = None
    client_ip: Optional[str] = None
    actor_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    success: bool = True
    error_message: Optional[str] = None


class AuditLogger:
    """
    Centralized audit logging.

    Entries are written as single-line JSON on the ``api.audit`` logger so
    they can be shipped and queried separately from request logs.
    """

    def __init__(self):
        self._logger = logging.getLogger("api.audit")
        self._logger.setLevel(logging.INFO)

    def _format_entry(self, entry: AuditEntry) -> str:
        return json.dumps(entry.model_dump(mode="json"), default=str)

    def log(
        self,
        action: AuditAction,
        *,
        severity: AuditSeverity = AuditSeverity.INFO,
        request_id: Optional[str] = None,
        client_ip: Optional[str] = None,
        actor_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> AuditEntry:
        """
        Log an audit event.

        Args:
            action: The action being audited
            severity: Event severity level
            request_id: Unique request identifier
            client_ip: Client IP address
            actor_id: User, authority or "system" that performed the action
            resource_type: Type of resource changed
            resource_id: ID of resource changed
            details: Additional context
            success: Whether the action succeeded
            error_message: Error message if failed

        Returns:
            The entry that was written
        """
        entry = AuditEntry(
            timestamp=datetime.now(timezone.utc),
            action=action,
            severity=severity,
            request_id=request_id,
            client_ip=client_ip,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
            success=success,
            error_message=error_message,
        )

        log_message = self._format_entry(entry)

        if severity == AuditSeverity.CRITICAL:
            self._logger.critical(f"AUDIT: {log_message}")
        elif severity == AuditSeverity.ERROR:
            self._logger.error(f"AUDIT: {log_message}")
        elif severity == AuditSeverity.WARNING:
            self._logger.warning(f"AUDIT: {log_message}")
        else:
            self._logger.info(f"AUDIT: {log_message}")

        return entry

    def log_auth_failure(
        self,
        request_id: Optional[str],
        client_ip: Optional[str],
        reason: str,
    ) -> None:
        """Log failed authentication attempt."""
        self.log(
            AuditAction.AUTH_FAILURE,
            severity=AuditSeverity.WARNING,
            request_id=request_id,
            client_ip=client_ip,
            success=False,
            error_message=reason,
        )

    def log_access_denied(
        self,
        actor_id: Optional[str],
        required: str,
        request_id: Optional[str] = None,
    ) -> None:
        self.log(
            AuditAction.ACCESS_DENIED,
            severity=AuditSeverity.WARNING,
            request_id=request_id,
            actor_id=actor_id,
            success=False,
            details={"required": required},
        )

    def log_vote(
        self,
        action: AuditAction,
        voter_id: str,
        report_id: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log a vote cast, change or retraction."""
        self.log(
            action,
            actor_id=voter_id,
            resource_type="report",
            resource_id=report_id,
            details=details,
        )

    def log_report_transition(
        self,
        action: AuditAction,
        report_id: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log a verification change the vote ledger made to a report."""
        self.log(
            action,
            actor_id="system",
            resource_type="report",
            resource_id=report_id,
            details=details,
        )

    def log_alert_event(
        self,
        action: AuditAction,
        alert_id: str,
        actor_id: str = "system",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log alert creation, membership, escalation or resolution."""
        self.log(
            action,
            # Authority actions are always notable
            severity=AuditSeverity.WARNING if action == AuditAction.ALERT_RESOLVE else AuditSeverity.INFO,
            actor_id=actor_id,
            resource_type="alert",
            resource_id=alert_id,
            details=details,
        )


# Global audit logger instance
audit_log = AuditLogger()
