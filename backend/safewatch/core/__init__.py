"""Core error handling, authentication, authorization and audit modules."""

# Exception handling
from safewatch.core.exceptions import (
    APIException,
    ValidationException,
    AuthenticationException,
    AuthorizationException,
    ForbiddenException,
    VoterTooFarException,
    ResourceNotFoundException,
    ConflictException,
    AlertAlreadyResolvedException,
    ServiceUnavailableException,
    AlertPipelineError,
    register_exception_handlers,
    sanitize_error_message,
)

# Audit logging
from safewatch.core.audit import (
    AuditAction,
    AuditSeverity,
    AuditLogger,
    audit_log,
)

# Role-Based Access Control
from safewatch.core.rbac import (
    Role,
    Permission,
    AuthContext,
    AUTHORITY_ROLES,
    get_auth_context,
    require_permissions,
    get_permissions_for_roles,
)

__all__ = [
    # Exceptions
    "APIException",
    "ValidationException",
    "AuthenticationException",
    "AuthorizationException",
    "ForbiddenException",
    "VoterTooFarException",
    "ResourceNotFoundException",
    "ConflictException",
    "AlertAlreadyResolvedException",
    "ServiceUnavailableException",
    "AlertPipelineError",
    "register_exception_handlers",
    "sanitize_error_message",
    # Audit
    "AuditAction",
    "AuditSeverity",
    "AuditLogger",
    "audit_log",
    # RBAC
    "Role",
    "Permission",
    "AuthContext",
    "AUTHORITY_ROLES",
    "get_auth_context",
    "require_permissions",
    "get_permissions_for_roles",
]
