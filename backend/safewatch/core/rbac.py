"""Role-Based Access Control (RBAC) for API authorization."""

import logging
from enum import Enum
from typing import List, Optional, Set

from fastapi import Depends, Request
from pydantic import BaseModel, ConfigDict

from safewatch.core.audit import audit_log
from safewatch.core.exceptions import AuthenticationException, AuthorizationException
from safewatch.core.jwt import get_jwt_manager
from safewatch.middleware.request_logging import client_ip as get_client_ip

logger = logging.getLogger("api.auth")


# =============================================================================
# Role and Permission Definitions
# =============================================================================

class Role(str, Enum):
    """Roles carried in identity tokens."""

    # No credentials
    PUBLIC = "public"

    # Registered citizen
    USER = "user"

    # Authorities
    POLICE = "police"
    MUNICIPAL = "municipal"
    ADMIN = "admin"


class Permission(str, Enum):
    """Granular permissions for fine-grained access control."""

    # Reports
    REPORT_VIEW = "report:view"
    REPORT_SUBMIT = "report:submit"

    # Votes
    VOTE_VIEW = "vote:view"
    VOTE_CAST = "vote:cast"

    # Alerts
    ALERT_VIEW = "alert:view"
    ALERT_CHECK = "alert:check"
    ALERT_RESOLVE = "alert:resolve"

    # System
    SYSTEM_HEALTH = "system:health"


_PUBLIC = {
    Permission.REPORT_VIEW,
    Permission.VOTE_VIEW,
    Permission.ALERT_VIEW,
    Permission.ALERT_CHECK,
    Permission.SYSTEM_HEALTH,
}

_CITIZEN = _PUBLIC | {
    Permission.REPORT_SUBMIT,
    Permission.VOTE_CAST,
}

_AUTHORITY = _CITIZEN | {
    Permission.ALERT_RESOLVE,
}

# Roles allowed to resolve alerts
AUTHORITY_ROLES = (Role.POLICE, Role.MUNICIPAL, Role.ADMIN)

ROLE_PERMISSIONS: dict[Role, Set[Permission]] = {
    Role.PUBLIC: _PUBLIC,
    Role.USER: _CITIZEN,
    **{role: _AUTHORITY for role in AUTHORITY_ROLES},
    Role.ADMIN: set(Permission),  # All permissions
}


# =============================================================================
# Authorization Context
# =============================================================================

class AuthContext(BaseModel):
    """Authentication and authorization context for a request."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    is_authenticated: bool = False
    subject_id: Optional[str] = None

    roles: List[Role] = []
    permissions: Set[Permission] = set()

    request_id: Optional[str] = None
    client_ip: Optional[str] = None

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    def has_any_role(self, roles: List[Role]) -> bool:
        return any(role in self.roles for role in roles)

    def has_permission(self, permission: Permission) -> bool:
        return permission in self.permissions


# =============================================================================
# Authorization Functions
# =============================================================================

def get_permissions_for_roles(roles: List[Role]) -> Set[Permission]:
    """Get all permissions for a list of roles."""
    permissions = set()
    for role in roles:
        permissions.update(ROLE_PERMISSIONS.get(role, set()))
    return permissions


def parse_roles(raw_roles: List[str]) -> List[Role]:
    """Map token role strings to roles, ignoring unknown ones. Defaults to USER."""
    roles = []
    for role_str in raw_roles:
        try:
            roles.append(Role(str(role_str).lower()))
        except ValueError:
            logger.warning(f"Unknown role in token: {role_str}")

    # A token never grants anonymous access
    roles = [r for r in roles if r != Role.PUBLIC]
    return roles or [Role.USER]


def public_context(request_id: Optional[str] = None, client_ip: Optional[str] = None) -> AuthContext:
    return AuthContext(
        is_authenticated=False,
        roles=[Role.PUBLIC],
        permissions=get_permissions_for_roles([Role.PUBLIC]),
        request_id=request_id,
        client_ip=client_ip,
    )


def context_from_token(token: str) -> Optional[AuthContext]:
    """Build an auth context from a bearer token, or None if it is invalid."""
    payload = get_jwt_manager().decode_token(token)
    if not payload:
        return None

    roles = parse_roles(payload.roles)
    return AuthContext(
        is_authenticated=True,
        subject_id=payload.sub,
        roles=roles,
        permissions=get_permissions_for_roles(roles),
    )


async def get_auth_context(request: Request) -> AuthContext:
    """
    FastAPI dependency to get authentication context.

    A valid Bearer token yields an authenticated context. No credentials
    yields public access. A token that is present but invalid is rejected
    rather than silently downgraded to public access.
    """
    request_id = getattr(request.state, "request_id", None)
    client_ip = get_client_ip(request)

    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return public_context(request_id, client_ip)

    if not auth_header.startswith("Bearer "):
        audit_log.log_auth_failure(request_id, client_ip, "Unsupported authorization scheme")
        raise AuthenticationException("Unsupported authorization scheme")

    context = context_from_token(auth_header[7:])
    if context is None:
        audit_log.log_auth_failure(request_id, client_ip, "Invalid or expired token")
        raise AuthenticationException("Invalid or expired token")

    context.request_id = request_id
    context.client_ip = client_ip
    return context


# =============================================================================
# Authorization Dependencies
# =============================================================================

def require_permissions(*permissions: Permission):
    """
    Require one or more specific permissions.

    Anonymous callers carry the public permission set, so read endpoints
    stay open to them; anything beyond it needs a valid token.

    Usage:
        @router.post("/votes")
        async def cast_vote(context: AuthContext = Depends(require_permissions(Permission.VOTE_CAST))):
            ...
    """
    async def dependency(context: AuthContext = Depends(get_auth_context)) -> AuthContext:
        missing = [p for p in permissions if p not in context.permissions]
        if missing:
            if not context.is_authenticated:
                raise AuthenticationException("Authentication required")

            logger.warning(
                f"Access denied for {context.subject_id}: "
                f"missing permissions {[p.value for p in missing]}"
            )
            audit_log.log_access_denied(
                context.subject_id,
                required=",".join(p.value for p in missing),
                request_id=context.request_id,
            )
            raise AuthorizationException("Insufficient permissions")

        return context

    return dependency
