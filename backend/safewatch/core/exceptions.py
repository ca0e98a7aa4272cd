"""Error taxonomy for the incident API and the handlers that render it."""

import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from safewatch.config import settings

logger = logging.getLogger("api.errors")


# =============================================================================
# Error Taxonomy
# =============================================================================

class APIException(Exception):
    """Base exception for API errors with safe messages."""

    def __init__(
        self,
        status_code: int = 500,
        detail: str = "An error occurred",
        error_code: Optional[str] = None,
        internal_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.status_code = status_code
        self.detail = detail  # Safe message for client
        self.error_code = error_code or "INTERNAL_ERROR"
        self.internal_message = internal_message  # Full message for logs
        self.details = details
        super().__init__(self.detail)


class ValidationException(APIException):
    """Invalid argument, e.g. an unknown vote type or missing coordinates."""

    def __init__(self, detail: str, field: Optional[str] = None):
        super().__init__(
            status_code=422,
            detail=detail,
            error_code="VALIDATION_ERROR",
            details={"field": field} if field else None,
        )
        self.field = field


class AuthenticationException(APIException):
    """Authentication failure."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=401,
            detail=detail,
            error_code="AUTHENTICATION_REQUIRED",
        )


class AuthorizationException(APIException):
    """Authorization/permission failure."""

    def __init__(self, detail: str = "Permission denied"):
        super().__init__(
            status_code=403,
            detail=detail,
            error_code="PERMISSION_DENIED",
        )


class ForbiddenException(APIException):
    """Action refused for a domain reason (self-vote, proximity)."""

    def __init__(
        self,
        detail: str,
        error_code: str = "FORBIDDEN",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            status_code=403,
            detail=detail,
            error_code=error_code,
            details=details,
        )


class VoterTooFarException(ForbiddenException):
    """Voter is outside the proximity radius of the report."""

    def __init__(self, distance_km: float, limit_km: float):
        self.distance_km = distance_km
        self.limit_km = limit_km
        super().__init__(
            detail=(
                f"You must be within {limit_km:g}km of the incident to vote. "
                f"You are {distance_km:.2f}km away."
            ),
            error_code="VOTER_TOO_FAR",
            details={"distance_km": round(distance_km, 2), "limit_km": limit_km},
        )


class ResourceNotFoundException(APIException):
    """Resource not found."""

    def __init__(self, resource: str = "Resource", resource_id: Optional[str] = None):
        detail = f"{resource} not found"
        super().__init__(
            status_code=404,
            detail=detail,
            error_code="NOT_FOUND",
            internal_message=f"{resource} {resource_id} not found" if resource_id else None,
        )
        self.resource = resource
        self.resource_id = resource_id


class ConflictException(APIException):
    """Storage-level uniqueness conflict."""

    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(
            status_code=409,
            detail=detail,
            error_code="CONFLICT",
        )


class AlertAlreadyResolvedException(APIException):
    """Resolution attempted on an inactive alert."""

    def __init__(self, alert_id: Optional[str] = None):
        super().__init__(
            status_code=400,
            detail="Alert is already resolved",
            error_code="ALERT_ALREADY_RESOLVED",
            internal_message=f"Alert {alert_id} is inactive" if alert_id else None,
        )


class ServiceUnavailableException(APIException):
    """Backing service unavailable."""

    def __init__(self, service: str = "Service"):
        super().__init__(
            status_code=503,
            detail="Service temporarily unavailable. Please try again later.",
            error_code="SERVICE_UNAVAILABLE",
            internal_message=f"{service} is unavailable",
        )


class AlertPipelineError(Exception):
    """Raised inside the detached clustering/alerting pipeline."""
    pass


# =============================================================================
# Error Response Formatting
# =============================================================================

def create_error_response(
    status_code: int,
    error_code: str,
    message: str,
    request_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Create a standardized error response."""
    response = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if request_id:
        response["error"]["request_id"] = request_id

    if details and not settings.is_production():
        # Only include details in non-production
        response["error"]["details"] = details

    return response


# Fragments that reveal storage or credential internals
_SENSITIVE_FRAGMENTS = (
    "traceback",
    "file \"",
    "select ",
    "insert ",
    "update ",
    "delete ",
    "st_dwithin",
    "st_distance",
    "pg_advisory",
    "postgresql",
    "asyncpg",
    "sqlalchemy",
    "geoalchemy",
    "password",
    "secret",
    "bearer",
    "token",
)

MAX_CLIENT_MESSAGE_LENGTH = 200


def sanitize_error_message(message: str) -> str:
    """Replace messages that leak storage or credential details; clip the rest."""
    lowered = message.lower()
    if any(fragment in lowered for fragment in _SENSITIVE_FRAGMENTS):
        return "An internal error occurred. Please try again later."

    if len(message) > MAX_CLIENT_MESSAGE_LENGTH:
        return message[:MAX_CLIENT_MESSAGE_LENGTH] + "..."
    return message


# Readable messages for the coordinate fields every write endpoint accepts
_COORDINATE_MESSAGES = {
    "latitude": "Latitude must be between -90 and 90",
    "user_latitude": "Latitude must be between -90 and 90",
    "longitude": "Longitude must be between -180 and 180",
    "user_longitude": "Longitude must be between -180 and 180",
}

_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "AUTHENTICATION_REQUIRED",
    403: "PERMISSION_DENIED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


# =============================================================================
# Exception Handlers
# =============================================================================

def get_request_id(request: Request) -> str:
    """Get request ID from request state or generate new one."""
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return str(uuid4())[:8]


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    """Handle domain and access-control errors raised by services and dependencies."""
    request_id = get_request_id(request)

    log_message = f"[{request_id}] {exc.error_code}: {exc.detail}"
    if exc.internal_message:
        log_message += f" | Internal: {exc.internal_message}"

    if exc.status_code >= 500:
        logger.error(log_message)
    else:
        logger.warning(log_message)

    response = create_error_response(
        status_code=exc.status_code,
        error_code=exc.error_code,
        message=exc.detail,
        request_id=request_id,
        details=exc.details,
    )
    return JSONResponse(status_code=exc.status_code, content=response)


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Handle routing-level HTTP errors such as unknown paths or methods."""
    request_id = get_request_id(request)

    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    if exc.status_code >= 500:
        logger.error(f"[{request_id}] HTTP {exc.status_code}: {detail}")
        detail = sanitize_error_message(detail)
    else:
        logger.info(f"[{request_id}] HTTP {exc.status_code}: {detail}")

    response = create_error_response(
        status_code=exc.status_code,
        error_code=_STATUS_CODES.get(exc.status_code, "ERROR"),
        message=detail,
        request_id=request_id,
    )
    return JSONResponse(status_code=exc.status_code, content=response, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Turn request-body and query validation failures into field messages."""
    request_id = get_request_id(request)

    field_errors = []
    for error in exc.errors():
        path = [str(loc) for loc in error["loc"] if loc not in ("body", "query", "path")]
        name = path[-1] if path else ""
        message = None
        if error.get("type", "").endswith(("_equal", "than")):
            message = _COORDINATE_MESSAGES.get(name)
        field_errors.append({
            "field": ".".join(path),
            "message": message or error["msg"],
        })

    logger.info(f"[{request_id}] Validation error: {len(field_errors)} field(s)")

    # A single problem is reported directly so clients can show it as-is
    message = field_errors[0]["message"] if len(field_errors) == 1 else "Invalid request data"

    response = create_error_response(
        status_code=422,
        error_code="VALIDATION_ERROR",
        message=message,
        request_id=request_id,
        details={"fields": field_errors},
    )
    return JSONResponse(status_code=422, content=response)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort for anything unhandled; the client never sees the cause."""
    request_id = get_request_id(request)
    logger.exception(
        f"[{request_id}] Unhandled {type(exc).__name__} on {request.method} {request.url.path}"
    )

    response = create_error_response(
        status_code=500,
        error_code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
        request_id=request_id,
    )
    return JSONResponse(status_code=500, content=response)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
