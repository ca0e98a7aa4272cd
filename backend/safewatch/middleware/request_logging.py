"""Request logging and request-ID propagation."""

import logging
import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from safewatch.config import settings

logger = logging.getLogger("api.requests")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an ID and logs one line in, one line out.

    The ID is taken from an incoming ``X-Request-ID`` when present, stored
    on ``request.state`` for error responses and audit entries, and echoed
    on the response. Health probes are logged at DEBUG only.
    """

    QUIET_PATHS = {"/health", "/api/v1/health", "/api/v1/health/db"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())[:8]
        request.state.request_id = request_id

        if not settings.log_requests:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response

        path = request.url.path
        quiet = path in self.QUIET_PATHS
        target = f"{request.method} {path}" + (f"?{request.url.query}" if request.url.query else "")

        if not quiet:
            logger.info(f"[{request_id}] --> {target} from {client_ip(request)}")

        started = time.perf_counter()
        response: Optional[Response] = None
        try:
            response = await call_next(request)
            return response
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            status_code = response.status_code if response is not None else 500
            if response is not None:
                response.headers[REQUEST_ID_HEADER] = request_id
            self._log_completion(request_id, target, status_code, elapsed_ms, quiet)

    @staticmethod
    def _log_completion(
        request_id: str, target: str, status_code: int, elapsed_ms: float, quiet: bool
    ) -> None:
        message = f"[{request_id}] <-- {status_code} {target} ({elapsed_ms:.2f}ms)"
        if status_code >= 500:
            logger.error(message)
        elif status_code >= 400:
            logger.warning(message)
        elif quiet:
            logger.debug(message)
        else:
            logger.info(message)


def client_ip(request: Request) -> str:
    """Client address, honoring the first hop of X-Forwarded-For."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def setup_logging():
    """Configure logging for the application."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Application loggers: requests, errors, auth, audit and the services
    for name in ("api", "safewatch"):
        logging.getLogger(name).setLevel(log_level)

    # Reduce noise from third-party libraries
    for name in ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)
