"""FastAPI middleware for request/response logging and correlation."""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from billing_sync.api.dependencies import AUTH_USER_HEADER
from billing_sync.logging_config import bind_context, clear_context, get_logger, mask_identifier

logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging HTTP requests and responses with correlation IDs.

    Features:
    - Generates unique request_id for each request (or reuses X-Request-ID)
    - Logs request method, path, client IP
    - Logs response status code and duration
    - Binds request_id to all logs within request context
    """

    def __init__(self, app: ASGIApp, include_request_details: bool = True):
        """Initialize middleware.

        Args:
            app: ASGI application
            include_request_details: If True, log client host and user agent
        """
        super().__init__(app)
        self.include_request_details = include_request_details

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        bind_context(request_id=request_id)

        if self.include_request_details:
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                client_host=request.client.host if request.client else "unknown",
                user_agent=request.headers.get("user-agent"),
            )
        else:
            logger.info("request_started", method=request.method, path=request.url.path)

        start_time = time.time()
        try:
            response = await call_next(request)
            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as exc:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise

        finally:
            # Clear context so it does not leak into the next request
            clear_context()


class ContextMiddleware(BaseHTTPMiddleware):
    """Binds caller identity to the logging context.

    - auth_user_id from the gateway's auth header (masked)
    - webhook delivery marker for provider callbacks
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        auth_user_id = request.headers.get(AUTH_USER_HEADER)
        if auth_user_id:
            bind_context(auth_user_id=mask_identifier(auth_user_id))

        if request.url.path.startswith("/webhooks/"):
            bind_context(webhook=True, signed="stripe-signature" in request.headers)

        return await call_next(request)
