"""
Security middleware for FastAPI:
- Security headers (HSTS, X-Frame-Options, etc.)
- Admin endpoint access logging
- Request/response audit logging with the principal id
"""

from datetime import datetime, timezone
import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.errors import Unauthenticated

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add security headers to all responses.

    The API only serves JSON, so the content policy denies everything.
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"

        return response


class SecurityLoggingMiddleware(BaseHTTPMiddleware):
    """Log access to administrative endpoints"""

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith("/api/admin"):
            client_ip = request.client.host if request.client else "unknown"
            logger.warning(
                f"Admin endpoint access: {request.method} {request.url.path} "
                f"from {client_ip}"
            )

        return await call_next(request)


class AuditLoggingMiddleware(BaseHTTPMiddleware):
    """
    Audit log of every request: method, path, principal and status.
    """

    async def dispatch(self, request: Request, call_next):
        client_ip = request.client.host if request.client else "unknown"

        user_id = None
        auth_header = request.headers.get("authorization")
        container = getattr(request.app.state, "container", None)
        if auth_header and container is not None:
            try:
                user_id = container.tokens.user_id_from_header(auth_header)
            except Unauthenticated:
                user_id = None

        logger.info(
            f"Request: {request.method} {request.url.path} | "
            f"User: {user_id} | IP: {client_ip} | "
            f"Time: {datetime.now(timezone.utc).isoformat()}"
        )

        response = await call_next(request)

        logger.info(
            f"Response: {response.status_code} for {request.method} {request.url.path} | "
            f"User: {user_id}"
        )

        return response
