"""
RequestContext Middleware - request tracing for every request.

Adds to request.state:
- request_id: UUID for tracing this request
- ip_address: client IP (X-Forwarded-For honoured only from TRUSTED_PROXIES)
- user_agent: client user agent string

request_id is also bound into structlog's contextvars so every log line
emitted while handling the request carries it, and it is echoed back in the
X-Request-ID response header.

Request.state namespace convention:
- request_id, ip_address, user_agent: set here
- rate_limit_info: set by rate limit dependencies
"""

import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from lead_engine.config import settings
from lead_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id

        ip_address = extract_client_ip(request)
        request.state.ip_address = ip_address

        user_agent = request.headers.get("user-agent")
        request.state.user_agent = user_agent

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            logger.debug(
                "Request started",
                method=request.method,
                path=request.url.path,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers["X-Request-ID"] = request_id
        return response


def extract_client_ip(request: Request) -> str | None:
    """
    Client IP with proxy spoofing protection.

    X-Forwarded-For is only trusted when the direct peer is a configured
    proxy; otherwise a caller could rotate the header to dodge the limiter.
    """
    peer = request.client.host if request.client else None
    if peer and peer in settings.TRUSTED_PROXIES:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            # "client, proxy1, proxy2"
            ip_address = forwarded_for.split(",")[0].strip()
            if ip_address:
                logger.debug("Using X-Forwarded-For from trusted proxy", proxy_ip=peer, client_ip=ip_address)
                return ip_address
    return peer
