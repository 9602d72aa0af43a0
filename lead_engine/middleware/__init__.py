"""
Middleware components for request processing.

This package contains middleware for:
- Request context (request ID, client IP behind trusted proxies)
- Rate limiting for the public read path
- CORS for the browser-facing endpoints
"""

from lead_engine.middleware.cors import CORSMiddleware
from lead_engine.middleware.rate_limit_dependencies import rate_limit_public
from lead_engine.middleware.rate_limit_headers import RateLimitHeadersMiddleware
from lead_engine.middleware.rate_limiter import rate_limiter
from lead_engine.middleware.request_context import RequestContextMiddleware

__all__ = [
    "CORSMiddleware",
    "RateLimitHeadersMiddleware",
    "RequestContextMiddleware",
    "rate_limit_public",
    "rate_limiter",
]
