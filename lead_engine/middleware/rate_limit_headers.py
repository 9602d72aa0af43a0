"""
Rate Limit Headers Middleware - add rate limit info to responses.

Reads request.state.rate_limit_info (set by rate_limit_public) and adds:
- X-RateLimit-Limit
- X-RateLimit-Remaining
- Retry-After (only when refused)
- X-RateLimit-Reset (unix timestamp, only when retry_after is known)

Responses of routes without a rate limit get no headers.
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware


class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)

        rate_limit_info = getattr(request.state, "rate_limit_info", None)
        if not rate_limit_info:
            return response

        if "limit" in rate_limit_info:
            response.headers["X-RateLimit-Limit"] = str(rate_limit_info["limit"])
        if "remaining" in rate_limit_info:
            response.headers["X-RateLimit-Remaining"] = str(rate_limit_info["remaining"])

        retry_after = rate_limit_info.get("retry_after")
        if retry_after is not None:
            if not rate_limit_info.get("allowed", True):
                response.headers["Retry-After"] = str(retry_after)
            response.headers["X-RateLimit-Reset"] = str(int(time.time()) + retry_after)

        return response
