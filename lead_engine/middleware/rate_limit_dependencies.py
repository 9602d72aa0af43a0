"""
Rate limit dependency for public endpoints.

Usage:
    @router.get("/opportunities")
    async def list_opportunities(
        request: Request,
        _rate: None = Depends(rate_limit_public),
    ):
        ...
"""

from fastapi import HTTPException, Request, status

from lead_engine.config import settings
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.middleware.rate_limiter import rate_limiter

logger = get_logger(__name__)


async def rate_limit_public(request: Request) -> None:
    """
    Per-IP rate limit for unauthenticated reads.

    Raises:
        HTTPException: 429 if the caller's IP is over its window
    """
    if not settings.RATE_LIMIT_ENABLED:
        return

    ip_address = getattr(request.state, "ip_address", None) or (request.client.host if request.client else None)
    if not ip_address:
        logger.warning("Rate limit check skipped - no IP address", path=request.url.path)
        return

    allowed, info = await rate_limiter.check_ip_rate_limit(ip_address)
    request.state.rate_limit_info = info

    if not allowed:
        logger.warning(
            "IP rate limit exceeded",
            ip_address=ip_address,
            limit=info["limit"],
            retry_after=info["retry_after"],
            path=request.url.path,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "message": f"Too many requests from your IP. Try again in {info['retry_after']} seconds.",
                "limit": info["limit"],
                "retry_after": info["retry_after"],
            },
            headers={"Retry-After": str(info["retry_after"])},
        )
