# lead_engine/routes/health.py
"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from lead_engine.config import settings
from lead_engine.db.pool import db_health_check
from lead_engine.services.redis_client import fast_redis

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "lead-engine"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check: database pool, Redis (when the rate limiter needs it)
    and the credentials the scheduled jobs depend on.
    """
    checks = {}
    overall_ok = True

    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = bool(db_health.get("healthy", False))
        checks["database"] = {"ok": is_healthy, "latency_ms": round((time.time() - t0) * 1000, 1)}
        if "pool_stats" in db_health:
            checks["database"]["pool_stats"] = db_health["pool_stats"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    if settings.RATE_LIMIT_BACKEND == "redis":
        t0 = time.time()
        redis_ok = await fast_redis.ping()
        checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
        # The limiter fails open, so Redis being down degrades but does not block readiness
        if not redis_ok and not settings.RATE_LIMIT_FAIL_OPEN:
            overall_ok = False
    else:
        checks["redis"] = {"ok": True, "skipped": "rate limiter uses the in-memory backend"}

    checks["configuration"] = {
        "ok": True,
        "registry_credentials": bool(settings.REGISTRY_API_KEY),
        "email_provider": settings.email_configured(),
    }

    body = {"status": "ready" if overall_ok else "degraded", "checks": checks}
    return JSONResponse(status_code=200 if overall_ok else 503, content=body)
