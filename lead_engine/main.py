# lead_engine/main.py
"""
FastAPI application: lifespan owns the database pool and the Redis client.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from lead_engine.config import settings
from lead_engine.db.pool import db_pool
from lead_engine.infrastructure.observability.logging import get_logger, setup_logging
from lead_engine.middleware.cors import CORSMiddleware
from lead_engine.middleware.rate_limit_headers import RateLimitHeadersMiddleware
from lead_engine.middleware.request_context import RequestContextMiddleware
from lead_engine.routes import campaigns, health, opportunities, sweeps, sync, tracking
from lead_engine.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        if fast_redis.enabled:
            logger.info("Initializing Redis connection")
            await fast_redis.initialize()
            startup_tasks.append("redis")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up any successfully initialized services in reverse order
        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    logger.info("Application shutting down")

    shutdown_errors = []

    try:
        logger.info("Closing Redis connection")
        await fast_redis.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    # Close database pool last (may have active connections)
    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="GovCon Lead Engine",
        description="Registry sync, lead scoring, outreach dispatch and pipeline tracking",
        version="0.1.0",
        lifespan=lifespan if use_lifespan else None,
    )

    app.include_router(health.router)
    app.include_router(sync.router)
    app.include_router(opportunities.router)
    app.include_router(tracking.router)
    app.include_router(campaigns.router)
    app.include_router(sweeps.router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log HTTP requests with timing."""
        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000

        logger.info(
            "HTTP request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(process_time, 2),
        )
        return response

    # Last added runs first: request context is bound before timing and rate limit headers
    app.add_middleware(RateLimitHeadersMiddleware)
    app.add_middleware(CORSMiddleware, allowed_origins=settings.CORS_ALLOWED_ORIGINS)
    app.add_middleware(RequestContextMiddleware)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
