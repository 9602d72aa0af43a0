"""
Structured logging setup for the lead engine.
JSON logs with consistent fields so job summaries can be queried downstream.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog over stdlib logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    structlog.configure(
        processors=[
            # request_id / job name bound via structlog.contextvars
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _drop_empty_values,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("psycopg.pool").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _drop_empty_values(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Remove None-valued keys so optional fields don't clutter every line."""
    return {key: value for key, value in event_dict.items() if value is not None}


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)


def log_job_summary(job: str, summary: dict[str, Any], duration_ms: float) -> None:
    """Log the end of a job run with its counts."""
    logger = get_logger("jobs")

    log_data = {
        "job": job,
        "duration_ms": round(duration_ms, 2),
        **{k: v for k, v in summary.items() if k != "errors"},
    }
    errors = summary.get("errors") or []
    if errors:
        log_data["error_count"] = len(errors)
        logger.warning("Job completed with errors", **log_data)
    else:
        logger.info("Job completed", **log_data)
