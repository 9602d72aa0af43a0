"""
verify.py
---------
Purpose:
    Shared-secret guard for job trigger endpoints (/sync, /campaigns, /sweeps,
    /followups).

Notes:
    - Callers send `Authorization: Bearer <JOB_TRIGGER_TOKEN>`.
    - When JOB_TRIGGER_TOKEN is unset the guard is disabled (local development).
    - Comparison is constant time.
"""

import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from lead_engine.config import settings
from lead_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_security = HTTPBearer(auto_error=False)


def verify_job_token(token: str | None) -> None:
    expected = settings.JOB_TRIGGER_TOKEN
    if not expected:
        return
    if not token or not hmac.compare_digest(token.encode(), expected.encode()):
        logger.warning("Rejected job trigger with invalid token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid job trigger token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_job_token(credentials: HTTPAuthorizationCredentials | None = Depends(_security)) -> None:
    verify_job_token(credentials.credentials if credentials else None)
