"""
Daily sweep entry points and follow-up task completion.

Every sweep is idempotent for the same day, so a scheduler retry or a manual
trigger on top of the worker loop is harmless.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from lead_engine.auth.verify import require_job_token
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.services.followup_service import followup_service
from lead_engine.services.sweep_service import sweep_service

logger = get_logger(__name__)

router = APIRouter(tags=["sweeps"], dependencies=[Depends(require_job_token)])


@router.post("/sweeps/followups/overdue")
async def sweep_overdue_followups():
    return await sweep_service.mark_overdue_followups()


@router.post("/sweeps/trials/expire")
async def sweep_expired_trials():
    return await sweep_service.expire_trials()


@router.post("/sweeps/trials/warn")
async def sweep_trial_warnings():
    return await sweep_service.send_trial_warnings()


@router.post("/sweeps/daily")
async def sweep_daily():
    return await sweep_service.run_daily()


@router.post("/followups/{task_id}/done")
async def complete_followup(task_id: UUID):
    task = await followup_service.mark_done(str(task_id))
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Follow-up task not found")
    logger.info("Follow-up task completed", task_id=task.id, contractor_id=task.contractor_id)
    return task
