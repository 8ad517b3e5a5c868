"""
Agent Routes
============
Invocation trigger, mission intelligence (tuning), queue operations
"""

from fastapi import APIRouter, Depends, HTTPException, Body
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional, Dict, Any
from uuid import UUID
import logging

from leadagent.database import get_db
from leadagent.exceptions import (
    TaskFetchError,
    MissionNotFoundError,
    MissionNotRunnableError,
    TaskNotFoundError,
    ContactNotFoundError,
    RetryNotAllowedError
)
from leadagent.schemas import (
    TaskResponse,
    RunBatchResponse,
    MissionTriggerResponse,
    QuotaStatusResponse,
    ContactOutcomeRequest,
    ContactOutcomeResponse
)
from leadagent.services.task_engine import run_agent_batch
from leadagent.services.mission_tuner import MissionTuner
from leadagent.services.mission_service import MissionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/agent", tags=["Agent"])


# ============================================
# Invocation trigger
# ============================================

@router.api_route("/run", methods=["GET", "POST"], response_model=RunBatchResponse)
async def run_agent(db: AsyncSession = Depends(get_db)):
    """
    Process one batch of pending tasks.

    Called by cron/the scheduler or on demand. A failure to fetch the batch
    is the only error surfaced here; per-task failures are stored on the task.
    """
    try:
        return await run_agent_batch(db)
    except TaskFetchError as e:
        logger.error(f"❌ Agent run aborted: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})


# ============================================
# Mission intelligence
# ============================================

@router.get("/missions/{mission_id}/intelligence")
async def get_mission_intelligence(
    mission_id: UUID,
    db: AsyncSession = Depends(get_db)
):
    """Metrics for the last 24h plus recommended parameter changes"""
    tuner = MissionTuner(db)
    try:
        return await tuner.get_intelligence(mission_id)
    except MissionNotFoundError:
        raise HTTPException(status_code=404, detail="Mission not found")


@router.patch("/missions/{mission_id}/intelligence")
async def patch_mission_intelligence(
    mission_id: UUID,
    body: Optional[Dict[str, Any]] = Body(None),
    db: AsyncSession = Depends(get_db)
):
    """
    Apply an operator-confirmed patch.

    Accepts {"updates": {...}} or the bare map. Out-of-range values are
    clamped, never rejected. Pending tasks of the mission are rewritten.
    """
    tuner = MissionTuner(db)
    try:
        return await tuner.apply_patch(mission_id, body or {})
    except MissionNotFoundError:
        raise HTTPException(status_code=404, detail="Mission not found")


# ============================================
# Queue operations
# ============================================

@router.post("/missions/{mission_id}/trigger", response_model=MissionTriggerResponse)
async def trigger_mission(
    mission_id: UUID,
    db: AsyncSession = Depends(get_db)
):
    """Seed the mission pipeline with its first task"""
    service = MissionService(db)
    try:
        task = await service.trigger_mission(mission_id)
    except MissionNotFoundError:
        raise HTTPException(status_code=404, detail="Mission not found")
    except MissionNotRunnableError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return MissionTriggerResponse(task_id=task.id, task_type=task.type)


@router.get("/missions/{mission_id}/tasks", response_model=List[TaskResponse])
async def list_mission_tasks(
    mission_id: UUID,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    """List a mission's tasks, newest first"""
    service = MissionService(db)
    try:
        return await service.list_tasks(mission_id, status)
    except MissionNotFoundError:
        raise HTTPException(status_code=404, detail="Mission not found")


@router.post("/tasks/{task_id}/retry", response_model=TaskResponse)
async def retry_task(
    task_id: UUID,
    db: AsyncSession = Depends(get_db)
):
    """Re-queue a failed task as a new pending task"""
    service = MissionService(db)
    try:
        return await service.retry_task(task_id)
    except TaskNotFoundError:
        raise HTTPException(status_code=404, detail="Task not found")
    except RetryNotAllowedError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/quota", response_model=QuotaStatusResponse)
async def get_quota_status(
    organization_id: UUID,
    db: AsyncSession = Depends(get_db)
):
    """Today's usage counters against the active mission limits"""
    service = MissionService(db)
    return await service.get_quota_status(organization_id)


@router.post("/contacts/{contact_id}/outcome", response_model=ContactOutcomeResponse)
async def report_contact_outcome(
    contact_id: UUID,
    request: ContactOutcomeRequest,
    db: AsyncSession = Depends(get_db)
):
    """Delivery collaborator reports sent / failed / blocked"""
    service = MissionService(db)
    try:
        contact = await service.report_contact_outcome(contact_id, request.status)
    except ContactNotFoundError:
        raise HTTPException(status_code=404, detail="Contact not found")

    return ContactOutcomeResponse(id=contact.id, status=contact.status, lead_id=contact.lead_id)
