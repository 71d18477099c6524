"""Admin API endpoints.

Cron lock inspection, emergency lock release and manual task triggers.
These endpoints should be protected in production (not implemented here).
"""

from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from bitredict.api.dependencies import get_coordinator
from bitredict.services.coordinator import JobCoordinator

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = structlog.get_logger(__name__)


class LockStatus(BaseModel):
    job_name: str
    locked_by: str
    locked_at: datetime
    expires_at: datetime
    execution_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ExecutionEntry(BaseModel):
    execution_id: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CronStatusResponse(BaseModel):
    active_locks: list[dict[str, Any]]
    summary_24h: dict[str, dict[str, Any]]
    checked_at: datetime


class ForceReleaseResponse(BaseModel):
    job_name: str
    released: bool


class TaskTriggerRequest(BaseModel):
    """Optional positional arguments, e.g. a cycle or slip id."""

    args: list[int] = Field(default_factory=list)


class TaskTriggerResponse(BaseModel):
    """Response from task trigger."""

    task_name: str
    task_id: str
    status: str
    message: str


@router.get("/cron/status", response_model=CronStatusResponse)
async def cron_status(coordinator: JobCoordinator = Depends(get_coordinator)):
    """Active locks and per-job execution counts over the last 24 hours."""
    return CronStatusResponse(**await coordinator.get_system_status())


@router.get("/cron/locks/{job_name}", response_model=LockStatus)
async def lock_status(job_name: str, coordinator: JobCoordinator = Depends(get_coordinator)):
    status = await coordinator.get_lock_status(job_name)
    if status is None:
        raise HTTPException(status_code=404, detail=f"No active lock for {job_name}")
    return LockStatus(**status)


@router.get("/cron/history/{job_name}", response_model=list[ExecutionEntry])
async def execution_history(
    job_name: str,
    limit: int = 10,
    coordinator: JobCoordinator = Depends(get_coordinator),
):
    if not 1 <= limit <= 500:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 500")
    return [
        ExecutionEntry(
            execution_id=str(entry.execution_id),
            status=entry.status,
            started_at=entry.started_at,
            completed_at=entry.completed_at,
            duration_ms=entry.duration_ms,
            error_message=entry.error_message,
            metadata=entry.metadata,
        )
        for entry in await coordinator.get_execution_history(job_name, limit)
    ]


@router.post("/cron/locks/{job_name}/force-release", response_model=ForceReleaseResponse)
async def force_release(job_name: str, coordinator: JobCoordinator = Depends(get_coordinator)):
    """Emergency release; the running execution is logged as force_released."""
    released = await coordinator.force_release_lock(job_name)
    if not released:
        raise HTTPException(status_code=404, detail=f"No lock held for {job_name}")
    return ForceReleaseResponse(job_name=job_name, released=True)


@router.post("/trigger-task/{task_name}", response_model=TaskTriggerResponse)
async def trigger_task(task_name: str, request: TaskTriggerRequest | None = None) -> TaskTriggerResponse:
    """
    Manually trigger a background task.

    See GET /api/admin/tasks for the available names. audit_cycle,
    reevaluate_cycle and fix_slip take one id in ``args``.
    """
    from bitredict.tasks import TRIGGERABLE_TASKS, celery_app

    if task_name not in TRIGGERABLE_TASKS:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown task: {task_name}. Available: {list(TRIGGERABLE_TASKS.keys())}",
        )
    args = request.args if request else []
    if task_name in ("audit_cycle", "reevaluate_cycle", "fix_slip") and len(args) != 1:
        raise HTTPException(status_code=400, detail=f"{task_name} takes exactly one id in args")

    celery_task_name = TRIGGERABLE_TASKS[task_name]
    try:
        result = celery_app.send_task(celery_task_name, args=args)
    except Exception as e:
        logger.error("task_trigger_failed", task_name=task_name, error=str(e))
        raise HTTPException(status_code=500, detail=f"Failed to trigger task: {str(e)}")

    logger.info(
        "task_triggered_manually",
        task_name=task_name,
        celery_task=celery_task_name,
        task_id=result.id,
        args=args,
    )
    return TaskTriggerResponse(
        task_name=task_name,
        task_id=result.id,
        status="submitted",
        message=f"Task {task_name} submitted successfully. Check Celery logs for progress.",
    )


@router.get("/tasks", response_model=dict[str, str])
async def list_tasks() -> dict[str, str]:
    """List all available tasks that can be triggered manually."""
    from bitredict.tasks import TRIGGERABLE_TASKS

    return TRIGGERABLE_TASKS
