from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel

from api.src.db.database import get_db
from api.src.models.pipeline import PipelineRun, PipelineStep, Repository
from api.src.models.run import PipelineRunResponse, RepositoryResponse
from api.src.routes.webhooks import process_trigger
from api.src.services.github import repo_full_name_from_url
from api.src.services.queue import get_run_status, request_cancel
from controller.src.models.pipeline import Trigger, TriggerType

router = APIRouter(prefix="/pipelines", tags=["pipelines"])

TERMINAL_STATUSES = {"succeeded", "failed", "cancelled", "skipped", "error"}

class ManualTriggerRequest(BaseModel):
    repository_url: str
    branch: str = "main"
    commit_sha: Optional[str] = None
    triggered_by: Optional[str] = None

@router.post("/trigger")
async def trigger_pipeline(request: ManualTriggerRequest, db: AsyncSession = Depends(get_db)):
    """Start a run directly, as a reusable workflow call would."""
    full_name = repo_full_name_from_url(request.repository_url)
    trigger = Trigger(
        type=TriggerType.MANUAL_CALL,
        branch=request.branch,
        commit_sha=request.commit_sha,
        repository=full_name,
        clone_url=request.repository_url,
        actor=request.triggered_by,
    )
    webhook_data = {
        "repo_name": full_name.split("/")[-1],
        "repo_full_name": full_name,
        "clone_url": request.repository_url,
    }
    return await process_trigger(trigger, webhook_data, db)

@router.get("/runs", response_model=List[PipelineRunResponse])
async def list_runs(
    limit: int = 20,
    offset: int = 0,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    """List all pipeline runs."""
    query = (
        select(PipelineRun)
        .options(selectinload(PipelineRun.steps))
        .order_by(PipelineRun.created_at.desc())
    )

    if status:
        query = query.where(PipelineRun.status == status)

    query = query.limit(limit).offset(offset)

    result = await db.execute(query)
    return result.scalars().all()

async def load_run(run_id: UUID, db: AsyncSession) -> PipelineRun:
    query = (
        select(PipelineRun)
        .options(selectinload(PipelineRun.steps))
        .where(PipelineRun.id == run_id)
    )
    result = await db.execute(query)
    run = result.scalar_one_or_none()

    if not run:
        raise HTTPException(status_code=404, detail="Pipeline run not found")
    return run

@router.get("/runs/{run_id}", response_model=PipelineRunResponse)
async def get_run(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get a specific pipeline run."""
    return await load_run(run_id, db)

@router.get("/runs/{run_id}/status")
async def get_run_status_endpoint(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get real-time status of a pipeline run."""
    run = await load_run(run_id, db)

    # Live status from the controller, ahead of the database while a step runs
    redis_status = await get_run_status(str(run_id))

    return {
        "run_id": str(run_id),
        "db_status": run.status,
        "live_status": redis_status,
        "current_index": run.current_index,
        "steps": [
            {
                "name": step.name,
                "outcome": step.outcome,
                "order": step.step_order,
            }
            for step in sorted(run.steps, key=lambda s: s.step_order)
        ]
    }

@router.post("/runs/{run_id}/cancel")
async def cancel_run(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Cancel a run. The step in flight finishes and is recorded as aborted."""
    run = await load_run(run_id, db)

    if run.status in TERMINAL_STATUSES:
        raise HTTPException(status_code=409, detail=f"Pipeline run already {run.status}")

    await request_cancel(str(run_id))
    return {"run_id": str(run_id), "status": "cancel_requested"}

@router.get("/runs/{run_id}/logs")
async def get_run_logs(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get logs for every executed step of a pipeline run."""
    run = await load_run(run_id, db)

    query = (
        select(PipelineStep)
        .where(PipelineStep.run_id == run.id)
        .order_by(PipelineStep.step_order)
    )
    result = await db.execute(query)
    steps = result.scalars().all()

    return {
        "run_id": str(run_id),
        "status": run.status,
        "steps": [
            {
                "name": step.name,
                "outcome": step.outcome,
                "exit_code": step.exit_code,
                "duration_ms": step.duration_ms,
                "logs": step.logs,
            }
            for step in steps
        ]
    }

@router.get("/repositories", response_model=List[RepositoryResponse])
async def list_repositories(db: AsyncSession = Depends(get_db)):
    """List all registered repositories."""
    query = select(Repository).order_by(Repository.created_at.desc())
    result = await db.execute(query)
    return result.scalars().all()

@router.get("/stats")
async def get_pipeline_stats(db: AsyncSession = Depends(get_db)):
    """Get pipeline statistics."""
    status_query = (
        select(PipelineRun.status, func.count(PipelineRun.id))
        .group_by(PipelineRun.status)
    )
    result = await db.execute(status_query)
    status_counts = {row[0]: row[1] for row in result.all()}

    trigger_query = (
        select(PipelineRun.trigger_type, func.count(PipelineRun.id))
        .group_by(PipelineRun.trigger_type)
    )
    result = await db.execute(trigger_query)
    trigger_counts = {row[0]: row[1] for row in result.all()}

    repo_count_query = select(func.count(Repository.id))
    result = await db.execute(repo_count_query)
    repo_count = result.scalar()

    return {
        "repositories": repo_count,
        "runs": status_counts,
        "triggers": trigger_counts,
        "total_runs": sum(status_counts.values()),
    }
