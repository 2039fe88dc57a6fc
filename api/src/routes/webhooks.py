"""
GitHub webhook endpoints.
"""

from fastapi import APIRouter, Request, HTTPException, Header, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Any, Dict, Optional
import asyncio
import logging

from api.src.db.database import get_db
from api.src.models.pipeline import Repository, PipelineRun
from api.src.services.github import (
    verify_signature,
    parse_webhook_payload,
    build_trigger,
    clone_repository,
    get_head_sha,
    fetch_pipeline_config,
    cleanup_repo,
)
from api.src.services.pipeline_parser import parse_pipeline_dict, PipelineConfigError
from api.src.services.queue import enqueue_pipeline_run
from controller.src.errors import ConfigurationError
from controller.src.models.pipeline import Trigger, load_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

async def process_trigger(
    trigger: Trigger,
    webhook_data: Dict[str, Any],
    db: AsyncSession,
) -> Dict[str, Any]:
    """
    Load the repository's pipeline for a trigger and queue a run if the
    pipeline handles it. No run is created for unmatched triggers.
    """
    repo_path = None
    try:
        repo_path = await clone_repository(
            webhook_data["clone_url"],
            commit_sha=trigger.commit_sha,
            branch=trigger.branch,
        )

        if not trigger.commit_sha:
            head_sha = await asyncio.to_thread(get_head_sha, repo_path)
            trigger = trigger.model_copy(update={"commit_sha": head_sha})

        pipeline_config = await fetch_pipeline_config(repo_path)

        if not pipeline_config:
            logger.info(f"No pipeline config found in {webhook_data['repo_full_name']}")
            return {"status": "skipped", "reason": "No pipeline configuration found"}

        validated_config = parse_pipeline_dict(pipeline_config)
        pipeline = load_pipeline(validated_config)

    except PipelineConfigError as e:
        logger.error(f"Invalid pipeline config: {e}")
        return {"status": "error", "reason": str(e)}
    except Exception as e:
        logger.error(f"Failed to process repository: {e}")
        return {"status": "error", "reason": str(e)}
    finally:
        if repo_path:
            cleanup_repo(repo_path)

    if not pipeline.accepts(trigger):
        logger.info(f"Pipeline '{pipeline.name}' does not handle {trigger.type.value} on {trigger.branch}")
        return {
            "status": "skipped",
            "reason": f"Pipeline does not handle {trigger.type.value} trigger",
        }

    # Get or create repository
    repo_query = select(Repository).where(
        Repository.full_name == webhook_data["repo_full_name"]
    )
    result = await db.execute(repo_query)
    repository = result.scalar_one_or_none()

    if not repository:
        repository = Repository(
            name=webhook_data["repo_name"],
            full_name=webhook_data["repo_full_name"],
            clone_url=webhook_data["clone_url"],
        )
        db.add(repository)
        await db.flush()

    pipeline_run = PipelineRun(
        repository_id=repository.id,
        pipeline_name=pipeline.name,
        trigger_type=trigger.type.value,
        commit_sha=trigger.commit_sha,
        branch=trigger.branch,
        pr_number=trigger.pr_number,
        status="pending",
        triggered_by=trigger.actor,
        config=validated_config,
    )
    db.add(pipeline_run)
    await db.commit()

    await enqueue_pipeline_run(
        run_id=str(pipeline_run.id),
        config=validated_config,
        trigger=trigger.model_dump(mode="json"),
    )

    logger.info(f"Pipeline run {pipeline_run.id} created and queued")

    return {
        "status": "queued",
        "run_id": str(pipeline_run.id),
        "steps": len(pipeline.steps),
    }

@router.post("/github")
async def github_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    x_hub_signature_256: Optional[str] = Header(None),
    x_github_event: Optional[str] = Header(None),
):
    """
    Receive GitHub webhook events.
    """
    # Get raw body for signature verification
    body = await request.body()

    # An unsigned request only passes when no secret is configured
    if not verify_signature(body, x_hub_signature_256 or ""):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    if x_github_event == "ping":
        return {"status": "pong", "message": "Webhook configured successfully"}

    if x_github_event in ("push", "pull_request"):
        webhook_data = parse_webhook_payload(payload, x_github_event)

        try:
            trigger = build_trigger(webhook_data)
        except ConfigurationError as e:
            return {"status": "ignored", "event": x_github_event, "message": str(e)}

        if not trigger.commit_sha or payload.get("deleted"):
            logger.warning("No commit SHA in webhook payload")
            return {"status": "skipped", "reason": "No commit SHA"}

        return await process_trigger(trigger, webhook_data, db)

    # Ignore other events
    return {
        "status": "ignored",
        "event": x_github_event,
        "message": f"Event type '{x_github_event}' not handled"
    }
