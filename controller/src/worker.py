"""
Queue worker - pulls runs from Redis and executes them one at a time.
"""

import logging
import redis
import json
import time
from typing import Optional, Dict, Any

from controller.src.config import get_settings
from controller.src.services.executor import execute_pipeline, get_executor
from controller.src.services.github_status import GitHubStatusReporter
from controller.src.services.runner import PipelineRunner
from controller.src.services.status_reporter import DatabaseReporter, RunReporter

logger = logging.getLogger(__name__)
settings = get_settings()

PIPELINE_QUEUE = "stepgate:jobs"
PIPELINE_STATUS = "stepgate:status"
PIPELINE_CANCEL = "stepgate:cancel"

def get_redis_client() -> redis.Redis:
    return redis.from_url(settings.redis_url, decode_responses=True)

def get_next_job(client: redis.Redis) -> Optional[Dict[str, Any]]:
    """Pull next job from Redis queue."""
    result = client.brpop(PIPELINE_QUEUE, timeout=5)
    if result:
        _, job_data = result
        return json.loads(job_data)
    return None

class RedisStatusReporter(RunReporter):
    """Mirrors run status into the live status hash read by the API."""

    def __init__(self, client: redis.Redis):
        self._client = client

    def run_started(self, run):
        self._client.hset(PIPELINE_STATUS, run.id, run.status.value)

    def step_recorded(self, run, result):
        self._client.hset(PIPELINE_STATUS, run.id, f"{run.status.value}:{run.current_index}/{len(run.steps)}")

    def report(self, run):
        self._client.hset(PIPELINE_STATUS, run.id, run.status.value)
        self._client.srem(PIPELINE_CANCEL, run.id)

def build_runner(client: redis.Redis) -> PipelineRunner:
    """Runner wired to the configured executor, reporters and Redis cancel requests."""
    return PipelineRunner(
        executor=get_executor(),
        reporters=[
            DatabaseReporter(),
            RedisStatusReporter(client),
            GitHubStatusReporter(),
        ],
        secrets=settings.secrets,
        cancel_check=lambda run_id: bool(client.sismember(PIPELINE_CANCEL, run_id)),
        workspace_root=settings.workspace_root,
    )

def worker_loop(client: redis.Redis, runner: PipelineRunner):
    """Main worker loop."""
    logger.info("Worker started, waiting for jobs...")

    while True:
        try:
            job = get_next_job(client)

            if job:
                run_id = job.get("run_id", "unknown")
                logger.info(f"Received job for run {run_id}")

                try:
                    execute_pipeline(job, runner)
                except Exception as e:
                    logger.exception(f"Failed to execute pipeline {run_id}: {e}")

        except KeyboardInterrupt:
            logger.info("Worker shutting down...")
            break
        except Exception as e:
            logger.exception(f"Worker error: {e}")
            time.sleep(5)

def run_worker():
    """Entry point for worker."""
    client = get_redis_client()
    try:
        worker_loop(client, build_runner(client))
    finally:
        client.close()
