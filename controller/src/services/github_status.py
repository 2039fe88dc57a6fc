"""
Publish the final run status as a GitHub commit status.
"""

import logging
from typing import Optional

import httpx

from controller.src.config import get_settings
from controller.src.models.pipeline import Run, RunStatus, StepOutcome
from controller.src.services.status_reporter import RunReporter

logger = logging.getLogger(__name__)

STATE_BY_STATUS = {
    RunStatus.SUCCEEDED: "success",
    RunStatus.FAILED: "failure",
    RunStatus.CANCELLED: "error",
}

class GitHubStatusReporter(RunReporter):
    """Sets a pass/fail status on the commit that triggered the run."""

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        settings = get_settings()
        self._token = token if token is not None else settings.github_token
        self._api_url = (api_url or settings.github_api_url).rstrip("/")
        self._client = client or httpx.Client(timeout=10.0)

    def report(self, run: Run):
        trigger = run.trigger
        state = STATE_BY_STATUS.get(run.status)

        if state is None or not trigger.repository or not trigger.commit_sha:
            return
        if not self._token:
            logger.debug(f"No GitHub token configured, not reporting run {run.id}")
            return

        failed = [r.step_name for r in run.step_results if r.outcome != StepOutcome.SUCCESS]
        if run.status == RunStatus.SUCCEEDED:
            description = f"{len(run.step_results)} steps passed"
        elif failed:
            description = f"{run.status.value} at '{failed[-1]}'"
        else:
            description = run.status.value

        try:
            response = self._client.post(
                f"{self._api_url}/repos/{trigger.repository}/statuses/{trigger.commit_sha}",
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Accept": "application/vnd.github+json",
                },
                json={
                    "state": state,
                    "context": f"stepgate/{run.pipeline_name}",
                    "description": description[:140],
                },
            )
            response.raise_for_status()
            logger.info(f"Reported {state} for {trigger.repository}@{trigger.commit_sha[:7]}")
        except httpx.HTTPError as e:
            logger.warning(f"Failed to report status for run {run.id}: {e}")
