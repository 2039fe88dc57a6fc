"""
Step executors - the things that actually run a step's command.

Every executor implements `execute(step, environment) -> ExecutionResult`.
The runner never looks inside the command; an executor that cannot start a
command reports exit code 127 rather than raising.
"""

import logging
import os
import signal
import subprocess
import time
from typing import Any, Dict, Mapping, Optional

from kubernetes.client.rest import ApiException

from controller.src.config import get_settings
from controller.src.errors import ConfigurationError
from controller.src.k8s import (
    WORKSPACE_MOUNT,
    get_batch_api,
    build_job,
    build_workspace_claim,
    create_workspace_claim,
    delete_job,
    delete_workspace_claim,
    get_job_status,
)
from controller.src.models.pipeline import ExecutionResult, PipelineJob, Run, RunStatus, Step
from controller.src.services.log_collector import collect_logs, get_exit_code
from controller.src.services.runner import PipelineRunner
from controller.src.services.status_reporter import update_run_status

logger = logging.getLogger(__name__)
settings = get_settings()

EXIT_NOT_FOUND = 127
EXIT_TIMED_OUT = 124
MAX_OUTPUT_LINES = 1000

def resolve_command(step: Step, action_commands: Mapping[str, str]) -> Optional[str]:
    """Shell command for a step; None when its action has no local equivalent."""
    if step.run:
        return step.run
    return action_commands.get(step.action)

def tail(output: str, lines: int = MAX_OUTPUT_LINES) -> str:
    parts = output.splitlines()
    if len(parts) <= lines:
        return output
    return "\n".join(parts[-lines:])

class Executor:
    """Run-step interface."""

    def execute(self, step: Step, environment: Dict[str, str]) -> ExecutionResult:
        raise NotImplementedError

    def release(self, run_id: str):
        """Free what the executor holds for a finished run."""

class LocalShellExecutor(Executor):
    """Runs steps with /bin/sh on the controller host."""

    def __init__(
        self,
        action_commands: Optional[Mapping[str, str]] = None,
        default_timeout: Optional[int] = None,
        shell: str = "/bin/sh",
    ):
        self._action_commands = dict(action_commands if action_commands is not None else settings.action_commands)
        self._default_timeout = default_timeout
        self._shell = shell

    def execute(self, step: Step, environment: Dict[str, str]) -> ExecutionResult:
        command = resolve_command(step, self._action_commands)
        if command is None:
            return ExecutionResult(
                exit_code=EXIT_NOT_FOUND,
                output=f"No command configured for action '{step.uses}'",
            )

        cwd = environment.get("STEPGATE_WORKSPACE")
        if cwd:
            os.makedirs(cwd, exist_ok=True)

        timeout = step.timeout or self._default_timeout
        start_time = time.monotonic()
        timed_out = False

        try:
            # Own process group so a timeout kills the whole command tree
            process = subprocess.Popen(
                [self._shell, "-c", command],
                cwd=cwd,
                env={**os.environ, **environment},
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            return ExecutionResult(
                exit_code=EXIT_NOT_FOUND,
                duration_ms=int((time.monotonic() - start_time) * 1000),
                output=f"Failed to start step: {e}",
            )

        try:
            stdout, _ = process.communicate(timeout=timeout)
            exit_code = process.returncode
        except subprocess.TimeoutExpired:
            os.killpg(process.pid, signal.SIGKILL)
            stdout, _ = process.communicate()
            exit_code = EXIT_TIMED_OUT
            timed_out = True

        output = tail(stdout.decode("utf-8", errors="replace"))
        if timed_out:
            output += f"\nStep timed out after {timeout}s"

        return ExecutionResult(
            exit_code=exit_code,
            duration_ms=int((time.monotonic() - start_time) * 1000),
            output=output,
            timed_out=timed_out,
        )

class KubernetesJobExecutor(Executor):
    """Runs each step as a Kubernetes Job."""

    def __init__(
        self,
        action_commands: Optional[Mapping[str, str]] = None,
        image: Optional[str] = None,
        poll_interval: float = 2.0,
    ):
        self._action_commands = dict(action_commands if action_commands is not None else settings.action_commands)
        self._image = image or settings.default_image
        self._poll_interval = poll_interval
        # run id -> workspace claim name
        self._claims: Dict[str, str] = {}

    def execute(self, step: Step, environment: Dict[str, str]) -> ExecutionResult:
        command = resolve_command(step, self._action_commands)
        if command is None:
            return ExecutionResult(
                exit_code=EXIT_NOT_FOUND,
                output=f"No command configured for action '{step.uses}'",
            )

        timeout = step.timeout or settings.job_timeout
        run_id = environment.get("STEPGATE_RUN_ID", "adhoc")
        env_vars = {**environment, "STEPGATE_WORKSPACE": WORKSPACE_MOUNT}
        job = build_job(
            run_id=run_id,
            step_order=int(environment.get("STEPGATE_STEP_ORDER", 0)),
            step_name=step.name,
            image=step.image or self._image,
            command=command,
            env_vars=env_vars,
            timeout=timeout,
            workspace_claim=self.workspace_claim(run_id),
        )
        job_name = job.metadata.name
        start_time = time.monotonic()

        self._create_job(job)
        status = self.wait_for_job(job_name, timeout)

        logs = tail(collect_logs(job_name))
        duration_ms = int((time.monotonic() - start_time) * 1000)

        if status == "timeout":
            delete_job(job_name)
            return ExecutionResult(
                exit_code=EXIT_TIMED_OUT,
                duration_ms=duration_ms,
                output=logs + f"\nStep timed out after {timeout}s",
                timed_out=True,
            )

        exit_code = get_exit_code(job_name)
        if exit_code is None:
            exit_code = 0 if status == "succeeded" else 1

        return ExecutionResult(exit_code=exit_code, duration_ms=duration_ms, output=logs)

    def workspace_claim(self, run_id: str) -> str:
        """The run's /workspace volume claim, created before its first step."""
        claim_name = self._claims.get(run_id)
        if claim_name is None:
            claim = build_workspace_claim(run_id)
            create_workspace_claim(claim)
            claim_name = self._claims[run_id] = claim.metadata.name
        return claim_name

    def release(self, run_id: str):
        claim_name = self._claims.pop(run_id, None)
        if claim_name:
            delete_workspace_claim(claim_name)

    def _create_job(self, job):
        batch_v1 = get_batch_api()
        job_name = job.metadata.name
        logger.info(f"Creating job {job_name}")

        try:
            batch_v1.create_namespaced_job(
                namespace=settings.k8s_namespace,
                body=job,
            )
        except ApiException as e:
            if e.status == 409:
                # Left over from an earlier attempt of the same run
                logger.warning(f"Job {job_name} already exists, deleting...")
                delete_job(job_name)
                time.sleep(2)
                batch_v1.create_namespaced_job(
                    namespace=settings.k8s_namespace,
                    body=job,
                )
            else:
                raise

    def wait_for_job(self, job_name: str, timeout: int) -> str:
        """
        Wait for a job to complete.
        Returns 'succeeded', 'failed' or 'timeout'.
        """
        batch_v1 = get_batch_api()
        start_time = time.monotonic()

        while True:
            if time.monotonic() - start_time > timeout:
                logger.error(f"Job {job_name} timed out after {timeout}s")
                return "timeout"

            try:
                job = batch_v1.read_namespaced_job(
                    name=job_name,
                    namespace=settings.k8s_namespace,
                )
            except ApiException as e:
                logger.error(f"Error checking job status: {e}")
                time.sleep(self._poll_interval * 2)
                continue

            status = get_job_status(job)
            if status in ("succeeded", "failed", "timeout"):
                return status

            time.sleep(self._poll_interval)

def get_executor(name: Optional[str] = None) -> Executor:
    """Executor selected by settings.executor."""
    name = name or settings.executor
    if name == "local":
        return LocalShellExecutor(default_timeout=settings.job_timeout)
    if name == "kubernetes":
        return KubernetesJobExecutor()
    raise ConfigurationError(f"Unknown executor '{name}'")

def execute_pipeline(job_data: Dict[str, Any], runner: PipelineRunner) -> Optional[Run]:
    """
    Execute a queued pipeline run.
    Returns the finished Run, or None if the job could not be turned into one.
    """
    job = PipelineJob.model_validate(job_data)
    logger.info(f"Starting pipeline run {job.run_id}")

    try:
        run = runner.run(job.config, job.trigger, run_id=job.run_id)
    except ConfigurationError as e:
        logger.error(f"Pipeline run {job.run_id} rejected: {e}")
        update_run_status(job.run_id, "error")
        return None

    if run.status == RunStatus.SKIPPED:
        update_run_status(job.run_id, RunStatus.SKIPPED.value)

    return run
