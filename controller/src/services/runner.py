"""
Pipeline runner - executes a run's steps in declaration order and stops at
the first failing step.
"""

import logging
import os
import re
import shutil
import threading
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union, TYPE_CHECKING

from controller.src.errors import ConfigurationError, RunStateError
from controller.src.models.pipeline import (
    ExecutionResult,
    PipelineDefinition,
    Run,
    RunStatus,
    Step,
    StepOutcome,
    StepResult,
    Trigger,
    load_pipeline,
)

if TYPE_CHECKING:
    from controller.src.services.executor import Executor
    from controller.src.services.status_reporter import RunReporter

logger = logging.getLogger(__name__)

SECRET_REFERENCE = re.compile(r"^\$\{\{\s*secrets\.(\w+)\s*\}\}$")

class RunRegistry:
    """In-flight runs by id, plus a bounded history of finished ones."""

    def __init__(self, history_limit: int = 100):
        self._lock = threading.Lock()
        self._active: Dict[str, Run] = {}
        self._history: "OrderedDict[str, Run]" = OrderedDict()
        self._history_limit = history_limit

    def register(self, run: Run):
        with self._lock:
            if run.id in self._active:
                raise RunStateError(f"Run {run.id} is already in progress")
            self._history.pop(run.id, None)
            self._active[run.id] = run

    def get(self, run_id: str) -> Optional[Run]:
        with self._lock:
            return self._active.get(run_id) or self._history.get(run_id)

    def archive(self, run: Run):
        with self._lock:
            self._active.pop(run.id, None)
            self._history[run.id] = run
            while len(self._history) > self._history_limit:
                self._history.popitem(last=False)

    def active(self) -> List[Run]:
        with self._lock:
            return list(self._active.values())

    def history(self) -> List[Run]:
        with self._lock:
            return list(self._history.values())

class PipelineRunner:
    """
    Drives runs of a pipeline through an executor.

    Step failures and cancellations are recorded on the Run; only a malformed
    pipeline or an unrecognised trigger raises (ConfigurationError, from start).
    """

    def __init__(
        self,
        executor: "Executor",
        reporters: Optional[Sequence["RunReporter"]] = None,
        registry: Optional[RunRegistry] = None,
        secrets: Optional[Mapping[str, str]] = None,
        cancel_check: Optional[Callable[[str], bool]] = None,
        workspace_root: Optional[str] = None,
    ):
        self.executor = executor
        self.reporters = list(reporters or [])
        self.registry = registry or RunRegistry()
        self._secrets = dict(secrets or {})
        self._cancel_check = cancel_check
        self._workspace_root = workspace_root

    def start(
        self,
        pipeline: Union[PipelineDefinition, Mapping[str, Any]],
        trigger: Union[Trigger, Mapping[str, Any]],
        run_id: Optional[str] = None,
    ) -> Optional[Run]:
        """
        Create a Run if the pipeline handles this trigger.
        Returns None (no Run created) when the trigger does not match.
        """
        pipeline = load_pipeline(pipeline)
        trigger = coerce_trigger(trigger)

        if not pipeline.accepts(trigger):
            logger.info(f"Pipeline '{pipeline.name}' does not handle {trigger.type.value} trigger, skipping")
            return None

        fields = {"id": run_id} if run_id else {}
        run = Run(
            pipeline_name=pipeline.name,
            trigger=trigger,
            steps=pipeline.steps,
            env=dict(pipeline.env),
            **fields,
        )
        self.registry.register(run)

        logger.info(f"Starting run {run.id} of '{pipeline.name}' with {len(run.steps)} steps")
        run.status = RunStatus.RUNNING
        run.started_at = datetime.utcnow()
        self._notify("run_started", run)

        if not run.steps:
            self._finish(run, RunStatus.SUCCEEDED)

        return run

    def step(self, run: Run) -> Optional[StepOutcome]:
        """
        Execute the step at run.current_index.
        Returns its outcome, or None if the run was cancelled before it started.
        """
        if run.is_terminal:
            raise RunStateError(f"Run {run.id} is already {run.status.value}")
        if run.status != RunStatus.RUNNING:
            raise RunStateError(f"Run {run.id} has not been started")

        if self._cancel_requested(run):
            logger.info(f"Run {run.id} cancelled before step {run.current_index}")
            self._finish(run, RunStatus.CANCELLED)
            return None

        index = run.current_index
        step = run.steps[index]
        environment = self.build_environment(run, step)

        logger.info(f"Executing step {index}: {step.name}")
        try:
            result = self.executor.execute(step, environment)
        except Exception as e:
            logger.exception(f"Step {index} ({step.name}) could not be started")
            result = ExecutionResult(exit_code=-1, output=str(e))

        if self._cancel_requested(run):
            outcome = StepOutcome.ABORTED
        elif result.exit_code == 0 and not result.timed_out:
            outcome = StepOutcome.SUCCESS
        else:
            outcome = StepOutcome.FAILURE

        step_result = StepResult(
            step_name=step.name,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
            output=result.output,
            outcome=outcome,
        )
        run.step_results.append(step_result)
        run.current_index += 1
        self._notify("step_recorded", run, step_result)

        if outcome == StepOutcome.FAILURE:
            if result.timed_out:
                logger.error(f"Step {index} ({step.name}) timed out")
            else:
                logger.error(f"Step {index} ({step.name}) failed with exit code {result.exit_code}")
            self._finish(run, RunStatus.FAILED)
        elif outcome == StepOutcome.ABORTED:
            logger.warning(f"Step {index} ({step.name}) aborted by cancellation")
            self._finish(run, RunStatus.CANCELLED)
        else:
            logger.info(f"Step {index} ({step.name}) succeeded")
            if run.current_index == len(run.steps):
                self._finish(run, RunStatus.SUCCEEDED)

        return outcome

    def run(
        self,
        pipeline: Union[PipelineDefinition, Mapping[str, Any]],
        trigger: Union[Trigger, Mapping[str, Any]],
        run_id: Optional[str] = None,
    ) -> Run:
        """Start a run and step it to completion. Unmatched triggers give a skipped Run."""
        pipeline = load_pipeline(pipeline)
        trigger = coerce_trigger(trigger)

        run = self.start(pipeline, trigger, run_id=run_id)
        if run is None:
            return Run.skipped(pipeline, trigger, run_id=run_id)

        while not run.is_terminal:
            self.step(run)

        return run

    def cancel(self, run_id: str) -> bool:
        """Request cancellation. Takes effect at the next step boundary."""
        run = self.registry.get(run_id)
        if run is None or run.is_terminal:
            return False

        run.cancel_requested = True
        logger.info(f"Cancellation requested for run {run_id}")
        return True

    def build_environment(self, run: Run, step: Step) -> Dict[str, str]:
        """Environment handed to the executor for one step."""
        trigger = run.trigger
        environment = {
            "CI": "true",
            "STEPGATE_RUN_ID": run.id,
            "STEPGATE_STEP_ORDER": str(run.current_index),
            "STEPGATE_STEP_NAME": step.name,
            "STEPGATE_TRIGGER": trigger.type.value,
        }

        optional = {
            "STEPGATE_BRANCH": trigger.branch,
            "STEPGATE_COMMIT_SHA": trigger.commit_sha,
            "STEPGATE_REPOSITORY": trigger.repository,
            "STEPGATE_CLONE_URL": trigger.clone_url,
            "STEPGATE_PR_NUMBER": str(trigger.pr_number) if trigger.pr_number is not None else None,
        }
        environment.update({k: v for k, v in optional.items() if v is not None})

        workspace = self.workspace_path(run)
        if workspace:
            environment["STEPGATE_WORKSPACE"] = workspace

        # Action inputs, as the hosted runner exposes them
        for key, value in step.with_.items():
            name = "INPUT_" + key.upper().replace(" ", "_").replace("-", "_")
            environment[name] = self._resolve(key, value)

        for variables in (run.env, step.env):
            for key, value in variables.items():
                if value is None:
                    value = os.environ.get(key)
                    if value is None:
                        continue
                environment[key] = self._resolve(key, value)

        return environment

    def _resolve(self, key: str, value: Any) -> str:
        value = str(value)
        match = SECRET_REFERENCE.match(value)
        if not match:
            return value

        secret_name = match.group(1)
        if secret_name not in self._secrets:
            logger.warning(f"Secret '{secret_name}' referenced by {key} is not configured")
            return ""
        return self._secrets[secret_name]

    def _cancel_requested(self, run: Run) -> bool:
        if not run.cancel_requested and self._cancel_check is not None:
            try:
                run.cancel_requested = bool(self._cancel_check(run.id))
            except Exception as e:
                logger.warning(f"Could not check cancellation for run {run.id}: {e}")
        return run.cancel_requested

    def workspace_path(self, run: Run) -> Optional[str]:
        if not self._workspace_root:
            return None
        return os.path.join(self._workspace_root, run.id)

    def _finish(self, run: Run, status: RunStatus):
        run.status = status
        run.finished_at = datetime.utcnow()
        self.registry.archive(run)
        self._release(run)

        logger.info(f"Pipeline run {run.id} finished with status: {status.value}")
        self._notify("report", run)

    def _release(self, run: Run):
        """Drop the run's workspace; nothing a step wrote outlives the run."""
        try:
            self.executor.release(run.id)
        except Exception:
            logger.exception(f"Failed to release executor resources for run {run.id}")

        workspace = self.workspace_path(run)
        if workspace:
            shutil.rmtree(workspace, ignore_errors=True)

    def _notify(self, hook: str, *args):
        for reporter in self.reporters:
            try:
                getattr(reporter, hook)(*args)
            except Exception:
                logger.exception(f"{type(reporter).__name__}.{hook} failed for run {args[0].id}")

def coerce_trigger(trigger: Union[Trigger, Mapping[str, Any]]) -> Trigger:
    if isinstance(trigger, Trigger):
        return trigger
    if isinstance(trigger, Mapping):
        return Trigger.from_event(trigger)
    raise ConfigurationError(f"Unrecognised trigger: {trigger!r}")
