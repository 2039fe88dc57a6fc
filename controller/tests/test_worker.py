"""Tests for queue job execution and live status reporting."""

import uuid

from controller.src.models.pipeline import ExecutionResult, RunStatus, StepResult, StepOutcome, Trigger, TriggerType
from controller.src.services import executor as executor_module
from controller.src.services.executor import Executor, execute_pipeline
from controller.src.services.runner import PipelineRunner
from controller.src.worker import PIPELINE_CANCEL, PIPELINE_STATUS, RedisStatusReporter, get_next_job

CONFIG = {
    "name": "Format and test",
    "on": {"push": {"branches": ["main"]}, "pull_request": None, "workflow_call": True},
    "env": {},
    "steps": [
        {"name": "Run cargo fmt", "run": "cargo fmt --all -- --check", "timeout": 600},
        {"name": "Run tests", "run": "cargo test", "timeout": 600},
    ],
}

class PassingExecutor(Executor):
    def __init__(self):
        self.calls = []

    def execute(self, step, environment):
        self.calls.append(step.name)
        return ExecutionResult(exit_code=0, duration_ms=1)

class FakeRedis:
    def __init__(self, queued=None):
        self.hashes = {}
        self.sets = {PIPELINE_CANCEL: set()}
        self.queued = list(queued or [])

    def hset(self, name, key, value):
        self.hashes.setdefault(name, {})[key] = value

    def srem(self, name, value):
        self.sets.setdefault(name, set()).discard(value)

    def sismember(self, name, value):
        return value in self.sets.get(name, set())

    def brpop(self, name, timeout=0):
        if self.queued:
            return name, self.queued.pop()
        return None

def make_job(trigger, config=CONFIG):
    return {
        "run_id": str(uuid.uuid4()),
        "config": config,
        "trigger": trigger,
        "queued_at": "2026-01-01T00:00:00",
    }

def test_execute_pipeline_runs_queued_job():
    executor = PassingExecutor()
    job = make_job(Trigger(type=TriggerType.PUSH, branch="main").model_dump(mode="json"))

    run = execute_pipeline(job, PipelineRunner(executor))

    assert run.id == job["run_id"]
    assert run.status == RunStatus.SUCCEEDED
    assert executor.calls == ["Run cargo fmt", "Run tests"]

def test_execute_pipeline_marks_skipped_runs(monkeypatch):
    updates = []
    monkeypatch.setattr(executor_module, "update_run_status", lambda run_id, status: updates.append((run_id, status)))
    executor = PassingExecutor()
    job = make_job({"type": "pull_request", "pr_action": "opened", "branch": "feature"})

    run = execute_pipeline(job, PipelineRunner(executor))

    assert run.status == RunStatus.SKIPPED
    assert run.id == job["run_id"]
    assert executor.calls == []
    assert updates == [(job["run_id"], "skipped")]

def test_execute_pipeline_rejects_bad_configuration(monkeypatch):
    updates = []
    monkeypatch.setattr(executor_module, "update_run_status", lambda run_id, status: updates.append((run_id, status)))
    job = make_job({"type": "push", "branch": "main"}, config={"name": "broken", "steps": [{"name": "nothing"}]})

    assert execute_pipeline(job, PipelineRunner(PassingExecutor())) is None
    assert updates == [(job["run_id"], "error")]

def test_execute_pipeline_rejects_unknown_trigger(monkeypatch):
    updates = []
    monkeypatch.setattr(executor_module, "update_run_status", lambda run_id, status: updates.append((run_id, status)))
    job = make_job({"type": "issue_comment"})

    assert execute_pipeline(job, PipelineRunner(PassingExecutor())) is None
    assert updates == [(job["run_id"], "error")]

def test_redis_status_reporter_tracks_progress():
    client = FakeRedis()
    client.sets[PIPELINE_CANCEL].add("placeholder")
    reporter = RedisStatusReporter(client)
    runner = PipelineRunner(PassingExecutor(), reporters=[reporter])

    run = runner.start(CONFIG, Trigger(type=TriggerType.MANUAL_CALL), run_id="placeholder")
    assert client.hashes[PIPELINE_STATUS]["placeholder"] == "running"

    runner.step(run)
    assert client.hashes[PIPELINE_STATUS]["placeholder"] == "running:1/2"

    runner.step(run)
    assert client.hashes[PIPELINE_STATUS]["placeholder"] == "succeeded"
    assert "placeholder" not in client.sets[PIPELINE_CANCEL]

def test_cancel_requests_are_read_from_redis():
    client = FakeRedis()
    runner = PipelineRunner(
        PassingExecutor(),
        reporters=[RedisStatusReporter(client)],
        cancel_check=lambda run_id: bool(client.sismember(PIPELINE_CANCEL, run_id)),
    )
    run = runner.start(CONFIG, Trigger(type=TriggerType.PUSH, branch="main"))
    runner.step(run)

    client.sets[PIPELINE_CANCEL].add(run.id)
    runner.step(run)

    assert run.status == RunStatus.CANCELLED
    assert run.step_results == [
        StepResult(step_name="Run cargo fmt", exit_code=0, duration_ms=1, outcome=StepOutcome.SUCCESS),
    ]
    assert client.hashes[PIPELINE_STATUS][run.id] == "cancelled"

def test_get_next_job_decodes_payload():
    client = FakeRedis(queued=['{"run_id": "abc"}'])

    assert get_next_job(client) == {"run_id": "abc"}
    assert get_next_job(client) is None
