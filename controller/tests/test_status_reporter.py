"""Tests for the database run history reporter."""

import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from controller.src.models.db import Base, PipelineRun, PipelineStep
from controller.src.models.pipeline import ExecutionResult, PipelineDefinition, Step, Trigger, TriggerType
from controller.src.services.executor import Executor
from controller.src.services.runner import PipelineRunner
from controller.src.services.status_reporter import DatabaseReporter, get_run_steps, update_run_status

class FixedExecutor(Executor):
    def __init__(self, exit_codes):
        self.exit_codes = exit_codes

    def execute(self, step, environment):
        return ExecutionResult(exit_code=self.exit_codes.get(step.name, 0), duration_ms=12, output=f"ran {step.name}")

@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)

PIPELINE = PipelineDefinition(
    name="Format and test",
    on={"pull_request": {"types": ["opened", "synchronize", "closed"]}},
    steps=[
        Step(name="Run cargo fmt", run="cargo fmt --all -- --check"),
        Step(name="Run clippy", run="cargo clippy --all-targets --all-features -- -D warnings"),
        Step(name="Run tests", run="cargo test"),
    ],
)

TRIGGER = Trigger(
    type=TriggerType.PULL_REQUEST_SYNCHRONIZE,
    branch="fix-embed",
    commit_sha="0123456789abcdef0123456789abcdef01234567",
    pr_number=42,
    actor="octocat",
)

def test_records_run_and_executed_steps(session_factory):
    runner = PipelineRunner(
        FixedExecutor({"Run clippy": 101}),
        reporters=[DatabaseReporter(session_factory)],
    )

    run = runner.run(PIPELINE, TRIGGER)

    with session_factory() as session:
        row = session.get(PipelineRun, uuid.UUID(run.id))
        assert row.status == "failed"
        assert row.trigger_type == "pull_request.synchronize"
        assert row.pr_number == 42
        assert row.current_index == 2
        assert row.triggered_by == "octocat"
        assert row.started_at is not None
        assert row.finished_at is not None

        steps = session.query(PipelineStep).order_by(PipelineStep.step_order).all()
        assert [(s.name, s.outcome, s.exit_code) for s in steps] == [
            ("Run cargo fmt", "success", 0),
            ("Run clippy", "failure", 101),
        ]
        assert steps[1].logs == "ran Run clippy"

def test_updates_existing_api_row(session_factory):
    run_id = str(uuid.uuid4())
    with session_factory() as session:
        session.add(PipelineRun(id=uuid.UUID(run_id), trigger_type="pull_request.synchronize", status="pending"))
        session.commit()

    runner = PipelineRunner(FixedExecutor({}), reporters=[DatabaseReporter(session_factory)])
    runner.run(PIPELINE, TRIGGER, run_id=run_id)

    with session_factory() as session:
        assert session.query(PipelineRun).count() == 1
        assert session.get(PipelineRun, uuid.UUID(run_id)).status == "succeeded"

    steps = get_run_steps(run_id, session_factory=session_factory)
    assert [s["order"] for s in steps] == [0, 1, 2]
    assert all(s["outcome"] == "success" for s in steps)
    assert steps[0]["duration_ms"] == 12

def test_update_run_status(session_factory):
    run_id = str(uuid.uuid4())
    with session_factory() as session:
        session.add(PipelineRun(id=uuid.UUID(run_id), trigger_type="push", status="pending"))
        session.commit()

    update_run_status(run_id, "error", session_factory=session_factory)

    with session_factory() as session:
        assert session.get(PipelineRun, uuid.UUID(run_id)).status == "error"
