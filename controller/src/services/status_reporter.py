"""
Report pipeline and step status to database.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker

from controller.src.config import get_settings
from controller.src.models.db import PipelineRun, PipelineStep
from controller.src.models.pipeline import Run, StepResult

logger = logging.getLogger(__name__)

_session_factory = None

def get_session_factory() -> sessionmaker:
    """Sync database sessions for the controller, created on first use."""
    global _session_factory
    if _session_factory is None:
        engine = create_engine(get_settings().database_url)
        _session_factory = sessionmaker(bind=engine)
    return _session_factory

class RunReporter:
    """
    Receives run lifecycle events from the PipelineRunner.
    `report` is called exactly once, when the run reaches a terminal status.
    """

    def run_started(self, run: Run):
        pass

    def step_recorded(self, run: Run, result: StepResult):
        pass

    def report(self, run: Run):
        pass

class DatabaseReporter(RunReporter):
    """Keeps the run history in the pipeline_runs / pipeline_steps tables."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or get_session_factory()

    def run_started(self, run: Run):
        with self._session_factory() as session:
            row = session.get(PipelineRun, uuid.UUID(run.id))
            if row is None:
                # No row yet when the run was not created through the API
                trigger = run.trigger
                row = PipelineRun(
                    id=uuid.UUID(run.id),
                    pipeline_name=run.pipeline_name,
                    trigger_type=trigger.type.value,
                    commit_sha=trigger.commit_sha,
                    branch=trigger.branch,
                    pr_number=trigger.pr_number,
                    triggered_by=trigger.actor,
                )
                session.add(row)

            row.status = run.status.value
            row.current_index = run.current_index
            row.started_at = run.started_at
            session.commit()
            logger.info(f"Updated run {run.id} status to {run.status.value}")

    def step_recorded(self, run: Run, result: StepResult):
        with self._session_factory() as session:
            session.add(PipelineStep(
                run_id=uuid.UUID(run.id),
                name=result.step_name,
                step_order=run.current_index - 1,
                outcome=result.outcome.value,
                exit_code=result.exit_code,
                duration_ms=result.duration_ms,
                logs=result.output,
            ))
            session.execute(
                update(PipelineRun)
                .where(PipelineRun.id == uuid.UUID(run.id))
                .values(current_index=run.current_index, updated_at=datetime.utcnow())
            )
            session.commit()
            logger.debug(f"Recorded step {run.current_index - 1} of run {run.id}: {result.outcome.value}")

    def report(self, run: Run):
        update_run_status(
            run.id,
            run.status.value,
            current_index=run.current_index,
            finished_at=run.finished_at,
            session_factory=self._session_factory,
        )

def update_run_status(
    run_id: str,
    status: str,
    current_index: Optional[int] = None,
    finished_at: Optional[datetime] = None,
    session_factory: Optional[sessionmaker] = None,
):
    """Update pipeline run status in database."""
    session_factory = session_factory or get_session_factory()

    with session_factory() as session:
        values = {"status": status, "updated_at": datetime.utcnow()}

        if current_index is not None:
            values["current_index"] = current_index
        if finished_at:
            values["finished_at"] = finished_at

        session.execute(
            update(PipelineRun)
            .where(PipelineRun.id == uuid.UUID(run_id))
            .values(**values)
        )
        session.commit()
        logger.info(f"Updated run {run_id} status to {status}")

def get_run_steps(run_id: str, session_factory: Optional[sessionmaker] = None):
    """Get all recorded step results for a run."""
    session_factory = session_factory or get_session_factory()

    with session_factory() as session:
        steps = session.query(PipelineStep).filter(
            PipelineStep.run_id == uuid.UUID(run_id)
        ).order_by(PipelineStep.step_order).all()

        return [
            {
                "order": s.step_order,
                "name": s.name,
                "outcome": s.outcome,
                "exit_code": s.exit_code,
                "duration_ms": s.duration_ms,
            }
            for s in steps
        ]
