"""
Database models for controller (sync version).
"""

from sqlalchemy import JSON, Column, String, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid

Base = declarative_base()

JSONType = JSON().with_variant(JSONB, "postgresql")

class PipelineRun(Base):
    __tablename__ = "pipeline_runs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    repository_id = Column(Uuid(as_uuid=True))
    pipeline_name = Column(String(255))
    trigger_type = Column(String(50), nullable=False)
    commit_sha = Column(String(40))
    branch = Column(String(255))
    pr_number = Column(Integer)
    status = Column(String(50), default="pending")
    current_index = Column(Integer, default=0)
    triggered_by = Column(String(255))
    config = Column(JSONType)
    started_at = Column(DateTime)
    finished_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

class PipelineStep(Base):
    __tablename__ = "pipeline_steps"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    run_id = Column(Uuid(as_uuid=True), ForeignKey("pipeline_runs.id"))
    name = Column(String(255), nullable=False)
    step_order = Column(Integer, nullable=False)
    outcome = Column(String(50), nullable=False)
    exit_code = Column(Integer)
    duration_ms = Column(Integer)
    logs = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
