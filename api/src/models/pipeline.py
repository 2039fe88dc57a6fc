from sqlalchemy import JSON, Column, String, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from api.src.db.database import Base

JSONType = JSON().with_variant(JSONB, "postgresql")

class Repository(Base):
    __tablename__ = "repositories"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False, unique=True)
    clone_url = Column(String(500), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    runs = relationship("PipelineRun", back_populates="repository")

class PipelineRun(Base):
    __tablename__ = "pipeline_runs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    repository_id = Column(Uuid(as_uuid=True), ForeignKey("repositories.id", ondelete="CASCADE"))
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

    repository = relationship("Repository", back_populates="runs")
    steps = relationship("PipelineStep", back_populates="run", order_by="PipelineStep.step_order")

class PipelineStep(Base):
    """One recorded step result; rows exist only for steps that ran."""

    __tablename__ = "pipeline_steps"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    run_id = Column(Uuid(as_uuid=True), ForeignKey("pipeline_runs.id", ondelete="CASCADE"))
    name = Column(String(255), nullable=False)
    step_order = Column(Integer, nullable=False)
    outcome = Column(String(50), nullable=False)
    exit_code = Column(Integer)
    duration_ms = Column(Integer)
    logs = Column(Text)
    created_at = Column(DateTime, server_default=func.now())

    run = relationship("PipelineRun", back_populates="steps")
