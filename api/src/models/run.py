from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
from uuid import UUID

class StepResponse(BaseModel):
    id: UUID
    name: str
    step_order: int
    outcome: str
    exit_code: Optional[int] = None
    duration_ms: Optional[int] = None
    logs: Optional[str] = None

    class Config:
        from_attributes = True

class PipelineRunResponse(BaseModel):
    id: UUID
    pipeline_name: Optional[str] = None
    trigger_type: str
    status: str
    commit_sha: Optional[str] = None
    branch: Optional[str] = None
    pr_number: Optional[int] = None
    current_index: int = 0
    triggered_by: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: datetime
    steps: List[StepResponse] = []

    class Config:
        from_attributes = True

class RepositoryResponse(BaseModel):
    id: UUID
    name: str
    full_name: str
    clone_url: str
    created_at: datetime

    class Config:
        from_attributes = True
