from controller.src.models.pipeline import (
    TriggerType,
    Trigger,
    Step,
    PipelineDefinition,
    load_pipeline,
    RunStatus,
    StepOutcome,
    ExecutionResult,
    StepResult,
    Run,
    PipelineJob,
)

__all__ = [
    "TriggerType",
    "Trigger",
    "Step",
    "PipelineDefinition",
    "load_pipeline",
    "RunStatus",
    "StepOutcome",
    "ExecutionResult",
    "StepResult",
    "Run",
    "PipelineJob",
]
