"""
Pipeline definition, trigger and run models.
"""

import re
import uuid
from datetime import datetime
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

from controller.src.errors import ConfigurationError

# GitHub's default activity types when `pull_request` declares none
# (reopened has no trigger of its own here).
DEFAULT_PULL_REQUEST_TYPES = ["opened", "synchronize"]

class TriggerType(str, Enum):
    PUSH = "push"
    PULL_REQUEST_OPENED = "pull_request.opened"
    PULL_REQUEST_SYNCHRONIZE = "pull_request.synchronize"
    PULL_REQUEST_CLOSED = "pull_request.closed"
    MANUAL_CALL = "workflow_call"

    @property
    def pr_action(self) -> Optional[str]:
        if self.value.startswith("pull_request."):
            return self.value.split(".", 1)[1]
        return None

class Trigger(BaseModel):
    """A repository event that may start a run."""

    type: TriggerType
    branch: Optional[str] = None
    commit_sha: Optional[str] = None
    repository: Optional[str] = None
    clone_url: Optional[str] = None
    pr_number: Optional[int] = None
    actor: Optional[str] = None

    class Config:
        frozen = True

    @property
    def pr_action(self) -> Optional[str]:
        return self.type.pr_action

    @classmethod
    def from_event(cls, event: Mapping[str, Any]) -> "Trigger":
        """
        Build a Trigger from an inbound event shaped as {type, ref/branch, pr_action?}.
        Raises ConfigurationError for event types that map to no trigger.
        """
        event_type = event.get("type")
        pr_action = event.get("pr_action")

        if event_type == "pull_request" and pr_action:
            event_type = f"pull_request.{pr_action}"
        elif event_type == "workflow_dispatch":
            event_type = TriggerType.MANUAL_CALL.value

        try:
            trigger_type = TriggerType(event_type)
        except ValueError:
            raise ConfigurationError(f"Unrecognised trigger type: {event_type!r}")

        # refs/heads/main -> main
        ref = event.get("branch") or event.get("ref") or None
        if ref and ref.startswith("refs/heads/"):
            ref = ref[len("refs/heads/"):]

        try:
            return cls(
                type=trigger_type,
                branch=ref,
                commit_sha=event.get("commit_sha") or None,
                repository=event.get("repository") or None,
                clone_url=event.get("clone_url") or None,
                pr_number=event.get("pr_number"),
                actor=event.get("actor") or None,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid trigger: {e}")

class Step(BaseModel):
    """
    One named unit of work. Either a shell command (`run`) or an action
    invocation (`uses` plus its `with` inputs).
    """

    name: str
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    env: Dict[str, Optional[str]] = Field(default_factory=dict)
    timeout: Optional[int] = None
    image: Optional[str] = None

    class Config:
        frozen = True
        populate_by_name = True

    @model_validator(mode="after")
    def check_command(self) -> "Step":
        if bool(self.run) == bool(self.uses):
            raise ValueError(f"Step '{self.name}' must define exactly one of 'run' or 'uses'")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"Step '{self.name}' timeout must be positive")
        return self

    @property
    def action(self) -> Optional[str]:
        """Action reference without its version pin."""
        if not self.uses:
            return None
        return self.uses.split("@", 1)[0]

@lru_cache(maxsize=256)
def compile_branch_pattern(pattern: str) -> "re.Pattern":
    """
    Compile a GitHub branch filter: `*` stops at `/`, `**` does not,
    `?` and `+` quantify the preceding character, `[...]` is a character class.
    """
    parts = []
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
            continue
        if c == "*":
            parts.append("[^/]*")
        elif c in "?+" and parts and not parts[-1].endswith(("*", "?", "+")):
            parts.append(c)
        elif c == "[" and "]" in pattern[i + 1:]:
            end = pattern.index("]", i + 1)
            parts.append("[" + pattern[i + 1:end].replace("\\", "\\\\") + "]")
            i = end
        elif c == "\\" and i + 1 < len(pattern):
            i += 1
            parts.append(re.escape(pattern[i]))
        else:
            parts.append(re.escape(c))
        i += 1
    return re.compile("".join(parts) + r"\Z")

def branch_matches(branch: str, patterns: List[str]) -> bool:
    """Later patterns win; a leading `!` excludes what it matches."""
    matched = False
    for pattern in patterns:
        if pattern.startswith("!"):
            if compile_branch_pattern(pattern[1:]).match(branch):
                matched = False
        elif compile_branch_pattern(pattern).match(branch):
            matched = True
    return matched

class PushRule(BaseModel):
    # Empty means every branch.
    branches: List[str] = Field(default_factory=list)

    def matches(self, branch: Optional[str]) -> bool:
        if not self.branches:
            return True
        return bool(branch) and branch_matches(branch, self.branches)

class PullRequestRule(BaseModel):
    types: List[str] = Field(default_factory=lambda: list(DEFAULT_PULL_REQUEST_TYPES))

class TriggerRules(BaseModel):
    push: Optional[PushRule] = None
    pull_request: Optional[PullRequestRule] = None
    workflow_call: bool = False

class PipelineDefinition(BaseModel):
    name: str = "Unnamed Pipeline"
    on: TriggerRules = Field(default_factory=TriggerRules)
    env: Dict[str, Optional[str]] = Field(default_factory=dict)
    steps: Tuple[Step, ...] = ()

    class Config:
        frozen = True

    def accepts(self, trigger: Trigger) -> bool:
        """Whether the trigger is one this pipeline declares interest in."""
        rules = self.on

        if trigger.type == TriggerType.PUSH:
            return rules.push is not None and rules.push.matches(trigger.branch)

        if trigger.type == TriggerType.MANUAL_CALL:
            return rules.workflow_call

        return rules.pull_request is not None and trigger.pr_action in rules.pull_request.types

def load_pipeline(config: Union["PipelineDefinition", Mapping[str, Any]]) -> PipelineDefinition:
    """Validate a canonical pipeline dict, raising ConfigurationError when malformed."""
    if isinstance(config, PipelineDefinition):
        return config
    if not isinstance(config, Mapping):
        raise ConfigurationError("Pipeline definition must be a mapping")

    try:
        return PipelineDefinition.model_validate(dict(config))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid pipeline definition: {e}")

class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"

TERMINAL_STATUSES = frozenset({
    RunStatus.SUCCEEDED,
    RunStatus.FAILED,
    RunStatus.CANCELLED,
    RunStatus.SKIPPED,
})

class StepOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    ABORTED = "aborted"

class ExecutionResult(BaseModel):
    """What an executor reports back for one step."""

    exit_code: int
    duration_ms: int = 0
    output: str = ""
    timed_out: bool = False

class StepResult(BaseModel):
    step_name: str
    exit_code: int
    duration_ms: int
    output: str = ""
    outcome: StepOutcome

    class Config:
        frozen = True

class Run(BaseModel):
    """One execution of a pipeline for one trigger occurrence."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    pipeline_name: str
    trigger: Trigger
    steps: Tuple[Step, ...] = ()
    env: Dict[str, Optional[str]] = Field(default_factory=dict)
    current_index: int = 0
    status: RunStatus = RunStatus.PENDING
    step_results: List[StepResult] = Field(default_factory=list)
    cancel_requested: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def current_step(self) -> Optional[Step]:
        if self.current_index < len(self.steps):
            return self.steps[self.current_index]
        return None

    @classmethod
    def skipped(cls, pipeline: PipelineDefinition, trigger: Trigger, run_id: Optional[str] = None) -> "Run":
        """Sentinel returned when a trigger does not match the pipeline."""
        fields = {"id": run_id} if run_id else {}
        return cls(
            pipeline_name=pipeline.name,
            trigger=trigger,
            steps=pipeline.steps,
            env=dict(pipeline.env),
            status=RunStatus.SKIPPED,
            **fields,
        )

class PipelineJob(BaseModel):
    """A run as it travels through the queue."""

    run_id: str
    config: Dict[str, Any]
    trigger: Dict[str, Any]
    queued_at: str
