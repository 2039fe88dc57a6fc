"""Tests for pipeline and trigger models."""

import pytest
from pydantic import ValidationError

from controller.src.errors import ConfigurationError
from controller.src.models.pipeline import (
    PipelineDefinition,
    Run,
    RunStatus,
    Step,
    Trigger,
    TriggerType,
    branch_matches,
    load_pipeline,
)

def test_trigger_from_push_event():
    trigger = Trigger.from_event({"type": "push", "ref": "refs/heads/main", "commit_sha": "abc"})

    assert trigger.type == TriggerType.PUSH
    assert trigger.branch == "main"
    assert trigger.commit_sha == "abc"
    assert trigger.pr_action is None

@pytest.mark.parametrize("action,expected", [
    ("opened", TriggerType.PULL_REQUEST_OPENED),
    ("synchronize", TriggerType.PULL_REQUEST_SYNCHRONIZE),
    ("closed", TriggerType.PULL_REQUEST_CLOSED),
])
def test_trigger_from_pull_request_event(action, expected):
    trigger = Trigger.from_event({"type": "pull_request", "pr_action": action, "pr_number": 7})

    assert trigger.type == expected
    assert trigger.pr_action == action
    assert trigger.pr_number == 7

def test_reusable_workflow_call_has_no_branch():
    trigger = Trigger.from_event({"type": "workflow_call"})

    assert trigger.type == TriggerType.MANUAL_CALL
    assert trigger.branch is None

def test_workflow_dispatch_maps_to_manual_call():
    assert Trigger.from_event({"type": "workflow_dispatch"}).type == TriggerType.MANUAL_CALL

@pytest.mark.parametrize("event", [
    {"type": "issues"},
    {"type": "pull_request", "pr_action": "reopened"},
    {"type": "pull_request"},
    {},
])
def test_unknown_events_are_rejected(event):
    with pytest.raises(ConfigurationError):
        Trigger.from_event(event)

def test_trigger_is_immutable():
    trigger = Trigger(type=TriggerType.PUSH, branch="main")
    with pytest.raises(ValidationError):
        trigger.branch = "other"

def test_step_needs_exactly_one_command():
    with pytest.raises(ValidationError):
        Step(name="nothing")
    with pytest.raises(ValidationError):
        Step(name="both", run="cargo test", uses="actions/checkout@v4")
    with pytest.raises(ValidationError):
        Step(name="bad timeout", run="cargo test", timeout=0)

def test_step_action_drops_version():
    assert Step(name="checkout", uses="actions/checkout@v4").action == "actions/checkout"
    assert Step(name="test", run="cargo test").action is None

def test_step_accepts_with_key():
    step = Step.model_validate({"name": "protoc", "uses": "arduino/setup-protoc@v3", "with": {"version": "25"}})
    assert step.with_ == {"version": "25"}

def test_push_branch_globs():
    pipeline = PipelineDefinition(on={"push": {"branches": ["main", "release/*"]}})

    assert pipeline.accepts(Trigger(type=TriggerType.PUSH, branch="main"))
    assert pipeline.accepts(Trigger(type=TriggerType.PUSH, branch="release/1.2"))
    assert not pipeline.accepts(Trigger(type=TriggerType.PUSH, branch="feature"))
    assert not pipeline.accepts(Trigger(type=TriggerType.PUSH))

def test_push_branch_filters_follow_github_rules():
    pipeline = PipelineDefinition(on={"push": {"branches": ["feature/*", "releases/**", "v[0-9].*", "!releases/**-alpha"]}})

    assert pipeline.accepts(Trigger(type=TriggerType.PUSH, branch="feature/embed"))
    assert not pipeline.accepts(Trigger(type=TriggerType.PUSH, branch="feature/embed/part-2"))
    assert pipeline.accepts(Trigger(type=TriggerType.PUSH, branch="releases/2024/q1"))
    assert not pipeline.accepts(Trigger(type=TriggerType.PUSH, branch="releases/2024/q1-alpha"))
    assert pipeline.accepts(Trigger(type=TriggerType.PUSH, branch="v2.1"))
    assert not pipeline.accepts(Trigger(type=TriggerType.PUSH, branch="v2x1"))

@pytest.mark.parametrize("pattern, branch, expected", [
    ("main", "main", True),
    ("main", "main-2", False),
    ("*", "fix/x", False),
    ("**", "fix/x", True),
    ("ma+in", "maaain", True),
    ("colou?r", "color", True),
    ("feature-[ab]", "feature-c", False),
])
def test_branch_pattern(pattern, branch, expected):
    assert branch_matches(branch, [pattern]) is expected

def test_later_patterns_win():
    assert branch_matches("wip/x", ["**", "!wip/**", "wip/x"])
    assert not branch_matches("wip/y", ["**", "!wip/**", "wip/x"])
    assert not branch_matches("main", ["!main"])

def test_push_without_branch_filter_matches_everything():
    pipeline = PipelineDefinition(on={"push": {}})
    assert pipeline.accepts(Trigger(type=TriggerType.PUSH, branch="anything"))

def test_no_triggers_declared_matches_nothing():
    pipeline = PipelineDefinition()
    for trigger_type in TriggerType:
        assert not pipeline.accepts(Trigger(type=trigger_type, branch="main"))

def test_load_pipeline_errors():
    with pytest.raises(ConfigurationError):
        load_pipeline(["not", "a", "mapping"])
    with pytest.raises(ConfigurationError):
        load_pipeline({"steps": [{"name": "x", "run": "true", "timeout": "soon"}]})

def test_load_pipeline_passes_definitions_through():
    pipeline = PipelineDefinition(name="Format and test")
    assert load_pipeline(pipeline) is pipeline

def test_skipped_run_sentinel():
    pipeline = PipelineDefinition(steps=[Step(name="fmt", run="cargo fmt --check")])
    run = Run.skipped(pipeline, Trigger(type=TriggerType.PUSH, branch="dev"))

    assert run.status == RunStatus.SKIPPED
    assert run.is_terminal
    assert run.step_results == []
    assert run.current_index == 0
