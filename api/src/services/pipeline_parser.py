"""
Pipeline YAML parser and validator.

Accepts the workflow layout used by GitHub Actions (an `on:` block and a
single job under `jobs:`) as well as the flat `steps:` layout, and returns
the canonical definition dict understood by the controller.
"""

import yaml
from typing import List, Dict, Any, Optional

from controller.src.errors import ConfigurationError
from controller.src.models.pipeline import DEFAULT_PULL_REQUEST_TYPES, load_pipeline

DEFAULT_STEP_TIMEOUT = 600  # 10 min

class PipelineConfigError(ConfigurationError):
    """Raised when pipeline configuration is invalid."""
    pass

def parse_pipeline_config(yaml_content: str) -> Dict[str, Any]:
    """Parse pipeline YAML configuration from string."""
    try:
        config = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise PipelineConfigError(f"Invalid YAML: {e}")

    return validate_config(config)

def parse_pipeline_dict(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate pipeline configuration from dict."""
    return validate_config(config)

def validate_config(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate pipeline configuration structure."""
    if not config:
        raise PipelineConfigError("Empty pipeline configuration")

    if not isinstance(config, dict):
        raise PipelineConfigError("Pipeline configuration must be a dictionary")

    name = config.get("name", "Unnamed Pipeline")
    if not isinstance(name, str):
        raise PipelineConfigError("Pipeline 'name' must be a string")

    steps = extract_steps(config)
    if not isinstance(steps, list):
        raise PipelineConfigError("Pipeline 'steps' must be a list")

    validated = {
        "name": name,
        "on": validate_triggers(config),
        "env": validate_env(config.get("env"), "Pipeline"),
        "steps": [validate_step(step, i) for i, step in enumerate(steps)],
    }

    try:
        load_pipeline(validated)
    except ConfigurationError as e:
        raise PipelineConfigError(str(e))

    return validated

def extract_steps(config: Dict[str, Any]) -> Any:
    """Steps from the top level, or from the one job of a workflow file."""
    if "steps" in config:
        return config["steps"]

    jobs = config.get("jobs")
    if not jobs:
        raise PipelineConfigError("Pipeline must have 'steps' defined")
    if not isinstance(jobs, dict):
        raise PipelineConfigError("Pipeline 'jobs' must be a mapping")
    if len(jobs) != 1:
        raise PipelineConfigError("Pipeline must define exactly one job")

    job_name, job = next(iter(jobs.items()))
    if not isinstance(job, dict) or "steps" not in job:
        raise PipelineConfigError(f"Job '{job_name}' must have 'steps' defined")
    return job["steps"]

def validate_triggers(config: Dict[str, Any]) -> Dict[str, Any]:
    """Normalise the `on:` block."""
    # YAML 1.1 reads a bare `on` key as boolean True
    if "on" in config:
        on = config["on"]
    elif True in config:
        on = config[True]
    else:
        # No trigger block: run on every push and on request
        return {"push": {"branches": []}, "pull_request": None, "workflow_call": True}

    if isinstance(on, str):
        on = {on: None}
    elif isinstance(on, list):
        if not all(isinstance(event, str) for event in on):
            raise PipelineConfigError("Trigger list must contain event names")
        on = {event: None for event in on}
    elif not isinstance(on, dict):
        raise PipelineConfigError("Pipeline 'on' must be a string, list or mapping")

    triggers = {"push": None, "pull_request": None, "workflow_call": False}

    for event, options in on.items():
        options = options or {}
        if not isinstance(options, dict):
            raise PipelineConfigError(f"Trigger '{event}' options must be a mapping")

        if event == "push":
            triggers["push"] = {"branches": string_list(options.get("branches", []), "push.branches")}
        elif event == "pull_request":
            types = options.get("types", DEFAULT_PULL_REQUEST_TYPES)
            triggers["pull_request"] = {"types": string_list(types, "pull_request.types")}
        elif event in ("workflow_call", "workflow_dispatch"):
            triggers["workflow_call"] = True
        else:
            raise PipelineConfigError(f"Unsupported trigger '{event}'")

    return triggers

def string_list(value: Any, field: str) -> List[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise PipelineConfigError(f"'{field}' must be a list of strings")
    return value

def validate_env(env: Any, owner: str) -> Dict[str, Optional[str]]:
    if env is None:
        return {}
    if not isinstance(env, dict):
        raise PipelineConfigError(f"{owner} 'env' must be a mapping")

    return {
        str(key): None if value is None else str(value)
        for key, value in env.items()
    }

def validate_step(step: Dict[str, Any], index: int) -> Dict[str, Any]:
    """Validate a single pipeline step."""
    if not isinstance(step, dict):
        raise PipelineConfigError(f"Step {index} must be a dictionary")

    run = step.get("run")
    uses = step.get("uses")

    # Older pipeline files list commands instead of a single script
    if run is None and "commands" in step:
        commands = step["commands"]
        if not isinstance(commands, list):
            raise PipelineConfigError(f"Step {index} 'commands' must be a list")
        for j, cmd in enumerate(commands):
            if not isinstance(cmd, str):
                raise PipelineConfigError(f"Step {index} command {j} must be a string")
        run = " && ".join(commands)

    if run is None and uses is None:
        raise PipelineConfigError(f"Step {index} missing 'run' or 'uses'")
    if run is not None and uses is not None:
        raise PipelineConfigError(f"Step {index} cannot have both 'run' and 'uses'")
    if run is not None and not isinstance(run, str):
        raise PipelineConfigError(f"Step {index} 'run' must be a string")
    if run is not None and not run.strip():
        raise PipelineConfigError(f"Step {index} 'run' is empty")
    if uses is not None and not isinstance(uses, str):
        raise PipelineConfigError(f"Step {index} 'uses' must be a string")

    name = step.get("name") or uses or run.strip().splitlines()[0]
    if not isinstance(name, str):
        raise PipelineConfigError(f"Step {index} 'name' must be a string")

    inputs = step.get("with") or {}
    if not isinstance(inputs, dict):
        raise PipelineConfigError(f"Step {index} 'with' must be a mapping")

    image = step.get("image")
    if image is not None and not isinstance(image, str):
        raise PipelineConfigError(f"Step {index} 'image' must be a string")

    return {
        "name": name,
        "run": run,
        "uses": uses,
        "with": inputs,
        "env": validate_env(step.get("env"), f"Step {index}"),
        "timeout": validate_timeout(step, index),
        "image": image,
    }

def validate_timeout(step: Dict[str, Any], index: int) -> int:
    if "timeout" in step:
        timeout = step["timeout"]
    elif "timeout-minutes" in step:
        minutes = step["timeout-minutes"]
        timeout = minutes * 60 if isinstance(minutes, (int, float)) and not isinstance(minutes, bool) else minutes
    else:
        return DEFAULT_STEP_TIMEOUT

    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise PipelineConfigError(f"Step {index} timeout must be a positive number")
    return int(timeout)
