from api.src.services.github import (
    verify_signature,
    clone_repository,
    get_head_sha,
    fetch_pipeline_config,
    parse_webhook_payload,
    build_trigger,
    repo_full_name_from_url,
    cleanup_repo,
)
from api.src.services.pipeline_parser import (
    parse_pipeline_config,
    parse_pipeline_dict,
    PipelineConfigError,
)
from api.src.services.queue import (
    enqueue_pipeline_run,
    request_cancel,
    get_run_status,
    get_queue_length,
)

__all__ = [
    "verify_signature",
    "clone_repository",
    "get_head_sha",
    "fetch_pipeline_config",
    "parse_webhook_payload",
    "build_trigger",
    "repo_full_name_from_url",
    "cleanup_repo",
    "parse_pipeline_config",
    "parse_pipeline_dict",
    "PipelineConfigError",
    "enqueue_pipeline_run",
    "request_cancel",
    "get_run_status",
    "get_queue_length",
]
