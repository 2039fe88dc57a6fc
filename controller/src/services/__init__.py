from controller.src.services.runner import PipelineRunner, RunRegistry
from controller.src.services.executor import (
    Executor,
    LocalShellExecutor,
    KubernetesJobExecutor,
    get_executor,
    execute_pipeline,
)
from controller.src.services.log_collector import collect_logs, get_exit_code
from controller.src.services.status_reporter import (
    RunReporter,
    DatabaseReporter,
    update_run_status,
    get_run_steps,
)
from controller.src.services.github_status import GitHubStatusReporter

__all__ = [
    "PipelineRunner",
    "RunRegistry",
    "Executor",
    "LocalShellExecutor",
    "KubernetesJobExecutor",
    "get_executor",
    "execute_pipeline",
    "collect_logs",
    "get_exit_code",
    "RunReporter",
    "DatabaseReporter",
    "update_run_status",
    "get_run_steps",
    "GitHubStatusReporter",
]
