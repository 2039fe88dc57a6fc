from controller.src.k8s.client import (
    init_k8s_client,
    get_batch_api,
    get_core_api,
    ensure_namespace,
    delete_job,
    create_workspace_claim,
    delete_workspace_claim,
)
from controller.src.k8s.job_builder import (
    WORKSPACE_MOUNT,
    build_job,
    build_job_name,
    build_workspace_claim,
    get_job_status,
)

__all__ = [
    "init_k8s_client",
    "get_batch_api",
    "get_core_api",
    "ensure_namespace",
    "delete_job",
    "create_workspace_claim",
    "delete_workspace_claim",
    "WORKSPACE_MOUNT",
    "build_job",
    "build_job_name",
    "build_workspace_claim",
    "get_job_status",
]
