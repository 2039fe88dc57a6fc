"""
Kubernetes Job builder for pipeline steps.
"""

from kubernetes import client
from typing import Dict, Optional
import hashlib

from controller.src.config import get_settings

settings = get_settings()

WORKSPACE_MOUNT = "/workspace"

def run_hash(run_id: str) -> str:
    return hashlib.md5(run_id.encode()).hexdigest()[:8]

def build_job_name(run_id: str, step_order: int, step_name: str) -> str:
    """Generate a unique job name."""
    # K8s names must be lowercase, alphanumeric, max 63 chars
    safe_name = step_name.lower().replace(" ", "-").replace("_", "-")
    safe_name = "".join(c for c in safe_name if c.isalnum() or c == "-")
    safe_name = safe_name[:20].strip("-") or "step"

    return f"sg-{run_hash(run_id)}-{step_order}-{safe_name}"

def build_workspace_claim_name(run_id: str) -> str:
    return f"sg-{run_hash(run_id)}-workspace"

def build_workspace_claim(
    run_id: str,
    size: Optional[str] = None,
    storage_class: Optional[str] = None,
) -> client.V1PersistentVolumeClaim:
    """Volume claim shared by every step Job of one run."""
    return client.V1PersistentVolumeClaim(
        api_version="v1",
        kind="PersistentVolumeClaim",
        metadata=client.V1ObjectMeta(
            name=build_workspace_claim_name(run_id),
            namespace=settings.k8s_namespace,
            labels={"app": "stepgate", "run-id": run_id},
        ),
        spec=client.V1PersistentVolumeClaimSpec(
            access_modes=["ReadWriteOnce"],
            storage_class_name=storage_class or settings.k8s_workspace_storage_class,
            resources=client.V1VolumeResourceRequirements(
                requests={"storage": size or settings.k8s_workspace_size},
            ),
        ),
    )

def build_job(
    run_id: str,
    step_order: int,
    step_name: str,
    image: str,
    command: str,
    env_vars: Optional[Dict[str, str]] = None,
    timeout: int = 600,
    workspace_claim: Optional[str] = None,
) -> client.V1Job:
    """
    Build a Kubernetes Job for a pipeline step.
    The Job never retries: a failed pod is a failed step. With workspace_claim
    the run's volume is mounted at /workspace, so steps see earlier steps' files.
    """
    job_name = build_job_name(run_id, step_order, step_name)
    labels = {
        "app": "stepgate",
        "run-id": run_id,
        "step-order": str(step_order),
    }

    env = [
        client.V1EnvVar(name=key, value=value)
        for key, value in (env_vars or {}).items()
    ]

    volumes = None
    volume_mounts = None
    if workspace_claim:
        volumes = [
            client.V1Volume(
                name="workspace",
                persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(claim_name=workspace_claim),
            )
        ]
        volume_mounts = [client.V1VolumeMount(name="workspace", mount_path=WORKSPACE_MOUNT)]

    container = client.V1Container(
        name="step",
        image=image,
        command=["/bin/sh", "-c"],
        args=[command],
        env=env,
        working_dir=WORKSPACE_MOUNT,
        volume_mounts=volume_mounts,
        resources=client.V1ResourceRequirements(
            requests={"cpu": "500m", "memory": "512Mi"},
            limits={"cpu": "2", "memory": "4Gi"},
        ),
    )

    pod_spec = client.V1PodSpec(
        containers=[container],
        restart_policy="Never",
        volumes=volumes,
    )

    template = client.V1PodTemplateSpec(
        metadata=client.V1ObjectMeta(labels=labels),
        spec=pod_spec,
    )

    job_spec = client.V1JobSpec(
        template=template,
        backoff_limit=0,
        active_deadline_seconds=timeout,
        ttl_seconds_after_finished=settings.job_ttl_after_finished,
    )

    return client.V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=client.V1ObjectMeta(
            name=job_name,
            namespace=settings.k8s_namespace,
            labels=labels,
        ),
        spec=job_spec,
    )

def get_job_status(job: client.V1Job) -> str:
    """
    Determine job status from Kubernetes Job object.
    Returns: 'pending', 'running', 'succeeded', 'failed', 'timeout'
    """
    if job.status is None:
        return "pending"

    if job.status.succeeded and job.status.succeeded > 0:
        return "succeeded"

    # The pod may already be gone when the deadline kills it
    conditions = job.status.conditions or []
    if any(c.reason == "DeadlineExceeded" for c in conditions):
        return "timeout"

    if job.status.failed and job.status.failed > 0:
        return "failed"

    if job.status.active and job.status.active > 0:
        return "running"

    return "pending"
