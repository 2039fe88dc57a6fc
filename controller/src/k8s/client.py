"""
Kubernetes API access for step Jobs.
"""

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from typing import Optional
import logging

from controller.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# "batch" and "core" API objects, filled by init_k8s_client
_apis = {}

def load_cluster_config(in_cluster: Optional[bool] = None):
    in_cluster = settings.k8s_in_cluster if in_cluster is None else in_cluster
    if in_cluster:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    else:
        config.load_kube_config()
        logger.info("Loaded local Kubernetes config")

def init_k8s_client(in_cluster: Optional[bool] = None) -> bool:
    """Load cluster credentials and check the batch API answers."""
    try:
        load_cluster_config(in_cluster)

        api_client = client.ApiClient()
        _apis["batch"] = client.BatchV1Api(api_client)
        _apis["core"] = client.CoreV1Api(api_client)

        _apis["batch"].get_api_resources()
        logger.info("Kubernetes client initialized successfully")
        return True
    except Exception as e:
        logger.error(f"Failed to initialize Kubernetes client: {e}")
        _apis.clear()
        return False

def _get_api(kind: str):
    if kind not in _apis and not init_k8s_client():
        raise RuntimeError("Kubernetes client is not available")
    return _apis[kind]

def get_batch_api() -> client.BatchV1Api:
    return _get_api("batch")

def get_core_api() -> client.CoreV1Api:
    return _get_api("core")

def ensure_namespace(namespace: Optional[str] = None) -> bool:
    """Create the namespace step Jobs run in. Returns True if it was created."""
    namespace = namespace or settings.k8s_namespace
    core_v1 = get_core_api()

    try:
        core_v1.read_namespace(name=namespace)
        logger.info(f"Namespace '{namespace}' exists")
        return False
    except ApiException as e:
        if e.status != 404:
            raise

    core_v1.create_namespace(
        body=client.V1Namespace(
            metadata=client.V1ObjectMeta(name=namespace, labels={"app": "stepgate"})
        )
    )
    logger.info(f"Created namespace '{namespace}'")
    return True

def delete_job(job_name: str, namespace: Optional[str] = None) -> bool:
    """Delete a step Job and its pod. Returns False if there was nothing to delete."""
    namespace = namespace or settings.k8s_namespace

    try:
        get_batch_api().delete_namespaced_job(
            name=job_name,
            namespace=namespace,
            body=client.V1DeleteOptions(propagation_policy="Foreground"),
        )
    except ApiException as e:
        if e.status != 404:
            logger.error(f"Failed to delete job {job_name}: {e}")
        return False

    logger.info(f"Deleted job {job_name}")
    return True

def create_workspace_claim(claim: client.V1PersistentVolumeClaim, namespace: Optional[str] = None) -> bool:
    """Create a run's workspace claim. Returns False if it already existed."""
    namespace = namespace or settings.k8s_namespace
    name = claim.metadata.name

    try:
        get_core_api().create_namespaced_persistent_volume_claim(namespace=namespace, body=claim)
    except ApiException as e:
        if e.status != 409:
            raise
        logger.info(f"Workspace claim {name} already exists")
        return False

    logger.info(f"Created workspace claim {name}")
    return True

def delete_workspace_claim(name: str, namespace: Optional[str] = None) -> bool:
    """Delete a run's workspace claim. Kubernetes keeps it until its last pod is gone."""
    namespace = namespace or settings.k8s_namespace

    try:
        get_core_api().delete_namespaced_persistent_volume_claim(name=name, namespace=namespace)
    except ApiException as e:
        if e.status != 404:
            logger.error(f"Failed to delete workspace claim {name}: {e}")
        return False

    logger.info(f"Deleted workspace claim {name}")
    return True
