"""Tests for Kubernetes Job construction."""

from kubernetes import client

from controller.src.k8s.job_builder import (
    WORKSPACE_MOUNT,
    build_job,
    build_job_name,
    build_workspace_claim,
    get_job_status,
)

def test_job_name_is_dns_safe():
    name = build_job_name("run-1", 3, "Run cargo fmt (check)")

    assert name.startswith("sg-")
    assert name.endswith("-3-run-cargo-fmt-check")
    assert len(name) <= 63
    assert name == name.lower()

def test_job_name_for_symbol_only_step():
    assert build_job_name("run-1", 0, "!!!").endswith("-0-step")

def test_build_job():
    job = build_job(
        run_id="run-1",
        step_order=4,
        step_name="Run clippy",
        image="rust:1-slim",
        command="cargo clippy --all-targets --all-features -- -D warnings",
        env_vars={"STEPGATE_RUN_ID": "run-1", "CI": "true"},
        timeout=900,
    )

    container = job.spec.template.spec.containers[0]
    assert container.image == "rust:1-slim"
    assert container.command == ["/bin/sh", "-c"]
    assert container.args == ["cargo clippy --all-targets --all-features -- -D warnings"]
    assert {e.name: e.value for e in container.env} == {"STEPGATE_RUN_ID": "run-1", "CI": "true"}
    assert job.spec.backoff_limit == 0
    assert job.spec.active_deadline_seconds == 900
    assert job.spec.template.spec.restart_policy == "Never"
    assert job.metadata.labels["step-order"] == "4"

def test_get_job_status():
    assert get_job_status(client.V1Job()) == "pending"
    assert get_job_status(client.V1Job(status=client.V1JobStatus(succeeded=1))) == "succeeded"
    assert get_job_status(client.V1Job(status=client.V1JobStatus(failed=1))) == "failed"
    assert get_job_status(client.V1Job(status=client.V1JobStatus(active=1))) == "running"

def test_deadline_exceeded_is_timeout():
    status = client.V1JobStatus(
        failed=1,
        conditions=[client.V1JobCondition(type="Failed", status="True", reason="DeadlineExceeded")],
    )
    assert get_job_status(client.V1Job(status=status)) == "timeout"

def test_steps_of_a_run_mount_the_same_workspace():
    claim = build_workspace_claim("r1", size="1Gi", storage_class="fast")
    claim_name = claim.metadata.name
    jobs = [
        build_job("r1", order, name, "rust:1-slim", "true", workspace_claim=claim_name)
        for order, name in enumerate(["checkout", "fmt"])
    ]

    for job in jobs:
        pod = job.spec.template.spec
        assert pod.volumes[0].persistent_volume_claim.claim_name == claim_name
        mount = pod.containers[0].volume_mounts[0]
        assert (mount.name, mount.mount_path) == (pod.volumes[0].name, WORKSPACE_MOUNT)
        assert pod.containers[0].working_dir == WORKSPACE_MOUNT

    assert claim.spec.resources.requests == {"storage": "1Gi"}
    assert claim.spec.storage_class_name == "fast"
    assert claim.metadata.labels["run-id"] == "r1"
    assert build_workspace_claim("r2").metadata.name != claim_name
