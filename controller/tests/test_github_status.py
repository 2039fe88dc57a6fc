"""Tests for GitHub commit status reporting."""

import json

import httpx

from controller.src.models.pipeline import Run, RunStatus, StepOutcome, StepResult, Trigger, TriggerType
from controller.src.services.github_status import GitHubStatusReporter

def make_run(status, results=()):
    return Run(
        pipeline_name="Format and test",
        trigger=Trigger(
            type=TriggerType.PUSH,
            branch="main",
            repository="acme/widgets",
            commit_sha="abc1234def5678",
        ),
        status=status,
        step_results=list(results),
        current_index=len(results),
    )

def recording_client(status_code=201):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(status_code, json={})

    return httpx.Client(transport=httpx.MockTransport(handler)), requests

def test_reports_failure_to_commit():
    client, requests = recording_client()
    reporter = GitHubStatusReporter(token="ghs_token", api_url="https://github.example/api/v3/", client=client)
    results = [
        StepResult(step_name="Run cargo fmt", exit_code=1, duration_ms=900, outcome=StepOutcome.FAILURE),
    ]

    reporter.report(make_run(RunStatus.FAILED, results))

    assert len(requests) == 1
    request = requests[0]
    assert str(request.url) == "https://github.example/api/v3/repos/acme/widgets/statuses/abc1234def5678"
    assert request.headers["Authorization"] == "Bearer ghs_token"
    body = json.loads(request.content)
    assert body["state"] == "failure"
    assert body["context"] == "stepgate/Format and test"
    assert "Run cargo fmt" in body["description"]

def test_reports_success_and_cancel():
    client, requests = recording_client()
    reporter = GitHubStatusReporter(token="t", api_url="https://api.github.com", client=client)

    reporter.report(make_run(RunStatus.SUCCEEDED))
    reporter.report(make_run(RunStatus.CANCELLED))

    assert [json.loads(r.content)["state"] for r in requests] == ["success", "error"]

def test_skips_without_token_or_commit():
    client, requests = recording_client()

    GitHubStatusReporter(token="", client=client).report(make_run(RunStatus.FAILED))
    run = make_run(RunStatus.FAILED)
    run.trigger = Trigger(type=TriggerType.MANUAL_CALL)
    GitHubStatusReporter(token="t", client=client).report(run)
    GitHubStatusReporter(token="t", client=client).report(make_run(RunStatus.SKIPPED))

    assert requests == []

def test_http_errors_are_not_raised():
    client, requests = recording_client(status_code=500)

    GitHubStatusReporter(token="t", client=client).report(make_run(RunStatus.SUCCEEDED))

    assert len(requests) == 1

def test_cancelled_run_names_aborted_step():
    client, requests = recording_client()
    results = [
        StepResult(step_name="Run cargo fmt", exit_code=0, duration_ms=10, outcome=StepOutcome.SUCCESS),
        StepResult(step_name="Run clippy", exit_code=0, duration_ms=10, outcome=StepOutcome.ABORTED),
    ]

    GitHubStatusReporter(token="t", client=client).report(make_run(RunStatus.CANCELLED, results))

    assert json.loads(requests[0].content)["description"] == "cancelled at 'Run clippy'"
