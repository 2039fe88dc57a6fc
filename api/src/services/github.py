"""
GitHub service for webhook validation and repo operations.
"""

import asyncio
import hmac
import hashlib
import shutil
import tempfile
import subprocess
import os
from typing import Optional, Dict, Any

import yaml

from api.src.config import get_settings
from controller.src.models.pipeline import Trigger

settings = get_settings()

def verify_signature(payload: bytes, signature: str) -> bool:
    """Verify GitHub webhook signature."""
    if not settings.github_webhook_secret:
        # Skip verification if no secret configured (development)
        return True

    expected = "sha256=" + hmac.new(
        settings.github_webhook_secret.encode(),
        payload,
        hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected, signature)

async def clone_repository(clone_url: str, commit_sha: Optional[str] = None, branch: Optional[str] = None) -> str:
    """
    Clone repository to temporary directory.
    Returns path to cloned repo. git runs in a worker thread so the event loop stays free.
    """
    temp_dir = tempfile.mkdtemp(prefix="stepgate_")
    repo_path = os.path.join(temp_dir, "repo")

    try:
        await asyncio.to_thread(checkout_commit, clone_url, repo_path, commit_sha, branch)
        return repo_path
    except subprocess.TimeoutExpired:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise Exception("Repository clone timed out")
    except subprocess.CalledProcessError as e:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise Exception(f"Failed to clone repository: {e.stderr.decode()}")

def checkout_commit(clone_url: str, repo_path: str, commit_sha: Optional[str] = None, branch: Optional[str] = None):
    """Shallow clone into repo_path, then check out commit_sha if given."""
    clone_cmd = ["git", "clone", "--depth", "1"]
    if branch and not commit_sha:
        clone_cmd += ["--branch", branch]

    subprocess.run(
        clone_cmd + [clone_url, repo_path],
        check=True,
        capture_output=True,
        timeout=120
    )

    if commit_sha:
        subprocess.run(
            ["git", "fetch", "--depth", "1", "origin", commit_sha],
            cwd=repo_path,
            capture_output=True,
            timeout=60
        )
        subprocess.run(
            ["git", "checkout", commit_sha],
            cwd=repo_path,
            check=True,
            capture_output=True,
            timeout=30
        )

def get_head_sha(repo_path: str) -> str:
    """Commit currently checked out in a clone."""
    result = subprocess.run(
        ["git", "rev-parse", "HEAD"],
        cwd=repo_path,
        check=True,
        capture_output=True,
        timeout=30
    )
    return result.stdout.decode().strip()

async def fetch_pipeline_config(repo_path: str) -> Optional[Dict[str, Any]]:
    """
    Read the pipeline file from repository.
    Returns parsed config or None if not found.
    """
    for relative_path in settings.pipeline_files:
        config_path = os.path.join(repo_path, relative_path)
        if os.path.exists(config_path):
            with open(config_path, "r") as f:
                return yaml.safe_load(f)

    return None

def parse_webhook_payload(payload: Dict[str, Any], event: str = "push") -> Dict[str, Any]:
    """Extract relevant info from a GitHub push or pull_request payload."""
    repo = payload.get("repository", {})

    if event == "pull_request":
        pull_request = payload.get("pull_request", {})
        head = pull_request.get("head", {})
        head_repo = head.get("repo") or {}
        return {
            "event": "pull_request",
            "pr_action": payload.get("action", ""),
            "pr_number": payload.get("number", pull_request.get("number")),
            "repo_name": repo.get("name", ""),
            "repo_full_name": repo.get("full_name", ""),
            "clone_url": head_repo.get("clone_url", repo.get("clone_url", "")),
            "commit_sha": head.get("sha", ""),
            "branch": head.get("ref", ""),
            "commit_message": pull_request.get("title", ""),
            "pusher": payload.get("sender", {}).get("login", ""),
        }

    head_commit = payload.get("head_commit") or {}

    # Get branch from ref (refs/heads/main -> main)
    ref = payload.get("ref", "")
    branch = ref.replace("refs/heads/", "") if ref.startswith("refs/heads/") else ref

    return {
        "event": "push",
        "pr_action": None,
        "pr_number": None,
        "repo_name": repo.get("name", ""),
        "repo_full_name": repo.get("full_name", ""),
        "clone_url": repo.get("clone_url", ""),
        "commit_sha": head_commit.get("id", payload.get("after", "")),
        "branch": branch,
        "commit_message": head_commit.get("message", ""),
        "pusher": payload.get("pusher", {}).get("name", ""),
    }

def build_trigger(webhook_data: Dict[str, Any]) -> Trigger:
    """
    Turn parsed webhook data into a Trigger.
    Raises ConfigurationError for events with no matching trigger type.
    """
    return Trigger.from_event({
        "type": webhook_data["event"],
        "branch": webhook_data.get("branch"),
        "pr_action": webhook_data.get("pr_action"),
        "pr_number": webhook_data.get("pr_number"),
        "commit_sha": webhook_data.get("commit_sha"),
        "repository": webhook_data.get("repo_full_name"),
        "clone_url": webhook_data.get("clone_url"),
        "actor": webhook_data.get("pusher"),
    })

def repo_full_name_from_url(clone_url: str) -> str:
    """https://github.com/user/repo.git -> user/repo"""
    path = clone_url.rstrip("/")
    if path.endswith(".git"):
        path = path[:-4]
    path = path.replace(":", "/")
    return "/".join(path.split("/")[-2:])

def cleanup_repo(repo_path: str):
    """Clean up cloned repository."""
    if repo_path and os.path.exists(repo_path):
        # Remove the parent temp directory
        shutil.rmtree(os.path.dirname(repo_path), ignore_errors=True)
