"""Shared test fixtures."""

from __future__ import annotations

import copy
import threading
from pathlib import Path
from typing import Any, Callable

import pytest

from jobswarm.github.api_client import GitHubAPIError, GitHubClient
from jobswarm.settings import Settings

OWNER = "acme"
REPO = "widgets"
REPO_PATH = f"/repos/{OWNER}/{REPO}"
TRUNK_SHA = "0123456789abcdef0123456789abcdef01234567"


class FakeGitHub(GitHubClient):
    """
    GitHubClient whose transport is a route table.

    Routes map (method, path) to a response, an exception to raise, or a
    callable(data, query) returning the response. A path ending in "*"
    matches by prefix.
    """

    def __init__(self) -> None:
        super().__init__(OWNER, REPO, "test-token")
        self.calls: list[tuple[str, str, Any, Any]] = []
        self.routes: dict[tuple[str, str], Any] = {}
        self._lock = threading.Lock()

    def route(self, method: str, path: str, response: Any) -> None:
        self.routes[(method, path)] = response

    def _lookup(self, method: str, path: str) -> Any:
        if (method, path) in self.routes:
            return self.routes[(method, path)]
        for (m, p), handler in self.routes.items():
            if m == method and p.endswith("*") and path.startswith(p[:-1]):
                return handler
        raise GitHubAPIError(404, f"no route for {method} {path}")

    def _request(self, method, path, data=None, query=None):
        with self._lock:
            self.calls.append((method, path, copy.deepcopy(data), dict(query or {})))
        handler = self._lookup(method, path)
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(data, query)
        return copy.deepcopy(handler)

    def calls_for(self, method: str, prefix: str = "") -> list[tuple[str, str, Any, Any]]:
        return [c for c in self.calls if c[0] == method and c[1].startswith(prefix)]


def make_run(
    run_id: int,
    branch: str,
    status: str = "in_progress",
    created_at: str = "2025-03-01T12:00:00Z",
    **extra: Any,
) -> dict:
    run = {
        "id": run_id,
        "head_branch": branch,
        "status": status,
        "conclusion": None,
        "name": "Run Job",
        "created_at": created_at,
        "updated_at": created_at,
        "html_url": f"https://github.com/{OWNER}/{REPO}/actions/runs/{run_id}",
    }
    run.update(extra)
    return run


def runs_by_status(runs: list[dict]) -> Callable[[Any, Any], dict]:
    """Route handler that filters canned runs by the `status` query param."""

    def handler(_data, query):
        wanted = (query or {}).get("status")
        selected = [r for r in runs if wanted is None or r["status"] == wanted]
        return {"total_count": len(selected), "workflow_runs": selected}

    return handler


@pytest.fixture()
def github() -> FakeGitHub:
    """FakeGitHub preloaded with the routes job creation needs."""
    fake = FakeGitHub()
    fake.route("GET", f"{REPO_PATH}/git/ref/heads/main", {"object": {"sha": TRUNK_SHA}})
    fake.route("POST", f"{REPO_PATH}/git/refs", {"ref": "refs/heads/job/x"})
    fake.route("PUT", f"{REPO_PATH}/contents/logs/*", {"content": {}})
    return fake


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        gh_owner=OWNER,
        gh_repo=REPO,
        gh_token="test-token",
        api_key="s3cret",
        gh_webhook_secret="gh-s3cret",
        project_root=tmp_path,
        enable_cron=False,
    )
