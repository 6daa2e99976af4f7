# github/api_client.py
from __future__ import annotations

import base64
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

from jobswarm.settings import Settings

logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """
    Raised when a GitHub REST call fails.

    `status` is the HTTP status code, or 0 when the request never got a
    response (DNS, connection refused, ...).
    """

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"GitHub API error: {status} {body}".rstrip())


class GitHubClient:
    """HTTP client for the GitHub REST API, scoped to one repository."""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        base_url: str = "https://api.github.com",
    ):
        """
        Initialize API client.

        Args:
            owner: Repository owner (user or organization)
            repo: Repository name
            token: Bearer token sent in the Authorization header
            base_url: API root, overridable for GitHub Enterprise
        """
        self.owner = owner
        self.repo = repo
        self.token = token
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> GitHubClient:
        settings.require_repository()
        return cls(settings.gh_owner, settings.gh_repo, settings.gh_token, settings.github_api)

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def _headers(self, extra: Optional[dict] = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        query: Optional[dict] = None,
    ) -> Any:
        """
        Make an authenticated request against the REST API.

        Args:
            method: HTTP method (GET, POST, PUT, ...)
            path: API path starting with "/" (e.g. "/repos/o/r/git/refs")
            data: Optional JSON body
            query: Optional query-string parameters

        Returns:
            Parsed JSON response ({} for empty bodies such as 204)

        Raises:
            GitHubAPIError: On non-2xx responses or network failure
        """
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{urlencode(query)}"

        req_data = None
        if data is not None:
            req_data = json.dumps(data).encode("utf-8")

        req = urllib.request.Request(url, data=req_data, headers=self._headers(), method=method)
        logger.debug("GitHub %s %s", method, path)

        try:
            with urllib.request.urlopen(req) as response:
                response_data = response.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8", errors="replace") if e.fp else ""
            raise GitHubAPIError(e.code, error_body) from e
        except urllib.error.URLError as e:
            raise GitHubAPIError(0, f"Network error: {e.reason}") from e

        if not response_data:
            return {}
        try:
            return json.loads(response_data)
        except json.JSONDecodeError as e:
            raise GitHubAPIError(200, f"Invalid JSON response: {e}") from e

    def _download(self, url: str) -> str:
        """Fetch a raw file (e.g. a contents `download_url`) as text."""
        req = urllib.request.Request(url, headers={"Authorization": f"Bearer {self.token}"}, method="GET")
        try:
            with urllib.request.urlopen(req) as response:
                return response.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            raise GitHubAPIError(e.code, "") from e
        except urllib.error.URLError as e:
            raise GitHubAPIError(0, f"Network error: {e.reason}") from e

    # ------------------------------------------------------------------
    # Git data
    # ------------------------------------------------------------------

    def get_branch_sha(self, branch: str) -> str:
        """Resolve the commit SHA a branch currently points at."""
        ref = self._request("GET", f"{self.repo_path}/git/ref/heads/{branch}")
        return ref["object"]["sha"]

    def create_branch(self, branch: str, sha: str) -> dict:
        return self._request(
            "POST",
            f"{self.repo_path}/git/refs",
            data={"ref": f"refs/heads/{branch}", "sha": sha},
        )

    def put_file(
        self,
        path: str,
        content: str,
        *,
        branch: str,
        message: str,
        sha: Optional[str] = None,
    ) -> dict:
        """Create (or, with `sha`, update) a file on a branch."""
        body: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if sha:
            body["sha"] = sha
        return self._request("PUT", f"{self.repo_path}/contents/{path}", data=body)

    def list_directory(self, path: str, ref: str) -> Any:
        return self._request("GET", f"{self.repo_path}/contents/{path}", query={"ref": ref})

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def list_workflow_runs(
        self,
        status: Optional[str] = None,
        *,
        workflow: Optional[str] = None,
        page: int = 1,
        per_page: int = 100,
    ) -> dict:
        """
        List workflow runs, optionally scoped to one workflow file.

        Returns the raw listing ({"total_count": ..., "workflow_runs": [...]}).
        """
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        query["per_page"] = per_page
        query["page"] = page

        if workflow:
            path = f"{self.repo_path}/actions/workflows/{quote(workflow, safe='')}/runs"
        else:
            path = f"{self.repo_path}/actions/runs"
        return self._request("GET", path, query=query)

    def list_run_jobs(self, run_id: int) -> dict:
        """Per-run job and step breakdown."""
        return self._request("GET", f"{self.repo_path}/actions/runs/{run_id}/jobs")

    def dispatch_workflow(
        self,
        workflow_id: str,
        ref: str = "main",
        inputs: Optional[dict] = None,
    ) -> None:
        """Trigger a workflow_dispatch event. GitHub answers 204 on success."""
        self._request(
            "POST",
            f"{self.repo_path}/actions/workflows/{quote(workflow_id, safe='')}/dispatches",
            data={"ref": ref, "inputs": inputs or {}},
        )

    def fetch_job_log(self, job_id: str, commit_sha: Optional[str]) -> str:
        """
        Fetch the agent session log (.jsonl) a job committed under logs/<job_id>/.

        Returns "" when there is no commit, no log file, or the fetch fails.
        """
        if not commit_sha:
            return ""
        try:
            files = self.list_directory(f"logs/{job_id}", ref=commit_sha)
            if not isinstance(files, list):
                return ""
            log_file = next((f for f in files if str(f.get("name", "")).endswith(".jsonl")), None)
            if not log_file or not log_file.get("download_url"):
                return ""
            return self._download(log_file["download_url"])
        except GitHubAPIError as e:
            logger.error("Failed to fetch job log for %s: %s", job_id, e)
            return ""
