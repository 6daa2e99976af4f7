from __future__ import annotations

import base64
import io
import json
import urllib.error
import urllib.request

import pytest

from jobswarm.github.api_client import GitHubAPIError, GitHubClient
from jobswarm.settings import ConfigError, Settings


class FakeResponse:
    def __init__(self, body: bytes = b"", status: int = 200):
        self._body = body
        self.status = status

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture()
def sent(monkeypatch: pytest.MonkeyPatch):
    """Capture outgoing requests; respond with whatever `sent.reply` holds."""
    state = {"requests": [], "reply": FakeResponse(b"{}")}

    def fake_urlopen(req, *args, **kwargs):
        state["requests"].append(req)
        reply = state["reply"]
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    return state


def client() -> GitHubClient:
    return GitHubClient("acme", "widgets", "tok-123", base_url="https://api.github.test/")


def test_requests_carry_bearer_token_and_api_headers(sent) -> None:
    sent["reply"] = FakeResponse(json.dumps({"object": {"sha": "abc"}}).encode())

    assert client().get_branch_sha("main") == "abc"

    req = sent["requests"][0]
    assert req.full_url == "https://api.github.test/repos/acme/widgets/git/ref/heads/main"
    assert req.get_method() == "GET"
    assert req.get_header("Authorization") == "Bearer tok-123"
    assert req.get_header("Accept") == "application/vnd.github+json"
    assert req.data is None


def test_create_branch_posts_full_ref(sent) -> None:
    client().create_branch("job/42", "deadbeef")

    req = sent["requests"][0]
    assert req.get_method() == "POST"
    assert req.full_url.endswith("/repos/acme/widgets/git/refs")
    assert json.loads(req.data) == {"ref": "refs/heads/job/42", "sha": "deadbeef"}


def test_put_file_base64_encodes_content(sent) -> None:
    client().put_file("logs/42/job.md", "héllo", branch="job/42", message="job: 42")

    body = json.loads(sent["requests"][0].data)
    assert base64.b64decode(body["content"]).decode("utf-8") == "héllo"
    assert body["branch"] == "job/42"
    assert body["message"] == "job: 42"
    assert "sha" not in body


def test_list_workflow_runs_paths_and_query(sent) -> None:
    c = client()
    c.list_workflow_runs("queued", workflow="run-job.yml", per_page=100)
    c.list_workflow_runs(page=3, per_page=25)

    scoped, unscoped = sent["requests"]
    assert scoped.full_url == (
        "https://api.github.test/repos/acme/widgets/actions/workflows/run-job.yml/runs"
        "?status=queued&per_page=100&page=1"
    )
    assert unscoped.full_url == "https://api.github.test/repos/acme/widgets/actions/runs?per_page=25&page=3"


def test_empty_body_returns_empty_dict(sent) -> None:
    sent["reply"] = FakeResponse(b"", status=204)
    assert client()._request("POST", "/repos/acme/widgets/actions/workflows/up.yml/dispatches", data={}) == {}


def test_http_error_is_wrapped_with_status_and_body(sent) -> None:
    sent["reply"] = urllib.error.HTTPError(
        "https://api.github.test/x", 422, "Unprocessable", {}, io.BytesIO(b'{"message":"Reference already exists"}')
    )

    with pytest.raises(GitHubAPIError) as info:
        client().create_branch("job/dup", "abc")

    assert info.value.status == 422
    assert "Reference already exists" in info.value.body
    assert str(info.value).startswith("GitHub API error: 422")


def test_network_error_has_status_zero(sent) -> None:
    sent["reply"] = urllib.error.URLError("connection refused")

    with pytest.raises(GitHubAPIError) as info:
        client().list_run_jobs(7)

    assert info.value.status == 0


def test_dispatch_workflow_sends_ref_and_inputs(sent) -> None:
    sent["reply"] = FakeResponse(b"", status=204)

    client().dispatch_workflow("upgrade-event-handler.yml", ref="main", inputs={"target_version": "1.2.3"})

    req = sent["requests"][0]
    assert req.full_url.endswith("/actions/workflows/upgrade-event-handler.yml/dispatches")
    assert json.loads(req.data) == {"ref": "main", "inputs": {"target_version": "1.2.3"}}


def test_fetch_job_log_without_commit_makes_no_request(sent) -> None:
    assert client().fetch_job_log("42", None) == ""
    assert sent["requests"] == []


def test_fetch_job_log_downloads_jsonl(sent, monkeypatch: pytest.MonkeyPatch) -> None:
    c = client()
    monkeypatch.setattr(
        c,
        "list_directory",
        lambda path, ref: [
            {"name": "job.md", "download_url": "https://raw.test/job.md"},
            {"name": "session.jsonl", "download_url": "https://raw.test/session.jsonl"},
        ],
    )
    sent["reply"] = FakeResponse(b'{"type":"message"}\n')

    assert c.fetch_job_log("42", "cafebabe") == '{"type":"message"}\n'
    assert sent["requests"][0].full_url == "https://raw.test/session.jsonl"


def test_fetch_job_log_swallows_api_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    c = client()

    def boom(path, ref):
        raise GitHubAPIError(404, "Not Found")

    monkeypatch.setattr(c, "list_directory", boom)
    assert c.fetch_job_log("42", "cafebabe") == ""


def test_from_settings_requires_repository() -> None:
    with pytest.raises(ConfigError):
        GitHubClient.from_settings(Settings(gh_owner="acme"))

    c = GitHubClient.from_settings(Settings(gh_owner="acme", gh_repo="widgets", gh_token="t"))
    assert c.repo_path == "/repos/acme/widgets"
