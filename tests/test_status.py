from __future__ import annotations

from datetime import datetime, timezone

from conftest import REPO_PATH, make_run, runs_by_status
from jobswarm.github.api_client import GitHubAPIError
from jobswarm.status import StatusTracker, parse_timestamp, summarize_steps

NOW = datetime(2025, 3, 1, 12, 30, 0, tzinfo=timezone.utc)
WORKFLOW_RUNS = f"{REPO_PATH}/actions/workflows/run-job.yml/runs"


def tracker(github) -> StatusTracker:
    return StatusTracker(github, clock=lambda: NOW)


def steps_payload(*statuses: tuple[str, str]) -> dict:
    return {"jobs": [{"steps": [{"name": n, "status": s} for n, s in statuses]}]}


def seed(github, runs: list[dict]) -> None:
    github.route("GET", WORKFLOW_RUNS, runs_by_status(runs))
    github.route("GET", f"{REPO_PATH}/actions/runs/*", steps_payload())


def test_only_job_branches_are_reported(github) -> None:
    seed(
        github,
        [
            make_run(1, "job/aaa"),
            make_run(2, "feature/foo"),
            make_run(3, "job/bbb", status="queued"),
            make_run(4, None),
        ],
    )

    report = tracker(github).get_job_status()

    assert sorted(j.branch for j in report.jobs) == ["job/aaa", "job/bbb"]
    assert all(j.branch.startswith("job/") for j in report.jobs)
    assert report.running == 1
    assert report.queued == 1


def test_fetches_in_progress_and_queued_from_the_job_workflow(github) -> None:
    seed(github, [])

    tracker(github).get_job_status()

    statuses = sorted(c[3]["status"] for c in github.calls_for("GET", WORKFLOW_RUNS))
    assert statuses == ["in_progress", "queued"]


def test_specific_job_id_returns_at_most_one(github) -> None:
    seed(github, [make_run(1, "job/abc"), make_run(2, "job/abcd"), make_run(3, "job/xyz", status="queued")])

    report = tracker(github).get_job_status("abc")

    assert [j.job_id for j in report.jobs] == ["abc"]
    assert report.jobs[0].branch == "job/abc"

    assert tracker(github).get_job_status("missing").jobs == []


def test_step_progress_and_elapsed_minutes(github) -> None:
    seed(github, [make_run(9, "job/abc", created_at="2025-03-01T12:00:00Z")])
    github.route(
        "GET",
        f"{REPO_PATH}/actions/runs/9/jobs",
        steps_payload(("Set up job", "completed"), ("Checkout", "completed"), ("Run agent", "in_progress"), ("Commit", "queued")),
    )

    job = tracker(github).get_job_status().jobs[0]

    assert job.job_id == "abc"
    assert job.run_id == 9
    assert job.duration_minutes == 30
    assert job.current_step == "Run agent"
    assert job.steps_completed == 2
    assert job.steps_total == 4
    assert job.step_detail_error is None


def test_step_detail_failure_degrades_instead_of_dropping(github) -> None:
    seed(github, [make_run(5, "job/abc", status="queued"), make_run(6, "job/def")])
    github.route("GET", f"{REPO_PATH}/actions/runs/5/jobs", GitHubAPIError(404, "Not Found"))

    report = tracker(github).get_job_status()
    by_id = {j.job_id: j for j in report.jobs}

    degraded = by_id["abc"]
    assert degraded.steps is None
    assert degraded.current_step is None
    assert degraded.steps_completed == 0
    assert degraded.steps_total == 0
    assert "404" in degraded.step_detail_error

    assert by_id["def"].steps is not None
    assert report.queued == 1 and report.running == 1


def test_malformed_jobs_payload_degrades_like_a_failed_fetch(github) -> None:
    seed(github, [make_run(7, "job/ghi")])
    github.route("GET", f"{REPO_PATH}/actions/runs/7/jobs", {"jobs": [None]})

    [job] = tracker(github).get_job_status().jobs

    assert job.job_id == "ghi"
    assert job.steps is None
    assert job.step_detail_error


def test_listing_failure_propagates(github) -> None:
    github.route("GET", WORKFLOW_RUNS, GitHubAPIError(401, "Bad credentials"))

    try:
        tracker(github).get_job_status()
    except GitHubAPIError as e:
        assert e.status == 401
    else:
        raise AssertionError("expected GitHubAPIError")


def test_summarize_steps_with_no_jobs() -> None:
    progress = summarize_steps({"jobs": []})
    assert (progress.current_step, progress.steps_completed, progress.steps_total) == (None, 0, 0)


def test_parse_timestamp_handles_z_suffix() -> None:
    assert parse_timestamp("2025-03-01T12:00:00Z") == datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


# ----------------------------------------------------------------------
# Swarm
# ----------------------------------------------------------------------

def swarm_listing(total: int, runs: list[dict]):
    return lambda _data, _query: {"total_count": total, "workflow_runs": runs}


def test_swarm_maps_runs_and_requests_page_of_25(github) -> None:
    run = make_run(77, "feature/foo", status="completed", conclusion="success", name="CI")
    github.route("GET", f"{REPO_PATH}/actions/runs", swarm_listing(1, [run]))

    page = tracker(github).get_swarm_status(1)

    assert github.calls[0][3] == {"per_page": 25, "page": 1}
    summary = page.runs[0]
    assert summary.run_id == 77
    assert summary.branch == "feature/foo"
    assert summary.conclusion == "success"
    assert summary.workflow_name == "CI"
    assert summary.duration_seconds == 30 * 60
    assert summary.html_url.endswith("/actions/runs/77")
    assert page.has_more is False


def test_swarm_has_more(github) -> None:
    github.route("GET", f"{REPO_PATH}/actions/runs", swarm_listing(30, []))
    t = tracker(github)

    assert t.get_swarm_status(1).has_more is True
    assert t.get_swarm_status(2).has_more is False


def test_swarm_does_not_fetch_step_detail(github) -> None:
    github.route("GET", f"{REPO_PATH}/actions/runs", swarm_listing(2, [make_run(1, "job/a"), make_run(2, "main")]))

    tracker(github).get_swarm_status(1)

    assert len(github.calls) == 1


def test_swarm_page_dict_uses_has_more_key(github) -> None:
    github.route("GET", f"{REPO_PATH}/actions/runs", swarm_listing(60, []))
    assert tracker(github).get_swarm_status(2).to_dict() == {"runs": [], "page": 2, "hasMore": True}
