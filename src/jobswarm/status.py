# status.py
from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .github.api_client import GitHubAPIError, GitHubClient
from .model import (
    JOB_BRANCH_PREFIX,
    JobStatus,
    RunSummary,
    StatusReport,
    StepProgress,
    SwarmPage,
    job_branch,
    job_id_from_branch,
)

logger = logging.getLogger(__name__)

SWARM_PAGE_SIZE = 25
STATUS_PAGE_SIZE = 100


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    # GitHub returns "2024-05-01T12:00:00Z"; fromisoformat() only takes "Z" from 3.11
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def summarize_steps(jobs_data: dict) -> StepProgress:
    """Reduce a run's jobs listing to progress of its first job."""
    jobs = jobs_data.get("jobs") or []
    if not jobs:
        return StepProgress(current_step=None, steps_completed=0, steps_total=0)

    steps = jobs[0].get("steps") or []
    current = next((s.get("name") for s in steps if s.get("status") == "in_progress"), None)
    return StepProgress(
        current_step=current,
        steps_completed=sum(1 for s in steps if s.get("status") == "completed"),
        steps_total=len(steps),
    )


class StatusTracker:
    """Reconstructs job progress and swarm views from the CI run API."""

    def __init__(
        self,
        github: GitHubClient,
        workflow: str = "run-job.yml",
        clock: Callable[[], datetime] = now_utc,
        max_workers: int = 8,
    ):
        self.github = github
        self.workflow = workflow
        self.clock = clock
        self.max_workers = max_workers

    # ------------------------------------------------------------------
    # Job status
    # ------------------------------------------------------------------

    def get_job_status(self, job_id: Optional[str] = None) -> StatusReport:
        """
        Report queued and running jobs, or a single job when `job_id` is given.

        Only runs of the job workflow on `job/` branches are considered. A run
        whose step breakdown cannot be fetched is still reported, with
        `steps=None`.
        """
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            in_progress_f = pool.submit(
                self.github.list_workflow_runs, "in_progress",
                workflow=self.workflow, per_page=STATUS_PAGE_SIZE,
            )
            queued_f = pool.submit(
                self.github.list_workflow_runs, "queued",
                workflow=self.workflow, per_page=STATUS_PAGE_SIZE,
            )
            all_runs = (in_progress_f.result().get("workflow_runs") or []) + (
                queued_f.result().get("workflow_runs") or []
            )

            runs = [r for r in all_runs if (r.get("head_branch") or "").startswith(JOB_BRANCH_PREFIX)]
            if job_id:
                wanted = job_branch(job_id)
                runs = [r for r in runs if r.get("head_branch") == wanted]

            jobs = list(pool.map(self._job_status, runs))

        return StatusReport(
            jobs=jobs,
            queued=sum(1 for j in jobs if j.status == "queued"),
            running=sum(1 for j in jobs if j.status == "in_progress"),
        )

    def _job_status(self, run: dict) -> JobStatus:
        branch = run["head_branch"]
        started_at = run.get("created_at") or ""
        elapsed = (self.clock() - parse_timestamp(started_at)).total_seconds() if started_at else 0.0

        status = JobStatus(
            job_id=job_id_from_branch(branch),
            branch=branch,
            status=run.get("status") or "",
            started_at=started_at,
            duration_minutes=_round_half_up(elapsed / 60),
            run_id=run["id"],
        )

        try:
            status.steps = summarize_steps(self.github.list_run_jobs(run["id"]))
        except (GitHubAPIError, AttributeError, TypeError) as e:
            # runs that have not started yet often have no jobs endpoint;
            # a malformed jobs payload degrades the same way
            logger.debug("Step detail unavailable for run %s: %s", run["id"], e)
            status.step_detail_error = str(e)

        return status

    # ------------------------------------------------------------------
    # Swarm
    # ------------------------------------------------------------------

    def get_swarm_status(self, page: int = 1) -> SwarmPage:
        """One page of all CI runs, any workflow and any branch."""
        page = max(1, int(page))
        data = self.github.list_workflow_runs(page=page, per_page=SWARM_PAGE_SIZE)
        now = self.clock()

        runs: List[RunSummary] = []
        for run in data.get("workflow_runs") or []:
            created_at = run.get("created_at") or ""
            elapsed = (now - parse_timestamp(created_at)).total_seconds() if created_at else 0.0
            runs.append(
                RunSummary(
                    run_id=run["id"],
                    branch=run.get("head_branch"),
                    status=run.get("status") or "",
                    conclusion=run.get("conclusion"),
                    workflow_name=run.get("name"),
                    started_at=created_at,
                    updated_at=run.get("updated_at"),
                    duration_seconds=_round_half_up(elapsed),
                    html_url=run.get("html_url"),
                )
            )

        total = int(data.get("total_count") or 0)
        return SwarmPage(runs=runs, page=page, has_more=page * SWARM_PAGE_SIZE < total)
