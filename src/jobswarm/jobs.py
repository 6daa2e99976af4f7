# jobs.py
from __future__ import annotations

import json
import logging
import uuid
from typing import Optional

from .github.api_client import GitHubAPIError, GitHubClient
from .model import JobRef, job_branch

logger = logging.getLogger(__name__)


def job_payload_path(job_id: str) -> str:
    return f"logs/{job_id}/job.md"


def job_config_path(job_id: str) -> str:
    return f"logs/{job_id}/job.config.json"


class JobDispatcher:
    """
    Hands work to the worker pool by cutting a `job/<id>` branch.

    A job has no record of its own: it is the branch, the job.md payload on
    it and, optionally, a job.config.json with LLM overrides.
    """

    def __init__(self, github: GitHubClient, trunk: str = "main"):
        self.github = github
        self.trunk = trunk

    def create_job(
        self,
        description: str,
        llm_provider: Optional[str] = None,
        llm_model: Optional[str] = None,
    ) -> JobRef:
        """
        Create a job branch and write its payload.

        Args:
            description: Job description; becomes the worker's task prompt
            llm_provider: Optional provider override written to job.config.json
            llm_model: Optional model override written to job.config.json

        Returns:
            JobRef with the new job ID and its branch

        Raises:
            GitHubAPIError: If any REST call fails. A failure after the branch
                exists leaves an empty job branch behind; it is not rolled back.
        """
        job_id = str(uuid.uuid4())
        branch = job_branch(job_id)

        # 1. trunk SHA
        trunk_sha = self.github.get_branch_sha(self.trunk)

        # 2. branch (nothing written yet, so a failure here leaves no trace)
        self.github.create_branch(branch, trunk_sha)

        # 3. payload + optional overrides
        try:
            self.github.put_file(
                job_payload_path(job_id),
                description,
                branch=branch,
                message=f"job: {job_id}",
            )

            overrides = {}
            if llm_provider:
                overrides["llm_provider"] = llm_provider
            if llm_model:
                overrides["llm_model"] = llm_model
            if overrides:
                self.github.put_file(
                    job_config_path(job_id),
                    json.dumps(overrides, indent=2),
                    branch=branch,
                    message=f"job config: {job_id}",
                )
        except GitHubAPIError:
            logger.error("Job %s left an orphaned branch %s: payload write failed", job_id, branch)
            raise

        logger.info("Created job %s on %s", job_id, branch)
        return JobRef(job_id=job_id, branch=branch)
