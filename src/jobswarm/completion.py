"""Job completion events.

The CI platform calls back when a job run ends. The orchestration core turns
that callback into a `JobCompletion` and publishes it on a `CompletionHub`;
summarization and chat notification live in subscribers outside this package.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .model import JOB_BRANCH_PREFIX, job_id_from_branch

logger = logging.getLogger(__name__)

Subscriber = Callable[["JobCompletion"], None]


@dataclass(frozen=True)
class JobCompletion:
    job_id: str
    status: str = ""
    job: str = ""
    commit_message: str = ""
    changed_files: List[str] = field(default_factory=list)
    merge_result: str = ""
    pr_url: str = ""
    run_url: str = ""
    log: str = ""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> JobCompletion:
        """
        Build from the CI callback body.

        Accepts either `job_id` or a `branch` of the form job/<id>.
        """
        job_id = str(payload.get("job_id") or "").strip()
        if not job_id:
            branch = str(payload.get("branch") or "")
            if branch.startswith(JOB_BRANCH_PREFIX):
                job_id = job_id_from_branch(branch)
        if not job_id:
            raise ValueError("Missing job_id")

        changed = payload.get("changed_files") or []
        if isinstance(changed, str):
            changed = [line for line in changed.splitlines() if line.strip()]

        return cls(
            job_id=job_id,
            status=str(payload.get("status") or ""),
            job=str(payload.get("job") or ""),
            commit_message=str(payload.get("commit_message") or ""),
            changed_files=[str(f) for f in changed],
            merge_result=str(payload.get("merge_result") or ""),
            pr_url=str(payload.get("pr_url") or ""),
            run_url=str(payload.get("run_url") or ""),
            log=str(payload.get("log") or ""),
        )


def render_completion_message(completion: JobCompletion) -> str:
    """Markdown handed to the summarizer. Empty sections are left out."""
    sections = [
        ("Task", completion.job),
        ("Commit Message", completion.commit_message),
        ("Changed Files", "\n".join(completion.changed_files)),
        ("Status", completion.status),
        ("Merge Result", completion.merge_result),
        ("PR URL", completion.pr_url),
        ("Run URL", completion.run_url),
        ("Agent Log", completion.log),
    ]
    return "\n\n".join(f"## {title}\n{body}" for title, body in sections if body)


class CompletionHub:
    """Publish/subscribe point for completion events, with a blocking wait."""

    def __init__(self, keep: int = 100) -> None:
        self._subscribers: List[Subscriber] = []
        self._recent: "OrderedDict[str, JobCompletion]" = OrderedDict()
        self._keep = keep
        self._cond = threading.Condition()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._cond:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._cond:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, completion: JobCompletion) -> int:
        """
        Deliver to every subscriber synchronously.

        Returns how many subscribers succeeded; failures are logged.
        """
        with self._cond:
            self._recent[completion.job_id] = completion
            self._recent.move_to_end(completion.job_id)
            while len(self._recent) > self._keep:
                self._recent.popitem(last=False)
            subscribers = list(self._subscribers)
            self._cond.notify_all()

        delivered = 0
        for callback in subscribers:
            try:
                callback(completion)
                delivered += 1
            except Exception:
                logger.exception("Completion subscriber failed for job %s", completion.job_id)
        return delivered

    def get(self, job_id: str) -> Optional[JobCompletion]:
        with self._cond:
            return self._recent.get(job_id)

    def wait_for(self, job_id: str, timeout: Optional[float] = None) -> Optional[JobCompletion]:
        """Block until `job_id` completes (or already has). None on timeout."""
        with self._cond:
            self._cond.wait_for(lambda: job_id in self._recent, timeout=timeout)
            return self._recent.get(job_id)
