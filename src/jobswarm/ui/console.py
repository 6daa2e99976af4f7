"""Console output formatting utilities for jobswarm."""

from __future__ import annotations

import json
import sys
from typing import Any, Dict, List, Optional

from jobswarm.model import JobRef, StatusReport, SwarmPage


class Console:
    """Human-readable output for the jobswarm CLI. `debug` turns on tracebacks."""

    def __init__(self, debug: bool = False):
        self.debug = debug

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_job_created(self, ref: JobRef) -> None:
        print("\nJOB CREATED")
        print(f"Job ID: {ref.job_id}")
        print(f"Branch: {ref.branch}")

    def print_job_status(self, report: StatusReport) -> None:
        """Print queued/running jobs with step progress."""
        self.print_header(f"JOBS (running: {report.running}, queued: {report.queued})")
        if not report.jobs:
            print("No active jobs.")
            return
        for job in report.jobs:
            print(f"\n{job.job_id}")
            print(f"  Status: {job.status}")
            print(f"  Started: {job.started_at} ({job.duration_minutes} min ago)")
            if job.steps is None:
                print("  Steps: unavailable")
            else:
                print(f"  Steps: {job.steps_completed}/{job.steps_total}")
                if job.current_step:
                    print(f"  Current step: {job.current_step}")

    def print_swarm_page(self, page: SwarmPage) -> None:
        """Print one page of CI runs as a compact table."""
        self.print_header(f"SWARM (page {page.page})")
        if not page.runs:
            print("No runs.")
        for run in page.runs:
            state = run.conclusion or run.status
            print(
                f"  {run.run_id:<12} {state:<12} {run.workflow_name or '-':<24} "
                f"{run.branch or '-':<44} {run.duration_seconds}s"
            )
        if page.has_more:
            print(f"\nMore runs available: --page {page.page + 1}")

    def print_swarm_config(self, config: Dict[str, List[Dict[str, Any]]]) -> None:
        for key in ("crons", "triggers"):
            entries = config.get(key) or []
            self.print_header(f"{key.upper()} ({len(entries)})")
            for entry in entries:
                flag = "" if entry.get("enabled") is not False else " (disabled)"
                kind = entry.get("type") or "agent"
                if key == "crons":
                    print(f"  {entry.get('name')}: {entry.get('schedule')} [{kind}]{flag}")
                else:
                    print(f"  {entry.get('name')}: {entry.get('watch_path')} "
                          f"[{len(entry.get('actions') or [])} action(s)]{flag}")

    def print_scheduler_started(self, names: List[str]) -> None:
        print("\nCRON SCHEDULER STARTED")
        print(f"Entries: {len(names)}")
        for name in names:
            print(f"  {name}")
        print()

    def print_json(self, data: Any) -> None:
        print(json.dumps(data, indent=2))

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """Print an error block to stderr: title, message, detail lines, then a hint."""
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print a line to stdout."""
        print(message)


# set by the CLI group callback
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
