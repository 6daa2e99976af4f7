# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

JOB_BRANCH_PREFIX = "job/"


class ActionParseError(ValueError):
    """Raised when a config dict cannot be mapped to an Action, cron or trigger entry."""


def job_branch(job_id: str) -> str:
    return f"{JOB_BRANCH_PREFIX}{job_id}"


def job_id_from_branch(branch: str) -> str:
    return branch[len(JOB_BRANCH_PREFIX):]


# ----------------------------------------------------------------------
# Actions
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class AgentAction:
    """Create a job for the worker pool."""
    job_description: str
    llm_provider: Optional[str] = None
    llm_model: Optional[str] = None

    type = "agent"


@dataclass(frozen=True)
class CommandAction:
    """Run a shell command locally; no job is created."""
    command_line: str

    type = "command"


@dataclass(frozen=True)
class WebhookAction:
    """Outbound HTTP call; no job is created."""
    url: str
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    vars: Dict[str, Any] = field(default_factory=dict)

    type = "webhook"


Action = Union[AgentAction, CommandAction, WebhookAction]


@dataclass(frozen=True)
class ActionContext:
    """Per-invocation execution context for an Action."""
    cwd: Optional[str] = None
    data: Any = None


def _require(data: Dict[str, Any], key: str, kind: str) -> Any:
    value = data.get(key)
    if not value:
        raise ActionParseError(f"{kind} action requires a non-empty '{key}' field")
    return value


def parse_action(data: Dict[str, Any]) -> Action:
    """
    Build an Action from its declarative dict form.

    The dict uses the flat config field names (`job`, `command`, `url`, ...).
    An absent `type` means `agent`.
    """
    if not isinstance(data, dict):
        raise ActionParseError(f"Action must be an object, got {type(data).__name__}")

    kind = data.get("type") or "agent"

    if kind == "agent":
        return AgentAction(
            job_description=_require(data, "job", "agent"),
            llm_provider=data.get("llm_provider") or None,
            llm_model=data.get("llm_model") or None,
        )
    if kind == "command":
        return CommandAction(command_line=_require(data, "command", "command"))
    if kind == "webhook":
        headers = data.get("headers") or {}
        variables = data.get("vars") or {}
        if not isinstance(headers, dict) or not isinstance(variables, dict):
            raise ActionParseError("webhook action 'headers' and 'vars' must be objects")
        return WebhookAction(
            url=_require(data, "url", "webhook"),
            method=str(data.get("method") or "POST").upper(),
            headers={str(k): str(v) for k, v in headers.items()},
            vars=dict(variables),
        )

    raise ActionParseError(f"Unknown action type: {kind!r}")


def action_to_dict(action: Action) -> Dict[str, Any]:
    """Reverse of parse_action(); used by the scheduler snapshot (`/system/cron`)."""
    if isinstance(action, AgentAction):
        out: Dict[str, Any] = {"type": "agent", "job": action.job_description}
        if action.llm_provider:
            out["llm_provider"] = action.llm_provider
        if action.llm_model:
            out["llm_model"] = action.llm_model
        return out
    if isinstance(action, CommandAction):
        return {"type": "command", "command": action.command_line}
    if isinstance(action, WebhookAction):
        return {
            "type": "webhook",
            "url": action.url,
            "method": action.method,
            "headers": dict(action.headers),
            "vars": dict(action.vars),
        }
    raise TypeError(f"Not an action: {action!r}")


# ----------------------------------------------------------------------
# Declarative entries
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class CronEntry:
    """A scheduled action from the cron table."""
    name: str
    schedule: str
    action: Action
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CronEntry:
        if not isinstance(data, dict):
            raise ActionParseError(f"Cron entry must be an object, got {type(data).__name__}")
        name = str(data.get("name") or "").strip()
        if not name:
            raise ActionParseError("Cron entry requires a 'name'")
        return cls(
            name=name,
            schedule=str(data.get("schedule") or "").strip(),
            action=parse_action(data),
            enabled=data.get("enabled") is not False,
        )


@dataclass(frozen=True)
class TriggerEntry:
    """A set of actions fired when an inbound request hits `watch_path`."""
    name: str
    watch_path: str
    actions: List[Action]
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TriggerEntry:
        if not isinstance(data, dict):
            raise ActionParseError(f"Trigger entry must be an object, got {type(data).__name__}")
        name = str(data.get("name") or "").strip()
        if not name:
            raise ActionParseError("Trigger entry requires a 'name'")
        watch_path = str(data.get("watch_path") or "").strip()
        if not watch_path:
            raise ActionParseError(f"Trigger '{name}' requires a 'watch_path'")
        raw_actions = data.get("actions") or []
        if not isinstance(raw_actions, list):
            raise ActionParseError(f"Trigger '{name}' actions must be a list")
        return cls(
            name=name,
            watch_path=watch_path,
            actions=[parse_action(a) for a in raw_actions],
            enabled=data.get("enabled") is not False,
        )


# ----------------------------------------------------------------------
# Jobs and CI runs (derived views, never persisted)
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class JobRef:
    """Handle to a created job: its ID and the branch that materializes it."""
    job_id: str
    branch: str

    def to_dict(self) -> Dict[str, Any]:
        return {"job_id": self.job_id, "branch": self.branch}


@dataclass(frozen=True)
class StepProgress:
    current_step: Optional[str]
    steps_completed: int
    steps_total: int


@dataclass
class JobStatus:
    """
    Progress of one job reconstructed from its CI run.

    `steps` is None when the per-run step breakdown could not be fetched;
    `step_detail_error` then says why.
    """
    job_id: str
    branch: str
    status: str
    started_at: str
    duration_minutes: int
    run_id: int
    steps: Optional[StepProgress] = None
    step_detail_error: Optional[str] = None

    @property
    def current_step(self) -> Optional[str]:
        return self.steps.current_step if self.steps else None

    @property
    def steps_completed(self) -> int:
        return self.steps.steps_completed if self.steps else 0

    @property
    def steps_total(self) -> int:
        return self.steps.steps_total if self.steps else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "branch": self.branch,
            "status": self.status,
            "started_at": self.started_at,
            "duration_minutes": self.duration_minutes,
            "current_step": self.current_step,
            "steps_completed": self.steps_completed,
            "steps_total": self.steps_total,
            "run_id": self.run_id,
            "step_detail_error": self.step_detail_error,
        }


@dataclass
class StatusReport:
    jobs: List[JobStatus]
    queued: int
    running: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobs": [j.to_dict() for j in self.jobs],
            "queued": self.queued,
            "running": self.running,
        }


@dataclass(frozen=True)
class RunSummary:
    run_id: int
    branch: Optional[str]
    status: str
    conclusion: Optional[str]
    workflow_name: Optional[str]
    started_at: str
    updated_at: Optional[str]
    duration_seconds: int
    html_url: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "branch": self.branch,
            "status": self.status,
            "conclusion": self.conclusion,
            "workflow_name": self.workflow_name,
            "started_at": self.started_at,
            "updated_at": self.updated_at,
            "duration_seconds": self.duration_seconds,
            "html_url": self.html_url,
        }


@dataclass
class SwarmPage:
    runs: List[RunSummary]
    page: int
    has_more: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runs": [r.to_dict() for r in self.runs],
            "page": self.page,
            "hasMore": self.has_more,
        }
