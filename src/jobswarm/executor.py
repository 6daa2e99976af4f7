# executor.py
from __future__ import annotations

import json
import logging
import subprocess
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Optional

from .jobs import JobDispatcher
from .model import Action, ActionContext, AgentAction, CommandAction, WebhookAction

logger = logging.getLogger(__name__)


class ActionError(Exception):
    """An action ran but did not succeed."""


@dataclass(eq=False)
class CommandFailed(ActionError):
    command: str
    exit_code: int
    stdout: str
    stderr: str

    @property
    def signal(self) -> Optional[int]:
        # subprocess reports death-by-signal as a negative return code
        return -self.exit_code if self.exit_code < 0 else None

    def __str__(self) -> str:
        if self.signal is not None:
            return f"command killed by signal {self.signal}: {self.command}"
        detail = (self.stderr or self.stdout).strip()
        msg = f"command failed (exit={self.exit_code}): {self.command}"
        return f"{msg}\n{detail}" if detail else msg


@dataclass(eq=False)
class WebhookFailed(ActionError):
    method: str
    url: str
    status: Optional[int]
    reason: str

    def __str__(self) -> str:
        if self.status is None:
            return f"{self.method} {self.url} failed: {self.reason}"
        return f"{self.method} {self.url} → {self.status} {self.reason}".rstrip()


class ActionExecutor:
    """
    Runs the three action kinds behind one `execute()` call.

    Nothing is retried here; whoever fired the action decides what a
    failure means.
    """

    def __init__(self, dispatcher: Optional[JobDispatcher]):
        self.dispatcher = dispatcher

    def execute(self, action: Action, context: Optional[ActionContext] = None) -> str:
        """
        Execute an action and return a short description of the outcome.

        Raises:
            ActionError: command exited non-zero or webhook got a non-2xx/network error
            GitHubAPIError: job creation failed (agent actions)
        """
        context = context or ActionContext()

        if isinstance(action, CommandAction):
            return self._run_command(action, context)
        if isinstance(action, WebhookAction):
            return self._call_webhook(action, context)
        if isinstance(action, AgentAction):
            return self._create_job(action)
        raise TypeError(f"Unsupported action: {action!r}")

    # ------------------------------------------------------------------

    def _run_command(self, action: CommandAction, context: ActionContext) -> str:
        logger.debug("Running command in %s: %s", context.cwd or ".", action.command_line)
        proc = subprocess.run(
            action.command_line,
            shell=True,
            cwd=context.cwd,
            text=True,
            capture_output=True,
        )
        if proc.returncode != 0:
            raise CommandFailed(
                command=action.command_line,
                exit_code=proc.returncode,
                stdout=proc.stdout[-4000:],
                stderr=proc.stderr[-4000:],
            )
        return (proc.stdout or proc.stderr or "").strip()

    def _call_webhook(self, action: WebhookAction, context: ActionContext) -> str:
        method = (action.method or "POST").upper()
        headers = {"Content-Type": "application/json"}
        headers.update(action.headers)

        req_data = None
        if method != "GET":
            body = dict(action.vars)
            if context.data is not None:
                body["data"] = context.data
            req_data = json.dumps(body).encode("utf-8")

        req = urllib.request.Request(action.url, data=req_data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req) as response:
                status = response.status
        except urllib.error.HTTPError as e:
            raise WebhookFailed(method=method, url=action.url, status=e.code, reason=str(e.reason or "")) from e
        except urllib.error.URLError as e:
            raise WebhookFailed(method=method, url=action.url, status=None, reason=str(e.reason)) from e

        if not 200 <= status < 300:
            raise WebhookFailed(method=method, url=action.url, status=status, reason="")
        return f"{method} {action.url} → {status}"

    def _create_job(self, action: AgentAction) -> str:
        if self.dispatcher is None:
            raise RuntimeError("agent actions need a job dispatcher (GH_OWNER/GH_REPO not configured)")
        ref = self.dispatcher.create_job(
            action.job_description,
            llm_provider=action.llm_provider,
            llm_model=action.llm_model,
        )
        return f"job {ref.job_id}"
