"""Runtime configuration read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_GITHUB_API = "https://api.github.com"
DEFAULT_TRUNK = "main"
DEFAULT_JOB_WORKFLOW = "run-job.yml"


class ConfigError(ValueError):
    """Raised when a required setting is missing."""


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclass(frozen=True)
class Settings:
    """Everything the orchestration core needs from its host process."""

    gh_owner: str = ""
    gh_repo: str = ""
    gh_token: str = ""
    api_key: str = ""
    gh_webhook_secret: str = ""
    host: str = "0.0.0.0"
    port: int = 3000
    trunk: str = DEFAULT_TRUNK
    job_workflow: str = DEFAULT_JOB_WORKFLOW
    github_api: str = DEFAULT_GITHUB_API
    project_root: Path = Path(".")
    enable_cron: bool = True

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            gh_owner=os.getenv("GH_OWNER", ""),
            gh_repo=os.getenv("GH_REPO", ""),
            gh_token=os.getenv("GH_TOKEN", ""),
            api_key=os.getenv("API_KEY", ""),
            gh_webhook_secret=os.getenv("GH_WEBHOOK_SECRET", ""),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            trunk=os.getenv("JOBSWARM_TRUNK", DEFAULT_TRUNK),
            job_workflow=os.getenv("JOBSWARM_JOB_WORKFLOW", DEFAULT_JOB_WORKFLOW),
            github_api=os.getenv("JOBSWARM_GITHUB_API", DEFAULT_GITHUB_API),
            project_root=Path(os.getenv("JOBSWARM_PROJECT_ROOT", ".")).expanduser().resolve(),
            enable_cron=env_bool("JOBSWARM_ENABLE_CRON", True),
        )

    # ---- project paths ----

    @property
    def config_dir(self) -> Path:
        return self.project_root / "config"

    @property
    def crons_file(self) -> Path:
        return self.config_dir / "CRONS.json"

    @property
    def triggers_file(self) -> Path:
        return self.config_dir / "TRIGGERS.json"

    @property
    def cron_dir(self) -> Path:
        # working directory for command actions fired by crons
        return self.project_root / "cron"

    @property
    def triggers_dir(self) -> Path:
        return self.project_root / "triggers"

    def require_repository(self) -> None:
        missing = [name for name, value in (("GH_OWNER", self.gh_owner), ("GH_REPO", self.gh_repo)) if not value]
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")
