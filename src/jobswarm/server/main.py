from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from jobswarm.completion import CompletionHub, JobCompletion
from jobswarm.executor import ActionExecutor
from jobswarm.github.api_client import GitHubClient
from jobswarm.jobs import JobDispatcher
from jobswarm.scheduler import CronScheduler, read_json_table
from jobswarm.settings import Settings
from jobswarm.status import StatusTracker
from jobswarm.triggers import TriggerRunner, load_triggers

logger = logging.getLogger(__name__)

# -------------------- Schemas --------------------

class WebhookRequest(BaseModel):
    job: Optional[str] = None
    llm_provider: Optional[str] = None
    llm_model: Optional[str] = None

class WebhookResponse(BaseModel):
    job_id: str
    branch: str

# -------------------- Errors --------------------

@dataclass(eq=False)
class APIError(Exception):
    status_code: int
    message: str


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def api_error_handler(_req: Request, exc: APIError) -> JSONResponse:
    return error_response(exc.status_code, exc.message)


async def validation_error_handler(_req: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(400, "Invalid request body")


async def unhandled_error_handler(_req: Request, exc: Exception) -> JSONResponse:
    # never serialize internals; the traceback goes to the server log only
    logger.error("Unhandled error: %s", exc, exc_info=exc)
    return error_response(500, "Internal server error")

# -------------------- Auth --------------------

def _secret_matches(provided: Optional[str], expected: str) -> bool:
    if not expected or provided is None:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def require_api_key(request: Request) -> None:
    settings: Settings = request.app.state.settings
    if not _secret_matches(request.headers.get("x-api-key"), settings.api_key):
        raise APIError(401, "Unauthorized")


def require_github_secret(request: Request) -> None:
    settings: Settings = request.app.state.settings
    if not _secret_matches(request.headers.get("x-github-webhook-secret-token"), settings.gh_webhook_secret):
        raise APIError(401, "Unauthorized")

# -------------------- Bodies --------------------
# Bodies are read inside dependencies that depend on the secret check, so an
# unauthenticated request gets 401 before its body is ever parsed.

async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise APIError(400, "Invalid request body")


async def webhook_body(request: Request, _auth: None = Depends(require_api_key)) -> WebhookRequest:
    try:
        return WebhookRequest.model_validate(await _json_body(request))
    except ValidationError:
        raise APIError(400, "Invalid request body")


async def completion_body(request: Request, _auth: None = Depends(require_github_secret)) -> Dict[str, Any]:
    payload = await _json_body(request)
    if not isinstance(payload, dict):
        raise APIError(400, "Invalid request body")
    return payload

# -------------------- App --------------------

def create_app(
    settings: Optional[Settings] = None,
    *,
    github: Optional[GitHubClient] = None,
    hub: Optional[CompletionHub] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    if github is None and settings.gh_owner and settings.gh_repo:
        github = GitHubClient.from_settings(settings)

    dispatcher = JobDispatcher(github, trunk=settings.trunk) if github is not None else None
    tracker = StatusTracker(github, workflow=settings.job_workflow) if github is not None else None
    executor = ActionExecutor(dispatcher)
    triggers = TriggerRunner(
        executor,
        load_triggers(read_json_table(settings.triggers_file)),
        cwd=settings.triggers_dir,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN202
        scheduler = None
        if settings.enable_cron:
            scheduler = CronScheduler(executor, cwd=settings.cron_dir)
            scheduler.load_file(settings.crons_file)
            scheduler.start()
        app.state.scheduler = scheduler
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.stop()

    app = FastAPI(title="jobswarm event handler", lifespan=lifespan)
    app.state.settings = settings
    app.state.dispatcher = dispatcher
    app.state.tracker = tracker
    app.state.executor = executor
    app.state.triggers = triggers
    app.state.hub = hub or CompletionHub()
    app.state.scheduler = None

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    def _fire_triggers(background: BackgroundTasks, request: Request, data: Any) -> None:
        if triggers.watching(request.url.path):
            background.add_task(triggers.fire, request.url.path, data)

    # -------------------- Endpoints --------------------

    @app.get("/healthz")
    def healthz() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/webhook", response_model=WebhookResponse, dependencies=[Depends(require_api_key)])
    def create_job(request: Request, background: BackgroundTasks, req: WebhookRequest = Depends(webhook_body)):
        if not req.job:
            raise APIError(400, "Missing job field")
        if dispatcher is None:
            logger.error("Cannot create job: GH_OWNER/GH_REPO not configured")
            raise APIError(500, "Failed to create job")

        try:
            ref = dispatcher.create_job(req.job, llm_provider=req.llm_provider, llm_model=req.llm_model)
        except Exception:
            logger.exception("Failed to create job")
            raise APIError(500, "Failed to create job")

        _fire_triggers(background, request, req.model_dump())
        return WebhookResponse(job_id=ref.job_id, branch=ref.branch)

    @app.post("/github/webhook", dependencies=[Depends(require_github_secret)])
    def job_completed(request: Request, background: BackgroundTasks, payload: Dict[str, Any] = Depends(completion_body)):
        try:
            completion = JobCompletion.from_payload(payload)
        except ValueError as e:
            raise APIError(400, str(e))

        delivered = app.state.hub.publish(completion)
        logger.info("Job %s completed (%s), %d subscriber(s) notified", completion.job_id, completion.status, delivered)
        _fire_triggers(background, request, payload)
        return {"ok": True, "job_id": completion.job_id}

    @app.get("/jobs/status", dependencies=[Depends(require_api_key)])
    def job_status(job_id: Optional[str] = Query(None)) -> Dict[str, Any]:
        if tracker is None:
            raise APIError(503, "GitHub repository not configured")
        return tracker.get_job_status(job_id).to_dict()

    @app.get("/swarm", dependencies=[Depends(require_api_key)])
    def swarm_status(page: int = Query(1, ge=1)) -> Dict[str, Any]:
        if tracker is None:
            raise APIError(503, "GitHub repository not configured")
        return tracker.get_swarm_status(page).to_dict()

    @app.get("/system/cron", dependencies=[Depends(require_api_key)])
    def cron_status() -> Dict[str, Any]:
        scheduler = app.state.scheduler
        if scheduler is None:
            return {"running": False, "crons": []}
        return scheduler.snapshot()

    return app
