# cli.py
from __future__ import annotations

import json
import logging
import signal
import sys
from dataclasses import replace

import click
from dotenv import load_dotenv

from jobswarm.executor import ActionExecutor
from jobswarm.github.api_client import GitHubAPIError, GitHubClient
from jobswarm.jobs import JobDispatcher
from jobswarm.scheduler import CronScheduler
from jobswarm.settings import ConfigError, Settings
from jobswarm.status import StatusTracker
from jobswarm.triggers import TriggerRunner, load_swarm_config, load_triggers
from jobswarm.ui.console import Console, get_console, set_console


def _settings(ctx) -> Settings:
    return ctx.obj["settings"]


def _github(ctx) -> GitHubClient:
    """Build the REST client or exit with a readable configuration error."""
    try:
        return GitHubClient.from_settings(_settings(ctx))
    except ConfigError as e:
        get_console().print_error(
            "Repository not configured",
            str(e),
            suggestion="Set GH_OWNER, GH_REPO and GH_TOKEN in the environment or in .env",
        )
        sys.exit(1)


def _fail(ctx, title: str, exc: Exception) -> None:
    console = get_console()
    if isinstance(exc, GitHubAPIError):
        console.print_error(title, str(exc), suggestion="Check GH_TOKEN permissions and the repository name.")
    else:
        console.print_exception(exc)
    if ctx.obj.get("debug", False):
        import traceback
        traceback.print_exc()
    sys.exit(1)


def _parse_inputs(pairs: tuple[str, ...]) -> dict[str, str]:
    inputs = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--input")
        inputs[key] = value
    return inputs


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and debug logging)",
)
@click.pass_context
def cli(ctx, debug):
    """jobswarm: dispatch jobs to a CI runner fleet and track them."""
    load_dotenv()
    console = Console(debug=debug)
    set_console(console)
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    if "settings" not in ctx.obj:
        ctx.obj["settings"] = Settings.from_env()


@cli.command()
@click.option("--host", default=None, help="Listen address (defaults to HOST or 0.0.0.0)")
@click.option("--port", default=None, type=int, help="Listen port (defaults to PORT or 3000)")
@click.option("--cron/--no-cron", default=None, help="Run the cron scheduler inside the server")
@click.pass_context
def serve(ctx, host, port, cron):
    """Run the event handler (webhook receiver + cron scheduler)."""
    import uvicorn
    from jobswarm.server.main import create_app

    settings = _settings(ctx)
    if cron is not None:
        settings = replace(settings, enable_cron=cron)

    app = create_app(settings)
    uvicorn.run(
        app,
        host=host or settings.host,
        port=port or settings.port,
        log_level="debug" if ctx.obj.get("debug") else "info",
    )


@cli.command()
@click.pass_context
def cron(ctx):
    """Run only the cron scheduler, in the foreground."""
    console = get_console()
    settings = _settings(ctx)

    dispatcher = None
    if settings.gh_owner and settings.gh_repo:
        dispatcher = JobDispatcher(_github(ctx), trunk=settings.trunk)

    scheduler = CronScheduler(ActionExecutor(dispatcher), cwd=settings.cron_dir)
    try:
        registry = scheduler.load_file(settings.crons_file)
    except ValueError as e:
        console.print_error("Invalid cron table", str(e), details=[str(settings.crons_file)])
        sys.exit(1)

    def _shutdown(signum, frame):
        console.print_info(f"\nReceived signal {signum}, shutting down gracefully...")
        scheduler.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    console.print_scheduler_started(registry.names)
    scheduler.start()
    scheduler.wait()
    console.print_info("Scheduler stopped.")


@cli.command("create-job")
@click.argument("description")
@click.option("--llm-provider", default=None, help="LLM provider override for this job")
@click.option("--llm-model", default=None, help="LLM model override for this job")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the result as JSON")
@click.pass_context
def create_job(ctx, description, llm_provider, llm_model, as_json):
    """Create a job branch with DESCRIPTION as its task."""
    console = get_console()
    settings = _settings(ctx)
    dispatcher = JobDispatcher(_github(ctx), trunk=settings.trunk)
    try:
        ref = dispatcher.create_job(description, llm_provider=llm_provider, llm_model=llm_model)
    except Exception as e:
        _fail(ctx, "Failed to create job", e)
        return
    if as_json:
        console.print_json(ref.to_dict())
    else:
        console.print_job_created(ref)


@cli.command()
@click.argument("job_id", required=False)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the result as JSON")
@click.pass_context
def status(ctx, job_id, as_json):
    """Show queued and running jobs (or just JOB_ID)."""
    console = get_console()
    tracker = StatusTracker(_github(ctx), workflow=_settings(ctx).job_workflow)
    try:
        report = tracker.get_job_status(job_id)
    except Exception as e:
        _fail(ctx, "Failed to get job status", e)
        return
    if as_json:
        console.print_json(report.to_dict())
    else:
        console.print_job_status(report)


@cli.command()
@click.option("--page", default=1, show_default=True, type=click.IntRange(min=1), help="Page number")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the result as JSON")
@click.pass_context
def swarm(ctx, page, as_json):
    """Show all CI runs, one page at a time."""
    console = get_console()
    tracker = StatusTracker(_github(ctx), workflow=_settings(ctx).job_workflow)
    try:
        result = tracker.get_swarm_status(page)
    except Exception as e:
        _fail(ctx, "Failed to get swarm status", e)
        return
    if as_json:
        console.print_json(result.to_dict())
    else:
        console.print_swarm_page(result)


@cli.command()
@click.argument("path")
@click.option("--data", default=None, help="JSON body forwarded to webhook actions")
@click.pass_context
def trigger(ctx, path, data):
    """Fire the triggers watching PATH, as if a request had hit it."""
    console = get_console()
    settings = _settings(ctx)

    payload = None
    if data:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"not valid JSON: {e}", param_hint="--data")

    dispatcher = None
    if settings.gh_owner and settings.gh_repo:
        dispatcher = JobDispatcher(_github(ctx), trunk=settings.trunk)

    table = load_swarm_config(settings)["triggers"]
    runner = TriggerRunner(ActionExecutor(dispatcher), load_triggers(table), cwd=settings.triggers_dir)
    if not runner.watching(path):
        console.print_info(f"No enabled triggers watch {path}")
        return

    results = runner.fire(path, payload)
    for r in results:
        mark = "ok" if r.ok else "FAILED"
        console.print_info(f"  {r.trigger} #{r.index + 1}: {mark} {r.outcome or r.error or ''}".rstrip())
    if any(not r.ok for r in results):
        sys.exit(1)


@cli.command("dispatch-workflow")
@click.argument("workflow")
@click.option("--ref", default=None, help="Git ref to run on (defaults to the trunk branch)")
@click.option("--input", "inputs", multiple=True, help="Workflow input as KEY=VALUE (repeatable)")
@click.pass_context
def dispatch_workflow(ctx, workflow, ref, inputs):
    """Trigger WORKFLOW via workflow_dispatch (e.g. upgrade workflows)."""
    console = get_console()
    github = _github(ctx)
    ref = ref or _settings(ctx).trunk
    parsed = _parse_inputs(inputs)
    try:
        github.dispatch_workflow(workflow, ref=ref, inputs=parsed)
    except Exception as e:
        _fail(ctx, "Failed to dispatch workflow", e)
        return
    console.print_info(f"Dispatched {workflow} on {ref}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the tables as JSON")
@click.pass_context
def config(ctx, as_json):
    """Show the cron and trigger tables."""
    console = get_console()
    tables = load_swarm_config(_settings(ctx))
    if as_json:
        console.print_json(tables)
    else:
        console.print_swarm_config(tables)


if __name__ == "__main__":
    cli()
