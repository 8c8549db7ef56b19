from __future__ import annotations

import asyncio
import json
import signal
import threading
from pathlib import Path

import typer
import uvicorn

from jobflow.api.app import create_app
from jobflow.config import get_settings
from jobflow.core.runtime import build_workers, get_container
from jobflow.db.init import init_database
from jobflow.logging_config import configure_logging
from jobflow.queue.names import JOB_SCRAPING, QUEUE_NAMES, RESUME_PARSING
from jobflow.queue.scheduler import RepeatScheduler, next_fire_time
from jobflow.queue.worker import WorkerRuntime
from jobflow.types import JobOptions

app = typer.Typer(help="Jobflow CLI")
resume_app = typer.Typer(help="Resume ingestion")
jobs_app = typer.Typer(help="Job matching")
pipeline_app = typer.Typer(help="Application pipelines")
queue_app = typer.Typer(help="Queue administration")

app.add_typer(resume_app, name="resume")
app.add_typer(jobs_app, name="jobs")
app.add_typer(pipeline_app, name="pipeline")
app.add_typer(queue_app, name="queue")

_INITIALIZED = False


def ensure_initialized() -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return
    init_database()
    _INITIALIZED = True


def echo_json(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


@app.command("init")
def init_cmd() -> None:
    """Initialize database and data directories."""
    configure_logging()
    result = init_database()
    echo_json({"ok": True, **result})


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
    workers: bool = typer.Option(False, "--workers", help="Run queue workers inside the API process"),
) -> None:
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    app_instance = create_app(run_workers=workers)
    uvicorn.run(app_instance, host=host or settings.app_host, port=port or settings.app_port)


@app.command("worker")
def worker_cmd(
    queues: list[str] = typer.Option(None, "--queue", help="Queue to consume; repeat for several. Default: all"),
) -> None:
    configure_logging()
    ensure_initialized()
    for name in queues or []:
        if name not in QUEUE_NAMES:
            raise typer.BadParameter(f"unknown queue {name!r}; expected one of {', '.join(QUEUE_NAMES)}")

    runtime = WorkerRuntime(build_workers(get_container(), queues or None))
    asyncio.run(runtime.run())


@app.command("schedule")
def schedule_cmd(
    cron: str | None = typer.Option(None, "--cron", help="Cron expression for job scraping"),
    keywords: str | None = typer.Option(None, "--keywords", help="Comma separated search keywords"),
) -> None:
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    expression = cron or settings.scrape_cron
    terms = [item.strip() for item in keywords.split(",")] if keywords else settings.scrape_keyword_list

    scheduler = RepeatScheduler(get_container().broker)
    scheduler.add_repeat(
        "scrape",
        JOB_SCRAPING,
        {"keywords": terms, "location": settings.search_location},
        expression,
        JobOptions(name="scrape-jobs", attempts=3),
    )
    scheduler.start()
    echo_json({"queue": JOB_SCRAPING, "cron": expression, "next_fire_time": next_fire_time(expression)})

    stop = threading.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, lambda *_args: stop.set())
    stop.wait()
    scheduler.shutdown()


@resume_app.command("ingest")
def resume_ingest(
    file: Path = typer.Option(..., "--file", exists=True, readable=True),
    queued: bool = typer.Option(False, "--queued", help="Enqueue on resume-parsing instead of parsing inline"),
) -> None:
    configure_logging()
    ensure_initialized()
    container = get_container()
    if queued:
        job_id = container.broker.enqueue(
            RESUME_PARSING,
            {"path": str(file.resolve()), "filename": file.name},
            JobOptions(name="parse-resume", attempts=3),
        )
        echo_json({"job_id": job_id, "queue": RESUME_PARSING})
        return

    result = container.ingestor.ingest(file.read_bytes(), file.name)
    echo_json({"cached": result.cached, "profile": result.profile.model_dump(mode="json")})


@resume_app.command("list")
def resume_list() -> None:
    configure_logging()
    ensure_initialized()
    profiles = get_container().ingestor.list_profiles()
    echo_json(
        [
            {
                "id": profile.id,
                "filename": profile.filename,
                "name": profile.name,
                "skills": profile.skills,
                "created_at": profile.created_at,
            }
            for profile in profiles
        ]
    )


@jobs_app.command("match")
def jobs_match(
    profile_id: int = typer.Option(..., "--profile-id"),
    limit: int = typer.Option(20, "--limit"),
) -> None:
    configure_logging()
    ensure_initialized()
    scored = asyncio.run(get_container().matcher.match(profile_id))
    echo_json(
        [
            {
                "posting_id": item.posting.id,
                "title": item.posting.title,
                "company": item.posting.company,
                "score": item.match.score,
                "recommendation": item.match.recommendation,
                "matching_skills": item.match.matching_skills,
                "missing_skills": item.match.missing_skills,
            }
            for item in scored[:limit]
        ]
    )


@pipeline_app.command("start")
def pipeline_start(
    profile_id: int = typer.Option(..., "--profile-id"),
    posting_ids: list[int] = typer.Option(None, "--posting-id", help="Target posting; repeat for several"),
    timeout_sec: float | None = typer.Option(None, "--timeout-sec"),
) -> None:
    configure_logging()
    ensure_initialized()
    orchestrator = get_container().orchestrator
    summary = orchestrator.create_run(profile_id, list(posting_ids or []), timeout_sec)
    echo_json(orchestrator.get_run_details(summary.run_id))


@pipeline_app.command("status")
def pipeline_status(run_id: int = typer.Option(..., "--run-id")) -> None:
    configure_logging()
    ensure_initialized()
    echo_json(get_container().orchestrator.get_run_details(run_id))


@queue_app.command("stats")
def queue_stats() -> None:
    configure_logging()
    ensure_initialized()
    stats = get_container().broker.all_stats()
    echo_json({name: value.model_dump() for name, value in stats.items()})


@queue_app.command("pause")
def queue_pause(name: str = typer.Argument(...)) -> None:
    configure_logging()
    ensure_initialized()
    get_container().broker.pause(name)
    echo_json({"queue": name, "paused": True})


@queue_app.command("resume")
def queue_resume(name: str = typer.Argument(...)) -> None:
    configure_logging()
    ensure_initialized()
    get_container().broker.resume(name)
    echo_json({"queue": name, "paused": False})


@queue_app.command("clean")
def queue_clean(
    name: str = typer.Argument(...),
    grace_ms: int = typer.Option(0, "--grace-ms"),
    limit: int = typer.Option(100, "--limit"),
    state: str = typer.Option("completed", "--state"),
) -> None:
    configure_logging()
    ensure_initialized()
    removed = get_container().broker.clean(name, grace_ms=grace_ms, limit=limit, state=state)
    echo_json({"queue": name, "removed": removed})


@queue_app.command("job")
def queue_job(name: str = typer.Argument(...), job_id: int = typer.Argument(...)) -> None:
    configure_logging()
    ensure_initialized()
    job = get_container().broker.get_job(name, job_id)
    if job is None:
        raise typer.BadParameter(f"job {job_id} not found in {name}")
    echo_json(job.model_dump(mode="json"))
