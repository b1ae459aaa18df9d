from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
import uvicorn

from idynic.api.app import create_app
from idynic.config import get_settings
from idynic.db.init import init_database
from idynic.db.models import Job
from idynic.db.repositories import Repository
from idynic.db.session import SessionLocal
from idynic.jobs.service import JobService
from idynic.logging_config import configure_logging

app = typer.Typer(help="Idynic CLI")
profile_app = typer.Typer(help="Manage profiles")
submit_app = typer.Typer(help="Submit material for background processing")
jobs_app = typer.Typer(help="Inspect job status")

app.add_typer(profile_app, name="profile")
app.add_typer(submit_app, name="submit")
app.add_typer(jobs_app, name="jobs")

_INITIALIZED = False


def ensure_initialized() -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return
    init_database()
    _INITIALIZED = True


def serialize_job(job: Job) -> dict[str, Any]:
    return {
        "id": job.id,
        "user_id": job.user_id,
        "job_type": job.job_type,
        "status": job.status,
        "phase": job.phase,
        "progress": job.progress,
        "highlights": job.highlights or [],
        "warning": job.warning,
        "error": job.error,
        "summary": job.summary,
        "document_id": job.document_id,
        "opportunity_id": job.opportunity_id,
        "tailored_profile_id": job.tailored_profile_id,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }


def _echo_job(job_id: int) -> None:
    with SessionLocal() as db:
        job = Repository(db).get_job(job_id)
        if job is None:
            raise typer.BadParameter(f"job {job_id} not found")
        typer.echo(json.dumps(serialize_job(job), indent=2))


def _submit(action) -> int:
    with SessionLocal() as db:
        try:
            return action(JobService(db))
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc


@app.command("init")
def init_cmd() -> None:
    """Initialize database and data directories."""
    configure_logging()
    result = init_database()
    typer.echo(json.dumps({"ok": True, **result}, indent=2))


@profile_app.command("create")
def profile_create(
    name: str = typer.Option(..., "--name"),
    email: str = typer.Option("", "--email"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        profile = Repository(db).create_profile(name=name, email=email)
        typer.echo(json.dumps({"id": profile.id, "name": profile.name}, indent=2))


@submit_app.command("story")
def submit_story(
    user_id: int = typer.Option(..., "--user-id"),
    file: Path = typer.Option(..., "--file", exists=True, readable=True),
) -> None:
    configure_logging()
    ensure_initialized()
    text = file.read_text(encoding="utf-8")
    _echo_job(_submit(lambda service: service.submit_story(user_id, text)))


@submit_app.command("resume")
def submit_resume(
    user_id: int = typer.Option(..., "--user-id"),
    file: Path = typer.Option(..., "--file", exists=True, readable=True),
) -> None:
    configure_logging()
    ensure_initialized()
    data = file.read_bytes()
    _echo_job(_submit(lambda service: service.submit_resume(user_id, file.name, data)))


@submit_app.command("opportunity")
def submit_opportunity(
    user_id: int = typer.Option(..., "--user-id"),
    url: str | None = typer.Option(None, "--url"),
    description_file: Path | None = typer.Option(None, "--description-file", exists=True, readable=True),
) -> None:
    configure_logging()
    ensure_initialized()
    description = description_file.read_text(encoding="utf-8") if description_file else None
    _echo_job(_submit(lambda service: service.submit_opportunity(user_id, url=url, description=description)))


@app.command("tailor")
def tailor(
    user_id: int = typer.Option(..., "--user-id"),
    opportunity_id: int = typer.Option(..., "--opportunity-id"),
    regenerate: bool = typer.Option(False, "--regenerate"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            result = JobService(db).request_tailor(user_id, opportunity_id, regenerate=regenerate)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc

    if result.cached:
        typer.echo(json.dumps(result.model_dump(), indent=2))
        return
    _echo_job(result.job_id)


@jobs_app.command("show")
def jobs_show(job_id: int = typer.Argument(...)) -> None:
    configure_logging()
    ensure_initialized()
    _echo_job(job_id)


@jobs_app.command("list")
def jobs_list(
    user_id: int = typer.Option(..., "--user-id"),
    limit: int = typer.Option(20, "--limit"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        jobs = Repository(db).list_jobs(user_id, limit=limit)
        typer.echo(json.dumps([serialize_job(job) for job in jobs], indent=2))


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
) -> None:
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    app_instance = create_app()
    uvicorn.run(app_instance, host=host or settings.app_host, port=port or settings.app_port)
