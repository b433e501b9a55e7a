from __future__ import annotations

import asyncio
import json

import typer
import uvicorn

from resumedrop.api.app import create_app
from resumedrop.config import get_settings
from resumedrop.core.runtime import get_orchestrator, get_scheduler
from resumedrop.db.init import init_database
from resumedrop.db.repositories import Repository
from resumedrop.db.session import SessionLocal
from resumedrop.errors import EncryptionError
from resumedrop.logging_config import configure_logging
from resumedrop.security.crypto import encrypt_secret, generate_key

app = typer.Typer(help="ResumeDrop CLI")
accounts_app = typer.Typer(help="Manage monitored mailboxes")
jobs_app = typer.Typer(help="Manage open jobs that applications are matched to")
applications_app = typer.Typer(help="Inspect ingested applications")

app.add_typer(accounts_app, name="accounts")
app.add_typer(jobs_app, name="jobs")
app.add_typer(applications_app, name="applications")

_INITIALIZED = False


def ensure_initialized() -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return
    init_database()
    _INITIALIZED = True


@app.command("init")
def init_cmd() -> None:
    """Initialize database and data directories."""
    configure_logging()
    result = init_database()
    typer.echo(json.dumps({"ok": True, **result}, indent=2))


@app.command("generate-key")
def generate_key_cmd() -> None:
    """Print a new key for PII_ENCRYPTION_KEY."""
    typer.echo(generate_key())


@accounts_app.command("add")
def accounts_add(
    email: str = typer.Option(..., "--email"),
    host: str = typer.Option(..., "--host"),
    username: str = typer.Option("", "--username"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    port: int = typer.Option(993, "--port"),
    tls: bool = typer.Option(True, "--tls/--no-tls"),
) -> None:
    configure_logging()
    ensure_initialized()
    try:
        encrypted = encrypt_secret(password)
    except EncryptionError as exc:
        raise typer.BadParameter(str(exc)) from exc

    with SessionLocal() as db:
        account = Repository(db).create_email_account(
            email=email,
            host=host,
            username=username or email,
            password_encrypted=encrypted,
            port=port,
            use_tls=tls,
        )
        typer.echo(json.dumps({"id": account.id, "email": account.email}, indent=2))


@accounts_app.command("list")
def accounts_list() -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        accounts = Repository(db).list_email_accounts()
        typer.echo(
            json.dumps(
                [
                    {
                        "id": account.id,
                        "email": account.email,
                        "host": account.host,
                        "port": account.port,
                        "is_active": account.is_active,
                        "last_checked_at": account.last_checked_at.isoformat() if account.last_checked_at else None,
                    }
                    for account in accounts
                ],
                indent=2,
            )
        )


@accounts_app.command("deactivate")
def accounts_deactivate(account_id: int = typer.Option(..., "--id")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        account = Repository(db).deactivate_email_account(account_id)
        if account is None:
            raise typer.BadParameter(f"account {account_id} not found")
        typer.echo(json.dumps({"id": account.id, "is_active": account.is_active}, indent=2))


@jobs_app.command("add")
def jobs_add(
    title: str = typer.Option(..., "--title"),
    client_name: str = typer.Option("", "--client"),
    location: str = typer.Option("", "--location"),
) -> None:
    configure_logging()
    ensure_initialized()
    if not title.strip():
        raise typer.BadParameter("title must not be empty")
    with SessionLocal() as db:
        job = Repository(db).create_job(title=title, client_name=client_name, location=location)
        typer.echo(json.dumps({"id": job.id, "title": job.title}, indent=2))


@jobs_app.command("list")
def jobs_list(active_only: bool = typer.Option(False, "--active-only")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        jobs = Repository(db).list_jobs(active_only=active_only)
        typer.echo(
            json.dumps(
                [
                    {
                        "id": job.id,
                        "title": job.title,
                        "client_name": job.client_name,
                        "status": job.status,
                        "created_at": job.created_at.isoformat() if job.created_at else None,
                    }
                    for job in jobs
                ],
                indent=2,
            )
        )


@applications_app.command("list")
def applications_list(
    limit: int = typer.Option(20, "--limit"),
    job_id: int | None = typer.Option(None, "--job-id"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        rows = Repository(db).list_applications(limit=limit, job_id=job_id)
        typer.echo(
            json.dumps(
                [
                    {
                        "id": row.id,
                        "candidate_email": row.candidate_email,
                        "name": f"{row.first_name} {row.last_name}".strip(),
                        "job_id": row.job_id,
                        "status": row.status,
                        "needs_review": row.needs_review,
                        "validation_score": row.validation_score,
                        "parser_provider": row.parser_provider,
                    }
                    for row in rows
                ],
                indent=2,
            )
        )


@app.command("run-once")
def run_once(force: bool = typer.Option(False, "--force", help="Run even when automation is disabled")) -> None:
    """Process every active mailbox once and print the run summary."""
    configure_logging()
    ensure_initialized()
    summary = asyncio.run(get_orchestrator().run(force=force))
    if summary is None:
        typer.echo(json.dumps({"ok": False, "reason": "skipped"}, indent=2))
        raise typer.Exit(code=1)
    typer.echo(summary.model_dump_json(indent=2))


@app.command("schedule")
def schedule() -> None:
    """Run the periodic mailbox scheduler in the foreground."""
    configure_logging()
    ensure_initialized()

    async def _main() -> None:
        scheduler = get_scheduler()
        scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            await scheduler.stop()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        typer.echo("stopped")


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
