"""Barry Worker CLI - Main Entry Point"""

import asyncio
import json
from datetime import UTC, datetime
from typing import Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel

from worker.config.settings import Settings
from worker.core.exceptions import ConfigurationError
from worker.infra.database import Database
from worker.jobs.broker import PostgresBroker
from worker.jobs.schemas import JobEnqueue
from worker.main import load_settings
from worker.main import main as run_worker_main

# Imported for table registration on Base.metadata
from worker.audit import models as audit_models  # noqa: F401
from worker.jobs import models as job_models  # noqa: F401

from .utils.formatting import create_settings_table, print_error, print_info, print_success

console = Console()

app = typer.Typer(
    name="barry-worker",
    help="Background job worker for Salesforce workflows",
    rich_markup_mode="rich",
)


def _settings_or_exit() -> Settings:
    try:
        return load_settings()
    except ConfigurationError as e:
        print_error(e.message)
        raise typer.Exit(1)


async def _enqueue(settings: Settings, job: JobEnqueue) -> UUID:
    database = Database(settings)
    try:
        return await PostgresBroker(settings, database).enqueue(job)
    finally:
        await database.close()


async def _create_tables(settings: Settings) -> None:
    database = Database(settings)
    try:
        await database.create_all()
    finally:
        await database.close()


@app.command()
def run():
    """Start the worker and process jobs until interrupted"""
    run_worker_main()


@app.command("send-job")
def send_job(
    name: str = typer.Argument("test", help="Job name"),
    payload: Optional[str] = typer.Option(
        None, "--payload", "-p", help="Job payload as a JSON object"
    ),
    attempts: int = typer.Option(3, "--attempts", min=1, help="Delivery attempts"),
    backoff_ms: int = typer.Option(
        2000, "--backoff-ms", min=0, help="Exponential backoff base in milliseconds"
    ),
):
    """Enqueue a job (a smoke test job by default)"""
    if payload is None:
        data = {
            "message": "Hello from send-job",
            "when": datetime.now(UTC).isoformat(),
        }
    else:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            print_error(f"Invalid JSON payload: {e}")
            raise typer.Exit(1)
        if not isinstance(data, dict):
            print_error("Payload must be a JSON object")
            raise typer.Exit(1)

    settings = _settings_or_exit()
    job = JobEnqueue(name=name, payload=data, max_attempts=attempts, backoff_ms=backoff_ms)

    try:
        job_id = asyncio.run(_enqueue(settings, job))
    except Exception as e:
        print_error(f"Failed to enqueue job: {e}")
        raise typer.Exit(1)

    print_success(f"Enqueued job: {job_id}")


@app.command("init-db")
def init_db():
    """Create the jobs and audit_log tables if they do not exist"""
    settings = _settings_or_exit()
    print_info("Creating tables")

    try:
        asyncio.run(_create_tables(settings))
    except Exception as e:
        print_error(f"Schema bootstrap failed: {e}")
        raise typer.Exit(1)

    print_success("jobs and audit_log tables are ready")


@app.command()
def config():
    """Show the effective (non-secret) configuration"""
    settings = _settings_or_exit()
    summary = {
        "environment": settings.environment,
        "queue_name": settings.queue_name,
        "worker_concurrency": settings.worker_concurrency,
        "job_default_max_attempts": settings.job_default_max_attempts,
        "job_backoff_base_ms": settings.job_backoff_base_ms,
        "sf_login_url": settings.sf_login_url,
        "sf_api_version": settings.sf_api_version,
        "sf_token_ttl_seconds": settings.sf_token_ttl_seconds,
        "sf_token_skew_seconds": settings.sf_token_skew_seconds,
    }
    console.print(create_settings_table(summary))


@app.command()
def version():
    """Show version information"""
    from . import __version__

    console.print(Panel(
        f"[bold cyan]Barry Worker[/bold cyan]\n\n"
        f"• Version: [green]{__version__}[/green]",
        title="Version Info",
        border_style="cyan"
    ))


if __name__ == "__main__":
    app()
