"""Typer operations CLI.

Runs the same jobs as the cron endpoints, for hosts that trigger them from a
crontab instead of over HTTP:

    pagepulse scan --frequency daily
    pagepulse backup
    pagepulse checkpoints --only-if-due
    pagepulse migrate
    pagepulse erase-account <owner-id>
"""

import os

os.environ.setdefault("LOGFIRE_IGNORE_NO_CONFIG", "1")

from pathlib import Path

_project_root = Path(__file__).resolve().parent.parent.parent
from dotenv import load_dotenv

load_dotenv(_project_root / ".env")
load_dotenv(_project_root / ".env.local")

import asyncio

import questionary
import typer
from pydantic import BaseModel

from src.config import get_settings
from src.db.client import get_supabase_client
from src.db.migrate import run_migrations
from src.services.container import ServiceContainer, build_container
from src.services.scan_scheduler import parse_run_frequency

app = typer.Typer(help="PagePulse operations")


def _container() -> ServiceContainer:
    settings = get_settings()
    return build_container(settings, get_supabase_client(settings))


def _print_report(report: BaseModel) -> None:
    typer.echo(report.model_dump_json(indent=2))


@app.command()
def scan(
    frequency: str = typer.Option("daily", "--frequency", "-f", help="daily or weekly"),
):
    """Create and announce today's scheduled scan jobs."""
    try:
        trigger = parse_run_frequency(frequency)
    except ValueError:
        typer.echo("Frequency must be 'daily' or 'weekly'", err=True)
        raise typer.Exit(2)

    report = asyncio.run(_container().scheduler.run(trigger))
    _print_report(report)
    if report.failed:
        raise typer.Exit(1)


@app.command()
def backup():
    """Resync the queue consumer, backfill missed scans and re-emit stale ones."""
    report = asyncio.run(_container().backup.run())
    _print_report(report)


@app.command()
def checkpoints(
    only_if_due: bool = typer.Option(
        False, "--only-if-due", help="Skip the run when nothing is due"
    ),
):
    """Compute due correlation checkpoints."""
    container = _container()
    if only_if_due:
        due = container.checkpoints.due_horizon_count()
        if due == 0:
            typer.echo("No checkpoints due.")
            return
        typer.echo(f"{due} checkpoint(s) due.")

    report = asyncio.run(container.checkpoints.run())
    _print_report(report)
    if report.errors:
        raise typer.Exit(1)


@app.command()
def migrate():
    """Apply SQL migrations to DATABASE_URL."""
    run_migrations(echo=typer.echo)


@app.command("erase-account")
def erase_account(
    owner_id: str = typer.Argument(..., help="Owner (profile) id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete an owner's pages, changes, suggestions and scan jobs."""
    if not yes:
        confirmed = questionary.confirm(
            f"Permanently erase all monitoring data for {owner_id}?",
            default=False,
        ).ask()
        if not confirmed:
            typer.echo("Aborted.")
            raise typer.Exit(0)

    container = _container()
    pages = container.pages.erase_owner(owner_id)
    scans = container.scans.erase_owner(owner_id)
    typer.echo(f"Erased {pages} page(s) and {scans} scan job(s) for {owner_id}.")


if __name__ == "__main__":
    app()
