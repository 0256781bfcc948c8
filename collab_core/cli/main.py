"""
Operator CLI for collab_core.

Schema setup, projection rebuilds, spend summaries and rate-window
housekeeping against the SQLite store.
"""

import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from collab_core.config.loader import AppConfig, load_config
from collab_core.core.budget import BudgetGuard
from collab_core.core.rate_limit import RateLimiter
from collab_core.core.reducer import rebuild_snapshot
from collab_core.logging import setup_logging
from collab_core.storage.db import initialize_schema
from collab_core.storage.repository import (
    EventRepository,
    ProjectRepository,
    RateWindowRepository,
    UsageRepository,
)

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

ConfigOption = typer.Option(None, "--config", "-c", help="Path to YAML configuration file")


def _load(config_path: Optional[str]) -> AppConfig:
    config = load_config(config_path) if config_path else AppConfig()
    config = config.with_env()
    setup_logging(config.log_level)
    return config


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${amount:,.4f}"


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """collab_core operator CLI."""
    if ctx.invoked_subcommand is None:
        console.print("collab_core - Use --help to see available commands")


@app.command()
def init(config_path: Optional[str] = ConfigOption):
    """Initialize the database schema."""
    try:
        config = _load(config_path)
        initialize_schema(config.storage.db_path)
        console.print(f"[green]✓[/] Database initialized at {config.storage.db_path}")
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


@app.command("create-project")
def create_project(
    owner_id: str = typer.Argument(..., help="Principal id of the owner"),
    name: str = typer.Argument(..., help="Project name"),
    config_path: Optional[str] = ConfigOption,
):
    """Create a project owned by OWNER_ID."""
    try:
        config = _load(config_path)
        initialize_schema(config.storage.db_path)
        project = ProjectRepository(config.storage.db_path).create_project(owner_id, name)
        console.print(f"[green]✓[/] Created project {project.id}")
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def replay(
    project_id: str = typer.Argument(..., help="Project to rebuild"),
    write: bool = typer.Option(
        False,
        "--write",
        "-w",
        help="Replace the stored projection with the rebuilt one"
    ),
    config_path: Optional[str] = ConfigOption,
):
    """
    Rebuild a project's snapshot from its event log.

    Compares the replayed snapshot with the stored projection and exits
    non-zero on drift unless --write replaces the projection.
    """
    try:
        config = _load(config_path)
        events = EventRepository(config.storage.db_path)
        rebuilt = rebuild_snapshot(project_id, events.list_events(project_id))
        stored = events.get_projection(project_id)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Replay of {project_id}[/bold]")
    console.print("-" * 40)
    console.print(f"Events replayed: {rebuilt.head_seq}")
    console.print(f"Rebuilt snapshot: {rebuilt.fields}")

    in_sync = stored is not None and stored.head_seq == rebuilt.head_seq and stored.fields == rebuilt.fields
    if stored is None and rebuilt.head_seq == 0:
        in_sync = True

    if in_sync:
        console.print("[green]✓[/] Projection matches the event log")
        sys.exit(EXIT_CODE_PASS)

    stored_desc = "missing" if stored is None else f"head_seq={stored.head_seq} {stored.fields}"
    console.print(f"[yellow]Projection drift:[/] stored {stored_desc}")
    if write:
        events.replace_projection(rebuilt)
        console.print("[green]✓[/] Projection replaced")
        sys.exit(EXIT_CODE_PASS)
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def usage(
    principal_id: str = typer.Argument(..., help="Principal to summarize"),
    project_id: Optional[str] = typer.Option(
        None,
        "--project",
        "-p",
        help="Also summarize a project's spend"
    ),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of recent records to list"),
    config_path: Optional[str] = ConfigOption,
):
    """Show today's AI spend against the daily caps."""
    try:
        config = _load(config_path)
        ledger = UsageRepository(config.storage.db_path)
        summary = BudgetGuard(ledger, config.budget).summary(principal_id, project_id)
        records = ledger.list_usage(principal_id=principal_id, since=summary.since, limit=limit)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]AI spend since {summary.since.isoformat()}[/bold]")
    console.print("-" * 40)
    console.print(
        f"Principal {principal_id}: {_format_currency(summary.principal_spent)} "
        f"of {_format_currency(summary.principal_cap)}"
    )
    if summary.project_spent is not None:
        console.print(
            f"Project {project_id}: {_format_currency(summary.project_spent)} "
            f"of {_format_currency(summary.project_cap)}"
        )

    if records:
        table = Table(title="Recent calls")
        table.add_column("Time")
        table.add_column("Provider")
        table.add_column("Model")
        table.add_column("Tokens in", justify="right")
        table.add_column("Tokens out", justify="right")
        table.add_column("Cost", justify="right")
        table.add_column("Status")
        for record in records:
            table.add_row(
                record.recorded_at.strftime("%H:%M:%S"),
                record.provider,
                record.model,
                str(record.tokens_in),
                str(record.tokens_out),
                _format_currency(record.cost),
                record.status.value,
            )
        console.print(table)
    else:
        console.print("\n[dim]No AI calls recorded today.[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command("cleanup-rate-limits")
def cleanup_rate_limits(
    max_age_hours: int = typer.Option(24, "--max-age-hours", help="Delete windows older than this"),
    config_path: Optional[str] = ConfigOption,
):
    """Delete expired rate-limit windows."""
    try:
        config = _load(config_path)
        limiter = RateLimiter(RateWindowRepository(config.storage.db_path), config.rate_limit)
        removed = limiter.cleanup(max_age_seconds=max_age_hours * 3600)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Removed {removed} expired rate-limit windows")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
