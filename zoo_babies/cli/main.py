"""Zoo Babies CLI using Typer."""

import asyncio
import logging
from pathlib import Path
from typing import Any

import typer
from dotenv import load_dotenv
from rich import print as rprint
from rich.console import Console
from rich.table import Table

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

console = Console()
app = typer.Typer(
    name="zoo-babies",
    help="Zoo Babies - crawler and resolver for the zoo animal baby catalog",
    add_completion=False,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _display_job_result(result: dict[str, Any]) -> None:
    """Display a job result as a table."""
    status = "[green]ok[/green]" if result["ok"] else "[red]failed[/red]"
    table = Table(title=f"Job: {result['job']}")
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("Status", status)
    table.add_row("Started", str(result["started_at"]))
    table.add_row("Finished", str(result["finished_at"]))
    table.add_row("Total", str(result["total"]))
    table.add_row("Inserted", str(result["inserted"]))
    table.add_row("Updated", str(result["updated"]))
    table.add_row("Skipped", str(result["skipped"]))
    console.print(table)

    if result["errors"]:
        rprint(f"\n[bold red]Errors ({len(result['errors'])}):[/bold red]")
        for error in result["errors"][:10]:
            rprint(f"  • {error}")
        if len(result["errors"]) > 10:
            rprint(f"  ... and {len(result['errors']) - 10} more")


@app.command()
def run(
    job: str = typer.Argument(..., help="Job to run: feeds, sites, resolve or zoos"),
    queue: bool = typer.Option(False, "--queue", "-q", help="Enqueue for the arq worker instead of running inline"),
) -> None:
    """
    Run one job.

    Examples:
        zoo-babies run feeds
        zoo-babies run resolve --queue
    """
    from zoo_babies.ingestion.jobs import UnknownJobError, enqueue_job, parse_job_name, run_job

    try:
        name = parse_job_name(job)
    except UnknownJobError:
        rprint(f"[red]Error:[/red] Unknown job '{job}'")
        rprint("\nAvailable jobs: feeds, sites, resolve, zoos")
        raise typer.Exit(1)

    if queue:
        try:
            job_id = asyncio.run(enqueue_job(name))
        except Exception as e:
            rprint(f"[red]Error:[/red] Failed to enqueue job: {e}")
            rprint("\nMake sure Redis is running (REDIS_HOST, REDIS_PORT)")
            raise typer.Exit(1)
        if job_id is None:
            rprint(f"[yellow]Job '{name.value}' is already queued[/yellow]")
        else:
            rprint(f"[green]Job enqueued:[/green] {job_id}")
        return

    with console.status(f"[bold blue]Running {name.value}...[/bold blue]"):
        try:
            result = asyncio.run(run_job(name))
        except Exception as e:
            rprint(f"[red]Error:[/red] Job '{name.value}' failed: {e}")
            raise typer.Exit(1)

    _display_job_result(result.to_dict())
    if not result.ok:
        raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload for development"),
) -> None:
    """Start the manual trigger endpoint (GET /run?job=...&token=...)."""
    import uvicorn

    typer.echo(f"Starting Zoo Babies trigger on http://{host}:{port}")
    typer.echo("Press Ctrl+C to stop the server")

    uvicorn.run(
        "zoo_babies.web.app:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def worker(
    burst: bool = typer.Option(False, "--burst", help="Run in burst mode (exit when queue empty)"),
) -> None:
    """
    Start the arq worker that runs the scheduled jobs.

    Schedule (UTC): feeds :00, sites :20, resolve :40 every hour; zoos daily 18:15.
    """
    from arq import run_worker

    from zoo_babies.ingestion.jobs import WorkerSettings

    rprint("[bold]Starting worker...[/bold]")
    rprint("Press Ctrl+C to stop\n")
    try:
        run_worker(WorkerSettings, burst=burst)
    except Exception as e:
        rprint(f"[red]Error:[/red] Worker failed: {e}")
        rprint("\nMake sure Redis is running (REDIS_HOST, REDIS_PORT)")
        raise typer.Exit(1)


@app.command()
def init_db() -> None:
    """Create the local database tables (SQL store only)."""
    from zoo_babies.db.engine import get_database_url
    from zoo_babies.db.engine import init_db as db_init

    typer.echo(f"Initializing database at {get_database_url()}...")
    db_init()
    typer.echo("Database initialized successfully!")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    from zoo_babies.config import get_default_config

    config = get_default_config()
    typer.echo("Zoo Babies Configuration")
    typer.echo("=" * 40)

    env_found = next((p for p in _env_paths if p.exists()), None)
    typer.echo(f"  .env file: {env_found or 'Not found'}")

    if config.store.use_rest:
        typer.echo(f"  Store: REST ({config.store.supabase_url})")
    else:
        from zoo_babies.db.engine import get_database_url

        typer.echo(f"  Store: SQL ({get_database_url()})")

    typer.echo(f"  Manual trigger: {'enabled' if config.run_token else 'disabled (RUN_TOKEN not set)'}")
    typer.echo(f"  User-Agent: {config.global_config.user_agent}")
    typer.echo(f"  Feed sources per run: {config.limits.max_feed_sources_per_run}")
    typer.echo(f"  Site sources per run: {config.limits.max_site_sources_per_run}")
    typer.echo(
        f"  Resolution: window ±{config.resolution.window_days} days, "
        f"threshold {config.resolution.creation_threshold}"
    )


@app.command()
def version() -> None:
    """Show the Zoo Babies version."""
    typer.echo("Zoo Babies v0.1.0")


if __name__ == "__main__":
    app()
