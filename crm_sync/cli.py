"""crm-sync CLI - cron and operator entry point."""

import asyncio
import json
import logging
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import database
from .config import settings
from .schemas.sync import SyncRequest, SyncResponse
from .sync.auto_sync import run_auto_sync
from .sync.conflicts import ConflictStore
from .sync.entities import EntityType
from .sync.errors import SyncError
from .sync.sync_engine import SyncOrchestrator

app = typer.Typer(
    name="crm-sync",
    help="CRM sync engine - Teamleader Focus import/export",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main(
    log_level: str = typer.Option(None, "--log-level", help="Override CRM_SYNC_LOG_LEVEL"),
):
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _output_result(result: dict[str, Any], json_output: bool = False) -> None:
    """Output result as JSON or formatted."""
    if json_output:
        console.print_json(json.dumps(result, default=str))
    else:
        console.print_json(json.dumps(result, default=str, indent=2))


def _print_response(response: SyncResponse, json_output: bool) -> None:
    data = response.model_dump(by_alias=True, mode="json")
    if json_output:
        _output_result(data, json_output=True)
        return

    color = "green" if response.status == "completed" else "red"
    console.print(Panel(
        f"Status: [{color}]{response.status}[/{color}]\n"
        f"Processed: {response.processed}  Success: {response.success}  "
        f"Failed: {response.failed}  Conflicted: {response.conflicted}",
        title=f"Sync run {response.sync_run_id}",
        expand=False,
    ))
    if response.error:
        console.print(f"[red]Error: {response.error}[/red]")
    for error in response.errors[:20]:
        console.print(f"  [yellow]- {error}[/yellow]")
    if len(response.errors) > 20:
        console.print(f"  [dim]... {len(response.errors) - 20} more[/dim]")


@app.command("serve")
def serve(
    port: int = typer.Option(8030, "--port", "-p", help="Port to run on"),
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind to"),
):
    """Launch the sync HTTP API."""
    import uvicorn

    console.print(f"[bold cyan]Starting CRM Sync API at http://{host}:{port}[/bold cyan]")
    uvicorn.run("crm_sync.app:app", host=host, port=port)


@app.command("init-db")
def init_db(
    create_all: bool = typer.Option(
        False, "--create-all", help="Create tables directly instead of running migrations"
    ),
):
    """Create the database schema (Alembic upgrade head by default)."""
    if create_all:
        asyncio.run(database.create_all())
        console.print("[green]Tables created[/green]")
        return

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(settings.alembic_ini_path))
    cfg.set_main_option("script_location", str(settings.base_dir / "migrations"))
    cfg.set_main_option("sqlalchemy.url", settings.database_url)
    command.upgrade(cfg, "head")
    console.print("[green]Database migrated to head[/green]")


@app.command("run")
def run(
    user_id: str = typer.Argument(..., help="User whose connection to sync"),
    action: str = typer.Option("sync", "--action", "-a", help="sync, import, full_import, smart_sync or export"),
    sync_type: str = typer.Option("all", "--type", "-t", help="all or one entity type"),
    full: bool = typer.Option(False, "--full", help="Reset progress and start from page 1"),
    batch_size: int = typer.Option(None, "--batch-size", help="Page size (max 250)"),
    max_pages: int = typer.Option(None, "--max-pages", help="Page ceiling for this run"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Run one sync for a user."""
    try:
        request = SyncRequest(
            action=action,
            sync_type=sync_type,
            full_sync=full,
            batch_size=batch_size,
            max_pages=max_pages,
        )
    except ValueError as e:
        console.print(f"[red]Invalid options: {e}[/red]")
        raise typer.Exit(2)

    async def _run():
        async with database.async_session_factory() as db:
            return await SyncOrchestrator(db).run(user_id, request)

    try:
        response = asyncio.run(_run())
    except SyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    _print_response(response, json_output)
    if response.status != "completed":
        raise typer.Exit(1)


@app.command("resume")
def resume(
    user_id: str = typer.Argument(..., help="User whose import to continue"),
    entity_type: EntityType = typer.Argument(..., help="Entity type to continue"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Continue an interrupted or ceiling-limited import from its last page."""
    async def _resume():
        async with database.async_session_factory() as db:
            return await SyncOrchestrator(db).resume(user_id, entity_type)

    try:
        response = asyncio.run(_resume())
    except SyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    _print_response(response, json_output)
    if response.status != "completed":
        raise typer.Exit(1)


@app.command("auto-sync")
def auto_sync(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Full import for every active connection (for cron)."""
    summary = asyncio.run(run_auto_sync(database.async_session_factory))

    if json_output:
        _output_result(summary, json_output=True)
    else:
        console.print(
            f"[bold]Auto sync:[/bold] [green]{summary['synced']} synced[/green], "
            f"[red]{summary['failed']} failed[/red]"
        )
        for error in summary["errors"]:
            console.print(f"  [yellow]- {error}[/yellow]")


@app.command("runs")
def runs(
    user_id: str = typer.Argument(..., help="User to show history for"),
    limit: int = typer.Option(10, "--limit", "-l", help="Max runs to show"),
):
    """Show recent sync runs."""
    from sqlalchemy import select

    from .models.sync_run import SyncRun

    async def _list():
        async with database.async_session_factory() as db:
            stmt = (
                select(SyncRun)
                .where(SyncRun.user_id == user_id)
                .order_by(SyncRun.started_at.desc())
                .limit(limit)
            )
            return list((await db.execute(stmt)).scalars().all())

    rows = asyncio.run(_list())

    table = Table(title=f"Sync runs ({len(rows)})")
    table.add_column("Started", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("Scope")
    table.add_column("Status")
    table.add_column("Processed", justify="right")
    table.add_column("Success", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Conflicts", justify="right", style="yellow")

    for r in rows:
        table.add_row(
            r.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            r.sync_type,
            r.scope,
            r.status,
            str(r.records_processed),
            str(r.records_success),
            str(r.records_failed),
            str(r.records_conflicted),
        )

    console.print(table)


@app.command("conflicts")
def conflicts(
    user_id: str = typer.Argument(..., help="User to show conflicts for"),
    resolution: str = typer.Option("pending", "--resolution", "-r", help="pending, use_local or use_external"),
    limit: int = typer.Option(50, "--limit", "-l", help="Max conflicts to show"),
):
    """List field conflicts found during sync."""
    async def _list():
        async with database.async_session_factory() as db:
            return await ConflictStore(db, user_id).list_conflicts(resolution=resolution, limit=limit)

    rows = asyncio.run(_list())

    table = Table(title=f"Conflicts ({len(rows)})")
    table.add_column("ID", style="dim", max_width=36)
    table.add_column("Type", style="cyan")
    table.add_column("External ID", style="dim")
    table.add_column("Field")
    table.add_column("Local", style="green")
    table.add_column("External", style="yellow")
    table.add_column("Resolution")

    for c in rows:
        table.add_row(
            str(c.id),
            c.record_type,
            c.external_id or "-",
            c.field,
            c.local_value or "-",
            c.external_value or "-",
            c.resolution,
        )

    console.print(table)


if __name__ == "__main__":
    app()
