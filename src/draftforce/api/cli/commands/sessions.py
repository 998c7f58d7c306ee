"""Sessions command - Inspect persisted sessions."""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from draftforce.application.factory import EngineFactory
from draftforce.infrastructure.persistence.file_session_store import FileSessionStore

app = typer.Typer(help="Session management")
console = Console()


def _store(ctx: typer.Context, profile: Optional[str], config_dir: str) -> FileSessionStore:
    profile = profile or (ctx.obj or {}).get("profile", "dev")
    try:
        settings = EngineFactory(config_dir=config_dir).load_settings(profile)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    return FileSessionStore(work_dir=settings.persistence.work_dir)


@app.command("list")
def list_sessions(
    ctx: typer.Context,
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="Configuration profile"),
    config_dir: str = typer.Option("configs", "--config-dir", help="Directory with profile YAML files"),
):
    """List all sessions."""
    store = _store(ctx, profile, config_dir)
    sessions = asyncio.run(store.list_sessions())

    table = Table(title="Draftforce Sessions")
    table.add_column("Session ID", style="cyan")
    table.add_column("Project", style="white")
    table.add_column("Operations", justify="right")
    table.add_column("Waiting", style="yellow")
    table.add_column("Last Modified", style="dim")

    for session in sessions:
        table.add_row(
            session["session_id"],
            session["project_name"] or "",
            str(session["operations"]),
            "yes" if session["has_snapshot"] else "",
            session["last_modified"] or "",
        )

    console.print(table)


@app.command("show")
def show_session(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Session ID"),
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="Configuration profile"),
    config_dir: str = typer.Option("configs", "--config-dir", help="Directory with profile YAML files"),
):
    """Show session details and its audit log."""
    store = _store(ctx, profile, config_dir)
    document = asyncio.run(store.load_session(session_id))

    if not document:
        console.print(f"[red]Session '{session_id}' not found[/red]")
        raise typer.Exit(1)

    session = document.get("session") or {}
    console.print(f"\n[bold]Session:[/bold] {session_id}")
    console.print(f"[bold]Project:[/bold] {session.get('projectName', 'N/A')}")

    operations = document.get("operations") or []
    table = Table(title=f"Audit log ({len(operations)} entries)")
    table.add_column("Time", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Operation", style="white")
    table.add_column("OK")
    for entry in operations:
        table.add_row(
            str(entry.get("timestamp", "")),
            str(entry.get("type", "")),
            str(entry.get("operation", ""))[:80],
            "✓" if entry.get("success", True) else "✗",
        )
    console.print(table)

    snapshot = asyncio.run(store.load_snapshot(session_id))
    if snapshot:
        pending = snapshot.get("pending_interaction") or {}
        console.print(f"[yellow]Waiting for an answer:[/yellow] {pending.get('message', 'N/A')}")
