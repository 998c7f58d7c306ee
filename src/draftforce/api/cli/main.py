"""Draftforce CLI entry point."""

import typer
from rich.console import Console

from draftforce.api.cli.commands import chat, run, sessions

app = typer.Typer(
    name="draftforce",
    help="Draftforce - Resumable orchestration engine for document authoring",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

# Register command groups
app.add_typer(run.app, name="run", help="Execute tasks")
app.add_typer(chat.app, name="chat", help="Interactive chat mode")
app.add_typer(sessions.app, name="sessions", help="Session management")


@app.callback()
def main(
    ctx: typer.Context,
    profile: str = typer.Option("dev", "--profile", "-p", help="Configuration profile"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug output"),
):
    """Draftforce CLI."""
    # Store global options in context for subcommands
    ctx.obj = {"profile": profile, "debug": debug}


@app.command()
def version():
    """Show Draftforce version."""
    from draftforce import __version__

    console.print(f"[bold blue]Draftforce[/bold blue] version [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
