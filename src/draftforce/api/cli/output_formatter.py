"""Console helpers for the Draftforce CLI."""

from typing import Any, Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table

from draftforce.infrastructure.output.console_sink import ConsoleSink


class DraftforceConsole:
    """Rich console wrapper shared by the CLI commands."""

    STYLES = {
        "system": "bold blue",
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "bold red",
    }

    def __init__(self, debug: bool = False, console: Optional[Console] = None):
        self.debug = debug
        self.console = console or Console()
        self.sink = ConsoleSink(self.console, show_progress=debug)

    def print_banner(self) -> None:
        self.console.print(
            Panel.fit(
                "[bold blue]Draftforce[/bold blue] [dim]- resumable document authoring engine[/dim]",
                border_style="blue",
            )
        )

    def print_system_message(self, message: str, kind: str = "info") -> None:
        style = self.STYLES.get(kind, "white")
        self.console.print(f"[{style}]{escape(message)}[/{style}]")

    def print_divider(self) -> None:
        self.sink.flush()
        self.console.print(Rule(style="dim"))

    def print_user_message(self, message: str) -> None:
        self.console.print(Panel(message, title="You", title_align="left", border_style="green"))

    def print_question(self, question: str, options: list[str]) -> None:
        self.sink.flush()
        body = question
        if options:
            body += "\n\n" + "\n".join(f"{i}. {option}" for i, option in enumerate(options, start=1))
        self.console.print(Panel(Markdown(body), title="Waiting for you", border_style="yellow"))

    def print_success(self, message: str) -> None:
        self.print_system_message(f"✓ {message}", "success")

    def print_warning(self, message: str) -> None:
        self.print_system_message(f"! {message}", "warning")

    def print_error(self, message: str, exception: Optional[Exception] = None) -> None:
        self.sink.flush()
        self.print_system_message(f"✗ {message}", "error")
        if exception is not None and self.debug:
            self.console.print_exception()

    def print_debug(self, message: str) -> None:
        if self.debug:
            self.console.print(f"[dim]{message}[/dim]")

    def print_stats(self, stats: dict[str, Any]) -> None:
        table = Table(show_header=False, box=None)
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="white")
        for key, value in stats.items():
            table.add_row(key.replace("_", " ").title(), str(value))
        self.console.print(table)

    def prompt(self, label: str = "You") -> str:
        self.sink.flush()
        return self.console.input(f"[bold green]{label}>[/bold green] ")
