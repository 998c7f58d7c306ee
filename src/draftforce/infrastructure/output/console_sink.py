"""
Rich console output sink.

The engine emits narration as markdown fragments, often one line at a
time. Fragments are buffered and rendered as one markdown block whenever a
paragraph ends, so numbered option lists stay together.
"""

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape


class ConsoleSink:
    """OutputSinkProtocol implementation rendering to a rich Console."""

    def __init__(self, console: Console | None = None, show_progress: bool = True):
        self.console = console or Console()
        self.show_progress = show_progress
        self._buffer: list[str] = []

    def markdown(self, text: str) -> None:
        self._buffer.append(text)
        if "".join(self._buffer).endswith("\n\n"):
            self.flush()

    def progress(self, text: str) -> None:
        if self.show_progress:
            self.flush()
            self.console.print(f"[dim]{escape(text)}[/dim]")

    def flush(self) -> None:
        content = "".join(self._buffer).strip()
        self._buffer.clear()
        if content:
            self.console.print(Markdown(content))
