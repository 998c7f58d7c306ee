"""
Output Sink Protocol

One-way, append-only channel for human-visible narration. The engine never
consumes a return value from it.
"""

from typing import Protocol


class OutputSinkProtocol(Protocol):
    """Receives markdown narration and transient progress text."""

    def markdown(self, text: str) -> None: ...

    def progress(self, text: str) -> None: ...
