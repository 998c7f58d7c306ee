"""
Tool Executor Protocol

Defines the contract for executing declared tools. Tool implementations are
outside the engine; duplicate suppression is done by the engine, not here.
"""

from typing import Any, Protocol

from draftforce.core.domain.plan import ToolPolicy


class ToolExecutorProtocol(Protocol):
    """Executes tools by name and describes their interaction policy."""

    async def execute(self, name: str, args: dict[str, Any]) -> dict[str, Any]:
        """
        Execute a tool.

        Returns:
            Dict with at least "success" and either "output" or "error".
            An optional "error_code" carries a structured error category.
        """
        ...

    def describe(self, name: str) -> ToolPolicy | None:
        """Return the declared interaction policy for a tool, if known."""
        ...
