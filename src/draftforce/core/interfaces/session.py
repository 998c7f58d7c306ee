"""
Session Store Protocol

Best-effort audit sink for business-significant engine events. Failures
must never abort the engine.
"""

from typing import Any, Protocol


class SessionStoreProtocol(Protocol):
    """Provides the current project session and accepts audit log entries."""

    async def get_current_session(self) -> dict[str, Any] | None:
        """Return the current session snapshot, or None if no session is active."""
        ...

    async def update_with_log_entry(self, entry: dict[str, Any]) -> None:
        """Append an audit log entry to the current session."""
        ...
