"""
In-memory session store for tests and throwaway chat sessions.
"""

import copy
from datetime import datetime, timezone
from typing import Any, Optional


class InMemorySessionStore:
    """SessionStoreProtocol implementation that keeps everything in process memory."""

    def __init__(self, session: Optional[dict[str, Any]] = None):
        self.session = copy.deepcopy(session) if session else None
        self.log_entries: list[dict[str, Any]] = []
        self.snapshot: Optional[dict[str, Any]] = None

    async def get_current_session(self) -> Optional[dict[str, Any]]:
        return copy.deepcopy(self.session) if self.session else None

    async def update_with_log_entry(self, entry: dict[str, Any]) -> None:
        self.log_entries.append(
            {"timestamp": datetime.now(timezone.utc).isoformat(), **entry}
        )

    async def save_snapshot(self, data: dict[str, Any], session_id: Optional[str] = None) -> None:
        self.snapshot = copy.deepcopy(data)

    async def load_snapshot(self, session_id: Optional[str] = None) -> Optional[dict[str, Any]]:
        return copy.deepcopy(self.snapshot) if self.snapshot else None

    async def clear_snapshot(self, session_id: Optional[str] = None) -> None:
        self.snapshot = None

    def entries_of_type(self, entry_type: str) -> list[dict[str, Any]]:
        return [entry for entry in self.log_entries if entry.get("type") == entry_type]
