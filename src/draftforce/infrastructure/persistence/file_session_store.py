"""
File-Based Session Store
========================

Persists project sessions, their audit log, and engine snapshots as YAML.

Directory structure:
    {work_dir}/sessions/{session_id}.yaml  - session fields + operations log
    {work_dir}/snapshots/{session_id}.yaml - suspended engine state

Writes are atomic (temp file + rename in the same directory). Corrupt
files are logged and treated as missing.
"""

import asyncio
import os
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import aiofiles
import structlog
import yaml

logger = structlog.get_logger()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class FileSessionStore:
    """
    YAML session store implementing SessionStoreProtocol.

    Thread Safety:
        Not thread-safe. One lock per session serializes writes within a
        single event loop.

    Example:
        >>> store = FileSessionStore(work_dir=".draftforce")
        >>> session = await store.create_session("Payments SRS")
        >>> await store.update_with_log_entry({"type": "USER_QUESTION_ASKED", "operation": "..."})
    """

    def __init__(self, work_dir: str = ".draftforce", session_id: Optional[str] = None):
        """
        Initialize the store.

        Args:
            work_dir: Root directory for sessions and snapshots
            session_id: Session to make current, if it exists
        """
        self.work_dir = Path(work_dir)
        self.sessions_dir = self.work_dir / "sessions"
        self.snapshots_dir = self.work_dir / "snapshots"
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)
        self.current_session_id = session_id
        self._locks: dict[str, asyncio.Lock] = {}
        self.logger = logger.bind(component="file_session_store")

    def _get_lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    def _session_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}.yaml"

    def _snapshot_path(self, session_id: str) -> Path:
        return self.snapshots_dir / f"{session_id}.yaml"

    def _atomic_write_yaml(self, path: Path, data: dict[str, Any]) -> None:
        """Write YAML to a temp file in the target directory, then rename over the target."""
        temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp", prefix=".session_")
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

            # Windows: must delete target before rename
            if path.exists():
                path.unlink()
            Path(temp_path).rename(path)
            self.logger.debug("session.yaml.written", file=str(path), atomic=True)
        except Exception:
            if Path(temp_path).exists():
                Path(temp_path).unlink()
            raise

    async def _read_yaml(self, path: Path) -> Optional[dict[str, Any]]:
        if not path.exists():
            return None
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                content = await f.read()
            data = yaml.safe_load(content)
        except (OSError, yaml.YAMLError) as e:
            self.logger.warning("session.yaml.corrupt", file=str(path), error=str(e))
            return None
        return data if isinstance(data, dict) else None

    # --------------------------------------------------------------- sessions

    async def create_session(
        self,
        project_name: str,
        base_dir: Optional[str] = None,
        git_branch: Optional[str] = None,
    ) -> dict[str, Any]:
        """Create a new session and make it current."""
        session_id = uuid.uuid4().hex[:12]
        session = {
            "sessionContextId": session_id,
            "projectName": project_name,
            "baseDir": base_dir or str(Path.cwd()),
            "activeFiles": [],
            "gitBranch": git_branch,
            "metadata": {"createdAt": _now(), "lastModified": _now(), "version": "1.0"},
        }
        async with self._get_lock(session_id):
            self._atomic_write_yaml(
                self._session_path(session_id), {"session": session, "operations": []}
            )
        self.current_session_id = session_id
        self.logger.info("session_created", session_id=session_id, project_name=project_name)
        return session

    async def load_session(self, session_id: str) -> Optional[dict[str, Any]]:
        """Full session document including its operations log."""
        return await self._read_yaml(self._session_path(session_id))

    async def get_current_session(self) -> Optional[dict[str, Any]]:
        if not self.current_session_id:
            return None
        document = await self.load_session(self.current_session_id)
        return document.get("session") if document else None

    async def switch_session(self, session_id: str) -> Optional[dict[str, Any]]:
        document = await self.load_session(session_id)
        if document is None:
            self.logger.warning("session_not_found", session_id=session_id)
            return None
        self.current_session_id = session_id
        return document.get("session")

    def clear_current_session(self) -> None:
        self.current_session_id = None

    async def update_with_log_entry(self, entry: dict[str, Any]) -> None:
        """Append an audit entry to the current session's operations log."""
        session_id = self.current_session_id
        if not session_id:
            self.logger.debug("log_entry_dropped", reason="no_current_session", type=entry.get("type"))
            return

        async with self._get_lock(session_id):
            document = await self.load_session(session_id)
            if document is None:
                raise FileNotFoundError(f"Session not found: {session_id}")
            operations = document.setdefault("operations", [])
            operations.append({"timestamp": _now(), **entry})
            document["session"].setdefault("metadata", {})["lastModified"] = _now()
            self._atomic_write_yaml(self._session_path(session_id), document)

    async def list_sessions(self) -> list[dict[str, Any]]:
        sessions = []
        for path in sorted(self.sessions_dir.glob("*.yaml")):
            document = await self._read_yaml(path)
            if not document or "session" not in document:
                continue
            session = document["session"]
            sessions.append(
                {
                    "session_id": session.get("sessionContextId", path.stem),
                    "project_name": session.get("projectName"),
                    "operations": len(document.get("operations") or []),
                    "last_modified": (session.get("metadata") or {}).get("lastModified"),
                    "has_snapshot": self._snapshot_path(path.stem).exists(),
                }
            )
        return sessions

    # -------------------------------------------------------------- snapshots

    async def save_snapshot(self, data: dict[str, Any], session_id: Optional[str] = None) -> None:
        """Persist a suspended engine state for the given or current session."""
        session_id = session_id or self.current_session_id
        if not session_id:
            raise ValueError("No session to attach the snapshot to")
        async with self._get_lock(session_id):
            self._atomic_write_yaml(
                self._snapshot_path(session_id), {"saved_at": _now(), "state": data}
            )
        self.logger.info("snapshot_saved", session_id=session_id, stage=data.get("stage"))

    async def load_snapshot(self, session_id: Optional[str] = None) -> Optional[dict[str, Any]]:
        session_id = session_id or self.current_session_id
        if not session_id:
            return None
        document = await self._read_yaml(self._snapshot_path(session_id))
        return document.get("state") if document else None

    async def clear_snapshot(self, session_id: Optional[str] = None) -> None:
        session_id = session_id or self.current_session_id
        if session_id and self._snapshot_path(session_id).exists():
            self._snapshot_path(session_id).unlink()
            self.logger.info("snapshot_cleared", session_id=session_id)
