"""
Unit tests for the session stores.

Tests verify:
- Session creation, lookup and switching
- Audit entries appended to the current session
- Snapshot save/load/clear round trips
- Corrupt files treated as missing
- Concurrent writes do not lose entries
"""

import asyncio

import pytest

from draftforce.infrastructure.persistence.file_session_store import FileSessionStore
from draftforce.infrastructure.persistence.memory_session_store import InMemorySessionStore


@pytest.fixture
def store(tmp_path):
    return FileSessionStore(work_dir=str(tmp_path / "work"))


class TestFileSessionStore:
    """Test suite for FileSessionStore."""

    def test_directories_created(self, store):
        """Test the sessions and snapshots directories exist after init."""
        assert store.sessions_dir.is_dir()
        assert store.snapshots_dir.is_dir()

    @pytest.mark.asyncio
    async def test_create_session_becomes_current(self, store):
        """Test a new session is persisted and made current."""
        session = await store.create_session("Payments SRS", base_dir="/work/payments", git_branch="main")

        assert len(session["sessionContextId"]) == 12
        assert store.current_session_id == session["sessionContextId"]
        current = await store.get_current_session()
        assert current["projectName"] == "Payments SRS"
        assert current["gitBranch"] == "main"
        assert current["metadata"]["version"] == "1.0"

    @pytest.mark.asyncio
    async def test_no_current_session(self, store):
        """Test an unbound store has no current session and drops audit entries."""
        assert await store.get_current_session() is None
        await store.update_with_log_entry({"type": "USER_QUESTION_ASKED"})
        assert await store.list_sessions() == []

    @pytest.mark.asyncio
    async def test_log_entries_appended(self, store):
        """Test audit entries are appended with a timestamp."""
        session = await store.create_session("Payments SRS")

        await store.update_with_log_entry({"type": "PLAN_INTERRUPTED", "operation": "halted"})
        await store.update_with_log_entry({"type": "PLAN_RESUMED", "operation": "resumed"})

        document = await store.load_session(session["sessionContextId"])
        assert [entry["type"] for entry in document["operations"]] == ["PLAN_INTERRUPTED", "PLAN_RESUMED"]
        assert "timestamp" in document["operations"][0]

    @pytest.mark.asyncio
    async def test_concurrent_entries_are_kept(self, store):
        """Test concurrent appends on one session all land."""
        session = await store.create_session("Payments SRS")

        await asyncio.gather(
            *(store.update_with_log_entry({"type": "TOOL_EXECUTION_END", "n": n}) for n in range(10))
        )

        document = await store.load_session(session["sessionContextId"])
        assert sorted(entry["n"] for entry in document["operations"]) == list(range(10))

    @pytest.mark.asyncio
    async def test_log_entry_for_deleted_session(self, store):
        """Test appending to a vanished session raises."""
        session = await store.create_session("Payments SRS")
        (store.sessions_dir / f"{session['sessionContextId']}.yaml").unlink()

        with pytest.raises(FileNotFoundError):
            await store.update_with_log_entry({"type": "PLAN_RESUMED"})

    @pytest.mark.asyncio
    async def test_switch_and_clear(self, store):
        """Test switching between sessions and clearing the current one."""
        first = await store.create_session("First")
        second = await store.create_session("Second")

        switched = await store.switch_session(first["sessionContextId"])
        assert switched["projectName"] == "First"
        assert await store.switch_session("missing") is None
        assert store.current_session_id == first["sessionContextId"]

        store.clear_current_session()
        assert await store.get_current_session() is None
        assert second["sessionContextId"] != first["sessionContextId"]

    @pytest.mark.asyncio
    async def test_snapshot_round_trip(self, store):
        """Test a saved snapshot loads back and can be cleared."""
        session = await store.create_session("Payments SRS")
        session_id = session["sessionContextId"]
        state = {"stage": "awaiting_user", "pending_interaction": {"type": "confirmation", "options": ["yes", "no"]}}

        await store.save_snapshot(state)

        assert await store.load_snapshot(session_id) == state
        [listed] = await store.list_sessions()
        assert listed["has_snapshot"] is True

        await store.clear_snapshot(session_id)
        assert await store.load_snapshot(session_id) is None
        await store.clear_snapshot(session_id)

    @pytest.mark.asyncio
    async def test_snapshot_requires_session(self, store):
        """Test saving a snapshot without any session is an error."""
        with pytest.raises(ValueError, match="No session"):
            await store.save_snapshot({"stage": "awaiting_user"})

    @pytest.mark.asyncio
    async def test_corrupt_file_is_missing(self, store):
        """Test unreadable YAML is treated as no document."""
        (store.sessions_dir / "broken.yaml").write_text("session: [unclosed")

        assert await store.load_session("broken") is None
        assert await store.list_sessions() == []

    @pytest.mark.asyncio
    async def test_list_sessions(self, store):
        """Test listing reports project names and operation counts."""
        await store.create_session("Payments SRS")
        await store.update_with_log_entry({"type": "PLAN_INTERRUPTED"})

        [listed] = await store.list_sessions()

        assert listed["project_name"] == "Payments SRS"
        assert listed["operations"] == 1
        assert listed["has_snapshot"] is False
        assert listed["last_modified"]

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, store):
        """Test atomic writes leave no temporary files behind."""
        await store.create_session("Payments SRS")
        await store.update_with_log_entry({"type": "PLAN_RESUMED"})

        assert not list(store.sessions_dir.glob("*.tmp"))


class TestInMemorySessionStore:
    """Test suite for InMemorySessionStore."""

    @pytest.mark.asyncio
    async def test_session_is_copied(self, session_store):
        """Test callers cannot mutate the stored session."""
        session = await session_store.get_current_session()
        session["projectName"] = "Changed"

        assert (await session_store.get_current_session())["projectName"] == "Payments SRS"

    @pytest.mark.asyncio
    async def test_entries_and_snapshot(self):
        """Test entries are filterable by type and snapshots round-trip."""
        store = InMemorySessionStore()
        await store.update_with_log_entry({"type": "PLAN_RESUMED"})
        await store.update_with_log_entry({"type": "PLAN_TERMINATED"})

        assert len(store.entries_of_type("PLAN_RESUMED")) == 1
        assert await store.get_current_session() is None

        await store.save_snapshot({"stage": "awaiting_user"})
        assert await store.load_snapshot() == {"stage": "awaiting_user"}
        await store.clear_snapshot()
        assert await store.load_snapshot() is None
