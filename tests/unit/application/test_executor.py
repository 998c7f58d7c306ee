"""
Unit tests for TaskExecutor.

Tests verify:
- Tasks run against file-backed sessions
- Suspended engines are snapshotted and resumed by a later call
- Pre-recorded answers are fed while the engine waits
- Progress updates are streamed to the callback
"""

from unittest.mock import AsyncMock

import pytest

from draftforce.application.executor import TaskExecutor
from draftforce.application.factory import EngineFactory
from draftforce.core.domain.engine import AgentEngine
from draftforce.infrastructure.persistence.file_session_store import FileSessionStore

CONFIRM_DELETE = {
    "name": "confirm-delete",
    "session": {"projectName": "Payments SRS"},
    "plans": [
        {
            "response_mode": "tool_execution",
            "tool_calls": [{"name": "deleteFile", "args": {"path": "old.md"}}],
        }
    ],
    "tools": {"deleteFile": {"responses": [{"success": True, "output": {"deleted": "old.md"}}]}},
}

PLAN_RECOVERY = {
    "name": "plan-recovery",
    "plans": [
        {
            "response_mode": "plan_execution",
            "execution_plan": {
                "planId": "srs-1",
                "description": "Write the payments SRS",
                "steps": [
                    {"step": 1, "specialist": "summary_writer"},
                    {"step": 2, "specialist": "fr_writer"},
                ],
            },
        }
    ],
    "plan_runs": [
        {
            "kind": "plan_failed",
            "error": "network timeout",
            "error_code": "NETWORK_ERROR",
            "failed_step": 2,
            "completed_work": [{"step": 1, "specialist": "summary_writer"}],
        },
        {"kind": "plan_completed", "summary": "SRS written"},
    ],
    "answers": ["1"],
}


@pytest.fixture
def executor(config_dir):
    return TaskExecutor(EngineFactory(config_dir=str(config_dir)))


class TestTaskExecutor:
    """Test suite for TaskExecutor."""

    @pytest.mark.asyncio
    async def test_suspended_task_is_snapshotted(self, executor, write_scenario, output, tmp_path):
        """Test a task waiting for confirmation leaves a snapshot behind."""
        scenario = write_scenario(CONFIRM_DELETE)

        result = await executor.execute_task(
            "Delete old.md", profile="test", scenario_path=scenario, output=output
        )

        assert result.is_awaiting_user
        assert result.pending_options == ["yes", "no"]
        assert result.session_id
        store = FileSessionStore(work_dir=str(tmp_path / "work"))
        assert await store.load_snapshot(result.session_id) is not None
        session = await store.switch_session(result.session_id)
        assert session["projectName"] == "Payments SRS"

    @pytest.mark.asyncio
    async def test_second_call_answers_pending_question(self, executor, write_scenario, output, tmp_path):
        """Test calling again with the session id submits the text as the answer."""
        scenario = write_scenario(CONFIRM_DELETE)
        first = await executor.execute_task(
            "Delete old.md", profile="test", scenario_path=scenario, output=output
        )

        second = await executor.execute_task(
            "no",
            profile="test",
            scenario_path=scenario,
            session_id=first.session_id,
            output=output,
        )

        assert second.stage == "completed"
        assert second.session_id == first.session_id
        store = FileSessionStore(work_dir=str(tmp_path / "work"))
        assert await store.load_snapshot(first.session_id) is None

    @pytest.mark.asyncio
    async def test_scenario_answers_are_fed(self, executor, write_scenario, output):
        """Test the scenario's recorded answers drive a plan recovery to completion."""
        scenario = write_scenario(PLAN_RECOVERY)
        updates = []

        result = await executor.execute_task(
            "Write the payments SRS",
            profile="test",
            scenario_path=scenario,
            output=output,
            progress_callback=updates.append,
        )

        assert result.stage == "completed"
        events = [update.event_type for update in updates]
        assert events == ["started", "answered", "complete"]
        assert updates[1].message == "Answer: 1"

    @pytest.mark.asyncio
    async def test_explicit_answers_override_scenario(self, executor, write_scenario, output):
        """Test an explicit empty answer list leaves the engine waiting."""
        scenario = write_scenario(PLAN_RECOVERY)

        result = await executor.execute_task(
            "Write the payments SRS",
            profile="test",
            scenario_path=scenario,
            answers=[],
            output=output,
        )

        assert result.is_awaiting_user
        assert result.pending_options == ["Continue writing plan", "End writing plan"]
        assert result.stats["stage"] == "awaiting_user"

    @pytest.mark.asyncio
    async def test_missing_scenario(self, executor, tmp_path, output):
        """Test a missing scenario file raises before anything runs."""
        with pytest.raises(FileNotFoundError, match="Scenario not found"):
            await executor.execute_task(
                "Anything", profile="test", scenario_path=tmp_path / "nope.yaml", output=output
            )

    @pytest.mark.asyncio
    async def test_engine_error_is_reported(self, executor, write_scenario, output, monkeypatch):
        """Test engine errors are reported as an error update and re-raised."""
        scenario = write_scenario(CONFIRM_DELETE)
        first = await executor.execute_task(
            "Delete old.md", profile="test", scenario_path=scenario, output=output
        )
        monkeypatch.setattr(
            AgentEngine, "submit_user_answer", AsyncMock(side_effect=RuntimeError("store offline"))
        )
        updates = []

        with pytest.raises(RuntimeError, match="store offline"):
            await executor.execute_task(
                "yes",
                profile="test",
                scenario_path=scenario,
                session_id=first.session_id,
                output=output,
                progress_callback=updates.append,
            )

        assert [update.event_type for update in updates] == ["resumed", "error"]
