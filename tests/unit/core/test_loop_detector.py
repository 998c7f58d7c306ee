"""
Unit Tests for the Loop Detector
"""

import time
from unittest.mock import AsyncMock

import pytest

from draftforce.core.domain.loop_detector import LoopDetector, canonical_args
from draftforce.core.domain.state import AgentStage, AgentState, ExecutionStep, StepType


def tool_step(name: str, success: bool = True, args: dict | None = None, timestamp: float | None = None):
    return ExecutionStep(
        type=StepType.TOOL_CALL,
        content=f"{name} execution succeeded",
        timestamp=time.time() if timestamp is None else timestamp,
        success=success,
        tool_name=name,
        args=args if args is not None else {},
    )


def thought(content: str = "thinking") -> ExecutionStep:
    return ExecutionStep(type=StepType.THOUGHT, content=content, timestamp=time.time())


@pytest.fixture
def detector():
    return LoopDetector()


class TestDetect:
    """Tests for LoopDetector.detect."""

    def test_iteration_cap(self, detector):
        """Test reaching the cap is a loop."""
        state = AgentState(iteration_count=15)
        assert detector.detect(state)

    def test_three_identical_tools(self, detector):
        """Test the last three steps naming one tool is a loop."""
        state = AgentState(execution_history=[tool_step("readFile")] * 3)
        assert detector.detect(state)

    def test_interleaved_thoughts_break_repetition(self, detector):
        """Test repetition only looks at the last three steps."""
        history = [tool_step("readFile"), thought(), tool_step("readFile"), thought()]
        assert not detector.detect(AgentState(execution_history=history))

    def test_alternation(self, detector):
        """Test an A-B-A-B pattern over the recent tool calls is a loop."""
        history = []
        for name in ("readFile", "writeFile", "readFile", "writeFile"):
            history.extend([thought(), tool_step(name)])
        assert detector.detect(AgentState(execution_history=history))

    def test_self_reflection(self, detector):
        """Test three suggestNextAction calls among recent calls is a loop."""
        history = []
        for name in ("suggestNextAction", "readFile", "suggestNextAction", "listFiles", "suggestNextAction"):
            history.extend([thought(), tool_step(name)])
        assert detector.detect(AgentState(execution_history=history))

    def test_productive_history(self, detector):
        """Test varied progress is not a loop."""
        history = []
        for name in ("readFile", "writeFile", "listFiles", "readFile"):
            history.extend([thought(), tool_step(name)])
        assert not detector.detect(AgentState(execution_history=history))

    def test_deterministic(self, detector):
        """Test the same state always yields the same answer."""
        state = AgentState(execution_history=[tool_step("a"), tool_step("b"), tool_step("a"), tool_step("b")])
        assert {detector.detect(state) for _ in range(5)} == {True}


class TestFindRecentExecution:
    """Tests for the duplicate-call guard."""

    def test_matches_identical_call_in_window(self, detector):
        """Test a successful identical call inside the window is found."""
        earlier = tool_step("readFile", args={"path": "a.md", "encoding": "utf-8"})
        found = detector.find_recent_execution(
            "readFile", {"path": "a.md", "encoding": "utf-8"}, [earlier]
        )
        assert found is earlier

    def test_key_order_matters(self, detector):
        """Test the same arguments in a different key order are not a duplicate."""
        earlier = tool_step("readFile", args={"path": "a.md", "encoding": "utf-8"})
        found = detector.find_recent_execution(
            "readFile", {"encoding": "utf-8", "path": "a.md"}, [earlier]
        )
        assert found is None

    def test_ignores_different_args(self, detector):
        """Test arguments must match exactly."""
        earlier = tool_step("readFile", args={"path": "a.md"})
        assert detector.find_recent_execution("readFile", {"path": "b.md"}, [earlier]) is None

    def test_ignores_failed_calls(self, detector):
        """Test failed executions never suppress a retry."""
        earlier = tool_step("readFile", success=False, args={"path": "a.md"})
        assert detector.find_recent_execution("readFile", {"path": "a.md"}, [earlier]) is None

    def test_ignores_calls_outside_window(self, detector):
        """Test calls older than the window are not duplicates."""
        earlier = tool_step("readFile", args={"path": "a.md"}, timestamp=1000.0)
        assert detector.find_recent_execution("readFile", {"path": "a.md"}, [earlier], now=1031.0) is None
        assert detector.find_recent_execution("readFile", {"path": "a.md"}, [earlier], now=1029.0) is earlier

    def test_unserializable_args_never_match(self, detector):
        """Test arguments that cannot be canonicalized are never duplicates."""
        earlier = tool_step("readFile", args={"path": "a.md"})
        assert canonical_args({"path": {1, 2}}) is None
        assert detector.find_recent_execution("readFile", {"path": {1, 2}}, [earlier]) is None


class TestForcedResponse:
    """Tests for the forced summary."""

    @pytest.mark.asyncio
    async def test_force_direct_response_completes(self, detector, output, narration):
        """Test the summary lists completed actions and ends the task."""
        state = AgentState(
            stage=AgentStage.EXECUTING,
            current_task="Write the SRS",
            execution_history=[tool_step("readFile"), tool_step("writeFile", success=False)],
        )
        record = AsyncMock()

        await detector.force_direct_response(state, output, record)

        assert state.stage == AgentStage.COMPLETED
        assert "1. readFile: readFile execution succeeded" in narration()
        assert "writeFile" not in narration()
        record.assert_awaited_once_with(
            StepType.FORCED_RESPONSE, "Intelligent loop detection: Forced task completion", True
        )

    @pytest.mark.asyncio
    async def test_force_direct_response_never_raises(self, detector, output):
        """Test an empty history and a failing recorder still complete the task."""
        state = AgentState(stage=AgentStage.EXECUTING)
        record = AsyncMock(side_effect=RuntimeError("store down"))

        await detector.force_direct_response(state, output, record)

        assert state.stage == AgentStage.COMPLETED

    @pytest.mark.asyncio
    async def test_handle_infinite_loop_reports_counts(self, detector, output, narration):
        """Test the loop analysis narrates tool counts before summarizing."""
        state = AgentState(
            stage=AgentStage.EXECUTING,
            iteration_count=7,
            execution_history=[tool_step("readFile"), tool_step("readFile"), tool_step("listFiles")],
        )

        await detector.handle_infinite_loop(state, output, AsyncMock())

        text = narration()
        assert "- readFile: 2 times" in text
        assert "- listFiles: 1 times" in text
        assert "**Iteration count**: 7" in text
        assert state.stage == AgentStage.COMPLETED
