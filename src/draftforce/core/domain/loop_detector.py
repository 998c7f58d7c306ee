"""
Loop Detector

Decides whether the engine is stuck repeating itself and drives the forced
summary that ends a stuck task. Also hosts the duplicate-call guard that
keeps the planner from re-running an action it just completed.
"""

import json
import time
from collections import Counter
from typing import Any, Awaitable, Callable

import structlog

from draftforce.core.domain.state import AgentStage, AgentState, ExecutionStep, StepType
from draftforce.core.interfaces.output import OutputSinkProtocol

SUGGEST_NEXT_ACTION_TOOL = "suggestNextAction"

# Callable with the ContextManager.record signature, bound to the engine state.
Recorder = Callable[..., Awaitable[ExecutionStep]]


def canonical_args(args: Any) -> str | None:
    """JSON form of tool arguments in their given key order, None if not serializable."""
    try:
        return json.dumps(args, ensure_ascii=False)
    except (TypeError, ValueError):
        return None


class LoopDetector:
    """
    Detects unproductive repetition in the execution history.

    Args:
        duplicate_window_seconds: How long a successful call suppresses an
                                  identical repeat
    """

    def __init__(self, duplicate_window_seconds: float = 30.0):
        self.duplicate_window_seconds = duplicate_window_seconds
        self.logger = structlog.get_logger().bind(component="loop_detector")

    def detect(self, state: AgentState) -> bool:
        """
        Return True when the engine should stop and summarize.

        Checks, in order: the iteration cap, three consecutive steps naming
        the same tool, an A-B-A-B alternation over the last four tool calls,
        and repeated self-reflection calls.
        """
        if state.iteration_count >= state.max_iterations:
            self.logger.warning(
                "loop_detected",
                reason="iteration_cap",
                iteration_count=state.iteration_count,
            )
            return True

        history = state.execution_history
        if len(history) >= 3:
            names = [step.tool_name for step in history[-3:] if step.tool_name]
            if len(names) == 3 and len(set(names)) == 1:
                self.logger.warning("loop_detected", reason="repetition", tool=names[0])
                return True

        recent = self._recent_tool_calls(history)
        if len(recent) >= 4:
            a, b, c, d = recent[-4:]
            if a == c and b == d and a != b:
                self.logger.warning("loop_detected", reason="alternation", tools=[a, b])
                return True

        if recent.count(SUGGEST_NEXT_ACTION_TOOL) >= 3:
            self.logger.warning("loop_detected", reason="self_reflection")
            return True

        return False

    @staticmethod
    def _recent_tool_calls(history: list[ExecutionStep], limit: int = 6) -> list[str]:
        names = [
            step.tool_name
            for step in history
            if step.type == StepType.TOOL_CALL and step.tool_name
        ]
        return names[-limit:]

    def find_recent_execution(
        self,
        tool_name: str,
        args: dict[str, Any] | None,
        history: list[ExecutionStep],
        now: float | None = None,
    ) -> ExecutionStep | None:
        """
        Find a successful execution of the same call inside the window.

        Arguments are compared as byte-identical JSON; unserializable arguments
        never match.
        """
        wanted = canonical_args(args or {})
        if wanted is None:
            return None
        now = time.time() if now is None else now
        for step in history:
            if step.tool_name != tool_name or not step.success or step.args is None:
                continue
            if step.type != StepType.TOOL_CALL:
                continue
            if now - step.timestamp >= self.duplicate_window_seconds:
                continue
            if canonical_args(step.args) == wanted:
                return step
        return None

    async def handle_infinite_loop(
        self, state: AgentState, output: OutputSinkProtocol, record: Recorder
    ) -> None:
        """Narrate the loop analysis, then force a summary."""
        output.markdown("⚠️ **Infinite loop detected, activating intelligent recovery mechanism**\n\n")
        recent = Counter(self._recent_tool_calls(state.execution_history))
        if recent:
            output.markdown(f"**Loop analysis**: Recently called {len(recent)} types of tools\n")
            for tool, count in recent.items():
                output.markdown(f"- {tool}: {count} times\n")
            output.markdown("\n")
        output.markdown(f"**Iteration count**: {state.iteration_count}\n\n")
        self.logger.info("loop_recovery_started", tool_counts=dict(recent))
        await self.force_direct_response(state, output, record)

    async def force_direct_response(
        self, state: AgentState, output: OutputSinkProtocol, record: Recorder
    ) -> None:
        """
        Summarize recent successful actions and complete the task.

        Must not raise, even with an empty history.
        """
        try:
            output.markdown("🔄 **Intelligent summary mode activated**\n\n")
            completed = [
                f"{step.tool_name}: {step.content}"
                for step in state.execution_history
                if step.success is True and step.type == StepType.TOOL_CALL
            ][-10:]

            if completed:
                output.markdown("✅ **Completed actions**:\n")
                for index, action in enumerate(completed, start=1):
                    output.markdown(f"{index}. {action}\n")
                output.markdown("\n")

            output.markdown(
                "📋 **Task summary**: Based on the executed actions, I have completed "
                f'the relevant analysis and processing for your request "{state.current_task}".\n\n'
            )
            if completed:
                output.markdown(
                    "💡 **Suggestion**: You can continue exploring based on the above "
                    "results, or make a new request.\n\n"
                )
            else:
                output.markdown(
                    "💡 **Suggestion**: If you need further assistance, please let me "
                    "know what specific help you need.\n\n"
                )
            await record(
                StepType.FORCED_RESPONSE,
                "Intelligent loop detection: Forced task completion",
                True,
            )
        except Exception as e:
            self.logger.error("forced_response_failed", error=str(e))
        finally:
            state.stage = AgentStage.COMPLETED
