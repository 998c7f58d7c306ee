"""
Execution History and Context Builder

The ContextManager is the single write path into the execution history and
renders the history into the two views the planner consumes:

- Turn narrative: steps grouped into conversational turns (user input,
  thought, reply, actions taken, plan executed)
- Tool-result window: the most recent tool results, bounded by a turn window
  and an absolute cap, each rendered with a type-specific formatter

Rendering never mutates the log. Business-significant steps are also
forwarded to the session store as audit events; failures on that side
channel are logged and swallowed.
"""

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from draftforce.core.domain.state import AgentState, ExecutionStep, StepType
from draftforce.core.interfaces.session import SessionStoreProtocol

TASK_MARKER_PREFIX = "--- New task started:"
TASK_MARKER_SUFFIX = "---"

EDIT_TOOLS = frozenset({"executeMarkdownEdits", "executeYAMLEdits"})
STRUCTURED_READ_TOOLS = frozenset({"readFileWithStructure"})


class OperationType(str, Enum):
    """Audit event types written to the session store."""

    USER_RESPONSE_RECEIVED = "USER_RESPONSE_RECEIVED"
    USER_QUESTION_ASKED = "USER_QUESTION_ASKED"
    SPECIALIST_INVOKED = "SPECIALIST_INVOKED"
    TOOL_EXECUTION_START = "TOOL_EXECUTION_START"
    TOOL_EXECUTION_END = "TOOL_EXECUTION_END"
    TOOL_EXECUTION_FAILED = "TOOL_EXECUTION_FAILED"
    AI_RESPONSE_RECEIVED = "AI_RESPONSE_RECEIVED"
    PLAN_INTERRUPTED = "PLAN_INTERRUPTED"
    PLAN_RESUMED = "PLAN_RESUMED"
    PLAN_TERMINATED = "PLAN_TERMINATED"


def task_marker(task: str) -> str:
    """Content of the turn-opening marker recorded when a task starts."""
    return f"{TASK_MARKER_PREFIX} {task} {TASK_MARKER_SUFFIX}"


def is_task_marker(step_type: StepType, content: str | None) -> bool:
    return step_type == StepType.RESULT and bool(content) and TASK_MARKER_PREFIX in content


def is_turn_marker(step_type: StepType, content: str | None) -> bool:
    """Task markers and every user interaction open a new turn."""
    return step_type == StepType.USER_INTERACTION or is_task_marker(step_type, content)


def strip_task_marker(content: str) -> str:
    text = content.split(TASK_MARKER_PREFIX, 1)[-1]
    if text.rstrip().endswith(TASK_MARKER_SUFFIX):
        text = text.rstrip()[: -len(TASK_MARKER_SUFFIX)]
    return text.strip()


def to_json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


@dataclass
class PromptContext:
    """Planner-facing views of the execution history."""

    history_context: str
    tool_results_context: str


@dataclass
class _TurnAction:
    tool_name: str
    success: bool
    duration: int | None = None


@dataclass
class _Turn:
    user_input: str | None = None
    thought: str | None = None
    response: str | None = None
    actions: list[_TurnAction] = field(default_factory=list)
    plan_executed: Any = None

    @property
    def is_complete(self) -> bool:
        return bool(self.user_input) and bool(self.thought or self.response)


class ContextManager:
    """
    Records execution steps and builds planner context from them.

    Args:
        session_store: Optional audit sink for business events
        turn_window: Number of most recent turns whose tool results are kept
        max_tool_results: Absolute cap on rendered tool results
        slow_step_ms: Steps slower than this are logged as warnings
    """

    def __init__(
        self,
        session_store: SessionStoreProtocol | None = None,
        turn_window: int = 4,
        max_tool_results: int = 10,
        slow_step_ms: int = 5000,
    ):
        self.session_store = session_store
        self.turn_window = turn_window
        self.max_tool_results = max_tool_results
        self.slow_step_ms = slow_step_ms
        self.logger = structlog.get_logger().bind(component="context_manager")

    # ------------------------------------------------------------------ write

    @staticmethod
    def turn_number_for(
        history: list[ExecutionStep], step_type: StepType, content: str
    ) -> int:
        """
        Compute the conversational turn number for a new step.

        Counts turn-opening markers already in the history; a step that is
        itself a marker opens the next turn.
        """
        turn_count = sum(1 for step in history if is_turn_marker(step.type, step.content))
        if is_turn_marker(step_type, content):
            return turn_count + 1
        return max(turn_count, 1)

    async def record(
        self,
        state: AgentState,
        step_type: StepType,
        content: str,
        success: bool | None = None,
        tool_name: str | None = None,
        result: Any = None,
        args: dict[str, Any] | None = None,
        duration: int | None = None,
        error_code: str | None = None,
        retry_count: int | None = None,
    ) -> ExecutionStep:
        """
        Append one step to the execution history.

        Args:
            state: Engine state owning the history
            step_type: Kind of event
            content: Human-readable description
            success: Outcome flag
            tool_name: Tool involved, if any
            result: Raw result payload
            args: Tool arguments
            duration: Execution time in milliseconds
            error_code: Error category for failed tool executions
            retry_count: Number of retries performed

        Returns:
            The recorded step
        """
        step = ExecutionStep(
            type=step_type,
            content=content,
            timestamp=time.time(),
            iteration=self.turn_number_for(state.execution_history, step_type, content),
            success=success,
            tool_name=tool_name,
            result=result,
            args=args,
            duration=duration,
            error_code=error_code,
            retry_count=retry_count,
        )
        state.execution_history.append(step)

        if duration is not None and duration > self.slow_step_ms:
            self.logger.warning(
                "slow_step",
                step_type=step_type.value,
                tool_name=tool_name,
                duration_ms=duration,
            )

        if self.is_business_event(step_type, content, tool_name):
            await self._report_business_event(step)

        return step

    @staticmethod
    def is_business_event(
        step_type: StepType, content: str, tool_name: str | None = None
    ) -> bool:
        """Decide whether a step is forwarded to the session store."""
        if step_type == StepType.USER_INTERACTION:
            return True
        if step_type == StepType.TOOL_CALL:
            return bool(tool_name) and "specialist" in tool_name
        if step_type == StepType.RESULT:
            milestones = ("specialist", "Task completed", "New task started", "Resume execution")
            return any(marker in content for marker in milestones)
        return False

    @staticmethod
    def map_operation_type(
        step_type: StepType,
        content: str,
        success: bool | None = None,
        tool_name: str | None = None,
    ) -> OperationType:
        if step_type == StepType.USER_INTERACTION:
            if "User response" in content:
                return OperationType.USER_RESPONSE_RECEIVED
            return OperationType.USER_QUESTION_ASKED
        if step_type == StepType.TOOL_CALL:
            if tool_name and "specialist" in tool_name:
                return OperationType.SPECIALIST_INVOKED
            if success is True:
                return OperationType.TOOL_EXECUTION_END
            if success is False:
                return OperationType.TOOL_EXECUTION_FAILED
            return OperationType.TOOL_EXECUTION_START
        if step_type == StepType.RESULT and "specialist" in content:
            return OperationType.SPECIALIST_INVOKED
        return OperationType.AI_RESPONSE_RECEIVED

    async def _report_business_event(self, step: ExecutionStep) -> None:
        if self.session_store is None:
            return
        entry = {
            "type": self.map_operation_type(
                step.type, step.content, step.success, step.tool_name
            ).value,
            "operation": step.content,
            "success": step.success if step.success is not None else True,
            "toolName": step.tool_name,
            "executionTime": step.duration,
            "errorCode": step.error_code,
            "turn": step.iteration,
            "timestamp": datetime.fromtimestamp(step.timestamp, tz=timezone.utc).isoformat(),
        }
        try:
            await self.session_store.update_with_log_entry(entry)
        except Exception as e:
            self.logger.warning(
                "business_event_report_failed",
                operation_type=entry["type"],
                error=str(e),
            )

    # ------------------------------------------------------------------- read

    def build_context(
        self, history: list[ExecutionStep], current_task: str | None = None
    ) -> PromptContext:
        """Build the turn narrative and the tool-result window."""
        items: list[str] = []
        for step in self.select_tool_results(history):
            tool_name = step.tool_name or "unknown"
            header = f"### Turn {step.iteration or 1} - Result of `{tool_name}`:"
            try:
                formatted = self.format_tool_result(tool_name, step.result)
            except Exception as e:
                self.logger.debug("tool_result_format_failed", tool_name=tool_name, error=str(e))
                formatted = "[Result could not be serialized]"
            items.append(f"{header}\n{formatted}")

        return PromptContext(
            history_context=self.build_turn_narrative(history, current_task),
            tool_results_context="\n\n".join(items),
        )

    def select_tool_results(
        self,
        history: list[ExecutionStep],
        max_turns: int | None = None,
        max_results: int | None = None,
    ) -> list[ExecutionStep]:
        """
        Select tool-call steps with results from the most recent turns.

        Narrows to the last ``max_turns`` task markers, then keeps the last
        ``max_results`` results overall.
        """
        max_turns = self.turn_window if max_turns is None else max_turns
        max_results = self.max_tool_results if max_results is None else max_results

        boundaries = [
            index
            for index, step in enumerate(history)
            if is_task_marker(step.type, step.content)
        ]
        recent = boundaries[-max_turns:] if max_turns > 0 else []
        start = recent[0] if recent else 0

        results = [
            step
            for step in history[start:]
            if step.type == StepType.TOOL_CALL and step.result is not None
        ]
        return results[-max_results:] if max_results > 0 else []

    def build_turn_narrative(
        self, history: list[ExecutionStep], current_task: str | None = None
    ) -> str:
        """
        Render the history as a sequence of completed turns.

        Steps before the first turn marker are buffered and attached to the
        first turn that opens, or to a synthetic turn seeded from the current
        task. The last turn is left out until it has user input and a thought
        or reply.
        """
        if not history:
            return "No previous interactions."

        turns: list[_Turn] = []
        current: _Turn | None = None
        pending = _Turn()

        def open_turn(user_input: str) -> _Turn:
            turn = _Turn(user_input=user_input)
            self._absorb_pending(turn, pending)
            turns.append(turn)
            return turn

        for step in history:
            target = current or pending
            if step.type == StepType.THOUGHT:
                target.thought = step.content
            elif step.type == StepType.TOOL_CALL:
                target.actions.append(
                    _TurnAction(
                        tool_name=step.tool_name or "unknown",
                        success=step.success is True,
                        duration=step.duration,
                    )
                )
            elif step.type == StepType.RESULT:
                if is_task_marker(step.type, step.content):
                    current = open_turn(strip_task_marker(step.content))
                elif step.content:
                    target.response = step.content
            elif step.type == StepType.USER_INTERACTION:
                current = open_turn(step.content)
            elif step.type in (StepType.FORCED_RESPONSE, StepType.SYSTEM):
                note = f"[System: {step.content}]"
                target.response = f"{target.response}\n{note}" if target.response else note
            elif step.type == StepType.PLAN_EXECUTION:
                target.plan_executed = step.result

        has_pending = bool(
            pending.thought or pending.response or pending.actions or pending.plan_executed
        )
        if has_pending and not turns and current_task:
            open_turn(current_task)

        completed = [
            turn
            for index, turn in enumerate(turns)
            if index < len(turns) - 1 or turn.is_complete
        ]
        if not completed:
            return "No structured interactions found."

        return "\n\n".join(
            self._render_turn(number, turn) for number, turn in enumerate(completed, start=1)
        )

    @staticmethod
    def _absorb_pending(turn: _Turn, pending: _Turn) -> None:
        if pending.thought:
            turn.thought = pending.thought
        if pending.response:
            turn.response = pending.response
        if pending.actions:
            turn.actions.extend(pending.actions)
        if pending.plan_executed is not None:
            turn.plan_executed = pending.plan_executed
        pending.thought = None
        pending.response = None
        pending.actions = []
        pending.plan_executed = None

    @staticmethod
    def _render_turn(number: int, turn: _Turn) -> str:
        lines = [
            f"### Turn {number}:",
            f"- User input: {turn.user_input or 'N/A'}",
            f"- Your Thought: {turn.thought or 'N/A'}",
            f"- Your Response: {turn.response or 'N/A'}",
        ]
        if turn.actions:
            described = []
            for action in turn.actions:
                status = "✅ Succeeded" if action.success else "❌ Failed"
                duration = f" ({action.duration}ms)" if action.duration else ""
                described.append(f"{action.tool_name} - {status}{duration}")
            lines.append(f"- Your Action Taken: {', '.join(described)}")
        else:
            lines.append("- Your Action Taken: N/A")
        if turn.plan_executed is not None:
            lines.append(
                f"- Your Plan Executed:\n```json\n{to_json(turn.plan_executed)}\n```"
            )
        else:
            lines.append("- Your Plan Executed: N/A")
        return "\n".join(lines)

    # ------------------------------------------------------------- formatters

    def format_tool_result(self, tool_name: str, result: Any) -> str:
        """Render one tool result for the planner, by tool type."""
        payload = result
        if isinstance(result, dict) and isinstance(result.get("output"), dict):
            payload = result["output"]

        if tool_name in EDIT_TOOLS and isinstance(payload, dict):
            return self._format_edit_result(payload)
        if tool_name in STRUCTURED_READ_TOOLS and isinstance(payload, dict):
            return self._format_structured_read(payload)

        data = result
        if isinstance(result, dict):
            data = result.get("output") or result.get("error") or result
        text = data if isinstance(data, str) else json.dumps(
            data, indent=2, ensure_ascii=False
        )
        return f"```json\n{text}\n```"

    @staticmethod
    def _format_edit_result(result: dict[str, Any]) -> str:
        applied_intents = result.get("appliedIntents")
        failed_intents = result.get("failedIntents")
        if applied_intents is None and failed_intents is None:
            return f"```json\n{to_json(result)}\n```"

        applied = len(applied_intents or [])
        failed = len(failed_intents or [])
        rate = f"{applied / (applied + failed) * 100:.1f}" if applied + failed else "0"

        lines = [
            "**Semantic Edit Execution Result**",
            f"- Successfully applied: {applied} edit operations",
            f"- Failed: {failed} edit operations",
            f"- Success rate: {rate}%",
        ]
        execution_time = (result.get("metadata") or {}).get("executionTime")
        if execution_time:
            lines.append(f"- Execution time: {execution_time}ms")
        if failed_intents:
            lines.append("")
            lines.append("**Failed edit operations**:")
            for index, intent in enumerate(failed_intents, start=1):
                if not isinstance(intent, dict):
                    lines.append(f"{index}. {intent}")
                    continue
                target = intent.get("target")
                if isinstance(target, dict):
                    section = target.get("sectionName", "unknown")
                else:
                    section = target or "unknown"
                lines.append(f'{index}. {intent.get("type", "unknown")} → "{section}"')
        semantic_errors = result.get("semanticErrors") or []
        if semantic_errors:
            lines.append("")
            lines.append(f"**Semantic analysis issues**: {', '.join(map(str, semantic_errors))}")
        return "\n".join(lines) + "\n"

    @staticmethod
    def _format_structured_read(result: dict[str, Any]) -> str:
        structure = result.get("structure")
        semantic_map = result.get("semanticMap")
        if not structure and not semantic_map:
            return f"```json\n{to_json(result)}\n```"

        lines = [
            "**Document Structure Analysis Result**",
            f"- File content: {len(result.get('content') or '')} characters",
        ]
        if structure:
            headings = structure.get("headings") or []
            lines.append(f"- Heading count: {len(headings)}")
            lines.append(f"- Section count: {len(structure.get('sections') or [])}")
            if headings:
                lines.append("")
                lines.append("**Document structure**:")
                for heading in headings[:5]:
                    level = int(heading.get("level", 1))
                    indent = "  " * max(0, level - 1)
                    lines.append(f"{indent}- {heading.get('text', '')} (H{level})")
                if len(headings) > 5:
                    lines.append(f"  ... and {len(headings) - 5} more headings")
        targets = (semantic_map or {}).get("editTargets") or []
        if targets:
            lines.append("")
            lines.append(f"**Editable semantic targets**: {len(targets)}")
        return "\n".join(lines) + "\n"

    # --------------------------------------------------------------- summaries

    @staticmethod
    def build_conversation_history(history: list[ExecutionStep]) -> list[dict[str, Any]]:
        """Role-tagged view of thoughts and tool executions."""
        messages: list[dict[str, Any]] = []
        for step in history:
            if step.type == StepType.THOUGHT:
                messages.append({"role": "ai", "content": step.content})
            elif step.type == StepType.TOOL_CALL:
                messages.append(
                    {
                        "role": "system",
                        "content": f"Tool executed: {step.tool_name}",
                        "toolResults": [
                            {
                                "toolName": step.tool_name,
                                "success": step.success,
                                "content": step.content,
                            }
                        ],
                    }
                )
        return messages

    @staticmethod
    def execution_summary(state: AgentState) -> str:
        """Render the end-of-run banner and statistics for the current stage."""
        stage = state.stage.value
        if stage == "error":
            return "\n❌ **Task execution interrupted**\n\n"
        if stage == "awaiting_user":
            return "\n⏸️ **Waiting for user input**\n\n"
        if stage != "completed":
            return ""

        history = state.execution_history
        successful = sum(1 for s in history if s.success is True)
        failed = sum(1 for s in history if s.success is False)
        tool_calls = sum(1 for s in history if s.type == StepType.TOOL_CALL)
        skipped = sum(1 for s in history if s.type == StepType.TOOL_CALL_SKIPPED)
        total_duration = sum(s.duration or 0 for s in history)

        lines = [
            "\n✅ **Task execution completed**\n",
            "---",
            "### 🎯 Execution Summary\n",
            f"**Iterations**: {state.iteration_count}",
            f"**Tool calls**: {tool_calls} (skipped: {skipped})",
            f"**Success/Failed**: {successful} / {failed}",
        ]
        if total_duration > 0:
            lines.append(f"**Total duration**: {total_duration}ms")
        return "\n".join(lines) + "\n\n"
