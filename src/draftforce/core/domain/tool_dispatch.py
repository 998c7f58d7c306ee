"""
Tool Dispatch - Classification and Execution

Decides how each proposed tool call is dispatched and executes it:

- autonomous: executed immediately, exactly one history record per call
- interactive: always suspends the engine with an interaction request
- confirmation: low risk runs autonomously, otherwise asks yes/no first
- specialist tools: executed like autonomous tools, but may pause with a
  resume context when the specialist needs a human answer
- final answer: always executed, rendered for the human, ends the task
"""

import json
import time
from dataclasses import dataclass
from typing import Any

import structlog

from draftforce.core.domain.history import ContextManager
from draftforce.core.domain.loop_detector import LoopDetector
from draftforce.core.domain.plan import (
    RiskLevel,
    ToolInteractionType,
    ToolPolicy,
    ToolResult,
)
from draftforce.core.domain.state import (
    AgentStage,
    AgentState,
    InteractionRequest,
    InteractionType,
    PlanRunnerState,
    QuestionContext,
    ResumeContext,
    ResumeGuidance,
    SpecialistLoopState,
    StepType,
    ToolCall,
)
from draftforce.core.interfaces.output import OutputSinkProtocol
from draftforce.core.interfaces.tools import ToolExecutorProtocol

FINAL_ANSWER_TOOL = "finalAnswer"
INTERACTIVE_TIMEOUT_MS = 300_000

# Ordered: the first matching fragment decides the category.
ERROR_CODE_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("not found",), "TOOL_NOT_FOUND"),
    (("permission", "access"), "PERMISSION_DENIED"),
    (("timeout",), "TIMEOUT"),
    (("network",), "NETWORK_ERROR"),
)
DEFAULT_ERROR_CODE = "EXECUTION_FAILED"


def classify_error_code(message: str | None) -> str:
    """Map an error message to a tool error category."""
    text = (message or "").lower()
    for fragments, code in ERROR_CODE_RULES:
        if any(fragment in text for fragment in fragments):
            return code
    return DEFAULT_ERROR_CODE


def is_specialist_tool(name: str) -> bool:
    return "specialist" in name


def serialize_output(output: Any) -> str:
    if isinstance(output, str):
        return output
    try:
        return json.dumps(output, indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        return f"[Output serialization failed: {e}]"


@dataclass(frozen=True)
class ToolClassification:
    """How one tool call should be dispatched."""

    type: ToolInteractionType
    risk_level: RiskLevel
    requires_confirmation: bool


class ToolClassifier:
    """
    Classifies tool calls from declared tool policies.

    Policies come from the tool executor's metadata and may be overridden
    per tool by configuration. Unknown tools are autonomous and low risk.

    Args:
        tool_executor: Executor whose ``describe`` provides declared policies
        overrides: Per-tool policies taking precedence over declared ones
    """

    def __init__(
        self,
        tool_executor: ToolExecutorProtocol | None = None,
        overrides: dict[str, ToolPolicy] | None = None,
    ):
        self.tool_executor = tool_executor
        self.overrides = dict(overrides or {})

    def policy_for(self, name: str) -> ToolPolicy:
        if name in self.overrides:
            return self.overrides[name]
        if self.tool_executor is not None:
            declared = self.tool_executor.describe(name)
            if declared is not None:
                return declared
        return ToolPolicy()

    def classify(self, call: ToolCall) -> ToolClassification:
        policy = self.policy_for(call.name)
        requires_confirmation = policy.requires_confirmation
        if policy.interaction_type == ToolInteractionType.CONFIRMATION:
            requires_confirmation = requires_confirmation and policy.risk_level != RiskLevel.LOW
        return ToolClassification(
            type=policy.interaction_type,
            risk_level=policy.risk_level,
            requires_confirmation=requires_confirmation,
        )


class ToolExecutionHandler:
    """
    Executes classified tool calls and records their outcomes.

    Every handler writes through the ContextManager; an autonomous call
    produces exactly one history record, never a separate "started" record.
    """

    def __init__(
        self,
        tool_executor: ToolExecutorProtocol,
        context: ContextManager,
        loop_detector: LoopDetector,
        output: OutputSinkProtocol,
    ):
        self.tool_executor = tool_executor
        self.context = context
        self.loop_detector = loop_detector
        self.output = output
        self.logger = structlog.get_logger().bind(component="tool_execution_handler")

    async def _execute(self, call: ToolCall) -> tuple[ToolResult, int, Exception | None]:
        start = time.monotonic()
        try:
            raw = await self.tool_executor.execute(call.name, dict(call.args))
            result = ToolResult.from_raw(raw)
            error = None
        except Exception as e:
            result = ToolResult(success=False, error=str(e), raw={"error": str(e)})
            error = e
        duration = int((time.monotonic() - start) * 1000)
        return result, duration, error

    async def record_skipped_duplicate(self, state: AgentState, call: ToolCall) -> None:
        self.output.markdown(
            f"⏭️ **Skipping duplicate call**: {call.name} (already executed within "
            f"{int(self.loop_detector.duplicate_window_seconds)} seconds)\n"
        )
        await self.context.record(
            state,
            StepType.TOOL_CALL_SKIPPED,
            f"Skipping duplicate: {call.name}",
            True,
            call.name,
            {"reason": "duplicate_in_time_window"},
            call.args,
        )
        self.logger.info("tool_call_skipped", tool=call.name)

    async def handle_autonomous(self, state: AgentState, call: ToolCall) -> None:
        """
        Execute a tool immediately and record the outcome.

        A tool whose output asks for a chat interaction suspends the engine
        with an input request carrying the original result, so answering it
        never re-runs the tool.
        """
        if self.loop_detector.find_recent_execution(
            call.name, call.args, state.execution_history
        ):
            await self.record_skipped_duplicate(state, call)
            return

        self.output.markdown(f"🔧 **Executing tool**: {call.name}\n")
        self.logger.info("tool_execution_started", tool=call.name)
        result, duration, error = await self._execute(call)

        if result.success and result.needs_chat_interaction:
            question = result.chat_question or "Your input is required"
            state.stage = AgentStage.AWAITING_USER
            state.pending_interaction = InteractionRequest(
                type=InteractionType.INPUT,
                message=question,
                tool_call=call,
                original_result=result.output,
            )
            self.output.markdown(f"💬 **{question}**\n\n")
            self.output.markdown("Please enter your response below...\n\n")
            await self.context.record(
                state,
                StepType.USER_INTERACTION,
                f"Tool {call.name} needs chat interaction: {question}",
                True,
                call.name,
                result.output,
                call.args,
                duration,
            )
            return

        await self._record_result(state, call, result, duration, error)

    async def _record_result(
        self,
        state: AgentState,
        call: ToolCall,
        result: ToolResult,
        duration: int,
        error: Exception | None = None,
    ) -> None:
        if not result.success:
            message = result.error or "Unknown error"
            error_code = result.error_code or classify_error_code(message)
            self.output.markdown(
                f"❌ **{call.name}** execution failed ({duration}ms): {message}\n\n"
            )
            self.logger.warning(
                "tool_execution_failed",
                tool=call.name,
                error=message,
                error_code=error_code,
                duration_ms=duration,
                raised=error is not None,
            )
            await self.context.record(
                state,
                StepType.TOOL_CALL,
                f"{call.name} execution failed: {message}",
                False,
                call.name,
                result.raw or {"error": message},
                call.args,
                duration,
                error_code,
            )
            return

        self.output.markdown(f"✅ **{call.name}** execution succeeded ({duration}ms)\n")
        if result.output:
            self.output.markdown(f"```json\n{serialize_output(result.output)}\n```\n\n")
        self.logger.info("tool_execution_succeeded", tool=call.name, duration_ms=duration)
        await self.context.record(
            state,
            StepType.TOOL_CALL,
            f"{call.name} execution succeeded",
            True,
            call.name,
            result.raw or {"success": True, "output": result.output},
            call.args,
            duration,
        )

    async def handle_interactive(self, state: AgentState, call: ToolCall) -> None:
        """Suspend the engine with a request inferred from the call."""
        options = call.args.get("options")
        if isinstance(options, list) and options:
            interaction_type = InteractionType.CHOICE
        elif "confirm" in call.name.lower():
            interaction_type = InteractionType.CONFIRMATION
        else:
            interaction_type = InteractionType.INPUT

        message = call.args.get("message") or (
            f"Tool {call.name} needs your input. Please provide the required information."
        )
        interaction = InteractionRequest(
            type=interaction_type,
            message=message,
            options=[str(option) for option in options] if isinstance(options, list) else [],
            tool_call=call,
            timeout_ms=INTERACTIVE_TIMEOUT_MS,
        )
        state.stage = AgentStage.AWAITING_USER
        state.pending_interaction = interaction

        self.output.markdown("✋ **Your input is required**\n\n")
        self.output.markdown(f"{message}\n\n")
        for index, option in enumerate(interaction.options, start=1):
            self.output.markdown(f"{index}. {option}\n")

        await self.context.record(
            state,
            StepType.USER_INTERACTION,
            f"Waiting for user input: {message}",
            tool_name=call.name,
            args=call.args,
        )

    async def handle_confirmation(
        self, state: AgentState, call: ToolCall, classification: ToolClassification
    ) -> None:
        """Run low-risk calls directly; ask yes/no before anything riskier."""
        if classification.risk_level == RiskLevel.LOW:
            await self.handle_autonomous(state, call)
            return

        risk = classification.risk_level.value
        icon = "🔴" if classification.risk_level == RiskLevel.HIGH else "🟡"
        self.output.markdown(
            f"{icon} **Confirmation required** ({risk} risk): About to execute {call.name}\n"
        )
        self.output.markdown(f"Parameters: {serialize_output(call.args)}\n\n")
        self.output.markdown("Continue? (enter 'yes' to continue, 'no' to cancel)\n\n")

        state.stage = AgentStage.AWAITING_USER
        state.pending_interaction = InteractionRequest(
            type=InteractionType.CONFIRMATION,
            message=f"Confirm execution of {call.name}?",
            options=["yes", "no"],
            tool_call=call,
        )
        await self.context.record(
            state,
            StepType.USER_INTERACTION,
            f"Waiting for user confirmation: {call.name} ({risk} risk)",
            tool_name=call.name,
            args=call.args,
        )

    async def handle_specialist(self, state: AgentState, call: ToolCall) -> bool:
        """
        Invoke a specialist tool outside of a plan.

        Returns:
            True when the specialist paused and the engine now awaits the user
        """
        self.output.markdown(f"🧑‍💼 **{call.name}** is working...\n")
        result, duration, error = await self._execute(call)

        output = result.output
        if isinstance(output, str) and result.success:
            try:
                output = json.loads(output)
            except ValueError:
                pass

        if result.success and isinstance(output, dict) and output.get("needsChatInteraction"):
            question = output.get("chatQuestion") or "Your confirmation is required"
            state.resume_context = self._specialist_resume_context(state, call, output, question)
            state.stage = AgentStage.AWAITING_USER
            state.pending_interaction = InteractionRequest(
                type=InteractionType.INPUT,
                message=question,
                tool_call=call,
                original_result=output,
            )
            self.output.markdown(f"💬 **{question}**\n\n")
            self.output.markdown("Please enter your response below...\n\n")
            await self.context.record(
                state,
                StepType.USER_INTERACTION,
                f"Specialist tool {call.name} needs user interaction: {question}",
                True,
                call.name,
                output,
                call.args,
                duration,
            )
            self.logger.info("specialist_paused", tool=call.name, question=question[:100])
            return True

        await self._record_result(state, call, result, duration, error)
        return False

    @staticmethod
    def _specialist_resume_context(
        state: AgentState, call: ToolCall, output: dict[str, Any], question: str
    ) -> ResumeContext:
        specialist_state = output.get("resumeContext") or {}
        return ResumeContext(
            plan_runner_state=PlanRunnerState(
                plan=output.get("pendingPlan") or {},
                user_input=state.current_task,
                specialist_loop_state=SpecialistLoopState(
                    specialist_id=specialist_state.get("ruleId") or call.name,
                    current_iteration=int(output.get("currentIteration") or 0),
                    execution_history=list(output.get("conversationHistory") or []),
                ),
            ),
            question_context=QuestionContext(
                question=question, tool_call=call, original_result=output
            ),
            resume_guidance=ResumeGuidance(
                contextual_hints=["Specialist paused outside a plan; restart the task if resumption fails"]
            ),
            specialist_state=dict(specialist_state),
        )

    async def handle_final_answer(self, state: AgentState, call: ToolCall) -> None:
        """
        Execute the final-answer tool and render its payload.

        The caller completes the task regardless of the outcome.
        """
        self.output.markdown("🎯 **AI final answer**\n\n")
        result, duration, error = await self._execute(call)

        if not result.success:
            message = result.error or "Unknown error"
            self.output.markdown(f"❌ **finalAnswer execution failed**: {message}\n\n")
            await self.context.record(
                state,
                StepType.TOOL_CALL,
                f"{call.name} execution failed: {message}",
                False,
                call.name,
                result.raw or {"error": message},
                call.args,
                duration,
                result.error_code or classify_error_code(message),
            )
            return

        await self.context.record(
            state,
            StepType.TOOL_CALL,
            f"{call.name} execution succeeded",
            True,
            call.name,
            result.raw or {"success": True, "output": result.output},
            call.args,
            duration,
        )
        rendered = self.render_final_answer(result.output)
        self.output.markdown(rendered)
        await self.context.record(state, StepType.RESULT, rendered.strip() or "Task completed", True)

    @staticmethod
    def render_final_answer(output: Any) -> str:
        """Render summary, result, achievements and next steps."""
        payload = output
        if isinstance(output, str):
            try:
                payload = json.loads(output)
            except ValueError:
                return f"{output}\n\n"
        if not isinstance(payload, dict):
            return "✅ Task completed\n\n" if payload in (None, "") else f"{serialize_output(payload)}\n\n"

        parts: list[str] = []
        if payload.get("summary"):
            parts.append(f"### ✅ Task completed\n\n{payload['summary']}\n\n")
        if payload.get("result"):
            parts.append(f"**Execution result**: {payload['result']}\n\n")
        achievements = payload.get("achievements") or []
        if achievements:
            parts.append("**Work completed:**\n")
            parts.extend(f"{index}. {item}\n" for index, item in enumerate(achievements, start=1))
            parts.append("\n")
        if payload.get("nextSteps"):
            parts.append(f"**Recommended next steps:** {payload['nextSteps']}\n\n")
        return "".join(parts) or "✅ Task completed\n\n"
