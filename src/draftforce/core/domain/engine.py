"""
Agent Engine - Resumable Orchestration State Machine

The AgentEngine owns one AgentState and drives the task loop:

1. Ask the planner for a plan built from the turn narrative and the
   tool-result window
2. Dispatch the plan: a multi-step plan goes to the plan runner, a direct
   answer is shown, tool calls go to the tool handler
3. Record every outcome in the execution history
4. Check for unproductive repetition and repeat

The engine suspends in ``awaiting_user`` whenever a human answer is needed
and continues when ``submit_user_answer`` is called. Suspensions survive a
restart through ``snapshot`` / ``restore``.
"""

from typing import Any

import structlog

from draftforce.core.domain.exceptions import EngineBusyError, NoPendingInteractionError
from draftforce.core.domain.history import ContextManager, task_marker
from draftforce.core.domain.interaction import (
    Resolution,
    ResolutionAction,
    UserInteractionResolver,
)
from draftforce.core.domain.loop_detector import LoopDetector
from draftforce.core.domain.plan import (
    ExecutionPlan,
    OutcomeKind,
    Plan,
    PlanOutcome,
    ToolInteractionType,
)
from draftforce.core.domain.plan_recovery import FailureClassifier, PlanRecoveryManager
from draftforce.core.domain.progress import ProgressReporter, format_execution_plan
from draftforce.core.domain.state import (
    DEFAULT_MAX_ITERATIONS,
    AgentStage,
    AgentState,
    ExecutionStep,
    InteractionRequest,
    InteractionType,
    QuestionContext,
    StepType,
    ToolCall,
)
from draftforce.core.domain.tool_dispatch import (
    FINAL_ANSWER_TOOL,
    ToolClassifier,
    ToolExecutionHandler,
    is_specialist_tool,
)
from draftforce.core.interfaces.output import OutputSinkProtocol
from draftforce.core.interfaces.plan_runner import (
    PlanRunnerProtocol,
    ProgressCallbackProtocol,
)
from draftforce.core.interfaces.planner import PlannerProtocol
from draftforce.core.interfaces.session import SessionStoreProtocol
from draftforce.core.interfaces.tools import ToolExecutorProtocol

EMPTY_PLAN_CONTENT = "Planner returned an empty plan: no response, tool calls or execution plan"
CONTINUE_CONVERSATION_MESSAGE = "Anything else? Reply to continue the conversation."


class AgentEngine:
    """
    Long-lived orchestration engine for one project session.

    Args:
        planner: Produces one plan per iteration
        tool_executor: Executes declared tools
        plan_runner: Runs and resumes multi-step specialist plans
        output: Human-visible narration sink
        session_store: Optional session source and audit sink
        classifier: Tool classifier (defaults to the executor's declared policies)
        failure_classifier: Active/passive plan failure rule table
        max_iterations: Inner loop cap per task
        trim_threshold: History length that triggers trimming between tasks
        trim_keep: Number of most recent steps kept when trimming
        empty_plan_threshold: Empty-plan records among the last 5 steps that
                              make the next empty plan fatal
        turn_window: Turns whose tool results are shown to the planner
        max_tool_results: Cap on tool results shown to the planner
        slow_step_ms: Steps slower than this are logged as warnings
        duplicate_window_seconds: Window of the duplicate-call guard
        final_answer_tool: Name of the tool that ends a task
    """

    def __init__(
        self,
        planner: PlannerProtocol,
        tool_executor: ToolExecutorProtocol,
        plan_runner: PlanRunnerProtocol,
        output: OutputSinkProtocol,
        session_store: SessionStoreProtocol | None = None,
        classifier: ToolClassifier | None = None,
        failure_classifier: FailureClassifier | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        trim_threshold: int = 100,
        trim_keep: int = 50,
        empty_plan_threshold: int = 2,
        turn_window: int = 4,
        max_tool_results: int = 10,
        slow_step_ms: int = 5000,
        duplicate_window_seconds: float = 30.0,
        final_answer_tool: str = FINAL_ANSWER_TOOL,
    ):
        self.planner = planner
        self.tool_executor = tool_executor
        self.plan_runner = plan_runner
        self.output = output
        self.session_store = session_store
        self.trim_threshold = trim_threshold
        self.trim_keep = trim_keep
        self.empty_plan_threshold = empty_plan_threshold
        self.final_answer_tool = final_answer_tool

        self.state = AgentState(max_iterations=max_iterations)
        self.context = ContextManager(
            session_store=session_store,
            turn_window=turn_window,
            max_tool_results=max_tool_results,
            slow_step_ms=slow_step_ms,
        )
        self.loop_detector = LoopDetector(duplicate_window_seconds=duplicate_window_seconds)
        self.classifier = classifier or ToolClassifier(tool_executor)
        self.tool_handler = ToolExecutionHandler(
            tool_executor, self.context, self.loop_detector, output
        )
        self.resolver = UserInteractionResolver(output)
        self.recovery = PlanRecoveryManager(
            plan_runner,
            self.context,
            output,
            session_store=session_store,
            classifier=failure_classifier,
        )
        # Reused across pause/resume of the plan it was created for
        self.progress_callback: ProgressCallbackProtocol | None = None

        self.logger = structlog.get_logger().bind(component="agent_engine")

    # ------------------------------------------------------------- public API

    async def run_task(self, text: str) -> AgentStage:
        """
        Start a new top-level task and run it until it ends or suspends.

        Raises:
            EngineBusyError: If the engine is waiting for a human answer
        """
        if self.state.is_awaiting_user:
            raise EngineBusyError(
                "Engine is waiting for a user answer; submit it before starting a new task",
                self.state.stage.value,
            )

        state = self.state
        state.current_task = text
        state.stage = AgentStage.PLANNING
        state.iteration_count = 0
        state.cancelled = False
        state.pending_interaction = None
        self._trim_history()

        self.logger.info("task_started", task=text[:100])
        await self._record(StepType.RESULT, task_marker(text))
        await self._run_loop()
        self._finish()
        return state.stage

    async def submit_user_answer(self, text: str) -> AgentStage:
        """
        Continue a suspended task with the human's answer.

        Raises:
            NoPendingInteractionError: If nothing is awaiting an answer
        """
        state = self.state
        if not state.is_awaiting_user or state.pending_interaction is None:
            raise NoPendingInteractionError(
                "No pending interaction to answer", state.stage.value
            )

        interaction = state.pending_interaction
        self.logger.info(
            "user_answer_received",
            interaction_type=interaction.type.value,
            has_resume_context=state.resume_context is not None,
        )
        await self._record(StepType.USER_INTERACTION, f"User response: {text}", True)
        state.pending_interaction = None

        if state.resume_context is not None:
            await self._resume_specialist(text)
        elif interaction.type == InteractionType.CONTINUE_CONVERSATION:
            state.current_task = text
            state.iteration_count = 0
            state.stage = AgentStage.EXECUTING
            await self._run_loop()
        else:
            await self._apply_resolution(interaction, self.resolver.resolve(text, interaction))

        self._finish()
        return state.stage

    async def cancel(self) -> None:
        """Stop the current task cooperatively. Never raises."""
        state = self.state
        state.cancelled = True
        state.pending_interaction = None
        state.resume_context = None
        state.plan_interruption_state = None
        state.stage = AgentStage.COMPLETED
        try:
            await self._record(StepType.SYSTEM, "Task cancelled by user", True)
        except Exception as e:
            self.logger.warning("cancel_record_failed", error=str(e))
        self.logger.info("task_cancelled", task=state.current_task[:100])

    def on_session_changed(self, session: dict[str, Any] | None) -> None:
        """Drop a suspension that belongs to a session which no longer exists."""
        state = self.state
        if session is None and state.is_awaiting_user:
            state.pending_interaction = None
            state.resume_context = None
            state.plan_interruption_state = None
            state.stage = AgentStage.PLANNING
            self.logger.info("suspension_dropped_on_session_change")

    def get_engine_stats(self) -> dict[str, Any]:
        return {
            "stage": self.state.stage.value,
            "iteration_count": self.state.iteration_count,
            "is_awaiting_user": self.state.is_awaiting_user,
            "execution_history_length": len(self.state.execution_history),
            "current_task": self.state.current_task,
        }

    def snapshot(self) -> dict[str, Any]:
        """Serialize the engine state so a suspended task survives a restart."""
        return self.state.to_dict()

    def restore(self, data: dict[str, Any]) -> None:
        self.state = AgentState.from_dict(data)
        self.logger.info(
            "engine_restored",
            stage=self.state.stage.value,
            history_length=len(self.state.execution_history),
        )

    # ------------------------------------------------------------------ loop

    async def _record(self, step_type: StepType, content: str, *args: Any, **kwargs: Any) -> ExecutionStep:
        return await self.context.record(self.state, step_type, content, *args, **kwargs)

    def _trim_history(self) -> None:
        history = self.state.execution_history
        if len(history) > self.trim_threshold:
            self.state.execution_history = history[-self.trim_keep:]
            self.logger.info(
                "history_trimmed", removed=len(history) - self.trim_keep, kept=self.trim_keep
            )

    def _finish(self) -> None:
        summary = ContextManager.execution_summary(self.state)
        if summary:
            self.output.markdown(summary)
        self.logger.info(
            "task_run_finished",
            stage=self.state.stage.value,
            iterations=self.state.iteration_count,
        )

    async def _session_snapshot(self) -> dict[str, Any] | None:
        return await self.recovery.current_session()

    def _ensure_progress(self) -> ProgressCallbackProtocol:
        if self.progress_callback is None:
            self.progress_callback = ProgressReporter(self.output)
        return self.progress_callback

    async def _run_loop(self) -> None:
        state = self.state
        while state.should_continue():
            try:
                await self._execute_iteration()
            except Exception as e:
                self.logger.error(
                    "iteration_failed", error=str(e), iteration=state.iteration_count
                )
                self.output.markdown(f"❌ **Execution error**: {e}\n\n")
                self.output.markdown("Please try again or rephrase your request.\n\n")
                await self._record(StepType.RESULT, f"Execution error: {e}", False)
                state.stage = AgentStage.ERROR
                break

            state.iteration_count += 1
            if state.stage.is_running and self.loop_detector.detect(state):
                await self.loop_detector.handle_infinite_loop(state, self.output, self._record)
                return

        if (
            state.stage.is_running
            and not state.cancelled
            and state.iteration_count >= state.max_iterations
        ):
            # Re-entered after an answer with no iterations left
            await self.loop_detector.handle_infinite_loop(state, self.output, self._record)

    async def _execute_iteration(self) -> None:
        state = self.state
        state.stage = AgentStage.PLANNING
        session = await self._session_snapshot()
        prompt = self.context.build_context(state.execution_history, state.current_task)

        plan: Plan = await self.planner.plan(
            state.current_task,
            session,
            prompt.history_context,
            prompt.tool_results_context,
            state.iteration_count,
        )
        if self._cancelled_during("planner"):
            return
        state.stage = AgentStage.EXECUTING
        self.logger.debug(
            "plan_received",
            response_mode=plan.response_mode.value,
            tool_calls=len(plan.tool_calls),
            iteration=state.iteration_count,
        )
        if plan.thought:
            await self._record(StepType.THOUGHT, plan.thought)

        if plan.is_plan_execution:
            await self._execute_plan(plan.execution_plan, session)
            return

        if plan.is_empty:
            await self._handle_empty_plan()
            return

        if plan.direct_response:
            self.output.markdown(f"{plan.direct_response}\n\n")
            await self._record(StepType.RESULT, plan.direct_response, True)
            if not plan.tool_calls:
                state.stage = AgentStage.AWAITING_USER
                state.pending_interaction = InteractionRequest(
                    type=InteractionType.CONTINUE_CONVERSATION,
                    message=CONTINUE_CONVERSATION_MESSAGE,
                )
                return

        await self._execute_tool_calls(plan.tool_calls)

    def _cancelled_during(self, operation: str) -> bool:
        """
        Keep a cancellation that arrived while a collaborator was awaited.

        Returns:
            True when the task was cancelled and the caller must stop
        """
        state = self.state
        if not state.cancelled:
            return False
        state.pending_interaction = None
        state.resume_context = None
        state.plan_interruption_state = None
        state.stage = AgentStage.COMPLETED
        self.logger.info("cancelled_during", operation=operation)
        return True

    async def _handle_empty_plan(self) -> None:
        recent = self.state.execution_history[-5:]
        empty_count = sum(
            1
            for step in recent
            if step.type == StepType.THOUGHT
            and step.success is False
            and step.content == EMPTY_PLAN_CONTENT
        )
        if empty_count >= self.empty_plan_threshold:
            self.logger.error("planner_unproductive", empty_plans=empty_count + 1)
            self.output.markdown(
                "❌ **The planner repeatedly returned no actionable plan**\n\n"
                "Please rephrase your request with more detail.\n\n"
            )
            await self._record(
                StepType.RESULT,
                f"Planner returned {empty_count + 1} consecutive empty plans, task aborted",
                False,
            )
            self.state.stage = AgentStage.ERROR
            return

        self.logger.warning("empty_plan", empty_plans=empty_count + 1)
        await self._record(StepType.THOUGHT, EMPTY_PLAN_CONTENT, False)

    async def _execute_tool_calls(self, calls: list[ToolCall]) -> None:
        state = self.state
        skipped = 0
        for call in calls:
            if state.cancelled:
                self.logger.info("tool_execution_cancelled", tool=call.name)
                return

            if call.name == self.final_answer_tool:
                await self.tool_handler.handle_final_answer(state, call)
                state.stage = AgentStage.COMPLETED
                return

            if self.loop_detector.find_recent_execution(
                call.name, call.args, state.execution_history
            ):
                await self.tool_handler.record_skipped_duplicate(state, call)
                skipped += 1
                continue

            if await self._dispatch(call):
                return

        if calls and skipped == len(calls):
            self.output.markdown("💡 **All proposed actions were already executed**\n\n")
            await self.loop_detector.force_direct_response(state, self.output, self._record)

    async def _dispatch(self, call: ToolCall) -> bool:
        """
        Route one non-duplicate call by its classification.

        Returns:
            True when the engine suspended and the batch must stop
        """
        state = self.state
        classification = self.classifier.classify(call)

        if classification.type == ToolInteractionType.INTERACTIVE:
            await self.tool_handler.handle_interactive(state, call)
            return True

        if is_specialist_tool(call.name):
            suspended = await self.tool_handler.handle_specialist(state, call)
            return self._cancelled_during(call.name) or suspended

        if (
            classification.type == ToolInteractionType.CONFIRMATION
            and classification.requires_confirmation
        ):
            await self.tool_handler.handle_confirmation(state, call, classification)
            return True

        await self.tool_handler.handle_autonomous(state, call)
        if self._cancelled_during(call.name):
            return True
        return state.stage == AgentStage.AWAITING_USER

    # ------------------------------------------------------------------ plans

    async def _execute_plan(self, execution_plan: ExecutionPlan, session: dict[str, Any] | None) -> None:
        state = self.state
        self.output.markdown(format_execution_plan(execution_plan))
        self.progress_callback = ProgressReporter(self.output)
        await self._record(
            StepType.PLAN_EXECUTION,
            f"Executing plan: {execution_plan.description}",
            True,
            "orchestrator",
            execution_plan.to_dict(),
        )
        self.logger.info(
            "plan_execution_started",
            plan_id=execution_plan.plan_id,
            steps=len(execution_plan.steps),
        )

        try:
            outcome = await self.plan_runner.run(
                execution_plan, session, state.current_task, self.progress_callback
            )
        except Exception as e:
            self.logger.error("plan_execution_error", plan_id=execution_plan.plan_id, error=str(e))
            self.output.markdown(f"❌ **Plan execution error**: {e}\n\n")
            self.output.markdown("Please try again or rephrase your request.\n\n")
            await self._record(StepType.RESULT, f"Plan execution error: {e}", False)
            state.stage = AgentStage.ERROR
            return

        if self._cancelled_during("plan_runner.run"):
            return
        await self.handle_plan_execution_result(outcome, execution_plan)

    async def handle_plan_execution_result(
        self, outcome: PlanOutcome, plan: ExecutionPlan | None = None
    ) -> None:
        """Apply a plan runner outcome from a fresh run or a continued plan."""
        state = self.state
        self.logger.info("plan_outcome", kind=outcome.kind.value, failed_step=outcome.failed_step)

        if outcome.kind == OutcomeKind.INTERACTION_REQUIRED:
            question = outcome.question or "Your input is required"
            state.stage = AgentStage.AWAITING_USER
            state.pending_interaction = InteractionRequest(
                type=InteractionType.INPUT, message=question
            )
            state.resume_context = outcome.resume_context or state.resume_context
            self.output.markdown(f"💬 **{question}**\n\n")
            self.output.markdown("Please enter your response below...\n\n")
            await self._record(StepType.USER_INTERACTION, f"Asked user: {question}", True)
            return

        state.resume_context = None
        if outcome.kind == OutcomeKind.COMPLETED:
            self.output.markdown(f"✅ **Plan execution completed**: {outcome.summary}\n\n")
            await self._record(
                StepType.RESULT,
                f"Plan execution result: Task completed - {outcome.summary}",
                True,
                "planExecutor",
                outcome.execution_context(),
            )
            state.stage = AgentStage.COMPLETED
            return

        await self.recovery.handle_plan_failure(state, outcome, plan)

    async def _resume_specialist(self, answer: str) -> None:
        """Re-enter the paused specialist with the human's answer."""
        state = self.state
        resume = state.resume_context
        progress = self._ensure_progress()
        session = await self._session_snapshot()
        state.stage = AgentStage.EXECUTING
        self.output.markdown("🔄 **Resuming specialist execution...**\n\n")

        try:
            outcome = await self.plan_runner.resume_specialist(resume, answer, session, progress)
            if self._cancelled_during("plan_runner.resume_specialist"):
                return

            if outcome.needs_chat_interaction:
                question = outcome.question or "Your input is required"
                state.resume_context = resume.merged_with(
                    outcome.specialist_state,
                    QuestionContext(
                        question=question,
                        tool_call=resume.question_context.tool_call,
                        original_result=outcome.result or None,
                    ),
                )
                state.stage = AgentStage.AWAITING_USER
                state.pending_interaction = InteractionRequest(
                    type=InteractionType.INPUT, message=question
                )
                self.output.markdown(f"💬 **{question}**\n\n")
                await self._record(StepType.USER_INTERACTION, f"Asked user: {question}", True)
                return

            if outcome.success:
                plan_outcome = await self.plan_runner.continue_execution(
                    resume.plan_runner_state, outcome, session, progress
                )
                if self._cancelled_during("plan_runner.continue_execution"):
                    return
                plan_data = resume.plan_runner_state.plan
                await self.handle_plan_execution_result(
                    plan_outcome, ExecutionPlan.from_dict(plan_data) if plan_data else None
                )
                return
        except Exception as e:
            self.logger.error("specialist_resume_error", error=str(e))
            state.resume_context = None
            state.stage = AgentStage.COMPLETED
            await self._record(StepType.RESULT, f"Resume execution failed: {e}", False)
            self.output.markdown(f"❌ **Resume execution failed**: {e}\n\n")
            self.output.markdown("Please restart your task.\n\n")
            return

        self.logger.warning("specialist_resume_failed", error=outcome.error)
        await self._record(
            StepType.RESULT, f"Specialist resume execution failed: {outcome.error}", False
        )
        state.resume_context = None
        state.stage = AgentStage.EXECUTING
        await self._run_loop()

    # ----------------------------------------------------------- interactions

    async def _apply_resolution(self, interaction: InteractionRequest, resolution: Resolution) -> None:
        state = self.state
        for content, success in resolution.record:
            await self._record(StepType.USER_INTERACTION, content, success)

        if resolution.action == ResolutionAction.REASK:
            state.pending_interaction = interaction.renewed()
            state.stage = AgentStage.AWAITING_USER
            return

        if resolution.action == ResolutionAction.CANCELLED:
            state.stage = AgentStage.COMPLETED
            return

        if resolution.action == ResolutionAction.RESUME_PLAN:
            state.stage = AgentStage.EXECUTING
            await self.recovery.resume(state, self._ensure_progress())
            self._cancelled_during("plan_runner.resume_from_step")
            return

        if resolution.action == ResolutionAction.TERMINATE_PLAN:
            await self.recovery.terminate(state)
            return

        if resolution.action == ResolutionAction.RUN_TOOL and resolution.tool_call is not None:
            state.stage = AgentStage.EXECUTING
            call = resolution.tool_call
            if call.name == self.final_answer_tool:
                await self.tool_handler.handle_final_answer(state, call)
                state.stage = AgentStage.COMPLETED
                return
            if is_specialist_tool(call.name):
                await self.tool_handler.handle_specialist(state, call)
            else:
                await self.tool_handler.handle_autonomous(state, call)
            if self._cancelled_during(call.name):
                return

        if state.pending_interaction is not None:
            return
        if state.stage in (AgentStage.AWAITING_USER, AgentStage.PLANNING, AgentStage.EXECUTING):
            state.stage = AgentStage.EXECUTING
            await self._run_loop()
