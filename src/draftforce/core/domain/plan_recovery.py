"""
Plan Interruption and Recovery

When a multi-step plan fails mid-way, the failure is classified as either
an active failure (a genuine business or validation error, fatal) or a
passive interruption (anything else, offered for resumption). Passive
interruptions snapshot a PlanInterruptionState and ask the human to
continue or end the plan.

Classification is a two-way split driven by an ordered, versioned rule
table of active-failure patterns. A structured error code from the plan
runner is consulted first; unknown, empty, or novel errors default to
passive.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from draftforce.core.domain.history import ContextManager, OperationType
from draftforce.core.domain.interaction import PLAN_RECOVERY_TOOL
from draftforce.core.domain.plan import ExecutionPlan, OutcomeKind, PlanOutcome
from draftforce.core.domain.state import (
    AgentStage,
    AgentState,
    InteractionRequest,
    InteractionType,
    PlanInterruptionState,
    StepType,
    ToolCall,
)
from draftforce.core.interfaces.output import OutputSinkProtocol
from draftforce.core.interfaces.plan_runner import (
    PlanRunnerProtocol,
    ProgressCallbackProtocol,
)
from draftforce.core.interfaces.session import SessionStoreProtocol

RULES_VERSION = "2024.1"

CONTINUE_PLAN_OPTION = "Continue writing plan"
END_PLAN_OPTION = "End writing plan"

SESSION_SNAPSHOT_KEYS = (
    "sessionContextId",
    "projectName",
    "baseDir",
    "activeFiles",
    "gitBranch",
    "metadata",
)


@dataclass(frozen=True)
class FailureRule:
    """One entry of the active-failure table: a category and its text patterns."""

    category: str
    patterns: tuple[str, ...]

    def matches(self, error: str) -> bool:
        lowered = error.lower()
        return any(pattern.lower() in lowered for pattern in self.patterns)


DEFAULT_ACTIVE_FAILURE_RULES: tuple[FailureRule, ...] = (
    FailureRule(
        "business_rule",
        (
            "business logic validation failed",
            "business rule conflict",
            "data integrity check failed",
        ),
    ),
    FailureRule(
        "validation",
        (
            "parameter validation error",
            "parameter format error",
            "json format error",
            "invalid json",
            "missing required field",
            "invalid parameter value",
        ),
    ),
    FailureRule(
        "permission",
        (
            "insufficient permission",
            "access denied",
            "file permission error",
        ),
    ),
    FailureRule("configuration", ("tool does not exist", "configuration error")),
    FailureRule(
        "user_decision",
        ("invalid user input", "user cancelled", "user declined"),
    ),
    FailureRule(
        "specialist_output",
        (
            "specialist returned invalid",
            "output format does not meet requirements",
            "required tool call missing",
        ),
    ),
    FailureRule(
        "filesystem",
        (
            "file does not exist and cannot be created",
            "insufficient disk space",
            "invalid path",
        ),
    ),
)

DEFAULT_ACTIVE_ERROR_CODES = frozenset(
    {
        "BUSINESS_RULE_VIOLATION",
        "VALIDATION_ERROR",
        "PERMISSION_DENIED",
        "CONFIGURATION_ERROR",
        "USER_DECLINED",
        "INVALID_SPECIALIST_OUTPUT",
        "FILESYSTEM_ERROR",
    }
)
DEFAULT_PASSIVE_ERROR_CODES = frozenset(
    {"NETWORK_ERROR", "TIMEOUT", "RATE_LIMITED", "SERVICE_UNAVAILABLE"}
)


@dataclass(frozen=True)
class FailureClassification:
    """
    Result of classifying a plan failure.

    Attributes:
        passive: True when the failure is offered for resumption
        category: Matched active-failure category, if any
        source: What decided: "error_code", "pattern", or "default"
    """

    passive: bool
    category: str | None = None
    source: str = "default"


@dataclass
class FailureClassifier:
    """Ordered active-failure rule table with a passive default branch."""

    rules: tuple[FailureRule, ...] = DEFAULT_ACTIVE_FAILURE_RULES
    active_error_codes: frozenset[str] = DEFAULT_ACTIVE_ERROR_CODES
    passive_error_codes: frozenset[str] = DEFAULT_PASSIVE_ERROR_CODES
    version: str = RULES_VERSION
    logger: Any = field(
        default_factory=lambda: structlog.get_logger().bind(component="failure_classifier"),
        repr=False,
        compare=False,
    )

    def classify(self, error: str | None, error_code: str | None = None) -> FailureClassification:
        if error_code:
            code = error_code.upper()
            if code in self.active_error_codes:
                return self._log(FailureClassification(False, code.lower(), "error_code"), error)
            if code in self.passive_error_codes:
                return self._log(FailureClassification(True, None, "error_code"), error)

        text = error or ""
        for rule in self.rules:
            if text and rule.matches(text):
                return self._log(FailureClassification(False, rule.category, "pattern"), error)
        return self._log(FailureClassification(True), error)

    def is_passive(self, error: str | None, error_code: str | None = None) -> bool:
        return self.classify(error, error_code).passive

    def _log(self, result: FailureClassification, error: str | None) -> FailureClassification:
        self.logger.info(
            "plan_failure_classified",
            passive=result.passive,
            category=result.category,
            source=result.source,
            rules_version=self.version,
            error=(error or "")[:100],
        )
        return result


def serialize_session(session: dict[str, Any] | None) -> dict[str, Any] | None:
    """Keep the session fields needed to restore a plan later."""
    if not session:
        return None
    return {key: session.get(key) for key in SESSION_SNAPSHOT_KEYS}


def extract_completed_step_results(outcome: PlanOutcome) -> dict[int, dict[str, Any]]:
    """Map step number to result for every step the runner marked completed."""
    results: dict[int, dict[str, Any]] = {}
    for work in outcome.completed_work:
        if work.status != "completed":
            continue
        results[work.step] = {
            "success": True,
            "content": work.summary or "",
            "metadata": {"specialist": work.specialist},
        }
    return results


class PlanRecoveryManager:
    """
    Drives the continue-or-end protocol for interrupted plans.

    Args:
        plan_runner: Runner used to resume from the failed step
        context: History writer
        output: Human-visible narration sink
        session_store: Optional audit sink and session source
        classifier: Failure classification rule table
    """

    def __init__(
        self,
        plan_runner: PlanRunnerProtocol,
        context: ContextManager,
        output: OutputSinkProtocol,
        session_store: SessionStoreProtocol | None = None,
        classifier: FailureClassifier | None = None,
    ):
        self.plan_runner = plan_runner
        self.context = context
        self.output = output
        self.session_store = session_store
        self.classifier = classifier or FailureClassifier()
        self.logger = structlog.get_logger().bind(component="plan_recovery")

    async def current_session(self) -> dict[str, Any] | None:
        if self.session_store is None:
            return None
        try:
            return await self.session_store.get_current_session()
        except Exception as e:
            self.logger.warning("session_lookup_failed", error=str(e))
            return None

    async def handle_plan_failure(
        self, state: AgentState, outcome: PlanOutcome, plan: ExecutionPlan | None = None
    ) -> None:
        """
        Classify a failed plan and either offer recovery or fail the task.

        Args:
            state: Engine state
            outcome: Failed plan outcome reported by the runner
            plan: The plan that was running, when the outcome omits it
        """
        classification = self.classifier.classify(outcome.error, outcome.error_code)
        original_plan = outcome.plan or plan

        if not classification.passive:
            self.output.markdown(f"❌ **Plan execution failed**: {outcome.error}\n\n")
            self.output.markdown("Please review the reported problem and rephrase your request.\n\n")
            await self.context.record(
                state,
                StepType.RESULT,
                f"Plan execution failed: {outcome.error}",
                False,
                "planExecutor",
                outcome.execution_context(),
            )
            self.logger.warning(
                "plan_failed_unrecoverable",
                error=outcome.error,
                category=classification.category,
                failed_step=outcome.failed_step,
                specialist=outcome.failed_specialist,
            )
            state.stage = AgentStage.ERROR
            return

        state.plan_interruption_state = PlanInterruptionState(
            plan_id=original_plan.plan_id if original_plan else "unknown",
            plan_description=original_plan.description if original_plan else "unknown",
            original_plan=original_plan.to_dict() if original_plan else {"steps": []},
            failed_step=outcome.failed_step or 0,
            completed_step_results=extract_completed_step_results(outcome),
            session_snapshot=serialize_session(await self.current_session()),
            user_input=state.current_task,
            interruption_reason=outcome.error or "unknown error",
            interruption_timestamp=datetime.now(timezone.utc).isoformat(),
            can_resume=True,
        )
        await self._persist_interruption(state.plan_interruption_state)
        self.show_recovery_options(state)

    async def _persist_interruption(self, interruption: PlanInterruptionState) -> None:
        await self._audit(
            OperationType.PLAN_INTERRUPTED,
            f"Plan {interruption.plan_id} passively interrupted, recovery state saved",
            True,
            {
                "planId": interruption.plan_id,
                "failedStep": interruption.failed_step,
                "completedSteps": len(interruption.completed_step_results),
                "interruptionReason": interruption.interruption_reason,
                "canResume": interruption.can_resume,
            },
        )

    async def _audit(
        self,
        operation_type: OperationType,
        operation: str,
        success: bool,
        details: dict[str, Any],
    ) -> None:
        if self.session_store is None:
            return
        try:
            await self.session_store.update_with_log_entry(
                {
                    "type": operation_type.value,
                    "operation": operation,
                    "success": success,
                    "userInput": details,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            )
        except Exception as e:
            self.logger.warning(
                "plan_audit_failed", operation_type=operation_type.value, error=str(e)
            )

    def show_recovery_options(self, state: AgentState) -> None:
        """Suspend with the two-option continue/end choice."""
        interruption = state.plan_interruption_state
        self.output.markdown(
            f"❌ **Plan execution interrupted**: {interruption.interruption_reason}\n\n"
        )
        self.output.markdown("📋 **Plan information**:\n")
        self.output.markdown(f"- Plan: {interruption.plan_description}\n")
        self.output.markdown(f"- Failed step: {interruption.failed_step}\n")
        self.output.markdown(f"- Completed: {len(interruption.completed_step_results)} steps\n")
        self.output.markdown(f"- Remaining: {interruption.remaining_steps} steps\n\n")

        state.stage = AgentStage.AWAITING_USER
        state.pending_interaction = InteractionRequest(
            type=InteractionType.CHOICE,
            message="Plan execution encountered a temporary issue. How would you like to proceed?",
            options=[CONTINUE_PLAN_OPTION, END_PLAN_OPTION],
            tool_call=ToolCall(name=PLAN_RECOVERY_TOOL, args={"action": "user_choice_pending"}),
        )

        self.output.markdown("**Please choose**:\n")
        self.output.markdown(
            f"1. {CONTINUE_PLAN_OPTION} (restart from step {interruption.failed_step})\n"
        )
        self.output.markdown(f"2. {END_PLAN_OPTION}\n\n")
        self.logger.info(
            "plan_recovery_offered",
            plan_id=interruption.plan_id,
            failed_step=interruption.failed_step,
        )

    async def resume(self, state: AgentState, progress: ProgressCallbackProtocol) -> None:
        """
        Restart the interrupted plan from its failed step.

        Args:
            state: Engine state holding the interruption snapshot
            progress: The progress callback used by the original run
        """
        interruption = state.plan_interruption_state
        if interruption is None:
            self.logger.warning("plan_resume_without_interruption")
            state.stage = AgentStage.COMPLETED
            return

        self.output.markdown("🔄 **Resuming plan execution...**\n\n")
        self.output.markdown(f"📋 Restarting from step {interruption.failed_step}\n\n")

        try:
            outcome = await self.plan_runner.resume_from_step(
                ExecutionPlan.from_dict(interruption.original_plan),
                interruption.failed_step,
                interruption.completed_step_results,
                interruption.session_snapshot,
                interruption.user_input,
                progress,
            )
        except Exception as e:
            self.logger.error("plan_resume_error", plan_id=interruption.plan_id, error=str(e))
            self.output.markdown(f"❌ **Resume execution error**: {e}\n\n")
            self.output.markdown("Please restart your task.\n\n")
            await self.context.record(state, StepType.RESULT, f"Resume execution error: {e}", False)
            state.stage = AgentStage.ERROR
            state.plan_interruption_state = None
            return

        await self._audit(
            OperationType.PLAN_RESUMED,
            f"Plan {interruption.plan_id} resumed execution",
            outcome.kind == OutcomeKind.COMPLETED,
            {
                "planId": interruption.plan_id,
                "resumedFromStep": interruption.failed_step,
                "result": outcome.kind.value,
            },
        )

        if outcome.kind == OutcomeKind.COMPLETED:
            self.output.markdown("✅ **Plan resume execution completed successfully**\n\n")
            await self.context.record(
                state,
                StepType.RESULT,
                f"Resume execution completed: {outcome.summary}",
                True,
                "planExecutor",
                outcome.execution_context(),
            )
            state.stage = AgentStage.COMPLETED
            state.plan_interruption_state = None
            return

        if outcome.kind == OutcomeKind.FAILED and self.classifier.is_passive(
            outcome.error, outcome.error_code
        ):
            interruption.failed_step = outcome.failed_step or interruption.failed_step
            interruption.interruption_reason = outcome.error or "unknown error"
            interruption.interruption_timestamp = datetime.now(timezone.utc).isoformat()
            interruption.completed_step_results.update(extract_completed_step_results(outcome))
            self.show_recovery_options(state)
            return

        if outcome.kind == OutcomeKind.INTERACTION_REQUIRED:
            question = outcome.question or "Your confirmation is needed"
            state.stage = AgentStage.AWAITING_USER
            state.pending_interaction = InteractionRequest(
                type=InteractionType.INPUT, message=question
            )
            state.resume_context = outcome.resume_context
            state.plan_interruption_state = None
            self.output.markdown(f"💬 **{question}**\n\n")
            await self.context.record(state, StepType.USER_INTERACTION, f"Asked user: {question}", True)
            return

        self.output.markdown(f"❌ **Plan resume execution failed**: {outcome.error}\n\n")
        await self.context.record(
            state,
            StepType.RESULT,
            f"Plan resume failed: {outcome.error}",
            False,
            "planExecutor",
            outcome.execution_context(),
        )
        state.stage = AgentStage.ERROR
        state.plan_interruption_state = None

    async def terminate(self, state: AgentState) -> None:
        """End the interrupted plan at the human's request."""
        interruption = state.plan_interruption_state
        if interruption is None:
            state.stage = AgentStage.COMPLETED
            return

        completed = len(interruption.completed_step_results)
        self.output.markdown("❌ **Plan execution terminated**\n\n")
        self.output.markdown("📋 **Execution summary**:\n")
        self.output.markdown(f"- Plan: {interruption.plan_description}\n")
        self.output.markdown(f"- Completed: {completed} steps\n")
        self.output.markdown("- Termination reason: User chose to terminate\n\n")

        await self._audit(
            OperationType.PLAN_TERMINATED,
            f"Plan {interruption.plan_id} terminated by user",
            True,
            {
                "planId": interruption.plan_id,
                "terminatedAtStep": interruption.failed_step,
                "completedSteps": completed,
                "reason": "User chose to terminate",
            },
        )
        await self.context.record(
            state,
            StepType.SYSTEM,
            f"Plan {interruption.plan_id} terminated by user after {completed} completed steps",
            True,
        )
        self.logger.info("plan_terminated", plan_id=interruption.plan_id, completed_steps=completed)
        state.stage = AgentStage.COMPLETED
        state.plan_interruption_state = None
