"""
Agent State Model

This module defines the state owned by the engine and the records it keeps:
- AgentState: the single mutable state of one engine instance
- ExecutionStep: immutable record of one event in the execution history
- InteractionRequest: what answer the engine waits for while suspended
- ResumeContext: continuation for a specialist that paused mid-step
- PlanInterruptionState: continuation for a plan halted by a transient failure

All continuation objects round-trip through plain dicts so a suspended
engine can be persisted and restored after a restart.
"""

import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any


class AgentStage(str, Enum):
    """Stage of the engine state machine."""

    PLANNING = "planning"
    EXECUTING = "executing"
    AWAITING_USER = "awaiting_user"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_running(self) -> bool:
        return self in (AgentStage.PLANNING, AgentStage.EXECUTING)


class StepType(str, Enum):
    """Type of an execution history record."""

    THOUGHT = "thought"
    TOOL_CALL = "tool_call"
    TOOL_CALL_SKIPPED = "tool_call_skipped"
    RESULT = "result"
    USER_INTERACTION = "user_interaction"
    PLAN_EXECUTION = "plan_execution"
    FORCED_RESPONSE = "forced_response"
    SYSTEM = "system"


class InteractionType(str, Enum):
    """Kind of answer a pending interaction expects."""

    CONFIRMATION = "confirmation"
    CHOICE = "choice"
    INPUT = "input"
    CONTINUE_CONVERSATION = "continue_conversation"


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation proposed by the planner or deferred by an interaction."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)

    def with_args(self, **extra: Any) -> "ToolCall":
        """Return a copy with additional arguments merged in."""
        return ToolCall(name=self.name, args={**self.args, **extra})

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "args": dict(self.args)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        return cls(name=data["name"], args=dict(data.get("args") or {}))


@dataclass(frozen=True)
class ExecutionStep:
    """
    One immutable record in the execution history.

    Attributes:
        type: Kind of event
        content: Human-readable description of the event
        timestamp: Epoch seconds when the step was recorded
        iteration: Conversational turn number (not the inner loop counter)
        success: Outcome flag, None when not applicable
        tool_name: Tool involved, if any
        args: Tool arguments, if any
        result: Raw result payload, if any
        duration: Execution time in milliseconds
        error_code: Error category for failed tool executions
        retry_count: Number of retries performed
    """

    type: StepType
    content: str
    timestamp: float
    iteration: int = 1
    success: bool | None = None
    tool_name: str | None = None
    args: dict[str, Any] | None = None
    result: Any = None
    duration: int | None = None
    error_code: str | None = None
    retry_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecutionStep":
        return cls(**{**data, "type": StepType(data["type"])})


@dataclass
class InteractionRequest:
    """
    Describes the answer the engine waits for while awaiting the user.

    Attributes:
        type: Expected answer kind
        message: Question shown to the human
        options: Choices for choice/confirmation requests
        tool_call: Deferred tool call to run once answered
        original_result: Set when the asking tool already ran; the answer must
                         not re-execute it
        timeout_ms: Advisory answer timeout for interactive tools
    """

    type: InteractionType
    message: str | None = None
    options: list[str] = field(default_factory=list)
    tool_call: ToolCall | None = None
    original_result: Any = None
    timeout_ms: int | None = None

    def renewed(self) -> "InteractionRequest":
        """Fresh copy used when the same question has to be asked again."""
        return replace(self, options=list(self.options))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "options": list(self.options),
            "tool_call": self.tool_call.to_dict() if self.tool_call else None,
            "original_result": self.original_result,
            "timeout_ms": self.timeout_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InteractionRequest":
        tool_call = data.get("tool_call")
        return cls(
            type=InteractionType(data["type"]),
            message=data.get("message"),
            options=list(data.get("options") or []),
            tool_call=ToolCall.from_dict(tool_call) if tool_call else None,
            original_result=data.get("original_result"),
            timeout_ms=data.get("timeout_ms"),
        )


@dataclass
class SpecialistLoopState:
    """Snapshot of a specialist's internal loop at the moment it paused."""

    specialist_id: str = "unknown"
    current_iteration: int = 0
    max_iterations: int = 5
    execution_history: list[dict[str, Any]] = field(default_factory=list)
    is_looping: bool = False
    start_time: float = field(default_factory=time.time)


@dataclass
class PlanRunnerState:
    """Snapshot of the plan runner around a paused specialist."""

    plan: dict[str, Any] = field(default_factory=dict)
    current_step: dict[str, Any] = field(default_factory=dict)
    step_results: dict[str, Any] = field(default_factory=dict)
    session_snapshot: dict[str, Any] | None = None
    user_input: str = ""
    specialist_loop_state: SpecialistLoopState = field(
        default_factory=SpecialistLoopState
    )


@dataclass
class QuestionContext:
    """The exact question that caused a specialist pause."""

    question: str
    tool_call: ToolCall = field(default_factory=lambda: ToolCall(name="askQuestion"))
    original_result: Any = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class ResumeGuidance:
    """Hints handed back to the specialist when it is resumed."""

    next_action: str = "continue_specialist_execution"
    resume_point: str = "next_iteration"
    expected_user_response_type: str = "answer"
    contextual_hints: list[str] = field(default_factory=list)


@dataclass
class ResumeContext:
    """
    Serializable continuation for a specialist paused on a human question.

    The plan runner snapshot must survive repeated pause/resume cycles:
    merging a specialist's fresh resume data never replaces it.
    """

    plan_runner_state: PlanRunnerState
    question_context: QuestionContext
    resume_guidance: ResumeGuidance = field(default_factory=ResumeGuidance)
    specialist_state: dict[str, Any] = field(default_factory=dict)

    def merged_with(
        self,
        specialist_state: dict[str, Any] | None,
        question_context: QuestionContext,
        resume_guidance: ResumeGuidance | None = None,
    ) -> "ResumeContext":
        """Merge a specialist's fresh pause data, keeping the runner snapshot."""
        return ResumeContext(
            plan_runner_state=self.plan_runner_state,
            question_context=question_context,
            resume_guidance=resume_guidance or self.resume_guidance,
            specialist_state={**self.specialist_state, **(specialist_state or {})},
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["question_context"]["tool_call"] = self.question_context.tool_call.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResumeContext":
        runner = dict(data["plan_runner_state"])
        runner["specialist_loop_state"] = SpecialistLoopState(
            **(runner.get("specialist_loop_state") or {})
        )
        question = dict(data["question_context"])
        if question.get("tool_call"):
            question["tool_call"] = ToolCall.from_dict(question["tool_call"])
        return cls(
            plan_runner_state=PlanRunnerState(**runner),
            question_context=QuestionContext(**question),
            resume_guidance=ResumeGuidance(**(data.get("resume_guidance") or {})),
            specialist_state=dict(data.get("specialist_state") or {}),
        )


@dataclass
class PlanInterruptionState:
    """Serializable continuation for a multi-step plan halted by a passive failure."""

    plan_id: str
    plan_description: str
    original_plan: dict[str, Any]
    failed_step: int
    completed_step_results: dict[int, dict[str, Any]]
    session_snapshot: dict[str, Any] | None
    user_input: str
    interruption_reason: str
    interruption_timestamp: str
    can_resume: bool = True

    @property
    def total_steps(self) -> int:
        return len(self.original_plan.get("steps") or [])

    @property
    def remaining_steps(self) -> int:
        return max(self.total_steps - self.failed_step + 1, 0)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["completed_step_results"] = {
            str(step): result for step, result in self.completed_step_results.items()
        }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlanInterruptionState":
        completed = {
            int(step): result
            for step, result in (data.get("completed_step_results") or {}).items()
        }
        return cls(**{**data, "completed_step_results": completed})


DEFAULT_MAX_ITERATIONS = 15


@dataclass
class AgentState:
    """
    Mutable state of one engine instance.

    Created once and outlives individual tasks. Only the engine and the
    delegates it owns write to it; observers read it.
    """

    stage: AgentStage = AgentStage.PLANNING
    current_task: str = ""
    execution_history: list[ExecutionStep] = field(default_factory=list)
    iteration_count: int = 0
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    cancelled: bool = False
    pending_interaction: InteractionRequest | None = None
    resume_context: ResumeContext | None = None
    plan_interruption_state: PlanInterruptionState | None = None

    @property
    def is_awaiting_user(self) -> bool:
        return self.stage == AgentStage.AWAITING_USER

    def should_continue(self) -> bool:
        """Loop guard: running stage, not cancelled, under the iteration cap."""
        return (
            self.stage.is_running
            and not self.cancelled
            and self.iteration_count < self.max_iterations
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "current_task": self.current_task,
            "execution_history": [step.to_dict() for step in self.execution_history],
            "iteration_count": self.iteration_count,
            "max_iterations": self.max_iterations,
            "cancelled": self.cancelled,
            "pending_interaction": (
                self.pending_interaction.to_dict() if self.pending_interaction else None
            ),
            "resume_context": (
                self.resume_context.to_dict() if self.resume_context else None
            ),
            "plan_interruption_state": (
                self.plan_interruption_state.to_dict()
                if self.plan_interruption_state
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentState":
        pending = data.get("pending_interaction")
        resume = data.get("resume_context")
        interruption = data.get("plan_interruption_state")
        return cls(
            stage=AgentStage(data.get("stage", AgentStage.PLANNING.value)),
            current_task=data.get("current_task", ""),
            execution_history=[
                ExecutionStep.from_dict(step)
                for step in data.get("execution_history") or []
            ],
            iteration_count=data.get("iteration_count", 0),
            max_iterations=data.get("max_iterations", DEFAULT_MAX_ITERATIONS),
            cancelled=data.get("cancelled", False),
            pending_interaction=InteractionRequest.from_dict(pending) if pending else None,
            resume_context=ResumeContext.from_dict(resume) if resume else None,
            plan_interruption_state=(
                PlanInterruptionState.from_dict(interruption) if interruption else None
            ),
        )
