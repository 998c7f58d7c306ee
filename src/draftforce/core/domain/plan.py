"""
Plan and Outcome Models

Value objects exchanged with the external collaborators:
- Plan: what the planner decided for one iteration
- ExecutionPlan / PlanStep: an ordered list of specialist steps
- PlanOutcome: what the plan runner reports after running or resuming a plan
- SpecialistOutcome: what a resumed specialist reports
- ToolResult: normalized result of one tool execution
- ToolPolicy: declared interaction policy of a tool
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from draftforce.core.domain.state import ResumeContext, ToolCall


class ResponseMode(str, Enum):
    """How the planner wants the engine to act on a plan."""

    KNOWLEDGE_QA = "knowledge_qa"
    TOOL_EXECUTION = "tool_execution"
    PLAN_EXECUTION = "plan_execution"


@dataclass
class PlanStep:
    """One specialist step of a multi-step plan."""

    step: int
    specialist: str
    description: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "specialist": self.specialist,
            "description": self.description,
            **self.extra,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlanStep":
        known = {"step", "specialist", "description"}
        return cls(
            step=int(data["step"]),
            specialist=data["specialist"],
            description=data.get("description", ""),
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class ExecutionPlan:
    """Ordered list of specialist steps produced by the planner."""

    plan_id: str
    description: str
    steps: list[PlanStep] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "planId": self.plan_id,
            "description": self.description,
            "steps": [step.to_dict() for step in self.steps],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecutionPlan":
        return cls(
            plan_id=data.get("planId") or data.get("plan_id") or "unknown",
            description=data.get("description", ""),
            steps=[PlanStep.from_dict(step) for step in data.get("steps") or []],
        )


@dataclass
class Plan:
    """
    Planner decision for one iteration.

    Exactly one of the shapes applies: a multi-step execution plan, a direct
    answer, tool calls, a direct answer with tool calls, or nothing at all
    (an empty plan, which signals a malfunctioning planner).
    """

    thought: str = ""
    response_mode: ResponseMode = ResponseMode.KNOWLEDGE_QA
    direct_response: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    execution_plan: ExecutionPlan | None = None

    @property
    def is_plan_execution(self) -> bool:
        return (
            self.response_mode == ResponseMode.PLAN_EXECUTION
            and self.execution_plan is not None
        )

    @property
    def is_empty(self) -> bool:
        return (
            not self.is_plan_execution
            and not self.direct_response
            and not self.tool_calls
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Plan":
        execution_plan = data.get("execution_plan")
        return cls(
            thought=data.get("thought", ""),
            response_mode=ResponseMode(data.get("response_mode", "knowledge_qa")),
            direct_response=data.get("direct_response"),
            tool_calls=[ToolCall.from_dict(call) for call in data.get("tool_calls") or []],
            execution_plan=(
                ExecutionPlan.from_dict(execution_plan) if execution_plan else None
            ),
        )


class OutcomeKind(str, Enum):
    """Result kind reported by the plan runner."""

    COMPLETED = "plan_completed"
    FAILED = "plan_failed"
    INTERACTION_REQUIRED = "user_interaction_required"


@dataclass
class CompletedWork:
    """Progress record for one plan step as tracked by the plan runner."""

    step: int
    specialist: str
    status: str
    summary: str = ""


@dataclass
class PlanOutcome:
    """
    Outcome of running or resuming a multi-step plan.

    Attributes:
        kind: completed, failed, or interaction required
        summary: Completion summary (completed)
        error: Failure message (failed)
        error_code: Optional structured failure category (failed)
        failed_step: 1-based index of the failed step (failed)
        failed_specialist: Specialist that failed, if known
        completed_work: Per-step progress records
        plan: The plan that was executed
        question: Question for the human (interaction required)
        resume_context: Continuation for the paused specialist
    """

    kind: OutcomeKind
    summary: str = ""
    error: str | None = None
    error_code: str | None = None
    failed_step: int = 0
    failed_specialist: str | None = None
    completed_work: list[CompletedWork] = field(default_factory=list)
    plan: ExecutionPlan | None = None
    question: str | None = None
    resume_context: ResumeContext | None = None

    @classmethod
    def completed(cls, summary: str, **kwargs: Any) -> "PlanOutcome":
        return cls(kind=OutcomeKind.COMPLETED, summary=summary, **kwargs)

    @classmethod
    def failed(cls, error: str | None, failed_step: int, **kwargs: Any) -> "PlanOutcome":
        return cls(kind=OutcomeKind.FAILED, error=error, failed_step=failed_step, **kwargs)

    @classmethod
    def interaction_required(
        cls, question: str, resume_context: ResumeContext | None, **kwargs: Any
    ) -> "PlanOutcome":
        return cls(
            kind=OutcomeKind.INTERACTION_REQUIRED,
            question=question,
            resume_context=resume_context,
            **kwargs,
        )

    def execution_context(self) -> dict[str, Any]:
        """Compact progress record kept alongside history entries."""
        completed = [w for w in self.completed_work if w.status == "completed"]
        return {
            "plan": self.plan.to_dict() if self.plan else None,
            "completedSteps": len(completed),
            "totalSteps": len(self.plan.steps) if self.plan else len(self.completed_work),
            "failedStep": self.failed_step or None,
            "failedSpecialist": self.failed_specialist,
            "error": self.error,
        }


@dataclass
class SpecialistOutcome:
    """
    Result of resuming a paused specialist with the human's answer.

    A successful outcome is handed to the plan runner to continue the plan;
    a chat-interaction outcome means the specialist asks again.
    """

    success: bool
    content: str = ""
    needs_chat_interaction: bool = False
    question: str | None = None
    specialist_state: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    result: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    """Normalized result of a tool execution."""

    success: bool
    output: Any = None
    error: str | None = None
    error_code: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def needs_chat_interaction(self) -> bool:
        return isinstance(self.output, dict) and bool(
            self.output.get("needsChatInteraction")
        )

    @property
    def chat_question(self) -> str | None:
        if isinstance(self.output, dict):
            return self.output.get("chatQuestion")
        return None

    @classmethod
    def from_raw(cls, raw: Any) -> "ToolResult":
        """Build from the dict a tool executor returns."""
        if isinstance(raw, ToolResult):
            return raw
        if not isinstance(raw, dict):
            return cls(success=True, output=raw, raw={"success": True, "output": raw})
        output = raw.get("output", raw.get("result"))
        return cls(
            success=bool(raw.get("success", False)),
            output=output,
            error=raw.get("error"),
            error_code=raw.get("error_code"),
            raw=raw,
        )


class ToolInteractionType(str, Enum):
    """How a tool call is dispatched."""

    AUTONOMOUS = "autonomous"
    INTERACTIVE = "interactive"
    CONFIRMATION = "confirmation"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class ToolPolicy:
    """Declared interaction policy of a tool."""

    interaction_type: ToolInteractionType = ToolInteractionType.AUTONOMOUS
    risk_level: RiskLevel = RiskLevel.LOW
    requires_confirmation: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolPolicy":
        return cls(
            interaction_type=ToolInteractionType(
                data.get("interaction_type", ToolInteractionType.AUTONOMOUS.value)
            ),
            risk_level=RiskLevel(data.get("risk_level", RiskLevel.LOW.value)),
            requires_confirmation=bool(data.get("requires_confirmation", False)),
        )
