"""
Scripted plan runner: replays plan outcomes from a scenario.

``plan_runs`` entries are consumed in order by ``run``,
``resume_from_step`` and ``continue_execution``; ``specialist_resumes``
entries by ``resume_specialist``. Completed work entries drive the progress
callback the same way a real runner would.
"""

from typing import Any

import structlog

from draftforce.core.domain.plan import (
    CompletedWork,
    ExecutionPlan,
    OutcomeKind,
    PlanOutcome,
    SpecialistOutcome,
)
from draftforce.core.domain.state import (
    PlanRunnerState,
    QuestionContext,
    ResumeContext,
    SpecialistLoopState,
)
from draftforce.core.interfaces.plan_runner import ProgressCallbackProtocol


class ScriptExhaustedError(RuntimeError):
    """The scenario has no more outcomes for the requested call."""


def _pause_context(
    data: dict[str, Any], plan: ExecutionPlan, user_input: str, question: str
) -> ResumeContext:
    if data.get("resume_context"):
        return ResumeContext.from_dict(data["resume_context"])
    specialist = data.get("failed_specialist") or data.get("specialist") or "unknown"
    step = int(data.get("paused_step") or data.get("failed_step") or 1)
    return ResumeContext(
        plan_runner_state=PlanRunnerState(
            plan=plan.to_dict(),
            current_step={"step": step, "specialist": specialist},
            user_input=user_input,
            specialist_loop_state=SpecialistLoopState(specialist_id=specialist),
        ),
        question_context=QuestionContext(question=question),
        specialist_state=dict(data.get("specialist_state") or {}),
    )


def outcome_from_dict(data: dict[str, Any], plan: ExecutionPlan, user_input: str) -> PlanOutcome:
    """Build a PlanOutcome from a scenario entry."""
    kind = OutcomeKind(data.get("kind", OutcomeKind.COMPLETED.value))
    completed_work = [
        CompletedWork(
            step=int(work["step"]),
            specialist=work.get("specialist", "unknown"),
            status=work.get("status", "completed"),
            summary=work.get("summary", ""),
        )
        for work in data.get("completed_work") or []
    ]
    common = {
        "completed_work": completed_work,
        "plan": plan,
        "failed_specialist": data.get("failed_specialist"),
    }
    if kind == OutcomeKind.FAILED:
        return PlanOutcome.failed(
            data.get("error"),
            int(data.get("failed_step") or 0),
            error_code=data.get("error_code"),
            **common,
        )
    if kind == OutcomeKind.INTERACTION_REQUIRED:
        question = data.get("question") or "Your input is required"
        return PlanOutcome.interaction_required(
            question, _pause_context(data, plan, user_input, question), **common
        )
    return PlanOutcome.completed(data.get("summary", "Plan completed"), **common)


class ScriptedPlanRunner:
    """PlanRunnerProtocol implementation driven by scenario data."""

    def __init__(
        self,
        plan_runs: list[dict[str, Any]],
        specialist_resumes: list[dict[str, Any]] | None = None,
    ):
        self.plan_runs = list(plan_runs)
        self.specialist_resumes = list(specialist_resumes or [])
        self.calls: list[tuple[str, dict[str, Any]]] = []
        # Callback object handed to each call, in call order
        self.progress_callbacks: list[ProgressCallbackProtocol] = []
        self.logger = structlog.get_logger().bind(component="scripted_plan_runner")

    def _next_run(self, method: str) -> dict[str, Any]:
        if not self.plan_runs:
            raise ScriptExhaustedError(f"No scripted plan outcome left for {method}")
        return self.plan_runs.pop(0)

    @staticmethod
    def _report(data: dict[str, Any], progress: ProgressCallbackProtocol, skip_until: int = 0) -> None:
        for work in data.get("completed_work") or []:
            if int(work["step"]) < skip_until or work.get("status", "completed") != "completed":
                continue
            specialist = work.get("specialist", "unknown")
            progress.on_specialist_start(specialist)
            progress.on_iteration_start(1, 5)
            tool_calls = list(work.get("tool_calls") or [])
            if tool_calls:
                progress.on_tools_start(tool_calls)
                progress.on_tools_complete(
                    tool_calls, [{"success": True} for _ in tool_calls], 0
                )
            progress.on_task_complete(work.get("summary", ""))

    async def run(
        self,
        plan: ExecutionPlan,
        session: dict[str, Any] | None,
        user_input: str,
        progress: ProgressCallbackProtocol,
    ) -> PlanOutcome:
        self.calls.append(("run", {"plan_id": plan.plan_id}))
        self.progress_callbacks.append(progress)
        data = self._next_run("run")
        self._report(data, progress)
        return outcome_from_dict(data, plan, user_input)

    async def resume_from_step(
        self,
        plan: ExecutionPlan,
        failed_step: int,
        completed_results: dict[int, dict[str, Any]],
        session: dict[str, Any] | None,
        user_input: str,
        progress: ProgressCallbackProtocol,
    ) -> PlanOutcome:
        self.calls.append(
            (
                "resume_from_step",
                {
                    "plan_id": plan.plan_id,
                    "failed_step": failed_step,
                    "completed_steps": sorted(completed_results),
                },
            )
        )
        self.progress_callbacks.append(progress)
        data = self._next_run("resume_from_step")
        self._report(data, progress, skip_until=failed_step)
        return outcome_from_dict(data, plan, user_input)

    async def resume_specialist(
        self,
        resume_context: ResumeContext,
        user_response: str,
        session: dict[str, Any] | None,
        progress: ProgressCallbackProtocol,
    ) -> SpecialistOutcome:
        self.calls.append(("resume_specialist", {"user_response": user_response}))
        self.progress_callbacks.append(progress)
        if not self.specialist_resumes:
            raise ScriptExhaustedError("No scripted specialist resume left")
        data = self.specialist_resumes.pop(0)
        if "raise" in data:
            raise ScriptExhaustedError(str(data["raise"]))
        return SpecialistOutcome(
            success=bool(data.get("success", True)),
            content=data.get("content", ""),
            needs_chat_interaction=bool(data.get("needs_chat_interaction", False)),
            question=data.get("question"),
            specialist_state=dict(data.get("specialist_state") or {}),
            error=data.get("error"),
            result=dict(data.get("result") or {}),
        )

    async def continue_execution(
        self,
        runner_state: PlanRunnerState,
        specialist_result: SpecialistOutcome,
        session: dict[str, Any] | None,
        progress: ProgressCallbackProtocol,
    ) -> PlanOutcome:
        plan = ExecutionPlan.from_dict(runner_state.plan or {})
        self.calls.append(("continue_execution", {"plan_id": plan.plan_id}))
        self.progress_callbacks.append(progress)
        data = self._next_run("continue_execution")
        self._report(data, progress)
        return outcome_from_dict(data, plan, runner_state.user_input)
