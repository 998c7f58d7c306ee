"""
Plan Runner Protocol

Defines the contract for executing multi-step specialist plans, including
the resume entry points used after a pause or a passive interruption.
"""

from typing import Any, Protocol

from draftforce.core.domain.plan import ExecutionPlan, PlanOutcome, SpecialistOutcome
from draftforce.core.domain.state import PlanRunnerState, ResumeContext


class ProgressCallbackProtocol(Protocol):
    """
    Hooks the plan runner calls while specialists work.

    The same instance must be reused across a pause/resume boundary.
    """

    def on_specialist_start(self, specialist_id: str) -> None: ...

    def on_iteration_start(self, current: int, maximum: int) -> None: ...

    def on_tools_start(self, tool_calls: list[dict[str, Any]]) -> None: ...

    def on_tools_complete(
        self,
        tool_calls: list[dict[str, Any]],
        results: list[dict[str, Any]],
        duration: int,
    ) -> None: ...

    def on_task_complete(self, summary: str) -> None: ...


class PlanRunnerProtocol(Protocol):
    """Runs specialist plans and resumes them."""

    async def run(
        self,
        plan: ExecutionPlan,
        session: dict[str, Any] | None,
        user_input: str,
        progress: ProgressCallbackProtocol,
    ) -> PlanOutcome:
        """Run a plan from its first step."""
        ...

    async def resume_from_step(
        self,
        plan: ExecutionPlan,
        failed_step: int,
        completed_results: dict[int, dict[str, Any]],
        session: dict[str, Any] | None,
        user_input: str,
        progress: ProgressCallbackProtocol,
    ) -> PlanOutcome:
        """Restart a plan at the step that failed, reusing completed results."""
        ...

    async def resume_specialist(
        self,
        resume_context: ResumeContext,
        user_response: str,
        session: dict[str, Any] | None,
        progress: ProgressCallbackProtocol,
    ) -> SpecialistOutcome:
        """Re-enter a paused specialist with the human's answer."""
        ...

    async def continue_execution(
        self,
        runner_state: PlanRunnerState,
        specialist_result: SpecialistOutcome,
        session: dict[str, Any] | None,
        progress: ProgressCallbackProtocol,
    ) -> PlanOutcome:
        """Continue the remaining plan after a resumed specialist finished its step."""
        ...
