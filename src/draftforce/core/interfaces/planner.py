"""
Planner Protocol

Defines the contract for the component that turns a task plus context into
a plan. Plan generation itself is outside the engine.
"""

from typing import Any, Protocol

from draftforce.core.domain.plan import Plan


class PlannerProtocol(Protocol):
    """Produces one plan per engine iteration."""

    async def plan(
        self,
        task: str,
        session: dict[str, Any] | None,
        history_context: str,
        tool_results_context: str,
        iteration_count: int,
    ) -> Plan:
        """
        Generate the next plan.

        Must be callable repeatedly and must not block indefinitely; the
        engine applies its own iteration cap regardless.

        Args:
            task: Current user task
            session: Serialized session snapshot (may be None)
            history_context: Turn-based narrative of previous turns
            tool_results_context: Bounded window of recent tool results
            iteration_count: Inner loop counter for the current task

        Returns:
            Plan for this iteration
        """
        ...
