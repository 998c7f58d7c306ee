"""
Scripted planner: replays plans from a scenario in order.
"""

from typing import Any

import structlog

from draftforce.core.domain.plan import Plan


class ScriptedPlanner:
    """
    PlannerProtocol implementation backed by a list of plan dicts.

    Once the list is exhausted every further call returns an empty plan.
    """

    def __init__(self, plans: list[dict[str, Any]]):
        self.plans = list(plans)
        self.calls: list[dict[str, Any]] = []
        self.logger = structlog.get_logger().bind(component="scripted_planner")

    async def plan(
        self,
        task: str,
        session: dict[str, Any] | None,
        history_context: str,
        tool_results_context: str,
        iteration_count: int,
    ) -> Plan:
        self.calls.append(
            {
                "task": task,
                "iteration_count": iteration_count,
                "history_context": history_context,
                "tool_results_context": tool_results_context,
            }
        )
        if not self.plans:
            self.logger.debug("plans_exhausted", calls=len(self.calls))
            return Plan()
        return Plan.from_dict(self.plans.pop(0))
