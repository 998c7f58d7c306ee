"""
Scripted tool executor: canned responses per tool name.

Each tool entry in a scenario may declare a ``policy`` (interaction type,
risk level, confirmation) and a list of ``responses`` consumed in order;
the last response repeats. A response with a ``raise`` key raises instead
of returning, to exercise the engine's exception path.
"""

from typing import Any

import structlog

from draftforce.core.domain.plan import ToolPolicy
from draftforce.core.domain.tool_dispatch import FINAL_ANSWER_TOOL


class ScriptedToolError(RuntimeError):
    """Raised by a scripted response that declares ``raise``."""


class ScriptedToolExecutor:
    """ToolExecutorProtocol implementation driven by scenario data."""

    def __init__(self, tools: dict[str, dict[str, Any]]):
        self.tools = {name: dict(definition or {}) for name, definition in tools.items()}
        self._cursor: dict[str, int] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.logger = structlog.get_logger().bind(component="scripted_tool_executor")

    def describe(self, name: str) -> ToolPolicy | None:
        policy = self.tools.get(name, {}).get("policy")
        return ToolPolicy.from_dict(policy) if policy else None

    async def execute(self, name: str, args: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((name, dict(args)))
        definition = self.tools.get(name)

        if definition is None:
            if name == FINAL_ANSWER_TOOL:
                return {"success": True, "output": dict(args)}
            self.logger.warning("tool_not_found", tool=name)
            return {"success": False, "error": f"Tool not found: {name}"}

        responses = definition.get("responses") or [{"success": True, "output": None}]
        index = min(self._cursor.get(name, 0), len(responses) - 1)
        self._cursor[name] = index + 1
        response = dict(responses[index])

        if "raise" in response:
            raise ScriptedToolError(str(response["raise"]))
        response.setdefault("success", True)
        return response

    def call_count(self, name: str) -> int:
        return sum(1 for called, _ in self.calls if called == name)
