"""
Scenario files for the scripted collaborators.

A scenario is a YAML document that replays planner decisions, tool
responses, and plan runner outcomes so the engine can run end to end
without a model backend:

    name: search-and-answer
    session:
      projectName: Demo
    plans:
      - thought: Look it up first
        response_mode: tool_execution
        tool_calls:
          - name: internetSearch
            args: {query: "SRS template"}
    tools:
      internetSearch:
        policy: {interaction_type: autonomous, risk_level: low}
        responses:
          - {success: true, output: {hits: 3}}
    plan_runs: []
    specialist_resumes: []
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from draftforce.core.domain.exceptions import ConfigurationError


@dataclass
class Scenario:
    name: str = "scenario"
    session: dict[str, Any] | None = None
    plans: list[dict[str, Any]] = field(default_factory=list)
    tools: dict[str, dict[str, Any]] = field(default_factory=dict)
    plan_runs: list[dict[str, Any]] = field(default_factory=list)
    specialist_resumes: list[dict[str, Any]] = field(default_factory=list)
    answers: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Scenario":
        return cls(
            name=data.get("name", "scenario"),
            session=data.get("session"),
            plans=list(data.get("plans") or []),
            tools=dict(data.get("tools") or {}),
            plan_runs=list(data.get("plan_runs") or []),
            specialist_resumes=list(data.get("specialist_resumes") or []),
            answers=[str(answer) for answer in data.get("answers") or []],
        )

    @classmethod
    def load(cls, path: Path) -> "Scenario":
        """
        Load a scenario file.

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigurationError: If the file is not a YAML mapping
        """
        if not path.exists():
            raise FileNotFoundError(f"Scenario not found: {path}")
        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid scenario YAML {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Scenario must be a mapping: {path}")
        return cls.from_dict(data)
