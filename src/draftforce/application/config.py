"""
Engine configuration.

Profiles are YAML files in ``configs/`` validated into EngineSettings.
Every key can be overridden from the environment with the ``DRAFTFORCE_``
prefix and ``__`` as the section delimiter, e.g.
``DRAFTFORCE_ENGINE__MAX_ITERATIONS=20``.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from draftforce.core.domain.plan import ToolPolicy
from draftforce.core.domain.plan_recovery import (
    DEFAULT_ACTIVE_ERROR_CODES,
    DEFAULT_ACTIVE_FAILURE_RULES,
    DEFAULT_PASSIVE_ERROR_CODES,
    RULES_VERSION,
    FailureClassifier,
    FailureRule,
)
from draftforce.core.domain.state import DEFAULT_MAX_ITERATIONS
from draftforce.core.domain.tool_dispatch import FINAL_ANSWER_TOOL


class EngineSection(BaseModel):
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1, description="Inner loop cap per task")


class HistorySection(BaseModel):
    trim_threshold: int = Field(default=100, ge=1, description="History length that triggers trimming")
    trim_keep: int = Field(default=50, ge=1, description="Steps kept after trimming")
    turn_window: int = Field(default=4, ge=0, description="Turns whose tool results reach the planner")
    max_tool_results: int = Field(default=10, ge=0, description="Cap on tool results shown to the planner")
    slow_step_ms: int = Field(default=5000, ge=0, description="Slow step warning threshold")


class LoopSection(BaseModel):
    duplicate_window_seconds: float = Field(default=30.0, ge=0, description="Duplicate-call guard window")
    empty_plan_threshold: int = Field(default=2, ge=1, description="Empty plans tolerated before failing")


class ToolsSection(BaseModel):
    policies: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Per-tool classification overrides"
    )
    final_answer_tool: str = Field(default=FINAL_ANSWER_TOOL, description="Tool that ends a task")


class RecoverySection(BaseModel):
    rules_version: str = Field(default=RULES_VERSION, description="Version tag of the failure rule table")
    active_failure_patterns: dict[str, list[str]] = Field(
        default_factory=lambda: {rule.category: list(rule.patterns) for rule in DEFAULT_ACTIVE_FAILURE_RULES},
        description="Ordered category -> text patterns that make a plan failure fatal",
    )
    active_error_codes: list[str] = Field(
        default_factory=lambda: sorted(DEFAULT_ACTIVE_ERROR_CODES),
        description="Structured error codes that make a plan failure fatal",
    )
    passive_error_codes: list[str] = Field(
        default_factory=lambda: sorted(DEFAULT_PASSIVE_ERROR_CODES),
        description="Structured error codes that always allow resumption",
    )


class PersistenceSection(BaseModel):
    type: str = Field(default="file", description="Session store type: file or memory")
    work_dir: str = Field(default=".draftforce", description="Directory for sessions and snapshots")


class LoggingSection(BaseModel):
    level: str = Field(default="WARNING", description="Log level")


class EngineSettings(BaseSettings):
    """Validated engine profile with environment variable support."""

    profile: str = Field(default="dev", description="Profile name")
    engine: EngineSection = Field(default_factory=EngineSection)
    history: HistorySection = Field(default_factory=HistorySection)
    loop: LoopSection = Field(default_factory=LoopSection)
    tools: ToolsSection = Field(default_factory=ToolsSection)
    recovery: RecoverySection = Field(default_factory=RecoverySection)
    persistence: PersistenceSection = Field(default_factory=PersistenceSection)
    logging: LoggingSection = Field(default_factory=LoggingSection)

    model_config = {
        "env_prefix": "DRAFTFORCE_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @classmethod
    def load_from_file(cls, config_path: Path) -> "EngineSettings":
        """Load settings from a YAML profile; a missing file yields defaults."""
        if not config_path.exists():
            return cls()

        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

        config_data.setdefault("profile", config_path.stem)
        return cls(**config_data)

    def tool_policies(self) -> dict[str, ToolPolicy]:
        return {name: ToolPolicy.from_dict(policy) for name, policy in self.tools.policies.items()}

    def failure_classifier(self) -> FailureClassifier:
        return FailureClassifier(
            rules=tuple(
                FailureRule(category, tuple(patterns))
                for category, patterns in self.recovery.active_failure_patterns.items()
            ),
            active_error_codes=frozenset(code.upper() for code in self.recovery.active_error_codes),
            passive_error_codes=frozenset(code.upper() for code in self.recovery.passive_error_codes),
            version=self.recovery.rules_version,
        )
