"""
Application Layer - Engine Factory

Wires the core AgentEngine with infrastructure adapters based on YAML
configuration profiles (dev/prod).

Key Responsibilities:
- Load and validate configuration profiles
- Instantiate the session store (file-based or in-memory)
- Instantiate the scripted collaborators from a scenario file
- Inject everything into the core AgentEngine
"""

from pathlib import Path
from typing import Any, Optional

import structlog
import yaml
from pydantic import ValidationError

from draftforce.application.config import EngineSettings
from draftforce.core.domain.engine import AgentEngine
from draftforce.core.domain.exceptions import ConfigurationError
from draftforce.core.domain.tool_dispatch import ToolClassifier
from draftforce.core.interfaces.output import OutputSinkProtocol
from draftforce.core.interfaces.session import SessionStoreProtocol
from draftforce.infrastructure.output.console_sink import ConsoleSink
from draftforce.infrastructure.persistence.file_session_store import FileSessionStore
from draftforce.infrastructure.persistence.memory_session_store import InMemorySessionStore
from draftforce.infrastructure.scripted.plan_runner import ScriptedPlanRunner
from draftforce.infrastructure.scripted.planner import ScriptedPlanner
from draftforce.infrastructure.scripted.scenario import Scenario
from draftforce.infrastructure.scripted.tools import ScriptedToolExecutor


class EngineFactory:
    """
    Factory for creating engines with dependency injection.

    Reads YAML configuration profiles, validates them into EngineSettings,
    and injects the configured adapters into the core AgentEngine.
    """

    def __init__(self, config_dir: str = "configs"):
        """
        Initialize EngineFactory with configuration directory.

        Args:
            config_dir: Path to directory containing profile YAML files
        """
        self.config_dir = Path(config_dir)
        self.logger = structlog.get_logger().bind(component="engine_factory")

    def _load_profile(self, profile: str) -> dict:
        """
        Load configuration profile from YAML file.

        Raises:
            FileNotFoundError: If profile YAML not found
        """
        profile_path = self.config_dir / f"{profile}.yaml"

        if not profile_path.exists():
            self.logger.error(
                "profile_not_found",
                profile=profile,
                path=str(profile_path),
                hint="Ensure profile YAML exists in configs directory",
            )
            raise FileNotFoundError(f"Profile not found: {profile_path}")

        with open(profile_path) as f:
            config = yaml.safe_load(f) or {}

        self.logger.debug("profile_loaded", profile=profile, config_keys=list(config.keys()))
        return config

    def load_settings(self, profile: str = "dev", work_dir: Optional[str] = None) -> EngineSettings:
        """
        Load and validate a profile.

        Raises:
            FileNotFoundError: If profile YAML not found
            ConfigurationError: If the profile does not validate
        """
        config = self._load_profile(profile)
        config.setdefault("profile", profile)
        if work_dir:
            config.setdefault("persistence", {})["work_dir"] = work_dir

        try:
            return EngineSettings(**config)
        except ValidationError as e:
            self.logger.error("profile_invalid", profile=profile, errors=e.error_count())
            raise ConfigurationError(f"Invalid profile '{profile}': {e}") from e

    def create_session_store(self, settings: EngineSettings, session_id: Optional[str] = None) -> Any:
        persistence = settings.persistence
        if persistence.type == "file":
            return FileSessionStore(work_dir=persistence.work_dir, session_id=session_id)
        if persistence.type == "memory":
            return InMemorySessionStore()
        raise ConfigurationError(f"Unknown persistence type: {persistence.type}")

    def create_engine(
        self,
        settings: EngineSettings,
        scenario: Optional[Scenario] = None,
        output: Optional[OutputSinkProtocol] = None,
        session_store: Optional[SessionStoreProtocol] = None,
    ) -> AgentEngine:
        """
        Create an engine wired with the scripted collaborators of a scenario.

        Args:
            settings: Validated profile
            scenario: Scenario to replay; an empty scenario when omitted
            output: Narration sink (rich console by default)
            session_store: Session store (from the profile by default)

        Returns:
            AgentEngine instance with injected dependencies
        """
        scenario = scenario or Scenario()
        tool_executor = ScriptedToolExecutor(scenario.tools)

        self.logger.info(
            "creating_engine",
            profile=settings.profile,
            scenario=scenario.name,
            max_iterations=settings.engine.max_iterations,
            rules_version=settings.recovery.rules_version,
        )

        return AgentEngine(
            planner=ScriptedPlanner(scenario.plans),
            tool_executor=tool_executor,
            plan_runner=ScriptedPlanRunner(scenario.plan_runs, scenario.specialist_resumes),
            output=output or ConsoleSink(),
            session_store=session_store if session_store is not None else self.create_session_store(settings),
            classifier=ToolClassifier(tool_executor, overrides=settings.tool_policies()),
            failure_classifier=settings.failure_classifier(),
            max_iterations=settings.engine.max_iterations,
            trim_threshold=settings.history.trim_threshold,
            trim_keep=settings.history.trim_keep,
            empty_plan_threshold=settings.loop.empty_plan_threshold,
            turn_window=settings.history.turn_window,
            max_tool_results=settings.history.max_tool_results,
            slow_step_ms=settings.history.slow_step_ms,
            duplicate_window_seconds=settings.loop.duplicate_window_seconds,
            final_answer_tool=settings.tools.final_answer_tool,
        )
