"""
Unit tests for EngineFactory.

Tests verify:
- Profile loading and validation
- Session store selection per persistence type
- Engine wiring from settings and scenarios
"""

from pathlib import Path

import pytest
import yaml

from draftforce.application.factory import EngineFactory
from draftforce.core.domain.engine import AgentEngine
from draftforce.core.domain.exceptions import ConfigurationError
from draftforce.core.domain.state import ToolCall
from draftforce.infrastructure.persistence.file_session_store import FileSessionStore
from draftforce.infrastructure.persistence.memory_session_store import InMemorySessionStore
from draftforce.infrastructure.scripted.scenario import Scenario

REPO_CONFIGS = Path(__file__).resolve().parents[3] / "configs"


class TestEngineFactory:
    """Test suite for EngineFactory."""

    def test_factory_initialization(self):
        """Test factory initializes with config directory."""
        factory = EngineFactory(config_dir="configs")
        assert factory.config_dir == Path("configs")

    def test_bundled_profiles_load(self):
        """Test the shipped dev and prod profiles validate."""
        factory = EngineFactory(config_dir=str(REPO_CONFIGS))

        dev = factory.load_settings("dev")
        prod = factory.load_settings("prod")

        assert dev.profile == "dev"
        assert dev.persistence.work_dir == ".draftforce"
        assert prod.profile == "prod"
        assert "writeFile" in prod.tools.policies

    def test_load_profile_not_found(self, config_dir):
        """Test error when profile not found."""
        factory = EngineFactory(config_dir=str(config_dir))

        with pytest.raises(FileNotFoundError, match="Profile not found"):
            factory._load_profile("nonexistent")

    def test_invalid_profile(self, config_dir):
        """Test a profile that does not validate raises ConfigurationError."""
        (config_dir / "broken.yaml").write_text(yaml.safe_dump({"engine": {"max_iterations": -1}}))
        factory = EngineFactory(config_dir=str(config_dir))

        with pytest.raises(ConfigurationError, match="Invalid profile 'broken'"):
            factory.load_settings("broken")

    def test_work_dir_override(self, config_dir, tmp_path):
        """Test an explicit work dir replaces the profile's."""
        factory = EngineFactory(config_dir=str(config_dir))
        settings = factory.load_settings("test", work_dir=str(tmp_path / "elsewhere"))

        assert settings.profile == "test"
        assert settings.persistence.work_dir == str(tmp_path / "elsewhere")

    def test_create_session_store_file(self, config_dir, tmp_path):
        """Test creating a file-based session store."""
        factory = EngineFactory(config_dir=str(config_dir))
        settings = factory.load_settings("test")

        store = factory.create_session_store(settings, session_id="abc")

        assert isinstance(store, FileSessionStore)
        assert store.work_dir == tmp_path / "work"
        assert store.current_session_id == "abc"

    def test_create_session_store_memory(self, config_dir):
        """Test creating an in-memory session store."""
        factory = EngineFactory(config_dir=str(config_dir))
        settings = factory.load_settings("test")
        settings.persistence.type = "memory"

        assert isinstance(factory.create_session_store(settings), InMemorySessionStore)

    def test_create_session_store_unknown(self, config_dir):
        """Test an unknown persistence type is a configuration error."""
        factory = EngineFactory(config_dir=str(config_dir))
        settings = factory.load_settings("test")
        settings.persistence.type = "redis"

        with pytest.raises(ConfigurationError, match="Unknown persistence type"):
            factory.create_session_store(settings)

    def test_create_engine_applies_settings(self, config_dir, output):
        """Test settings reach the engine and its delegates."""
        factory = EngineFactory(config_dir=str(config_dir))
        settings = factory.load_settings("test")
        scenario = Scenario(tools={"readFile": {"responses": [{"output": "text"}]}})

        engine = factory.create_engine(
            settings, scenario, output=output, session_store=InMemorySessionStore()
        )

        assert isinstance(engine, AgentEngine)
        assert engine.state.max_iterations == 10
        assert engine.trim_threshold == 100
        assert engine.final_answer_tool == "finalAnswer"
        assert engine.classifier.classify(ToolCall(name="deleteFile")).requires_confirmation
        assert not engine.classifier.classify(ToolCall(name="readFile")).requires_confirmation
        assert engine.recovery.classifier.version == settings.recovery.rules_version

    @pytest.mark.asyncio
    async def test_created_engine_runs_scenario(self, config_dir, output):
        """Test an engine built from a scenario replays it."""
        factory = EngineFactory(config_dir=str(config_dir))
        settings = factory.load_settings("test")
        scenario = Scenario.from_dict(
            {"plans": [{"tool_calls": [{"name": "finalAnswer", "args": {"summary": "Done"}}]}]}
        )
        engine = factory.create_engine(
            settings, scenario, output=output, session_store=InMemorySessionStore()
        )

        stage = await engine.run_task("Finish up")

        assert stage.value == "completed"
