"""Shared fixtures for Draftforce tests."""

from unittest.mock import MagicMock

import pytest
import yaml

from draftforce.infrastructure.persistence.memory_session_store import InMemorySessionStore


@pytest.fixture
def output():
    """Mock OutputSinkProtocol."""
    return MagicMock()


@pytest.fixture
def narration(output):
    """Callable returning all markdown narration sent to the mocked sink so far."""

    def _text() -> str:
        return "".join(call.args[0] for call in output.markdown.call_args_list)

    return _text


@pytest.fixture
def session_store():
    """In-memory session store with an active project session."""
    return InMemorySessionStore(
        session={
            "sessionContextId": "session-1",
            "projectName": "Payments SRS",
            "baseDir": "/work/payments",
            "activeFiles": ["SRS.md"],
            "gitBranch": "main",
            "metadata": {"version": "1.0"},
            "internalCache": {"ignored": True},
        }
    )


@pytest.fixture
def config_dir(tmp_path):
    """Profile directory with a 'test' profile persisting under tmp_path."""
    directory = tmp_path / "configs"
    directory.mkdir()
    profile = {
        "engine": {"max_iterations": 10},
        "tools": {
            "policies": {
                "deleteFile": {
                    "interaction_type": "confirmation",
                    "risk_level": "high",
                    "requires_confirmation": True,
                }
            }
        },
        "persistence": {"type": "file", "work_dir": str(tmp_path / "work")},
    }
    (directory / "test.yaml").write_text(yaml.safe_dump(profile))
    return directory


@pytest.fixture
def write_scenario(tmp_path):
    """Callable writing a scenario mapping to a YAML file and returning its path."""

    def _write(data: dict, name: str = "scenario.yaml"):
        path = tmp_path / name
        path.write_text(yaml.safe_dump(data, allow_unicode=True))
        return path

    return _write
