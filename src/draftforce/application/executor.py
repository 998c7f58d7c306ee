"""
Application Layer - Task Executor Service

Service layer orchestrating engine runs for the CLI:

- Creates engines using EngineFactory based on profile and scenario
- Manages session lifecycle (create, reuse, snapshot of suspended engines)
- Runs a task, or answers the pending question of a restored session
- Feeds pre-recorded answers while the engine is suspended
- Reports progress via callbacks
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

import structlog

from draftforce.application.config import EngineSettings
from draftforce.application.factory import EngineFactory
from draftforce.core.domain.engine import AgentEngine
from draftforce.core.domain.state import AgentStage
from draftforce.core.interfaces.output import OutputSinkProtocol
from draftforce.infrastructure.persistence.file_session_store import FileSessionStore
from draftforce.infrastructure.persistence.memory_session_store import InMemorySessionStore
from draftforce.infrastructure.scripted.scenario import Scenario

logger = structlog.get_logger()


@dataclass
class ProgressUpdate:
    """Progress update during execution.

    Attributes:
        timestamp: When this update occurred
        event_type: started, resumed, answered, awaiting_user, complete, error
        message: Human-readable message describing the event
        details: Additional structured data about the event
    """

    timestamp: datetime
    event_type: str
    message: str
    details: dict


@dataclass
class TaskRunResult:
    """Outcome of one executor call."""

    session_id: Optional[str]
    stage: str
    pending_question: Optional[str] = None
    pending_options: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def is_awaiting_user(self) -> bool:
        return self.stage == AgentStage.AWAITING_USER.value


class TaskExecutor:
    """Service layer orchestrating engine execution for CLI entrypoints."""

    def __init__(self, factory: Optional[EngineFactory] = None):
        self.factory = factory or EngineFactory()
        self.logger = logger.bind(component="task_executor")

    async def open_engine(
        self,
        profile: str = "dev",
        scenario_path: Optional[Path] = None,
        session_id: Optional[str] = None,
        output: Optional[OutputSinkProtocol] = None,
        work_dir: Optional[str] = None,
    ) -> tuple[AgentEngine, Any, Optional[str]]:
        """
        Create an engine bound to a new or existing session.

        A snapshot saved for an existing session is restored, so a task that
        was waiting for an answer continues where it stopped.

        Returns:
            (engine, session_store, session_id)
        """
        settings: EngineSettings = self.factory.load_settings(profile, work_dir=work_dir)
        scenario = Scenario.load(scenario_path) if scenario_path else Scenario()
        store = self.factory.create_session_store(settings, session_id=session_id)

        if isinstance(store, InMemorySessionStore):
            store.session = scenario.session
        elif isinstance(store, FileSessionStore) and session_id is None:
            project = (scenario.session or {}).get("projectName") or scenario.name
            session = await store.create_session(project)
            session_id = session["sessionContextId"]

        engine = self.factory.create_engine(settings, scenario, output=output, session_store=store)

        snapshot = await store.load_snapshot(session_id) if session_id else None
        if snapshot:
            engine.restore(snapshot)
            self.logger.info("session.resumed", session_id=session_id, stage=engine.state.stage.value)
        return engine, store, session_id

    async def execute_task(
        self,
        task: str,
        profile: str = "dev",
        scenario_path: Optional[Path] = None,
        session_id: Optional[str] = None,
        answers: Optional[list[str]] = None,
        output: Optional[OutputSinkProtocol] = None,
        progress_callback: Optional[Callable[[ProgressUpdate], None]] = None,
        work_dir: Optional[str] = None,
    ) -> TaskRunResult:
        """Run a task, or answer the pending question of a restored session.

        Args:
            task: Task text, or the answer when the session is suspended
            profile: Configuration profile
            scenario_path: Scenario file driving the scripted collaborators
            session_id: Existing session to continue
            answers: Answers submitted in order while the engine waits; the
                     scenario's own answers are used when omitted
            output: Narration sink
            progress_callback: Optional callback for progress updates
            work_dir: Override for the persistence directory

        Returns:
            TaskRunResult with the final stage and any pending question
        """
        start_time = datetime.now()
        notify = progress_callback or (lambda update: None)

        engine, store, session_id = await self.open_engine(
            profile, scenario_path, session_id, output, work_dir
        )
        if answers is None and scenario_path:
            answers = Scenario.load(scenario_path).answers
        pending_answers = list(answers or [])

        self.logger.info(
            "task.execution.started",
            task=task[:100],
            profile=profile,
            session_id=session_id,
            resumed=engine.state.is_awaiting_user,
        )

        try:
            if engine.state.is_awaiting_user:
                notify(_update("resumed", f"Answering pending question: {task[:80]}", session_id=session_id))
                await engine.submit_user_answer(task)
            else:
                notify(_update("started", f"Starting task: {task[:80]}", session_id=session_id))
                await engine.run_task(task)

            while engine.state.is_awaiting_user and pending_answers:
                answer = pending_answers.pop(0)
                notify(_update("answered", f"Answer: {answer}", question=_pending_message(engine)))
                await engine.submit_user_answer(answer)

        except Exception as e:
            self.logger.error(
                "task.execution.failed",
                session_id=session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            notify(_update("error", f"Execution failed: {e}", error_type=type(e).__name__))
            raise

        await self._persist(engine, store, session_id)
        result = self._result(engine, session_id)
        duration = (datetime.now() - start_time).total_seconds()
        self.logger.info(
            "task.execution.completed",
            session_id=session_id,
            stage=result.stage,
            duration_seconds=duration,
        )
        event = "awaiting_user" if result.is_awaiting_user else "complete"
        notify(_update(event, result.pending_question or f"Task {result.stage}", **result.stats))
        return result

    async def _persist(self, engine: AgentEngine, store: Any, session_id: Optional[str]) -> None:
        if not session_id:
            return
        if engine.state.is_awaiting_user:
            await store.save_snapshot(engine.snapshot(), session_id)
        else:
            await store.clear_snapshot(session_id)

    @staticmethod
    def _result(engine: AgentEngine, session_id: Optional[str]) -> TaskRunResult:
        pending = engine.state.pending_interaction
        return TaskRunResult(
            session_id=session_id,
            stage=engine.state.stage.value,
            pending_question=pending.message if pending else None,
            pending_options=list(pending.options) if pending else [],
            stats=engine.get_engine_stats(),
        )


def _pending_message(engine: AgentEngine) -> Optional[str]:
    pending = engine.state.pending_interaction
    return pending.message if pending else None


def _update(event_type: str, message: str, **details: Any) -> ProgressUpdate:
    return ProgressUpdate(
        timestamp=datetime.now(), event_type=event_type, message=message, details=details
    )
