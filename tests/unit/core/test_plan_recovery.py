"""
Unit Tests for Plan Interruption and Recovery

Tests failure classification and the continue/end protocol.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from draftforce.core.domain.history import ContextManager
from draftforce.core.domain.interaction import PLAN_RECOVERY_TOOL
from draftforce.core.domain.plan import CompletedWork, ExecutionPlan, PlanOutcome, PlanStep
from draftforce.core.domain.plan_recovery import (
    CONTINUE_PLAN_OPTION,
    END_PLAN_OPTION,
    FailureClassifier,
    FailureRule,
    PlanRecoveryManager,
    extract_completed_step_results,
    serialize_session,
)
from draftforce.core.domain.state import (
    AgentStage,
    AgentState,
    InteractionType,
    PlanRunnerState,
    QuestionContext,
    ResumeContext,
    StepType,
)


def make_plan() -> ExecutionPlan:
    return ExecutionPlan(
        plan_id="srs-1",
        description="Write the payments SRS",
        steps=[
            PlanStep(1, "summary_writer", "Summarize the scope"),
            PlanStep(2, "fr_writer", "Write functional requirements"),
            PlanStep(3, "nfr_writer", "Write non-functional requirements"),
            PlanStep(4, "document_formatter", "Format the document"),
        ],
    )


def network_failure(plan: ExecutionPlan | None = None) -> PlanOutcome:
    return PlanOutcome.failed(
        "network timeout while calling the model",
        failed_step=2,
        failed_specialist="fr_writer",
        plan=plan or make_plan(),
        completed_work=[
            CompletedWork(1, "summary_writer", "completed", "Scope summarized"),
            CompletedWork(2, "fr_writer", "failed"),
        ],
    )


@pytest.fixture
def plan_runner():
    """Mock PlanRunnerProtocol."""
    runner = MagicMock()
    runner.resume_from_step = AsyncMock(return_value=PlanOutcome.completed("All sections written"))
    return runner


@pytest.fixture
def manager(plan_runner, output, session_store):
    return PlanRecoveryManager(plan_runner, ContextManager(), output, session_store)


@pytest.fixture
def state():
    return AgentState(stage=AgentStage.EXECUTING, current_task="Write the payments SRS")


class TestFailureClassifier:
    """Tests for the active/passive split."""

    @pytest.mark.parametrize(
        "error",
        [
            "Business logic validation failed for invoice totals",
            "Invalid JSON returned",
            "ACCESS DENIED to the template folder",
            "tool does not exist: legacyExporter",
            "User declined the change",
            "Specialist returned invalid structure",
            "insufficient disk space",
        ],
    )
    def test_active_patterns(self, error):
        """Test known business and validation errors are active failures."""
        result = FailureClassifier().classify(error)
        assert not result.passive
        assert result.source == "pattern"

    @pytest.mark.parametrize("error", ["network timeout", "HTTP 503", "", None, "something novel"])
    def test_unknown_defaults_to_passive(self, error):
        """Test everything unmatched is offered for resumption."""
        assert FailureClassifier().is_passive(error)

    def test_error_code_wins_over_text(self):
        """Test a structured code decides before the text patterns."""
        classifier = FailureClassifier()
        assert classifier.is_passive("invalid json", "NETWORK_ERROR")
        result = classifier.classify("network timeout", "validation_error")
        assert not result.passive
        assert result.category == "validation_error"
        assert result.source == "error_code"

    def test_unknown_code_falls_through_to_patterns(self):
        """Test unrecognized codes leave the decision to the text."""
        assert not FailureClassifier().is_passive("access denied", "SOMETHING_ELSE")

    def test_custom_rule_table(self):
        """Test the rule table is replaceable."""
        classifier = FailureClassifier(rules=(FailureRule("quota", ("quota exceeded",)),))
        assert not classifier.is_passive("Quota exceeded for project")
        assert classifier.is_passive("invalid json")


class TestHelpers:
    """Tests for snapshot helpers."""

    def test_serialize_session_keeps_known_keys(self):
        """Test only the restorable session fields are kept."""
        snapshot = serialize_session({"sessionContextId": "s", "projectName": "p", "internalCache": {}})
        assert snapshot["sessionContextId"] == "s"
        assert snapshot["gitBranch"] is None
        assert "internalCache" not in snapshot
        assert serialize_session(None) is None

    def test_completed_results_only_completed_steps(self):
        """Test failed work is not treated as a completed result."""
        results = extract_completed_step_results(network_failure())
        assert list(results) == [1]
        assert results[1]["content"] == "Scope summarized"
        assert results[1]["metadata"] == {"specialist": "summary_writer"}


class TestHandlePlanFailure:
    """Tests for classification-driven failure handling."""

    @pytest.mark.asyncio
    async def test_passive_failure_offers_recovery(self, manager, state, session_store):
        """Test a transient failure suspends with the two recovery options."""
        await manager.handle_plan_failure(state, network_failure())

        assert state.stage == AgentStage.AWAITING_USER
        pending = state.pending_interaction
        assert pending.type == InteractionType.CHOICE
        assert pending.options == [CONTINUE_PLAN_OPTION, END_PLAN_OPTION]
        assert pending.tool_call.name == PLAN_RECOVERY_TOOL
        assert pending.tool_call.args == {"action": "user_choice_pending"}

        interruption = state.plan_interruption_state
        assert interruption.plan_id == "srs-1"
        assert interruption.failed_step == 2
        assert interruption.remaining_steps == 3
        assert list(interruption.completed_step_results) == [1]
        assert interruption.session_snapshot["projectName"] == "Payments SRS"
        assert "internalCache" not in interruption.session_snapshot
        assert interruption.user_input == "Write the payments SRS"

        [entry] = session_store.entries_of_type("PLAN_INTERRUPTED")
        assert entry["userInput"]["failedStep"] == 2
        assert entry["userInput"]["canResume"] is True

    @pytest.mark.asyncio
    async def test_plan_argument_used_when_outcome_has_none(self, manager, state):
        """Test the running plan fills in for an outcome without one."""
        outcome = network_failure()
        outcome.plan = None

        await manager.handle_plan_failure(state, outcome, make_plan())

        assert state.plan_interruption_state.plan_description == "Write the payments SRS"

    @pytest.mark.asyncio
    async def test_active_failure_is_fatal(self, manager, state, narration):
        """Test a business error ends in error without a recovery offer."""
        outcome = PlanOutcome.failed("Missing required field: currency", failed_step=3, plan=make_plan())

        await manager.handle_plan_failure(state, outcome)

        assert state.stage == AgentStage.ERROR
        assert state.plan_interruption_state is None
        assert state.pending_interaction is None
        step = state.execution_history[-1]
        assert step.type == StepType.RESULT
        assert step.success is False
        assert "Missing required field" in narration()

    @pytest.mark.asyncio
    async def test_audit_failure_is_swallowed(self, plan_runner, output, state):
        """Test a broken session store does not break recovery."""
        store = MagicMock()
        store.get_current_session = AsyncMock(side_effect=RuntimeError("db gone"))
        store.update_with_log_entry = AsyncMock(side_effect=RuntimeError("db gone"))
        manager = PlanRecoveryManager(plan_runner, ContextManager(), output, store)

        await manager.handle_plan_failure(state, network_failure())

        assert state.stage == AgentStage.AWAITING_USER
        assert state.plan_interruption_state.session_snapshot is None


class TestResume:
    """Tests for resuming an interrupted plan."""

    @pytest_asyncio.fixture
    async def interrupted(self, manager, state):
        await manager.handle_plan_failure(state, network_failure())
        return state

    @pytest.mark.asyncio
    async def test_resume_completes(self, manager, interrupted, plan_runner, session_store):
        """Test a successful resume passes the snapshot through and completes."""
        progress = MagicMock()

        await manager.resume(interrupted, progress)

        args = plan_runner.resume_from_step.await_args.args
        assert args[0].plan_id == "srs-1"
        assert args[1] == 2
        assert list(args[2]) == [1]
        assert args[3]["sessionContextId"] == "session-1"
        assert args[4] == "Write the payments SRS"
        assert args[5] is progress
        assert interrupted.stage == AgentStage.COMPLETED
        assert interrupted.plan_interruption_state is None
        [entry] = session_store.entries_of_type("PLAN_RESUMED")
        assert entry["success"] is True
        assert entry["userInput"]["resumedFromStep"] == 2

    @pytest.mark.asyncio
    async def test_passive_failure_again_reprompts(self, manager, interrupted, plan_runner):
        """Test another transient failure updates the snapshot and asks again."""
        plan_runner.resume_from_step.return_value = PlanOutcome.failed(
            "service unavailable",
            failed_step=3,
            completed_work=[CompletedWork(2, "fr_writer", "completed", "FRs written")],
        )

        await manager.resume(interrupted, MagicMock())

        assert interrupted.stage == AgentStage.AWAITING_USER
        interruption = interrupted.plan_interruption_state
        assert interruption.failed_step == 3
        assert interruption.interruption_reason == "service unavailable"
        assert sorted(interruption.completed_step_results) == [1, 2]
        assert interrupted.pending_interaction.options == [CONTINUE_PLAN_OPTION, END_PLAN_OPTION]

    @pytest.mark.asyncio
    async def test_interaction_required_installs_resume_context(self, manager, interrupted, plan_runner):
        """Test a specialist question during resume suspends for input."""
        resume_context = ResumeContext(
            plan_runner_state=PlanRunnerState(plan=make_plan().to_dict()),
            question_context=QuestionContext(question="Which currencies?"),
        )
        plan_runner.resume_from_step.return_value = PlanOutcome.interaction_required(
            "Which currencies?", resume_context
        )

        await manager.resume(interrupted, MagicMock())

        assert interrupted.stage == AgentStage.AWAITING_USER
        assert interrupted.pending_interaction.type == InteractionType.INPUT
        assert interrupted.resume_context is resume_context
        assert interrupted.plan_interruption_state is None

    @pytest.mark.asyncio
    async def test_active_failure_on_resume_is_fatal(self, manager, interrupted, plan_runner):
        """Test an active failure during resume ends in error."""
        plan_runner.resume_from_step.return_value = PlanOutcome.failed(
            "permission denied by policy", failed_step=2, error_code="PERMISSION_DENIED"
        )

        await manager.resume(interrupted, MagicMock())

        assert interrupted.stage == AgentStage.ERROR
        assert interrupted.plan_interruption_state is None

    @pytest.mark.asyncio
    async def test_runner_exception(self, manager, interrupted, plan_runner, narration):
        """Test a raising runner ends in error and asks for a restart."""
        plan_runner.resume_from_step.side_effect = RuntimeError("runner crashed")

        await manager.resume(interrupted, MagicMock())

        assert interrupted.stage == AgentStage.ERROR
        assert interrupted.plan_interruption_state is None
        assert "Please restart your task." in narration()

    @pytest.mark.asyncio
    async def test_resume_without_interruption(self, manager, state, plan_runner):
        """Test resuming with nothing interrupted just completes."""
        await manager.resume(state, MagicMock())
        assert state.stage == AgentStage.COMPLETED
        plan_runner.resume_from_step.assert_not_awaited()


class TestTerminate:
    """Tests for ending an interrupted plan."""

    @pytest.mark.asyncio
    async def test_terminate_completes_and_audits(self, manager, state, session_store, narration):
        """Test ending the plan completes the task with a summary."""
        await manager.handle_plan_failure(state, network_failure())

        await manager.terminate(state)

        assert state.stage == AgentStage.COMPLETED
        assert state.plan_interruption_state is None
        assert state.execution_history[-1].type == StepType.SYSTEM
        assert "Completed: 1 steps" in narration()
        [entry] = session_store.entries_of_type("PLAN_TERMINATED")
        assert entry["userInput"]["reason"] == "User chose to terminate"
        assert entry["userInput"]["terminatedAtStep"] == 2
