"""
Unit Tests for the Agent State Model

Covers the continuation objects that let a suspended engine survive a
restart, and the invariants of the resume context.
"""

from draftforce.core.domain.state import (
    AgentStage,
    AgentState,
    ExecutionStep,
    InteractionRequest,
    InteractionType,
    PlanInterruptionState,
    PlanRunnerState,
    QuestionContext,
    ResumeContext,
    ResumeGuidance,
    SpecialistLoopState,
    StepType,
    ToolCall,
)


def make_resume_context() -> ResumeContext:
    return ResumeContext(
        plan_runner_state=PlanRunnerState(
            plan={"planId": "srs-1", "steps": [{"step": 1, "specialist": "fr_writer"}]},
            current_step={"step": 1, "specialist": "fr_writer"},
            user_input="Write the SRS",
            specialist_loop_state=SpecialistLoopState(specialist_id="fr_writer", current_iteration=2),
        ),
        question_context=QuestionContext(question="Which payment providers?"),
        specialist_state={"draft": "v1"},
    )


class TestAgentStage:
    """Tests for stage helpers."""

    def test_running_stages(self):
        """Test only planning and executing count as running."""
        assert AgentStage.PLANNING.is_running
        assert AgentStage.EXECUTING.is_running
        assert not AgentStage.AWAITING_USER.is_running
        assert not AgentStage.COMPLETED.is_running
        assert not AgentStage.ERROR.is_running


class TestAgentState:
    """Tests for AgentState."""

    def test_defaults(self):
        """Test a fresh state starts in planning with an empty history."""
        state = AgentState()
        assert state.stage == AgentStage.PLANNING
        assert state.max_iterations == 15
        assert state.execution_history == []
        assert not state.is_awaiting_user

    def test_should_continue_respects_cap_and_cancel(self):
        """Test the loop guard stops at the cap and on cancellation."""
        state = AgentState(stage=AgentStage.EXECUTING, max_iterations=2)
        assert state.should_continue()
        state.iteration_count = 2
        assert not state.should_continue()
        state.iteration_count = 0
        state.cancelled = True
        assert not state.should_continue()

    def test_suspended_state_survives_serialization(self):
        """Test a suspended state with every continuation restores intact."""
        state = AgentState(
            stage=AgentStage.AWAITING_USER,
            current_task="Write the SRS",
            execution_history=[
                ExecutionStep(type=StepType.RESULT, content="--- New task started: x ---", timestamp=1.0),
                ExecutionStep(
                    type=StepType.TOOL_CALL,
                    content="readFile execution succeeded",
                    timestamp=2.0,
                    success=True,
                    tool_name="readFile",
                    args={"path": "SRS.md"},
                    duration=12,
                ),
            ],
            iteration_count=3,
            pending_interaction=InteractionRequest(
                type=InteractionType.CHOICE,
                message="Pick one",
                options=["a", "b"],
                tool_call=ToolCall(name="internal_plan_recovery", args={"action": "user_choice_pending"}),
            ),
            resume_context=make_resume_context(),
            plan_interruption_state=PlanInterruptionState(
                plan_id="srs-1",
                plan_description="Write the SRS",
                original_plan={"planId": "srs-1", "steps": [{}, {}, {}, {}]},
                failed_step=2,
                completed_step_results={1: {"success": True, "content": "done"}},
                session_snapshot=None,
                user_input="Write the SRS",
                interruption_reason="network timeout",
                interruption_timestamp="2024-01-01T00:00:00+00:00",
            ),
        )

        restored = AgentState.from_dict(state.to_dict())

        assert restored == state
        assert restored.plan_interruption_state.completed_step_results[1]["content"] == "done"
        assert restored.resume_context.question_context.tool_call.name == "askQuestion"


class TestResumeContext:
    """Tests for resume context merging."""

    def test_merge_keeps_plan_runner_snapshot(self):
        """Test merging fresh specialist data never drops the runner snapshot."""
        original = make_resume_context()
        merged = original.merged_with(
            {"draft": "v2", "turn": 3},
            QuestionContext(question="And the currencies?"),
            ResumeGuidance(contextual_hints=["ask about currencies"]),
        )

        assert merged.plan_runner_state is original.plan_runner_state
        assert merged.plan_runner_state.plan["planId"] == "srs-1"
        assert merged.question_context.question == "And the currencies?"
        assert merged.specialist_state == {"draft": "v2", "turn": 3}
        assert merged.resume_guidance.contextual_hints == ["ask about currencies"]

    def test_merge_without_new_state_keeps_old_state(self):
        """Test a merge with no specialist state keeps the stored fields."""
        merged = make_resume_context().merged_with(None, QuestionContext(question="Again?"))
        assert merged.specialist_state == {"draft": "v1"}


class TestInteractionRequest:
    """Tests for interaction requests."""

    def test_renewed_is_fresh_copy(self):
        """Test a renewed request is equal but not the same object."""
        request = InteractionRequest(type=InteractionType.CONFIRMATION, options=["yes", "no"])
        renewed = request.renewed()
        assert renewed == request
        assert renewed is not request
        assert renewed.options is not request.options


class TestPlanInterruptionState:
    """Tests for interruption bookkeeping."""

    def test_remaining_steps_counts_failed_step(self):
        """Test remaining steps include the failed one."""
        interruption = PlanInterruptionState(
            plan_id="p",
            plan_description="d",
            original_plan={"steps": [{}, {}, {}, {}]},
            failed_step=2,
            completed_step_results={},
            session_snapshot=None,
            user_input="",
            interruption_reason="",
            interruption_timestamp="",
        )
        assert interruption.total_steps == 4
        assert interruption.remaining_steps == 3
