"""
User Interaction Resolver

Interprets a human's reply to a pending confirmation, choice, or input
request and turns it into a Resolution the engine acts on. The resolver
narrates to the output sink but never touches engine state; the engine
applies the resolution.
"""

import re
from dataclasses import dataclass, field
from enum import Enum

import structlog

from draftforce.core.domain.state import InteractionRequest, InteractionType, ToolCall
from draftforce.core.interfaces.output import OutputSinkProtocol

PLAN_RECOVERY_TOOL = "internal_plan_recovery"

AFFIRMATIVE_ANSWERS = frozenset({"yes", "y", "是", "确认", "同意", "继续", "ok", "okay"})
NEGATIVE_ANSWERS = frozenset({"no", "n", "否", "取消", "不", "拒绝", "cancel"})

_INDEX_PATTERN = re.compile(r"^(\d+)$")


class ResolutionAction(str, Enum):
    """What the engine should do with a resolved answer."""

    REASK = "reask"
    RUN_TOOL = "run_tool"
    CANCELLED = "cancelled"
    RESUME_PLAN = "resume_plan"
    TERMINATE_PLAN = "terminate_plan"
    RECORDED = "recorded"


@dataclass
class Resolution:
    """
    Outcome of resolving one answer.

    Attributes:
        action: Follow-up the engine performs
        tool_call: Deferred call to run (RUN_TOOL)
        record: History entries (content, success) the engine appends
    """

    action: ResolutionAction
    tool_call: ToolCall | None = None
    record: list[tuple[str, bool]] = field(default_factory=list)

    @property
    def should_return_to_waiting(self) -> bool:
        return self.action == ResolutionAction.REASK


class UserInteractionResolver:
    """Resolves answers to pending interaction requests."""

    def __init__(self, output: OutputSinkProtocol):
        self.output = output
        self.logger = structlog.get_logger().bind(component="user_interaction_resolver")

    def resolve(self, answer: str, interaction: InteractionRequest) -> Resolution:
        """Dispatch on the request type. continue_conversation is not handled here."""
        if interaction.type == InteractionType.CONFIRMATION:
            return self.resolve_confirmation(answer, interaction)
        if interaction.type == InteractionType.CHOICE:
            return self.resolve_choice(answer, interaction)
        return self.resolve_input(answer, interaction)

    def resolve_confirmation(self, answer: str, interaction: InteractionRequest) -> Resolution:
        normalized = answer.strip().lower()
        if normalized in AFFIRMATIVE_ANSWERS:
            self.output.markdown("✅ **Confirmed**\n\n")
            if interaction.tool_call:
                return Resolution(ResolutionAction.RUN_TOOL, tool_call=interaction.tool_call)
            return Resolution(ResolutionAction.RECORDED)

        if normalized in NEGATIVE_ANSWERS:
            self.output.markdown("❌ **Operation cancelled**\n\n")
            self.logger.info(
                "confirmation_declined",
                tool=interaction.tool_call.name if interaction.tool_call else None,
            )
            return Resolution(
                ResolutionAction.CANCELLED,
                record=[("User cancelled the operation", False)],
            )

        self.output.markdown('❓ **Please clarify**: Please reply "yes" or "no"\n\n')
        return Resolution(ResolutionAction.REASK)

    def resolve_choice(self, answer: str, interaction: InteractionRequest) -> Resolution:
        options = interaction.options
        if not options:
            self.output.markdown("⚠️ No options available\n\n")
            return Resolution(ResolutionAction.RECORDED)

        index = self.match_option(answer, options)
        if index is None:
            self.output.markdown(
                "❓ **Invalid selection**: Please enter a number between "
                f"1-{len(options)}, or a keyword from the options\n\n"
            )
            self.output.markdown("**Available options**:\n")
            for number, option in enumerate(options, start=1):
                self.output.markdown(f"{number}. {option}\n")
            self.output.markdown("\n")
            return Resolution(ResolutionAction.REASK)

        selected = options[index]
        self.output.markdown(f"✅ **You selected**: {selected}\n\n")
        record = [(f"Selection: {selected}", True)]
        call = interaction.tool_call
        if call is None:
            return Resolution(ResolutionAction.RECORDED, record=record)

        if call.name == PLAN_RECOVERY_TOOL:
            action = ResolutionAction.RESUME_PLAN if index == 0 else ResolutionAction.TERMINATE_PLAN
            return Resolution(action, record=record)

        return Resolution(
            ResolutionAction.RUN_TOOL,
            tool_call=call.with_args(userChoice=selected, userChoiceIndex=index),
            record=record,
        )

    @staticmethod
    def match_option(answer: str, options: list[str]) -> int | None:
        """Match a 1-based index or a case-insensitive substring in either direction."""
        normalized = answer.strip()
        match = _INDEX_PATTERN.match(normalized)
        if match:
            index = int(match.group(1)) - 1
            return index if 0 <= index < len(options) else None
        if not normalized:
            return None
        lowered = normalized.lower()
        for index, option in enumerate(options):
            candidate = option.lower()
            if lowered in candidate or candidate in lowered:
                return index
        return None

    def resolve_input(self, answer: str, interaction: InteractionRequest) -> Resolution:
        text = answer.strip()
        if not text:
            self.output.markdown("⚠️ **Empty input**: Please provide valid input\n\n")
            return Resolution(ResolutionAction.REASK)

        self.output.markdown(f"✅ **Input received**: {text}\n\n")
        record = [(f"User input: {text}", True)]
        call = interaction.tool_call
        if call is None:
            return Resolution(ResolutionAction.RECORDED, record=record)

        if interaction.original_result is not None:
            self.logger.info("tool_already_executed", tool=call.name)
            return Resolution(ResolutionAction.RECORDED, record=record)

        return Resolution(
            ResolutionAction.RUN_TOOL,
            tool_call=call.with_args(userInput=text),
            record=record,
        )
