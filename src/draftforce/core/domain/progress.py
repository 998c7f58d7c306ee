"""
Progress Reporting for Plan Execution

ProgressReporter implements the plan runner's progress callback and narrates
specialist work to the output sink: a working banner per specialist,
iteration progress, per-tool status lines with argument-aware details, and
a completion line. The module also renders execution plans for the human.
"""

import json
import time
from typing import Any, Callable

import structlog

from draftforce.core.domain.plan import ExecutionPlan
from draftforce.core.interfaces.output import OutputSinkProtocol

DEFAULT_SPECIALIST_ICON = "✏️"

SPECIALIST_ICONS: dict[str, str] = {
    "project_initializer": "🚀",
    "overall_description_writer": "📝",
    "user_journey_writer": "🗺️",
    "fr_writer": "✏️",
    "nfr_writer": "⚡",
    "ifr_and_dar_writer": "🔌",
    "summary_writer": "📄",
    "prototype_designer": "🎨",
    "document_formatter": "🧹",
    "srs_reviewer": "🔍",
    "requirement_syncer": "🔄",
    "help_response": "💡",
}

SPECIALIST_NAMES: dict[str, str] = {
    "project_initializer": "Project Initialization",
    "overall_description_writer": "Overall Description",
    "user_journey_writer": "User Journeys",
    "fr_writer": "Functional Requirements",
    "nfr_writer": "Non-Functional Requirements",
    "ifr_and_dar_writer": "Interface and Data Requirements",
    "summary_writer": "Executive Summary",
    "prototype_designer": "Prototype Design",
    "document_formatter": "Document Formatting",
    "srs_reviewer": "Document Review",
    "requirement_syncer": "Requirement Sync",
    "help_response": "Help",
}

THINKING_ICONS: dict[str, str] = {
    "planning": "📋",
    "analysis": "🔍",
    "synthesis": "🔗",
    "reflection": "🤔",
    "derivation": "➡️",
}
DEFAULT_THINKING_ICON = "🧠"

PATH_TOOLS = frozenset(
    {
        "readFile",
        "writeFile",
        "appendTextToFile",
        "createDirectory",
        "listFiles",
        "deleteFile",
        "readMarkdownFile",
        "readYAMLFiles",
        "readFileWithStructure",
    }
)
QUERY_TOOLS = frozenset({"internetSearch", "searchKnowledge", "enhancedReadFileStructure"})
EDIT_BATCH_TOOLS = frozenset({"executeYAMLEdits", "executeTextFileEdits", "executeMarkdownEdits"})


def specialist_icon(specialist_id: str) -> str:
    return SPECIALIST_ICONS.get(specialist_id, DEFAULT_SPECIALIST_ICON)


def specialist_name(specialist_id: str) -> str:
    return SPECIALIST_NAMES.get(specialist_id, specialist_id)


def shorten_path(path: str) -> str:
    """Keep the last two path segments."""
    parts = [part for part in path.replace("\\", "/").split("/") if part]
    if len(parts) <= 2:
        return path
    return ".../" + "/".join(parts[-2:])


def truncate_text(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _first_path(args: dict[str, Any]) -> str | None:
    for key in ("path", "filePath", "targetFile", "dirPath"):
        value = args.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def format_tool_detail(tool_name: str, args: dict[str, Any] | None) -> str:
    """
    Short, argument-aware detail shown next to a tool status line.

    Known tool families render their most telling argument; anything else
    falls back to the first short string argument.
    """
    args = args or {}
    if tool_name in PATH_TOOLS or tool_name in EDIT_BATCH_TOOLS:
        path = _first_path(args)
        detail = shorten_path(path) if path else ""
        if tool_name in EDIT_BATCH_TOOLS:
            edits = args.get("edits") or args.get("intents") or []
            count = f"{len(edits)} edits"
            return f"{detail} ({count})" if detail else count
        return detail

    if tool_name in QUERY_TOOLS:
        query = args.get("query") or args.get("text") or ""
        return f'"{truncate_text(str(query))}"' if query else ""

    if tool_name == "findAndReplace":
        find = truncate_text(str(args.get("findText", "")), 20)
        replace = truncate_text(str(args.get("replaceText", "")), 20)
        return f'"{find}" → "{replace}"'

    if tool_name == "moveAndRename":
        source = shorten_path(str(args.get("sourcePath", "")))
        target = shorten_path(str(args.get("targetPath", "")))
        return f"{source} → {target}"

    for value in args.values():
        if isinstance(value, str) and 0 < len(value) <= 80:
            return truncate_text(value)
    return ""


def format_thought(args: dict[str, Any]) -> str:
    """Render a recordThought call with its thinking-type icon."""
    thinking_type = str(args.get("thinkingType") or "")
    icon = THINKING_ICONS.get(thinking_type, DEFAULT_THINKING_ICON)
    content = args.get("content")
    if isinstance(content, dict):
        content = content.get("summary") or json.dumps(content, ensure_ascii=False)
    label = thinking_type.capitalize() or "Thinking"
    return f"{icon} **{label}**: {truncate_text(str(content or ''), 120)}"


def generate_smart_summary(
    tool_calls: list[dict[str, Any]], results: list[dict[str, Any]]
) -> str:
    """One-line summary of a tool batch: successes, failures and touched files."""
    succeeded = sum(1 for result in results if result.get("success"))
    failed = len(results) - succeeded
    files = []
    for call in tool_calls:
        path = _first_path(call.get("args") or {})
        if path and shorten_path(path) not in files:
            files.append(shorten_path(path))

    parts = [f"{succeeded} succeeded"]
    if failed:
        parts.append(f"{failed} failed")
    if files:
        shown = ", ".join(files[:3])
        more = f" (+{len(files) - 3} more)" if len(files) > 3 else ""
        parts.append(f"files: {shown}{more}")
    return ", ".join(parts)


def format_execution_plan(plan: ExecutionPlan) -> str:
    """Render a multi-step plan with step icons and friendly names."""
    lines = [f"📋 **Task Plan** - {plan.description}", ""]
    for step in plan.steps:
        icon = specialist_icon(step.specialist)
        name = specialist_name(step.specialist)
        lines.append(f"{step.step}. {icon} **{name}** - {step.description}")
    lines.extend(["", "---", ""])
    return "\n".join(lines) + "\n"


class ProgressReporter:
    """
    Plan runner progress callback that narrates to the output sink.

    One instance is created per plan run and reused when the plan, or a
    paused specialist in it, is resumed.

    Args:
        output: Narration sink
        clock: Time source, injectable for tests
    """

    def __init__(
        self,
        output: OutputSinkProtocol,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.output = output
        self.clock = clock
        self.current_specialist: str | None = None
        self.iteration = 0
        self.max_iterations = 0
        self.iteration_summaries: list[str] = []
        self.started_at: float | None = None
        self.logger = structlog.get_logger().bind(component="progress_reporter")

    def on_specialist_start(self, specialist_id: str) -> None:
        self.current_specialist = specialist_id
        self.iteration = 0
        self.iteration_summaries = []
        self.started_at = self.clock()
        self.output.markdown(
            f"\n{specialist_icon(specialist_id)} **{specialist_name(specialist_id)}** is working...\n\n"
        )
        self.logger.debug("specialist_started", specialist=specialist_id)

    def on_iteration_start(self, current: int, maximum: int) -> None:
        self.iteration = current
        self.max_iterations = maximum
        self.output.progress(f"Iteration {current}/{maximum}")

    def on_tools_start(self, tool_calls: list[dict[str, Any]]) -> None:
        for call in tool_calls:
            name = call.get("name", "unknown")
            if name == "recordThought":
                continue
            detail = format_tool_detail(name, call.get("args"))
            suffix = f" {detail}" if detail else ""
            self.output.progress(f"⏳ {name}{suffix}")

    def on_tools_complete(
        self,
        tool_calls: list[dict[str, Any]],
        results: list[dict[str, Any]],
        duration: int,
    ) -> None:
        for call, result in zip(tool_calls, results):
            name = call.get("name", "unknown")
            args = call.get("args") or {}
            if name == "recordThought":
                self.output.markdown(f"{format_thought(args)}\n\n")
                continue
            detail = format_tool_detail(name, args)
            suffix = f" {detail}" if detail else ""
            if result.get("success"):
                self.output.markdown(f"✅ {name}{suffix}\n")
            else:
                error = truncate_text(str(result.get("error") or "unknown error"), 80)
                self.output.markdown(f"❌ {name}{suffix}: {error}\n")

        number = self.iteration or len(self.iteration_summaries) + 1
        summary = generate_smart_summary(tool_calls, results)
        self.iteration_summaries.append(f"Iteration {number}: {summary}")
        self.logger.debug("tools_completed", count=len(tool_calls), duration_ms=duration)

    def on_task_complete(self, summary: str) -> None:
        if len(self.iteration_summaries) > 3:
            self.output.markdown("\n**Execution summary**:\n")
            for line in self.iteration_summaries:
                self.output.markdown(f"- {line}\n")
            self.output.markdown("\n")
        self.output.markdown(f"📝 **Task completed** - {summary}\n\n")
        elapsed = None
        if self.started_at is not None:
            elapsed = int((self.clock() - self.started_at) * 1000)
        self.logger.info(
            "specialist_completed",
            specialist=self.current_specialist,
            iterations=len(self.iteration_summaries),
            elapsed_ms=elapsed,
        )
