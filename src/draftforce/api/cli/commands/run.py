"""Run command - Execute a task against a scenario."""

import asyncio
from pathlib import Path
from typing import Optional

import typer

from draftforce.api.cli.logging_setup import configure_logging
from draftforce.api.cli.output_formatter import DraftforceConsole
from draftforce.application.executor import TaskExecutor
from draftforce.application.factory import EngineFactory
from draftforce.core.domain.exceptions import DraftforceError

app = typer.Typer(help="Execute tasks")


@app.command("task")
def run_task(
    ctx: typer.Context,
    task: str = typer.Argument(..., help="Task description, or the answer to a pending question"),
    scenario: Optional[Path] = typer.Option(
        None, "--scenario", "-s", help="Scenario YAML replayed by the scripted collaborators"
    ),
    session_id: Optional[str] = typer.Option(
        None, "--session", help="Continue an existing session"
    ),
    answers: Optional[list[str]] = typer.Option(
        None, "--answer", "-a", help="Answer submitted while the engine waits (repeatable)"
    ),
    profile: Optional[str] = typer.Option(
        None, "--profile", "-p", help="Configuration profile (overrides global --profile)"
    ),
    config_dir: str = typer.Option("configs", "--config-dir", help="Directory with profile YAML files"),
    debug: Optional[bool] = typer.Option(
        None, "--debug", help="Enable debug output (overrides global --debug)"
    ),
):
    """Execute a task.

    Examples:
        # Run a scenario end to end
        draftforce run task "Write the SRS" --scenario scenarios/plan_recovery.yaml

        # Answer the interruption prompt right away
        draftforce run task "Write the SRS" -s scenarios/plan_recovery.yaml -a 1

        # Answer a question left pending in a saved session
        draftforce run task "yes" -s scenarios/confirm.yaml --session 3f2a9c1b7d4e
    """
    # Get global options from context, allow local override
    global_opts = ctx.obj or {}
    profile = profile or global_opts.get("profile", "dev")
    debug = debug if debug is not None else global_opts.get("debug", False)

    factory = EngineFactory(config_dir=config_dir)
    tf_console = DraftforceConsole(debug=debug)
    try:
        settings = factory.load_settings(profile)
    except (FileNotFoundError, DraftforceError) as e:
        tf_console.print_error(str(e))
        raise typer.Exit(1)
    configure_logging(debug, settings.logging.level)

    tf_console.print_banner()
    tf_console.print_system_message(f"Task: {task}", "system")
    if session_id:
        tf_console.print_system_message(f"Session: {session_id}", "info")
    tf_console.print_system_message(f"Profile: {profile}", "info")
    tf_console.print_divider()

    def progress_callback(update):
        tf_console.print_debug(f"[{update.event_type}] {update.message}")

    executor = TaskExecutor(factory)
    try:
        result = asyncio.run(
            executor.execute_task(
                task=task,
                profile=profile,
                scenario_path=scenario,
                session_id=session_id,
                answers=answers or None,
                output=tf_console.sink,
                progress_callback=progress_callback,
            )
        )
    except (FileNotFoundError, DraftforceError) as e:
        tf_console.print_error(str(e), exception=e)
        raise typer.Exit(1)

    tf_console.print_divider()
    if result.is_awaiting_user:
        tf_console.print_question(result.pending_question or "", result.pending_options)
        if result.session_id:
            tf_console.print_system_message(
                f"Answer with: draftforce run task \"<answer>\" --session {result.session_id}",
                "info",
            )
    elif result.stage == "completed":
        tf_console.print_success("Task completed!")
    else:
        tf_console.print_error(f"Task {result.stage}")
    tf_console.print_debug(f"Session ID: {result.session_id}")
    if debug:
        tf_console.print_stats(result.stats)

    if result.stage == "error":
        raise typer.Exit(1)
