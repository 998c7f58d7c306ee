"""Chat command - Interactive session with the engine."""

import asyncio
from pathlib import Path
from typing import Optional

import typer

from draftforce.api.cli.logging_setup import configure_logging
from draftforce.api.cli.output_formatter import DraftforceConsole
from draftforce.application.executor import TaskExecutor
from draftforce.application.factory import EngineFactory
from draftforce.core.domain.exceptions import DraftforceError

app = typer.Typer(help="Interactive chat mode")

EXIT_COMMANDS = ("exit", "quit", "bye")


@app.command()
def chat(
    ctx: typer.Context,
    scenario: Optional[Path] = typer.Option(
        None, "--scenario", "-s", help="Scenario YAML replayed by the scripted collaborators"
    ),
    session_id: Optional[str] = typer.Option(None, "--session", help="Continue an existing session"),
    profile: Optional[str] = typer.Option(
        None, "--profile", "-p", help="Configuration profile (overrides global --profile)"
    ),
    config_dir: str = typer.Option("configs", "--config-dir", help="Directory with profile YAML files"),
    debug: Optional[bool] = typer.Option(
        None, "--debug", help="Enable debug output (overrides global --debug)"
    ),
):
    """Start an interactive session.

    Each line is a new task, or the answer to the question the engine is
    waiting on. Type 'cancel' to abandon the current task.

    Examples:
        draftforce chat --scenario scenarios/plan_recovery.yaml
        draftforce --debug chat -s scenarios/confirm.yaml
    """
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
    tf_console.print_system_message(f"Profile: {profile}", "info")
    tf_console.print_system_message("Type 'exit', 'quit', or press Ctrl+C to end session", "info")
    tf_console.print_divider()

    async def run_chat_loop():
        executor = TaskExecutor(factory)
        engine, store, active_session = await executor.open_engine(
            profile, scenario, session_id, output=tf_console.sink
        )
        tf_console.print_debug(f"Session ID: {active_session}")
        if engine.state.is_awaiting_user and engine.state.pending_interaction:
            pending = engine.state.pending_interaction
            tf_console.print_question(pending.message or "", pending.options)

        while True:
            try:
                user_input = tf_console.prompt()
            except (KeyboardInterrupt, EOFError):
                tf_console.print_divider()
                tf_console.print_system_message("Goodbye! 👋", "info")
                break

            if user_input.lower() in EXIT_COMMANDS:
                tf_console.print_divider()
                tf_console.print_system_message("Goodbye! 👋", "info")
                break
            if not user_input.strip():
                continue

            tf_console.print_user_message(user_input)
            try:
                if user_input.strip().lower() == "cancel":
                    await engine.cancel()
                elif engine.state.is_awaiting_user:
                    await engine.submit_user_answer(user_input)
                else:
                    await engine.run_task(user_input)
            except DraftforceError as e:
                tf_console.print_error(f"Execution failed: {e}", exception=e)
                continue

            tf_console.sink.flush()
            pending = engine.state.pending_interaction
            if engine.state.is_awaiting_user and pending:
                tf_console.print_question(pending.message or "", pending.options)
            tf_console.print_debug(f"Stage: {engine.state.stage.value}")

        if active_session:
            if engine.state.is_awaiting_user:
                await store.save_snapshot(engine.snapshot(), active_session)
                tf_console.print_system_message(
                    f"Pending question saved. Resume with: draftforce chat --session {active_session}",
                    "info",
                )
            else:
                await store.clear_snapshot(active_session)

    asyncio.run(run_chat_loop())
