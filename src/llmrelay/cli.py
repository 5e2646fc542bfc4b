"""
CLI entry point.

Commands:
- interactive: Chat session with slash-commands and mic input (default)
- query: Ask a single question and print the answer
- list-models (ls): Show registered models
- set-default: Persist the default model in the config file

Flags:
- --model/-m: Model for this run
- --stream/--no-stream: Override stream mode
- --debug: Enable debug logging to the log file
"""

import asyncio
import logging
from dataclasses import dataclass

import typer
from prompt_toolkit.patch_stdout import patch_stdout

from llmrelay.commands.dispatcher import PREDEFINED_ROLES, CommandDispatcher
from llmrelay.core.busy import BusyIndicator
from llmrelay.core.config import Settings, get_settings, save_config_value
from llmrelay.core.engine import SessionEngine
from llmrelay.core.errors import ConfigError, LLMRelayError, RegistryError
from llmrelay.core.logging import get_logger, setup_logging
from llmrelay.core.types import ChatSession
from llmrelay.interfaces.console import ConsoleOutput
from llmrelay.interfaces.file_watch import FileWatchInput
from llmrelay.interfaces.terminal import TerminalInput, build_completer
from llmrelay.llm.registry import BackendRegistry, create_registry
from llmrelay.session.store import SessionStore

QUERY_SYSTEM_PROMPT = "Answer concisely and clearly"

app = typer.Typer(
    help="Chat with multiple LLM backends from the terminal.",
    add_completion=False,
)

logger = get_logger("cli")


@dataclass
class CliState:
    settings: Settings
    registry: BackendRegistry
    model: str
    stream: bool


def _fail(message: str) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(code=1)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    model: str | None = typer.Option(None, "--model", "-m", help="Model to use"),
    stream: bool | None = typer.Option(None, "--stream/--no-stream", help="Stream responses"),
    debug: bool = typer.Option(False, "--debug", help="Verbose DEBUG logging to the log file"),
) -> None:
    """Load configuration and the model registry shared by every command."""
    try:
        settings = get_settings()
    except ConfigError as e:
        raise _fail(str(e))

    # Always log to file; --debug enables verbose DEBUG level
    log_level = logging.DEBUG if debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    try:
        setup_logging(level=log_level, log_file=settings.log_file)
    except OSError as e:
        raise _fail(f"Cannot open log file {settings.log_file}: {e}")
    logger.info(f"Logging to {settings.log_file}" + (" (debug mode)" if debug else ""))

    try:
        registry = create_registry(settings.ollama_url)
    except RegistryError as e:
        logger.error(str(e))
        raise _fail(str(e))

    ctx.obj = CliState(
        settings=settings,
        registry=registry,
        model=model or settings.default_model,
        stream=settings.stream if stream is None else stream,
    )

    if ctx.invoked_subcommand is None:
        interactive(ctx)


def _validated_model(state: CliState) -> str:
    try:
        return state.registry.spec_for(state.model).name
    except LLMRelayError as e:
        logger.error(str(e))
        raise _fail(str(e))


@app.command()
def interactive(ctx: typer.Context) -> None:
    """Start an interactive chat session (default)."""
    state: CliState = ctx.obj
    model = _validated_model(state)
    logger.info(f"Starting interactive mode with {model}")
    raise typer.Exit(code=asyncio.run(_run_interactive(state, model)))


@app.command()
def query(
    ctx: typer.Context,
    question: str = typer.Option(..., "--question", "-q", help="Question to ask"),
) -> None:
    """Ask a single question and print the answer."""
    state: CliState = ctx.obj
    model = _validated_model(state)
    logger.info(f"One-shot query to {model}")
    raise typer.Exit(code=asyncio.run(_run_query(state, model, question)))


@app.command("list-models")
def list_models(ctx: typer.Context) -> None:
    """List registered models."""
    state: CliState = ctx.obj
    typer.echo("Available models:")
    for provider, name in state.registry.list_models():
        marker = "*" if name == state.model else " "
        typer.echo(f" {marker} {name:<28} ({provider.value})")


app.command("ls", hidden=True)(list_models)


@app.command("set-default")
def set_default(
    ctx: typer.Context,
    model: str = typer.Argument(..., help="Model to use when --model is not given"),
) -> None:
    """Set the default model in the config file."""
    state: CliState = ctx.obj
    try:
        name = state.registry.spec_for(model).name
        path = save_config_value("default_model", name)
    except (LLMRelayError, OSError) as e:
        logger.error(f"set-default failed: {e}")
        raise _fail(str(e))
    logger.info(f"Default model set to {name} in {path}")
    typer.echo(f"Default model set to: {name}")


async def _run_interactive(state: CliState, model: str) -> int:
    settings = state.settings
    output = ConsoleOutput()
    session = ChatSession(active_model=model)
    store = SessionStore(settings.sessions_dir)

    dispatcher = CommandDispatcher(session, state.registry, store, output, settings)
    dispatcher.stream = state.stream

    terminal = TerminalInput(
        prompt=settings.user_prompt,
        history_file=settings.history_file,
        completer=build_completer(
            dispatcher.command_names,
            state.registry.model_names(),
            PREDEFINED_ROLES,
            vocabulary=lambda: dispatcher.wordlist.words,
        ),
    )
    mic = FileWatchInput(settings.mic_file, poll_interval=settings.mic_poll_interval)

    engine = SessionEngine(
        session,
        state.registry,
        store,
        output,
        settings,
        sources=[terminal, mic],
        busy=BusyIndicator(settings.act_file, settings.ack_file),
        dispatcher=dispatcher,
    )

    output.info(f"Interactive mode with {model}. Type /help for commands, /quit to exit.")
    # Keep the prompt line intact while responses and mic notices print
    with patch_stdout():
        return await engine.run()


async def _run_query(state: CliState, model: str, question: str) -> int:
    output = ConsoleOutput()
    session = ChatSession(active_model=model, system_prompt=QUERY_SYSTEM_PROMPT)
    engine = SessionEngine(
        session, state.registry, SessionStore(state.settings.sessions_dir), output, state.settings
    )
    engine.dispatcher.stream = state.stream

    try:
        await engine.query(question)
    except LLMRelayError as e:
        logger.error(f"Query failed: {e}")
        output.error(str(e))
        return 1
    finally:
        await engine.close()
    return 0


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
