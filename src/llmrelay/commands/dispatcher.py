"""
Command dispatcher.

Classifies each input line as free text (a query for the active model) or
a slash-command. Synchronous commands are applied here, directly to the
session; queries and /title are handed back to the engine, which owns
backend calls.
"""

import shlex
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from llmrelay.core.config import Settings
from llmrelay.core.errors import CommandError, InvalidArgumentError, UnknownCommandError
from llmrelay.core.logging import get_logger
from llmrelay.core.types import ChatSession
from llmrelay.interfaces.base import OutputSink
from llmrelay.llm.registry import BackendRegistry
from llmrelay.session.store import SessionStore
from llmrelay.session.wordlist import Wordlist

logger = get_logger("commands.dispatcher")


class DispatchKind(Enum):
    IGNORE = "ignore"  # blank line
    HANDLED = "handled"  # command applied, back to idle
    QUERY = "query"  # free text for the active model
    TITLE = "title"  # summarization request
    QUIT = "quit"


@dataclass(frozen=True)
class Dispatch:
    kind: DispatchKind
    text: str = ""


PREDEFINED_ROLES: dict[str, str] = {
    "coding_assistant": "You are a coding assistant. Provide concise and accurate code snippets and explanations.",
    "creative_writer": "You are a creative writer. Generate engaging stories, poems, and content.",
    "technical_support": "You are a technical support assistant. Answer questions about software, hardware, and troubleshooting.",
    "language_tutor": "You are a language tutor. Help users learn new languages by providing translations, grammar explanations, and practice exercises.",
    "general_knowledge": "You are a general knowledge assistant. Answer questions on a wide range of topics concisely and clearly.",
}

QUIT_COMMANDS = frozenset({"quit", "q", "bye"})

# Lines that act as commands without a leading slash
BARE_COMMANDS = {
    "?": "help",
    "q": "quit",
    "cls": "cls",
    "mic": "mic",
    ".": "repeat",
    "jc": "jc",
}

PREVIEW_LINES = 3

HELP_LINES = [
    ("/quit, /q, /bye, q", "Exit interactive mode"),
    ("/help, ?", "Show this help message"),
    (".", "Repeat the last input"),
    ("/system <text>", "Set the system prompt (a role name, or empty to remove)"),
    ("/roles", "List predefined system prompt roles"),
    ("/model [name]", "Switch model, or list models"),
    ("/ls", "List registered models"),
    ("/status", "Show model, system prompt, stream mode and title"),
    ("/ss", "Toggle stream mode"),
    ("/cls", "Clear the screen"),
    ("/clear", "Clear conversation history"),
    ("/title", "Generate a session title from the conversation"),
    ("/save [filename]", "Save the session (defaults to the title)"),
    ("/load [filename]", "Load a session, or list saved sessions"),
    ("/mic, mic", "Record audio; the transcription arrives as a query"),
    ("jc", "Send the current mic file content now"),
    ("/word <word>", "Add a word to the completion wordlist"),
    (":::", "Start/finish multi-line input"),
]


class CommandDispatcher:
    """Applies input lines to the current session."""

    def __init__(
        self,
        session: ChatSession,
        registry: BackendRegistry,
        store: SessionStore,
        output: OutputSink,
        settings: Settings,
        launcher: Callable[..., subprocess.Popen] = subprocess.Popen,
        wordlist: Wordlist | None = None,
    ):
        self.session = session
        self.registry = registry
        self.store = store
        self.output = output
        self.settings = settings
        self.stream = settings.stream
        self._launcher = launcher
        self._mic_process: subprocess.Popen | None = None
        self.wordlist = wordlist or Wordlist(settings.wordlist_file).load()
        self.last_query: str | None = None

        self._handlers: dict[str, Callable[[str], Dispatch]] = {
            "help": self._cmd_help,
            "cls": self._cmd_cls,
            "clear": self._cmd_clear,
            "system": self._cmd_system,
            "roles": self._cmd_roles,
            "model": self._cmd_model,
            "ls": self._cmd_ls,
            "status": self._cmd_status,
            "ss": self._cmd_stream_toggle,
            "title": self._cmd_title,
            "save": self._cmd_save,
            "load": self._cmd_load,
            "mic": self._cmd_mic,
            "word": self._cmd_word,
        }
        for name in QUIT_COMMANDS:
            self._handlers[name] = self._cmd_quit
        # Reachable only through their bare forms
        self._bare_handlers: dict[str, Callable[[str], Dispatch]] = {
            "repeat": self._cmd_repeat,
            "jc": self._cmd_jc,
        }

    @property
    def command_names(self) -> list[str]:
        return sorted(self._handlers)

    @staticmethod
    def parse(line: str) -> tuple[str, str] | None:
        """Split a slash-command into (name, args); None for free text."""
        stripped = line.strip()
        if stripped in BARE_COMMANDS:
            return BARE_COMMANDS[stripped], ""
        if not stripped.startswith("/"):
            return None
        parts = stripped[1:].split(maxsplit=1)
        name = parts[0].lower() if parts else ""
        args = parts[1].strip() if len(parts) > 1 else ""
        return name, args

    def is_quit(self, line: str) -> bool:
        parsed = self.parse(line)
        return parsed is not None and parsed[0] in QUIT_COMMANDS

    def dispatch(self, line: str, commands: bool = True) -> Dispatch:
        """Classify a line and apply it.

        With ``commands=False`` (mic transcriptions) every non-blank line
        is a query, even one that looks like a command.

        Raises:
            CommandError, BackendError, StorageError: surfaced by the engine
        """
        if not line.strip():
            return Dispatch(DispatchKind.IGNORE)
        if not commands:
            return Dispatch(DispatchKind.QUERY, line.strip())

        parsed = self.parse(line)
        if parsed is None:
            self.last_query = line.strip()
            return Dispatch(DispatchKind.QUERY, self.last_query)

        name, args = parsed
        handler = self._handlers.get(name)
        if handler is None and line.strip() in BARE_COMMANDS:
            handler = self._bare_handlers.get(name)
        if handler is None:
            raise UnknownCommandError(name)

        logger.debug(f"Command /{name} args={args!r}")
        return handler(args)

    # === Handlers ===

    def _cmd_help(self, args: str) -> Dispatch:
        lines = ["Available commands:"]
        lines += [f"  {usage:<18} - {description}" for usage, description in HELP_LINES]
        self.output.info("\n".join(lines))
        return Dispatch(DispatchKind.HANDLED)

    def _cmd_quit(self, args: str) -> Dispatch:
        return Dispatch(DispatchKind.QUIT)

    def _cmd_cls(self, args: str) -> Dispatch:
        self.output.clear_screen()
        return Dispatch(DispatchKind.HANDLED)

    def _cmd_clear(self, args: str) -> Dispatch:
        self.session.clear()
        self.output.info("Conversation history cleared.")
        return Dispatch(DispatchKind.HANDLED)

    def _cmd_system(self, args: str) -> Dispatch:
        if not args:
            self.session.system_prompt = None
            self.output.info("System prompt removed.")
            return Dispatch(DispatchKind.HANDLED)

        prompt = PREDEFINED_ROLES.get(args, args)
        self.session.system_prompt = prompt
        self.output.info(f"System prompt set to: {prompt}")
        return Dispatch(DispatchKind.HANDLED)

    def _cmd_roles(self, args: str) -> Dispatch:
        lines = ["Predefined roles:"]
        lines += [f"  {role:<20} - {text}" for role, text in PREDEFINED_ROLES.items()]
        self.output.info("\n".join(lines))
        return Dispatch(DispatchKind.HANDLED)

    def _cmd_model(self, args: str) -> Dispatch:
        if not args:
            return self._cmd_ls(args)

        # Raises BackendNotFoundError before anything changes
        spec = self.registry.spec_for(args)
        if spec.name == self.session.active_model:
            self.output.info(f"Model already set to: {spec.name}")
            return Dispatch(DispatchKind.HANDLED)

        self.session.active_model = spec.name
        self.output.info(f"Model set to: {spec.name}")
        if not spec.is_available:
            self.output.warning(f"{spec.auth_env} is not set; requests to {spec.name} may fail")
        return Dispatch(DispatchKind.HANDLED)

    def _cmd_ls(self, args: str) -> Dispatch:
        lines = ["Available models:"]
        for provider, name in self.registry.list_models():
            marker = "*" if name == self.session.active_model else " "
            lines.append(f" {marker} {name:<28} ({provider.value})")
        self.output.info("\n".join(lines))
        return Dispatch(DispatchKind.HANDLED)

    def _cmd_status(self, args: str) -> Dispatch:
        lines = [
            "--- Current settings ---",
            f"Model: {self.session.active_model}",
            f"System prompt: {self.session.system_prompt or '(none)'}",
            f"Stream mode: {'enabled' if self.stream else 'disabled'}",
            f"Title: {self.session.title or '(none)'}",
            f"History: {len(self.session.history)} turns",
        ]
        if self.registry.is_known(self.session.active_model):
            spec = self.registry.spec_for(self.session.active_model)
            lines.insert(2, f"Context window: {spec.max_context} tokens")
        self.output.info("\n".join(lines))
        return Dispatch(DispatchKind.HANDLED)

    def _cmd_stream_toggle(self, args: str) -> Dispatch:
        self.stream = not self.stream
        self.output.info(f"Stream mode: {'ON' if self.stream else 'OFF'}")
        return Dispatch(DispatchKind.HANDLED)

    def _cmd_title(self, args: str) -> Dispatch:
        if not self.session.history:
            raise InvalidArgumentError("Nothing to summarize yet")
        return Dispatch(DispatchKind.TITLE)

    def _cmd_save(self, args: str) -> Dispatch:
        name = args or self.session.title
        if not name:
            raise InvalidArgumentError("Usage: /save <filename> (or set a title with /title first)")
        path = self.store.save(self.session, name)
        self.output.info(f"Session saved to '{path}'")
        return Dispatch(DispatchKind.HANDLED)

    def _cmd_load(self, args: str) -> Dispatch:
        if not args:
            return self._list_sessions()

        loaded = self.store.load(args)
        if not self.registry.is_known(loaded.active_model):
            self.output.warning(
                f"Model {loaded.active_model} is not available, using {self.settings.default_model}"
            )
            loaded.active_model = self.settings.default_model

        self.session.replace_with(loaded)
        self.output.info(
            f"Session loaded from '{self.store.path_for(args)}' "
            f"({len(loaded.history)} turns, model {loaded.active_model})"
        )
        return Dispatch(DispatchKind.HANDLED)

    def _list_sessions(self) -> Dispatch:
        sessions = self.store.list_sessions()
        if not sessions:
            self.output.info("No saved sessions found.")
            return Dispatch(DispatchKind.HANDLED)

        lines = ["Saved sessions:"]
        for info in sessions:
            modified = info.modified.strftime("%Y-%m-%d %H:%M:%S")
            lines.append(f"- {info.name} (Last Modified: {modified}) ({info.model})")
        self.output.info("\n".join(lines))
        return Dispatch(DispatchKind.HANDLED)

    def _cmd_mic(self, args: str) -> Dispatch:
        if not self.settings.mic_command.strip():
            raise CommandError("No mic command configured (set LLMRELAY_MIC_COMMAND)")
        if self._mic_process is not None and self._mic_process.poll() is None:
            self.output.warning("Recording already in progress.")
            return Dispatch(DispatchKind.HANDLED)

        try:
            argv = shlex.split(self.settings.mic_command)
            self._mic_process = self._launcher(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            raise CommandError(f"Cannot start mic command: {e}") from e

        logger.info(f"Started mic recorder: {argv[0]}")
        self.output.info("Recording... the transcription will be sent when ready.")
        return Dispatch(DispatchKind.HANDLED)

    def _cmd_repeat(self, args: str) -> Dispatch:
        if not self.last_query:
            self.output.info("No previous input to repeat.")
            return Dispatch(DispatchKind.HANDLED)
        self.output.info(f"Repeating: {self.last_query}")
        return Dispatch(DispatchKind.QUERY, self.last_query)

    def _cmd_jc(self, args: str) -> Dispatch:
        """Send whatever the mic file holds right now, without waiting for the watcher."""
        path = self.settings.mic_file
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self.output.info(f"Skip: {path.name} does not exist")
            return Dispatch(DispatchKind.HANDLED)
        except (OSError, UnicodeDecodeError) as e:
            raise CommandError(f"Cannot read {path}: {e}") from e

        text = content.strip()
        if not text:
            self.output.info(f"Skip: {path.name} is empty")
            return Dispatch(DispatchKind.HANDLED)

        self.output.notice(path.name, "\n".join(text.splitlines()[:PREVIEW_LINES]))
        return Dispatch(DispatchKind.QUERY, text)

    def _cmd_word(self, args: str) -> Dispatch:
        if not args:
            raise InvalidArgumentError("Usage: /word <new_word>")
        if self.wordlist.add(args):
            self.output.info(f"Word '{args}' added to wordlist.")
        else:
            self.output.info(f"Word '{args}' already in wordlist.")
        return Dispatch(DispatchKind.HANDLED)
