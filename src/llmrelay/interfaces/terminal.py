"""Terminal input source - prompt_toolkit line reader with history and completion."""

from collections.abc import AsyncIterator, Callable, Iterable
from pathlib import Path

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import CompleteEvent, Completer, Completion, WordCompleter
from prompt_toolkit.document import Document
from prompt_toolkit.history import FileHistory, InMemoryHistory

from llmrelay.core.logging import get_logger
from llmrelay.interfaces.base import InputSource

logger = get_logger("interfaces.terminal")

MULTI_LINE_MARKER = ":::"
MULTI_LINE_PROMPT = ".. "


class CommandCompleter(Completer):
    """Completes slash commands, model names after /model and roles after /system.

    Free text completes from the vocabulary, read on every keypress so
    words added with /word show up at once.
    """

    def __init__(
        self,
        commands: Iterable[str],
        models: Iterable[str],
        roles: Iterable[str],
        vocabulary: Callable[[], list[str]] | None = None,
    ):
        # WORD=True keeps "/" and ":" inside the word being completed
        self.commands = WordCompleter([f"/{name}" for name in commands], WORD=True)
        self.arguments = {
            "/model": WordCompleter(list(models), WORD=True),
            "/system": WordCompleter(list(roles), WORD=True),
        }
        self.vocabulary = WordCompleter(vocabulary or [], WORD=True)

    def get_completions(self, document: Document, complete_event: CompleteEvent) -> Iterable[Completion]:
        text = document.text_before_cursor.lstrip()
        if not text.startswith("/"):
            yield from self.vocabulary.get_completions(document, complete_event)
            return
        if " " not in text:
            yield from self.commands.get_completions(document, complete_event)
            return

        command, _, rest = text.partition(" ")
        completer = self.arguments.get(command.lower())
        if completer is None:
            return
        argument = rest.lstrip()
        yield from completer.get_completions(Document(argument, len(argument)), complete_event)


def build_completer(
    commands: Iterable[str],
    models: Iterable[str],
    roles: Iterable[str],
    vocabulary: Callable[[], list[str]] | None = None,
) -> Completer:
    return CommandCompleter(commands, models, roles, vocabulary)


class TerminalInput(InputSource):
    """Reads lines from the interactive terminal.

    A line containing only ``:::`` opens multi-line mode; the next ``:::``
    emits everything in between as a single line.
    """

    name = "terminal"
    primary = True

    def __init__(
        self,
        prompt: str = "> ",
        history_file: Path | None = None,
        completer: Completer | None = None,
        session: PromptSession | None = None,
    ):
        self.prompt = prompt
        self.history_file = history_file
        self.completer = completer
        self._session = session

    @property
    def session(self) -> PromptSession:
        if self._session is None:
            if self.history_file:
                self.history_file.parent.mkdir(parents=True, exist_ok=True)
                history = FileHistory(str(self.history_file))
            else:
                history = InMemoryHistory()
            self._session = PromptSession(
                history=history,
                completer=self.completer,
                complete_while_typing=False,
            )
        return self._session

    async def lines(self) -> AsyncIterator[str]:
        buffer: list[str] | None = None

        while True:
            prompt = MULTI_LINE_PROMPT if buffer is not None else self.prompt
            try:
                line = await self.session.prompt_async(prompt)
            except KeyboardInterrupt:
                # Ctrl-C drops the current line (and any multi-line buffer)
                buffer = None
                continue
            except EOFError:
                logger.info("Terminal input closed (EOF)")
                return

            if line.strip() == MULTI_LINE_MARKER:
                if buffer is None:
                    buffer = []
                    continue
                text = "\n".join(buffer)
                buffer = None
                if text.strip():
                    yield text
                continue

            if buffer is not None:
                buffer.append(line)
                continue

            yield line
