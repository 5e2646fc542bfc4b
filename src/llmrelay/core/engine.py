"""
Session engine - single writer over the chat session.

Every input source runs in its own task and only pushes lines into one
FIFO queue. The engine loop is the only consumer of that queue and the
only code that mutates the session, so lines that arrive while a
response is in flight wait their turn in arrival order.

States:
    IDLE -> DISPATCHING -> (AWAITING_RESPONSE -> STREAMING_OUTPUT) -> IDLE
    any -> TERMINATING on /quit, once the current exchange has settled
"""

import asyncio
import contextlib
from collections.abc import Coroutine, Sequence
from enum import Enum
from typing import Any

from llmrelay.commands.dispatcher import CommandDispatcher, DispatchKind
from llmrelay.core.busy import BusyIndicator
from llmrelay.core.config import QuitPolicy, Settings
from llmrelay.core.errors import (
    BackendTimeoutError,
    InvalidArgumentError,
    LLMRelayError,
    MalformedResponseError,
    StorageError,
    TransportError,
)
from llmrelay.core.logging import get_logger
from llmrelay.core.types import ChatSession, ChunkKind, Role, Turn
from llmrelay.interfaces.base import InputLine, InputSource, OutputSink
from llmrelay.llm.base import ModelBackend, PromptConfig
from llmrelay.llm.registry import BackendRegistry
from llmrelay.session.store import SessionStore, clean_filename

logger = get_logger("core.engine")

TITLE_PROMPT = (
    "Summarize the conversation so far in one concise sentence suitable as a title, "
    "no comma and dot"
)
AUTOSAVE_NAME = "autosave.json"
PREVIEW_LINES = 3


class EngineState(Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    AWAITING_RESPONSE = "awaiting_response"
    STREAMING_OUTPUT = "streaming_output"
    TERMINATING = "terminating"


def clean_title(text: str) -> str:
    """Reduce a model reply to a single-line, filename-friendly title."""
    first_line = next((line for line in text.strip().splitlines() if line.strip()), "")
    title = first_line.strip().strip("\"'`*#").strip()
    title = title.rstrip(".,;:!").replace(",", "")
    return clean_filename(title)


class SessionEngine:
    """Multiplexes input sources and serializes every session mutation."""

    def __init__(
        self,
        session: ChatSession,
        registry: BackendRegistry,
        store: SessionStore,
        output: OutputSink,
        settings: Settings,
        sources: Sequence[InputSource] = (),
        busy: BusyIndicator | None = None,
        dispatcher: CommandDispatcher | None = None,
    ):
        self.session = session
        self.registry = registry
        self.store = store
        self.output = output
        self.settings = settings
        self.sources = list(sources)
        self.busy = busy or BusyIndicator()
        self.dispatcher = dispatcher or CommandDispatcher(
            session, registry, store, output, settings
        )
        self.state = EngineState.IDLE

        # None marks the end of the primary source
        self._queue: asyncio.Queue[InputLine | None] = asyncio.Queue()
        self._pumps: list[asyncio.Task] = []
        self._exchange: asyncio.Task | None = None
        self._cancel_requested = False
        self._backend: ModelBackend | None = None
        self._source_failed = False
        self._echo_sources = {s.name for s in self.sources if not s.primary}

    @property
    def is_busy(self) -> bool:
        return self.busy.is_busy

    # === Input multiplexing ===

    def submit(self, line: InputLine) -> None:
        """Queue a line for the next idle cycle."""
        if (
            self.settings.quit_policy is QuitPolicy.CANCEL
            and self._exchange is not None
            and not self._exchange.done()
            and line.source not in self._echo_sources
            and self.dispatcher.is_quit(line.text)
        ):
            logger.info("Quit received while busy, cancelling current exchange")
            self._cancel_requested = True
            self._exchange.cancel()
        self._queue.put_nowait(line)

    async def _pump(self, source: InputSource) -> None:
        """Forward every line from a source into the queue."""
        try:
            async for text in source.lines():
                self.submit(InputLine(text=text, source=source.name))
        except Exception as e:
            logger.error(f"Input source {source.name} failed: {e}", exc_info=True)
            self.output.error(f"Input source {source.name} failed: {e}")
            if source.primary:
                self._source_failed = True
        finally:
            if source.primary:
                self._queue.put_nowait(None)

    # === Main loop ===

    async def run(self) -> int:
        """Serve input lines until /quit or the primary source closes.

        Returns:
            Process exit code
        """
        logger.info(
            f"Engine started: model={self.session.active_model}, "
            f"sources={[s.name for s in self.sources]}"
        )
        self._pumps = [
            asyncio.create_task(self._pump(source), name=f"input-{source.name}")
            for source in self.sources
        ]
        try:
            while self.state is not EngineState.TERMINATING:
                line = await self._queue.get()
                if line is None:
                    logger.info("Primary input closed")
                    break
                await self.handle_line(line)
        finally:
            await self.shutdown()
        return 1 if self._source_failed else 0

    async def handle_line(self, line: InputLine) -> None:
        """Dispatch one line; errors are reported and the engine returns to idle."""
        self.state = EngineState.DISPATCHING
        if line.source in self._echo_sources:
            preview = "\n".join(line.text.splitlines()[:PREVIEW_LINES])
            self.output.notice(line.source, preview)

        try:
            commands = line.source not in self._echo_sources
            dispatch = self.dispatcher.dispatch(line.text, commands=commands)
            if dispatch.kind is DispatchKind.QUERY:
                await self._run_exchange(self._query(dispatch.text))
            elif dispatch.kind is DispatchKind.TITLE:
                await self._run_exchange(self._summarize_title())
            elif dispatch.kind is DispatchKind.QUIT:
                logger.info("Quit requested")
                self.state = EngineState.TERMINATING
        except LLMRelayError as e:
            logger.warning(f"{type(e).__name__}: {e}")
            self.output.error(str(e))
        finally:
            if self.state is not EngineState.TERMINATING:
                self.state = EngineState.IDLE

    async def shutdown(self) -> None:
        """Stop input sources, release backend, autosave if configured."""
        self.state = EngineState.TERMINATING
        await self.close()

        if self.settings.autosave and self.session.history:
            try:
                path = self.store.save(self.session, AUTOSAVE_NAME)
                self.output.info(f"Session autosaved to '{path}'")
            except StorageError as e:
                logger.warning(f"Autosave failed: {e}")
                self.output.warning(f"Autosave failed: {e}")

        logger.info("Engine stopped")

    async def close(self) -> None:
        """Cancel pumps, close sources and the cached backend."""
        for task in self._pumps:
            task.cancel()
        if self._pumps:
            await asyncio.gather(*self._pumps, return_exceptions=True)
        self._pumps = []

        for source in self.sources:
            try:
                await source.close()
            except Exception as e:
                logger.warning(f"Failed to close source {source.name}: {e}")

        await self._close_backend()

    # === Exchanges ===

    async def query(self, prompt: str) -> None:
        """Run a single query exchange outside the input loop (one-shot mode).

        Raises:
            LLMRelayError: any backend failure; history is left unchanged
        """
        await self._query(prompt)

    async def _run_exchange(self, coro: Coroutine[Any, Any, None]) -> None:
        """Run one backend exchange as a task so a quit can cancel it."""
        self._cancel_requested = False
        self._exchange = asyncio.create_task(coro)
        try:
            await self._exchange
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            self.output.warning("Request cancelled; nothing was added to history.")
        finally:
            self._exchange = None
            self._cancel_requested = False

    async def _backend_for(self, model: str) -> ModelBackend:
        if self._backend is not None and self._backend.name == model:
            return self._backend
        backend = self.registry.resolve(model)
        await self._close_backend()
        self._backend = backend
        return backend

    async def _close_backend(self) -> None:
        if self._backend is None:
            return
        try:
            await self._backend.close()
        except Exception as e:
            logger.warning(f"Failed to close backend {self._backend.name}: {e}")
        self._backend = None

    async def _query(self, prompt: str) -> None:
        """Send a user prompt; commit the exchange only when it completes."""
        backend = await self._backend_for(self.session.active_model)
        pending = self.session.pending_turns(prompt)
        request = [*self.session.history, *pending]
        config = backend.prompt_config(self.session.system_prompt)
        streaming = self.dispatcher.stream and backend.supports_streaming

        logger.info(f"Query to {backend.name} ({len(request)} turns, stream={streaming})")
        with self._awaiting():
            async with self._deadline(backend):
                if streaming:
                    content = await self._stream_response(backend, request, config)
                else:
                    response = await backend.send(request, config)
                    content = response.content

        if not streaming:
            self.output.response(content)
        self.session.commit([*pending, Turn(Role.ASSISTANT, content)])
        logger.debug(f"History now {len(self.session.history)} turns")

    async def _stream_response(
        self, backend: ModelBackend, request: list[Turn], config: PromptConfig
    ) -> str:
        """Render chunks as they arrive and return the full text on END."""
        buffer: list[str] = []
        try:
            async with contextlib.aclosing(backend.stream(request, config)) as chunks:
                async for chunk in chunks:
                    if chunk.kind is ChunkKind.TEXT:
                        self.state = EngineState.STREAMING_OUTPUT
                        buffer.append(chunk.text)
                        self.output.stream_chunk(chunk.text)
                    elif chunk.kind is ChunkKind.ERROR:
                        raise chunk.error or TransportError(f"{backend.name}: stream failed")
                    else:
                        self.output.stream_end()
                        return "".join(buffer)
            raise MalformedResponseError(f"{backend.name}: stream ended without end marker")
        except BaseException:
            if buffer:
                self.output.stream_end(ok=False)
            raise

    async def _summarize_title(self) -> None:
        """Ask the active model for a title; history is left untouched."""
        if not self.session.history:
            raise InvalidArgumentError("Nothing to summarize yet")

        backend = await self._backend_for(self.session.active_model)
        request = [*self.session.history, Turn(Role.USER, TITLE_PROMPT)]
        config = backend.prompt_config(self.session.system_prompt)

        with self._awaiting():
            async with self._deadline(backend):
                response = await backend.send(request, config)

        title = clean_title(response.content)
        if not title:
            raise MalformedResponseError(f"{backend.name}: empty title")
        self.session.title = title
        self.output.info(f"Session title set to: {title}")

    @contextlib.contextmanager
    def _awaiting(self):
        """Hold the busy marker for a backend call; state leaves the wait with it."""
        with self.busy.hold():
            self.state = EngineState.AWAITING_RESPONSE
            try:
                yield
            finally:
                self.state = EngineState.DISPATCHING

    @contextlib.asynccontextmanager
    async def _deadline(self, backend: ModelBackend):
        """Bound a backend call; expiry becomes BackendTimeoutError."""
        timeout = self.settings.request_timeout
        try:
            async with asyncio.timeout(timeout):
                yield
        except TimeoutError as e:
            raise BackendTimeoutError(f"{backend.name}: no response after {timeout:g}s") from e
