"""Shared fixtures: isolated config, fake backends, recording output."""

import asyncio
from collections.abc import AsyncIterator

import pytest

from llmrelay.core.busy import BusyIndicator
from llmrelay.core.config import Settings
from llmrelay.core.engine import SessionEngine
from llmrelay.core.types import ChatSession
from llmrelay.interfaces.base import InputSource, OutputSink
from llmrelay.llm.base import LLMResponse, ModelBackend, ModelSpec, PromptConfig, ProviderType
from llmrelay.llm.registry import BackendRegistry, create_registry
from llmrelay.session.store import SessionStore


class FakeBackend(ModelBackend):
    """Scriptable backend; records every request it receives."""

    provider_type = ProviderType.OPENAI

    def __init__(self, spec: ModelSpec, reply: str = "4"):
        super().__init__(spec)
        self.reply = reply
        self.chunks: list[str] | None = None
        self.error: Exception | None = None
        self.delay = 0.0
        # When set, calls block until the event fires
        self.release: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.requests: list[list[dict]] = []
        self.closed = False

    async def _begin(self, messages: list[dict]) -> None:
        self.requests.append(messages)
        self.started.set()
        if self.release is not None:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)

    async def _complete(self, messages: list[dict], config: PromptConfig) -> LLMResponse:
        await self._begin(messages)
        if self.error:
            raise self.error
        return LLMResponse(content=self.reply, model=self.name, provider=self.provider_type)

    async def _stream_text(self, messages: list[dict], config: PromptConfig) -> AsyncIterator[str]:
        await self._begin(messages)
        for chunk in self.chunks if self.chunks is not None else [self.reply]:
            yield chunk
        if self.error:
            raise self.error

    async def close(self) -> None:
        self.closed = True


class RecordingOutput(OutputSink):
    """Collects everything written to the user as (kind, text) events."""

    def __init__(self):
        self.events: list[tuple[str, str]] = []

    def texts(self, kind: str) -> list[str]:
        return [text for k, text in self.events if k == kind]

    def info(self, text: str) -> None:
        self.events.append(("info", text))

    def warning(self, text: str) -> None:
        self.events.append(("warning", text))

    def error(self, text: str) -> None:
        self.events.append(("error", text))

    def response(self, text: str) -> None:
        self.events.append(("response", text))

    def stream_chunk(self, text: str) -> None:
        self.events.append(("chunk", text))

    def stream_end(self, ok: bool = True) -> None:
        self.events.append(("stream_end", "ok" if ok else "discarded"))

    def notice(self, source: str, preview: str) -> None:
        self.events.append(("notice", f"{source}: {preview}"))

    def clear_screen(self) -> None:
        self.events.append(("cls", ""))


class QueueInput(InputSource):
    """Input source fed by the test; finish() ends it."""

    def __init__(self, name: str = "terminal", primary: bool = True):
        self.name = name
        self.primary = primary
        self.closed = False
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()

    def feed(self, *lines: str) -> None:
        for line in lines:
            self._queue.put_nowait(line)

    def finish(self) -> None:
        self._queue.put_nowait(None)

    async def lines(self) -> AsyncIterator[str]:
        while True:
            line = await self._queue.get()
            if line is None:
                return
            yield line

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from the user's config directory and .env."""
    for key in ("LLMRELAY_DEFAULT_MODEL", "LLMRELAY_STREAM", "LLMRELAY_QUIT_POLICY"):
        monkeypatch.delenv(key, raising=False)
    config_dir = tmp_path / "config"
    monkeypatch.setenv("LLMRELAY_CONFIG_DIR", str(config_dir))
    monkeypatch.chdir(tmp_path)
    return config_dir


@pytest.fixture
def settings(tmp_path, isolated_config) -> Settings:
    temp_dir = tmp_path / "tmp"
    temp_dir.mkdir()
    return Settings(_env_file=None, config_dir=isolated_config, temp_dir=temp_dir)


@pytest.fixture
def backends() -> dict[str, FakeBackend]:
    return {}


@pytest.fixture
def registry(monkeypatch, backends) -> BackendRegistry:
    """Packaged registry whose resolve() hands out fake backends."""
    registry = create_registry()

    def resolve(model_name: str) -> FakeBackend:
        spec = registry.spec_for(model_name)
        if spec.name not in backends:
            backends[spec.name] = FakeBackend(spec)
        return backends[spec.name]

    monkeypatch.setattr(registry, "resolve", resolve)
    return registry


@pytest.fixture
def backend(registry) -> FakeBackend:
    """Backend for the default model."""
    return registry.resolve("gemini-2.0-flash")


@pytest.fixture
def output() -> RecordingOutput:
    return RecordingOutput()


@pytest.fixture
def store(settings) -> SessionStore:
    return SessionStore(settings.sessions_dir)


@pytest.fixture
def session() -> ChatSession:
    return ChatSession(active_model="gemini-2.0-flash")


@pytest.fixture
def busy(settings) -> BusyIndicator:
    return BusyIndicator(settings.act_file, settings.ack_file)


@pytest.fixture
def engine(session, registry, store, output, settings, busy) -> SessionEngine:
    return SessionEngine(session, registry, store, output, settings, busy=busy)
