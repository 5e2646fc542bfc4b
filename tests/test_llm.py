"""Tests for LLM backends."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import anthropic
import httpx
import pytest

from llmrelay.core.errors import BackendTimeoutError, MalformedResponseError, TransportError
from llmrelay.core.types import ChunkKind, Role, Turn
from llmrelay.llm.base import PromptConfig, ProviderType
from llmrelay.llm.claude import ClaudeBackend
from llmrelay.llm.litellm_backend import LiteLLMBackend
from llmrelay.llm.ollama import OllamaBackend
from llmrelay.llm.registry import create_registry

HISTORY = [
    Turn(Role.SYSTEM, "be brief"),
    Turn(Role.USER, "What is 2+2?"),
]


@pytest.fixture
def real_registry():
    return create_registry()


async def collect(backend, history=HISTORY):
    config = backend.prompt_config()
    return [chunk async for chunk in backend.stream(history, config)]


def test_prompt_config_defaults():
    """PromptConfig has sensible defaults."""
    config = PromptConfig(model="test-model")
    assert config.max_tokens == 4096
    assert config.temperature == 0.7
    assert config.system_prompt is None


def test_backend_prompt_config_uses_model_defaults(real_registry):
    backend = real_registry.resolve("deepseek-reasoner")
    config = backend.prompt_config("sys")
    assert config.model == "deepseek-reasoner"
    assert config.max_tokens == 8192
    assert config.system_prompt == "sys"


def test_model_spec_availability(real_registry, monkeypatch):
    spec = real_registry.spec_for("gpt-4o")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert not spec.is_available
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert spec.is_available
    assert spec.api_key == "sk-test"
    # Local models need no credentials
    assert real_registry.spec_for("qwen2.5:14b").is_available


# === LiteLLM ===


def litellm_response(content):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=1),
        model="gemini/gemini-2.0-flash",
    )


async def litellm_stream(*parts):
    for part in parts:
        yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=part))])


async def test_litellm_send(real_registry, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "g-key")
    backend = real_registry.resolve("gemini-2.0-flash")
    mock = AsyncMock(return_value=litellm_response("4"))

    with patch("llmrelay.llm.litellm_backend.acompletion", mock):
        response = await backend.send(HISTORY, backend.prompt_config())

    assert response.content == "4"
    assert response.provider is ProviderType.GEMINI
    assert response.input_tokens == 12
    kwargs = mock.call_args.kwargs
    assert kwargs["model"] == "gemini/gemini-2.0-flash"
    assert kwargs["api_key"] == "g-key"
    assert kwargs["messages"] == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "What is 2+2?"},
    ]


async def test_litellm_openai_compatible_base_url(real_registry):
    backend = real_registry.resolve("qwen-max")
    mock = AsyncMock(return_value=litellm_response("hi"))

    with patch("llmrelay.llm.litellm_backend.acompletion", mock):
        await backend.send(HISTORY, backend.prompt_config())

    kwargs = mock.call_args.kwargs
    assert kwargs["model"] == "openai/qwen-max"
    assert kwargs["api_base"].startswith("https://dashscope")


async def test_litellm_stream(real_registry):
    backend = real_registry.resolve("gpt-4o")
    mock = AsyncMock(return_value=litellm_stream("2+2", "", " is 4"))

    with patch("llmrelay.llm.litellm_backend.acompletion", mock):
        chunks = await collect(backend)

    # Empty deltas are dropped; END closes the stream
    assert [c.kind for c in chunks] == [ChunkKind.TEXT, ChunkKind.TEXT, ChunkKind.END]
    assert "".join(c.text for c in chunks) == "2+2 is 4"
    assert mock.call_args.kwargs["stream"] is True


async def test_litellm_timeout_classified(real_registry):
    backend = real_registry.resolve("gpt-4o")
    mock = AsyncMock(side_effect=TimeoutError("slow"))

    with patch("llmrelay.llm.litellm_backend.acompletion", mock):
        with pytest.raises(BackendTimeoutError):
            await backend.send(HISTORY, backend.prompt_config())


async def test_litellm_transport_error(real_registry):
    backend = real_registry.resolve("gpt-4o")
    mock = AsyncMock(side_effect=RuntimeError("connection reset"))

    with patch("llmrelay.llm.litellm_backend.acompletion", mock):
        with pytest.raises(TransportError, match="connection reset"):
            await backend.send(HISTORY, backend.prompt_config())


async def test_litellm_malformed_response(real_registry):
    backend = real_registry.resolve("gpt-4o")
    mock = AsyncMock(return_value=SimpleNamespace(choices=[]))

    with patch("llmrelay.llm.litellm_backend.acompletion", mock):
        with pytest.raises(MalformedResponseError):
            await backend.send(HISTORY, backend.prompt_config())


async def test_stream_failure_becomes_error_chunk(real_registry):
    """Provider failure mid-stream ends with one ERROR chunk, never raises."""

    async def broken():
        yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content="par"))])
        raise RuntimeError("connection reset")

    backend = real_registry.resolve("gpt-4o")
    with patch("llmrelay.llm.litellm_backend.acompletion", AsyncMock(return_value=broken())):
        chunks = await collect(backend)

    assert [c.kind for c in chunks] == [ChunkKind.TEXT, ChunkKind.ERROR]
    assert isinstance(chunks[-1].error, TransportError)


# === Claude ===


class FakeClaudeStream:
    def __init__(self, parts):
        self.parts = parts

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    @property
    async def text_stream(self):
        for part in self.parts:
            yield part


def claude_client():
    client = Mock()
    client.messages.create = AsyncMock(
        return_value=SimpleNamespace(
            content=[SimpleNamespace(type="text", text="4")],
            usage=SimpleNamespace(input_tokens=10, output_tokens=1),
        )
    )
    client.close = AsyncMock()
    return client


async def test_claude_send_lifts_system_turn(real_registry):
    spec = real_registry.spec_for("claude-sonnet-4-20250514")
    client = claude_client()
    backend = ClaudeBackend(spec, client=client)

    response = await backend.send(HISTORY, backend.prompt_config())

    assert response.content == "4"
    assert response.output_tokens == 1
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["system"] == "be brief"
    assert kwargs["messages"] == [{"role": "user", "content": "What is 2+2?"}]
    assert kwargs["model"] == "claude-sonnet-4-20250514"


async def test_claude_stream(real_registry):
    spec = real_registry.spec_for("claude-sonnet-4-20250514")
    client = claude_client()
    client.messages.stream = Mock(return_value=FakeClaudeStream(["Four", "."]))
    backend = ClaudeBackend(spec, client=client)

    chunks = await collect(backend)

    assert [c.text for c in chunks] == ["Four", ".", ""]
    assert chunks[-1].kind is ChunkKind.END


async def test_claude_timeout_classified(real_registry):
    spec = real_registry.spec_for("claude-sonnet-4-20250514")
    client = claude_client()
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    client.messages.create.side_effect = anthropic.APITimeoutError(request=request)
    backend = ClaudeBackend(spec, client=client)

    with pytest.raises(BackendTimeoutError):
        await backend.send(HISTORY, backend.prompt_config())


async def test_claude_close(real_registry):
    client = claude_client()
    backend = ClaudeBackend(real_registry.spec_for("claude-sonnet-4-20250514"), client=client)

    await backend.close()

    client.close.assert_awaited_once()


# === Ollama ===


def ollama_backend(real_registry, handler):
    spec = real_registry.spec_for("qwen2.5:14b")
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://localhost:11434/v1"
    )
    return OllamaBackend(spec, client=client)


async def test_ollama_send(real_registry):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "qwen2.5:14b",
                "choices": [{"message": {"role": "assistant", "content": "4"}}],
                "usage": {"prompt_tokens": 9, "completion_tokens": 1},
            },
        )

    backend = ollama_backend(real_registry, handler)
    response = await backend.send(HISTORY, backend.prompt_config())
    await backend.close()

    assert response.content == "4"
    assert response.provider is ProviderType.OLLAMA
    assert seen["path"] == "/v1/chat/completions"
    assert seen["body"]["model"] == "qwen2.5:14b"
    assert seen["body"]["stream"] is False


async def test_ollama_stream(real_registry):
    events = [
        {"choices": [{"delta": {"role": "assistant"}}]},
        {"choices": [{"delta": {"content": "Fo"}}]},
        {"choices": [{"delta": {"content": "ur"}}]},
    ]
    body = "".join(f"data: {json.dumps(e)}\n\n" for e in events) + "data: [DONE]\n\n"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

    backend = ollama_backend(real_registry, handler)
    chunks = await collect(backend)

    assert [c.text for c in chunks if c.kind is ChunkKind.TEXT] == ["Fo", "ur"]
    assert chunks[-1].kind is ChunkKind.END


async def test_ollama_malformed_stream_event(real_registry):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="data: {not json}\n\n")

    backend = ollama_backend(real_registry, handler)
    chunks = await collect(backend)

    assert len(chunks) == 1
    assert isinstance(chunks[0].error, MalformedResponseError)


async def test_ollama_unreachable(real_registry):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    backend = ollama_backend(real_registry, handler)

    with pytest.raises(TransportError, match="not reachable"):
        await backend.send(HISTORY, backend.prompt_config())


async def test_ollama_http_error(real_registry):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="model not loaded")

    backend = ollama_backend(real_registry, handler)

    with pytest.raises(TransportError, match="HTTP 500"):
        await backend.send(HISTORY, backend.prompt_config())
