"""Local LLM backend - OpenAI-compatible API for Ollama, LM Studio, etc."""

import json
from collections.abc import AsyncIterator

import httpx

from llmrelay.core.errors import (
    BackendError,
    BackendTimeoutError,
    MalformedResponseError,
    TransportError,
)
from llmrelay.core.logging import get_logger
from llmrelay.llm.base import LLMResponse, ModelBackend, ModelSpec, PromptConfig, ProviderType

logger = get_logger("llm.ollama")

DEFAULT_BASE_URL = "http://localhost:11434/v1"


class OllamaBackend(ModelBackend):
    """Local LLM via OpenAI-compatible API (Ollama, LM Studio, vLLM, etc.)."""

    provider_type = ProviderType.OLLAMA

    def __init__(self, spec: ModelSpec, client: httpx.AsyncClient | None = None):
        super().__init__(spec)
        self.base_url = spec.base_url or DEFAULT_BASE_URL
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=300.0,  # Local models can be slow
            )
        return self._client

    def _payload(self, messages: list[dict], config: PromptConfig, stream: bool) -> dict:
        return {
            "model": self.spec.remote_name,
            "messages": messages,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "stream": stream,
        }

    async def _complete(self, messages: list[dict], config: PromptConfig) -> LLMResponse:
        logger.debug(f"Local request: model={self.spec.remote_name}, url={self.base_url}")

        response = await self.client.post(
            "/chat/completions", json=self._payload(messages, config, stream=False)
        )
        response.raise_for_status()

        try:
            data = response.json()
            content = data["choices"][0]["message"].get("content") or ""
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise MalformedResponseError(f"{self.name}: unexpected response body") from e

        usage = data.get("usage") or {}
        input_tokens = usage.get("prompt_tokens", 0)
        output_tokens = usage.get("completion_tokens", 0)
        logger.debug(f"Local usage: {input_tokens} in, {output_tokens} out")

        return LLMResponse(
            content=content,
            model=data.get("model", self.name),
            provider=self.provider_type,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    async def _stream_text(self, messages: list[dict], config: PromptConfig) -> AsyncIterator[str]:
        logger.debug(f"Local stream: model={self.spec.remote_name}, url={self.base_url}")

        async with self.client.stream(
            "POST", "/chat/completions", json=self._payload(messages, config, stream=True)
        ) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                # Server-sent events: "data: {...}" lines, blank separators
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    return
                try:
                    event = json.loads(data)
                    delta = event["choices"][0].get("delta") or {}
                except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
                    raise MalformedResponseError(f"{self.name}: malformed stream event") from e
                yield delta.get("content") or ""

    def _classify_error(self, error: Exception) -> BackendError:
        if isinstance(error, httpx.TimeoutException):
            return BackendTimeoutError(f"{self.name}: request timed out")
        if isinstance(error, httpx.ConnectError):
            return TransportError(f"{self.name}: local LLM not reachable at {self.base_url}")
        if isinstance(error, httpx.HTTPStatusError):
            return TransportError(f"{self.name}: HTTP {error.response.status_code}")
        return super()._classify_error(error)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
