"""
Claude API backend.

Anthropic takes the system prompt as a separate parameter, so system
turns are lifted out of the message list.
"""

from collections.abc import AsyncIterator

import anthropic
from anthropic import APIConnectionError, APIStatusError, APITimeoutError

from llmrelay.core.errors import BackendError, BackendTimeoutError, TransportError
from llmrelay.core.logging import get_logger
from llmrelay.llm.base import LLMResponse, ModelBackend, ModelSpec, PromptConfig, ProviderType

logger = get_logger("llm.claude")


class ClaudeBackend(ModelBackend):
    """Anthropic Claude API backend."""

    provider_type = ProviderType.ANTHROPIC

    def __init__(self, spec: ModelSpec, client: anthropic.AsyncAnthropic | None = None):
        super().__init__(spec)
        self._client = client

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.spec.api_key)
        return self._client

    def _split_system(
        self, messages: list[dict], config: PromptConfig
    ) -> tuple[str, list[dict]]:
        system_prompt = config.system_prompt
        api_messages = []
        for msg in messages:
            if msg["role"] == "system":
                system_prompt = msg["content"]
            else:
                api_messages.append(msg)
        return system_prompt or "", api_messages

    async def _complete(self, messages: list[dict], config: PromptConfig) -> LLMResponse:
        system_prompt, api_messages = self._split_system(messages, config)
        logger.debug(f"Claude request: model={self.spec.remote_name}, max_tokens={config.max_tokens}")
        if system_prompt:
            logger.debug(f"Claude system prompt ({len(system_prompt)} chars)")

        response = await self.client.messages.create(
            model=self.spec.remote_name,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            system=system_prompt,
            messages=api_messages,
        )

        content = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        logger.debug(f"Claude usage: {input_tokens} in, {output_tokens} out")

        return LLMResponse(
            content=content,
            model=self.name,
            provider=self.provider_type,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    async def _stream_text(self, messages: list[dict], config: PromptConfig) -> AsyncIterator[str]:
        system_prompt, api_messages = self._split_system(messages, config)
        logger.debug(f"Claude stream: model={self.spec.remote_name}")

        async with self.client.messages.stream(
            model=self.spec.remote_name,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            system=system_prompt,
            messages=api_messages,
        ) as stream:
            async for text in stream.text_stream:
                yield text

    def _classify_error(self, error: Exception) -> BackendError:
        if isinstance(error, APITimeoutError):
            return BackendTimeoutError(f"{self.name}: request timed out")
        if isinstance(error, APIStatusError):
            return TransportError(f"{self.name}: HTTP {error.status_code} {error.message}")
        if isinstance(error, APIConnectionError):
            return TransportError(f"{self.name}: connection failed")
        return super()._classify_error(error)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
