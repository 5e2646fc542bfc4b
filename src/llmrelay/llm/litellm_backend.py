"""LiteLLM backend - OpenAI, Gemini, DeepSeek, xAI and OpenAI-compatible endpoints."""

from collections.abc import AsyncIterator
from typing import Any

import litellm
from litellm import acompletion

from llmrelay.core.errors import (
    BackendError,
    BackendTimeoutError,
    MalformedResponseError,
    TransportError,
)
from llmrelay.core.logging import get_logger
from llmrelay.llm.base import LLMResponse, ModelBackend, ModelSpec, PromptConfig

logger = get_logger("llm.litellm_backend")

# Disable LiteLLM's verbose logging
litellm.suppress_debug_info = True


class LiteLLMBackend(ModelBackend):
    """Any provider family LiteLLM can address by prefixed model name."""

    def __init__(self, spec: ModelSpec):
        super().__init__(spec)
        self.provider_type = spec.provider

    @property
    def litellm_name(self) -> str:
        if self.spec.litellm_prefix:
            return f"{self.spec.litellm_prefix}/{self.spec.remote_name}"
        return self.spec.remote_name

    def _params(self, messages: list[dict], config: PromptConfig) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": self.litellm_name,
            "messages": messages,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
        }
        if self.spec.api_key:
            params["api_key"] = self.spec.api_key
        if self.spec.base_url:
            params["api_base"] = self.spec.base_url
        return params

    async def _complete(self, messages: list[dict], config: PromptConfig) -> LLMResponse:
        params = self._params(messages, config)
        logger.debug(f"LiteLLM request: model={params['model']}, messages={len(messages)}")

        response = await acompletion(**params)

        try:
            content = response.choices[0].message.content or ""
        except (AttributeError, IndexError, TypeError) as e:
            raise MalformedResponseError(f"{self.name}: no message in response") from e

        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0
        logger.debug(f"LiteLLM response: tokens={input_tokens}+{output_tokens}")

        return LLMResponse(
            content=content,
            model=getattr(response, "model", None) or self.name,
            provider=self.provider_type,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    async def _stream_text(self, messages: list[dict], config: PromptConfig) -> AsyncIterator[str]:
        params = self._params(messages, config)
        logger.debug(f"LiteLLM stream: model={params['model']}, messages={len(messages)}")

        response = await acompletion(stream=True, **params)
        async for part in response:
            try:
                delta = part.choices[0].delta
            except (AttributeError, IndexError, TypeError) as e:
                raise MalformedResponseError(f"{self.name}: malformed stream chunk") from e
            yield getattr(delta, "content", None) or ""

    def _classify_error(self, error: Exception) -> BackendError:
        if isinstance(error, (litellm.Timeout, TimeoutError)):
            return BackendTimeoutError(f"{self.name}: request timed out")
        if isinstance(error, (KeyError, ValueError)):
            return MalformedResponseError(f"{self.name}: {error}")
        return TransportError(f"{self.name}: {error}")
