"""
Model backend interface.

Every provider family implements one variant of ModelBackend. The engine
only ever sees this contract:

- send(): full response or BackendError, no partial success
- stream(): TEXT chunks in generation order, then exactly one END chunk,
  or an ERROR chunk in place of END
"""

import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from enum import Enum

from llmrelay.core.errors import BackendError, TransportError
from llmrelay.core.logging import get_logger
from llmrelay.core.types import StreamChunk, Turn

logger = get_logger("llm.base")


class ProviderType(Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    DEEPSEEK = "deepseek"
    XAI = "xai"
    OLLAMA = "ollama"
    OPENAI_COMPATIBLE = "openai_compatible"


@dataclass(frozen=True)
class ModelSpec:
    """Resolved model: provider family plus per-model defaults."""

    name: str
    provider: ProviderType
    remote_name: str
    max_context: int = 128_000
    max_tokens: int = 4096
    auth_env: str | None = None
    base_url: str | None = None
    litellm_prefix: str | None = None

    @property
    def api_key(self) -> str | None:
        """Get API key from environment."""
        if not self.auth_env:
            return None
        return os.getenv(self.auth_env)

    @property
    def is_available(self) -> bool:
        """Check if model has the credentials it needs."""
        return not self.auth_env or bool(self.api_key)


@dataclass
class PromptConfig:
    """Configuration for one backend call."""

    model: str
    max_tokens: int = 4096
    temperature: float = 0.7
    system_prompt: str | None = None


@dataclass
class LLMResponse:
    """Complete response from a backend."""

    content: str
    model: str
    provider: ProviderType
    input_tokens: int = 0
    output_tokens: int = 0


class ModelBackend(ABC):
    """Abstract model backend bound to one model."""

    provider_type: ProviderType
    supports_streaming: bool = True

    def __init__(self, spec: ModelSpec):
        self.spec = spec

    @property
    def name(self) -> str:
        return self.spec.name

    def prompt_config(self, system_prompt: str | None = None) -> PromptConfig:
        """Default call configuration for this model."""
        return PromptConfig(
            model=self.spec.name,
            max_tokens=self.spec.max_tokens,
            system_prompt=system_prompt,
        )

    async def send(self, history: Sequence[Turn], config: PromptConfig) -> LLMResponse:
        """Generate a complete response for the conversation.

        Args:
            history: Full ordered turn sequence, newest user turn last
            config: Call configuration

        Returns:
            LLMResponse with the full content

        Raises:
            BackendError: on any failure, classified by kind
        """
        messages = self._to_messages(history)
        try:
            return await self._complete(messages, config)
        except BackendError:
            raise
        except Exception as e:
            logger.warning(f"{self.provider_type.value} send failed for {self.name}: {e}")
            raise self._classify_error(e) from e

    async def stream(
        self, history: Sequence[Turn], config: PromptConfig
    ) -> AsyncIterator[StreamChunk]:
        """Stream the response as chunks. Finite and not restartable.

        Provider failures are delivered as a single ERROR chunk, never raised.
        """
        messages = self._to_messages(history)
        try:
            async for text in self._stream_text(messages, config):
                if text:
                    yield StreamChunk.of(text)
        except BackendError as e:
            yield StreamChunk.failure(e)
            return
        except Exception as e:
            logger.warning(f"{self.provider_type.value} stream failed for {self.name}: {e}")
            yield StreamChunk.failure(self._classify_error(e))
            return
        yield StreamChunk.end()

    async def close(self) -> None:
        """Release network clients."""

    def _to_messages(self, history: Sequence[Turn]) -> list[dict]:
        # Fresh dicts so providers can never touch session turns
        return [turn.to_llm_format() for turn in history]

    @abstractmethod
    async def _complete(self, messages: list[dict], config: PromptConfig) -> LLMResponse:
        ...

    @abstractmethod
    def _stream_text(self, messages: list[dict], config: PromptConfig) -> AsyncIterator[str]:
        ...

    def _classify_error(self, error: Exception) -> BackendError:
        """Map a provider exception onto the backend error taxonomy."""
        return TransportError(f"{self.name}: {error}")
