"""
LLM module - model backend abstraction.

Backends (one per provider family):
- litellm_backend: OpenAI, Gemini, DeepSeek, xAI and OpenAI-compatible endpoints
- claude: Anthropic Claude API
- ollama: Local LLMs via OpenAI-compatible HTTP API

Registry resolves a model name to a configured backend.
"""

from llmrelay.llm.base import ModelBackend, ModelSpec, PromptConfig, ProviderType
from llmrelay.llm.registry import BackendRegistry

__all__ = ["BackendRegistry", "ModelBackend", "ModelSpec", "PromptConfig", "ProviderType"]
