"""Tests for model registry."""

from pathlib import Path

import pytest

from llmrelay.core.errors import BackendNotFoundError, RegistryError
from llmrelay.llm.base import ProviderType
from llmrelay.llm.claude import ClaudeBackend
from llmrelay.llm.litellm_backend import LiteLLMBackend
from llmrelay.llm.ollama import OllamaBackend
from llmrelay.llm.registry import BackendRegistry, create_registry


@pytest.fixture
def real_registry() -> BackendRegistry:
    return create_registry()


def test_registry_loads_packaged_table(real_registry):
    """Packaged YAML lists models in declaration order."""
    names = real_registry.model_names()
    assert names[0] == "gemini-2.0-flash"
    assert "claude-sonnet-4-20250514" in names
    assert "qwen-max" in names


def test_exact_entry(real_registry):
    spec = real_registry.spec_for("deepseek-reasoner")
    assert spec.provider is ProviderType.DEEPSEEK
    assert spec.max_tokens == 8192
    assert spec.auth_env == "DEEPSEEK_API_KEY"
    assert spec.litellm_prefix == "deepseek"


def test_per_model_override(real_registry):
    spec = real_registry.spec_for("qwen-max")
    assert spec.provider is ProviderType.OPENAI_COMPATIBLE
    assert spec.auth_env == "QWEN_API_KEY"
    assert spec.base_url.startswith("https://dashscope")


@pytest.mark.parametrize(
    "name,provider",
    [
        ("gpt-4.1", ProviderType.OPENAI),
        ("o3-mini", ProviderType.OPENAI),
        ("claude-opus-4-20250514", ProviderType.ANTHROPIC),
        ("gemini-1.5-pro", ProviderType.GEMINI),
        ("grok-3", ProviderType.XAI),
        ("llama3.1:8b", ProviderType.OLLAMA),
    ],
)
def test_rule_resolution(real_registry, name, provider):
    """Unlisted names resolve through regex rules."""
    spec = real_registry.spec_for(name)
    assert spec.name == name
    assert spec.remote_name == name
    assert spec.provider is provider


def test_unknown_model(real_registry):
    with pytest.raises(BackendNotFoundError, match="Unknown model: unknown-model-xyz"):
        real_registry.spec_for("unknown-model-xyz")
    assert not real_registry.is_known("unknown-model-xyz")
    assert real_registry.is_known("gpt-4o")


@pytest.mark.parametrize(
    "name,backend_type",
    [
        ("gpt-4o", LiteLLMBackend),
        ("gemini-2.0-flash", LiteLLMBackend),
        ("qwen-max", LiteLLMBackend),
        ("claude-3-5-haiku-20241022", ClaudeBackend),
        ("qwen2.5:14b", OllamaBackend),
    ],
)
def test_resolve_picks_variant(real_registry, name, backend_type):
    backend = real_registry.resolve(name)
    assert isinstance(backend, backend_type)
    assert backend.name == name


def test_list_models_pairs(real_registry):
    listed = real_registry.list_models()
    assert (ProviderType.GEMINI, "gemini-2.0-flash") in listed
    assert (ProviderType.OLLAMA, "openthinker:7b") in listed
    assert len(listed) == len(real_registry.model_names())


def test_ollama_url_override():
    registry = create_registry(ollama_url="http://gpu-box:11434/v1")
    assert registry.spec_for("qwen2.5:14b").base_url == "http://gpu-box:11434/v1"
    assert registry.spec_for("mistral:7b").base_url == "http://gpu-box:11434/v1"


def test_inline_table():
    registry = BackendRegistry(
        {
            "providers": {"openai": {"auth_env": "OPENAI_API_KEY"}},
            "models": [{"name": "house-model", "provider": "openai", "remote_name": "gpt-4o"}],
        }
    )
    spec = registry.spec_for("house-model")
    assert spec.remote_name == "gpt-4o"
    assert spec.auth_env == "OPENAI_API_KEY"


def test_invalid_provider_rejected():
    with pytest.raises(RegistryError):
        BackendRegistry({"models": [{"name": "x", "provider": "nosuch"}]})


def test_invalid_rule_rejected():
    with pytest.raises(RegistryError):
        BackendRegistry({"rules": [{"match": "([", "provider": "openai"}]})


def test_missing_file():
    with pytest.raises(RegistryError):
        BackendRegistry.from_file(Path("/nonexistent/models.yaml"))
