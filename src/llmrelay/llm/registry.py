"""
Backend registry.

Resolves a model name to a ModelBackend using the static table in
configs/models.yaml: exact model entries first, then regex rules mapping
name patterns to a provider family. Read-only after construction.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from llmrelay.core.errors import BackendNotFoundError, RegistryError
from llmrelay.core.logging import get_logger
from llmrelay.llm.base import ModelBackend, ModelSpec, ProviderType
from llmrelay.llm.claude import ClaudeBackend
from llmrelay.llm.litellm_backend import LiteLLMBackend
from llmrelay.llm.ollama import OllamaBackend

logger = get_logger("llm.registry")

DEFAULT_REGISTRY_PATH = Path(__file__).parent.parent / "configs" / "models.yaml"

# Families without a dedicated variant go through LiteLLM
BACKEND_TYPES: dict[ProviderType, type[ModelBackend]] = {
    ProviderType.ANTHROPIC: ClaudeBackend,
    ProviderType.OLLAMA: OllamaBackend,
}

SPEC_FIELDS = ("max_context", "max_tokens", "auth_env", "base_url", "litellm_prefix")


@dataclass(frozen=True)
class ResolutionRule:
    """Regex over model names mapping to a provider family."""

    pattern: re.Pattern[str]
    provider: ProviderType


class BackendRegistry:
    """Static model table with provider defaults."""

    def __init__(self, data: dict[str, Any], ollama_url: str | None = None):
        if not isinstance(data, dict):
            raise RegistryError("Model registry must be a mapping")
        try:
            self._providers = self._parse_providers(data.get("providers") or {})
            if ollama_url:
                self._providers[ProviderType.OLLAMA]["base_url"] = ollama_url
            self._models = self._parse_models(data.get("models") or [])
            self._rules = self._parse_rules(data.get("rules") or [])
        except (KeyError, TypeError, ValueError, re.error) as e:
            raise RegistryError(f"Invalid model registry: {e}") from e

        logger.info(f"Loaded {len(self._models)} models, {len(self._rules)} rules")

    @classmethod
    def from_file(cls, path: Path = DEFAULT_REGISTRY_PATH, ollama_url: str | None = None) -> "BackendRegistry":
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise RegistryError(f"Cannot load model registry {path}: {e}") from e
        return cls(data or {}, ollama_url=ollama_url)

    def _parse_providers(self, raw: dict[str, Any]) -> dict[ProviderType, dict[str, Any]]:
        providers: dict[ProviderType, dict[str, Any]] = {p: {} for p in ProviderType}
        for key, defaults in raw.items():
            providers[ProviderType(key)] = {
                k: v for k, v in (defaults or {}).items() if k in SPEC_FIELDS
            }
        return providers

    def _parse_models(self, raw: list[dict[str, Any]]) -> dict[str, ModelSpec]:
        models: dict[str, ModelSpec] = {}
        for entry in raw:
            name = str(entry["name"])
            provider = ProviderType(entry["provider"])
            overrides = {k: v for k, v in entry.items() if k in SPEC_FIELDS}
            models[name] = self._build_spec(
                name, provider, remote_name=entry.get("remote_name"), **overrides
            )
        return models

    def _parse_rules(self, raw: list[dict[str, Any]]) -> list[ResolutionRule]:
        return [
            ResolutionRule(re.compile(rule["match"]), ProviderType(rule["provider"]))
            for rule in raw
        ]

    def _build_spec(
        self,
        name: str,
        provider: ProviderType,
        remote_name: str | None = None,
        **overrides: Any,
    ) -> ModelSpec:
        fields = {**self._providers[provider], **overrides}
        return ModelSpec(name=name, provider=provider, remote_name=remote_name or name, **fields)

    def spec_for(self, model_name: str) -> ModelSpec:
        """Get model spec by exact name or matching rule."""
        name = model_name.strip()
        if name in self._models:
            return self._models[name]
        for rule in self._rules:
            if rule.pattern.search(name):
                return self._build_spec(name, rule.provider)
        raise BackendNotFoundError(model_name)

    def resolve(self, model_name: str) -> ModelBackend:
        """Build the backend variant for a model name.

        Raises:
            BackendNotFoundError: if no entry or rule matches
        """
        spec = self.spec_for(model_name)
        backend_type = BACKEND_TYPES.get(spec.provider, LiteLLMBackend)
        logger.debug(f"Resolved {model_name} -> {spec.provider.value} ({backend_type.__name__})")
        return backend_type(spec)

    def is_known(self, model_name: str) -> bool:
        try:
            self.spec_for(model_name)
        except BackendNotFoundError:
            return False
        return True

    def list_models(self) -> list[tuple[ProviderType, str]]:
        """Listed models as (provider, name), in registry order."""
        return [(spec.provider, spec.name) for spec in self._models.values()]

    def model_names(self) -> list[str]:
        return list(self._models)


def create_registry(ollama_url: str | None = None) -> BackendRegistry:
    """Create registry from the packaged model table."""
    return BackendRegistry.from_file(DEFAULT_REGISTRY_PATH, ollama_url=ollama_url)
