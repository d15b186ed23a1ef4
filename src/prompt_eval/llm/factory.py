"""Adapter construction: the default provider registry and the adapter cache.

Public API (the "studs"):
    create_default_registry: Registry populated with the built-in providers
    AdapterCache: Thread-safe cache of live adapters keyed by model and config
"""

from __future__ import annotations

import logging
import threading

from .config import ProviderConfig
from .providers.base import BaseAdapter
from .registry import ModelRegistry, ProviderDescriptor
from .types import GenerationParams, ModelCapabilities

_logger = logging.getLogger(__name__)


def create_default_registry() -> ModelRegistry:
    """Create a registry holding every built-in provider.

    Azure OpenAI and Ollama ship no model catalog; their models come from
    the provider config's ``models`` list (deployment names, local tags).

    Example:
        >>> registry = create_default_registry()
        >>> registry.get_model("openai:gpt-4o").provider
        'openai'
    """
    from .providers.anthropic import ANTHROPIC_MODELS, AnthropicAdapter
    from .providers.azure_openai import (
        AZURE_DEFAULT_CAPABILITIES,
        AZURE_DEFAULT_PARAMS,
        AzureOpenAIAdapter,
    )
    from .providers.gemini import GEMINI_MODELS, GeminiAdapter
    from .providers.ollama import OllamaAdapter
    from .providers.openai import OPENAI_MODELS, OpenAIAdapter

    registry = ModelRegistry()
    registry.register_provider(
        ProviderDescriptor(
            id="openai",
            name="OpenAI",
            description="GPT models via the OpenAI API",
            website="https://platform.openai.com",
            models=OPENAI_MODELS,
            adapter_class=OpenAIAdapter,
        )
    )
    registry.register_provider(
        ProviderDescriptor(
            id="google",
            name="Google Gemini",
            description="Gemini models via the Generative Language API",
            website="https://ai.google.dev",
            models=GEMINI_MODELS,
            adapter_class=GeminiAdapter,
        )
    )
    registry.register_provider(
        ProviderDescriptor(
            id="anthropic",
            name="Anthropic",
            description="Claude models via the Anthropic API",
            website="https://www.anthropic.com",
            models=ANTHROPIC_MODELS,
            adapter_class=AnthropicAdapter,
        )
    )
    registry.register_provider(
        ProviderDescriptor(
            id="azure_openai",
            name="Azure OpenAI",
            description="OpenAI models deployed on Azure",
            website="https://azure.microsoft.com/products/ai-services/openai-service",
            adapter_class=AzureOpenAIAdapter,
            default_capabilities=AZURE_DEFAULT_CAPABILITIES,
            default_params=AZURE_DEFAULT_PARAMS,
        )
    )
    registry.register_provider(
        ProviderDescriptor(
            id="ollama",
            name="Ollama",
            description="Local models served by Ollama",
            website="https://ollama.com",
            adapter_class=OllamaAdapter,
            default_capabilities=ModelCapabilities(max_tokens=8192),
            default_params=GenerationParams(temperature=0.8, max_tokens=2048),
        )
    )
    return registry


class AdapterCache:
    """Live adapters keyed by ``(model_id, config.cache_key())``.

    A config change produces a new key, so a stale adapter is never handed
    out for a changed config. ``clear`` drops entries for a provider when its
    config changes so the old adapters can be closed.
    """

    def __init__(self, registry: ModelRegistry) -> None:
        self._registry = registry
        self._adapters: dict[tuple[str, str], BaseAdapter] = {}
        self._lock = threading.Lock()

    def get_adapter(self, model_id: str, config: ProviderConfig) -> BaseAdapter:
        """Return the cached adapter for this model and config, creating it once.

        Raises:
            ModelNotFoundError: If the model id is unknown
            NoFactoryError: If the model's provider has no adapter class
        """
        key = (model_id, config.cache_key())
        with self._lock:
            adapter = self._adapters.get(key)
            if adapter is not None:
                _logger.debug("Adapter cache hit for %s", model_id)
                return adapter
            _logger.debug("Adapter cache miss for %s", model_id)
            adapter = self._registry.create_adapter(model_id, config)
            self._adapters[key] = adapter
            return adapter

    def clear(self, model_id: str | None = None, provider: str | None = None) -> list[BaseAdapter]:
        """Drop cached adapters matching the filters (all when none given).

        Returns:
            The removed adapters, so the caller may close them
        """
        with self._lock:
            removed_keys = [
                key
                for key, adapter in self._adapters.items()
                if (model_id is None or key[0] == model_id)
                and (provider is None or adapter.model.provider == provider)
            ]
            return [self._adapters.pop(key) for key in removed_keys]

    def __len__(self) -> int:
        with self._lock:
            return len(self._adapters)

    async def aclose_all(self) -> None:
        for adapter in self.clear():
            await adapter.aclose()


__all__ = ["create_default_registry", "AdapterCache"]
