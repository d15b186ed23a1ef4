"""Model registry - maps logical model ids to providers and adapters.

Public API (the "studs"):
    ProviderDescriptor: A provider, its model catalog and adapter class
    ModelRegistry: Registry of providers and models
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ModelNotFoundError, NoFactoryError
from .types import GenerationParams, ModelCapabilities, ModelDescriptor

if TYPE_CHECKING:
    from .config import ProviderConfig
    from .providers.base import BaseAdapter

_logger = logging.getLogger(__name__)


class ProviderDescriptor(BaseModel):
    """A provider, its model catalog and the adapter class that serves it.

    ``adapter_class`` may be None for providers known by metadata only;
    creating an adapter for one of their models fails with NoFactoryError.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    name: str
    description: str = ""
    website: str | None = None
    models: list[ModelDescriptor] = Field(default_factory=list)
    adapter_class: type | None = None
    default_capabilities: ModelCapabilities = Field(default_factory=ModelCapabilities)
    default_params: GenerationParams = Field(default_factory=GenerationParams)


class ModelRegistry:
    """Registry of providers and the models they serve.

    Model ids may be bare (``gpt-4o``) or provider-qualified
    (``openai:gpt-4o``). Bare ids resolve to the first provider, in
    registration order, that lists the model.
    """

    def __init__(self) -> None:
        self._providers: dict[str, ProviderDescriptor] = {}
        self._models: dict[str, dict[str, ModelDescriptor]] = {}
        self._lock = threading.RLock()

    def register_provider(self, descriptor: ProviderDescriptor) -> None:
        """Register a provider. Re-registering an id replaces the previous entry."""
        with self._lock:
            self._providers[descriptor.id] = descriptor
            self._models[descriptor.id] = {m.id: m for m in descriptor.models}
        _logger.debug("Registered provider %s (%d models)", descriptor.id, len(descriptor.models))

    def register_model(self, model: ModelDescriptor) -> None:
        """Add or replace a single model under an already registered provider.

        Raises:
            NoFactoryError: If the model's provider is not registered
        """
        with self._lock:
            if model.provider not in self._providers:
                raise NoFactoryError(f"Provider {model.provider} is not registered")
            self._models[model.provider][model.id] = model

    def make_descriptor(self, provider: str, model_name: str) -> ModelDescriptor | None:
        """Build a descriptor for an unlisted model using the provider defaults."""
        descriptor = self.get_provider(provider)
        if descriptor is None:
            return None
        return ModelDescriptor(
            id=model_name,
            name=model_name,
            provider=provider,
            capabilities=descriptor.default_capabilities,
            default_params=descriptor.default_params,
        )

    def providers(self) -> list[ProviderDescriptor]:
        with self._lock:
            return list(self._providers.values())

    def get_provider(self, provider: str) -> ProviderDescriptor | None:
        with self._lock:
            return self._providers.get(provider)

    def all_models(self) -> list[ModelDescriptor]:
        with self._lock:
            return [m for models in self._models.values() for m in models.values()]

    def models_by_provider(self, provider: str) -> list[ModelDescriptor]:
        with self._lock:
            return list(self._models.get(provider, {}).values())

    def get_model(self, model_id: str) -> ModelDescriptor | None:
        """Look up a model by bare or provider-qualified id."""
        with self._lock:
            if ":" in model_id:
                provider, _, name = model_id.partition(":")
                if provider in self._models:
                    return self._models[provider].get(name)
            for models in self._models.values():
                if model_id in models:
                    return models[model_id]
        return None

    def create_adapter(self, model_id: str, config: ProviderConfig) -> BaseAdapter:
        """Construct an adapter for a model.

        Raises:
            ModelNotFoundError: If the model id is unknown
            NoFactoryError: If the model's provider has no adapter class
        """
        model = self.get_model(model_id)
        if model is None:
            raise ModelNotFoundError(f"Model {model_id} not found")

        provider = self.get_provider(model.provider)
        if provider is None or provider.adapter_class is None:
            raise NoFactoryError(f"Factory for provider {model.provider} not found")

        return provider.adapter_class(model, config)


__all__ = ["ProviderDescriptor", "ModelRegistry"]
