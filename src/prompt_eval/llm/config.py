"""Provider configuration and the configuration manager.

Public API (the "studs"):
    ProviderConfig: Credentials and transport options for one provider
    ConfigManager: Holds provider configs and answers "is this model usable"
"""

from __future__ import annotations

import logging
import os
import re
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

from .types import ModelDescriptor, ValidationResult

if TYPE_CHECKING:
    from .registry import ModelRegistry

_logger = logging.getLogger(__name__)

# Data-driven mapping: provider -> {config_field: env_var}
_PROVIDER_ENV_MAP: dict[str, dict[str, str]] = {
    "openai": {
        "api_key": "OPENAI_API_KEY",
        "base_url": "OPENAI_BASE_URL",
        "organization": "OPENAI_ORGANIZATION",
        "timeout_seconds": "OPENAI_TIMEOUT",
        "max_retries": "OPENAI_RETRIES",
        "enabled": "OPENAI_ENABLED",
        "models": "OPENAI_MODEL_LIST",
    },
    "google": {
        "api_key": "GOOGLE_API_KEY",
        "base_url": "GOOGLE_BASE_URL",
        "timeout_seconds": "GOOGLE_TIMEOUT",
        "max_retries": "GOOGLE_RETRIES",
        "enabled": "GOOGLE_ENABLED",
        "models": "GOOGLE_MODEL_LIST",
    },
    "anthropic": {
        "api_key": "ANTHROPIC_API_KEY",
        "base_url": "ANTHROPIC_BASE_URL",
        "timeout_seconds": "ANTHROPIC_TIMEOUT",
        "max_retries": "ANTHROPIC_RETRIES",
        "enabled": "ANTHROPIC_ENABLED",
        "models": "ANTHROPIC_MODEL_LIST",
    },
    "azure_openai": {
        "api_key": "AZURE_OPENAI_API_KEY",
        "base_url": "AZURE_OPENAI_ENDPOINT",
        "api_version": "AZURE_OPENAI_API_VERSION",
        "timeout_seconds": "AZURE_OPENAI_TIMEOUT",
        "max_retries": "AZURE_OPENAI_RETRIES",
        "enabled": "AZURE_OPENAI_ENABLED",
        "models": "AZURE_OPENAI_DEPLOYMENT_LIST",
    },
    "ollama": {
        "base_url": "OLLAMA_BASE_URL",
        "timeout_seconds": "OLLAMA_TIMEOUT",
        "max_retries": "OLLAMA_RETRIES",
        "enabled": "OLLAMA_ENABLED",
        "models": "OLLAMA_MODEL_LIST",
    },
}

# The env field whose presence marks a provider as configured
_PROVIDER_TRIGGER_FIELD: dict[str, str] = {
    "openai": "api_key",
    "google": "api_key",
    "anthropic": "api_key",
    "azure_openai": "base_url",
    "ollama": "base_url",
}

_API_VERSION_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}(-preview)?$")


class ProviderConfig(BaseModel):
    """Credentials and transport options for one provider.

    Attributes:
        provider: Provider id
        api_key: API key (optional for keyless or managed-identity providers)
        base_url: Custom endpoint; required for Azure OpenAI
        organization: OpenAI organization id
        api_version: Azure OpenAI API version
        timeout_seconds: Per-request timeout
        max_retries: Retry attempts after the first try
        headers: Extra request headers
        enabled: Disabled providers are treated as unconfigured
        models: Extra model names exposed for this provider
    """

    provider: str = Field(..., description="Provider id")
    api_key: SecretStr | None = Field(None, description="API key")
    base_url: str | None = Field(None, description="Custom endpoint URL")
    organization: str | None = Field(None, description="Organization id")
    api_version: str = Field("2024-06-01", description="Azure OpenAI API version")
    timeout_seconds: float = Field(90, ge=1, le=600, description="Request timeout in seconds")
    max_retries: int = Field(3, ge=0, le=10, description="Maximum retry attempts")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra request headers")
    enabled: bool = Field(True, description="Whether the provider may be used")
    models: list[str] = Field(default_factory=list, description="Extra model names")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str | None) -> str | None:
        """Validate base_url is an http(s) URL."""
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must start with 'http://' or 'https://': {v!r}")
        return v

    @field_validator("api_version")
    @classmethod
    def validate_api_version(cls, v: str) -> str:
        """Validate api_version matches YYYY-MM-DD or YYYY-MM-DD-preview format."""
        if not _API_VERSION_PATTERN.match(v):
            raise ValueError(
                f"Invalid api_version format: {v!r}. Expected YYYY-MM-DD or YYYY-MM-DD-preview"
            )
        return v

    @field_validator("models", mode="before")
    @classmethod
    def split_model_list(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [name.strip() for name in v.split(",") if name.strip()]
        return v

    def secret(self) -> str | None:
        """Return the raw API key, if any."""
        return self.api_key.get_secret_value() if self.api_key else None

    def cache_key(self) -> str:
        """Serialized form used to key adapter instances, secret included."""
        data = self.model_dump(mode="json", exclude={"api_key"})
        data["api_key"] = self.secret()
        return repr(sorted(data.items()))

    @classmethod
    def from_env(cls, provider: str) -> ProviderConfig | None:
        """Create a ProviderConfig from environment variables.

        Uses _PROVIDER_ENV_MAP for data-driven construction. Returns None
        when the provider's trigger variable is not set.

        Raises:
            ValueError: If provider is unknown
        """
        if provider not in _PROVIDER_ENV_MAP:
            raise ValueError(f"Unknown provider: {provider}")

        env_map = _PROVIDER_ENV_MAP[provider]
        trigger = _PROVIDER_TRIGGER_FIELD[provider]
        if not os.environ.get(env_map[trigger]):
            return None

        kwargs: dict[str, Any] = {"provider": provider}
        for field, env_var in env_map.items():
            value = os.environ.get(env_var)
            if value is None or value == "":
                continue
            if field == "enabled":
                kwargs[field] = value.strip().lower() != "false"
            else:
                kwargs[field] = value

        return cls(**kwargs)


class ConfigManager:
    """Holds provider configs and resolves model ids to them.

    This is the model configuration interface the rest of the system uses:
    a model id is "available" when it is registered and its provider has an
    enabled configuration.
    """

    def __init__(self, registry: ModelRegistry) -> None:
        self._registry = registry
        self._configs: dict[str, ProviderConfig] = {}
        self._lock = threading.Lock()
        self._listeners: list[Callable[[str], None]] = []

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    def add_listener(self, listener: Callable[[str], None]) -> None:
        """Register a callback invoked with the provider id on every change."""
        self._listeners.append(listener)

    def _notify(self, provider: str) -> None:
        for listener in self._listeners:
            listener(provider)

    def load_from_env(self) -> list[str]:
        """Load every provider configured through environment variables.

        Returns:
            Provider ids that were loaded
        """
        loaded = []
        for provider in _PROVIDER_ENV_MAP:
            config = ProviderConfig.from_env(provider)
            if config is None:
                continue
            if not config.enabled:
                _logger.debug("Provider %s disabled via environment", provider)
                continue
            self.set_provider_config(config)
            loaded.append(provider)
        _logger.info("Loaded providers from environment: %s", ", ".join(loaded) or "none")
        return loaded

    def load_from_file(self, path: Path | str) -> list[str]:
        """Load provider configs from a YAML file.

        The file holds a mapping ``providers: {<id>: {<ProviderConfig fields>}}``.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file is not a valid provider mapping
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("providers"), dict):
            raise ValueError("Config file must contain a 'providers' mapping")

        loaded = []
        for provider, raw in data["providers"].items():
            try:
                config = ProviderConfig(provider=provider, **(raw or {}))
            except ValidationError as e:
                raise ValueError(f"Invalid config for provider {provider!r}: {e}") from e
            if config.enabled:
                self.set_provider_config(config)
                loaded.append(provider)
        return loaded

    def set_provider_config(self, config: ProviderConfig) -> None:
        """Install a provider config and register any extra models it lists."""
        with self._lock:
            self._configs[config.provider] = config
        for name in config.models:
            if self._registry.get_model(f"{config.provider}:{name}") is None:
                descriptor = self._registry.make_descriptor(config.provider, name)
                if descriptor is not None:
                    self._registry.register_model(descriptor)
        self._notify(config.provider)

    def get_provider_config(self, provider: str) -> ProviderConfig | None:
        with self._lock:
            return self._configs.get(provider)

    def update_config(self, provider: str, **updates: Any) -> ProviderConfig:
        """Update fields of an existing provider config.

        Raises:
            KeyError: If the provider has no config
            pydantic.ValidationError: If the updated config is invalid
        """
        with self._lock:
            existing = self._configs.get(provider)
            if existing is None:
                raise KeyError(f"No configuration for provider: {provider}")
            data = existing.model_dump()
            if existing.api_key is not None:
                data["api_key"] = existing.secret()
            data.update(updates)
            updated = ProviderConfig(**data)
            self._configs[provider] = updated
        self._notify(provider)
        return updated

    def remove_provider(self, provider: str) -> None:
        with self._lock:
            self._configs.pop(provider, None)
        self._notify(provider)

    def clear(self) -> None:
        with self._lock:
            providers = list(self._configs)
            self._configs.clear()
        for provider in providers:
            self._notify(provider)

    def get_model_config(self, model_id: str) -> ProviderConfig | None:
        """Return the config for a model's provider, or None if unavailable."""
        model = self._registry.get_model(model_id)
        if model is None:
            return None
        config = self.get_provider_config(model.provider)
        if config is None or not config.enabled:
            return None
        return config

    def is_model_available(self, model_id: str) -> bool:
        return self.get_model_config(model_id) is not None

    def available_providers(self) -> list[str]:
        with self._lock:
            configured = {p for p, c in self._configs.items() if c.enabled}
        return [p.id for p in self._registry.providers() if p.id in configured]

    def available_models(self, provider: str | None = None) -> list[ModelDescriptor]:
        providers = self.available_providers()
        if provider is not None:
            providers = [p for p in providers if p == provider]
        return [m for p in providers for m in self._registry.models_by_provider(p)]

    def validate_model_config(self, model_id: str) -> ValidationResult:
        """Check that a model exists and its provider config is usable."""
        model = self._registry.get_model(model_id)
        if model is None:
            return ValidationResult(is_valid=False, errors=[f"Model not found: {model_id}"])

        config = self.get_provider_config(model.provider)
        if config is None or not config.enabled:
            return ValidationResult(
                is_valid=False,
                errors=[f"Provider configuration not found: {model.provider}"],
            )

        descriptor = self._registry.get_provider(model.provider)
        if descriptor is None or descriptor.adapter_class is None:
            return ValidationResult(
                is_valid=False, errors=[f"Provider factory not found: {model.provider}"]
            )

        errors = descriptor.adapter_class.validate_config(config)
        return ValidationResult(is_valid=not errors, errors=errors)

    def export_config(self, include_secrets: bool = False) -> dict[str, dict[str, Any]]:
        """Export all provider configs as plain dicts."""
        exported: dict[str, dict[str, Any]] = {}
        with self._lock:
            for provider, config in self._configs.items():
                data = config.model_dump(mode="json")
                if include_secrets:
                    data["api_key"] = config.secret()
                elif config.api_key is not None:
                    data["api_key"] = "***"
                exported[provider] = data
        return exported

    def import_config(self, configs: dict[str, dict[str, Any]]) -> None:
        for provider, raw in configs.items():
            self.set_provider_config(ProviderConfig(**{**raw, "provider": provider}))

    def config_stats(self) -> dict[str, int]:
        return {
            "total_providers": len(self._registry.providers()),
            "available_providers": len(self.available_providers()),
            "total_models": len(self._registry.all_models()),
            "available_models": len(self.available_models()),
        }


__all__ = ["ProviderConfig", "ConfigManager"]
