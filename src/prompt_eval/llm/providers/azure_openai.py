"""Azure OpenAI provider implementation.

Public API (the "studs"):
    AzureOpenAIAdapter: Azure OpenAI adapter
"""

from __future__ import annotations

from typing import Any

from azure.identity import DefaultAzureCredential, get_bearer_token_provider
from openai import AsyncAzureOpenAI

from ..config import ProviderConfig
from ..types import GenerationParams, ModelCapabilities
from .openai import OpenAIAdapter

AZURE_DEFAULT_CAPABILITIES = ModelCapabilities(
    function_calling=True, vision=True, json_mode=True, max_tokens=128000
)
AZURE_DEFAULT_PARAMS = GenerationParams(temperature=1.0, top_p=1.0, max_tokens=4096)


class AzureOpenAIAdapter(OpenAIAdapter):
    """Azure OpenAI adapter.

    The model id is the deployment name. Uses DefaultAzureCredential for
    managed identity when no API key is configured.
    """

    provider_id = "azure_openai"
    display_name = "Azure OpenAI"

    def _build_client(self, config: ProviderConfig) -> Any:
        if not config.base_url:
            raise ValueError("endpoint is required for Azure OpenAI provider")

        common: dict[str, Any] = {
            "api_version": config.api_version,
            "azure_endpoint": config.base_url,
            "timeout": config.timeout_seconds,
            "max_retries": 0,
            "default_headers": config.headers or None,
        }
        api_key = config.secret()
        if api_key:
            return AsyncAzureOpenAI(api_key=api_key, **common)

        credential = DefaultAzureCredential()
        token_provider = get_bearer_token_provider(
            credential, "https://cognitiveservices.azure.com/.default"
        )
        return AsyncAzureOpenAI(azure_ad_token_provider=token_provider, **common)

    @classmethod
    def validate_config(cls, config: ProviderConfig) -> list[str]:
        if not config.base_url:
            return ["endpoint is required for azure_openai provider"]
        if not config.base_url.startswith("https://"):
            return [f"endpoint must start with 'https://': {config.base_url!r}"]
        return []


__all__ = ["AzureOpenAIAdapter", "AZURE_DEFAULT_CAPABILITIES", "AZURE_DEFAULT_PARAMS"]
