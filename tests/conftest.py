"""Shared test fixtures."""

import pytest

from prompt_eval.llm.config import _PROVIDER_ENV_MAP, ProviderConfig
from prompt_eval.llm.providers.base import BaseAdapter
from prompt_eval.llm.registry import ModelRegistry, ProviderDescriptor
from prompt_eval.llm.service import ModelService
from prompt_eval.llm.types import ModelDescriptor, ModelPricing


@pytest.fixture(autouse=True)
def _clean_provider_env(monkeypatch):
    """Keep provider credentials from the developer's shell out of tests."""
    for env_map in _PROVIDER_ENV_MAP.values():
        for env_var in env_map.values():
            monkeypatch.delenv(env_var, raising=False)


@pytest.fixture
def make_service():
    """Factory for a ModelService backed by a scripted ``fake`` provider.

    ``chat`` is an async callable taking the request; ``chunks`` is the list
    of ResponseChunks the stream yields. ``stream``, when given, is an async
    generator function that replaces the scripted stream.
    """

    def factory(chat=None, chunks=None, pricing=None, max_retries=2, stream=None):
        class ScriptedAdapter(BaseAdapter):
            provider_id = "fake"

            async def chat(self, request):
                return await chat(request)

            def chat_stream(self, request):
                if stream is not None:
                    return stream(request)
                return self._scripted_stream()

            async def _scripted_stream(self):
                for chunk in chunks or []:
                    yield chunk

            def normalize_params(self, params):
                return params.model_dump(exclude_none=True)

        registry = ModelRegistry()
        registry.register_provider(
            ProviderDescriptor(
                id="fake",
                name="Fake",
                models=[
                    ModelDescriptor(
                        id="fake-model",
                        name="Fake Model",
                        provider="fake",
                        pricing=pricing or ModelPricing(input=0.001, output=0.002),
                    )
                ],
                adapter_class=ScriptedAdapter,
            )
        )
        service = ModelService(registry, base_delay=0)
        service.config_manager.set_provider_config(
            ProviderConfig(provider="fake", max_retries=max_retries)
        )
        return service

    return factory
