"""OpenAI provider implementation.

Public API (the "studs"):
    OpenAIAdapter: OpenAI (and OpenAI-compatible endpoint) adapter
    OPENAI_MODELS: Built-in OpenAI model catalog
    translate_openai_error: Map SDK exceptions onto the LLMError hierarchy
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from ..config import ProviderConfig
from ..exceptions import (
    LLMConnectionError,
    LLMError,
    LLMProviderError,
    LLMResponseError,
    LLMTimeoutError,
    error_from_status,
)
from ..types import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    GenerationParams,
    ModelCapabilities,
    ModelDescriptor,
    ModelPricing,
    ResponseChunk,
    TokenUsage,
)
from .base import BaseAdapter

_logger = logging.getLogger(__name__)

_OPENAI_DEFAULTS = GenerationParams(temperature=1.0, top_p=1.0, max_tokens=4096)
_OPENAI_PARAMS = [
    "temperature",
    "top_p",
    "max_tokens",
    "stop_sequences",
    "presence_penalty",
    "frequency_penalty",
]
_OPENAI_LANGUAGES = ["en", "zh", "ja", "ko", "fr", "de", "es"]

OPENAI_MODELS: list[ModelDescriptor] = [
    ModelDescriptor(
        id="gpt-4o",
        name="GPT-4o",
        provider="openai",
        capabilities=ModelCapabilities(
            function_calling=True,
            vision=True,
            json_mode=True,
            max_tokens=128000,
            supported_languages=_OPENAI_LANGUAGES,
        ),
        default_params=_OPENAI_DEFAULTS,
        supported_params=_OPENAI_PARAMS,
        pricing=ModelPricing(input=0.0025, output=0.01),
    ),
    ModelDescriptor(
        id="gpt-4o-mini",
        name="GPT-4o Mini",
        provider="openai",
        capabilities=ModelCapabilities(
            function_calling=True,
            vision=True,
            json_mode=True,
            max_tokens=128000,
            supported_languages=_OPENAI_LANGUAGES,
        ),
        default_params=_OPENAI_DEFAULTS,
        supported_params=_OPENAI_PARAMS,
        pricing=ModelPricing(input=0.00015, output=0.0006),
    ),
    ModelDescriptor(
        id="gpt-3.5-turbo",
        name="GPT-3.5 Turbo",
        provider="openai",
        capabilities=ModelCapabilities(
            function_calling=True,
            json_mode=True,
            max_tokens=16385,
            supported_languages=_OPENAI_LANGUAGES,
        ),
        default_params=_OPENAI_DEFAULTS,
        supported_params=_OPENAI_PARAMS,
        pricing=ModelPricing(input=0.0005, output=0.0015),
    ),
]


def translate_openai_error(e: Exception, provider: str = "OpenAI") -> LLMError:
    """Map an openai SDK exception onto the LLMError hierarchy."""
    if isinstance(e, APIStatusError):
        return error_from_status(e.status_code, f"{provider} error: {e.message}", e.body)
    if isinstance(e, APITimeoutError):
        return LLMTimeoutError(f"{provider} request timed out: {e}")
    if isinstance(e, APIConnectionError):
        return LLMConnectionError(f"{provider} connection failed: {e}")
    return LLMProviderError(f"{provider} error: {e}")


def transform_messages(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    formatted = []
    for msg in messages:
        entry: dict[str, Any] = {"role": msg.role, "content": msg.content}
        if msg.name:
            entry["name"] = msg.name
        if msg.function_call:
            entry["function_call"] = msg.function_call
        if msg.tool_calls:
            entry["tool_calls"] = msg.tool_calls
        formatted.append(entry)
    return formatted


def _usage(raw: Any) -> TokenUsage | None:
    if raw is None:
        return None
    return TokenUsage(
        prompt_tokens=raw.prompt_tokens or 0,
        completion_tokens=raw.completion_tokens or 0,
        total_tokens=raw.total_tokens or 0,
    )


def _dump(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value.model_dump() if hasattr(value, "model_dump") else value


class OpenAIAdapter(BaseAdapter):
    """OpenAI adapter.

    Also serves OpenAI-compatible endpoints when ``base_url`` is set.
    SDK-level retries are disabled; the model service owns retrying.
    """

    provider_id = "openai"
    display_name = "OpenAI"

    def __init__(self, model: ModelDescriptor, config: ProviderConfig) -> None:
        super().__init__(model, config)
        self._client = self._build_client(config)

    def _build_client(self, config: ProviderConfig) -> Any:
        return AsyncOpenAI(
            api_key=config.secret(),
            organization=config.organization,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_retries=0,
            default_headers=config.headers or None,
        )

    @classmethod
    def validate_config(cls, config: ProviderConfig) -> list[str]:
        key = config.secret()
        if not key:
            return ["API key is required for openai"]
        if not config.base_url and not key.startswith("sk-"):
            return ['OpenAI API key must start with "sk-"']
        return []

    def validate_provider_params(
        self, params: GenerationParams, errors: list[str], warnings: list[str]
    ) -> None:
        if params.presence_penalty is not None and not -2 <= params.presence_penalty <= 2:
            errors.append("presence_penalty must be between -2 and 2")
        if params.frequency_penalty is not None and not -2 <= params.frequency_penalty <= 2:
            errors.append("frequency_penalty must be between -2 and 2")
        if params.top_k is not None:
            warnings.append("top_k is ignored by OpenAI")

    def normalize_params(self, params: GenerationParams) -> dict[str, Any]:
        normalized: dict[str, Any] = {}
        if params.temperature is not None:
            normalized["temperature"] = params.temperature
        if params.top_p is not None:
            normalized["top_p"] = params.top_p
        if params.max_tokens is not None:
            normalized["max_tokens"] = params.max_tokens
        if params.stop_sequences:
            normalized["stop"] = list(params.stop_sequences)
        if params.presence_penalty is not None:
            normalized["presence_penalty"] = params.presence_penalty
        if params.frequency_penalty is not None:
            normalized["frequency_penalty"] = params.frequency_penalty
        # logit_bias, seed and friends pass straight through
        normalized.update(params.provider_specific)
        return normalized

    def _build_kwargs(self, request: ChatRequest) -> dict[str, Any]:
        messages, params = self.prepare(request)
        kwargs: dict[str, Any] = {
            "model": self.model.id,
            "messages": transform_messages(messages),
            **params,
        }
        if request.functions:
            kwargs["functions"] = [f.model_dump() for f in request.functions]
        if request.tools:
            kwargs["tools"] = [t.model_dump() for t in request.tools]
        return kwargs

    async def chat(self, request: ChatRequest) -> ChatResponse:
        kwargs = self._build_kwargs(request)
        try:
            response = await self._client.chat.completions.create(**kwargs, stream=False)
        except Exception as e:
            raise translate_openai_error(e, self.display_name) from e

        if not response.choices:
            raise LLMResponseError(f"{self.display_name} returned empty choices")
        choice = response.choices[0]
        return ChatResponse(
            id=response.id,
            content=choice.message.content or "",
            finish_reason=choice.finish_reason,
            usage=_usage(response.usage),
            function_call=_dump(choice.message.function_call),
            tool_calls=_dump(choice.message.tool_calls),
        )

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ResponseChunk]:
        kwargs = self._build_kwargs(request)
        if self._config.base_url is None:
            kwargs["stream_options"] = {"include_usage": True}
        try:
            stream = await self._client.chat.completions.create(**kwargs, stream=True)
            async for event in stream:
                if not event.choices:
                    if event.usage is not None:
                        yield ResponseChunk(id=event.id, usage=_usage(event.usage))
                    continue
                choice = event.choices[0]
                yield ResponseChunk(
                    id=event.id,
                    content=choice.delta.content or "",
                    role=choice.delta.role,
                    finish_reason=choice.finish_reason,
                    usage=_usage(getattr(event, "usage", None)),
                    function_call=_dump(choice.delta.function_call),
                    tool_calls=_dump(choice.delta.tool_calls),
                )
        except Exception as e:
            raise translate_openai_error(e, self.display_name) from e

    async def aclose(self) -> None:
        await self._client.close()


__all__ = ["OpenAIAdapter", "OPENAI_MODELS", "translate_openai_error", "transform_messages"]
