"""Anthropic Claude provider implementation.

Public API (the "studs"):
    AnthropicAdapter: Anthropic Claude adapter
    ANTHROPIC_MODELS: Built-in Claude model catalog
    translate_anthropic_error: Map SDK exceptions onto the LLMError hierarchy
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

from anthropic import APIConnectionError, APIStatusError, APITimeoutError, AsyncAnthropic

from ..config import ProviderConfig
from ..exceptions import (
    LLMConnectionError,
    LLMError,
    LLMProviderError,
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

# Anthropic requires max_tokens on every request
DEFAULT_MAX_TOKENS = 1024

_CLAUDE_CAPABILITIES = ModelCapabilities(
    function_calling=True, vision=True, json_mode=False, max_tokens=200000
)
_CLAUDE_DEFAULTS = GenerationParams(temperature=0.7, max_tokens=4096)
_CLAUDE_PARAMS = ["temperature", "top_p", "top_k", "max_tokens", "stop_sequences"]

ANTHROPIC_MODELS: list[ModelDescriptor] = [
    ModelDescriptor(
        id="claude-sonnet-4-20250514",
        name="Claude Sonnet 4",
        provider="anthropic",
        capabilities=_CLAUDE_CAPABILITIES,
        default_params=_CLAUDE_DEFAULTS,
        supported_params=_CLAUDE_PARAMS,
        pricing=ModelPricing(input=0.003, output=0.015),
    ),
    ModelDescriptor(
        id="claude-3-opus-latest",
        name="Claude 3 Opus",
        provider="anthropic",
        capabilities=_CLAUDE_CAPABILITIES,
        default_params=_CLAUDE_DEFAULTS,
        supported_params=_CLAUDE_PARAMS,
        pricing=ModelPricing(input=0.015, output=0.075),
    ),
    ModelDescriptor(
        id="claude-3-5-sonnet-latest",
        name="Claude 3.5 Sonnet",
        provider="anthropic",
        capabilities=_CLAUDE_CAPABILITIES,
        default_params=_CLAUDE_DEFAULTS,
        supported_params=_CLAUDE_PARAMS,
        pricing=ModelPricing(input=0.003, output=0.015),
    ),
    ModelDescriptor(
        id="claude-3-5-haiku-latest",
        name="Claude 3.5 Haiku",
        provider="anthropic",
        capabilities=_CLAUDE_CAPABILITIES,
        default_params=_CLAUDE_DEFAULTS,
        supported_params=_CLAUDE_PARAMS,
        pricing=ModelPricing(input=0.0008, output=0.004),
    ),
]


def translate_anthropic_error(e: Exception) -> LLMError:
    """Map an anthropic SDK exception onto the LLMError hierarchy."""
    if isinstance(e, APIStatusError):
        return error_from_status(e.status_code, f"Anthropic error: {e.message}", e.body)
    if isinstance(e, APITimeoutError):
        return LLMTimeoutError(f"Anthropic request timed out: {e}")
    if isinstance(e, APIConnectionError):
        return LLMConnectionError(f"Anthropic connection failed: {e}")
    return LLMProviderError(f"Anthropic error: {e}")


def transform_messages(messages: list[ChatMessage]) -> tuple[str | None, list[dict[str, Any]]]:
    """Split system turns out and merge consecutive same-role turns.

    Anthropic takes the system prompt as a separate field and only accepts
    ``user``/``assistant`` turns. Function and tool results are sent as user
    turns. Ordering is preserved.
    """
    system_parts: list[str] = []
    formatted: list[dict[str, Any]] = []
    for msg in messages:
        if msg.role == "system":
            system_parts.append(msg.content)
            continue
        role = "assistant" if msg.role == "assistant" else "user"
        if formatted and formatted[-1]["role"] == role:
            formatted[-1]["content"] += f"\n\n{msg.content}"
        else:
            formatted.append({"role": role, "content": msg.content})
    system = "\n\n".join(system_parts) if system_parts else None
    return system, formatted


class AnthropicAdapter(BaseAdapter):
    """Anthropic Claude adapter.

    Supports Claude models via the Anthropic API.
    """

    provider_id = "anthropic"

    def __init__(self, model: ModelDescriptor, config: ProviderConfig) -> None:
        super().__init__(model, config)
        self._client = AsyncAnthropic(
            api_key=config.secret(),
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_retries=0,
            default_headers=config.headers or None,
        )

    @classmethod
    def validate_config(cls, config: ProviderConfig) -> list[str]:
        if not config.api_key:
            return ["API key is required for anthropic"]
        return []

    def validate_provider_params(
        self, params: GenerationParams, errors: list[str], warnings: list[str]
    ) -> None:
        if params.temperature is not None and not 0 <= params.temperature <= 1:
            errors.append("temperature must be between 0 and 1 for Anthropic")
        if params.top_k is not None and params.top_k < 1:
            errors.append("top_k must be at least 1")
        if params.max_tokens == 0:
            errors.append("max_tokens must be at least 1 for Anthropic")
        if params.presence_penalty is not None or params.frequency_penalty is not None:
            warnings.append("presence/frequency penalties are ignored by Anthropic")

    def normalize_params(self, params: GenerationParams) -> dict[str, Any]:
        normalized: dict[str, Any] = {
            "max_tokens": params.max_tokens if params.max_tokens is not None else DEFAULT_MAX_TOKENS
        }
        if params.temperature is not None:
            normalized["temperature"] = params.temperature
        if params.top_p is not None:
            normalized["top_p"] = params.top_p
        if params.top_k is not None:
            normalized["top_k"] = params.top_k
        if params.stop_sequences:
            normalized["stop_sequences"] = list(params.stop_sequences)
        normalized.update(params.provider_specific)
        return normalized

    def _build_kwargs(self, request: ChatRequest) -> dict[str, Any]:
        messages, params = self.prepare(request)
        system, formatted = transform_messages(messages)
        kwargs: dict[str, Any] = {"model": self.model.id, "messages": formatted, **params}
        if system:
            kwargs["system"] = system
        return kwargs

    async def chat(self, request: ChatRequest) -> ChatResponse:
        kwargs = self._build_kwargs(request)
        try:
            response = await self._client.messages.create(**kwargs)
        except Exception as e:
            raise translate_anthropic_error(e) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        tool_calls = [
            {"id": block.id, "name": block.name, "arguments": json.dumps(block.input)}
            for block in response.content
            if getattr(block, "type", "") == "tool_use"
        ]
        return ChatResponse(
            id=response.id,
            content=text,
            finish_reason=response.stop_reason,
            usage=TokenUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            ),
            tool_calls=tool_calls or None,
        )

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ResponseChunk]:
        kwargs = self._build_kwargs(request)
        message_id: str | None = None
        input_tokens = 0
        try:
            stream = await self._client.messages.create(**kwargs, stream=True)
            async for event in stream:
                if event.type == "message_start":
                    message_id = event.message.id
                    input_tokens = event.message.usage.input_tokens
                    yield ResponseChunk(id=message_id, role="assistant")
                elif event.type == "content_block_delta":
                    if getattr(event.delta, "type", "") == "text_delta":
                        yield ResponseChunk(id=message_id, content=event.delta.text)
                elif event.type == "message_delta":
                    output_tokens = event.usage.output_tokens
                    yield ResponseChunk(
                        id=message_id,
                        finish_reason=event.delta.stop_reason,
                        usage=TokenUsage(
                            prompt_tokens=input_tokens,
                            completion_tokens=output_tokens,
                            total_tokens=input_tokens + output_tokens,
                        ),
                    )
        except Exception as e:
            raise translate_anthropic_error(e) from e

    async def aclose(self) -> None:
        await self._client.close()


__all__ = [
    "AnthropicAdapter",
    "ANTHROPIC_MODELS",
    "translate_anthropic_error",
    "transform_messages",
]
