"""Ollama provider implementation.

Local models served by an Ollama daemon. Streaming responses are
newline-delimited JSON objects.

Public API (the "studs"):
    OllamaAdapter: Ollama adapter
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from typing import Any

from ..config import ProviderConfig
from ..exceptions import LLMProviderError
from ..streaming import NDJSONParser
from ..types import ChatRequest, ChatResponse, GenerationParams, ResponseChunk, TokenUsage
from .http import HTTPAdapter


def _usage(data: dict[str, Any]) -> TokenUsage | None:
    if "prompt_eval_count" not in data and "eval_count" not in data:
        return None
    prompt = data.get("prompt_eval_count", 0)
    completion = data.get("eval_count", 0)
    return TokenUsage(
        prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion
    )


def decode_stream_event(data: dict[str, Any]) -> ResponseChunk | None:
    if "error" in data:
        raise LLMProviderError(f"Ollama stream error: {data['error']}")
    message = data.get("message") or {}
    done = data.get("done", False)
    return ResponseChunk(
        content=message.get("content", ""),
        role=message.get("role"),
        finish_reason=(data.get("done_reason") or "stop") if done else None,
        usage=_usage(data) if done else None,
    )


class OllamaAdapter(HTTPAdapter):
    """Adapter for a local Ollama server. No credentials required."""

    provider_id = "ollama"
    default_base_url = "http://localhost:11434"

    @classmethod
    def validate_config(cls, config: ProviderConfig) -> list[str]:
        return []

    def normalize_params(self, params: GenerationParams) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if params.temperature is not None:
            options["temperature"] = params.temperature
        if params.top_p is not None:
            options["top_p"] = params.top_p
        if params.top_k is not None:
            options["top_k"] = params.top_k
        if params.max_tokens is not None:
            options["num_predict"] = params.max_tokens
        if params.stop_sequences:
            options["stop"] = list(params.stop_sequences)
        if params.presence_penalty is not None:
            options["presence_penalty"] = params.presence_penalty
        if params.frequency_penalty is not None:
            options["frequency_penalty"] = params.frequency_penalty
        options.update(params.provider_specific)
        return options

    def _build_payload(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        messages, options = self.prepare(request)
        return {
            "model": self.model.id,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "options": options,
            "stream": stream,
        }

    async def chat(self, request: ChatRequest) -> ChatResponse:
        data = await self.post_json("api/chat", self._build_payload(request, stream=False))
        message = data.get("message") or {}
        return ChatResponse(
            id=data.get("created_at") or str(time.time_ns()),
            content=message.get("content", ""),
            finish_reason=data.get("done_reason") or "stop",
            usage=_usage(data),
        )

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ResponseChunk]:
        payload = self._build_payload(request, stream=True)
        async for chunk in self.stream_json("api/chat", payload, NDJSONParser(decode_stream_event)):
            yield chunk


__all__ = ["OllamaAdapter"]
