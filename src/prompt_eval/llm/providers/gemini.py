"""Google Gemini provider implementation.

Talks to the Generative Language REST API directly. Streaming uses
``streamGenerateContent?alt=sse`` and the SSE frame parser.

Public API (the "studs"):
    GeminiAdapter: Gemini adapter
    GEMINI_MODELS: Built-in Gemini model catalog
"""

from __future__ import annotations

import json
import time
from collections.abc import AsyncIterator
from typing import Any

from ..config import ProviderConfig
from ..streaming import SSEParser
from ..types import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    GenerationParams,
    ModelCapabilities,
    ModelDescriptor,
    ResponseChunk,
    TokenUsage,
)
from .http import HTTPAdapter

_GEMINI_CAPABILITIES = ModelCapabilities(
    streaming=True,
    function_calling=True,
    vision=True,
    json_mode=True,
    max_tokens=1048576,
    supported_languages=["en", "zh", "ja", "ko", "fr", "de", "es"],
)
_GEMINI_DEFAULTS = GenerationParams(temperature=1.0, top_p=1.0, max_tokens=8192)
_GEMINI_PARAMS = ["temperature", "top_p", "top_k", "max_tokens", "stop_sequences"]

GEMINI_MODELS: list[ModelDescriptor] = [
    ModelDescriptor(
        id="gemini-2.5-flash",
        name="Gemini 2.5 Flash",
        provider="google",
        capabilities=_GEMINI_CAPABILITIES,
        default_params=_GEMINI_DEFAULTS,
        supported_params=_GEMINI_PARAMS,
    ),
    ModelDescriptor(
        id="gemini-2.5-pro",
        name="Gemini 2.5 Pro",
        provider="google",
        capabilities=_GEMINI_CAPABILITIES.model_copy(update={"max_tokens": 2097152}),
        default_params=_GEMINI_DEFAULTS,
        supported_params=_GEMINI_PARAMS,
    ),
    ModelDescriptor(
        id="gemini-1.5-flash",
        name="Gemini 1.5 Flash",
        provider="google",
        capabilities=_GEMINI_CAPABILITIES,
        default_params=_GEMINI_DEFAULTS,
        supported_params=_GEMINI_PARAMS,
    ),
]


def transform_messages(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    """Map chat turns onto Gemini ``contents``.

    Gemini has only ``user`` and ``model`` roles. System turns become user
    parts prefixed ``System:``; consecutive turns landing on the same role
    are merged into one content with several parts, in order.
    """
    contents: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "assistant":
            role, text = "model", message.content
        elif message.role == "system":
            role, text = "user", f"System: {message.content}"
        else:
            role, text = "user", message.content

        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"].append({"text": text})
        else:
            contents.append({"role": role, "parts": [{"text": text}]})
    return contents


def _parse_candidate(data: dict[str, Any]) -> tuple[str, str | None, dict[str, Any] | None]:
    candidate = data["candidates"][0]
    parts = (candidate.get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts)
    function_call = None
    for part in parts:
        if "functionCall" in part:
            call = part["functionCall"]
            function_call = {"name": call["name"], "arguments": json.dumps(call.get("args", {}))}
            break
    return text, candidate.get("finishReason"), function_call


def _parse_usage(data: dict[str, Any]) -> TokenUsage | None:
    meta = data.get("usageMetadata")
    if not meta:
        return None
    return TokenUsage(
        prompt_tokens=meta.get("promptTokenCount", 0),
        completion_tokens=meta.get("candidatesTokenCount", 0),
        total_tokens=meta.get("totalTokenCount", 0),
    )


def decode_stream_event(data: dict[str, Any]) -> ResponseChunk | None:
    """Turn one streamed ``GenerateContentResponse`` into a chunk."""
    if not data.get("candidates"):
        usage = _parse_usage(data)
        return ResponseChunk(usage=usage) if usage else None
    text, finish_reason, function_call = _parse_candidate(data)
    return ResponseChunk(
        content=text,
        role="assistant",
        finish_reason=finish_reason,
        usage=_parse_usage(data),
        function_call=function_call,
    )


class GeminiAdapter(HTTPAdapter):
    """Google Gemini adapter."""

    provider_id = "google"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    @classmethod
    def validate_config(cls, config: ProviderConfig) -> list[str]:
        if not config.api_key:
            return ["API key is required for google"]
        return []

    def auth_headers(self) -> dict[str, str]:
        key = self._config.secret()
        return {"x-goog-api-key": key} if key else {}

    def validate_provider_params(
        self, params: GenerationParams, errors: list[str], warnings: list[str]
    ) -> None:
        if params.top_k is not None and not 1 <= params.top_k <= 40:
            errors.append("top_k must be between 1 and 40")
        if params.presence_penalty is not None or params.frequency_penalty is not None:
            warnings.append("presence/frequency penalties are ignored by Gemini")

    def normalize_params(self, params: GenerationParams) -> dict[str, Any]:
        normalized: dict[str, Any] = {}
        if params.temperature is not None:
            normalized["temperature"] = params.temperature
        if params.top_p is not None:
            normalized["topP"] = params.top_p
        if params.top_k is not None:
            normalized["topK"] = params.top_k
        if params.max_tokens is not None:
            normalized["maxOutputTokens"] = params.max_tokens
        if params.stop_sequences:
            normalized["stopSequences"] = list(params.stop_sequences)
        normalized.update(params.provider_specific)
        return normalized

    def _build_payload(self, request: ChatRequest) -> dict[str, Any]:
        messages, generation_config = self.prepare(request)
        payload: dict[str, Any] = {
            "contents": transform_messages(messages),
            "generationConfig": {"responseMimeType": "text/plain", **generation_config},
        }
        declarations = [f.model_dump() for f in request.functions or []]
        declarations += [t.function.model_dump() for t in request.tools or []]
        if declarations:
            payload["tools"] = [{"functionDeclarations": declarations}]
        return payload

    async def chat(self, request: ChatRequest) -> ChatResponse:
        payload = self._build_payload(request)
        data = await self.post_json(f"models/{self.model.id}:generateContent", payload)
        if not data.get("candidates"):
            return ChatResponse(
                id=str(time.time_ns()), content="", finish_reason="STOP", usage=_parse_usage(data)
            )
        text, finish_reason, function_call = _parse_candidate(data)
        return ChatResponse(
            # Gemini responses carry no id
            id=data.get("responseId") or str(time.time_ns()),
            content=text,
            finish_reason=finish_reason or "STOP",
            usage=_parse_usage(data),
            function_call=function_call,
        )

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ResponseChunk]:
        payload = self._build_payload(request)
        path = f"models/{self.model.id}:streamGenerateContent?alt=sse"
        async for chunk in self.stream_json(path, payload, SSEParser(decode_stream_event)):
            yield chunk


__all__ = ["GeminiAdapter", "GEMINI_MODELS", "transform_messages"]
