"""Model service - the single entry point for model calls.

Public API (the "studs"):
    ModelService: Resolve, validate, call, retry, stream and account for model calls
    BatchCall: One entry of a ``batch_call`` list
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
import uuid
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel

from .cancellation import CancellationToken
from .config import ConfigManager, ProviderConfig
from .exceptions import LLMValidationError
from .factory import AdapterCache, create_default_registry
from .providers.base import BaseAdapter, classify_error
from .registry import ModelRegistry
from .retry import DEFAULT_BASE_DELAY, with_retry
from .types import (
    CallResult,
    CallUsage,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ModelDescriptor,
    ModelError,
    ResponseChunk,
    TokenUsage,
    ValidationResult,
)

_logger = logging.getLogger(__name__)

TEST_TIMEOUT_SECONDS = 10.0
COMPARE_TIMEOUT_SECONDS = 30.0
BATCH_CONCURRENCY = 3
DEFAULT_TEST_PROMPT = 'Hello, respond with "OK"'

_RECOMMENDATIONS: dict[str, list[str]] = {
    "coding": ["gpt-4o", "gemini-2.5-pro", "gpt-4o-mini"],
    "writing": ["gpt-4o", "gemini-2.5-pro", "claude-3-opus-latest"],
    "analysis": ["gemini-2.5-pro", "gpt-4o", "claude-3-5-sonnet-latest"],
    "chat": ["gpt-4o-mini", "gemini-1.5-flash", "claude-3-5-haiku-latest"],
    "default": ["gpt-4o", "gemini-2.5-flash", "gpt-4o-mini"],
}


class BatchCall(BaseModel):
    """One call in a ``batch_call`` list."""

    model_id: str
    request: ChatRequest
    stream: bool = False
    timeout: float | None = None
    retries: int | None = None


class ModelService:
    """Single entry point the rest of the system uses for model calls.

    Every public call operation returns a ``CallResult``; failures are
    values, never raised. Each in-flight call holds a cancellation token
    under its call id so ``abort_call`` can stop it.

    Example:
        >>> service = ModelService()
        >>> service.initialize()
        >>> result = await service.call(
        ...     "gpt-4o-mini", ChatRequest(messages=[ChatMessage.user("Hi")])
        ... )
        >>> result.success
    """

    def __init__(
        self,
        registry: ModelRegistry | None = None,
        config_manager: ConfigManager | None = None,
        *,
        base_delay: float = DEFAULT_BASE_DELAY,
    ) -> None:
        if registry is None:
            registry = config_manager.registry if config_manager else create_default_registry()
        self._registry = registry
        self._config = config_manager or ConfigManager(registry)
        self._cache = AdapterCache(registry)
        self._base_delay = base_delay
        self._active: dict[str, CancellationToken] = {}
        self._stale: list[BaseAdapter] = []
        self._total_calls = 0
        self._lock = threading.Lock()
        self._config.add_listener(self._on_config_change)

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    @property
    def config_manager(self) -> ConfigManager:
        return self._config

    def initialize(self) -> list[str]:
        """Load provider configs from the environment.

        Returns:
            Provider ids that were configured
        """
        loaded = self._config.load_from_env()
        _logger.info(
            "Model service initialized with providers: %s",
            ", ".join(self._config.available_providers()) or "none",
        )
        return loaded

    def _on_config_change(self, provider: str) -> None:
        removed = self._cache.clear(provider=provider)
        if removed:
            _logger.debug("Invalidated %d cached adapters for %s", len(removed), provider)
            with self._lock:
                self._stale.extend(removed)

    # =========================================================================
    # Model information
    # =========================================================================

    def available_models(self) -> list[ModelDescriptor]:
        return self._config.available_models()

    def models_by_provider(self, provider: str) -> list[ModelDescriptor]:
        return self._config.available_models(provider)

    def model_info(self, model_id: str) -> ModelDescriptor | None:
        """Return the descriptor for a model whose provider is configured."""
        if not self._config.is_model_available(model_id):
            return None
        return self._registry.get_model(model_id)

    def validate_model(self, model_id: str) -> ValidationResult:
        return self._config.validate_model_config(model_id)

    def recommended_models(self, task: str) -> list[str]:
        """Suggest usable models for a task keyword (coding, writing, analysis, chat)."""
        task_key = task.lower()
        candidates = _RECOMMENDATIONS["default"]
        for key, models in _RECOMMENDATIONS.items():
            if key in task_key:
                candidates = models
                break
        return [m for m in candidates if self.validate_model(m).is_valid]

    def update_provider_config(self, provider: str, **updates: Any) -> ProviderConfig:
        """Update a provider's config; cached adapters for it are invalidated.

        Raises:
            KeyError: If the provider has no config
        """
        return self._config.update_config(provider, **updates)

    # =========================================================================
    # Calls
    # =========================================================================

    def _cost(self, model_id: str, usage: TokenUsage | None) -> float | None:
        if usage is None:
            return None
        model = self._registry.get_model(model_id)
        if model is None or model.pricing is None:
            return None
        pricing = model.pricing
        return (
            usage.prompt_tokens * pricing.input / 1000
            + usage.completion_tokens * pricing.output / 1000
        )

    async def _aggregate_stream(
        self,
        adapter: BaseAdapter,
        request: ChatRequest,
        token: CancellationToken,
        on_progress: Callable[[ResponseChunk], None] | None,
    ) -> ChatResponse:
        """Consume a chunk stream into one response.

        Content is concatenated in order; the last non-empty finish reason
        and usage win. The token is checked before each chunk is processed.
        """
        response_id: str | None = None
        parts: list[str] = []
        finish_reason: str | None = None
        usage: TokenUsage | None = None
        function_call: dict[str, Any] | None = None
        tool_calls: list[dict[str, Any]] | None = None

        async with contextlib.aclosing(adapter.chat_stream(request)) as stream:
            async for chunk in stream:
                token.raise_if_cancelled()
                if response_id is None and chunk.id:
                    response_id = chunk.id
                if chunk.content:
                    parts.append(chunk.content)
                if chunk.finish_reason:
                    finish_reason = chunk.finish_reason
                if chunk.usage is not None:
                    usage = chunk.usage
                if chunk.function_call:
                    function_call = chunk.function_call
                if chunk.tool_calls:
                    tool_calls = chunk.tool_calls
                if on_progress is not None:
                    on_progress(chunk)
        token.raise_if_cancelled()

        return ChatResponse(
            id=response_id or f"stream_{time.time_ns()}",
            content="".join(parts),
            finish_reason=finish_reason,
            usage=usage,
            function_call=function_call,
            tool_calls=tool_calls,
        )

    async def _call_once(
        self, adapter: BaseAdapter, request: ChatRequest, token: CancellationToken, timeout: float
    ) -> ChatResponse:
        response = await asyncio.wait_for(adapter.chat(request), timeout)
        # A result arriving after an abort is discarded
        token.raise_if_cancelled()
        return response

    async def call(
        self,
        model_id: str,
        request: ChatRequest,
        *,
        stream: bool = False,
        on_progress: Callable[[ResponseChunk], None] | None = None,
        on_error: Callable[[ModelError], None] | None = None,
        on_complete: Callable[[ChatResponse], None] | None = None,
        timeout: float | None = None,
        retries: int | None = None,
        call_id: str | None = None,
    ) -> CallResult:
        """Call a model and return the outcome as a value.

        Validation failures (unknown or unconfigured model, out-of-range
        params) are returned without any network attempt. Single-shot calls
        are retried with exponential backoff on retryable errors; streamed
        calls are aggregated into one response.

        Args:
            model_id: Bare or provider-qualified model id
            request: Messages and generation params
            stream: Use the adapter's streaming call
            on_progress: Invoked with every streamed chunk
            on_error: Invoked with the ModelError on failure
            on_complete: Invoked with the response on success
            timeout: Per-call timeout in seconds (defaults to the provider config)
            retries: Retries after the first attempt (defaults to the provider config)
            call_id: Id under which the call can be aborted (generated if omitted)
        """
        call_id = call_id or f"call_{uuid.uuid4().hex[:12]}"
        token = CancellationToken()
        started = time.monotonic()
        with self._lock:
            self._active[call_id] = token
            self._total_calls += 1

        adapter: BaseAdapter | None = None
        try:
            validation = self.validate_model(model_id)
            if not validation.is_valid:
                raise LLMValidationError(
                    f"Model validation failed: {', '.join(validation.errors)}",
                    details=validation.errors,
                )
            config = self._config.get_model_config(model_id)
            if config is None:
                raise LLMValidationError(f"No configuration found for model {model_id}")

            adapter = self._cache.get_adapter(model_id, config)
            params_check = adapter.validate_params(adapter.merge_params(request.params))
            if not params_check.is_valid:
                raise LLMValidationError(
                    f"Parameter validation failed: {', '.join(params_check.errors)}",
                    details=params_check.errors,
                )
            for warning in params_check.warnings:
                _logger.debug("%s: %s", model_id, warning)

            call_timeout = timeout if timeout is not None else config.timeout_seconds
            if stream:
                response = await asyncio.wait_for(
                    self._aggregate_stream(adapter, request, token, on_progress), call_timeout
                )
            else:
                call_adapter = adapter
                response = await with_retry(
                    lambda: self._call_once(call_adapter, request, token, call_timeout),
                    retries=retries if retries is not None else config.max_retries,
                    classify=call_adapter.format_error,
                    base_delay=self._base_delay,
                    token=token,
                )
        except Exception as e:
            error = adapter.format_error(e) if adapter is not None else classify_error(e)
            if error.code == "ABORTED":
                _logger.debug("Call %s to %s aborted", call_id, model_id)
            else:
                _logger.warning("Call %s to %s failed: %s", call_id, model_id, error.message)
            result = CallResult(
                success=False,
                call_id=call_id,
                error=error,
                duration_seconds=time.monotonic() - started,
            )
            if on_error is not None:
                on_error(error)
            return result
        finally:
            with self._lock:
                self._active.pop(call_id, None)

        usage = None
        if response.usage is not None:
            usage = CallUsage(
                **response.usage.model_dump(), cost=self._cost(model_id, response.usage)
            )
        if on_complete is not None:
            on_complete(response)
        return CallResult(
            success=True,
            call_id=call_id,
            response=response,
            usage=usage,
            duration_seconds=time.monotonic() - started,
        )

    async def test_model(self, model_id: str, prompt: str = DEFAULT_TEST_PROMPT) -> CallResult:
        """Connectivity check: one short round-trip, one retry, short timeout."""
        return await self.call(
            model_id,
            ChatRequest(messages=[ChatMessage.user(prompt)]),
            timeout=TEST_TIMEOUT_SECONDS,
            retries=1,
        )

    async def compare_models(
        self, model_ids: list[str], prompt: str
    ) -> list[tuple[str, CallResult]]:
        """Send the same prompt to several models concurrently.

        Each model succeeds or fails independently; results keep input order.
        """
        request = ChatRequest(messages=[ChatMessage.user(prompt)])
        results = await asyncio.gather(
            *(self.call(m, request, timeout=COMPARE_TIMEOUT_SECONDS) for m in model_ids)
        )
        return list(zip(model_ids, results))

    async def batch_call(
        self, calls: list[BatchCall], concurrency: int = BATCH_CONCURRENCY
    ) -> list[CallResult]:
        """Run calls with at most ``concurrency`` in flight; output keeps input order."""
        semaphore = asyncio.Semaphore(concurrency)

        async def run(entry: BatchCall) -> CallResult:
            async with semaphore:
                return await self.call(
                    entry.model_id,
                    entry.request,
                    stream=entry.stream,
                    timeout=entry.timeout,
                    retries=entry.retries,
                )

        return list(await asyncio.gather(*(run(entry) for entry in calls)))

    # =========================================================================
    # Cancellation and bookkeeping
    # =========================================================================

    def abort_call(self, call_id: str) -> bool:
        """Abort an in-flight call. Returns False if no such call is active."""
        with self._lock:
            token = self._active.pop(call_id, None)
        if token is None:
            return False
        token.cancel("Call aborted")
        return True

    def abort_all_calls(self) -> int:
        with self._lock:
            tokens = list(self._active.values())
            self._active.clear()
        for token in tokens:
            token.cancel("Call aborted")
        return len(tokens)

    def active_calls(self) -> list[str]:
        with self._lock:
            return list(self._active)

    def call_stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "active_calls": len(self._active),
                "total_calls": self._total_calls,
                "cached_adapters": len(self._cache),
            }

    async def aclose(self) -> None:
        """Close every cached and invalidated adapter."""
        await self._cache.aclose_all()
        with self._lock:
            stale, self._stale = self._stale, []
        for adapter in stale:
            await adapter.aclose()


__all__ = ["ModelService", "BatchCall"]
