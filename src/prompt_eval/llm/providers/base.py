"""Abstract base class for provider adapters.

Public API (the "studs"):
    BaseAdapter: Abstract base class every provider adapter implements
    classify_error: Map any exception onto a ModelError
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

import httpx

from ..config import ProviderConfig
from ..exceptions import LLMError, LLMValidationError, RegistryError, error_from_status
from ..types import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    GenerationParams,
    ModelDescriptor,
    ModelError,
    ResponseChunk,
    ValidationResult,
)

_logger = logging.getLogger(__name__)


def classify_error(error: BaseException) -> ModelError:
    """Classify any exception raised during a call.

    HTTP 5xx and 429, timeouts and unreachable networks are retryable;
    other 4xx, malformed bodies and unknown errors are not.
    """
    if isinstance(error, httpx.HTTPStatusError):
        error = error_from_status(
            error.response.status_code, error.response.reason_phrase, error.response.text
        )

    if isinstance(error, LLMError):
        return ModelError(
            code=error.code,
            message=error.message,
            details=error.details,
            retryable=error.retryable,
        )
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ModelError(code="TIMEOUT", message="Request timed out", retryable=True)
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return ModelError(
            code="NETWORK_ERROR",
            message=f"Network connection failed: {error}",
            details=type(error).__name__,
            retryable=True,
        )
    if isinstance(error, RegistryError):
        return ModelError(code="MODEL_NOT_FOUND", message=str(error), retryable=False)
    return ModelError(
        code="UNKNOWN_ERROR",
        message=str(error) or type(error).__name__,
        details=type(error).__name__,
        retryable=False,
    )


class BaseAdapter(ABC):
    """Abstract base class for provider adapters.

    An adapter translates the shared request vocabulary into one provider's
    wire format, performs the call and parses the answer back. Subclasses
    implement ``chat``, ``chat_stream`` and ``normalize_params``; they may
    tighten parameter ranges in ``validate_provider_params``.

    Adapters raise LLMError subclasses (or transport exceptions) from
    ``chat``/``chat_stream``; turning those into failure values is the
    model service's job, using ``format_error``.
    """

    # Provider id this adapter serves - must match the registry entry
    provider_id: str = "base"

    def __init__(self, model: ModelDescriptor, config: ProviderConfig) -> None:
        self.model = model
        self._config = config

    @property
    def config(self) -> ProviderConfig:
        return self._config

    @classmethod
    def validate_config(cls, config: ProviderConfig) -> list[str]:
        """Return configuration problems for this provider (empty if usable)."""
        return []

    # =========================================================================
    # REQUIRED: Adapters MUST implement these
    # =========================================================================

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Perform one complete chat call.

        Raises:
            LLMValidationError: If the request's params are out of range
            LLMError: On provider or transport failure
        """
        ...

    @abstractmethod
    def chat_stream(self, request: ChatRequest) -> AsyncIterator[ResponseChunk]:
        """Stream a chat call as an async iterator of chunks.

        The iterator is single-use; it cannot be restarted once consumed.
        """
        ...

    @abstractmethod
    def normalize_params(self, params: GenerationParams) -> dict[str, Any]:
        """Rename and reshape params into the provider's wire vocabulary."""
        ...

    # =========================================================================
    # Shared behavior
    # =========================================================================

    def validate_provider_params(
        self, params: GenerationParams, errors: list[str], warnings: list[str]
    ) -> None:
        """Hook for provider-specific ranges. Append to ``errors``/``warnings``."""

    def validate_params(self, params: GenerationParams) -> ValidationResult:
        """Check universal and provider-specific ranges.

        On success the result carries the params normalized into the
        provider's wire vocabulary.
        """
        errors: list[str] = []
        warnings: list[str] = []

        if params.temperature is not None and not 0 <= params.temperature <= 2:
            errors.append("temperature must be between 0 and 2")
        if params.top_p is not None and not 0 <= params.top_p <= 1:
            errors.append("top_p must be between 0 and 1")
        if params.max_tokens is not None and params.max_tokens < 0:
            errors.append("max_tokens must not be negative")

        self.validate_provider_params(params, errors, warnings)

        supported = set(self.model.supported_params)
        if supported:
            for name in _SHARED_PARAM_NAMES:
                if getattr(params, name) is not None and name not in supported:
                    warnings.append(f"{name} is not supported by {self.model.id}")

        if errors:
            return ValidationResult(is_valid=False, errors=errors, warnings=warnings)
        return ValidationResult(
            is_valid=True, warnings=warnings, normalized_params=self.normalize_params(params)
        )

    def merge_params(self, params: GenerationParams) -> GenerationParams:
        """Overlay request params on the model's defaults."""
        return params.merged_over(self.model.default_params)

    def prepare(self, request: ChatRequest) -> tuple[list[ChatMessage], dict[str, Any]]:
        """Merge, validate and normalize params; apply ``system_prompt``.

        Raises:
            LLMValidationError: If validation fails; no network call is made
        """
        params = self.merge_params(request.params)
        validation = self.validate_params(params)
        if not validation.is_valid:
            raise LLMValidationError(
                f"Parameter validation failed: {', '.join(validation.errors)}",
                details=validation.errors,
            )
        messages = list(request.messages)
        if params.system_prompt:
            messages.insert(0, ChatMessage.system(params.system_prompt))
        return messages, validation.normalized_params or {}

    def format_error(self, error: BaseException) -> ModelError:
        """Classify an exception raised by this adapter."""
        return classify_error(error)

    async def aclose(self) -> None:
        """Release transport resources."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model.id!r})"


_SHARED_PARAM_NAMES = (
    "temperature",
    "top_p",
    "top_k",
    "max_tokens",
    "stop_sequences",
    "presence_penalty",
    "frequency_penalty",
)


__all__ = ["BaseAdapter", "classify_error"]
