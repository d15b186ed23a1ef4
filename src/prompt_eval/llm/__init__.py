"""Provider-agnostic model abstraction layer.

This package gives the rest of the system one way to issue chat calls,
whichever backend answers them:
- OpenAI (and OpenAI-compatible endpoints)
- Azure OpenAI (API key or managed identity)
- Anthropic Claude
- Google Gemini
- Ollama (local models)

Public API (the "studs"):
    ModelService: Single entry point for model calls
    ConfigManager: Provider configs; answers "is this model usable"
    ProviderConfig: Credentials and transport options for one provider
    ModelRegistry: Maps model ids to providers and adapter classes
    create_default_registry: Registry with every built-in provider
    ChatMessage, ChatRequest, GenerationParams: Request types
    ChatResponse, ResponseChunk, CallResult: Response types
    CancellationToken: Thread-safe cancellation flag
    BaseAdapter: Abstract base class for provider adapters (for custom providers)

Example:
    >>> from prompt_eval.llm import ChatMessage, ChatRequest, ModelService
    >>>
    >>> service = ModelService()
    >>> service.initialize()  # reads OPENAI_API_KEY, ANTHROPIC_API_KEY, ...
    >>> request = ChatRequest(messages=[ChatMessage.user("Hello!")])
    >>> result = await service.call("openai:gpt-4o-mini", request)
    >>> print(result.response.content if result.success else result.error.message)
"""

from .cancellation import CancellationToken
from .config import ConfigManager, ProviderConfig
from .exceptions import (
    LLMAbortedError,
    LLMAuthenticationError,
    LLMConnectionError,
    LLMError,
    LLMInvalidRequestError,
    LLMProviderError,
    LLMRateLimitError,
    LLMResponseError,
    LLMServerError,
    LLMTimeoutError,
    LLMValidationError,
    ModelNotFoundError,
    NoFactoryError,
    RegistryError,
)
from .factory import AdapterCache, create_default_registry
from .providers.base import BaseAdapter
from .registry import ModelRegistry, ProviderDescriptor
from .service import BatchCall, ModelService
from .types import (
    CallResult,
    CallUsage,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    GenerationParams,
    ModelDescriptor,
    ModelError,
    ResponseChunk,
    TokenUsage,
    ValidationResult,
)

__all__ = [
    # Service
    "ModelService",
    "BatchCall",
    # Config
    "ConfigManager",
    "ProviderConfig",
    # Registry
    "ModelRegistry",
    "ProviderDescriptor",
    "AdapterCache",
    "create_default_registry",
    # Types
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ResponseChunk",
    "GenerationParams",
    "ModelDescriptor",
    "TokenUsage",
    "CallUsage",
    "CallResult",
    "ModelError",
    "ValidationResult",
    "CancellationToken",
    # Base class (for custom providers)
    "BaseAdapter",
    # Exceptions
    "LLMError",
    "LLMValidationError",
    "LLMAuthenticationError",
    "LLMInvalidRequestError",
    "LLMResponseError",
    "LLMRateLimitError",
    "LLMServerError",
    "LLMConnectionError",
    "LLMTimeoutError",
    "LLMProviderError",
    "LLMAbortedError",
    "RegistryError",
    "ModelNotFoundError",
    "NoFactoryError",
]
