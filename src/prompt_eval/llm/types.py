"""Type definitions for the model abstraction layer.

Public API (the "studs"):
    ChatMessage: A single immutable message in a conversation
    GenerationParams: Provider-independent generation parameters
    ChatRequest: Messages plus params, functions and tools
    ChatResponse: One completed response
    ResponseChunk: One fragment of a streamed response
    TokenUsage: Token accounting for a call
    ModelDescriptor: Static metadata for a logical model id
    ValidationResult: Outcome of parameter or config validation
    ModelError: Uniform failure description carried by failure values
    CallResult: What the model service returns for every call
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "user", "assistant", "function", "tool"]


class ChatMessage(BaseModel):
    """Represents a single message in a conversation.

    Attributes:
        role: Message role
        content: Message content text
        name: Function name for ``function`` messages
        function_call: Legacy function call payload from an assistant turn
        tool_calls: Tool call payloads from an assistant turn
    """

    model_config = ConfigDict(frozen=True)

    role: Role = Field(..., description="Message role")
    content: str = Field(..., description="Message content")
    name: str | None = Field(None, description="Function name for function messages")
    function_call: dict[str, Any] | None = Field(None, description="Function call payload")
    tool_calls: list[dict[str, Any]] | None = Field(None, description="Tool call payloads")

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> ChatMessage:
        return cls(role="assistant", content=content)


class GenerationParams(BaseModel):
    """Provider-independent generation parameters.

    Ranges are not enforced here; each adapter owns its accepted ranges
    and reports violations through ``validate_params``.

    Unknown provider keys go in ``provider_specific`` and are passed through
    by adapters that allow them.
    """

    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_tokens: int | None = None
    stop_sequences: list[str] | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    system_prompt: str | None = None
    streaming: bool | None = None
    provider_specific: dict[str, Any] = Field(default_factory=dict)

    def merged_over(self, defaults: GenerationParams) -> GenerationParams:
        """Return defaults overlaid with every field explicitly set here."""
        data = defaults.model_dump(exclude_none=True)
        overrides = self.model_dump(exclude_none=True)
        extra = {**data.pop("provider_specific", {}), **overrides.pop("provider_specific", {})}
        data.update(overrides)
        data["provider_specific"] = extra
        return GenerationParams(**data)


class FunctionDefinition(BaseModel):
    """A callable function exposed to the model."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class ToolDefinition(BaseModel):
    """Tool wrapper around a function definition."""

    type: Literal["function"] = "function"
    function: FunctionDefinition


class ChatRequest(BaseModel):
    """A chat-completion request in the shared vocabulary."""

    messages: list[ChatMessage]
    params: GenerationParams = Field(default_factory=GenerationParams)
    functions: list[FunctionDefinition] | None = None
    tools: list[ToolDefinition] | None = None


class TokenUsage(BaseModel):
    """Token usage statistics."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatResponse(BaseModel):
    """Response from a provider adapter.

    Attributes:
        id: Provider response id, or a generated one
        content: Generated text content
        role: Always ``assistant``
        finish_reason: Why generation stopped
        usage: Token usage statistics, when the provider reports them
    """

    id: str
    content: str = ""
    role: Literal["assistant"] = "assistant"
    finish_reason: str | None = None
    usage: TokenUsage | None = None
    function_call: dict[str, Any] | None = None
    tool_calls: list[dict[str, Any]] | None = None


class ResponseChunk(BaseModel):
    """One fragment of a streamed response."""

    id: str | None = None
    content: str | None = None
    role: str | None = None
    finish_reason: str | None = None
    usage: TokenUsage | None = None
    function_call: dict[str, Any] | None = None
    tool_calls: list[dict[str, Any]] | None = None


class ModelCapabilities(BaseModel):
    """Capability flags for a model."""

    streaming: bool = True
    function_calling: bool = False
    vision: bool = False
    json_mode: bool = False
    max_tokens: int = Field(4096, description="Maximum context size in tokens")
    supported_languages: list[str] = Field(default_factory=list)


class ModelPricing(BaseModel):
    """Price per 1K tokens."""

    input: float
    output: float
    currency: str = "USD"


class ModelDescriptor(BaseModel):
    """Static metadata for a logical model id.

    Registered once at startup and treated as read-only afterwards.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    provider: str
    version: str | None = None
    capabilities: ModelCapabilities = Field(default_factory=ModelCapabilities)
    default_params: GenerationParams = Field(default_factory=GenerationParams)
    supported_params: list[str] = Field(default_factory=list)
    pricing: ModelPricing | None = None


class ValidationResult(BaseModel):
    """Outcome of a validation pass."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    normalized_params: dict[str, Any] | None = None


class ModelError(BaseModel):
    """Uniform description of a failed call."""

    code: str
    message: str
    details: Any = None
    retryable: bool = False


class CallUsage(TokenUsage):
    """Token usage plus computed cost."""

    cost: float | None = None


class CallResult(BaseModel):
    """Result of a model service call. Failures are values, never raised."""

    success: bool
    call_id: str
    response: ChatResponse | None = None
    error: ModelError | None = None
    usage: CallUsage | None = None
    duration_seconds: float = 0.0

    @property
    def aborted(self) -> bool:
        return self.error is not None and self.error.code == "ABORTED"


__all__ = [
    "Role",
    "ChatMessage",
    "GenerationParams",
    "FunctionDefinition",
    "ToolDefinition",
    "ChatRequest",
    "TokenUsage",
    "ChatResponse",
    "ResponseChunk",
    "ModelCapabilities",
    "ModelPricing",
    "ModelDescriptor",
    "ValidationResult",
    "ModelError",
    "CallUsage",
    "CallResult",
]
