"""Exceptions for the model abstraction layer.

Public API (the "studs"):
    LLMError: Base exception for all model-call errors
    LLMValidationError: Generation parameters or configuration rejected
    LLMAuthenticationError: Invalid credentials
    LLMInvalidRequestError: Request rejected by the provider (4xx)
    LLMResponseError: Provider returned a body we could not parse
    LLMRateLimitError: Rate limit exceeded (retryable)
    LLMServerError: Provider-side failure, 5xx (retryable)
    LLMConnectionError: Network unreachable (retryable)
    LLMTimeoutError: Request timed out (retryable)
    LLMProviderError: Provider-specific error that fits no other category
    LLMAbortedError: Call cancelled by the caller
    RegistryError, ModelNotFoundError, NoFactoryError: Registry lookups
    error_from_status: Map an HTTP status onto the hierarchy
"""

from typing import Any


class LLMError(Exception):
    """Base exception for all model-call errors."""

    retryable: bool = False
    default_code: str = "LLM_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status_code = status_code
        self.details = details


class LLMValidationError(LLMError):
    """Parameters or configuration failed validation. Never retried."""

    default_code = "VALIDATION_FAILED"


class LLMAuthenticationError(LLMError):
    """Invalid credentials for the provider."""

    default_code = "AUTHENTICATION_FAILED"


class LLMInvalidRequestError(LLMError):
    """Invalid request parameters."""

    default_code = "INVALID_REQUEST"


class LLMResponseError(LLMError):
    """Malformed response body."""

    default_code = "MALFORMED_RESPONSE"


class LLMRateLimitError(LLMError):
    """Rate limit exceeded. This error is retryable."""

    retryable = True
    default_code = "RATE_LIMITED"


class LLMServerError(LLMError):
    """Provider-side 5xx failure. This error is retryable."""

    retryable = True
    default_code = "SERVER_ERROR"


class LLMConnectionError(LLMError):
    """Network unreachable or connection refused. This error is retryable."""

    retryable = True
    default_code = "NETWORK_ERROR"


class LLMTimeoutError(LLMError):
    """Request timed out. This error is retryable."""

    retryable = True
    default_code = "TIMEOUT"


class LLMProviderError(LLMError):
    """Provider-specific error that doesn't fit other categories."""

    default_code = "PROVIDER_ERROR"


class LLMAbortedError(LLMError):
    """The call was cancelled before it completed."""

    default_code = "ABORTED"


class RegistryError(LookupError):
    """Base class for model registry lookup failures."""

    pass


class ModelNotFoundError(RegistryError):
    """The model id is not registered."""

    pass


class NoFactoryError(RegistryError):
    """The model's provider has no adapter constructor registered."""

    pass


def error_from_status(status_code: int, message: str, details: Any = None) -> LLMError:
    """Build the exception matching an HTTP status code.

    429 and 5xx are retryable; 401/403 are authentication failures; any
    other 4xx is an invalid request.
    """
    if status_code == 429:
        cls: type[LLMError] = LLMRateLimitError
    elif status_code >= 500:
        cls = LLMServerError
    elif status_code in (401, 403):
        cls = LLMAuthenticationError
    elif 400 <= status_code < 500:
        cls = LLMInvalidRequestError
    else:
        cls = LLMProviderError
    return cls(
        f"HTTP {status_code}: {message}",
        code=f"HTTP_{status_code}",
        status_code=status_code,
        details=details,
    )


__all__ = [
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
    "error_from_status",
]
