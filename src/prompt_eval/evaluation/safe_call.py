"""Orchestration-level retry around a single model service call.

Public API (the "studs"):
    safe_call: Call a model, retrying the whole call; never raises
    SafeCallResult: Success flag plus content or error message
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel

from ..llm.types import ChatMessage, ChatRequest, GenerationParams

if TYPE_CHECKING:
    from ..llm.cancellation import CancellationToken
    from ..llm.service import ModelService

_logger = logging.getLogger(__name__)

DEFAULT_SAFE_RETRIES = 2
DEFAULT_SAFE_DELAY_SECONDS = 2.0


class SafeCallResult(BaseModel):
    """Terminal outcome of a pipeline stage call."""

    success: bool
    content: str | None = None
    error: str | None = None
    attempts: int = 0


async def safe_call(
    service: ModelService,
    model_id: str,
    messages: list[ChatMessage],
    params: GenerationParams | None = None,
    *,
    max_retries: int = DEFAULT_SAFE_RETRIES,
    delay_seconds: float = DEFAULT_SAFE_DELAY_SECONDS,
    token: CancellationToken | None = None,
) -> SafeCallResult:
    """Call a model up to ``max_retries + 1`` times with a fixed delay.

    Failure values from the service and unexpected exceptions are treated
    the same way. Retrying stops early when the call was aborted or the
    token is cancelled.

    Returns:
        SafeCallResult; never raises for call failures
    """
    request = ChatRequest(messages=messages, params=params or GenerationParams())
    error = "Unknown error"
    attempts = 0
    for attempt in range(max_retries + 1):
        if token is not None and token.cancelled:
            break
        attempts += 1
        try:
            result = await service.call(model_id, request)
        except Exception as e:
            error = str(e) or type(e).__name__
            _logger.warning(
                "Call to %s raised on attempt %d/%d: %s",
                model_id,
                attempt + 1,
                max_retries + 1,
                error,
            )
        else:
            if result.success and result.response is not None:
                return SafeCallResult(
                    success=True, content=result.response.content, attempts=attempts
                )
            error = result.error.message if result.error else "Unknown error"
            if result.aborted:
                break
            _logger.warning(
                "Call to %s failed on attempt %d/%d: %s",
                model_id,
                attempt + 1,
                max_retries + 1,
                error,
            )

        if attempt < max_retries:
            await asyncio.sleep(delay_seconds)

    return SafeCallResult(success=False, error=error, attempts=attempts)


__all__ = ["safe_call", "SafeCallResult", "DEFAULT_SAFE_RETRIES", "DEFAULT_SAFE_DELAY_SECONDS"]
