"""Exponential-backoff retry for single model calls.

Public API (the "studs"):
    with_retry: Retry an async callable on retryable errors
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from .exceptions import LLMAbortedError
from .types import ModelError

if TYPE_CHECKING:
    from .cancellation import CancellationToken

_logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BASE_DELAY = 1.0


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int,
    classify: Callable[[BaseException], ModelError],
    base_delay: float = DEFAULT_BASE_DELAY,
    token: CancellationToken | None = None,
) -> T:
    """Call ``fn`` until it succeeds, retrying retryable failures.

    Makes at most ``retries + 1`` attempts. Before retry ``n`` (counting
    from 0) waits ``2**n * base_delay`` seconds. Non-retryable errors and
    the last failure are re-raised unchanged. A cancelled token aborts
    before the next attempt.

    Args:
        fn: Zero-argument coroutine factory performing one attempt
        retries: Retries allowed after the first attempt
        classify: Maps an exception to a ModelError (decides retryability)
        base_delay: Delay unit in seconds
        token: Optional cancellation token checked before every attempt

    Raises:
        LLMAbortedError: If the token is cancelled between attempts
    """
    attempt = 0
    while True:
        if token is not None:
            token.raise_if_cancelled()
        try:
            return await fn()
        except LLMAbortedError:
            raise
        except Exception as e:
            error = classify(e)
            if not error.retryable or attempt >= retries:
                raise
            delay = (2**attempt) * base_delay
            _logger.warning(
                "Attempt %d failed with %s (%s), retrying in %.1fs",
                attempt + 1,
                error.code,
                error.message,
                delay,
            )
            await asyncio.sleep(delay)
            attempt += 1


__all__ = ["with_retry", "DEFAULT_BASE_DELAY"]
