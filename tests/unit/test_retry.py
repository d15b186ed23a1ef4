"""Tests for exponential-backoff retry."""

import asyncio
from unittest.mock import AsyncMock, call, patch

import pytest

from prompt_eval.llm.cancellation import CancellationToken
from prompt_eval.llm.exceptions import (
    LLMAbortedError,
    LLMInvalidRequestError,
    LLMRateLimitError,
    LLMServerError,
)
from prompt_eval.llm.providers.base import classify_error
from prompt_eval.llm.retry import with_retry


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


@patch("prompt_eval.llm.retry.asyncio.sleep", new_callable=AsyncMock)
class TestWithRetry:
    def test_success_first_try(self, mock_sleep):
        fn = AsyncMock(return_value="ok")
        assert _run(with_retry(fn, retries=3, classify=classify_error)) == "ok"
        assert fn.await_count == 1
        mock_sleep.assert_not_awaited()

    def test_retries_retryable_error(self, mock_sleep):
        fn = AsyncMock(side_effect=[LLMServerError("down"), LLMRateLimitError("slow"), "ok"])
        assert _run(with_retry(fn, retries=3, classify=classify_error)) == "ok"
        assert fn.await_count == 3
        assert mock_sleep.await_args_list == [call(1.0), call(2.0)]

    def test_backoff_uses_base_delay(self, mock_sleep):
        fn = AsyncMock(side_effect=[LLMServerError("down"), LLMServerError("down"), "ok"])
        _run(with_retry(fn, retries=2, classify=classify_error, base_delay=0.5))
        assert mock_sleep.await_args_list == [call(0.5), call(1.0)]

    def test_gives_up_after_retries(self, mock_sleep):
        fn = AsyncMock(side_effect=LLMServerError("down"))
        with pytest.raises(LLMServerError):
            _run(with_retry(fn, retries=2, classify=classify_error))
        assert fn.await_count == 3
        assert mock_sleep.await_count == 2

    def test_non_retryable_error_not_retried(self, mock_sleep):
        fn = AsyncMock(side_effect=LLMInvalidRequestError("bad"))
        with pytest.raises(LLMInvalidRequestError):
            _run(with_retry(fn, retries=5, classify=classify_error))
        assert fn.await_count == 1
        mock_sleep.assert_not_awaited()

    def test_zero_retries(self, mock_sleep):
        fn = AsyncMock(side_effect=LLMServerError("down"))
        with pytest.raises(LLMServerError):
            _run(with_retry(fn, retries=0, classify=classify_error))
        assert fn.await_count == 1

    def test_cancelled_token_stops_before_attempt(self, mock_sleep):
        token = CancellationToken()
        token.cancel("stop")
        fn = AsyncMock(return_value="ok")
        with pytest.raises(LLMAbortedError):
            _run(with_retry(fn, retries=3, classify=classify_error, token=token))
        fn.assert_not_awaited()

    def test_abort_is_never_retried(self, mock_sleep):
        fn = AsyncMock(side_effect=LLMAbortedError("aborted"))
        with pytest.raises(LLMAbortedError):
            _run(with_retry(fn, retries=3, classify=classify_error))
        assert fn.await_count == 1
