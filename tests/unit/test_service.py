"""Tests for ModelService against a scripted provider."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from prompt_eval.llm.config import ProviderConfig
from prompt_eval.llm.exceptions import LLMAuthenticationError, LLMServerError
from prompt_eval.llm.service import BatchCall, ModelService
from prompt_eval.llm.types import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    GenerationParams,
    ResponseChunk,
    TokenUsage,
)


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def _request(text="Hi", **params):
    return ChatRequest(messages=[ChatMessage.user(text)], params=GenerationParams(**params))


def _response(content="Hello!", prompt_tokens=1000, completion_tokens=500):
    return ChatResponse(
        id="resp-1",
        content=content,
        finish_reason="stop",
        usage=TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )


class TestCallValidation:
    def test_invalid_params_make_no_call(self, make_service):
        chat = AsyncMock(return_value=_response())
        service = make_service(chat=chat)
        result = _run(service.call("fake-model", _request(temperature=5)))
        assert result.success is False
        assert result.error.code == "VALIDATION_FAILED"
        assert "temperature" in result.error.message
        chat.assert_not_awaited()

    def test_unknown_model(self, make_service):
        chat = AsyncMock()
        service = make_service(chat=chat)
        result = _run(service.call("no-such-model", _request()))
        assert result.success is False
        assert "Model not found" in result.error.message
        chat.assert_not_awaited()

    def test_unconfigured_provider(self, make_service):
        service = make_service(chat=AsyncMock())
        service.config_manager.remove_provider("fake")
        result = _run(service.call("fake-model", _request()))
        assert result.success is False
        assert "Provider configuration not found" in result.error.message


class TestCall:
    def test_success_with_cost(self, make_service):
        service = make_service(chat=AsyncMock(return_value=_response()))
        result = _run(service.call("fake-model", _request()))
        assert result.success is True
        assert result.response.content == "Hello!"
        assert result.usage.total_tokens == 1500
        # 1000 * 0.001 / 1000 + 500 * 0.002 / 1000
        assert result.usage.cost == pytest.approx(0.002)
        assert result.call_id.startswith("call_")

    def test_retries_retryable_error(self, make_service):
        chat = AsyncMock(side_effect=[LLMServerError("down"), _response()])
        service = make_service(chat=chat)
        result = _run(service.call("fake-model", _request()))
        assert result.success is True
        assert chat.await_count == 2

    def test_retry_count_override(self, make_service):
        chat = AsyncMock(side_effect=LLMServerError("down"))
        service = make_service(chat=chat, max_retries=5)
        result = _run(service.call("fake-model", _request(), retries=1))
        assert result.success is False
        assert result.error.retryable is True
        assert chat.await_count == 2

    def test_non_retryable_error(self, make_service):
        chat = AsyncMock(side_effect=LLMAuthenticationError("bad key"))
        service = make_service(chat=chat)
        result = _run(service.call("fake-model", _request()))
        assert result.success is False
        assert result.error.code == "AUTHENTICATION_FAILED"
        assert chat.await_count == 1

    def test_timeout(self, make_service):
        async def slow(request):
            await asyncio.sleep(5)
            return _response()

        service = make_service(chat=slow)
        result = _run(service.call("fake-model", _request(), timeout=0.01, retries=0))
        assert result.success is False
        assert result.error.code == "TIMEOUT"

    def test_callbacks(self, make_service):
        on_complete = MagicMock()
        on_error = MagicMock()
        service = make_service(chat=AsyncMock(return_value=_response()))
        _run(service.call("fake-model", _request(), on_complete=on_complete, on_error=on_error))
        on_complete.assert_called_once()
        on_error.assert_not_called()

        failing = make_service(chat=AsyncMock(side_effect=LLMAuthenticationError("bad")))
        _run(failing.call("fake-model", _request(), on_complete=on_complete, on_error=on_error))
        assert on_error.call_args[0][0].code == "AUTHENTICATION_FAILED"


class TestStreaming:
    def test_aggregates_chunks(self, make_service):
        chunks = [
            ResponseChunk(id="stream-1", content="Hel", role="assistant"),
            ResponseChunk(content="lo"),
            ResponseChunk(
                finish_reason="stop",
                usage=TokenUsage(prompt_tokens=5, completion_tokens=2, total_tokens=7),
            ),
        ]
        seen = []
        service = make_service(chunks=chunks)
        result = _run(service.call("fake-model", _request(), stream=True, on_progress=seen.append))
        assert result.success is True
        assert result.response.id == "stream-1"
        assert result.response.content == "Hello"
        assert result.response.finish_reason == "stop"
        assert result.usage.total_tokens == 7
        assert len(seen) == 3

    def test_generated_id_when_stream_has_none(self, make_service):
        service = make_service(chunks=[ResponseChunk(content="x")])
        result = _run(service.call("fake-model", _request(), stream=True))
        assert result.response.id.startswith("stream_")


class TestAbort:
    def test_abort_in_flight_call(self, make_service):
        started = asyncio.Event()
        release = asyncio.Event()

        async def blocking(request):
            started.set()
            await release.wait()
            return _response()

        service = make_service(chat=blocking)

        async def scenario():
            task = asyncio.create_task(service.call("fake-model", _request(), call_id="c1"))
            await started.wait()
            assert service.active_calls() == ["c1"]
            assert service.abort_call("c1") is True
            release.set()
            return await task

        result = _run(scenario())
        assert result.success is False
        assert result.aborted is True
        assert service.active_calls() == []

    def test_abort_mid_stream(self, make_service):
        closed = []

        async def stream(request):
            try:
                for text in ["a", "b", "c"]:
                    yield ResponseChunk(content=text)
            finally:
                closed.append(True)

        seen = []
        service = make_service(stream=stream)

        def on_progress(chunk):
            seen.append(chunk.content)
            service.abort_call("s1")

        result = _run(
            service.call(
                "fake-model", _request(), stream=True, on_progress=on_progress, call_id="s1"
            )
        )

        assert result.success is False
        assert result.aborted is True
        assert seen == ["a"]
        assert closed == [True]
        assert service.active_calls() == []

    def test_abort_unknown_call(self, make_service):
        assert make_service(chat=AsyncMock()).abort_call("nope") is False

    def test_abort_all(self, make_service):
        release = asyncio.Event()

        async def blocking(request):
            await release.wait()
            return _response()

        service = make_service(chat=blocking)

        async def scenario():
            tasks = [
                asyncio.create_task(service.call("fake-model", _request(), call_id=f"c{i}"))
                for i in range(3)
            ]
            while len(service.active_calls()) < 3:
                await asyncio.sleep(0)
            assert service.abort_all_calls() == 3
            release.set()
            return await asyncio.gather(*tasks)

        results = _run(scenario())
        assert all(r.aborted for r in results)


class TestBatchAndCompare:
    def test_batch_preserves_order(self, make_service):
        async def echo(request):
            await asyncio.sleep(0)
            return _response(content=request.messages[-1].content.upper())

        service = make_service(chat=echo)
        calls = [BatchCall(model_id="fake-model", request=_request(f"m{i}")) for i in range(5)]
        results = _run(service.batch_call(calls, concurrency=2))
        assert [r.response.content for r in results] == ["M0", "M1", "M2", "M3", "M4"]

    def test_batch_failures_are_independent(self, make_service):
        service = make_service(chat=AsyncMock(return_value=_response()))
        calls = [
            BatchCall(model_id="fake-model", request=_request()),
            BatchCall(model_id="missing", request=_request()),
        ]
        results = _run(service.batch_call(calls))
        assert [r.success for r in results] == [True, False]

    def test_compare_models(self, make_service):
        service = make_service(chat=AsyncMock(return_value=_response()))
        results = _run(service.compare_models(["fake-model", "missing"], "Hello"))
        assert [(model_id, r.success) for model_id, r in results] == [
            ("fake-model", True),
            ("missing", False),
        ]

    def test_test_model(self, make_service):
        chat = AsyncMock(return_value=_response(content="OK"))
        service = make_service(chat=chat)
        result = _run(service.test_model("fake-model"))
        assert result.success is True
        request = chat.await_args[0][0]
        assert request.messages[0].content == 'Hello, respond with "OK"'


class TestBookkeeping:
    def test_call_stats(self, make_service):
        service = make_service(chat=AsyncMock(return_value=_response()))
        _run(service.call("fake-model", _request()))
        _run(service.call("fake-model", _request()))
        assert service.call_stats() == {"active_calls": 0, "total_calls": 2, "cached_adapters": 1}

    def test_config_change_invalidates_adapters(self, make_service):
        service = make_service(chat=AsyncMock(return_value=_response()))
        _run(service.call("fake-model", _request()))
        assert service.call_stats()["cached_adapters"] == 1
        service.update_provider_config("fake", timeout_seconds=30)
        assert service.call_stats()["cached_adapters"] == 0
        _run(service.aclose())

    def test_model_information(self):
        service = ModelService()
        assert service.available_models() == []
        assert service.model_info("gpt-4o") is None

        service.config_manager.set_provider_config(
            ProviderConfig(provider="openai", api_key="sk-test")
        )
        assert service.model_info("gpt-4o").name == "GPT-4o"
        assert {m.id for m in service.models_by_provider("openai")} == {
            "gpt-4o",
            "gpt-4o-mini",
            "gpt-3.5-turbo",
        }
        assert service.recommended_models("coding help") == ["gpt-4o", "gpt-4o-mini"]
        assert service.recommended_models("something else") == ["gpt-4o", "gpt-4o-mini"]

    def test_initialize_from_env(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "ak-test")
        service = ModelService()
        assert service.initialize() == ["anthropic"]
        assert service.validate_model("claude-3-5-haiku-latest").is_valid
