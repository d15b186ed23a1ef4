"""Tests for the evaluation orchestrator."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from prompt_eval.evaluation.events import (
    CancelledEvent,
    DoneEvent,
    ErrorEvent,
    EventChannel,
    LogEvent,
    StateUpdateEvent,
    UpdateEvent,
)
from prompt_eval.evaluation.file_store import FileResultStore
from prompt_eval.evaluation.models import (
    Framework,
    FrameworkProperty,
    ModelSelection,
    ProjectContext,
    RunConfig,
    TerminationPolicy,
    TestCase,
)
from prompt_eval.evaluation.orchestrator import (
    ANSWER_PLACEHOLDER,
    EvaluationOrchestrator,
    clamp_score,
    threshold_predicate,
)
from prompt_eval.evaluation.store import ResultStoreError
from prompt_eval.llm.cancellation import CancellationToken
from prompt_eval.llm.types import CallResult, ChatResponse, ModelError


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def _ok(content):
    return CallResult(success=True, call_id="c", response=ChatResponse(id="r", content=content))


def _failed(message="server down"):
    return CallResult(
        success=False, call_id="c", error=ModelError(code="SERVER_ERROR", message=message)
    )


def _config(n_questions=2, frameworks=None, **overrides):
    data = {
        "project": ProjectContext(name="Demo", background="A demo project."),
        "frameworks": frameworks
        or [
            Framework(
                id="crispe",
                name="CRISPE",
                description="Capacity, insight, statement",
                properties=[FrameworkProperty(name="Capacity", description="Role")],
            )
        ],
        "test_cases": [
            TestCase(id=i, question=f"Q{i}?", answer=f"A{i}", score=10)
            for i in range(1, n_questions + 1)
        ],
        "models": ModelSelection(prompt="prompt-model", work="work-model", score="score-model"),
        "question_delay_seconds": 0,
        "safe_call_retries": 0,
        "safe_call_delay_seconds": 0,
    }
    data.update(overrides)
    return RunConfig(**data)


def _make_mock_service(prompt=None, work=None, score=None):
    """Service whose ``call`` routes by model id to per-role handlers.

    Each handler takes the request and returns a CallResult.
    """
    prompt = prompt or (lambda request: _ok("You are a helpful assistant."))
    work = work or (lambda request: _ok(f"Answer to {request.messages[-1].content}"))
    score = score or (lambda request: _ok("8"))
    routes = {"prompt-model": prompt, "work-model": work, "score-model": score}

    async def call(model_id, request, **kwargs):
        return routes[model_id](request)

    service = MagicMock()
    service.call = AsyncMock(side_effect=call)
    return service


def _make_mock_store():
    store = MagicMock()
    store.open_run = AsyncMock(return_value="240101_120000")
    store.save_system_prompt = AsyncMock()
    store.write_framework_results = AsyncMock()
    return store


def _execute(config, service, store=None, token=None, should_stop=None):
    store = store or _make_mock_store()

    async def scenario():
        channel = EventChannel()
        orchestrator = EvaluationOrchestrator(service, store)
        summary = await orchestrator.run(config, channel, token, should_stop)
        return summary, channel.drain()

    return _run(scenario())


def _calls_to(service, model_id):
    return [c for c in service.call.await_args_list if c.args[0] == model_id]


class TestHappyPath:
    def test_end_to_end_with_file_store(self, tmp_path):
        answers = iter(["answer-A", "answer-B"])
        scores = iter(["8", "3"])
        service = _make_mock_service(
            work=lambda request: _ok(next(answers)),
            score=lambda request: _ok(next(scores)),
        )
        store = FileResultStore(tmp_path)
        config = _config(
            test_cases=[
                TestCase(id=1, question="Q1?", answer="A1", score=10),
                TestCase(id=2, question="Q2?", answer="A2", score=5),
            ]
        )

        summary, events = _execute(config, service, store)

        assert summary.status == "done"
        assert summary.total_tasks == 5
        assert summary.completed_tasks == 5
        assert summary.loops_completed == 1
        assert summary.results[0].total_score == 11
        assert isinstance(events[-1], DoneEvent)
        assert events[-1].message == "All tasks completed successfully."

        framework_dir = tmp_path / summary.run_id / "1" / "CRISPE"
        assert (framework_dir / "CRISPE.md").read_text(encoding="utf-8") == (
            "You are a helpful assistant."
        )
        rows = json.loads((framework_dir / "results.json").read_text(encoding="utf-8"))
        assert [(row["id"], row["score"], row["max_score"]) for row in rows] == [
            (1, 8, 10),
            (2, 3, 5),
        ]
        assert [row["model_answer"] for row in rows] == ["answer-A", "answer-B"]

    def test_progress_is_monotonic_and_reaches_total(self):
        config = _config(
            n_questions=3,
            frameworks=[Framework(id="a", name="A"), Framework(id="b", name="B")],
            termination=TerminationPolicy(mode="loop", loop_count=2),
        )
        summary, events = _execute(config, _make_mock_service())

        updates = [e for e in events if isinstance(e, UpdateEvent)]
        counters = [e.current_task for e in updates]
        assert counters == sorted(counters)
        assert counters[-1] == config.total_tasks() == 28
        assert updates[-1].progress == pytest.approx(100.0)
        assert all(0 <= e.progress <= 100 for e in updates)
        assert summary.loops_completed == 2

    def test_stage_order(self):
        service = _make_mock_service()
        _execute(_config(n_questions=2), service)
        order = [c.args[0] for c in service.call.await_args_list]
        assert order == [
            "prompt-model",
            "work-model",
            "score-model",
            "work-model",
            "score-model",
        ]

    def test_answer_runs_under_generated_prompt(self):
        service = _make_mock_service(prompt=lambda request: _ok("SYSTEM PROMPT X"))
        _execute(_config(n_questions=1), service)
        request = _calls_to(service, "work-model")[0].args[1]
        assert request.messages[0].role == "system"
        assert request.messages[0].content == "SYSTEM PROMPT X"

    def test_state_updates(self):
        _, events = _execute(_config(n_questions=1), _make_mock_service())
        states = [e for e in events if isinstance(e, StateUpdateEvent)]
        assert states[0].framework_name == "CRISPE"
        assert states[0].system_prompt == "You are a helpful assistant."
        assert states[1].question_id == 1
        assert states[1].model_answer == "Answer to Q1?"
        assert (states[2].score, states[2].max_score) == (8, 10)

    def test_results_written_after_every_question(self):
        store = _make_mock_store()
        _execute(_config(n_questions=3), _make_mock_service(), store)
        lengths = [len(c.args[2]) for c in store.write_framework_results.await_args_list]
        assert lengths == [1, 2, 3]

    def test_start_streams_events(self):
        async def scenario():
            orchestrator = EvaluationOrchestrator(_make_mock_service(), _make_mock_store())
            handle = orchestrator.start(_config())
            events = [event async for event in handle.events]
            return events, await handle.wait(), handle.done

        events, summary, done = _run(scenario())
        assert isinstance(events[0], LogEvent)
        assert isinstance(events[-1], DoneEvent)
        assert summary.status == "done"
        assert done is True


class TestFailures:
    def test_answer_failure_records_placeholder(self):
        def work(request):
            if request.messages[-1].content == "Q3?":
                return _failed("model overloaded")
            return _ok("an answer")

        service = _make_mock_service(work=work)
        config = _config(n_questions=5)
        summary, events = _execute(config, service)

        assert summary.status == "done"
        rows = summary.results[0].rows
        assert len(rows) == 5
        assert rows[2].score == 0
        assert rows[2].model_answer == ANSWER_PLACEHOLDER
        assert rows[2].error == "model overloaded"
        assert len(_calls_to(service, "score-model")) == 4
        updates = [e for e in events if isinstance(e, UpdateEvent)]
        assert updates[-1].current_task == config.total_tasks() == 11

    def test_prompt_failure_skips_framework(self):
        def prompt(request):
            if "Name: A" in request.messages[0].content:
                return _failed("no prompt")
            return _ok("prompt for B")

        service = _make_mock_service(prompt=prompt)
        store = _make_mock_store()
        config = _config(
            n_questions=2, frameworks=[Framework(id="a", name="A"), Framework(id="b", name="B")]
        )
        summary, events = _execute(config, service, store)

        assert summary.status == "done"
        skipped, ran = summary.results
        assert skipped.skipped is True
        assert skipped.rows == []
        assert ran.framework == "B"
        assert len(ran.rows) == 2
        store.save_system_prompt.assert_awaited_once()
        assert any("Skipping framework [A]" in e.message for e in events if isinstance(e, LogEvent))
        updates = [e for e in events if isinstance(e, UpdateEvent)]
        assert updates[-1].current_task == config.total_tasks() == 10

    def test_scoring_failure_scores_zero(self):
        service = _make_mock_service(score=lambda request: _failed("grader down"))
        summary, _ = _execute(_config(n_questions=1), service)
        row = summary.results[0].rows[0]
        assert row.score == 0
        assert row.model_answer == "Answer to Q1?"
        assert row.error == "Scoring failed: grader down"

    def test_out_of_range_score_is_clamped(self):
        service = _make_mock_service(score=lambda request: _ok("15"))
        summary, _ = _execute(_config(n_questions=1), service)
        assert summary.results[0].rows[0].score == 10

    def test_safe_call_retries_each_stage(self):
        attempts = iter([_failed(), _ok("recovered")])
        service = _make_mock_service(work=lambda request: next(attempts))
        summary, _ = _execute(_config(n_questions=1, safe_call_retries=1), service)
        assert summary.results[0].rows[0].model_answer == "recovered"
        assert len(_calls_to(service, "work-model")) == 2

    def test_store_failure_aborts_run(self):
        store = _make_mock_store()
        store.open_run = AsyncMock(side_effect=ResultStoreError("disk full"))
        summary, events = _execute(_config(), _make_mock_service(), store)
        assert summary.status == "error"
        assert isinstance(events[-1], ErrorEvent)
        assert events[-1].message == "disk full"
        assert [e for e in events if isinstance(e, (DoneEvent, CancelledEvent))] == []


    def test_unexpected_exception_ends_with_error_event(self):
        store = _make_mock_store()
        store.save_system_prompt = AsyncMock(side_effect=RuntimeError("boom"))
        summary, events = _execute(_config(), _make_mock_service(), store)
        assert summary.status == "error"
        assert isinstance(events[-1], ErrorEvent)
        assert events[-1].message == "Unexpected error: boom"

    def test_unencodable_prompt_with_file_store(self, tmp_path):
        service = _make_mock_service(prompt=lambda request: _ok("prompt \ud800"))

        async def scenario():
            handle = EvaluationOrchestrator(service, FileResultStore(tmp_path)).start(_config())
            events = [event async for event in handle.events]
            return events, await handle.wait()

        events, summary = _run(scenario())
        assert summary.status == "error"
        assert isinstance(events[-1], ErrorEvent)
        assert "Cannot write" in events[-1].message


class TestCancellation:
    def test_cancel_between_questions(self):
        token = CancellationToken()
        answered = []

        def work(request):
            answered.append(request.messages[-1].content)
            if len(answered) == 2:
                token.cancel("Run cancelled by user")
            return _ok("an answer")

        service = _make_mock_service(work=work)
        store = _make_mock_store()
        summary, events = _execute(_config(n_questions=5), service, store, token=token)

        assert summary.status == "cancelled"
        assert answered == ["Q1?", "Q2?"]
        assert len(_calls_to(service, "score-model")) == 1
        terminal = [e for e in events if isinstance(e, (DoneEvent, CancelledEvent, ErrorEvent))]
        assert terminal == [events[-1]]
        assert events[-1].message == "Run cancelled: Run cancelled by user"
        assert len(store.write_framework_results.await_args_list[-1].args[2]) == 1

    def test_in_flight_answer_discarded(self):
        token = CancellationToken()

        def work(request):
            if request.messages[-1].content == "Q3?":
                token.cancel("Run cancelled by user")
            return _ok("an answer")

        store = _make_mock_store()
        summary, events = _execute(
            _config(n_questions=5), _make_mock_service(work=work), store, token=token
        )

        assert isinstance(events[-1], CancelledEvent)
        question_ids = [
            e.question_id
            for e in events
            if isinstance(e, StateUpdateEvent) and e.question_id is not None
        ]
        assert question_ids == [1, 2]
        rows = store.write_framework_results.await_args_list[-1].args[2]
        assert [row.id for row in rows] == [1, 2]
        assert summary.status == "cancelled"

    def test_cancel_before_start(self):
        token = CancellationToken()
        token.cancel("stop")
        service = _make_mock_service()
        summary, events = _execute(_config(), service, token=token)
        assert summary.status == "cancelled"
        service.call.assert_not_awaited()
        assert isinstance(events[-1], CancelledEvent)

    def test_handle_cancel(self):
        async def scenario():
            gate = asyncio.Event()

            async def call(model_id, request, **kwargs):
                await gate.wait()
                return _ok("8")

            service = MagicMock()
            service.call = AsyncMock(side_effect=call)
            handle = EvaluationOrchestrator(service, _make_mock_store()).start(_config())
            await asyncio.sleep(0)
            handle.cancel()
            gate.set()
            events = [event async for event in handle.events]
            return events, await handle.wait()

        events, summary = _run(scenario())
        assert summary.status == "cancelled"
        assert isinstance(events[-1], CancelledEvent)


class TestTermination:
    def test_threshold_stops_early(self):
        config = _config(
            n_questions=2,
            termination=TerminationPolicy(mode="threshold", score_threshold=15, max_loops=3),
        )
        summary, events = _execute(config, _make_mock_service())
        assert summary.status == "done"
        assert summary.loops_completed == 1
        assert any(
            e.message == "Stop condition met after loop 1"
            for e in events
            if isinstance(e, LogEvent)
        )

    def test_threshold_not_reached_runs_max_loops(self):
        config = _config(
            n_questions=2,
            termination=TerminationPolicy(mode="threshold", score_threshold=20, max_loops=2),
        )
        summary, _ = _execute(config, _make_mock_service())
        assert summary.loops_completed == 2

    def test_custom_stop_predicate(self):
        config = _config(n_questions=1, termination=TerminationPolicy(loop_count=4))
        summary, _ = _execute(
            config, _make_mock_service(), should_stop=lambda loop, results: loop == 2
        )
        assert summary.loops_completed == 2

    def test_threshold_predicate(self):
        from prompt_eval.evaluation.models import FrameworkResult, ResultRow

        row = ResultRow(
            id=1, question="Q", reference_answer="A", model_answer="a", max_score=10, score=7
        )
        should_stop = threshold_predicate(7)
        assert should_stop(1, [FrameworkResult(loop=1, framework="A", rows=[row])]) is True
        assert should_stop(1, [FrameworkResult(loop=1, framework="A", skipped=True)]) is False

    @pytest.mark.parametrize("score,expected", [(5, 5), (0, 0), (10, 10), (12, 10), (-1, 0)])
    def test_clamp_score(self, score, expected):
        assert clamp_score(score, 10) == expected
