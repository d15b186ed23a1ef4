"""Evaluation orchestrator - drives the framework x loop x question pipeline.

For every loop and selected framework the prompt model writes a system
prompt, the work model answers each question under it and the scoring
model grades each answer. Stages run strictly one after another.

Public API (the "studs"):
    EvaluationOrchestrator: Runs evaluations against a model service and a result store
    RunHandle: Handle to a started run (cancel, events, wait)
    threshold_predicate: Default early-stop rule for threshold mode
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from ..llm.cancellation import CancellationToken
from ..llm.exceptions import LLMAbortedError
from ..llm.service import ModelService
from .events import (
    CancelledEvent,
    DoneEvent,
    ErrorEvent,
    EventChannel,
    LogEvent,
    StateUpdateEvent,
    UpdateEvent,
)
from .models import (
    Framework,
    FrameworkResult,
    ResultRow,
    RunConfig,
    RunConfigError,
    RunSummary,
    TestCase,
)
from .prompts import answer_messages, extract_score, prompt_generation_messages, scoring_messages
from .safe_call import safe_call
from .store import ResultStore, ResultStoreError

_logger = logging.getLogger(__name__)

ANSWER_PLACEHOLDER = "[no answer: the work model call failed]"

# (loop, results of that loop) -> stop after this loop?
StopPredicate = Callable[[int, list[FrameworkResult]], bool]


def threshold_predicate(threshold: float) -> StopPredicate:
    """Stop once any framework's total score in a loop reaches ``threshold``."""

    def should_stop(loop: int, results: list[FrameworkResult]) -> bool:
        return any(result.total_score >= threshold for result in results)

    return should_stop


def clamp_score(score: int, max_score: int) -> int:
    """Clamp a parsed score into ``[0, max_score]``, warning when it was out of range."""
    if 0 <= score <= max_score:
        return score
    clamped = min(max(score, 0), max_score)
    _logger.warning("Score %d outside [0, %d], clamped to %d", score, max_score, clamped)
    return clamped


class _RunState:
    """Mutable per-run counters, owned by the orchestrator task."""

    def __init__(self, total_tasks: int) -> None:
        self.total_tasks = total_tasks
        self.current_task = 0
        self.last_message = ""
        self.run_id: str | None = None
        self.loops_completed = 0
        self.results: list[FrameworkResult] = []

    @property
    def progress(self) -> float:
        if not self.total_tasks:
            return 100.0
        return self.current_task / self.total_tasks * 100

    def summary(self, status: str, message: str) -> RunSummary:
        return RunSummary(
            run_id=self.run_id,
            status=status,
            message=message,
            total_tasks=self.total_tasks,
            completed_tasks=self.current_task,
            loops_completed=self.loops_completed,
            results=self.results,
        )


class RunHandle:
    """Handle to a run started with ``EvaluationOrchestrator.start``.

    ``cancel`` is safe to call from any thread. ``events`` is closed after
    the terminal event.
    """

    def __init__(
        self, task: asyncio.Task[RunSummary], events: EventChannel, token: CancellationToken
    ) -> None:
        self._task = task
        self.events = events
        self.token = token

    def cancel(self, reason: str | None = None) -> None:
        self.token.cancel(reason or "Run cancelled by user")

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> RunSummary:
        return await self._task


class EvaluationOrchestrator:
    """Runs evaluations.

    Every model call goes through ``safe_call``, so a stage always ends in a
    success or failure value. A failed prompt stage skips the framework, a
    failed answer records a placeholder row with score 0; neither aborts the
    run. Only a malformed run config or a storage failure does.

    Example:
        >>> orchestrator = EvaluationOrchestrator(service, FileResultStore())
        >>> handle = orchestrator.start(config)
        >>> async for event in handle.events:
        ...     print(event)
        >>> summary = await handle.wait()
    """

    def __init__(self, service: ModelService, store: ResultStore) -> None:
        self._service = service
        self._store = store

    def start(
        self,
        config: RunConfig,
        token: CancellationToken | None = None,
        should_stop: StopPredicate | None = None,
    ) -> RunHandle:
        """Start a run as a task on the running event loop."""
        token = token or CancellationToken()
        channel = EventChannel()

        async def run_and_close() -> RunSummary:
            try:
                return await self.run(config, channel, token, should_stop)
            finally:
                channel.close()

        task = asyncio.create_task(run_and_close())
        return RunHandle(task, channel, token)

    async def run(
        self,
        config: RunConfig,
        channel: EventChannel,
        token: CancellationToken | None = None,
        should_stop: StopPredicate | None = None,
    ) -> RunSummary:
        """Run one evaluation, emitting events to ``channel``.

        Always ends with exactly one terminal event (done, cancelled or
        error) and returns the matching summary.
        """
        token = token or CancellationToken()
        if should_stop is None and config.termination.mode == "threshold":
            should_stop = threshold_predicate(config.termination.score_threshold or 0)

        state = _RunState(config.total_tasks())
        try:
            await self._run(config, channel, token, should_stop, state)
        except LLMAbortedError as e:
            message = f"Run cancelled: {e.message}"
            channel.emit(CancelledEvent(message=message))
            return state.summary("cancelled", message)
        except (RunConfigError, ResultStoreError) as e:
            _logger.error("Run failed: %s", e)
            channel.emit(ErrorEvent(message=str(e)))
            return state.summary("error", str(e))
        except Exception as e:
            _logger.exception("Run failed unexpectedly")
            message = f"Unexpected error: {e}"
            channel.emit(ErrorEvent(message=message))
            return state.summary("error", message)

        message = "All tasks completed successfully."
        channel.emit(DoneEvent(message=message))
        return state.summary("done", message)

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _advance(
        self, channel: EventChannel, state: _RunState, message: str, steps: int = 1
    ) -> None:
        state.current_task += steps
        state.last_message = message
        channel.emit(
            UpdateEvent(
                active_task_message=message,
                progress=state.progress,
                current_task=state.current_task,
            )
        )

    async def _run(
        self,
        config: RunConfig,
        channel: EventChannel,
        token: CancellationToken,
        should_stop: StopPredicate | None,
        state: _RunState,
    ) -> None:
        frameworks = config.selected()
        if not frameworks:
            raise RunConfigError("No frameworks selected")

        state.run_id = await self._store.open_run()
        channel.emit(LogEvent(message=f"Result directory created: {state.run_id}"))
        channel.emit(LogEvent(message=f"Loading context for project '{config.project.name}'..."))
        context = config.project.render()
        total_loops = config.termination.loops

        for loop in range(1, total_loops + 1):
            loop_results: list[FrameworkResult] = []
            for framework in frameworks:
                result = await self._run_framework(
                    config, channel, token, state, context, framework, loop, total_loops
                )
                loop_results.append(result)
                state.results.append(result)
            state.loops_completed = loop

            if should_stop is not None and loop < total_loops and should_stop(loop, loop_results):
                channel.emit(LogEvent(message=f"Stop condition met after loop {loop}"))
                break

    async def _run_framework(
        self,
        config: RunConfig,
        channel: EventChannel,
        token: CancellationToken,
        state: _RunState,
        context: str,
        framework: Framework,
        loop: int,
        total_loops: int,
    ) -> FrameworkResult:
        result = FrameworkResult(loop=loop, framework=framework.name)
        questions = config.test_cases

        token.raise_if_cancelled()
        self._advance(
            channel,
            state,
            f"[{loop}/{total_loops}] Generating system prompt for framework [{framework.name}]...",
        )
        generated = await safe_call(
            self._service,
            config.models.prompt,
            prompt_generation_messages(context, framework),
            config.model_params.prompt,
            max_retries=config.safe_call_retries,
            delay_seconds=config.safe_call_delay_seconds,
            token=token,
        )
        token.raise_if_cancelled()

        if not generated.success or generated.content is None:
            channel.emit(
                LogEvent(
                    message=f"Skipping framework [{framework.name}]: "
                    f"prompt generation failed: {generated.error}"
                )
            )
            self._advance(
                channel,
                state,
                f"[{framework.name}] Skipped {len(questions)} questions",
                steps=2 * len(questions),
            )
            result.skipped = True
            return result

        system_prompt = generated.content
        result.system_prompt = system_prompt
        await self._store.save_system_prompt(loop, framework, system_prompt)
        channel.emit(
            StateUpdateEvent(
                framework_name=framework.name,
                loop=loop,
                total_loops=total_loops,
                system_prompt=system_prompt,
            )
        )

        for case in questions:
            token.raise_if_cancelled()
            self._advance(channel, state, f"[{framework.name}] Answering question {case.id}...")
            answer = await safe_call(
                self._service,
                config.models.work,
                answer_messages(system_prompt, case),
                config.model_params.work,
                max_retries=config.safe_call_retries,
                delay_seconds=config.safe_call_delay_seconds,
                token=token,
            )
            token.raise_if_cancelled()

            if not answer.success or answer.content is None:
                channel.emit(
                    LogEvent(
                        message=f"[{framework.name}] Question {case.id} could not be answered, "
                        f"scoring skipped: {answer.error}"
                    )
                )
                self._advance(channel, state, f"[{framework.name}] Skipped scoring {case.id}")
                row = ResultRow(
                    id=case.id,
                    question=case.question,
                    reference_answer=case.reference_answer,
                    model_answer=ANSWER_PLACEHOLDER,
                    max_score=case.max_score,
                    score=0,
                    error=answer.error,
                )
            else:
                row = await self._score(
                    config, channel, token, state, framework, case, answer.content
                )

            result.rows.append(row)
            await self._store.write_framework_results(loop, framework, list(result.rows))
            if config.question_delay_seconds:
                await asyncio.sleep(config.question_delay_seconds)

        return result

    async def _score(
        self,
        config: RunConfig,
        channel: EventChannel,
        token: CancellationToken,
        state: _RunState,
        framework: Framework,
        case: TestCase,
        model_answer: str,
    ) -> ResultRow:
        channel.emit(
            StateUpdateEvent(
                question_id=case.id, question_text=case.question, model_answer=model_answer
            )
        )

        token.raise_if_cancelled()
        self._advance(channel, state, f"[{framework.name}] Scoring question {case.id}...")
        graded = await safe_call(
            self._service,
            config.models.score,
            scoring_messages(case, model_answer),
            config.model_params.score,
            max_retries=config.safe_call_retries,
            delay_seconds=config.safe_call_delay_seconds,
            token=token,
        )
        token.raise_if_cancelled()

        error = None
        if graded.success:
            score = clamp_score(extract_score(graded.content), case.max_score)
        else:
            score = 0
            error = f"Scoring failed: {graded.error}"
            channel.emit(LogEvent(message=f"[{framework.name}] {error} (question {case.id})"))

        channel.emit(StateUpdateEvent(score=score, max_score=case.max_score))
        return ResultRow(
            id=case.id,
            question=case.question,
            reference_answer=case.reference_answer,
            model_answer=model_answer,
            max_score=case.max_score,
            score=score,
            error=error,
        )


__all__ = [
    "EvaluationOrchestrator",
    "RunHandle",
    "StopPredicate",
    "threshold_predicate",
    "clamp_score",
    "ANSWER_PLACEHOLDER",
]
