"""Progress events and the channel they travel over.

The orchestrator writes events; any consumer (CLI, log, test harness)
reads them in emission order.

Public API (the "studs"):
    LogEvent, UpdateEvent, StateUpdateEvent: Progress events
    DoneEvent, CancelledEvent, ErrorEvent: Terminal events
    Event: Discriminated union of all events
    EventChannel: One-way asyncio event stream
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class LogEvent(BaseModel):
    """Free-text log line."""

    type: Literal["log"] = "log"
    message: str


class UpdateEvent(BaseModel):
    """Progress update. ``progress`` is a percentage in [0, 100]."""

    type: Literal["update"] = "update"
    active_task_message: str
    progress: float | None = None
    current_task: int | None = None


class StateUpdateEvent(BaseModel):
    """Snapshot of the stage that just completed.

    Fields are populated incrementally: the prompt stage sets the framework
    and system prompt, the answer stage the question and answer, the score
    stage the score.
    """

    type: Literal["state_update"] = "state_update"
    framework_name: str | None = None
    loop: int | None = None
    total_loops: int | None = None
    system_prompt: str | None = None
    question_id: int | str | None = None
    question_text: str | None = None
    model_answer: str | None = None
    score: int | None = None
    max_score: int | None = None


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    message: str


class CancelledEvent(BaseModel):
    type: Literal["cancelled"] = "cancelled"
    message: str


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


Event = Annotated[
    Union[LogEvent, UpdateEvent, StateUpdateEvent, DoneEvent, CancelledEvent, ErrorEvent],
    Field(discriminator="type"),
]

TERMINAL_EVENT_TYPES = frozenset({"done", "cancelled", "error"})

_event_adapter: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(data: dict) -> Event:
    """Rebuild an event from its serialized form."""
    return _event_adapter.validate_python(data)


class EventChannel:
    """Unbounded, single-consumer event stream backed by an asyncio.Queue.

    ``emit`` never blocks. Iteration ends once the channel is closed and
    every queued event has been read.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: Event) -> None:
        """Queue an event.

        Raises:
            RuntimeError: If the channel is closed
        """
        if self._closed:
            raise RuntimeError("Event channel is closed")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    async def __aiter__(self) -> AsyncIterator[Event]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item

    def drain(self) -> list[Event]:
        """Return every event queued so far without waiting."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is self._CLOSED:
                # keep the end marker for a later iterator
                self._queue.put_nowait(item)
                break
            events.append(item)
        return events


__all__ = [
    "LogEvent",
    "UpdateEvent",
    "StateUpdateEvent",
    "DoneEvent",
    "CancelledEvent",
    "ErrorEvent",
    "Event",
    "TERMINAL_EVENT_TYPES",
    "parse_event",
    "EventChannel",
]
