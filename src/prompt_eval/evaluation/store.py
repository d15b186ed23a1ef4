"""Result store protocol - what the orchestrator needs from persistence.

Public API (the "studs"):
    ResultStore: Protocol for persisting prompts and result rows
    ResultStoreError: Storage I/O failure (aborts the run)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import Framework, ResultRow


class ResultStoreError(Exception):
    """Persisting run output failed."""

    pass


@runtime_checkable
class ResultStore(Protocol):
    """Persistence the orchestrator writes through.

    The orchestrator never knows the storage format. Implementations raise
    ResultStoreError on I/O failure.
    """

    async def open_run(self) -> str:
        """Prepare storage for a new run and return its run id."""
        ...

    async def save_system_prompt(self, loop: int, framework: Framework, prompt: str) -> None:
        """Persist the system prompt generated for a framework in a loop."""
        ...

    async def write_framework_results(
        self, loop: int, framework: Framework, rows: list[ResultRow]
    ) -> None:
        """Persist the full current row list for a framework in a loop.

        Called repeatedly with a growing list; each call replaces the last.
        """
        ...


__all__ = ["ResultStore", "ResultStoreError"]
