"""Cancellation token shared between a caller and a running operation.

Public API (the "studs"):
    CancellationToken: Thread-safe, one-way cancellation flag
"""

from __future__ import annotations

import threading

from .exceptions import LLMAbortedError


class CancellationToken:
    """Thread-safe, one-way cancellation flag.

    The holder of a token may cancel it from any thread or task; the
    operation observing it checks ``cancelled`` at its own boundaries.
    Once cancelled, a token stays cancelled.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def raise_if_cancelled(self) -> None:
        """Raise LLMAbortedError if the token has been cancelled."""
        if self._event.is_set():
            raise LLMAbortedError(self._reason or "Call aborted")

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"


__all__ = ["CancellationToken"]
