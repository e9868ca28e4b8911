"""Cooperative cancellation for long running extraction runs."""

import threading

from .exceptions import PipelineCancelledError


class CancellationToken:
    """Thread-safe flag checked at stage boundaries and before external calls.

    The owner of a run keeps a reference to the token and calls ``cancel()``
    from any thread; the pipeline raises ``PipelineCancelledError`` the next
    time it reaches a checkpoint.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str) -> None:
        if self._event.is_set():
            raise PipelineCancelledError(stage)


def check_cancelled(token, stage: str) -> None:
    """Raise if ``token`` is set; a ``None`` token never cancels."""
    if token is not None:
        token.raise_if_cancelled(stage)
