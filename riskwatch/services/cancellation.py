"""Cooperative cancellation for batch analyzers.

Batch jobs check their token between independent checks, never in the
middle of one, so a cancelled run stops at a check boundary.
"""
import threading
import time
from typing import Callable, Optional


class OperationCancelled(Exception):
    """A batch run was cancelled or timed out before a stage started."""

    def __init__(self, stage: str):
        self.stage = stage
        self.message = f"Operation cancelled before stage: {stage}"
        super().__init__(self.message)


class CancellationToken:
    """Cancellation flag with an optional deadline."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        monotonic: Callable[[], float] = time.monotonic
    ):
        self._event = threading.Event()
        self._monotonic = monotonic
        self._deadline = monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and self._monotonic() >= self._deadline

    def raise_if_cancelled(self, stage: str) -> None:
        if self.cancelled:
            raise OperationCancelled(stage)


def checkpoint(token: Optional[CancellationToken], stage: str) -> None:
    """Raise OperationCancelled if token is set; a missing token never cancels."""
    if token is not None:
        token.raise_if_cancelled(stage)
