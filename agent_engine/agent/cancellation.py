"""Cooperative cancellation, pause and deadline checks for a run."""

import logging
import threading
import time
from collections.abc import Callable
from enum import StrEnum

from agent_engine.core.errors import ExecutionCancelledError, ExecutionTimeoutError

logger = logging.getLogger(__name__)


class Signal(StrEnum):
    PAUSE = "pause"
    CANCEL = "cancel"


class CancellationToken:
    """Token passed into ``Executor.execute`` and checked at step boundaries.

    Signals come from three places: ``cancel()``/``pause()`` on the token,
    an optional deadline measured on ``clock``, and an optional ``poll``
    callable returning an external signal (e.g. one written to the task
    record by another process).
    """

    def __init__(
        self,
        deadline: float | None = None,
        poll: Callable[[], str | None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._deadline = deadline
        self._poll = poll
        self._clock = clock
        self._lock = threading.Lock()
        self._signal: Signal | None = None

    @classmethod
    def with_timeout(
        cls,
        timeout: float,
        poll: Callable[[], str | None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "CancellationToken":
        return cls(deadline=clock() + timeout, poll=poll, clock=clock)

    def cancel(self) -> None:
        with self._lock:
            self._signal = Signal.CANCEL

    def pause(self) -> None:
        with self._lock:
            # cancel wins over pause
            if self._signal is None:
                self._signal = Signal.PAUSE

    def check(self) -> bool:
        """Check the token at a step boundary.

        Returns:
            True if a pause was requested

        Raises:
            ExecutionCancelledError: If cancellation was requested
            ExecutionTimeoutError: If the deadline has passed
        """
        if self._poll is not None:
            external = self._poll()
            if external == Signal.CANCEL:
                self.cancel()
            elif external == Signal.PAUSE:
                self.pause()

        if self._signal is Signal.CANCEL:
            raise ExecutionCancelledError("Execution cancelled")

        if self._deadline is not None and self._clock() >= self._deadline:
            raise ExecutionTimeoutError("Execution timed out")

        return self._signal is Signal.PAUSE
