"""Approval gates that block a step until a human decides."""

import threading
import time
from collections.abc import Callable
from enum import StrEnum


class ApprovalDecision(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING = "pending"


class ApprovalGate:
    """Base gate. ``wait`` blocks until a decision or the timeout."""

    def wait(
        self, task_id: str, step_number: int, timeout: float
    ) -> ApprovalDecision:
        raise NotImplementedError


class InMemoryApprovalGate(ApprovalGate):
    """Gate for a single process: decisions arrive via approve()/reject()."""

    def __init__(self):
        self._decisions: dict[tuple[str, int], ApprovalDecision] = {}
        self._condition = threading.Condition()

    def approve(self, task_id: str, step_number: int) -> None:
        self._decide(task_id, step_number, ApprovalDecision.APPROVED)

    def reject(self, task_id: str, step_number: int) -> None:
        self._decide(task_id, step_number, ApprovalDecision.REJECTED)

    def _decide(self, task_id: str, step_number: int, decision: ApprovalDecision):
        with self._condition:
            self._decisions[(task_id, step_number)] = decision
            self._condition.notify_all()

    def wait(
        self, task_id: str, step_number: int, timeout: float
    ) -> ApprovalDecision:
        key = (task_id, step_number)
        with self._condition:
            self._condition.wait_for(lambda: key in self._decisions, timeout=timeout)
            return self._decisions.get(key, ApprovalDecision.PENDING)


class StoreApprovalGate(ApprovalGate):
    """Gate that polls decisions persisted on the task record."""

    def __init__(
        self,
        lookup: Callable[[str, int], str | None],
        poll_interval: float,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._lookup = lookup
        self._poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    def wait(
        self, task_id: str, step_number: int, timeout: float
    ) -> ApprovalDecision:
        deadline = self._clock() + timeout
        while True:
            decision = self._lookup(task_id, step_number)
            if decision is not None:
                return ApprovalDecision(decision)
            if self._clock() >= deadline:
                return ApprovalDecision.PENDING
            self._sleep(self._poll_interval)
