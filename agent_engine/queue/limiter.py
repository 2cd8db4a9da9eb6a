"""Admission limiter shared by every worker through Redis."""

import logging
import time
from collections.abc import Callable

import redis

from agent_engine.core.config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "agent_engine:admission"


class AdmissionLimiter:
    """Fixed-window counter allowing ``limit`` job starts per ``window`` seconds.

    The counter lives in Redis, so the limit holds across all workers and
    processes rather than per worker.
    """

    def __init__(
        self,
        client: redis.Redis,
        limit: int,
        window: int,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.limit = limit
        self.window = window
        self._clock = clock

    def acquire(self) -> float:
        """Take a slot in the current window.

        Returns:
            0 when admitted, otherwise seconds until the next window opens
        """
        now = self._clock()
        window_index = int(now // self.window)
        key = f"{KEY_PREFIX}:{window_index}"

        count = self.client.incr(key)
        if count == 1:
            self.client.expire(key, self.window)

        if count <= self.limit:
            return 0.0

        wait = (window_index + 1) * self.window - now
        logger.info(f"Admission limit of {self.limit} reached, next slot in {wait:.1f}s")
        return wait


_limiter: AdmissionLimiter | None = None


def get_admission_limiter() -> AdmissionLimiter:
    """Get or create the process-wide limiter on the broker's Redis."""
    global _limiter
    if _limiter is None:
        _limiter = AdmissionLimiter(
            redis.Redis.from_url(settings.celery_broker_url),
            limit=settings.agent_admission_limit,
            window=settings.agent_admission_window,
        )
    return _limiter
