"""Durable agent task queue that degrades gracefully when the broker is down."""

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any
from uuid import uuid4

from agent_engine.core.config import settings
from agent_engine.core.errors import QueueUnavailableError
from agent_engine.services.queue_job import QueueJobService

logger = logging.getLogger(__name__)

AGENT_QUEUE_NAME = "agent_execution"
EXECUTE_TASK_NAME = "agent_engine.tasks.agent_execution.execute_agent_task"
FALLBACK_PREFIX = "fallback-"

ErrorReporter = Callable[[Exception, dict[str, Any]], None]


def is_fallback_job_id(job_id: str) -> bool:
    """Whether a job id means the task must be run synchronously."""
    return job_id.startswith(FALLBACK_PREFIX)


def _log_report(error: Exception, context: dict[str, Any]) -> None:
    logger.error(f"Queue error reported: {error} {context}")


@dataclass
class AgentTaskJob:
    """Payload carried by an agent job."""

    task_id: str
    user_id: str
    priority: int = 1
    retry_count: int = settings.agent_job_attempts

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AgentTaskJob":
        return cls(
            task_id=str(payload["task_id"]),
            user_id=str(payload["user_id"]),
            priority=payload.get("priority") or 1,
            retry_count=payload.get("retry_count") or settings.agent_job_attempts,
        )


class AgentQueue:
    """Producer side of the agent queue.

    The broker connection is attempted lazily, at most once per instance.
    When it fails (or the queue is disabled) every operation degrades:
    enqueueing returns a fallback id and admin calls report ``available:
    False`` instead of raising.
    """

    _default: "AgentQueue | None" = None

    def __init__(
        self,
        celery=None,
        job_store=QueueJobService,
        report: ErrorReporter | None = None,
        enabled: bool | None = None,
    ):
        if celery is None:
            from agent_engine.celery_app import app as celery

        self.celery = celery
        self.job_store = job_store
        self.report = report or _log_report
        self.enabled = settings.queue_enabled if enabled is None else enabled

        self._connect_attempted = False
        self._available = False
        self._connection = None

    @classmethod
    def default(cls) -> "AgentQueue":
        """Process-wide queue instance."""
        if cls._default is None:
            cls._default = cls()
        return cls._default

    @classmethod
    def reset_default(cls) -> None:
        if cls._default is not None:
            cls._default.close()
        cls._default = None

    def connect(self) -> bool:
        """Connect to the broker once. Returns whether the queue is usable."""
        if self._connect_attempted:
            return self._available
        self._connect_attempted = True

        if not self.enabled:
            logger.info("Agent queue disabled, tasks will run synchronously")
            return False

        try:
            self._connection = self.celery.connection_for_write()
            self._connection.ensure_connection(
                max_retries=settings.queue_connect_retries
            )
            self._available = True
            logger.info("Agent queue connected")
        except Exception as e:
            logger.warning(f"Agent queue unavailable, running without it: {e}")
            self.report(e, {"operation": "connect"})
            self._release()

        return self._available

    def close(self) -> None:
        """Release the broker connection. Safe to call more than once."""
        self._release()
        self._available = False

    def _release(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.release()
        except Exception as e:
            logger.warning(f"Error releasing queue connection: {e}")
        self._connection = None

    def is_available(self) -> bool:
        return self.connect()

    def queue_agent_task(
        self,
        task_id: str,
        user_id: str,
        priority: int | None = None,
        delay: float | None = None,
        retry_count: int | None = None,
    ) -> str:
        """Enqueue a task for a worker.

        Never raises. When the job cannot be enqueued, returns
        ``fallback-<task_id>`` so the caller runs the task synchronously.

        Args:
            task_id: Task to execute
            user_id: Owner expected by the worker
            priority: Broker priority
            delay: Seconds before the job becomes runnable
            retry_count: Attempts for the job, defaults to AGENT_JOB_ATTEMPTS

        Returns:
            The job id, or a fallback id
        """
        job = AgentTaskJob(
            task_id=task_id,
            user_id=user_id,
            priority=priority or 1,
            retry_count=retry_count or settings.agent_job_attempts,
        )
        job_id = str(uuid4())
        recorded = False

        try:
            if not self.connect():
                raise QueueUnavailableError("Agent queue is not available")

            self.job_store.create_job(
                job_id,
                task_id,
                user_id,
                priority=job.priority,
                max_attempts=job.retry_count,
                delay=delay,
            )
            recorded = True
            self.celery.send_task(
                EXECUTE_TASK_NAME,
                args=[job.to_payload()],
                task_id=job_id,
                queue=AGENT_QUEUE_NAME,
                countdown=delay,
                priority=job.priority,
            )
        except Exception as e:
            if recorded:
                self._forget(job_id)
            logger.warning(f"Could not enqueue task {task_id}, using fallback: {e}")
            self.report(e, {"operation": "queue_agent_task", "task_id": task_id})
            return f"{FALLBACK_PREFIX}{task_id}"

        logger.info(f"Queued agent task {task_id} as job {job_id}")
        return job_id

    def _forget(self, job_id: str) -> None:
        try:
            self.job_store.delete_job(job_id)
        except Exception as e:
            logger.warning(f"Could not remove ledger row for job {job_id}: {e}")

    def get_queue_stats(self) -> dict[str, Any]:
        """Job counts per state, or zeros when the queue is unavailable."""
        empty = {
            "waiting": 0,
            "active": 0,
            "completed": 0,
            "failed": 0,
            "delayed": 0,
            "total": 0,
            "available": False,
        }
        if not self.connect():
            return empty

        try:
            counts = self.job_store.get_counts()
        except Exception as e:
            logger.error(f"Failed to read queue stats: {e}")
            self.report(e, {"operation": "get_queue_stats"})
            return {**empty, "error": str(e)}

        return {**counts, "total": sum(counts.values()), "available": True}

    def pause(self) -> dict[str, Any]:
        """Stop workers from consuming agent jobs."""
        return self._admin(
            "pause", lambda: self.celery.control.cancel_consumer(AGENT_QUEUE_NAME)
        )

    def resume(self) -> dict[str, Any]:
        """Let workers consume agent jobs again."""
        return self._admin(
            "resume", lambda: self.celery.control.add_consumer(AGENT_QUEUE_NAME)
        )

    def clean(self) -> dict[str, Any]:
        """Apply retention to finished jobs."""
        return self._admin("clean", self.job_store.apply_retention)

    def _admin(self, operation: str, action: Callable[[], Any]) -> dict[str, Any]:
        if not self.connect():
            return {"available": False, "operation": operation}
        try:
            outcome = action()
        except Exception as e:
            logger.error(f"Queue {operation} failed: {e}")
            self.report(e, {"operation": operation})
            return {"available": False, "operation": operation, "error": str(e)}

        logger.info(f"Queue {operation} done")
        return {"available": True, "operation": operation, "result": outcome}
