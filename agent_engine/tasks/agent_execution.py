"""Agent execution Celery task."""

import logging

from celery.utils.time import get_exponential_backoff_interval

from agent_engine.celery_app import app
from agent_engine.core.config import settings
from agent_engine.core.errors import (
    InsufficientCreditsError,
    NotFoundError,
    PlanChangedError,
    TaskOwnershipError,
)
from agent_engine.queue import AgentTaskJob, get_admission_limiter
from agent_engine.services import QueueJobService
from agent_engine.services.agent_worker import build_worker

logger = logging.getLogger(__name__)

# Retrying cannot fix these
TERMINAL_ERRORS = (
    InsufficientCreditsError,
    TaskOwnershipError,
    NotFoundError,
    PlanChangedError,
)


def _ledger(method, *args) -> None:
    try:
        method(*args)
    except NotFoundError:
        logger.warning(f"No ledger row for job {args[0]}, skipping {method.__name__}")


def _requeue(task, payload: dict, job_id: str, countdown: float) -> None:
    """Send the same job again later without using up an attempt."""
    task.apply_async(
        args=[payload],
        task_id=job_id,
        countdown=countdown,
        retries=task.request.retries,
    )


@app.task(
    bind=True,
    name="agent_engine.tasks.agent_execution.execute_agent_task",
    max_retries=settings.agent_job_attempts - 1,
    retry_backoff=settings.agent_job_backoff,
    retry_backoff_max=600,
    retry_jitter=False,
)
def execute_agent_task(self, payload: dict):
    """Execute a queued agent task.

    This is a thin Celery wrapper around AgentWorker.process_job; admission,
    retry and dead-job bookkeeping happen here. The job payload may lower or
    raise the attempts set by ``max_retries``.

    Args:
        payload: AgentTaskJob payload (task_id, user_id, priority, retry_count)
    """
    job = AgentTaskJob.from_payload(payload)
    job_id = self.request.id

    wait = get_admission_limiter().acquire()
    if wait:
        _ledger(QueueJobService.mark_retrying, job_id, wait, "Waiting for admission")
        _requeue(self, payload, job_id, wait)
        return None

    _ledger(QueueJobService.mark_active, job_id)

    def report_progress(value: int) -> None:
        _ledger(QueueJobService.update_progress, job_id, value)

    try:
        summary = build_worker().process_job(job, report_progress)
    except TERMINAL_ERRORS as exc:
        logger.error(f"Agent task {job.task_id} failed permanently: {exc}")
        _ledger(QueueJobService.mark_failed, job_id, str(exc))
        raise
    except Exception as exc:
        logger.error(f"Error executing task {job.task_id}: {exc}")

        max_retries = job.retry_count - 1
        if self.request.retries >= max_retries:
            # Out of attempts: the job stays in the failed set
            _ledger(QueueJobService.mark_failed, job_id, str(exc))
            raise

        countdown = get_exponential_backoff_interval(
            factor=self.retry_backoff,
            retries=self.request.retries,
            maximum=self.retry_backoff_max,
            full_jitter=self.retry_jitter,
        )
        _ledger(QueueJobService.mark_retrying, job_id, countdown, str(exc))
        raise self.retry(exc=exc, countdown=countdown, max_retries=max_retries)

    _ledger(QueueJobService.mark_completed, job_id)
    return summary
