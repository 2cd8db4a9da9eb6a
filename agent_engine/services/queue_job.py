"""Queue job ledger service.

Tracks what the broker cannot tell us without a result backend: job counts
per state, progress, dead jobs and retention.
"""

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, func
from sqlmodel import select

from agent_engine.core.database import get_session
from agent_engine.core.errors import NotFoundError
from agent_engine.models import JobStatus, QueueJob

logger = logging.getLogger(__name__)

# Retention: completed jobs 24h / 1000 max, failed jobs 7d / 5000 max
COMPLETED_RETENTION = (timedelta(seconds=86400), 1000)
FAILED_RETENTION = (timedelta(seconds=604800), 5000)


def _load(session, job_id: str) -> QueueJob:
    job = session.get(QueueJob, job_id)
    if job is None:
        raise NotFoundError(f"Queue job {job_id} not found")
    return job


class QueueJobService:
    """Service for queue job bookkeeping."""

    @staticmethod
    def create_job(
        job_id: str,
        task_id: UUID | str,
        user_id: UUID | str,
        priority: int = 1,
        max_attempts: int = 3,
        delay: float | None = None,
    ) -> QueueJob:
        now = datetime.now(UTC)
        with get_session() as session:
            job = QueueJob(
                id=job_id,
                task_id=UUID(str(task_id)),
                user_id=UUID(str(user_id)),
                priority=priority,
                max_attempts=max_attempts,
                created_at=now,
                run_at=now + timedelta(seconds=delay or 0),
            )
            session.add(job)
            session.commit()
            session.refresh(job)
            return job

    @staticmethod
    def delete_job(job_id: str) -> None:
        with get_session() as session:
            session.execute(delete(QueueJob).where(QueueJob.id == job_id))

    @staticmethod
    def get_job(job_id: str) -> QueueJob:
        with get_session() as session:
            return _load(session, job_id)

    @staticmethod
    def mark_active(job_id: str) -> None:
        with get_session() as session:
            job = _load(session, job_id)
            job.status = JobStatus.ACTIVE
            job.attempts_made += 1
            job.progress = 0
            session.add(job)

    @staticmethod
    def update_progress(job_id: str, progress: int) -> None:
        with get_session() as session:
            job = _load(session, job_id)
            job.progress = max(0, min(progress, 100))
            session.add(job)

    @staticmethod
    def mark_retrying(job_id: str, countdown: float, reason: str) -> None:
        """Put a job back to waiting until its backoff has elapsed."""
        with get_session() as session:
            job = _load(session, job_id)
            job.status = JobStatus.WAITING
            job.run_at = datetime.now(UTC) + timedelta(seconds=countdown)
            job.failed_reason = reason
            session.add(job)

    @staticmethod
    def mark_completed(job_id: str) -> None:
        """Move a job to the completed set and apply retention."""
        with get_session() as session:
            job = _load(session, job_id)
            job.status = JobStatus.COMPLETED
            job.progress = 100
            job.failed_reason = None
            job.finished_at = datetime.now(UTC)
            session.add(job)
        QueueJobService.apply_retention()

    @staticmethod
    def mark_failed(job_id: str, reason: str) -> None:
        """Move a job to the failed (dead) set and apply retention."""
        with get_session() as session:
            job = _load(session, job_id)
            job.status = JobStatus.FAILED
            job.failed_reason = reason
            job.finished_at = datetime.now(UTC)
            session.add(job)
        QueueJobService.apply_retention()

    @staticmethod
    def get_counts() -> dict[str, int]:
        """Count jobs per state. Waiting jobs not yet due count as delayed."""
        now = datetime.now(UTC)
        with get_session() as session:
            rows = session.execute(
                select(QueueJob.status, func.count()).group_by(QueueJob.status)
            ).all()
            counts = {status: count for status, count in rows}

            delayed = session.execute(
                select(func.count())
                .select_from(QueueJob)
                .where(QueueJob.status == JobStatus.WAITING, QueueJob.run_at > now)
            ).scalar()

        return {
            "waiting": counts.get(JobStatus.WAITING, 0) - delayed,
            "active": counts.get(JobStatus.ACTIVE, 0),
            "completed": counts.get(JobStatus.COMPLETED, 0),
            "failed": counts.get(JobStatus.FAILED, 0),
            "delayed": delayed,
        }

    @staticmethod
    def apply_retention(now: datetime | None = None) -> dict[str, int]:
        """Drop finished jobs that are too old or beyond the per-state cap.

        Returns:
            Number of removed jobs per state
        """
        now = now or datetime.now(UTC)
        removed = {}
        with get_session() as session:
            for status, (max_age, max_count) in (
                (JobStatus.COMPLETED, COMPLETED_RETENTION),
                (JobStatus.FAILED, FAILED_RETENTION),
            ):
                expired = session.execute(
                    delete(QueueJob)
                    .where(
                        QueueJob.status == status,
                        QueueJob.finished_at < now - max_age,
                    )
                    .execution_options(synchronize_session=False)
                ).rowcount

                overflow_ids = (
                    session.execute(
                        select(QueueJob.id)
                        .where(QueueJob.status == status)
                        .order_by(QueueJob.finished_at.desc())
                        .offset(max_count)
                    )
                    .scalars()
                    .all()
                )
                if overflow_ids:
                    session.execute(
                        delete(QueueJob)
                        .where(QueueJob.id.in_(overflow_ids))
                        .execution_options(synchronize_session=False)
                    )

                removed[status] = expired + len(overflow_ids)

        if any(removed.values()):
            logger.info(f"Queue retention removed {removed}")
        return removed
