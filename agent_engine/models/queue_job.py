"""Queue job ledger model.

Celery runs without a result backend, so job state (retention, dead jobs,
progress) is tracked here.
"""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import Column, DateTime, String, Text
from sqlmodel import Field, SQLModel


class JobStatus:
    """Queue job status values."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueJob(SQLModel, table=True):
    """A job handed to the broker."""

    __tablename__ = "queue_jobs"

    id: str = Field(primary_key=True, description="Broker job id")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True)),
    )
    run_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True)),
        description="Earliest time the job may start",
    )
    finished_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), index=True)
    )

    task_id: UUID = Field(index=True)
    user_id: UUID
    priority: int = Field(default=1)
    status: str = Field(default=JobStatus.WAITING, sa_column=Column(String, index=True))
    attempts_made: int = Field(default=0)
    max_attempts: int = Field(default=3)
    progress: int = Field(default=0)
    failed_reason: str | None = Field(default=None, sa_column=Column(Text))
