"""Task execution model: one row per trace entry."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text
from sqlmodel import Field, SQLModel


class TaskExecution(SQLModel, table=True):
    """A recorded attempt of one plan step."""

    __tablename__ = "task_executions"

    # Primary key and timestamps
    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique identifier for the execution record",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the step attempt was recorded",
    )
    completed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )

    # Foreign key to task
    task_id: UUID = Field(
        sa_column=Column(ForeignKey("agent_tasks.id", ondelete="CASCADE"), index=True),
        description="ID of the task this attempt belongs to",
    )

    # Attempt fields
    step: int = Field(description="Plan step number")
    action: str
    tool: str
    input: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    output: Any | None = Field(default=None, sa_column=Column(JSON))
    reasoning: str | None = Field(default=None, sa_column=Column(Text))
    status: str = Field(
        sa_column=Column(String, index=True),
        description="Attempt status: completed or failed",
    )
    error: str | None = Field(default=None, sa_column=Column(Text))
    tokens: int = Field(default=0)
    credits: int = Field(default=0)
    duration: int = Field(default=0, description="Duration in ms")
