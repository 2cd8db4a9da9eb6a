"""Task model for agent execution."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime, String, Text
from sqlmodel import Field, SQLModel


class TaskStatus:
    """Task status values."""

    PENDING = "pending"
    PLANNING = "planning"
    EXECUTING = "executing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    FINISHED = frozenset({COMPLETED, FAILED, CANCELLED})


class Task(SQLModel, table=True):
    """A user-initiated goal for the agent engine."""

    __tablename__ = "agent_tasks"

    # Primary key and timestamps
    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique identifier for the task",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the task was created",
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the task was last updated",
    )
    started_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when planning started",
    )
    completed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
    failed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )

    # Ownership
    user_id: UUID = Field(
        foreign_key="users.id",
        index=True,
        description="Owner of the task",
    )

    # Goal and agent configuration
    title: str = Field(description="Short title derived from the goal")
    description: str = Field(
        sa_column=Column(Text),
        description="Natural language goal describing the task to execute",
    )
    agent_type: str = Field(
        default="custom",
        description="Agent type: browser_automation, email_campaign, "
        "data_processing, research, social_media, custom",
    )
    agent_model: str | None = Field(default=None, description="Model reference")
    agent_config: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON),
        description="Persisted AgentConfig as JSON",
    )
    context: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON),
        description="Extra context handed to the planner",
    )
    priority: int = Field(default=1, description="Queue priority")

    # Execution
    status: str = Field(
        default=TaskStatus.PENDING,
        sa_column=Column(String, index=True),
        description="Task status: pending, planning, executing, paused, "
        "completed, failed, cancelled",
    )
    plan: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSON), description="ExecutionPlan as JSON"
    )
    current_step: int = Field(default=0, description="Last completed step number")
    total_steps: int = Field(default=0)
    state: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON),
        description="Checkpointed agent state used for resumption",
    )
    control_signal: str | None = Field(
        default=None, description="Out-of-process request: pause or cancel"
    )
    approvals: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON),
        description="Approval decisions keyed by step number",
    )

    # Results
    result: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    execution_trace: list[dict[str, Any]] | None = Field(
        default=None, sa_column=Column(JSON)
    )
    error: str | None = Field(default=None, sa_column=Column(Text))

    # Usage
    total_tokens: int = Field(default=0)
    total_credits: int = Field(default=0)
    credits_reserved: int = Field(
        default=0, description="Credits held against the owner's budget"
    )
    credits_charged: int = Field(
        default=0, description="Credits already settled to the owner"
    )
    execution_time: int = Field(default=0, description="Execution time in ms")
