"""User model holding the monthly credit budget."""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    """Owner of agent tasks."""

    __tablename__ = "users"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique identifier for the user",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True)),
    )
    email: str = Field(unique=True, index=True)
    monthly_credits: int = Field(default=1000, description="Monthly credit budget")
    credits_used: int = Field(default=0, description="Credits charged this month")
    credits_reserved: int = Field(
        default=0, description="Credits held by admitted, unfinished tasks"
    )

    @property
    def credits_available(self) -> int:
        return self.monthly_credits - self.credits_used - self.credits_reserved
