"""Core types for the agent engine: plans, configuration, state and results."""

import hashlib
import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_STEP_CREDITS = 100
DEFAULT_STEP_DURATION_MS = 5000
PLAN_BASE_CREDITS = 500


class AgentType(StrEnum):
    BROWSER_AUTOMATION = "browser_automation"
    EMAIL_CAMPAIGN = "email_campaign"
    DATA_PROCESSING = "data_processing"
    RESEARCH = "research"
    SOCIAL_MEDIA = "social_media"
    CUSTOM = "custom"


class AgentStatus(StrEnum):
    PENDING = "pending"
    PLANNING = "planning"
    EXECUTING = "executing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"


class AgentConfig(BaseModel):
    """Per-task agent configuration, persisted on the task as JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    model: str | None = None
    temperature: float | None = Field(default=None, ge=0, le=1)
    max_tokens: int | None = Field(default=None, gt=0)
    max_steps: int = Field(default=20, gt=0)
    timeout: float = Field(default=300.0, gt=0, description="Seconds for execute()")
    retry_count: int = Field(default=3, ge=0)
    require_approval: bool = False


class ExecutionStep(BaseModel):
    """One planned tool invocation. Read-only after plan creation."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    step_number: int = Field(ge=1)
    action: str
    description: str
    tool: str
    params: dict[str, Any] = Field(default_factory=dict)
    dependencies: tuple[int, ...] = ()
    retryable: bool = True
    requires_approval: bool = False
    estimated_credits: int | None = Field(default=None, ge=0)
    estimated_duration: int | None = Field(default=None, ge=0)


class ExecutionPlan(BaseModel):
    """Ordered steps for one task attempt plus aggregate estimates."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    task_id: str
    steps: tuple[ExecutionStep, ...]
    estimated_credits: int
    estimated_duration: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @classmethod
    def from_steps(cls, task_id: str, steps: list[ExecutionStep]) -> "ExecutionPlan":
        """Build a plan and compute its cost and duration estimates."""
        return cls(
            task_id=task_id,
            steps=tuple(steps),
            estimated_credits=PLAN_BASE_CREDITS
            + sum(
                DEFAULT_STEP_CREDITS
                if step.estimated_credits is None
                else step.estimated_credits
                for step in steps
            ),
            estimated_duration=sum(
                DEFAULT_STEP_DURATION_MS
                if step.estimated_duration is None
                else step.estimated_duration
                for step in steps
            ),
        )

    def fingerprint(self) -> str:
        """Stable hash of the step list, used to detect re-planning."""
        payload = [step.model_dump(mode="json") for step in self.steps]
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()

    def to_json(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        data["totalSteps"] = self.total_steps
        return data

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "ExecutionPlan":
        data = {k: v for k, v in data.items() if k != "totalSteps"}
        return cls.model_validate(data)


@dataclass
class AgentTask:
    """The executor's view of a Task record."""

    id: str
    user_id: str
    goal: str
    type: str = AgentType.CUSTOM
    config: AgentConfig = field(default_factory=AgentConfig)
    context: dict[str, Any] = field(default_factory=dict)
    priority: int = 1


@dataclass
class TraceEntry:
    """One recorded attempt of a step."""

    step_number: int
    action: str
    tool: str
    input: dict[str, Any]
    status: StepStatus
    reasoning: str | None = None
    output: Any = None
    error: str | None = None
    duration: int = 0  # ms
    credits: int = 0
    tokens: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = str(self.status)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TraceEntry":
        data = dict(data)
        data["status"] = StepStatus(data["status"])
        data["timestamp"] = datetime.fromisoformat(data["timestamp"])
        return cls(**data)


@dataclass
class AgentState:
    """Transient bookkeeping owned by one Executor for one run."""

    task_id: str
    total_steps: int
    plan_fingerprint: str
    status: AgentStatus = AgentStatus.EXECUTING
    current_step: int = 0
    credits_used: int = 0
    tokens_used: int = 0
    execution_time: int = 0  # ms, accumulated across resumed runs
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    context: dict[str, Any] = field(default_factory=dict)
    trace: list[TraceEntry] = field(default_factory=list)

    @property
    def progress(self) -> int:
        if not self.total_steps:
            return 0
        return round(self.current_step / self.total_steps * 100)

    def snapshot(self) -> dict[str, Any]:
        """Serialize for checkpointing on the task record."""
        return {
            "task_id": self.task_id,
            "total_steps": self.total_steps,
            "plan_fingerprint": self.plan_fingerprint,
            "status": str(self.status),
            "current_step": self.current_step,
            "credits_used": self.credits_used,
            "tokens_used": self.tokens_used,
            "execution_time": self.execution_time,
            "started_at": self.started_at.isoformat(),
            "context": self.context,
            "trace": [entry.to_dict() for entry in self.trace],
        }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> "AgentState":
        return cls(
            task_id=data["task_id"],
            total_steps=data["total_steps"],
            plan_fingerprint=data["plan_fingerprint"],
            status=AgentStatus(data["status"]),
            current_step=data["current_step"],
            credits_used=data["credits_used"],
            tokens_used=data["tokens_used"],
            execution_time=data.get("execution_time", 0),
            started_at=datetime.fromisoformat(data["started_at"]),
            context=dict(data.get("context") or {}),
            trace=[TraceEntry.from_dict(entry) for entry in data.get("trace") or []],
        )


@dataclass
class AgentResult:
    """Final (or paused) outcome of an execute/resume call."""

    task_id: str
    status: AgentStatus
    steps: int
    duration: int  # ms
    credits_used: int
    tokens_used: int
    trace: list[TraceEntry]
    result: Any = None
    error: str | None = None
    completed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def summary(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": str(self.status),
            "steps": self.steps,
            "duration": self.duration,
            "credits_used": self.credits_used,
            "tokens_used": self.tokens_used,
            "error": self.error,
        }
