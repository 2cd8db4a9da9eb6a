"""Pytest configuration and fixtures."""

import json
import os

# Set test environment before settings are loaded
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["QUEUE_ENABLED"] = "false"

from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import agent_engine.models  # noqa: E402, F401
from agent_engine.agent.tools.base import (  # noqa: E402
    Tool,
    ToolMetadata,
    ToolResult,
    ValidationResult,
)
from agent_engine.agent.types import (  # noqa: E402
    AgentConfig,
    ExecutionPlan,
    ExecutionStep,
)
from agent_engine.core.database import clean_database, close_db, get_engine  # noqa: E402
from agent_engine.models import Task, User  # noqa: E402
from agent_engine.queue import AgentQueue  # noqa: E402
from agent_engine.services import TaskService, UserService  # noqa: E402
from agent_engine.services.llm import ChatResponse, LLMError, Usage  # noqa: E402


def create_test_user(email: str | None = None, monthly_credits: int = 1000) -> User:
    """Helper function to create a test user with default values."""
    return UserService.create_user(
        email or f"user-{uuid4().hex[:8]}@example.com",
        monthly_credits=monthly_credits,
    )


def create_test_task(
    user: User | None = None,
    goal: str = "Fetch the product page and extract the price",
    config: AgentConfig | None = None,
) -> Task:
    """Helper function to create a test task without dispatching it."""
    user = user or create_test_user()
    return TaskService.create_task(
        user.id, goal, agent_config=config, dispatch=False
    )


def make_step(step_number: int, tool: str = "fake.tool", **kwargs) -> ExecutionStep:
    kwargs.setdefault("action", tool)
    kwargs.setdefault("description", f"Run {tool} (step {step_number})")
    return ExecutionStep(step_number=step_number, tool=tool, **kwargs)


def make_plan(task_id: str, *steps: ExecutionStep) -> ExecutionPlan:
    return ExecutionPlan.from_steps(task_id, list(steps))


def ok_result(data=None, credits: int = 1, tokens: int = 0) -> ToolResult:
    return ToolResult(
        success=True,
        data=data if data is not None else {"ok": True},
        metadata=ToolMetadata(credits=credits, tokens=tokens),
    )


def fail_result(error: str = "tool failed", credits: int = 0) -> ToolResult:
    return ToolResult(
        success=False, error=error, metadata=ToolMetadata(credits=credits)
    )


def plan_json(*tools: str) -> str:
    """Model output for a plan calling the given tools in order."""
    steps = [
        {
            "action": tool,
            "description": f"Step using {tool}",
            "tool": tool,
            "params": {"n": index},
        }
        for index, tool in enumerate(tools, start=1)
    ]
    return "```json\n" + json.dumps(steps) + "\n```"


class FakeLLM:
    """Model client returning canned planning and reasoning answers."""

    def __init__(
        self,
        plan: str | None = None,
        reasoning: str = "This step moves the task forward.",
        fail_planning: bool = False,
        fail_reasoning: bool = False,
    ):
        self.plan = plan or plan_json("fake.tool")
        self.reasoning = reasoning
        self.fail_planning = fail_planning
        self.fail_reasoning = fail_reasoning
        self.calls = []

    def chat(self, model, messages, max_tokens, temperature=None, timeout=None):
        prompt = messages[-1]["content"]
        planning = prompt.startswith("You are an AI agent planner")
        self.calls.append(
            {
                "model": model,
                "prompt": prompt,
                "max_tokens": max_tokens,
                "timeout": timeout,
                "planning": planning,
            }
        )

        if planning and self.fail_planning:
            raise LLMError("planning model unavailable")
        if not planning and self.fail_reasoning:
            raise LLMError("reasoning model unavailable")

        content = self.plan if planning else self.reasoning
        return ChatResponse(
            content=content, model=model, usage=Usage(input_tokens=10, output_tokens=20)
        )

    @property
    def planning_calls(self):
        return [call for call in self.calls if call["planning"]]


class FakeTool(Tool):
    """Tool returning queued outcomes (ToolResult or exception), then ``default``."""

    description = "Tool used in tests"
    category = "utility"

    def __init__(
        self,
        name: str = "fake.tool",
        results=None,
        default: ToolResult | None = None,
        validation_error: str | None = None,
        on_execute=None,
        estimate: int = 1,
    ):
        self.name = name
        self._estimate = estimate
        self._results = list(results or [])
        self._default = default
        self._validation_error = validation_error
        self._on_execute = on_execute
        self.calls = []

    def validate(self, params):
        if self._validation_error:
            return ValidationResult.invalid(self._validation_error)
        return ValidationResult.ok()

    def estimate_cost(self, params):
        return self._estimate

    def execute(self, params, context):
        self.calls.append((params, context))
        if self._on_execute is not None:
            self._on_execute(params, context)

        if self._results:
            outcome = self._results.pop(0)
        else:
            outcome = self._default or ok_result({"tool": self.name, "params": params})

        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """In-memory stand-in for the Redis counter commands the limiter uses."""

    def __init__(self):
        self.values = {}
        self.ttls = {}

    def incr(self, key):
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True


@pytest.fixture(autouse=True, scope="function")
def clean_db():
    """Initialize and clean database for each test."""
    # Create tables
    engine = get_engine()
    SQLModel.metadata.create_all(engine)

    # Clean all tables before test to ensure isolation
    clean_database()

    yield

    # Close DB connections
    close_db()


@pytest.fixture(autouse=True, scope="function")
def reset_queue():
    """Drop the process-wide queue so each test connects afresh."""
    AgentQueue.reset_default()
    yield
    AgentQueue.reset_default()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def user():
    return create_test_user()
