"""Tests for Planner and plan parsing."""

import json

import pytest

from agent_engine.agent.planner import Planner, parse_plan
from agent_engine.agent.tools import ToolRegistry
from agent_engine.agent.types import AgentConfig, AgentTask, ExecutionPlan
from agent_engine.core.errors import PlanningError, PlanParseError
from tests.conftest import FakeLLM, FakeTool, plan_json


def make_task(**kwargs) -> AgentTask:
    kwargs.setdefault("config", AgentConfig())
    return AgentTask(id="task-1", user_id="user-1", goal="Check the price", **kwargs)


def test_parse_fenced_plan():
    """Test parsing a plan wrapped in a ```json fence."""
    content = "Here is the plan:\n" + plan_json("http.get", "ai.extract")

    plan = parse_plan(content, "task-1")

    assert plan.total_steps == 2
    assert [step.step_number for step in plan.steps] == [1, 2]
    assert [step.tool for step in plan.steps] == ["http.get", "ai.extract"]
    assert plan.steps[0].retryable is True
    assert plan.steps[0].requires_approval is False


def test_parse_bare_array_with_optional_fields():
    """Test parsing an unfenced array using camelCase optional fields."""
    content = json.dumps(
        [
            {
                "action": "http.post",
                "description": "Post the report",
                "tool": "http.post",
                "params": {"url": "https://example.com"},
                "requiresApproval": True,
                "retryable": False,
                "estimatedCredits": 40,
                "estimatedDuration": 1200,
            }
        ]
    )

    plan = parse_plan(f"Sure! {content} Done.", "task-1")

    step = plan.steps[0]
    assert step.requires_approval is True
    assert step.retryable is False
    assert plan.estimated_credits == 540
    assert plan.estimated_duration == 1200


def test_estimates_use_step_defaults():
    """Test the plan estimate formula for steps without estimates."""
    plan = parse_plan(plan_json("a", "b", "c"), "task-1")

    assert plan.estimated_credits == 500 + 3 * 100
    assert plan.estimated_duration == 3 * 5000


@pytest.mark.parametrize(
    "content",
    [
        "I cannot help with that.",
        "[not json",
        "[]",
        '```json\n{"action": "x"}\n```',
    ],
)
def test_parse_rejects_malformed_output(content):
    """Test that malformed model output raises PlanParseError."""
    with pytest.raises(PlanParseError):
        parse_plan(content, "task-1")


def test_parse_rejects_any_invalid_element():
    """Test that one bad step rejects the whole plan."""
    steps = json.loads(plan_json("a", "b").split("\n")[1])
    del steps[1]["params"]

    with pytest.raises(PlanParseError, match="Step 2 is invalid"):
        parse_plan(json.dumps(steps), "task-1")


def test_parse_rejects_wrong_field_types():
    """Test that field types are checked strictly."""
    steps = json.loads(plan_json("a").split("\n")[1])
    steps[0]["requiresApproval"] = "yes"

    with pytest.raises(PlanParseError):
        parse_plan(json.dumps(steps), "task-1")


def test_parse_rejects_unknown_fields():
    steps = json.loads(plan_json("a").split("\n")[1])
    steps[0]["shellCommand"] = "rm -rf /"

    with pytest.raises(PlanParseError):
        parse_plan(json.dumps(steps), "task-1")


def test_parse_rejects_forward_dependencies():
    """Test that a step may only depend on earlier steps."""
    steps = json.loads(plan_json("a", "b").split("\n")[1])
    steps[0]["dependencies"] = [2]

    with pytest.raises(PlanParseError, match="do not precede"):
        parse_plan(json.dumps(steps), "task-1")


def test_parse_rejects_plans_over_max_steps():
    """Test that long plans are rejected rather than truncated."""
    with pytest.raises(PlanParseError, match="limit is 2"):
        parse_plan(plan_json("a", "b", "c"), "task-1", max_steps=2)


def test_plan_calls_model_and_parses():
    """Test planning end to end with a fake model."""
    llm = FakeLLM(plan=plan_json("fake.tool", "fake.tool"))
    planner = Planner(llm, ToolRegistry([FakeTool()]))

    plan = planner.plan(make_task(config=AgentConfig(model="test-model")))

    assert plan.task_id == "task-1"
    assert plan.total_steps == 2
    call = llm.calls[0]
    assert call["model"] == "test-model"
    assert call["max_tokens"] == 4096
    assert "GOAL: Check the price" in call["prompt"]
    assert "- fake.tool (utility): Tool used in tests" in call["prompt"]


def test_plan_wraps_model_failure():
    """Test that a failed model call raises PlanningError."""
    planner = Planner(FakeLLM(fail_planning=True), ToolRegistry())

    with pytest.raises(PlanningError):
        planner.plan(make_task())


def test_plan_honours_max_steps():
    llm = FakeLLM(plan=plan_json("a", "b", "c"))
    planner = Planner(llm, ToolRegistry())

    with pytest.raises(PlanParseError):
        planner.plan(make_task(config=AgentConfig(max_steps=2)))


def test_fingerprint_tracks_step_content():
    """Test that the fingerprint changes when a step changes."""
    plan = parse_plan(plan_json("a", "b"), "task-1")
    same = parse_plan(plan_json("a", "b"), "task-1")
    other = parse_plan(plan_json("a", "c"), "task-1")

    assert plan.fingerprint() == same.fingerprint()
    assert plan.fingerprint() != other.fingerprint()


def test_plan_json_round_trip():
    """Test that a persisted plan loads back with the same fingerprint."""
    plan = parse_plan(plan_json("a", "b"), "task-1")

    data = plan.to_json()
    assert data["totalSteps"] == 2

    assert ExecutionPlan.from_json(data).fingerprint() == plan.fingerprint()
