"""Planner: turns a goal into an ExecutionPlan using a generative model."""

import json
import logging
import re
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agent_engine.agent.tools.registry import ToolRegistry
from agent_engine.agent.types import AgentTask, ExecutionPlan, ExecutionStep
from agent_engine.core.config import settings
from agent_engine.core.errors import PlanningError, PlanParseError

logger = logging.getLogger(__name__)

_JSON_FENCE = re.compile(r"```(?:json)?\s*\n(.*?)\n\s*```", re.DOTALL)

PLANNING_PROMPT = """You are an AI agent planner. Create a step-by-step execution plan to achieve the following goal:

GOAL: {goal}

TASK TYPE: {task_type}

AVAILABLE TOOLS:
{tools}

CONTEXT:
{context}

Create a detailed execution plan as a JSON array of steps. Each step must have:
- action: The tool action to perform (e.g., "http.get", "ai.summarize")
- description: Human-readable description of what this step does
- tool: The tool name, exactly as listed above
- params: Object with parameters for the tool
- requiresApproval: true if this step needs human approval

Optional fields: retryable (boolean), dependencies (array of earlier step numbers),
estimatedCredits (integer), estimatedDuration (milliseconds).

Example:
```json
[
  {{
    "action": "http.get",
    "description": "Fetch the product page",
    "tool": "http.get",
    "params": {{ "url": "https://example.com/product" }},
    "requiresApproval": false
  }},
  {{
    "action": "ai.extract",
    "description": "Extract price information",
    "tool": "ai.extract",
    "params": {{ "text": "<page body>", "schema": {{ "price": "current price" }} }},
    "requiresApproval": false
  }}
]
```

Return ONLY the JSON array, no other text."""


class _PlannedStep(BaseModel):
    """Strict schema for one step as emitted by the model."""

    model_config = ConfigDict(
        extra="forbid",
        strict=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    action: str = Field(min_length=1)
    description: str = Field(min_length=1)
    tool: str = Field(min_length=1)
    params: dict[str, Any]
    dependencies: list[int] = Field(default_factory=list)
    retryable: bool = True
    requires_approval: bool = False
    estimated_credits: int | None = Field(default=None, ge=0)
    estimated_duration: int | None = Field(default=None, ge=0)


def _extract_json(content: str) -> str:
    match = _JSON_FENCE.search(content)
    if match:
        return match.group(1)

    start, end = content.find("["), content.rfind("]")
    if start == -1 or end < start:
        raise PlanParseError("No JSON array found in model response")
    return content[start : end + 1]


def parse_plan(content: str, task_id: str, max_steps: int | None = None) -> ExecutionPlan:
    """Parse model output into an ExecutionPlan.

    Every element is validated field by field. Any malformed element rejects
    the whole plan.

    Raises:
        PlanParseError: If the output is not a valid, non-empty step list
    """
    try:
        data = json.loads(_extract_json(content))
    except json.JSONDecodeError as e:
        raise PlanParseError(f"Plan is not valid JSON: {e.msg}") from e

    if not isinstance(data, list):
        raise PlanParseError("Plan must be a JSON array of steps")
    if not data:
        raise PlanParseError("Plan contains no steps")
    if max_steps is not None and len(data) > max_steps:
        raise PlanParseError(f"Plan has {len(data)} steps, limit is {max_steps}")

    steps: list[ExecutionStep] = []
    for index, raw in enumerate(data, start=1):
        if not isinstance(raw, dict):
            raise PlanParseError(f"Step {index} must be a JSON object")
        try:
            planned = _PlannedStep.model_validate(raw)
        except pydantic.ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
            raise PlanParseError(f"Step {index} is invalid: {errors}") from e

        bad_deps = [dep for dep in planned.dependencies if not 1 <= dep < index]
        if bad_deps:
            raise PlanParseError(
                f"Step {index} depends on steps that do not precede it: {bad_deps}"
            )

        steps.append(
            ExecutionStep(
                step_number=index,
                action=planned.action,
                description=planned.description,
                tool=planned.tool,
                params=planned.params,
                dependencies=tuple(planned.dependencies),
                retryable=planned.retryable,
                requires_approval=planned.requires_approval,
                estimated_credits=planned.estimated_credits,
                estimated_duration=planned.estimated_duration,
            )
        )

    return ExecutionPlan.from_steps(task_id, steps)


class Planner:
    """Builds the planning prompt, calls the model and parses its answer."""

    def __init__(
        self,
        llm,
        registry: ToolRegistry,
        max_tokens: int | None = None,
    ):
        self.llm = llm
        self.registry = registry
        self.max_tokens = max_tokens or settings.agent_planning_max_tokens

    def build_prompt(self, task: AgentTask) -> str:
        tools = "\n".join(
            "- {name} ({category}): {description}".format(**tool.describe())
            for tool in self.registry.get_all_tools()
        )
        return PLANNING_PROMPT.format(
            goal=task.goal,
            task_type=task.type,
            tools=tools or "(none)",
            context=json.dumps(task.context or {}, indent=2, default=str),
        )

    def plan(self, task: AgentTask) -> ExecutionPlan:
        """Create an execution plan for a task.

        Raises:
            PlanningError: If the model call fails
            PlanParseError: If the model output is malformed
        """
        logger.info(f"Planning task {task.id}")
        model = task.config.model or settings.agent_default_model

        try:
            response = self.llm.chat(
                model,
                messages=[{"role": "user", "content": self.build_prompt(task)}],
                max_tokens=self.max_tokens,
                temperature=task.config.temperature,
            )
        except Exception as e:
            raise PlanningError(f"Planning call failed: {e}") from e

        plan = parse_plan(response.content, task.id, max_steps=task.config.max_steps)
        logger.info(
            f"Plan created for task {task.id}: {plan.total_steps} steps, "
            f"~{plan.estimated_credits} credits"
        )
        return plan
