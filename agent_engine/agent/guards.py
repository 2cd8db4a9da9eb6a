"""Execution guards: per-category tool timeouts and credit ceilings."""

import logging
from dataclasses import dataclass
from enum import StrEnum

from agent_engine.core.config import settings

logger = logging.getLogger(__name__)

# Seconds, keyed by the tool name prefix ("http.get" -> "http")
TOOL_TIMEOUTS = {
    "http": settings.http_tool_timeout,
    "ai": 45.0,
    "default": 30.0,
}

CRITICAL_THRESHOLD = 0.95


def get_tool_timeout(tool_name: str) -> float:
    category = tool_name.split(".")[0]
    return TOOL_TIMEOUTS.get(category, TOOL_TIMEOUTS["default"])


class WarningLevel(StrEnum):
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class CostLimits:
    max_credits_per_step: int = settings.agent_max_credits_per_step
    max_credits_per_task: int = settings.agent_max_credits_per_task
    warning_threshold: float = settings.agent_cost_warning_threshold


@dataclass
class CostCheck:
    allowed: bool
    current_usage: int
    limit: int
    warning_level: WarningLevel = WarningLevel.NONE
    reason: str | None = None


def check_step_cost(
    estimated_credits: int,
    current_task_credits: int,
    limits: CostLimits | None = None,
) -> CostCheck:
    """Check a step's estimated credits against the step and task ceilings.

    Projected usage at or above the warning threshold is logged but allowed.
    """
    limits = limits or CostLimits()

    if estimated_credits > limits.max_credits_per_step:
        return CostCheck(
            allowed=False,
            current_usage=estimated_credits,
            limit=limits.max_credits_per_step,
            warning_level=WarningLevel.CRITICAL,
            reason=(
                f"Step would use {estimated_credits} credits, exceeding "
                f"per-step limit of {limits.max_credits_per_step}"
            ),
        )

    projected = current_task_credits + estimated_credits
    if projected > limits.max_credits_per_task:
        return CostCheck(
            allowed=False,
            current_usage=current_task_credits,
            limit=limits.max_credits_per_task,
            warning_level=WarningLevel.CRITICAL,
            reason=(
                f"Task would use {projected} credits total, exceeding "
                f"per-task limit of {limits.max_credits_per_task}"
            ),
        )

    usage = projected / limits.max_credits_per_task
    level = WarningLevel.NONE
    if usage >= limits.warning_threshold:
        level = (
            WarningLevel.CRITICAL
            if usage >= CRITICAL_THRESHOLD
            else WarningLevel.WARNING
        )
        logger.warning(
            f"Task approaching cost limit: {round(usage * 100)}% of "
            f"{limits.max_credits_per_task} credits ({level})"
        )

    return CostCheck(
        allowed=True,
        current_usage=current_task_credits,
        limit=limits.max_credits_per_task,
        warning_level=level,
    )
