"""Agent task queue."""

from .agent_queue import (
    AGENT_QUEUE_NAME,
    EXECUTE_TASK_NAME,
    AgentQueue,
    AgentTaskJob,
    is_fallback_job_id,
)
from .limiter import AdmissionLimiter, get_admission_limiter

__all__ = [
    "AGENT_QUEUE_NAME",
    "EXECUTE_TASK_NAME",
    "AdmissionLimiter",
    "AgentQueue",
    "AgentTaskJob",
    "get_admission_limiter",
    "is_fallback_job_id",
]
