"""Database models."""

from .queue_job import JobStatus, QueueJob
from .task import Task, TaskStatus
from .task_execution import TaskExecution
from .user import User

__all__ = [
    "JobStatus",
    "QueueJob",
    "Task",
    "TaskExecution",
    "TaskStatus",
    "User",
]
