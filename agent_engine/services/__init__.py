"""Business logic services.

The worker lives in ``agent_engine.services.agent_worker``; it is not
re-exported here because it depends on the executor, which in turn uses
TaskService.
"""

from .notifications import LoggingNotifier, Notifier
from .queue_job import QueueJobService
from .task import TaskService
from .user import UserService

__all__ = [
    "LoggingNotifier",
    "Notifier",
    "QueueJobService",
    "TaskService",
    "UserService",
]
