"""Owner notifications for finished agent tasks."""

import logging

from agent_engine.agent.types import AgentResult

logger = logging.getLogger(__name__)


class Notifier:
    """Hook called by the worker when a task finishes."""

    def notify_completion(self, task_id: str, user_id: str, result: AgentResult) -> None:
        raise NotImplementedError

    def notify_failure(self, task_id: str, user_id: str, error: Exception) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Default notifier: writes the outcome to the log."""

    def notify_completion(self, task_id: str, user_id: str, result: AgentResult) -> None:
        logger.info(
            f"Task {task_id} for user {user_id} completed: {result.steps} steps, "
            f"{result.credits_used} credits, {result.duration}ms"
        )

    def notify_failure(self, task_id: str, user_id: str, error: Exception) -> None:
        logger.info(f"Task {task_id} for user {user_id} failed: {error}")
