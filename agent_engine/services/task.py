"""Task service for business logic."""

import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func
from sqlmodel import select

from agent_engine.agent.types import (
    AgentConfig,
    AgentResult,
    AgentState,
    AgentStatus,
    AgentTask,
    ExecutionPlan,
)
from agent_engine.core.config import settings
from agent_engine.core.database import get_session
from agent_engine.core.errors import NotFoundError, ValidationError
from agent_engine.models import Task, TaskExecution, TaskStatus
from agent_engine.services.user import UserService

logger = logging.getLogger(__name__)

CONTROL_SIGNALS = ("pause", "cancel")
APPROVAL_DECISIONS = ("approved", "rejected")


def _as_uuid(value: UUID | str) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _title_from_goal(goal: str, limit: int = 80) -> str:
    first_line = goal.strip().splitlines()[0] if goal.strip() else "Untitled task"
    return first_line if len(first_line) <= limit else first_line[: limit - 3] + "..."


def _load(session, task_id: UUID | str) -> Task:
    statement = select(Task).where(Task.id == _as_uuid(task_id))
    task = session.execute(statement).scalar_one_or_none()

    if task is None:
        raise NotFoundError(f"Task with id {task_id} not found")

    return task


class TaskService:
    """Service for task-related business logic.

    Also acts as the executor's task store: checkpoints, terminal results and
    out-of-process control signals all go through here.
    """

    @staticmethod
    def create_task(
        user_id: UUID | str,
        goal: str,
        agent_type: str = "custom",
        agent_config: AgentConfig | None = None,
        context: dict[str, Any] | None = None,
        priority: int = 1,
        dispatch: bool = True,
    ) -> Task:
        """Create a new task and queue it for execution.

        When the queue is unavailable the task runs inline before this
        returns.
        """
        if not goal.strip():
            raise ValidationError("Task goal must not be empty")

        config = agent_config or AgentConfig()
        with get_session() as session:
            task = Task(
                user_id=_as_uuid(user_id),
                title=_title_from_goal(goal),
                description=goal,
                agent_type=agent_type,
                agent_model=config.model,
                agent_config=config.model_dump(mode="json", by_alias=True),
                context=context or {},
                priority=priority,
                status=TaskStatus.PENDING,
            )
            session.add(task)
            session.commit()
            session.refresh(task)

        if dispatch:
            TaskService.dispatch_task(task)
            task = TaskService.get_task_by_id(task.id)

        return task

    @staticmethod
    def dispatch_task(task: Task, queue=None) -> str:
        """Enqueue a task, running it synchronously if the queue is down.

        Returns:
            The queue job id, or a fallback id when the task ran inline
        """
        from agent_engine.queue import AgentQueue, AgentTaskJob, is_fallback_job_id

        queue = queue or AgentQueue.default()
        # Job attempts are a queue setting, independent of step retries
        job_id = queue.queue_agent_task(
            str(task.id),
            str(task.user_id),
            priority=task.priority,
            retry_count=settings.agent_job_attempts,
        )

        if is_fallback_job_id(job_id):
            from agent_engine.services.agent_worker import build_worker

            logger.warning(f"Queue unavailable, executing task {task.id} inline")
            job = AgentTaskJob(task_id=str(task.id), user_id=str(task.user_id))
            try:
                build_worker().process_job(job)
            except Exception as e:
                # Failure is already recorded on the task
                logger.error(f"Inline execution of task {task.id} failed: {e}")

        return job_id

    @staticmethod
    def get_task_by_id(task_id: UUID | str) -> Task:
        """Get task by ID."""
        with get_session() as session:
            return _load(session, task_id)

    @staticmethod
    def list_tasks(
        limit: int = 100,
        offset: int = 0,
        user_id: UUID | str | None = None,
        status: str | None = None,
    ) -> tuple[list[Task], int]:
        """List tasks with pagination, newest first."""
        with get_session() as session:
            filters = []
            if user_id is not None:
                filters.append(Task.user_id == _as_uuid(user_id))
            if status is not None:
                filters.append(Task.status == status)

            count_statement = select(func.count()).select_from(Task).where(*filters)
            total = session.execute(count_statement).scalar()

            statement = (
                select(Task)
                .where(*filters)
                .order_by(Task.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            tasks = session.execute(statement).scalars().all()

            return list(tasks), total

    @staticmethod
    def to_agent_task(task: Task) -> AgentTask:
        """Build the executor's view of a task record."""
        config = AgentConfig.model_validate(task.agent_config or {})
        if config.model is None and task.agent_model:
            config = config.model_copy(update={"model": task.agent_model})
        return AgentTask(
            id=str(task.id),
            user_id=str(task.user_id),
            goal=task.description,
            type=task.agent_type,
            config=config,
            context=dict(task.context or {}),
            priority=task.priority,
        )

    @staticmethod
    def update_task_status(
        task_id: UUID | str,
        status: str,
        error: str | None = None,
    ) -> Task:
        """Update task status."""
        with get_session() as session:
            task = _load(session, task_id)

            now = datetime.now(UTC)
            task.status = status
            task.updated_at = now
            if status == TaskStatus.PLANNING and task.started_at is None:
                task.started_at = now
            if error is not None:
                task.error = error

            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    @staticmethod
    def mark_planning(task_id: UUID | str) -> Task:
        return TaskService.update_task_status(task_id, TaskStatus.PLANNING)

    @staticmethod
    def save_plan(task_id: UUID | str, plan: ExecutionPlan) -> Task:
        """Persist a new plan. Any checkpoint made against an older plan is
        discarded."""
        with get_session() as session:
            task = _load(session, task_id)
            task.plan = plan.to_json()
            task.total_steps = plan.total_steps
            task.current_step = 0
            task.state = None
            task.updated_at = datetime.now(UTC)
            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    @staticmethod
    def get_plan(task_id: UUID | str) -> ExecutionPlan | None:
        task = TaskService.get_task_by_id(task_id)
        if not task.plan:
            return None
        return ExecutionPlan.from_json(task.plan)

    @staticmethod
    def mark_executing(task_id: UUID | str, total_steps: int) -> None:
        with get_session() as session:
            task = _load(session, task_id)
            task.status = TaskStatus.EXECUTING
            task.total_steps = total_steps
            task.updated_at = datetime.now(UTC)
            if task.started_at is None:
                task.started_at = task.updated_at
            if task.control_signal == "pause":
                task.control_signal = None
            session.add(task)

    @staticmethod
    def checkpoint(
        task_id: UUID | str, state: AgentState, status: str | None = None
    ) -> None:
        """Save the agent state so the run can be resumed."""
        with get_session() as session:
            task = _load(session, task_id)
            task.state = state.snapshot()
            task.current_step = state.current_step
            task.total_credits = state.credits_used
            task.total_tokens = state.tokens_used
            task.execution_time = state.execution_time
            task.updated_at = datetime.now(UTC)
            if status is not None:
                task.status = status
            if status == TaskStatus.PAUSED and task.control_signal == "pause":
                task.control_signal = None
            session.add(task)

    @staticmethod
    def load_state(task_id: UUID | str) -> AgentState | None:
        task = TaskService.get_task_by_id(task_id)
        if not task.state:
            return None
        return AgentState.from_snapshot(task.state)

    @staticmethod
    def record_result(
        task_id: UUID | str, result: AgentResult, state: AgentState
    ) -> Task:
        """Persist the terminal outcome of a run.

        Status, result or error, trace, usage, execution rows and the owner's
        credit settlement are written in a single transaction.
        """
        with get_session() as session:
            task = _load(session, task_id)

            now = datetime.now(UTC)
            task.status = result.status
            task.updated_at = now
            task.result = result.result
            task.error = result.error
            task.execution_trace = [entry.to_dict() for entry in result.trace]
            task.current_step = state.current_step
            task.total_credits = result.credits_used
            task.total_tokens = result.tokens_used
            task.execution_time = result.duration
            task.control_signal = None

            if result.status == AgentStatus.COMPLETED:
                task.completed_at = now
                task.state = None
            elif result.status == AgentStatus.FAILED:
                task.failed_at = now
                # Kept so a retried job resumes at the failed step
                task.state = state.snapshot()
            else:
                task.state = None

            session.execute(
                delete(TaskExecution).where(TaskExecution.task_id == task.id)
            )
            for entry in result.trace:
                session.add(
                    TaskExecution(
                        task_id=task.id,
                        created_at=entry.timestamp,
                        step=entry.step_number,
                        action=entry.action,
                        tool=entry.tool,
                        input=entry.input,
                        output=entry.output,
                        reasoning=entry.reasoning,
                        status=entry.status,
                        error=entry.error,
                        tokens=entry.tokens,
                        credits=entry.credits,
                        duration=entry.duration,
                    )
                )

            charged = UserService.settle(session, task, result.credits_used)
            session.add(task)
            session.commit()
            session.refresh(task)

            logger.info(
                f"Recorded {result.status} result for task {task.id} "
                f"({charged} credits charged)"
            )
            return task

    @staticmethod
    def mark_failed(task_id: UUID | str, error: str) -> Task:
        """Fail a task outside the executor (planning, admission, ownership)."""
        with get_session() as session:
            task = _load(session, task_id)
            now = datetime.now(UTC)
            task.status = TaskStatus.FAILED
            task.error = error
            task.failed_at = now
            task.updated_at = now
            UserService._release(session, task)
            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    @staticmethod
    def request_control(task_id: UUID | str, signal: str) -> Task:
        """Ask a running task to pause or cancel at its next step boundary.

        A task that is not running yet is cancelled immediately.
        """
        if signal not in CONTROL_SIGNALS:
            raise ValidationError(f"Unknown control signal: {signal}")

        with get_session() as session:
            task = _load(session, task_id)
            if task.status in TaskStatus.FINISHED:
                raise ValidationError(f"Task {task.id} is already {task.status}")

            now = datetime.now(UTC)
            if signal == "cancel" and task.status in (
                TaskStatus.PENDING,
                TaskStatus.PAUSED,
            ):
                task.status = TaskStatus.CANCELLED
                task.state = None
                UserService.settle(session, task, task.total_credits)
            else:
                task.control_signal = signal
            task.updated_at = now
            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    @staticmethod
    def resume_task(task_id: UUID | str, queue=None) -> str:
        """Re-dispatch a paused task; it continues from its checkpoint.

        Returns:
            The queue job id (or fallback id)
        """
        task = TaskService.get_task_by_id(task_id)
        if task.status != TaskStatus.PAUSED:
            raise ValidationError(f"Task {task.id} is {task.status}, not paused")
        return TaskService.dispatch_task(task, queue)

    @staticmethod
    def get_control_signal(task_id: UUID | str) -> str | None:
        return TaskService.get_task_by_id(task_id).control_signal

    @staticmethod
    def record_approval(task_id: UUID | str, step_number: int, decision: str) -> Task:
        """Record a human decision for a step that requires approval."""
        if decision not in APPROVAL_DECISIONS:
            raise ValidationError(f"Unknown approval decision: {decision}")

        with get_session() as session:
            task = _load(session, task_id)
            # Reassign so the JSON column is flagged dirty
            task.approvals = {**(task.approvals or {}), str(step_number): decision}
            task.updated_at = datetime.now(UTC)
            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    @staticmethod
    def get_approval(task_id: UUID | str, step_number: int) -> str | None:
        task = TaskService.get_task_by_id(task_id)
        return (task.approvals or {}).get(str(step_number))

    @staticmethod
    def get_task_executions(task_id: UUID | str) -> list[TaskExecution]:
        """Get the execution rows of a task in trace order."""
        with get_session() as session:
            _load(session, task_id)
            statement = (
                select(TaskExecution)
                .where(TaskExecution.task_id == _as_uuid(task_id))
                .order_by(TaskExecution.created_at, TaskExecution.step)
            )
            return list(session.execute(statement).scalars().all())
