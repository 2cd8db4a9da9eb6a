"""Agent worker: turns a queued job into a planned and executed task.

This is the orchestration layer between the queue and the executor:
1. Load the task and verify the job's owner
2. Plan (or reuse the persisted plan)
3. Admit the plan against the owner's credit budget
4. Execute, or resume from a checkpoint, reporting progress
5. Notify the owner
"""

import logging
import time
from collections.abc import Callable
from typing import Any

from agent_engine.agent.approvals import ApprovalGate, StoreApprovalGate
from agent_engine.agent.cancellation import CancellationToken
from agent_engine.agent.events import AgentEvent, EventType
from agent_engine.agent.executor import Executor
from agent_engine.agent.tools import ToolRegistry, build_default_registry
from agent_engine.agent.types import AgentStatus, ExecutionPlan
from agent_engine.core.config import settings
from agent_engine.core.errors import ExecutionCancelledError, TaskOwnershipError
from agent_engine.models import TaskStatus
from agent_engine.queue import AgentTaskJob
from agent_engine.services.llm import LLMClient
from agent_engine.services.notifications import LoggingNotifier, Notifier
from agent_engine.services.task import TaskService
from agent_engine.services.user import UserService

logger = logging.getLogger(__name__)

ProgressReporter = Callable[[int], None]


def _no_progress(value: int) -> None:
    pass


class AgentWorker:
    """Processes agent jobs. Holds no per-job state."""

    def __init__(
        self,
        registry: ToolRegistry,
        llm,
        notifier: Notifier | None = None,
        task_store=TaskService,
        user_store=UserService,
        approvals: ApprovalGate | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.llm = llm
        self.notifier = notifier or LoggingNotifier()
        self.task_store = task_store
        self.user_store = user_store
        self.approvals = approvals or StoreApprovalGate(
            task_store.get_approval,
            poll_interval=settings.agent_approval_poll_interval,
            sleep=sleep,
            clock=clock,
        )
        self._sleep = sleep
        self._clock = clock

    def process_job(
        self, job: AgentTaskJob, report_progress: ProgressReporter | None = None
    ) -> dict[str, Any]:
        """Process one agent job.

        Args:
            job: Queue payload naming the task and its owner
            report_progress: Callback receiving job progress (0-100)

        Returns:
            Summary of the run

        Raises:
            NotFoundError: If the task does not exist
            TaskOwnershipError: If the job's owner does not own the task
            InsufficientCreditsError: If the plan exceeds the owner's budget
            AgentError: Any planning or execution failure
        """
        progress = report_progress or _no_progress
        task_id = job.task_id
        logger.info(f"Processing agent task {task_id}")

        progress(10)
        record = self.task_store.get_task_by_id(task_id)
        if str(record.user_id) != str(job.user_id):
            raise TaskOwnershipError(
                f"Task {task_id} does not belong to user {job.user_id}"
            )

        if record.status in (TaskStatus.COMPLETED, TaskStatus.CANCELLED):
            logger.info(f"Task {task_id} is already {record.status}, skipping")
            return {"task_id": task_id, "status": record.status, "skipped": True}

        try:
            return self._run(record, job, progress)
        except ExecutionCancelledError:
            logger.info(f"Task {task_id} was cancelled")
            return {"task_id": task_id, "status": str(AgentStatus.CANCELLED)}
        except Exception as e:
            logger.error(f"Agent task {task_id} failed: {e}")
            self.task_store.mark_failed(task_id, str(e))
            self._notify(self.notifier.notify_failure, task_id, job.user_id, e)
            raise

    def _run(self, record, job: AgentTaskJob, progress: ProgressReporter):
        task_id = job.task_id
        self.task_store.mark_planning(task_id)
        progress(20)

        agent_task = self.task_store.to_agent_task(record)
        executor = Executor(
            agent_task.config,
            self.registry,
            self.llm,
            task_store=self.task_store,
            approvals=self.approvals,
            sleep=self._sleep,
            clock=self._clock,
        )
        progress(30)

        if record.plan:
            plan = ExecutionPlan.from_json(record.plan)
            logger.info(f"Reusing persisted plan for task {task_id}")
        else:
            plan = executor.plan(agent_task)
            self.task_store.save_plan(task_id, plan)
        progress(40)

        self.user_store.reserve_credits(job.user_id, task_id, plan.estimated_credits)
        progress(50)

        def on_event(event: AgentEvent) -> None:
            if event.type == EventType.STEP_COMPLETED and plan.total_steps:
                progress(50 + int(event.step_number / plan.total_steps * 40))

        executor.on_event(on_event)

        token = CancellationToken.with_timeout(
            agent_task.config.timeout,
            poll=lambda: self.task_store.get_control_signal(task_id),
            clock=self._clock,
        )
        state = self.task_store.load_state(task_id)
        if state is not None and state.plan_fingerprint == plan.fingerprint():
            result = executor.resume(agent_task, plan, state, token)
        else:
            result = executor.execute(agent_task, plan, token)

        if result.status == AgentStatus.PAUSED:
            logger.info(f"Task {task_id} paused at step {result.steps}")
            return result.summary()

        progress(100)
        self._notify(self.notifier.notify_completion, task_id, job.user_id, result)
        return result.summary()

    def _notify(self, method: Callable, *args) -> None:
        try:
            method(*args)
        except Exception:
            logger.exception("Notifier failed")


def build_worker() -> AgentWorker:
    """Worker wired with the built-in tools and the litellm client."""
    return AgentWorker(build_default_registry(), LLMClient(), LoggingNotifier())
