"""Agent executor: runs a plan step by step with a reason/act/observe loop.

For every step the executor:
1. Reasons about the step with a cheap model call (best effort)
2. Acts: resolves and validates the tool, waits for approval when required
3. Observes the tool result, retrying retryable failures with a fixed delay

Progress is checkpointed to the task store after each completed step, so a
paused or redelivered run can resume at ``current_step + 1``.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

from agent_engine.agent.approvals import (
    ApprovalDecision,
    ApprovalGate,
    InMemoryApprovalGate,
)
from agent_engine.agent.cancellation import CancellationToken
from agent_engine.agent.events import AgentEvent, EventBus, EventHandler, EventType
from agent_engine.agent.guards import CostLimits, check_step_cost
from agent_engine.agent.planner import Planner
from agent_engine.agent.tools.base import Tool, ToolContext, ToolResult
from agent_engine.agent.tools.registry import ToolRegistry
from agent_engine.agent.types import (
    AgentConfig,
    AgentResult,
    AgentState,
    AgentStatus,
    AgentTask,
    ExecutionPlan,
    ExecutionStep,
    StepStatus,
    TraceEntry,
)
from agent_engine.core.config import settings
from agent_engine.core.errors import (
    ApprovalPendingError,
    ApprovalRejectedError,
    CostLimitExceededError,
    ExecutionCancelledError,
    PlanChangedError,
    StepError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolValidationError,
)
from agent_engine.services.task import TaskService

logger = logging.getLogger(__name__)

REASONING_PROMPT = """You are executing a task. Explain your reasoning for the next action.

TASK: {goal}
CURRENT STEP: {description}
ACTION: {action}

Provide a brief (1-2 sentences) explanation of why this action makes sense."""


class Executor:
    """Runs execution plans for one agent configuration.

    One instance handles one run at a time; its Agent State is never shared.
    """

    def __init__(
        self,
        config: AgentConfig,
        registry: ToolRegistry,
        llm,
        task_store=TaskService,
        approvals: ApprovalGate | None = None,
        events: EventBus | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        reasoning_model: str | None = None,
        retry_delay: float | None = None,
        approval_timeout: float | None = None,
        cost_limits: CostLimits | None = None,
    ):
        self.config = config
        self.registry = registry
        self.llm = llm
        self.task_store = task_store
        self.approvals = approvals or InMemoryApprovalGate()
        self.events = events or EventBus()
        self.planner = Planner(llm, registry)

        self.reasoning_model = reasoning_model or settings.agent_reasoning_model
        self.retry_delay = (
            settings.agent_step_retry_delay if retry_delay is None else retry_delay
        )
        self.approval_timeout = (
            settings.agent_approval_timeout
            if approval_timeout is None
            else approval_timeout
        )
        self.cost_limits = cost_limits or CostLimits()
        self._sleep = sleep
        self._clock = clock

        self._state: AgentState | None = None
        self._token: CancellationToken | None = None
        self._announced: set[EventType] = set()

    # Events

    def on_event(self, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to lifecycle events; returns an unsubscribe callable."""
        return self.events.subscribe(handler)

    def _emit(
        self,
        event_type: EventType,
        task_id: str,
        step_number: int | None = None,
        **data: Any,
    ) -> None:
        self.events.emit(AgentEvent(event_type, task_id, step_number, data))

    # Planning

    def plan(self, task: AgentTask) -> ExecutionPlan:
        """Create an execution plan for a task."""
        return self.planner.plan(task)

    # Execution

    def execute(
        self,
        task: AgentTask,
        plan: ExecutionPlan,
        token: CancellationToken | None = None,
    ) -> AgentResult:
        """Execute a plan from its first step.

        Returns:
            AgentResult with status completed, or paused when a pause was
            requested or an approval did not arrive in time

        Raises:
            ExecutionCancelledError: If cancelled at a step boundary
            AgentError: Any step or timeout error that aborted the plan
        """
        logger.info(f"Starting execution of task {task.id}")

        state = AgentState(
            task_id=task.id,
            total_steps=plan.total_steps,
            plan_fingerprint=plan.fingerprint(),
        )
        self.task_store.mark_executing(task.id, plan.total_steps)
        self._emit(EventType.TASK_STARTED, task.id, plan=plan.to_json())
        return self._run(task, plan, state, token)

    def resume(
        self,
        task: AgentTask,
        plan: ExecutionPlan,
        state: AgentState,
        token: CancellationToken | None = None,
    ) -> AgentResult:
        """Continue a checkpointed run at ``state.current_step + 1``.

        Raises:
            PlanChangedError: If the state belongs to another task or plan
        """
        if state.task_id != task.id:
            raise PlanChangedError(
                f"State belongs to task {state.task_id}, not {task.id}"
            )
        if state.plan_fingerprint != plan.fingerprint():
            raise PlanChangedError(f"Plan for task {task.id} changed since checkpoint")
        if state.current_step > plan.total_steps:
            raise PlanChangedError(
                f"Checkpoint step {state.current_step} is beyond plan length "
                f"{plan.total_steps}"
            )

        logger.info(f"Resuming task {task.id} at step {state.current_step + 1}")
        state.status = AgentStatus.EXECUTING
        self.task_store.mark_executing(task.id, plan.total_steps)
        self._emit(EventType.TASK_RESUMED, task.id, current_step=state.current_step)
        return self._run(task, plan, state, token)

    def pause(self) -> None:
        """Request a pause at the next step boundary."""
        if self._token is None or self._state is None:
            return
        self._token.pause()
        self._announced.add(EventType.TASK_PAUSED)
        self._emit(EventType.TASK_PAUSED, self._state.task_id)

    def cancel(self) -> None:
        """Request cancellation at the next step boundary."""
        if self._token is None or self._state is None:
            return
        self._token.cancel()
        self._announced.add(EventType.TASK_CANCELLED)
        self._emit(EventType.TASK_CANCELLED, self._state.task_id)

    def _run(
        self,
        task: AgentTask,
        plan: ExecutionPlan,
        state: AgentState,
        token: CancellationToken | None,
    ) -> AgentResult:
        self._token = token or CancellationToken(clock=self._clock)
        self._state = state
        self._announced = set()
        started = self._clock()

        try:
            for step in plan.steps[state.current_step :]:
                if self._token.check():
                    return self._pause(task, state, started)
                try:
                    self._execute_step(task, step, state)
                except ApprovalPendingError:
                    logger.info(
                        f"No approval for step {step.step_number} of task {task.id}"
                    )
                    return self._pause(task, state, started)
        except ExecutionCancelledError:
            logger.info(f"Task {task.id} cancelled after step {state.current_step}")
            self._finish(task, state, started, AgentStatus.CANCELLED)
            raise
        except Exception as e:
            logger.error(f"Execution of task {task.id} failed: {e}")
            self._finish(task, state, started, AgentStatus.FAILED, error=str(e))
            raise

        return self._finish(task, state, started, AgentStatus.COMPLETED)

    def _execute_step(
        self, task: AgentTask, step: ExecutionStep, state: AgentState
    ) -> None:
        logger.info(f"Executing step {step.step_number}: {step.description}")
        self._emit(EventType.STEP_STARTED, task.id, step.step_number)

        reasoning = self._reason(task, step)
        step_started = self._clock()

        try:
            tool = self._resolve_tool(step)
            self._check_cost(tool, step, state)
            if step.requires_approval or self.config.require_approval:
                self._await_approval(task, step)
        except ApprovalPendingError:
            raise
        except StepError as e:
            self._record_failure(task, step, state, reasoning, e, step_started)
            raise

        attempts = self.config.retry_count + 1 if step.retryable else 1
        for attempt in range(1, attempts + 1):
            step_started = self._clock()
            try:
                result = self._observe(tool, task, step, state)
            except StepError as e:
                self._record_failure(task, step, state, reasoning, e, step_started)
                if e.retryable and attempt < attempts:
                    logger.info(
                        f"Retrying step {step.step_number} "
                        f"(attempt {attempt + 1} of {attempts})"
                    )
                    self._sleep(self.retry_delay)
                    continue
                raise

            self._record_success(task, step, state, reasoning, result, step_started)
            return

    def _reason(self, task: AgentTask, step: ExecutionStep) -> str:
        prompt = REASONING_PROMPT.format(
            goal=task.goal, description=step.description, action=step.action
        )
        try:
            response = self.llm.chat(
                self.reasoning_model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=settings.agent_reasoning_max_tokens,
            )
            if response.content.strip():
                return response.content.strip()
        except Exception as e:
            logger.warning(f"Reasoning call failed for step {step.step_number}: {e}")
        return f"Executing {step.action}: {step.description}"

    def _resolve_tool(self, step: ExecutionStep) -> Tool:
        tool = self.registry.get_tool(step.tool)
        if tool is None:
            raise ToolNotFoundError(step.step_number, step.tool)

        validation = tool.validate(step.params)
        if not validation.valid:
            raise ToolValidationError(step.step_number, validation.error)
        return tool

    def _check_cost(self, tool: Tool, step: ExecutionStep, state: AgentState) -> None:
        check = check_step_cost(
            tool.estimate_cost(step.params), state.credits_used, self.cost_limits
        )
        if not check.allowed:
            raise CostLimitExceededError(step.step_number, check.reason)

    def _await_approval(self, task: AgentTask, step: ExecutionStep) -> None:
        self._emit(
            EventType.APPROVAL_REQUIRED,
            task.id,
            step.step_number,
            action=step.action,
        )
        decision = self.approvals.wait(
            task.id, step.step_number, timeout=self.approval_timeout
        )
        if decision == ApprovalDecision.APPROVED:
            return
        if decision == ApprovalDecision.REJECTED:
            raise ApprovalRejectedError(step.step_number)
        raise ApprovalPendingError(step.step_number)

    def _observe(
        self,
        tool: Tool,
        task: AgentTask,
        step: ExecutionStep,
        state: AgentState,
    ) -> ToolResult:
        context = ToolContext(
            user_id=task.user_id,
            task_id=task.id,
            step_number=step.step_number,
            memory=state.context,
            llm=self.llm,
        )
        try:
            result = tool.execute(dict(step.params), context)
        except Exception as e:
            raise ToolExecutionError(
                step.step_number, str(e) or type(e).__name__
            ) from e

        if not result.success:
            raise ToolExecutionError(
                step.step_number,
                result.error or "Tool execution failed",
                credits=result.metadata.credits,
                tokens=result.metadata.tokens,
            )
        return result

    # Bookkeeping

    def _charge(self, state: AgentState, credits: int, tokens: int) -> tuple[int, int]:
        if credits < 0 or tokens < 0:
            logger.warning(f"Ignoring negative usage report ({credits}, {tokens})")
        credits, tokens = max(credits, 0), max(tokens, 0)
        state.credits_used += credits
        state.tokens_used += tokens
        return credits, tokens

    def _elapsed_ms(self, since: float) -> int:
        return int((self._clock() - since) * 1000)

    def _record_success(
        self,
        task: AgentTask,
        step: ExecutionStep,
        state: AgentState,
        reasoning: str,
        result: ToolResult,
        step_started: float,
    ) -> None:
        state.context[f"step{step.step_number}"] = result.data
        credits, tokens = self._charge(
            state, result.metadata.credits, result.metadata.tokens
        )
        entry = TraceEntry(
            step_number=step.step_number,
            action=step.action,
            tool=step.tool,
            input=dict(step.params),
            status=StepStatus.COMPLETED,
            reasoning=reasoning,
            output=result.data,
            duration=self._elapsed_ms(step_started),
            credits=credits,
            tokens=tokens,
        )
        state.trace.append(entry)
        state.current_step = step.step_number
        self.task_store.checkpoint(task.id, state)

        self._emit(
            EventType.STEP_COMPLETED,
            task.id,
            step.step_number,
            total_steps=state.total_steps,
            credits=credits,
        )
        logger.info(f"Step {step.step_number} completed in {entry.duration}ms")

    def _record_failure(
        self,
        task: AgentTask,
        step: ExecutionStep,
        state: AgentState,
        reasoning: str,
        error: StepError,
        step_started: float,
    ) -> None:
        credits, tokens = self._charge(
            state, getattr(error, "credits", 0), getattr(error, "tokens", 0)
        )
        state.trace.append(
            TraceEntry(
                step_number=step.step_number,
                action=step.action,
                tool=step.tool,
                input=dict(step.params),
                status=StepStatus.FAILED,
                reasoning=reasoning,
                error=str(error),
                duration=self._elapsed_ms(step_started),
                credits=credits,
                tokens=tokens,
            )
        )
        self._emit(EventType.STEP_FAILED, task.id, step.step_number, error=str(error))
        logger.warning(f"Step {step.step_number} failed: {error}")

    def _pause(
        self, task: AgentTask, state: AgentState, started: float
    ) -> AgentResult:
        state.status = AgentStatus.PAUSED
        state.execution_time += self._elapsed_ms(started)
        self.task_store.checkpoint(task.id, state, status=AgentStatus.PAUSED)

        if EventType.TASK_PAUSED not in self._announced:
            self._emit(EventType.TASK_PAUSED, task.id, current_step=state.current_step)
        logger.info(f"Task {task.id} paused after step {state.current_step}")

        return self._result(state, AgentStatus.PAUSED)

    def _finish(
        self,
        task: AgentTask,
        state: AgentState,
        started: float,
        status: AgentStatus,
        error: str | None = None,
    ) -> AgentResult:
        state.status = status
        state.execution_time += self._elapsed_ms(started)
        result = self._result(state, status, error)

        if status == AgentStatus.COMPLETED:
            self.task_store.record_result(task.id, result, state)
            summary = result.summary()
            summary.pop("task_id")
            self._emit(EventType.TASK_COMPLETED, task.id, **summary)
            logger.info(
                f"Task {task.id} completed: {state.current_step} steps, "
                f"{state.credits_used} credits"
            )
            return result

        # The triggering error is re-raised by the caller; a storage failure
        # here must not replace it.
        try:
            self.task_store.record_result(task.id, result, state)
        except Exception:
            logger.exception(f"Failed to save result for task {task.id}")

        if status == AgentStatus.CANCELLED:
            if EventType.TASK_CANCELLED not in self._announced:
                self._emit(EventType.TASK_CANCELLED, task.id)
        else:
            self._emit(EventType.TASK_FAILED, task.id, error=error)
        return result

    def _result(
        self, state: AgentState, status: AgentStatus, error: str | None = None
    ) -> AgentResult:
        output = None
        if status == AgentStatus.COMPLETED and state.current_step:
            output = {
                "output": state.context.get(f"step{state.current_step}"),
                "steps": dict(state.context),
            }
        return AgentResult(
            task_id=state.task_id,
            status=status,
            steps=state.current_step,
            duration=state.execution_time,
            credits_used=state.credits_used,
            tokens_used=state.tokens_used,
            trace=list(state.trace),
            result=output,
            error=error,
        )
