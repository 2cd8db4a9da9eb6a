"""Tests for Executor."""

import pytest

from agent_engine.agent.approvals import InMemoryApprovalGate
from agent_engine.agent.cancellation import CancellationToken
from agent_engine.agent.events import EventType
from agent_engine.agent.executor import Executor
from agent_engine.agent.guards import CostLimits
from agent_engine.agent.tools import ToolRegistry
from agent_engine.agent.types import AgentConfig, AgentStatus, StepStatus
from agent_engine.core.errors import (
    ApprovalRejectedError,
    CostLimitExceededError,
    ExecutionCancelledError,
    ExecutionTimeoutError,
    PlanChangedError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolValidationError,
)
from agent_engine.services import TaskService, UserService
from tests.conftest import (
    FakeClock,
    FakeLLM,
    FakeTool,
    create_test_task,
    fail_result,
    make_plan,
    make_step,
    ok_result,
)


def build_executor(tools, config=None, llm=None, **kwargs):
    """Executor over the given tools with a recording sleep."""
    sleeps = []
    executor = Executor(
        config or AgentConfig(),
        ToolRegistry(tools),
        llm or FakeLLM(),
        sleep=sleeps.append,
        **kwargs,
    )
    return executor, sleeps


def record_events(executor):
    events = []
    executor.on_event(events.append)
    return events


@pytest.fixture
def task_record():
    return create_test_task()


@pytest.fixture
def agent_task(task_record):
    return TaskService.to_agent_task(task_record)


def test_execute_two_step_plan(agent_task, task_record):
    """Test a plan whose steps all succeed."""
    fetch = FakeTool("http.get", default=ok_result({"body": "<html>$10</html>"}, 5))
    summarize = FakeTool("ai.summarize", default=ok_result({"content": "Price: $10"}, 3))
    executor, _ = build_executor([fetch, summarize])
    events = record_events(executor)

    plan = make_plan(
        agent_task.id,
        make_step(1, "http.get", params={"url": "https://example.com"}),
        make_step(2, "ai.summarize", params={"text": "page"}),
    )
    result = executor.execute(agent_task, plan)

    assert result.status == AgentStatus.COMPLETED
    assert result.steps == 2
    assert result.credits_used == 8
    assert [entry.status for entry in result.trace] == [
        StepStatus.COMPLETED,
        StepStatus.COMPLETED,
    ]
    assert result.result["output"] == {"content": "Price: $10"}
    assert result.result["steps"]["step1"] == {"body": "<html>$10</html>"}

    assert [event.type for event in events] == [
        EventType.TASK_STARTED,
        EventType.STEP_STARTED,
        EventType.STEP_COMPLETED,
        EventType.STEP_STARTED,
        EventType.STEP_COMPLETED,
        EventType.TASK_COMPLETED,
    ]

    # The second tool sees the first tool's output in memory
    _, context = summarize.calls[0]
    assert context.memory["step1"] == {"body": "<html>$10</html>"}
    assert context.step_number == 2

    # Persisted state
    task = TaskService.get_task_by_id(task_record.id)
    assert task.status == "completed"
    assert task.current_step == 2
    assert task.total_credits == 8
    assert task.completed_at is not None
    assert task.state is None
    assert len(task.execution_trace) == 2
    assert len(TaskService.get_task_executions(task.id)) == 2

    user = UserService.get_user_by_id(task.user_id)
    assert user.credits_used == 8


def test_reasoning_recorded_on_trace(agent_task):
    """Test that the reasoning answer is stored on each trace entry."""
    llm = FakeLLM(reasoning="Fetching first is required.")
    executor, _ = build_executor([FakeTool()], llm=llm)

    result = executor.execute(agent_task, make_plan(agent_task.id, make_step(1)))

    assert result.trace[0].reasoning == "Fetching first is required."


def test_reasoning_falls_back_when_model_fails(agent_task):
    """Test the fallback reasoning text when the reasoning call fails."""
    executor, _ = build_executor([FakeTool()], llm=FakeLLM(fail_reasoning=True))

    step = make_step(1, action="scrape", description="Read the page")
    result = executor.execute(agent_task, make_plan(agent_task.id, step))

    assert result.status == AgentStatus.COMPLETED
    assert result.trace[0].reasoning == "Executing scrape: Read the page"


def test_retry_then_success(agent_task):
    """Test a flaky tool that succeeds on the third attempt."""
    tool = FakeTool(
        results=[fail_result("timeout"), fail_result("timeout"), ok_result({"n": 1})]
    )
    executor, sleeps = build_executor([tool], config=AgentConfig(retry_count=3))

    result = executor.execute(agent_task, make_plan(agent_task.id, make_step(1)))

    assert result.status == AgentStatus.COMPLETED
    assert len(tool.calls) == 3
    assert [entry.status for entry in result.trace] == [
        StepStatus.FAILED,
        StepStatus.FAILED,
        StepStatus.COMPLETED,
    ]
    assert result.trace[0].error == "timeout"
    assert sleeps == [1.0, 1.0]


def test_retry_bound(agent_task, task_record):
    """Test that a failing step is attempted at most retry_count + 1 times."""
    tool = FakeTool(default=fail_result("server error", credits=2))
    executor, sleeps = build_executor(
        [tool], config=AgentConfig(retry_count=2), retry_delay=0.5
    )
    events = record_events(executor)

    with pytest.raises(ToolExecutionError, match="server error"):
        executor.execute(agent_task, make_plan(agent_task.id, make_step(1)))

    assert len(tool.calls) == 3
    assert sleeps == [0.5, 0.5]
    assert events[-1].type == EventType.TASK_FAILED

    task = TaskService.get_task_by_id(task_record.id)
    assert task.status == "failed"
    assert task.error == "server error"
    assert task.failed_at is not None
    assert len(task.execution_trace) == 3
    # Usage reported by failed attempts is still charged
    assert task.total_credits == 6


def test_non_retryable_step_runs_once(agent_task):
    """Test that a step marked not retryable is attempted once."""
    tool = FakeTool(default=fail_result())
    executor, sleeps = build_executor([tool])

    with pytest.raises(ToolExecutionError):
        executor.execute(
            agent_task, make_plan(agent_task.id, make_step(1, retryable=False))
        )

    assert len(tool.calls) == 1
    assert sleeps == []


def test_tool_exception_is_treated_as_failure(agent_task):
    """Test that an exception raised by a tool is retried like a failed result."""
    tool = FakeTool(results=[RuntimeError("connection reset"), ok_result()])
    executor, _ = build_executor([tool])

    result = executor.execute(agent_task, make_plan(agent_task.id, make_step(1)))

    assert result.status == AgentStatus.COMPLETED
    assert result.trace[0].error == "connection reset"


def test_unknown_tool_fails_without_retry(agent_task, task_record):
    """Test that a step naming an unregistered tool aborts the plan."""
    known = FakeTool()
    executor, sleeps = build_executor([known])

    plan = make_plan(
        agent_task.id, make_step(1, "does.not.exist"), make_step(2, "fake.tool")
    )
    with pytest.raises(ToolNotFoundError, match="Tool not found: does.not.exist"):
        executor.execute(agent_task, plan)

    assert sleeps == []
    assert known.calls == []

    task = TaskService.get_task_by_id(task_record.id)
    assert task.status == "failed"
    assert len(task.execution_trace) == 1
    assert task.execution_trace[0]["status"] == "failed"


def test_invalid_params_fail_without_retry(agent_task):
    """Test that tool validation errors are not retried."""
    tool = FakeTool(validation_error="url parameter required (string)")
    executor, _ = build_executor([tool])

    with pytest.raises(ToolValidationError, match="url parameter required"):
        executor.execute(agent_task, make_plan(agent_task.id, make_step(1)))

    assert tool.calls == []


def test_trace_covers_every_attempt(agent_task):
    """Test that every attempt of every step appears in the trace in order."""
    first = FakeTool("first", results=[fail_result(), ok_result()])
    second = FakeTool("second")
    executor, _ = build_executor([first, second])

    result = executor.execute(
        agent_task,
        make_plan(agent_task.id, make_step(1, "first"), make_step(2, "second")),
    )

    assert [(e.step_number, e.status) for e in result.trace] == [
        (1, StepStatus.FAILED),
        (1, StepStatus.COMPLETED),
        (2, StepStatus.COMPLETED),
    ]


def test_negative_credits_are_ignored(agent_task):
    """Test that credits never decrease because of a bad usage report."""
    tool = FakeTool(results=[ok_result(credits=4), ok_result(credits=-10)])
    executor, _ = build_executor([tool])

    result = executor.execute(
        agent_task, make_plan(agent_task.id, make_step(1), make_step(2))
    )

    assert result.credits_used == 4
    assert result.trace[1].credits == 0


def test_handler_exception_does_not_stop_execution(agent_task):
    """Test that a failing event subscriber is isolated from the loop."""
    executor, _ = build_executor([FakeTool()])

    def broken_handler(event):
        raise RuntimeError("subscriber bug")

    executor.on_event(broken_handler)
    result = executor.execute(agent_task, make_plan(agent_task.id, make_step(1)))

    assert result.status == AgentStatus.COMPLETED


def test_three_step_plan_completes_with_three_entries(agent_task, task_record):
    """Test a three step plan: current step 3 and one completed entry per step."""
    executor, _ = build_executor([FakeTool()])

    result = executor.execute(
        agent_task,
        make_plan(agent_task.id, make_step(1), make_step(2), make_step(3)),
    )

    assert result.status == AgentStatus.COMPLETED
    assert result.steps == 3
    assert [entry.status for entry in result.trace] == [StepStatus.COMPLETED] * 3

    task = TaskService.get_task_by_id(task_record.id)
    assert task.current_step == 3
    assert len(task.execution_trace) == 3


def test_completed_event_carries_summary(agent_task, task_record):
    """Test the task.completed payload and that the task stays completed."""
    executor, _ = build_executor([FakeTool(default=ok_result(credits=7, tokens=3))])
    events = record_events(executor)

    result = executor.execute(agent_task, make_plan(agent_task.id, make_step(1)))

    completed = events[-1]
    assert completed.type == EventType.TASK_COMPLETED
    assert completed.task_id == agent_task.id
    assert completed.data == {
        "status": "completed",
        "steps": 1,
        "duration": result.duration,
        "credits_used": 7,
        "tokens_used": 3,
        "error": None,
    }
    assert TaskService.get_task_by_id(task_record.id).status == "completed"


class RecordingStore:
    """Task store that records credits seen at every checkpoint."""

    def __init__(self):
        self.credits = []

    def __getattr__(self, name):
        return getattr(TaskService, name)

    def checkpoint(self, task_id, state, status=None):
        self.credits.append(state.credits_used)
        if status is None:
            return TaskService.checkpoint(task_id, state)
        return TaskService.checkpoint(task_id, state, status=status)

    def record_result(self, task_id, result, state):
        self.credits.append(state.credits_used)
        return TaskService.record_result(task_id, result, state)


def test_credits_never_decrease_across_retries(agent_task, task_record):
    """Test that credits only grow, including through a failing step."""
    first = FakeTool("first", default=ok_result(credits=3))
    flaky = FakeTool(
        "flaky",
        results=[
            fail_result("timeout", credits=2),
            fail_result("timeout", credits=2),
            ok_result(credits=4),
        ],
    )
    last = FakeTool("last", default=ok_result(credits=1))
    store = RecordingStore()
    executor, _ = build_executor([first, flaky, last], task_store=store)

    result = executor.execute(
        agent_task,
        make_plan(
            agent_task.id,
            make_step(1, "first"),
            make_step(2, "flaky"),
            make_step(3, "last"),
        ),
    )

    assert store.credits == [3, 11, 12, 12]
    assert store.credits == sorted(store.credits)
    assert result.credits_used == sum(entry.credits for entry in result.trace)
    assert TaskService.get_task_by_id(task_record.id).total_credits == 12


def test_step_over_cost_ceiling_is_not_run(agent_task, task_record):
    """Test that a step estimated above the step ceiling fails without retry."""
    tool = FakeTool(estimate=1500)
    executor, sleeps = build_executor([tool])

    with pytest.raises(CostLimitExceededError, match="per-step limit of 1000"):
        executor.execute(agent_task, make_plan(agent_task.id, make_step(1)))

    assert tool.calls == []
    assert sleeps == []

    task = TaskService.get_task_by_id(task_record.id)
    assert task.status == "failed"
    assert len(task.execution_trace) == 1


def test_task_cost_ceiling_counts_credits_used(agent_task):
    """Test that the task ceiling includes credits already used by the run."""
    cheap = FakeTool("cheap", default=ok_result(credits=8))
    costly = FakeTool("costly", estimate=5)
    executor, _ = build_executor(
        [cheap, costly],
        cost_limits=CostLimits(max_credits_per_step=10, max_credits_per_task=10),
    )

    with pytest.raises(CostLimitExceededError, match="Task would use 13 credits"):
        executor.execute(
            agent_task,
            make_plan(agent_task.id, make_step(1, "cheap"), make_step(2, "costly")),
        )

    assert len(cheap.calls) == 1
    assert costly.calls == []


def test_cancel_before_first_step(agent_task, task_record):
    """Test cancellation requested before execution starts."""
    tool = FakeTool()
    executor, _ = build_executor([tool])
    token = CancellationToken()
    token.cancel()

    with pytest.raises(ExecutionCancelledError):
        executor.execute(agent_task, make_plan(agent_task.id, make_step(1)), token)

    assert tool.calls == []
    task = TaskService.get_task_by_id(task_record.id)
    assert task.status == "cancelled"
    assert task.execution_trace == []


def test_cancel_between_steps(agent_task, task_record):
    """Test that cancel() takes effect at the next step boundary."""
    second = FakeTool("second")
    executor, _ = build_executor([FakeTool("first"), second])
    events = record_events(executor)

    def cancel_after_first(event):
        if event.type == EventType.STEP_COMPLETED and event.step_number == 1:
            executor.cancel()

    executor.on_event(cancel_after_first)
    plan = make_plan(agent_task.id, make_step(1, "first"), make_step(2, "second"))

    with pytest.raises(ExecutionCancelledError):
        executor.execute(agent_task, plan)

    assert second.calls == []
    assert [e.type for e in events].count(EventType.TASK_CANCELLED) == 1

    task = TaskService.get_task_by_id(task_record.id)
    assert task.status == "cancelled"
    assert task.current_step == 1
    assert len(task.execution_trace) == 1


def test_timeout_at_step_boundary(agent_task, task_record):
    """Test that an expired deadline fails the task at the next boundary."""
    clock = FakeClock()
    first = FakeTool("first", on_execute=lambda params, context: clock.advance(30))
    second = FakeTool("second")
    executor, _ = build_executor([first, second], clock=clock)
    token = CancellationToken.with_timeout(10, clock=clock)

    plan = make_plan(agent_task.id, make_step(1, "first"), make_step(2, "second"))
    with pytest.raises(ExecutionTimeoutError):
        executor.execute(agent_task, plan, token)

    assert second.calls == []
    task = TaskService.get_task_by_id(task_record.id)
    assert task.status == "failed"
    assert task.error == "Execution timed out"


def test_pause_and_resume(agent_task, task_record):
    """Test pausing at a boundary and resuming from the checkpoint."""
    first = FakeTool("first", default=ok_result({"page": 1}, credits=5))
    second = FakeTool("second", default=ok_result({"page": 2}, credits=7))
    executor, _ = build_executor([first, second])

    def pause_after_first(event):
        if event.type == EventType.STEP_COMPLETED and event.step_number == 1:
            executor.pause()

    executor.on_event(pause_after_first)
    plan = make_plan(agent_task.id, make_step(1, "first"), make_step(2, "second"))

    paused = executor.execute(agent_task, plan)

    assert paused.status == AgentStatus.PAUSED
    assert paused.steps == 1
    assert second.calls == []

    task = TaskService.get_task_by_id(task_record.id)
    assert task.status == "paused"
    assert task.current_step == 1

    state = TaskService.load_state(task_record.id)
    resumer, _ = build_executor([first, second])
    events = record_events(resumer)
    result = resumer.resume(agent_task, plan, state)

    assert result.status == AgentStatus.COMPLETED
    assert result.steps == 2
    assert result.credits_used == 12
    assert len(first.calls) == 1
    assert len(second.calls) == 1
    assert len(result.trace) == 2
    assert events[0].type == EventType.TASK_RESUMED

    # The resumed step sees the output of the step run before the pause
    _, context = second.calls[0]
    assert context.memory["step1"] == {"page": 1}


def test_resume_rejects_changed_plan(agent_task):
    """Test that a checkpoint cannot be resumed against another plan."""
    executor, _ = build_executor([FakeTool()])
    plan = make_plan(agent_task.id, make_step(1), make_step(2))

    def pause_now(event):
        if event.type == EventType.STEP_COMPLETED:
            executor.pause()

    executor.on_event(pause_now)
    executor.execute(agent_task, plan)
    state = TaskService.load_state(agent_task.id)

    other_plan = make_plan(agent_task.id, make_step(1), make_step(2, params={"x": 1}))
    with pytest.raises(PlanChangedError):
        executor.resume(agent_task, other_plan, state)


def test_step_requiring_approval_waits_for_decision(agent_task):
    """Test that an approved step runs after approval.required is emitted."""
    gate = InMemoryApprovalGate()
    gate.approve(agent_task.id, 1)
    tool = FakeTool()
    executor, _ = build_executor([tool], approvals=gate)
    events = record_events(executor)

    result = executor.execute(
        agent_task, make_plan(agent_task.id, make_step(1, requires_approval=True))
    )

    assert result.status == AgentStatus.COMPLETED
    assert EventType.APPROVAL_REQUIRED in [event.type for event in events]
    assert len(tool.calls) == 1


def test_rejected_step_fails_task(agent_task, task_record):
    """Test that a rejected step aborts the plan without running the tool."""
    gate = InMemoryApprovalGate()
    gate.reject(agent_task.id, 1)
    tool = FakeTool()
    executor, _ = build_executor(
        [tool], config=AgentConfig(require_approval=True), approvals=gate
    )

    with pytest.raises(ApprovalRejectedError):
        executor.execute(agent_task, make_plan(agent_task.id, make_step(1)))

    assert tool.calls == []
    assert TaskService.get_task_by_id(task_record.id).status == "failed"


def test_missing_approval_pauses_task(agent_task, task_record):
    """Test that an approval timeout pauses the task at that step."""
    tool = FakeTool()
    executor, _ = build_executor(
        [tool], approvals=InMemoryApprovalGate(), approval_timeout=0
    )

    result = executor.execute(
        agent_task, make_plan(agent_task.id, make_step(1, requires_approval=True))
    )

    assert result.status == AgentStatus.PAUSED
    assert result.steps == 0
    assert tool.calls == []
    assert TaskService.get_task_by_id(task_record.id).status == "paused"


def test_plan_delegates_to_planner(agent_task):
    """Test that Executor.plan returns the planner's parsed plan."""
    llm = FakeLLM()
    executor, _ = build_executor([FakeTool()], llm=llm)

    plan = executor.plan(agent_task)

    assert plan.total_steps == 1
    assert plan.steps[0].tool == "fake.tool"
    assert len(llm.planning_calls) == 1
