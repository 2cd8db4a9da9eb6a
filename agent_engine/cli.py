"""Agent Engine CLI - manage tasks, users and the agent queue."""

import json
import time

import typer
from rich.console import Console
from rich.table import Table

from agent_engine.agent.tools import build_default_registry
from agent_engine.agent.types import AgentConfig, AgentType
from agent_engine.core.database import create_tables
from agent_engine.core.errors import (
    NotFoundError,
    RecordAlreadyExistsError,
    ValidationError,
)
from agent_engine.core.logging import configure_logging
from agent_engine.models import TaskStatus
from agent_engine.queue import AGENT_QUEUE_NAME, AgentQueue, AgentTaskJob
from agent_engine.services import TaskService, UserService

app = typer.Typer(help="Agent Engine CLI")
task_app = typer.Typer(help="Task management commands")
user_app = typer.Typer(help="User and credit commands")
queue_app = typer.Typer(help="Agent queue commands")
tools_app = typer.Typer(help="Tool registry commands")
app.add_typer(task_app, name="task")
app.add_typer(user_app, name="user")
app.add_typer(queue_app, name="queue")
app.add_typer(tools_app, name="tools")

console = Console()


@app.callback()
def main(
    log_level: str = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    configure_logging(log_level)


def _fail(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")
    raise typer.Exit(1)


@app.command("init-db")
def init_db():
    """Create database tables."""
    create_tables()
    console.print("[green]✓[/green] Tables created")


@app.command("worker")
def worker(
    concurrency: int = typer.Option(
        None, "--concurrency", "-c", help="Override AGENT_WORKER_CONCURRENCY"
    ),
):
    """Start a Celery worker consuming the agent queue."""
    from agent_engine.celery_app import app as celery_app

    argv = ["worker", "--queues", AGENT_QUEUE_NAME, "--loglevel", "INFO"]
    if concurrency:
        argv += ["--concurrency", str(concurrency)]
    celery_app.worker_main(argv)


# Tasks


@task_app.command("create")
def create_task(
    user_id: str = typer.Argument(..., help="Owner user ID"),
    goal: str = typer.Argument(..., help="Natural language goal for the task"),
    agent_type: AgentType = typer.Option(AgentType.CUSTOM, "--type", help="Agent type"),
    model: str = typer.Option(None, "--model", help="Planning model"),
    max_steps: int = typer.Option(20, "--max-steps", help="Maximum plan length"),
    require_approval: bool = typer.Option(
        False, "--require-approval", help="Ask for approval before every step"
    ),
    priority: int = typer.Option(1, "--priority", help="Queue priority"),
    context: str = typer.Option(None, "--context", help="Extra context as JSON"),
):
    """Create a task and queue it (runs inline if the queue is down)."""
    try:
        extra = json.loads(context) if context else {}
    except json.JSONDecodeError as e:
        _fail(f"--context is not valid JSON: {e.msg}")

    config = AgentConfig(
        model=model, max_steps=max_steps, require_approval=require_approval
    )
    try:
        UserService.get_user_by_id(user_id)
        task = TaskService.create_task(
            user_id,
            goal,
            agent_type=agent_type,
            agent_config=config,
            context=extra,
            priority=priority,
        )
    except (NotFoundError, ValidationError) as e:
        _fail(str(e))

    console.print(f"[green]✓[/green] Task created: [bold]{task.id}[/bold]")
    console.print(f"  Status: {task.status}")
    console.print(f"  Title: {task.title}")


@task_app.command("run")
def run_task(task_id: str = typer.Argument(..., help="Task ID")):
    """Run a task in this process, bypassing the queue."""
    from agent_engine.services.agent_worker import build_worker

    try:
        task = TaskService.get_task_by_id(task_id)
    except NotFoundError as e:
        _fail(str(e))

    def show_progress(value: int) -> None:
        console.print(f"[dim]Progress: {value}%[/dim]")

    job = AgentTaskJob(task_id=str(task.id), user_id=str(task.user_id))
    try:
        summary = build_worker().process_job(job, show_progress)
    except Exception as e:
        _fail(f"Task failed: {e}")

    console.print(f"[green]✓[/green] Task {summary['status']}")
    console.print(json.dumps(summary, indent=2, default=str))


@task_app.command("list")
def list_tasks(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of tasks to show"),
    user_id: str = typer.Option(None, "--user", help="Only tasks of this user"),
    status: str = typer.Option(None, "--status", help="Only tasks in this status"),
):
    """List recent tasks."""
    tasks, total = TaskService.list_tasks(limit=limit, user_id=user_id, status=status)

    if not tasks:
        console.print("[yellow]No tasks found[/yellow]")
        return

    table = Table(title=f"Recent Tasks (showing {len(tasks)} of {total})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Status", style="magenta")
    table.add_column("Steps", style="white")
    table.add_column("Credits", style="green")
    table.add_column("Title", style="white")
    table.add_column("Created", style="dim")

    for task in tasks:
        table.add_row(
            str(task.id)[:8],  # Show first 8 chars of UUID
            task.status,
            f"{task.current_step}/{task.total_steps}",
            str(task.total_credits),
            task.title,
            task.created_at.isoformat()[:10],
        )

    console.print(table)


@task_app.command("get")
def get_task(task_id: str = typer.Argument(..., help="Task ID")):
    """Get task details."""
    try:
        task = TaskService.get_task_by_id(task_id)
    except NotFoundError as e:
        _fail(str(e))

    console.print(f"[bold]Task {task.id}[/bold]")
    console.print(f"  Status: {task.status}")
    console.print(f"  Type: {task.agent_type}")
    console.print(f"  Steps: {task.current_step}/{task.total_steps}")
    console.print(f"  Credits: {task.total_credits}  Tokens: {task.total_tokens}")
    console.print(f"  Execution time: {task.execution_time}ms")
    console.print(f"  Created: {task.created_at}")

    if task.control_signal:
        console.print(f"  Pending signal: [yellow]{task.control_signal}[/yellow]")

    console.print(f"\n[bold]Goal:[/bold]\n{task.description}")

    if task.plan:
        console.print("\n[bold]Plan:[/bold]")
        for step in task.plan["steps"]:
            marker = " [yellow](approval)[/yellow]" if step["requiresApproval"] else ""
            console.print(
                f"  {step['stepNumber']}. [{step['tool']}] {step['description']}"
                f"{marker}"
            )

    if task.error:
        console.print(f"\n[bold red]Error:[/bold red]\n{task.error}")

    if task.result:
        console.print("\n[bold]Result:[/bold]")
        console.print(json.dumps(task.result, indent=2, default=str))


@task_app.command("trace")
def get_trace(task_id: str = typer.Argument(..., help="Task ID")):
    """Show every recorded step attempt of a task."""
    try:
        executions = TaskService.get_task_executions(task_id)
    except NotFoundError as e:
        _fail(str(e))

    if not executions:
        console.print("[yellow]No trace recorded[/yellow]")
        return

    table = Table(title=f"Trace for task {task_id}")
    table.add_column("Step", style="cyan")
    table.add_column("Tool", style="magenta")
    table.add_column("Status")
    table.add_column("Credits", style="green")
    table.add_column("Duration", style="dim")
    table.add_column("Reasoning / Error", style="white")

    for execution in executions:
        ok = execution.status == "completed"
        table.add_row(
            str(execution.step),
            execution.tool,
            "[green]completed[/green]" if ok else "[red]failed[/red]",
            str(execution.credits),
            f"{execution.duration}ms",
            (execution.reasoning or "") if ok else (execution.error or ""),
        )

    console.print(table)


def _control(task_id: str, signal: str) -> None:
    try:
        task = TaskService.request_control(task_id, signal)
    except (NotFoundError, ValidationError) as e:
        _fail(str(e))

    if task.status == TaskStatus.CANCELLED:
        console.print(f"[green]✓[/green] Task {task.id} cancelled")
    else:
        console.print(
            f"[green]✓[/green] {signal.capitalize()} requested for task {task.id}; "
            "takes effect at the next step boundary"
        )


@task_app.command("pause")
def pause_task(task_id: str = typer.Argument(..., help="Task ID")):
    """Pause a running task at its next step boundary."""
    _control(task_id, "pause")


@task_app.command("cancel")
def cancel_task(task_id: str = typer.Argument(..., help="Task ID")):
    """Cancel a task."""
    _control(task_id, "cancel")


@task_app.command("resume")
def resume_task(task_id: str = typer.Argument(..., help="Task ID")):
    """Resume a paused task from its last checkpoint."""
    try:
        job_id = TaskService.resume_task(task_id)
    except (NotFoundError, ValidationError) as e:
        _fail(str(e))

    console.print(f"[green]✓[/green] Task {task_id} resumed (job {job_id})")


def _decide(task_id: str, step: int, decision: str) -> None:
    try:
        TaskService.record_approval(task_id, step, decision)
    except (NotFoundError, ValidationError) as e:
        _fail(str(e))
    console.print(f"[green]✓[/green] Step {step} of task {task_id} {decision}")


@task_app.command("approve")
def approve_step(
    task_id: str = typer.Argument(..., help="Task ID"),
    step: int = typer.Argument(..., help="Step number"),
):
    """Approve a step waiting for approval."""
    _decide(task_id, step, "approved")


@task_app.command("reject")
def reject_step(
    task_id: str = typer.Argument(..., help="Task ID"),
    step: int = typer.Argument(..., help="Step number"),
):
    """Reject a step waiting for approval."""
    _decide(task_id, step, "rejected")


@task_app.command("wait")
def wait_task(
    task_id: str = typer.Argument(..., help="Task ID"),
    timeout: int = typer.Option(600, "--timeout", "-t", help="Timeout in seconds"),
):
    """Wait for a task to finish."""
    start_time = time.time()

    while True:
        if time.time() - start_time > timeout:
            _fail(f"Timeout after {timeout}s")

        try:
            task = TaskService.get_task_by_id(task_id)
        except NotFoundError as e:
            _fail(str(e))

        console.print(
            f"Status: {task.status} ({task.current_step}/{task.total_steps})...",
            end="\r",
        )

        if task.status in TaskStatus.FINISHED or task.status == TaskStatus.PAUSED:
            console.print()  # New line
            if task.status == TaskStatus.COMPLETED:
                console.print("[green]✓[/green] Task completed")
            else:
                console.print(f"[red]✗[/red] Task {task.status}")
                if task.error:
                    console.print(f"  {task.error}")
            break

        time.sleep(5)


# Users


@user_app.command("create")
def create_user(
    email: str = typer.Argument(..., help="User email"),
    credits: int = typer.Option(1000, "--credits", help="Monthly credit budget"),
):
    """Create a user."""
    try:
        user = UserService.create_user(email, monthly_credits=credits)
    except RecordAlreadyExistsError as e:
        _fail(str(e))

    console.print(f"[green]✓[/green] User created: [bold]{user.id}[/bold]")
    console.print(f"  Monthly credits: {user.monthly_credits}")


@user_app.command("get")
def get_user(user_id: str = typer.Argument(..., help="User ID")):
    """Show a user's credit budget."""
    try:
        user = UserService.get_user_by_id(user_id)
    except NotFoundError as e:
        _fail(str(e))

    console.print(f"[bold]User {user.id}[/bold] ({user.email})")
    console.print(f"  Monthly credits: {user.monthly_credits}")
    console.print(f"  Used: {user.credits_used}")
    console.print(f"  Reserved: {user.credits_reserved}")
    console.print(f"  Available: [green]{user.credits_available}[/green]")


# Queue


def _print_admin(outcome: dict) -> None:
    if outcome["available"]:
        console.print(f"[green]✓[/green] Queue {outcome['operation']} done")
        if outcome.get("result"):
            console.print(f"  {outcome['result']}")
    else:
        console.print(
            f"[yellow]⚠[/yellow] Queue unavailable, {outcome['operation']} skipped"
        )
        if outcome.get("error"):
            console.print(f"  {outcome['error']}")


@queue_app.command("stats")
def queue_stats():
    """Show job counts per state."""
    stats = AgentQueue.default().get_queue_stats()

    if not stats["available"]:
        console.print("[yellow]⚠[/yellow] Queue unavailable")
        if stats.get("error"):
            console.print(f"  {stats['error']}")
        return

    table = Table(title="Agent queue")
    table.add_column("State", style="cyan")
    table.add_column("Jobs", style="white")
    for state in ("waiting", "delayed", "active", "completed", "failed", "total"):
        table.add_row(state, str(stats[state]))
    console.print(table)


@queue_app.command("pause")
def queue_pause():
    """Stop workers from taking new agent jobs."""
    _print_admin(AgentQueue.default().pause())


@queue_app.command("resume")
def queue_resume():
    """Let workers take agent jobs again."""
    _print_admin(AgentQueue.default().resume())


@queue_app.command("clean")
def queue_clean():
    """Remove finished jobs past their retention."""
    _print_admin(AgentQueue.default().clean())


# Tools


@tools_app.command("list")
def list_tools():
    """List built-in tools."""
    table = Table(title="Tools")
    table.add_column("Name", style="cyan")
    table.add_column("Category", style="magenta")
    table.add_column("Description", style="white")

    for tool in build_default_registry().get_all_tools():
        entry = tool.describe()
        table.add_row(entry["name"], entry["category"], entry["description"])

    console.print(table)


if __name__ == "__main__":
    app()
