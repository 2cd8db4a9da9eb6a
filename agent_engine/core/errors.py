"""Core exception classes for the application."""


class RecordAlreadyExistsError(Exception):
    """Raised when trying to create a record that already exists."""


class NotFoundError(Exception):
    """Raised when a resource is not found."""


class ValidationError(Exception):
    """Raised when validation fails."""


class AgentError(Exception):
    """Base error for all agent engine operations."""


class PlanningError(AgentError):
    """Raised when the model call behind planning fails."""


class PlanParseError(AgentError):
    """Raised when model output cannot be parsed into a valid step list."""


class PlanChangedError(AgentError):
    """Raised when a resumed state was recorded against a different plan."""


class StepError(AgentError):
    """Base error for a failed plan step."""

    retryable = False

    def __init__(self, step_number: int, message: str):
        self.step_number = step_number
        super().__init__(message)


class ToolNotFoundError(StepError):
    """Raised when a step references an unregistered tool."""

    def __init__(self, step_number: int, tool_name: str):
        self.tool_name = tool_name
        super().__init__(step_number, f"Tool not found: {tool_name}")


class ToolValidationError(StepError):
    """Raised when step parameters fail the tool's own validation."""

    def __init__(self, step_number: int, error: str | None):
        super().__init__(step_number, f"Invalid parameters: {error or 'unknown error'}")


class ToolExecutionError(StepError):
    """Raised when a tool ran and failed."""

    retryable = True

    def __init__(self, step_number: int, message: str, credits: int = 0, tokens: int = 0):
        # Usage reported by the tool before it failed; still charged
        self.credits = credits
        self.tokens = tokens
        super().__init__(step_number, message)


class CostLimitExceededError(StepError):
    """Raised when a step's estimated credits break a cost ceiling."""


class ApprovalRejectedError(StepError):
    """Raised when a human rejected a step that required approval."""

    def __init__(self, step_number: int):
        super().__init__(step_number, f"Approval rejected for step {step_number}")


class ApprovalPendingError(StepError):
    """Raised when no approval decision arrived before the gate timed out."""

    def __init__(self, step_number: int):
        super().__init__(step_number, f"Approval pending for step {step_number}")


class ExecutionCancelledError(AgentError):
    """Raised at a step boundary once cancellation was requested."""


class ExecutionTimeoutError(AgentError):
    """Raised at a step boundary once the caller's deadline has passed."""


class InsufficientCreditsError(AgentError):
    """Raised when the owner's remaining budget cannot cover a plan."""

    def __init__(self, needed: int, available: int):
        self.needed = needed
        self.available = available
        super().__init__(
            f"Insufficient credits: need {needed}, available {available}"
        )


class TaskOwnershipError(AgentError):
    """Raised when a queued job names a different owner than its task."""


class QueueUnavailableError(AgentError):
    """Raised inside the queue when the broker cannot be reached."""
