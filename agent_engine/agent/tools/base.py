"""Tool contract shared by every agent capability."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal

ToolCategory = Literal["browser", "communication", "data", "integration", "utility"]


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def invalid(cls, error: str) -> "ValidationResult":
        return cls(valid=False, error=error)


@dataclass
class ToolMetadata:
    duration: int = 0  # ms
    credits: int = 0
    tokens: int = 0


@dataclass
class ToolResult:
    success: bool
    data: Any = None
    error: str | None = None
    metadata: ToolMetadata = field(default_factory=ToolMetadata)


@dataclass
class ToolContext:
    """Context handed to a tool for one step."""

    user_id: str
    task_id: str
    step_number: int
    # Outputs of earlier steps, keyed "step<N>"
    memory: dict[str, Any]
    llm: Any = None


class Tool(ABC):
    """A named capability with validate/estimate_cost/execute operations.

    Side effects live entirely inside ``execute``. ``validate`` and
    ``estimate_cost`` must be pure.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    category: ClassVar[ToolCategory]

    @abstractmethod
    def validate(self, params: dict[str, Any]) -> ValidationResult:
        """Check parameters without side effects."""

    @abstractmethod
    def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        """Run the tool."""

    @abstractmethod
    def estimate_cost(self, params: dict[str, Any]) -> int:
        """Estimate credits for one invocation."""

    def describe(self) -> dict[str, str]:
        """Catalogue entry shown to the planner."""
        return {
            "name": self.name,
            "category": self.category,
            "description": self.description,
        }
