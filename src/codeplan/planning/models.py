"""Data models for task plans and their steps."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator

from codeplan.planning.results import StepResult


class StepType(str, Enum):
    """Kinds of planned work."""

    ANALYZE = "analyze"
    EDIT = "edit"
    TEST = "test"
    VALIDATE = "validate"
    REVIEW = "review"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class ValidationType(str, Enum):
    SYNTAX = "syntax"
    TYPES = "types"
    TESTS = "tests"
    LINT = "lint"
    BUILD = "build"
    CUSTOM = "custom"


class ValidationCriteria(BaseModel):
    """How a step's outcome should be checked."""

    type: ValidationType
    command: str | None = None
    expected_outcome: str | None = None
    error_tolerance: int | None = None


class ChangeType(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class FileChange(BaseModel):
    """A proposed change to one file, pending approval."""

    path: str
    change_type: ChangeType = ChangeType.MODIFY
    diff: str = ""
    content: str | None = None
    approved: bool = False


class Risk(BaseModel):
    description: str
    severity: RiskLevel
    mitigation: str


class DependencyKind(str, Enum):
    FILE = "file"
    PACKAGE = "package"
    SERVICE = "service"
    TOOL = "tool"


class ExternalDependency(BaseModel):
    """Something outside the codebase a plan needs (a test runner, a linter)."""

    kind: DependencyKind
    name: str
    required: bool = True
    available: bool | None = None  # None = unknown, never fails validation


class Step(BaseModel):
    """One planned unit of work."""

    id: str
    type: StepType
    description: str
    purpose: str = ""
    inputs: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    status: StepStatus = StepStatus.PENDING
    estimated_tokens: int = 0
    risk_level: RiskLevel = RiskLevel.LOW
    can_parallelize: bool = False
    files: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    validation: ValidationCriteria | None = None
    changes: list[FileChange] = Field(default_factory=list)
    result: StepResult | None = None
    error: str | None = None

    @field_validator("dependencies")
    @classmethod
    def _dedupe_dependencies(cls, value: list[str]) -> list[str]:
        # Dependencies are a set; keep first-seen order for stable reordering.
        return list(dict.fromkeys(value))


class Plan(BaseModel):
    """The ordered, validated set of steps derived from a task description."""

    summary: str
    complexity: Complexity = Complexity.MODERATE
    estimated_duration: int = 0  # minutes
    required_capabilities: list[str] = Field(default_factory=list)
    risks: list[Risk] = Field(default_factory=list)
    dependencies: list[ExternalDependency] = Field(default_factory=list)
    steps: list[Step] = Field(default_factory=list)
    rollback_strategy: str | None = None

    @property
    def total_estimated_tokens(self) -> int:
        return sum(s.estimated_tokens for s in self.steps)

    def get_step(self, step_id: str) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class CodebaseSummary(BaseModel):
    """What the planner knows about the workspace."""

    files: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    installed_tools: list[str] | None = None  # None = not probed
    test_command: str = "pytest"


class TaskAnalysis(BaseModel):
    """Classifier output describing a task."""

    summary: str = ""
    complexity: Complexity = Complexity.MODERATE
    capabilities: list[str] = Field(default_factory=list)
    challenges: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)


class PlanConstraints(BaseModel):
    """Limits a plan must satisfy before it may run."""

    max_tokens: int = 200_000
    available_capabilities: list[str] = Field(default_factory=list)


class PlanValidation(BaseModel):
    valid: bool
    issues: list[str] = Field(default_factory=list)
