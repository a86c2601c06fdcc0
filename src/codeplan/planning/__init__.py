"""Task planning.

Turns a task description into a dependency-ordered plan of typed steps.

Usage:
    from codeplan.planning import PlanGraphBuilder, PlanConstraints

    builder = PlanGraphBuilder()
    plan = builder.create_plan("Refactor the auth module to async/await")
    validation = builder.validate_plan(plan, PlanConstraints(max_tokens=50_000))
"""

from codeplan.planning.builder import KNOWN_CAPABILITIES, PlanGraphBuilder
from codeplan.planning.models import (
    CodebaseSummary,
    Complexity,
    FileChange,
    Plan,
    PlanConstraints,
    PlanValidation,
    Step,
    StepStatus,
    StepType,
    TaskAnalysis,
)
from codeplan.planning.parser import ParseError, ParseOk, parse_plan_draft, parse_task_analysis

__all__ = [
    "KNOWN_CAPABILITIES",
    "CodebaseSummary",
    "Complexity",
    "FileChange",
    "ParseError",
    "ParseOk",
    "Plan",
    "PlanConstraints",
    "PlanGraphBuilder",
    "PlanValidation",
    "Step",
    "StepStatus",
    "StepType",
    "TaskAnalysis",
    "parse_plan_draft",
    "parse_task_analysis",
]
