"""Build dependency-ordered plans from natural-language task descriptions.

Plan shape:
  1. a leading analysis step with no dependencies
  2. task-specific clusters chosen by keyword
       refactor       -> edit + review
       implement/add  -> edit
       optimize       -> performance analysis + edit
  3. a test step when the task is not simple or mentions tests
  4. a terminal validate step depending on every earlier step

The finished step list is checked for cycles, reordered so each step follows
its dependencies (parallel-eligible siblings kept adjacent), and pruned of
dangling dependency ids.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Awaitable, Callable

from codeplan.agent.prompts import get_task_analysis_prompt
from codeplan.exceptions import CircularDependencyError
from codeplan.planning.graph import (
    find_cycle,
    prune_dependencies,
    reorder_steps,
    unknown_dependencies,
)
from codeplan.planning.models import (
    CodebaseSummary,
    Complexity,
    DependencyKind,
    ExternalDependency,
    Plan,
    PlanConstraints,
    PlanValidation,
    Risk,
    RiskLevel,
    Step,
    StepType,
    TaskAnalysis,
    ValidationCriteria,
    ValidationType,
)
from codeplan.planning.parser import ParseError, ParseResult, PlanDraft, parse_task_analysis

logger = logging.getLogger("codeplan.planning")

ServiceCall = Callable[[str, str], Awaitable[str]]  # (prompt, purpose) -> reply text

# Checked in this order; the first level with a matching keyword wins.
_COMPLEXITY_KEYWORDS: dict[Complexity, list[str]] = {
    Complexity.SIMPLE: ["fix", "update", "rename", "move", "add comment"],
    Complexity.MODERATE: ["refactor", "implement", "integrate", "optimize"],
    Complexity.COMPLEX: ["redesign", "migrate", "rewrite", "architect", "all", "entire"],
}

_CAPABILITY_MAP: dict[str, list[str]] = {
    "refactor": ["ast-manipulation", "code-analysis"],
    "test": ["test-framework-knowledge", "mocking"],
    "optimize": ["profiling", "performance-analysis"],
    "async": ["promise-detection", "async-patterns"],
    "type": ["type-inference", "static-typing"],
    "api": ["http-patterns", "rest-conventions"],
    "database": ["sql-knowledge", "orm-patterns"],
    "ui": ["component-patterns", "dom-manipulation"],
    "security": ["vulnerability-detection", "secure-coding"],
}

_PATTERN_MAP: dict[str, list[str]] = {
    "promise": ["new Promise", ".then(", ".catch(", "async", "await"],
    "callback": ["callback", "cb(", "done(", "next("],
    "error": ["try", "catch", "except", "raise", "throw", "Error"],
    "loop": ["for", "while", "forEach", "map", "reduce"],
    "import": ["import", "require", "from"],
    "class": ["class", "extends", "constructor"],
    "function": ["def", "function", "=>", "async"],
    "test": ["test(", "it(", "describe(", "expect(", "def test_", "assert"],
}

# Templates are keyed by the phrase that selects them.
_TEMPLATES: dict[str, dict] = {
    "refactor async": {
        "capabilities": ["ast-manipulation", "promise-detection", "error-handling"],
        "risks": [
            Risk(
                description="Incorrect error handling transformation",
                severity=RiskLevel.HIGH,
                mitigation="Preserve try/catch blocks and error propagation patterns",
            ),
            Risk(
                description="Breaking sequential execution",
                severity=RiskLevel.MEDIUM,
                mitigation="Analyze promise chains for sequential dependencies",
            ),
        ],
    },
    "add tests": {
        "capabilities": ["test-framework-knowledge", "mocking", "assertion-generation"],
        "risks": [
            Risk(
                description="Incomplete test coverage",
                severity=RiskLevel.MEDIUM,
                mitigation="Use coverage tools to identify gaps",
            ),
            Risk(
                description="Brittle tests",
                severity=RiskLevel.LOW,
                mitigation="Focus on behavior, not implementation details",
            ),
        ],
    },
    "optimize performance": {
        "capabilities": ["profiling", "complexity-analysis", "algorithm-knowledge"],
        "risks": [
            Risk(
                description="Premature optimization",
                severity=RiskLevel.MEDIUM,
                mitigation="Profile first, optimize measurable bottlenecks",
            ),
            Risk(
                description="Breaking functionality",
                severity=RiskLevel.HIGH,
                mitigation="Comprehensive testing before and after changes",
            ),
        ],
    },
}

KNOWN_CAPABILITIES: list[str] = sorted(
    {c for caps in _CAPABILITY_MAP.values() for c in caps}
    | {c for t in _TEMPLATES.values() for c in t["capabilities"]}
)

_BASE_MINUTES = {
    StepType.ANALYZE: 2,
    StepType.EDIT: 5,
    StepType.TEST: 3,
    StepType.VALIDATE: 2,
    StepType.REVIEW: 3,
}
_RISK_MULTIPLIER = {RiskLevel.LOW: 1.0, RiskLevel.MEDIUM: 1.5, RiskLevel.HIGH: 2.0}
_DEFAULT_TOKENS = {
    StepType.ANALYZE: 5000,
    StepType.EDIT: 10000,
    StepType.TEST: 1000,
    StepType.VALIDATE: 3000,
    StepType.REVIEW: 5000,
}


# Too short to match by prefix ("address", "allow", "uint").
_WHOLE_WORDS = {"add", "all", "ui"}


def _mentions(text: str, keyword: str) -> bool:
    """True when `keyword` starts a word in `text` (case-insensitive).

    Keywords in `_WHOLE_WORDS` must match a whole word.
    """
    pattern = r"\b" + re.escape(keyword)
    if keyword in _WHOLE_WORDS:
        pattern += r"\b"
    return re.search(pattern, text, re.IGNORECASE) is not None


class PlanGraphBuilder:
    """Turns a task description into a validated, dependency-ordered plan.

    Usage:
        builder = PlanGraphBuilder()
        plan = builder.create_plan("Refactor the auth module to async/await")
        result = builder.validate_plan(plan, PlanConstraints(available_capabilities=[...]))
    """

    # -------------------------------------------------------------------
    # Main entry points
    # -------------------------------------------------------------------

    def create_plan(
        self,
        description: str,
        codebase: CodebaseSummary | None = None,
        analysis: TaskAnalysis | None = None,
    ) -> Plan:
        """Create a plan for `description`.

        Args:
            description: Natural language task description.
            codebase: What is known about the workspace (tools, test command).
            analysis: Classifier output; keyword heuristics are used when None.

        Raises:
            CircularDependencyError: If the generated steps contain a cycle.
        """
        codebase = codebase or CodebaseSummary()
        analysis = analysis or self.basic_task_analysis(description)
        template = self.find_template(description)

        steps = self._generate_steps(description, analysis, codebase)
        capabilities = template["capabilities"] if template else analysis.capabilities

        plan = Plan(
            summary=analysis.summary or description,
            complexity=analysis.complexity,
            required_capabilities=list(capabilities),
            risks=list(template["risks"]) if template else [],
            steps=steps,
        )
        plan.estimated_duration = self.estimate_duration(steps)
        plan.dependencies = self.identify_dependencies(steps, codebase)
        if plan.complexity == Complexity.COMPLEX:
            plan.rollback_strategy = self.rollback_strategy(steps)

        return self.optimize_plan(plan)

    def plan_from_draft(self, draft: PlanDraft, codebase: CodebaseSummary | None = None) -> Plan:
        """Turn a service-proposed plan into a checked, ordered Plan."""
        codebase = codebase or CodebaseSummary()
        steps = [
            Step(
                id=d.id,
                type=d.type,
                description=d.description,
                files=list(d.files),
                dependencies=list(d.dependencies),
                can_parallelize=d.can_parallelize,
                estimated_tokens=d.estimated_tokens or _DEFAULT_TOKENS[d.type],
                risk_level=RiskLevel.MEDIUM if d.type == StepType.EDIT else RiskLevel.LOW,
            )
            for d in draft.steps
        ]
        plan = Plan(
            summary=draft.summary,
            complexity=draft.complexity,
            steps=steps,
            estimated_duration=self.estimate_duration(steps),
            dependencies=self.identify_dependencies(steps, codebase),
        )
        if plan.complexity == Complexity.COMPLEX:
            plan.rollback_strategy = self.rollback_strategy(steps)
        return self.optimize_plan(plan)

    def optimize_plan(self, plan: Plan) -> Plan:
        """Reject cycles, then reorder and prune the plan's steps."""
        cycle = find_cycle(plan.steps)
        if cycle:
            raise CircularDependencyError(cycle)

        ordered = reorder_steps(plan.steps)
        prune_dependencies(ordered)
        return plan.model_copy(update={"steps": ordered})

    def validate_plan(self, plan: Plan, constraints: PlanConstraints) -> PlanValidation:
        """Check a plan against constraints. Reports every failing check."""
        issues: list[str] = []

        total_tokens = plan.total_estimated_tokens
        if total_tokens > constraints.max_tokens:
            issues.append(
                f"Plan requires {total_tokens} tokens, exceeding limit of {constraints.max_tokens}"
            )

        available = set(constraints.available_capabilities)
        missing_caps = [c for c in plan.required_capabilities if c not in available]
        if missing_caps:
            issues.append(f"Missing capabilities: {', '.join(missing_caps)}")

        unavailable = [d.name for d in plan.dependencies if d.required and d.available is False]
        if unavailable:
            issues.append(f"Missing dependencies: {', '.join(unavailable)}")

        dangling = unknown_dependencies(plan.steps)
        if dangling:
            detail = ", ".join(f"{sid} -> {', '.join(deps)}" for sid, deps in dangling.items())
            issues.append(f"Steps depend on unknown steps: {detail}")

        cycle = find_cycle(plan.steps)
        if cycle:
            issues.append(f"Plan contains circular dependencies: {' -> '.join(cycle)}")

        return PlanValidation(valid=not issues, issues=issues)

    async def analyze_task(
        self, description: str, call: ServiceCall
    ) -> ParseResult[TaskAnalysis]:
        """Classify a task with the reasoning service.

        Malformed output comes back as ``ParseError``; it is not retried.
        Callers that want a plan anyway can fall back to
        ``basic_task_analysis``.
        """
        text = await call(get_task_analysis_prompt(description), "planning")
        result = parse_task_analysis(text)
        if isinstance(result, ParseError):
            logger.warning("Task analysis could not be parsed: %s", result.message)
        return result

    # -------------------------------------------------------------------
    # Heuristics
    # -------------------------------------------------------------------

    def basic_task_analysis(self, description: str) -> TaskAnalysis:
        complexity = Complexity.MODERATE
        for level, keywords in _COMPLEXITY_KEYWORDS.items():
            if any(_mentions(description, k) for k in keywords):
                complexity = level
                break

        return TaskAnalysis(
            summary=description,
            complexity=complexity,
            capabilities=self.infer_capabilities(description),
        )

    def infer_capabilities(self, description: str) -> list[str]:
        capabilities: list[str] = []
        for keyword, caps in _CAPABILITY_MAP.items():
            if _mentions(description, keyword):
                capabilities.extend(caps)
        return list(dict.fromkeys(capabilities))

    def extract_patterns(self, description: str) -> list[str]:
        patterns: list[str] = []
        for keyword, values in _PATTERN_MAP.items():
            if _mentions(description, keyword):
                patterns.extend(values)
        return list(dict.fromkeys(patterns))

    def find_template(self, description: str) -> dict | None:
        lowered = description.lower()
        for phrase, template in _TEMPLATES.items():
            if phrase in lowered:
                return template
        return None

    def estimate_duration(self, steps: list[Step]) -> int:
        minutes = sum(_BASE_MINUTES[s.type] * _RISK_MULTIPLIER[s.risk_level] for s in steps)
        return math.ceil(minutes)

    def identify_dependencies(
        self, steps: list[Step], codebase: CodebaseSummary
    ) -> list[ExternalDependency]:
        installed = codebase.installed_tools

        def is_available(name: str) -> bool | None:
            return None if installed is None else name in installed

        found: list[ExternalDependency] = []

        if any(s.type == StepType.TEST for s in steps):
            runner = codebase.test_command.split()[0] if codebase.test_command else "pytest"
            found.append(ExternalDependency(
                kind=DependencyKind.PACKAGE, name=runner, required=True,
                available=is_available(runner),
            ))

        validation_types = {s.validation.type for s in steps if s.validation}
        if ValidationType.BUILD in validation_types:
            found.append(ExternalDependency(
                kind=DependencyKind.TOOL, name="build", required=True,
                available=is_available("build"),
            ))
        if ValidationType.LINT in validation_types:
            found.append(ExternalDependency(
                kind=DependencyKind.PACKAGE, name="ruff", required=False,
                available=is_available("ruff"),
            ))

        unique: dict[tuple[str, str], ExternalDependency] = {}
        for dep in found:
            unique.setdefault((dep.kind.value, dep.name), dep)
        return list(unique.values())

    def rollback_strategy(self, steps: list[Step]) -> str:
        edit_steps = [s for s in steps if s.type == StepType.EDIT]
        if not edit_steps:
            return "No file modifications planned - no rollback needed"

        return (
            "Rollback Strategy:\n"
            "1. Commit or stash current changes before starting\n"
            f"2. Back up affected files: {len(edit_steps)} edit steps will modify files\n"
            "3. If issues arise, restore from git: 'git checkout -- .'\n"
            "4. For partial rollback, review 'git diff' and revert selectively\n"
            "5. Keep the session report as a log of applied changes"
        )

    # -------------------------------------------------------------------
    # Step generation
    # -------------------------------------------------------------------

    def _generate_steps(
        self,
        description: str,
        analysis: TaskAnalysis,
        codebase: CodebaseSummary,
    ) -> list[Step]:
        steps: list[Step] = [
            Step(
                id="analyze-1",
                type=StepType.ANALYZE,
                description="Analyze codebase structure and identify targets",
                purpose="Understand current state and plan changes",
                inputs=["task description", "codebase structure"],
                outputs=["target files", "change locations", "impact analysis"],
                estimated_tokens=5000,
                risk_level=RiskLevel.LOW,
                patterns=self.extract_patterns(description),
            )
        ]
        steps.extend(self._task_specific_steps(description))

        if analysis.complexity != Complexity.SIMPLE or _mentions(description, "test"):
            steps.append(Step(
                id=f"test-{len(steps) + 1}",
                type=StepType.TEST,
                description="Run existing tests to verify changes",
                purpose="Ensure no regressions",
                inputs=["test files", "modified code"],
                outputs=["test results", "coverage report"],
                estimated_tokens=1000,
                dependencies=[s.id for s in steps],
                risk_level=RiskLevel.MEDIUM,
                validation=ValidationCriteria(
                    type=ValidationType.TESTS,
                    command=codebase.test_command,
                    expected_outcome="All tests pass",
                ),
            ))

        steps.append(Step(
            id=f"validate-{len(steps) + 1}",
            type=StepType.VALIDATE,
            description="Validate changes and ensure correctness",
            purpose="Verify changes don't break existing functionality",
            inputs=["modified files", "test results"],
            outputs=["validation report", "error list"],
            estimated_tokens=3000,
            dependencies=[s.id for s in steps],
            risk_level=RiskLevel.LOW,
            validation=ValidationCriteria(type=ValidationType.SYNTAX, error_tolerance=0),
        ))
        return steps

    def _task_specific_steps(self, description: str) -> list[Step]:
        steps: list[Step] = []

        if _mentions(description, "refactor"):
            steps.append(Step(
                id="edit-refactor-1",
                type=StepType.EDIT,
                description="Apply refactoring patterns to identified code",
                purpose="Transform code to new pattern while preserving behavior",
                inputs=["source structure", "refactoring rules"],
                outputs=["refactored code", "change summary"],
                estimated_tokens=10000,
                dependencies=["analyze-1"],
                can_parallelize=True,
                risk_level=RiskLevel.MEDIUM,
            ))
            steps.append(Step(
                id="review-refactor-1",
                type=StepType.REVIEW,
                description="Review refactored code for correctness",
                purpose="Ensure refactoring preserves original behavior",
                inputs=["original code", "refactored code"],
                outputs=["review notes", "approval status"],
                estimated_tokens=5000,
                dependencies=["edit-refactor-1"],
                risk_level=RiskLevel.LOW,
            ))

        if _mentions(description, "implement") or _mentions(description, "add"):
            steps.append(Step(
                id="edit-implement-1",
                type=StepType.EDIT,
                description="Implement new functionality",
                purpose="Add requested feature or component",
                inputs=["requirements", "integration points"],
                outputs=["new code", "updated files"],
                estimated_tokens=15000,
                dependencies=["analyze-1"],
                risk_level=RiskLevel.MEDIUM,
            ))

        if _mentions(description, "optimiz"):
            steps.append(Step(
                id="analyze-performance-1",
                type=StepType.ANALYZE,
                description="Profile and identify performance bottlenecks",
                purpose="Find areas that need optimization",
                inputs=["code", "performance metrics"],
                outputs=["bottleneck list", "optimization opportunities"],
                estimated_tokens=8000,
                dependencies=["analyze-1"],
                risk_level=RiskLevel.LOW,
            ))
            steps.append(Step(
                id="edit-optimize-1",
                type=StepType.EDIT,
                description="Apply optimization techniques",
                purpose="Improve performance in identified areas",
                inputs=["bottleneck analysis", "optimization patterns"],
                outputs=["optimized code", "performance comparison"],
                estimated_tokens=12000,
                dependencies=["analyze-performance-1"],
                can_parallelize=True,
                risk_level=RiskLevel.HIGH,
            ))

        return steps
