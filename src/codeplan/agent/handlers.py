"""Step handlers, one per step type.

Each handler builds a prompt from the step and its packed context, calls the
reasoning service through ``StepRun.call`` and parses the reply into the
step's typed result. A reply that does not match the expected shape fails
the step.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pydantic import BaseModel, Field

from codeplan.agent.collaborators import ApprovalDecision, ChangeApplier
from codeplan.agent.models import Task
from codeplan.agent.prompts import get_step_prompt
from codeplan.context.models import ContextWindow
from codeplan.exceptions import ExternalServiceError
from codeplan.planning.models import ChangeType, FileChange, Step, StepStatus, StepType
from codeplan.planning.parser import ParseError, parse_model
from codeplan.planning.results import (
    AnalyzeResult,
    EditResult,
    ReviewResult,
    TestResult,
    ValidateResult,
)

logger = logging.getLogger("codeplan.agent")

ServiceCall = Callable[[str, str], Awaitable[str]]


@dataclass
class StepRun:
    """Everything a handler needs to run one step."""

    task: Task
    step: Step
    window: ContextWindow
    call: ServiceCall  # (prompt, purpose) -> reply text
    applier: ChangeApplier | None = None

    def prompt(self) -> str:
        return get_step_prompt(self.step, self.task.description, self.window.render(), self.history())

    def history(self) -> str:
        lines = []
        for step in self.task.steps:
            if step.id == self.step.id:
                break
            if step.status == StepStatus.COMPLETED and step.result is not None:
                lines.append(f"- [{step.id}] {step.result.summary}")
        return "\n".join(lines)


class ProposedChange(BaseModel):
    path: str
    change_type: ChangeType = ChangeType.MODIFY
    content: str | None = None


class EditProposal(BaseModel):
    summary: str = ""
    changes: list[ProposedChange] = Field(default_factory=list)


def _parse(text: str, model: type[BaseModel], step: Step) -> BaseModel:
    result = parse_model(text, model)
    if isinstance(result, ParseError):
        raise ExternalServiceError(f"Malformed {step.type.value} response for {step.id}: {result.message}")
    return result.value


async def handle_analyze(run: StepRun) -> AnalyzeResult:
    text = await run.call(run.prompt(), StepType.ANALYZE.value)
    return _parse(text, AnalyzeResult, run.step)


async def handle_edit(run: StepRun) -> EditResult:
    text = await run.call(run.prompt(), StepType.EDIT.value)
    proposal = _parse(text, EditProposal, run.step)

    changes = [
        FileChange(path=c.path, change_type=c.change_type, content=c.content)
        for c in proposal.changes
    ]
    run.step.changes = changes
    result = EditResult(summary=proposal.summary, files_proposed=[c.path for c in changes])
    if not changes:
        return result

    if run.applier is None:
        logger.info("No change applier configured; %d changes left as proposals", len(changes))
        return result

    decision = await run.applier.propose_changes(changes)
    result.approved = decision == ApprovalDecision.APPROVED
    if decision != ApprovalDecision.REJECTED:
        result.files_applied = await run.applier.apply_approved_changes(changes)
    return result


async def handle_test(run: StepRun) -> TestResult:
    text = await run.call(run.prompt(), StepType.TEST.value)
    result = _parse(text, TestResult, run.step)
    if result.command is None and run.step.validation is not None:
        result.command = run.step.validation.command
    return result


async def handle_validate(run: StepRun) -> ValidateResult:
    text = await run.call(run.prompt(), StepType.VALIDATE.value)
    result = _parse(text, ValidateResult, run.step)
    if not result.valid:
        logger.warning("Validation step %s reported %d issues", run.step.id, len(result.issues))
    return result


async def handle_review(run: StepRun) -> ReviewResult:
    text = await run.call(run.prompt(), StepType.REVIEW.value)
    return _parse(text, ReviewResult, run.step)


HANDLERS: dict[StepType, Callable[[StepRun], Awaitable[BaseModel]]] = {
    StepType.ANALYZE: handle_analyze,
    StepType.EDIT: handle_edit,
    StepType.TEST: handle_test,
    StepType.VALIDATE: handle_validate,
    StepType.REVIEW: handle_review,
}
