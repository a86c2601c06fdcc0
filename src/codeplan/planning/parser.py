"""Strict parsing of JSON returned by the reasoning service.

Parsers never raise on malformed input. They return ``ParseOk`` wrapping the
validated model, or ``ParseError`` carrying the reason and the raw text, and
the caller decides what to do next.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Generic, Literal, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError

from codeplan.planning.models import Complexity, StepType, TaskAnalysis

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class ParseOk(Generic[T]):
    value: T
    ok: Literal[True] = True


@dataclass(frozen=True)
class ParseError:
    message: str
    raw: str = ""
    ok: Literal[False] = False


ParseResult = Union[ParseOk[T], ParseError]


class DraftStep(BaseModel):
    """A step as proposed by the reasoning service."""

    id: str = ""
    type: StepType
    description: str
    files: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    can_parallelize: bool = False
    estimated_tokens: int = 0


class PlanDraft(BaseModel):
    """A plan as proposed by the reasoning service, before graph checks."""

    summary: str
    complexity: Complexity = Complexity.MODERATE
    estimated_files: list[str] = Field(default_factory=list)
    steps: list[DraftStep] = Field(min_length=1)


def extract_json(text: str) -> str:
    """Pull the JSON object out of a response that may wrap it in prose or fences."""
    fenced = _FENCE_RE.search(text)
    if fenced:
        return fenced.group(1).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text.strip()


def parse_model(text: str, model: type[T]) -> ParseResult[T]:
    """Validate `text` as JSON for `model`."""
    if not text or not text.strip():
        return ParseError("empty response", text)

    try:
        data = json.loads(extract_json(text))
    except json.JSONDecodeError as e:
        return ParseError(f"invalid JSON: {e.msg} at position {e.pos}", text)

    if not isinstance(data, dict):
        return ParseError(f"expected a JSON object, got {type(data).__name__}", text)

    try:
        return ParseOk(model.model_validate(data))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        return ParseError(f"schema mismatch: {problems}", text)


def parse_task_analysis(text: str) -> ParseResult[TaskAnalysis]:
    return parse_model(text, TaskAnalysis)


def parse_plan_draft(text: str) -> ParseResult[PlanDraft]:
    result = parse_model(text, PlanDraft)
    if isinstance(result, ParseError):
        return result

    draft = result.value
    for i, step in enumerate(draft.steps, start=1):
        if not step.id:
            step.id = f"{step.type.value}-{i}"
    ids = [s.id for s in draft.steps]
    if len(set(ids)) != len(ids):
        return ParseError("duplicate step ids", text)
    return ParseOk(draft)
