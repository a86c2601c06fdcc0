"""Typed step results, one per step type.

``StepResult`` is a closed union discriminated on ``type``, so a stored
result always round-trips back to the right class.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class AnalyzeResult(BaseModel):
    type: Literal["analyze"] = "analyze"
    summary: str = ""
    target_files: list[str] = Field(default_factory=list)
    findings: list[str] = Field(default_factory=list)


class EditResult(BaseModel):
    type: Literal["edit"] = "edit"
    summary: str = ""
    files_proposed: list[str] = Field(default_factory=list)
    files_applied: list[str] = Field(default_factory=list)
    approved: bool = False


class TestResult(BaseModel):
    __test__ = False  # keep pytest from collecting this class

    type: Literal["test"] = "test"
    summary: str = ""
    command: str | None = None
    suggested_tests: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)


class ValidateResult(BaseModel):
    type: Literal["validate"] = "validate"
    summary: str = ""
    valid: bool = True
    issues: list[str] = Field(default_factory=list)


class ReviewResult(BaseModel):
    type: Literal["review"] = "review"
    summary: str = ""
    approved: bool = True
    notes: list[str] = Field(default_factory=list)


StepResult = Annotated[
    Union[AnalyzeResult, EditResult, TestResult, ValidateResult, ReviewResult],
    Field(discriminator="type"),
]
