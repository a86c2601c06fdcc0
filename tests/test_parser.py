"""Tests for strict parsing of reasoning-service replies."""

from __future__ import annotations

import pytest

from codeplan.planning.models import Complexity, StepType
from codeplan.planning.parser import (
    ParseError,
    ParseOk,
    extract_json,
    parse_model,
    parse_plan_draft,
    parse_task_analysis,
)
from codeplan.planning.results import AnalyzeResult, EditResult, ValidateResult


class TestExtractJson:
    def test_fenced_block(self):
        text = 'Sure!\n```json\n{"a": 1}\n```\nDone.'
        assert extract_json(text) == '{"a": 1}'

    def test_bare_fence(self):
        assert extract_json('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_object_inside_prose(self):
        assert extract_json('The answer is {"a": {"b": 2}} as requested') == '{"a": {"b": 2}}'

    def test_plain_text(self):
        assert extract_json("  nothing here  ") == "nothing here"


class TestParseTaskAnalysis:
    def test_valid(self):
        result = parse_task_analysis(
            '{"summary": "Convert callbacks", "complexity": "complex", '
            '"capabilities": ["async-patterns"]}'
        )
        assert isinstance(result, ParseOk)
        assert result.ok
        assert result.value.complexity == Complexity.COMPLEX
        assert result.value.capabilities == ["async-patterns"]

    @pytest.mark.parametrize("text,reason", [
        ("", "empty response"),
        ("   ", "empty response"),
        ("{not json", "invalid JSON"),
        ("[1, 2, 3]", "expected a JSON object"),
        ('{"complexity": "impossible"}', "schema mismatch"),
    ])
    def test_malformed(self, text: str, reason: str):
        result = parse_task_analysis(text)
        assert isinstance(result, ParseError)
        assert not result.ok
        assert result.message.startswith(reason)
        assert result.raw == text

    def test_schema_error_names_field(self):
        result = parse_task_analysis('{"complexity": "impossible"}')
        assert "complexity" in result.message


class TestParsePlanDraft:
    def test_ids_filled_in(self):
        result = parse_plan_draft(
            '{"summary": "s", "steps": ['
            '{"type": "analyze", "description": "look"},'
            '{"type": "edit", "description": "change"}]}'
        )
        assert isinstance(result, ParseOk)
        assert [s.id for s in result.value.steps] == ["analyze-1", "edit-2"]
        assert result.value.steps[1].type == StepType.EDIT

    def test_duplicate_ids_rejected(self):
        result = parse_plan_draft(
            '{"summary": "s", "steps": ['
            '{"id": "x", "type": "analyze", "description": "a"},'
            '{"id": "x", "type": "edit", "description": "b"}]}'
        )
        assert isinstance(result, ParseError)
        assert result.message == "duplicate step ids"

    def test_empty_steps_rejected(self):
        result = parse_plan_draft('{"summary": "s", "steps": []}')
        assert isinstance(result, ParseError)

    def test_unknown_step_type_rejected(self):
        result = parse_plan_draft(
            '{"summary": "s", "steps": [{"type": "deploy", "description": "ship it"}]}'
        )
        assert isinstance(result, ParseError)


class TestStepResults:
    def test_typed_result(self):
        result = parse_model('{"summary": "ok", "valid": false, "issues": ["x"]}', ValidateResult)
        assert isinstance(result, ParseOk)
        assert result.value.type == "validate"
        assert result.value.valid is False

    def test_defaults(self):
        result = parse_model('{"summary": "looked"}', AnalyzeResult)
        assert result.value.target_files == []

    def test_wrong_discriminator_rejected(self):
        result = parse_model('{"type": "analyze", "summary": "x"}', EditResult)
        assert isinstance(result, ParseError)
