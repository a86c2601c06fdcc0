"""Tests for the session ledger, pricing and session storage."""

from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from codeplan.agent.models import Task, TaskStatus
from codeplan.config import ModelRate
from codeplan.planning.models import FileChange, Step, StepStatus, StepType
from codeplan.planning.results import ValidateResult
from codeplan.session.ledger import (
    SessionLedger,
    format_duration,
    new_session_id,
)
from codeplan.session.models import ReportType, SessionEventType, SessionSettings
from codeplan.session.pricing import calculate_cost, lookup_rate
from codeplan.session.store import SessionStore

PRICING = {
    "claude-sonnet-4": ModelRate(input_per_1m=3.0, output_per_1m=15.0),
    "claude-sonnet-4-5": ModelRate(input_per_1m=4.0, output_per_1m=20.0),
    "gpt-4o": ModelRate(input_per_1m=2.5, output_per_1m=10.0),
}


def _usage(ledger: SessionLedger, purpose: str = "analyze", prompt: int = 100,
           completion: int = 50, model: str = "gpt-4o") -> None:
    ledger.record_usage(
        model=model, mode="thinking", purpose=purpose,
        prompt_tokens=prompt, completion_tokens=completion,
    )


def _task_with_result() -> Task:
    step = Step(
        id="validate-1",
        type=StepType.VALIDATE,
        description="Check it",
        status=StepStatus.COMPLETED,
        result=ValidateResult(summary="fine", valid=True),
        changes=[
            FileChange(path="a.py", approved=True),
            FileChange(path="b.py", approved=False),
            FileChange(path="a.py", approved=True),
        ],
    )
    return Task(description="Tidy up", status=TaskStatus.COMPLETED, steps=[step])


class TestPricing:
    def test_cost_per_million(self):
        rate = ModelRate(input_per_1m=3.0, output_per_1m=15.0)
        assert calculate_cost(1_000_000, 0, rate) == pytest.approx(3.0)
        assert calculate_cost(1000, 2000, rate) == pytest.approx(0.003 + 0.03)

    def test_unknown_rate_costs_nothing(self):
        assert calculate_cost(1000, 1000, None) == 0.0

    def test_lookup_prefers_exact_then_longest_prefix(self):
        assert lookup_rate(PRICING, "gpt-4o") is PRICING["gpt-4o"]
        assert lookup_rate(PRICING, "claude-sonnet-4-5-20250929") is PRICING["claude-sonnet-4-5"]
        assert lookup_rate(PRICING, "claude-sonnet-4-20250514") is PRICING["claude-sonnet-4"]
        assert lookup_rate(PRICING, "llama-3") is None

    def test_lookup_wildcard(self):
        pricing = {**PRICING, "*": ModelRate(input_per_1m=1.0, output_per_1m=1.0)}
        assert lookup_rate(pricing, "llama-3") is pricing["*"]


class TestLedgerUsage:
    def test_usage_attributed_by_time_window(self, clock):
        ledger = SessionLedger(pricing=PRICING, clock=clock)
        _usage(ledger, purpose="planning")  # before the task starts

        task = Task(description="Do it")
        ledger.add_task(task)
        _usage(ledger, purpose="analyze", prompt=100, completion=50)
        _usage(ledger, purpose="edit", prompt=200, completion=100, model="claude-sonnet-4-5")
        ledger.complete_task(task.id)
        _usage(ledger, purpose="context")  # after it ends

        usage = ledger.get_task(task.id).token_usage
        assert usage.total == 450
        assert usage.by_purpose == {"analyze": 150, "edit": 300}
        assert usage.by_model == {"gpt-4o-thinking": 150, "claude-sonnet-4-5-thinking": 300}

    def test_usage_is_priced(self, clock):
        ledger = SessionLedger(pricing=PRICING, clock=clock)
        _usage(ledger, prompt=1_000_000, completion=0)
        _usage(ledger, prompt=10, completion=10, model="unknown-model")

        assert ledger.session.usage[0].cost == pytest.approx(2.5)
        assert ledger.session.usage[1].cost == 0.0

        summary = ledger.get_session_summary()
        assert summary.usage.cost == pytest.approx(2.5)
        assert summary.usage.total_tokens == 1_000_020
        assert summary.usage.by_model["gpt-4o-thinking"].calls == 1

    def test_failed_attempts_are_kept(self, clock):
        ledger = SessionLedger(clock=clock)
        ledger.record_usage(
            model="gpt-4o", mode="max", purpose="analyze",
            prompt_tokens=120, completion_tokens=0, succeeded=False, error="429",
        )
        record = ledger.session.usage[0]
        assert not record.succeeded
        assert record.error == "429"
        assert record.model_key == "gpt-4o-max"


class TestLedgerTasks:
    def test_files_modified_only_approved(self, clock):
        ledger = SessionLedger(clock=clock)
        task = _task_with_result()
        ledger.add_task(task)
        assert ledger.get_task(task.id).files_modified == ["a.py"]

    def test_update_unknown_task(self, clock):
        ledger = SessionLedger(clock=clock)
        assert ledger.update_task("task-missing") is None
        assert ledger.complete_task("task-missing") is None

    def test_update_task_errors(self, clock):
        ledger = SessionLedger(clock=clock)
        task = Task(description="x")
        ledger.add_task(task)
        ledger.update_task(task.id, errors=["first"])
        task.error = "second"
        ledger.complete_task(task.id)
        assert ledger.get_task(task.id).errors == ["first", "second"]

    def test_summary_counts(self, clock):
        ledger = SessionLedger(clock=clock)
        for status in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.RUNNING,
                       TaskStatus.PENDING):
            ledger.add_task(Task(description=status.value, status=status))

        counts = ledger.get_session_summary().tasks
        assert (counts.total, counts.completed, counts.failed, counts.in_progress) == (4, 1, 1, 2)

    def test_task_description_is_immutable(self):
        task = Task(description="original")
        with pytest.raises(Exception):
            task.description = "changed"

    def test_events_emitted(self, clock):
        events = []
        ledger = SessionLedger(clock=clock, on_event=events.append)
        task = Task(description="x")
        ledger.add_task(task)
        _usage(ledger)
        ledger.add_report(ReportType.PERFORMANCE, {"ms": 12})
        ledger.complete_task(task.id)
        ledger.end_session()

        assert [e.type for e in events] == [
            SessionEventType.TASK_ADDED,
            SessionEventType.USAGE_ADDED,
            SessionEventType.REPORT_ADDED,
            SessionEventType.TASK_COMPLETED,
            SessionEventType.SESSION_ENDED,
        ]

    def test_listener_failure_is_logged(self, clock, caplog: pytest.LogCaptureFixture):
        def listener(event) -> None:
            raise RuntimeError("listener crashed")

        ledger = SessionLedger(clock=clock, on_event=listener)
        task = Task(description="x")
        ledger.add_task(task)

        assert ledger.get_task(task.id) is not None
        assert "listener crashed" in caplog.text

    def test_start_new_session_ends_current(self, clock):
        ledger = SessionLedger(clock=clock)
        first = ledger.session
        second = ledger.start_new_session()
        assert first.end_time is not None
        assert second.id != first.id
        assert ledger.session is second


class TestExport:
    def test_json_export(self, clock):
        ledger = SessionLedger(clock=clock)
        ledger.add_task(_task_with_result())
        data = json.loads(ledger.export_session("json"))
        assert data["session"]["id"] == ledger.session_id
        assert data["summary"]["files_modified"] == ["a.py"]

    def test_markdown_export(self, clock):
        ledger = SessionLedger(pricing=PRICING, clock=clock)
        task = _task_with_result()
        ledger.add_task(task)
        _usage(ledger)
        ledger.complete_task(task.id)
        ledger.end_session()

        report = ledger.export_session("markdown")
        assert report.startswith("# Session Report")
        assert f"**Session ID:** {ledger.session_id}" in report
        assert "- Completed: 1" in report
        assert "- Total Tokens: 150" in report
        assert "### Tidy up" in report
        assert "- [completed] Check it" in report
        assert "- a.py" in report

    def test_unknown_format(self, clock):
        with pytest.raises(ValueError):
            SessionLedger(clock=clock).export_session("xml")

    @pytest.mark.parametrize("seconds,expected", [
        (0, "0s"),
        (59, "59s"),
        (60, "1m"),
        (3723, "1h 2m 3s"),
    ])
    def test_format_duration(self, seconds: int, expected: str):
        assert format_duration(seconds) == expected

    def test_session_id_format(self):
        now = datetime(2026, 3, 4, 5, 6, 7, 890000, tzinfo=timezone.utc)
        session_id = new_session_id(now)
        assert re.fullmatch(r"session-2026-03-04T05-06-07-890Z-[0-9a-z]{6}", session_id)


class TestPersistence:
    def test_save_and_load(self, tmp_path: Path, clock):
        store = SessionStore(tmp_path / "sessions")
        ledger = SessionLedger(
            store=store, clock=clock,
            settings=SessionSettings(model="gpt-4o", mode="thinking", max_tokens=4096),
        )
        task = _task_with_result()
        ledger.add_task(task)
        _usage(ledger)
        ledger.complete_task(task.id)

        loaded = SessionLedger.load(store, ledger.session_id)

        assert loaded is not None
        assert loaded.session_id == ledger.session_id
        assert loaded.session.settings.model == "gpt-4o"
        record = loaded.get_task(task.id)
        assert record.token_usage.total == 150
        assert record.files_modified == ["a.py"]
        assert isinstance(record.task.steps[0].result, ValidateResult)

    def test_derived_fields_recomputed_on_load(self, tmp_path: Path, clock):
        store = SessionStore(tmp_path)
        ledger = SessionLedger(store=store, clock=clock)
        task = _task_with_result()
        ledger.add_task(task)
        ledger.complete_task(task.id)

        path = store.path_for(ledger.session_id)
        data = json.loads(path.read_text())
        data["tasks"][0]["files_modified"] = ["stale.py"]
        path.write_text(json.dumps(data))

        loaded = SessionLedger.load(store, ledger.session_id)
        assert loaded.get_task(task.id).files_modified == ["a.py"]

    def test_save_is_atomic(self, tmp_path: Path, clock):
        store = SessionStore(tmp_path)
        ledger = SessionLedger(store=store, clock=clock)
        assert ledger.save()
        assert [p.name for p in tmp_path.iterdir()] == [f"{ledger.session_id}.json"]

    def test_save_failure_is_not_raised(self, tmp_path: Path, clock):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        ledger = SessionLedger(store=SessionStore(blocker), clock=clock)
        assert ledger.save() is False

    def test_unserializable_report_is_not_raised(self, tmp_path: Path, clock):
        ledger = SessionLedger(store=SessionStore(tmp_path), clock=clock)
        ledger.add_report(ReportType.TASK, {"handle": object()})
        assert ledger.save() is False
        assert list(tmp_path.iterdir()) == []

    def test_without_store(self, clock):
        assert SessionLedger(clock=clock).save() is False

    def test_load_missing(self, tmp_path: Path):
        assert SessionLedger.load(SessionStore(tmp_path), "session-nope") is None

    def test_list_newest_first_and_skips_bad_files(self, tmp_path: Path):
        store = SessionStore(tmp_path)
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        ids = []
        for offset in (0, 2, 1):
            ledger = SessionLedger(store=store, clock=lambda o=offset: base + timedelta(hours=o))
            ledger.save()
            ids.append(ledger.session_id)
        (tmp_path / "broken.json").write_text("{not json")

        listed = store.list()

        assert [s.id for s in listed] == [ids[1], ids[2], ids[0]]
        assert store.latest().id == ids[1]

    def test_list_missing_directory(self, tmp_path: Path):
        assert SessionStore(tmp_path / "absent").list() == []

    @pytest.mark.asyncio
    async def test_autosave(self, tmp_path: Path):
        store = SessionStore(tmp_path)
        ledger = SessionLedger(store=store, autosave_interval=0.01)
        ledger.start_autosave()
        await asyncio.sleep(0.05)
        ledger.stop_autosave()
        assert store.path_for(ledger.session_id).exists()
