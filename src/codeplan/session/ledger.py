"""Session ledger: task records, usage log, reports and cost accounting.

One ledger instance is created per process and passed to whoever needs it.
Usage records are attributed to tasks by time window: a record belongs to
the task whose [start, end) interval contains its timestamp. That join is
only sound while at most one task is active per session.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import string
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from codeplan.agent.models import Task, TaskStatus, utcnow
from codeplan.config import ModelRate, default_pricing
from codeplan.session.models import (
    ModelUsage,
    Report,
    ReportType,
    SessionData,
    SessionEvent,
    SessionEventType,
    SessionSettings,
    SessionSummary,
    TaskCounts,
    TaskRecord,
    TokenUsage,
    UsageRecord,
    UsageTotals,
)
from codeplan.session.pricing import calculate_cost, lookup_rate
from codeplan.session.store import SessionStore

logger = logging.getLogger("codeplan.session")

Clock = Callable[[], datetime]
EventListener = Callable[[SessionEvent], None]

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_session_id(now: datetime) -> str:
    """``session-<ISO timestamp, ':' and '.' replaced by '-'>-<6 base36 chars>``."""
    stamp = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
    suffix = "".join(random.choices(_ID_ALPHABET, k=6))
    return f"session-{stamp.replace(':', '-').replace('.', '-')}-{suffix}"


def format_duration(seconds: float) -> str:
    """Human duration like ``1h 2m 3s``."""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def attribute_usage(record: TaskRecord, usage: list[UsageRecord]) -> TokenUsage:
    """Sum usage whose timestamp falls in the task's [start, end) window."""
    totals = TokenUsage()
    if record.end_time is None:
        return totals
    for u in usage:
        if record.start_time <= u.timestamp < record.end_time:
            totals.total += u.total_tokens
            totals.by_purpose[u.purpose] = totals.by_purpose.get(u.purpose, 0) + u.total_tokens
            totals.by_model[u.model_key] = totals.by_model.get(u.model_key, 0) + u.total_tokens
    return totals


def modified_files(task: Task) -> list[str]:
    """Paths of approved changes across the task's steps, first-seen order."""
    return list(dict.fromkeys(c.path for c in task.changes if c.approved))


class SessionLedger:
    """Append-only record of one working session.

    Usage:
        ledger = SessionLedger(store=SessionStore(sessions_dir))
        ledger.add_task(task)
        ledger.record_usage(model="claude-sonnet-4-5", mode="thinking",
                            purpose="analyze", prompt_tokens=1200, completion_tokens=300)
        ledger.complete_task(task.id)
        print(ledger.export_session("markdown"))
    """

    def __init__(
        self,
        store: SessionStore | None = None,
        settings: SessionSettings | None = None,
        pricing: Mapping[str, ModelRate] | None = None,
        clock: Clock = utcnow,
        autosave_interval: float = 30.0,
        on_event: EventListener | None = None,
        session: SessionData | None = None,
    ) -> None:
        self.store = store
        self.pricing = dict(pricing) if pricing is not None else default_pricing()
        self.clock = clock
        self.autosave_interval = autosave_interval
        self.on_event = on_event
        self._settings = settings or SessionSettings()
        self._autosave_task: asyncio.Task | None = None
        self.session = session or self._create_session()

    @property
    def session_id(self) -> str:
        return self.session.id

    # -------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------

    def add_task(self, task: Task) -> TaskRecord:
        record = TaskRecord(task=task, start_time=self.clock())
        record.files_modified = modified_files(task)
        self.session.tasks.append(record)
        self._emit(SessionEventType.TASK_ADDED, record)
        self.save()
        return record

    def get_task(self, task_id: str) -> TaskRecord | None:
        for record in self.session.tasks:
            if record.task.id == task_id:
                return record
        return None

    def update_task(
        self,
        task_id: str,
        task: Task | None = None,
        errors: list[str] | None = None,
    ) -> TaskRecord | None:
        """Refresh a task record. Files modified are re-derived from step changes."""
        record = self.get_task(task_id)
        if record is None:
            logger.warning("update_task: unknown task %s", task_id)
            return None

        if task is not None:
            record.task = task
        if errors is not None:
            record.errors = list(errors)
        record.files_modified = modified_files(record.task)

        self._emit(SessionEventType.TASK_UPDATED, record)
        self.save()
        return record

    def complete_task(self, task_id: str) -> TaskRecord | None:
        """Close the task's window and aggregate the usage that falls inside it."""
        record = self.get_task(task_id)
        if record is None:
            logger.warning("complete_task: unknown task %s", task_id)
            return None

        record.end_time = self.clock()
        record.token_usage = attribute_usage(record, self.session.usage)
        record.files_modified = modified_files(record.task)
        if record.task.error and record.task.error not in record.errors:
            record.errors.append(record.task.error)

        self._emit(SessionEventType.TASK_COMPLETED, record)
        self.save()
        return record

    # -------------------------------------------------------------------
    # Usage and reports
    # -------------------------------------------------------------------

    def add_usage(self, record: UsageRecord) -> UsageRecord:
        """Append a usage record, pricing it from the configured rates."""
        rate = lookup_rate(self.pricing, record.model)
        priced = record.model_copy(
            update={"cost": calculate_cost(record.prompt_tokens, record.completion_tokens, rate)}
        )
        self.session.usage.append(priced)
        self._emit(SessionEventType.USAGE_ADDED, priced)
        return priced

    def record_usage(
        self,
        *,
        model: str,
        mode: str,
        purpose: str,
        prompt_tokens: int,
        completion_tokens: int,
        succeeded: bool = True,
        error: str | None = None,
    ) -> UsageRecord:
        return self.add_usage(UsageRecord(
            timestamp=self.clock(),
            model=model,
            mode=mode,
            purpose=purpose,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            succeeded=succeeded,
            error=error,
        ))

    def add_report(self, report_type: ReportType | str, data: dict[str, Any]) -> Report:
        report = Report(timestamp=self.clock(), type=ReportType(report_type), data=data)
        self.session.reports.append(report)
        self._emit(SessionEventType.REPORT_ADDED, report)
        return report

    # -------------------------------------------------------------------
    # Summary and export
    # -------------------------------------------------------------------

    def get_session_summary(self) -> SessionSummary:
        tasks = self.session.tasks
        completed = sum(1 for t in tasks if t.task.status == TaskStatus.COMPLETED)
        failed = sum(1 for t in tasks if t.task.status == TaskStatus.FAILED)

        usage = UsageTotals()
        for u in self.session.usage:
            usage.prompt_tokens += u.prompt_tokens
            usage.completion_tokens += u.completion_tokens
            usage.cost += u.cost
            group = usage.by_model.setdefault(u.model_key, ModelUsage())
            group.prompt_tokens += u.prompt_tokens
            group.completion_tokens += u.completion_tokens
            group.cost += u.cost
            group.calls += 1
        usage.total_tokens = usage.prompt_tokens + usage.completion_tokens

        files: dict[str, None] = {}
        for record in tasks:
            files.update(dict.fromkeys(record.files_modified))

        end = self.session.end_time or self.clock()
        return SessionSummary(
            session_id=self.session.id,
            start_time=self.session.start_time,
            end_time=self.session.end_time,
            duration=int((end - self.session.start_time).total_seconds()),
            tasks=TaskCounts(
                total=len(tasks),
                completed=completed,
                failed=failed,
                in_progress=len(tasks) - completed - failed,
            ),
            usage=usage,
            files_modified=list(files),
            settings=self.session.settings,
        )

    def export_session(self, fmt: str = "json") -> str:
        summary = self.get_session_summary()
        if fmt == "json":
            payload = {
                "session": self.session.model_dump(mode="json"),
                "summary": summary.model_dump(mode="json"),
            }
            return json.dumps(payload, indent=2)
        if fmt == "markdown":
            return self._markdown_report(summary)
        raise ValueError(f"Unknown export format: {fmt}")

    def _markdown_report(self, summary: SessionSummary) -> str:
        lines = [
            "# Session Report",
            "",
            f"**Session ID:** {summary.session_id}",
            f"**Start Time:** {summary.start_time.isoformat()}",
        ]
        if summary.end_time:
            lines.append(f"**End Time:** {summary.end_time.isoformat()}")
        lines += [
            f"**Duration:** {format_duration(summary.duration)}",
            "",
            "## Summary",
            "",
            "### Tasks",
            f"- Total: {summary.tasks.total}",
            f"- Completed: {summary.tasks.completed}",
            f"- Failed: {summary.tasks.failed}",
            f"- In Progress: {summary.tasks.in_progress}",
            "",
            "### Token Usage",
            f"- Total Tokens: {summary.usage.total_tokens:,}",
            f"- Prompt Tokens: {summary.usage.prompt_tokens:,}",
            f"- Completion Tokens: {summary.usage.completion_tokens:,}",
            f"- Total Cost: ${summary.usage.cost:.4f}",
            "",
            "### Files Modified",
            f"Total: {len(summary.files_modified)} files",
            "",
        ]
        if summary.files_modified:
            lines += [f"- {f}" for f in summary.files_modified]
            lines.append("")

        lines += ["## Task Details", ""]
        for record in self.session.tasks:
            task = record.task
            lines += [
                f"### {task.description}",
                f"- Status: {task.status.value}",
                f"- Duration: {format_duration(record.duration_seconds)}",
                f"- Tokens Used: {record.token_usage.total:,}",
                f"- Files Modified: {len(record.files_modified)}",
                "",
            ]
            if task.steps:
                lines.append("#### Steps:")
                lines += [f"- [{s.status.value}] {s.description}" for s in task.steps]
                lines.append("")
            if record.errors:
                lines.append("#### Errors:")
                lines += [f"- {e}" for e in record.errors]
                lines.append("")

        return "\n".join(lines)

    # -------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------

    def save(self) -> bool:
        """Snapshot the session to the store.

        Failures are logged and swallowed; a running task never aborts
        because the ledger could not be written.
        """
        if self.store is None:
            return False
        try:
            self.store.save(self.session.model_copy(deep=True))
        except (OSError, ValueError, TypeError) as e:
            logger.error("Failed to save session %s: %s", self.session.id, e)
            return False
        return True

    @classmethod
    def load(cls, store: SessionStore, session_id: str, **kwargs: Any) -> SessionLedger | None:
        """Reopen a stored session, recomputing derived task summaries."""
        data = store.load(session_id)
        if data is None:
            return None
        for record in data.tasks:
            record.token_usage = attribute_usage(record, data.usage)
            record.files_modified = modified_files(record.task)
        return cls(store=store, session=data, settings=data.settings, **kwargs)

    def end_session(self) -> None:
        self.session.end_time = self.clock()
        self.save()
        self.stop_autosave()
        self._emit(SessionEventType.SESSION_ENDED, self.session.id)

    def start_new_session(self) -> SessionData:
        if self.session.end_time is None:
            self.end_session()
        self.session = self._create_session()
        self._emit(SessionEventType.SESSION_STARTED, self.session.id)
        return self.session

    def start_autosave(self) -> None:
        """Snapshot every ``autosave_interval`` seconds. Needs a running event loop."""
        if self._autosave_task is not None and not self._autosave_task.done():
            return
        self._autosave_task = asyncio.get_running_loop().create_task(self._autosave_loop())

    def stop_autosave(self) -> None:
        if self._autosave_task is not None:
            self._autosave_task.cancel()
            self._autosave_task = None

    async def _autosave_loop(self) -> None:
        while True:
            await asyncio.sleep(self.autosave_interval)
            self.save()

    # -------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------

    def _create_session(self) -> SessionData:
        now = self.clock()
        return SessionData(
            id=new_session_id(now),
            start_time=now,
            settings=self._settings.model_copy(),
        )

    def _emit(self, event_type: SessionEventType, data: Any) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(SessionEvent(type=event_type, data=data))
        except Exception:
            logger.exception("Session event listener failed on %s", event_type.value)
