"""Data models for the session ledger and its persisted document."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from codeplan.agent.models import Task


class UsageRecord(BaseModel):
    """One call to the reasoning or embedding service. Append-only."""

    timestamp: datetime
    model: str
    mode: str = ""
    purpose: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0
    succeeded: bool = True
    error: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @property
    def model_key(self) -> str:
        return f"{self.model}-{self.mode}"


class TokenUsage(BaseModel):
    """Token totals attributed to one task."""

    total: int = 0
    by_purpose: dict[str, int] = Field(default_factory=dict)
    by_model: dict[str, int] = Field(default_factory=dict)


class TaskRecord(BaseModel):
    """A task as tracked by the ledger.

    ``token_usage`` and ``files_modified`` are derived: they are recomputed
    from the usage log and the task's steps whenever a session is loaded.
    """

    task: Task
    start_time: datetime
    end_time: datetime | None = None
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    files_modified: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


class ReportType(str, Enum):
    TASK = "task"
    SESSION = "session"
    ERROR = "error"
    PERFORMANCE = "performance"


class Report(BaseModel):
    timestamp: datetime
    type: ReportType
    data: dict[str, Any] = Field(default_factory=dict)


class SessionSettings(BaseModel):
    model: str = ""
    mode: str = ""
    max_tokens: int = 0
    preprocessor_model: str = ""


class SessionData(BaseModel):
    """The persisted session document."""

    id: str
    start_time: datetime
    end_time: datetime | None = None
    tasks: list[TaskRecord] = Field(default_factory=list)
    usage: list[UsageRecord] = Field(default_factory=list)
    reports: list[Report] = Field(default_factory=list)
    settings: SessionSettings = Field(default_factory=SessionSettings)


class ModelUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0
    calls: int = 0


class TaskCounts(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0
    in_progress: int = 0


class UsageTotals(BaseModel):
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0
    by_model: dict[str, ModelUsage] = Field(default_factory=dict)


class SessionSummary(BaseModel):
    session_id: str
    start_time: datetime
    end_time: datetime | None = None
    duration: int = 0  # seconds
    tasks: TaskCounts = Field(default_factory=TaskCounts)
    usage: UsageTotals = Field(default_factory=UsageTotals)
    files_modified: list[str] = Field(default_factory=list)
    settings: SessionSettings = Field(default_factory=SessionSettings)


class SessionInfo(BaseModel):
    """Listing entry for a stored session."""

    id: str
    start_time: datetime
    end_time: datetime | None = None
    task_count: int = 0


class SessionEventType(str, Enum):
    SESSION_STARTED = "session-started"
    SESSION_ENDED = "session-ended"
    TASK_ADDED = "task-added"
    TASK_UPDATED = "task-updated"
    TASK_COMPLETED = "task-completed"
    USAGE_ADDED = "usage-added"
    REPORT_ADDED = "report-added"


class SessionEvent(BaseModel):
    type: SessionEventType
    data: Any = None
