"""Task records owned by the step executor."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from codeplan.planning.models import FileChange, Step


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_task_id() -> str:
    return f"task-{uuid.uuid4().hex[:12]}"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Task(BaseModel):
    """One executed task: a description plus its planned steps.

    The description is fixed at creation. Steps keep their results after a
    failure so completed work stays inspectable.
    """

    id: str = Field(default_factory=new_task_id)
    description: str = Field(frozen=True)
    status: TaskStatus = TaskStatus.PENDING
    summary: str = ""
    steps: list[Step] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def is_finished(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    @property
    def changes(self) -> list[FileChange]:
        return [c for s in self.steps for c in s.changes]

    def get_step(self, step_id: str) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None
