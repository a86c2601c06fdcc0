"""Collaborators the step executor hands work to.

The executor never touches files or the terminal itself. Proposed file
changes go to a ``ChangeApplier``, which owns approval and persistence;
progress goes to a ``ProgressReporter``; cancellation comes from a
``CancellationToken`` the caller can raise at any time.
"""

from __future__ import annotations

import difflib
import logging
from collections.abc import Callable, Sequence
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable

from codeplan.exceptions import CancellationError
from codeplan.planning.models import ChangeType, FileChange

logger = logging.getLogger("codeplan.agent")


class ApprovalDecision(str, Enum):
    """Outcome of presenting a batch of changes for approval."""

    APPROVED = "approved"  # every change approved
    PARTIAL = "partial"  # some changes approved
    REJECTED = "rejected"  # nothing approved


@runtime_checkable
class ChangeApplier(Protocol):
    async def propose_changes(self, changes: list[FileChange]) -> ApprovalDecision:
        """Present changes, setting ``approved`` on each one."""
        ...

    async def apply_approved_changes(self, changes: list[FileChange]) -> list[str]:
        """Persist the approved changes. Returns the paths written."""
        ...


@runtime_checkable
class ProgressReporter(Protocol):
    def report(self, percent: int, message: str) -> None: ...


class NullProgress:
    def report(self, percent: int, message: str) -> None:
        logger.debug("[%3d%%] %s", percent, message)


class MonotonicProgress:
    """Wraps a reporter so reported percentages never go backwards."""

    def __init__(self, sink: ProgressReporter | None = None) -> None:
        self.sink = sink or NullProgress()
        self.percent = 0

    def report(self, percent: int, message: str) -> None:
        self.percent = min(100, max(self.percent, int(percent)))
        self.sink.report(self.percent, message)


class CancellationToken:
    """A cooperative cancellation flag, polled between operations."""

    def __init__(self) -> None:
        self._cancelled = False
        self.reason = "Task cancelled"

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "Task cancelled") -> None:
        self._cancelled = True
        self.reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancellationError(self.reason)


def unified_diff(path: str, old: str, new: str, context: int = 3) -> str:
    return "".join(difflib.unified_diff(
        old.splitlines(keepends=True),
        new.splitlines(keepends=True),
        fromfile=f"a/{path}",
        tofile=f"b/{path}",
        n=context,
    ))


class FileChangeApplier:
    """Writes approved changes under a project root.

    Args:
        root: Project root; change paths are relative to it.
        confirm: Called once per change, with its diff filled in, and
            returns whether to apply it. None approves everything.
    """

    def __init__(
        self,
        root: Path,
        confirm: Callable[[FileChange], bool] | None = None,
    ) -> None:
        self.root = root.resolve()
        self.confirm = confirm

    def diff_for(self, change: FileChange) -> str:
        current = self._read(change.path)
        if change.change_type == ChangeType.DELETE:
            return unified_diff(change.path, current, "")
        return unified_diff(change.path, current, change.content or "")

    async def propose_changes(self, changes: list[FileChange]) -> ApprovalDecision:
        for change in changes:
            if not change.diff:
                change.diff = self.diff_for(change)
            change.approved = self.confirm(change) if self.confirm else True

        approved = sum(1 for c in changes if c.approved)
        if changes and approved == len(changes):
            return ApprovalDecision.APPROVED
        if approved:
            return ApprovalDecision.PARTIAL
        return ApprovalDecision.REJECTED

    async def apply_approved_changes(self, changes: Sequence[FileChange]) -> list[str]:
        written: list[str] = []
        for change in changes:
            if not change.approved:
                continue
            target = self._resolve(change.path)
            if change.change_type == ChangeType.DELETE:
                if target.exists():
                    target.unlink()
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(change.content or "", encoding="utf-8")
            logger.info("Applied %s to %s", change.change_type.value, change.path)
            written.append(change.path)
        return written

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root):
            raise ValueError(f"Refusing to write outside the project root: {path}")
        return target

    def _read(self, path: str) -> str:
        target = self._resolve(path)
        if not target.exists():
            return ""
        return target.read_text(encoding="utf-8", errors="replace")
