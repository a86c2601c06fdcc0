"""Persistent storage for session documents.

One human-readable JSON file per session under ``.codeplan/sessions``.
Writes go to a temporary file in the same directory and are moved into
place with ``os.replace``, so a reader never sees a half-written document.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import ValidationError

from codeplan.session.models import SessionData, SessionInfo

logger = logging.getLogger("codeplan.session")


class SessionStore:
    """Saves, loads and lists session documents in one directory."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, session_id: str) -> Path:
        return self.directory / f"{session_id}.json"

    def save(self, session: SessionData) -> Path:
        """Write `session` atomically. Raises OSError on failure."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(session.id)
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_text(session.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp_path, path)
        return path

    def load(self, session_id: str) -> SessionData | None:
        path = self.path_for(session_id)
        if not path.exists():
            return None
        try:
            return SessionData.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.error("Failed to load session %s: %s", session_id, e)
            return None

    def list(self) -> list[SessionInfo]:
        """All readable sessions, newest first."""
        if not self.directory.is_dir():
            return []

        sessions: list[SessionInfo] = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                data = SessionData.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as e:
                logger.error("Failed to read session %s: %s", path.name, e)
                continue
            sessions.append(SessionInfo(
                id=data.id,
                start_time=data.start_time,
                end_time=data.end_time,
                task_count=len(data.tasks),
            ))

        sessions.sort(key=lambda s: s.start_time, reverse=True)
        return sessions

    def latest(self) -> SessionData | None:
        sessions = self.list()
        return self.load(sessions[0].id) if sessions else None
