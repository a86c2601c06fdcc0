"""Codebase index providers.

Symbol extraction happens elsewhere; this module only reads the results,
stored as ``.codeplan/index.json``::

    {"files": [{"path": "src/auth.js", "language": "javascript",
                "symbols": [...], "import_summary": [...],
                "chunk_boundaries": [0, 12, 40]}]}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from codeplan.config import INDEX_FILE, get_codeplan_dir
from codeplan.context.models import Candidate, FileIndex
from codeplan.context.ranking import lexical_score, query_terms
from codeplan.exceptions import ConfigError

logger = logging.getLogger("codeplan.index")


@runtime_checkable
class CodebaseIndex(Protocol):
    """What the planner and context packer need from an index."""

    def get_file_index(self, path: str) -> FileIndex | None: ...

    def search(self, query: str, limit: int = 10) -> list[str]: ...

    def read_file(self, path: str) -> str | None: ...

    def files(self) -> list[str]: ...


class JsonCodebaseIndex:
    """Index backed by a JSON document of pre-computed ``FileIndex`` entries."""

    def __init__(self, root: Path, entries: list[FileIndex] | None = None) -> None:
        self.root = root
        self._entries: dict[str, FileIndex] = {e.path: e for e in entries or []}

    @classmethod
    def load(cls, root: Path) -> JsonCodebaseIndex:
        path = get_codeplan_dir(root) / INDEX_FILE
        if not path.exists():
            return cls(root)
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid index file {path}: {e}") from e
        return cls(root, [FileIndex(**f) for f in data.get("files", [])])

    def save(self) -> None:
        cp_dir = get_codeplan_dir(self.root)
        cp_dir.mkdir(parents=True, exist_ok=True)
        payload = {"files": [e.model_dump() for e in self._entries.values()]}
        (cp_dir / INDEX_FILE).write_text(json.dumps(payload, indent=2))

    def add(self, entry: FileIndex) -> None:
        self._entries[entry.path] = entry

    def files(self) -> list[str]:
        return sorted(self._entries)

    def get_file_index(self, path: str) -> FileIndex | None:
        return self._entries.get(path)

    def search(self, query: str, limit: int = 10) -> list[str]:
        """Rank indexed files by path, symbol and summary overlap with `query`."""
        terms = query_terms(query)
        scored: list[tuple[float, str]] = []
        for path in self.files():
            entry = self._entries[path]
            text = f"{path}\n{entry.summary}"
            score, _ = lexical_score(terms, text, [s.name for s in entry.symbols])
            if score > 0:
                scored.append((score, path))
        scored.sort(key=lambda x: -x[0])
        return [p for _, p in scored[:limit]]

    def read_file(self, path: str) -> str | None:
        full_path = self.root / path
        try:
            return full_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.error("Failed to read %s: %s", path, e)
            return None

    def candidate(self, path: str, relevance: float = 1.0) -> Candidate | None:
        """Build a packing candidate for an indexed or on-disk file."""
        content = self.read_file(path)
        if content is None:
            return None
        return Candidate(
            path=path,
            content=content,
            relevance_score=relevance,
            index=self.get_file_index(path),
        )
