"""Tests for the JSON codebase index."""

from __future__ import annotations

from pathlib import Path

import pytest

from codeplan.exceptions import ConfigError
from codeplan.index.provider import CodebaseIndex, JsonCodebaseIndex


class TestJsonCodebaseIndex:
    def test_load(self, project_index: JsonCodebaseIndex):
        assert isinstance(project_index, CodebaseIndex)
        assert project_index.files() == ["src/auth.py", "src/db.py"]
        entry = project_index.get_file_index("src/auth.py")
        assert entry.language == "python"
        assert [s.name for s in entry.top_level_symbols] == ["hash_password", "login", "logout"]

    def test_missing_index_is_empty(self, tmp_path: Path):
        assert JsonCodebaseIndex.load(tmp_path).files() == []

    def test_invalid_index(self, tmp_path: Path):
        (tmp_path / ".codeplan").mkdir()
        (tmp_path / ".codeplan" / "index.json").write_text("{oops")
        with pytest.raises(ConfigError):
            JsonCodebaseIndex.load(tmp_path)

    def test_search(self, project_index: JsonCodebaseIndex):
        assert project_index.search("login") == ["src/auth.py"]
        assert project_index.search("user store") == ["src/db.py"]
        assert project_index.search("kubernetes") == []

    def test_candidate(self, project_index: JsonCodebaseIndex):
        candidate = project_index.candidate("src/db.py", relevance=0.5)
        assert candidate.relevance_score == 0.5
        assert candidate.index is not None
        assert "def find_user" in candidate.content

    def test_candidate_missing_file(self, project_index: JsonCodebaseIndex):
        assert project_index.candidate("src/nope.py") is None
