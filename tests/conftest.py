"""Shared test fixtures for codeplan."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from codeplan.context.models import FileIndex, SymbolInfo
from codeplan.exceptions import LLMError
from codeplan.index.provider import JsonCodebaseIndex
from codeplan.llm.base import EmbeddingProvider, LLMProvider, LLMResponse, Message


AUTH_SOURCE = '''import hashlib
from db import find_user


def hash_password(password):
    """Hash a password for storage."""
    return hashlib.sha256(password.encode()).hexdigest()


def login(username, password):
    """Check credentials and return the user."""
    user = find_user(username)
    if user is None:
        return None
    if user.password_hash != hash_password(password):
        return None
    return user


def logout(session):
    session.clear()
'''

DB_SOURCE = '''USERS = {}


def find_user(username):
    return USERS.get(username)


def save_user(user):
    USERS[user.username] = user
'''


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """A project directory with two source files and a symbol index."""
    src = tmp_path / "src"
    src.mkdir()
    (src / "auth.py").write_text(AUTH_SOURCE)
    (src / "db.py").write_text(DB_SOURCE)

    index = JsonCodebaseIndex(tmp_path, [
        FileIndex(
            path="src/auth.py",
            language="python",
            symbols=[
                SymbolInfo(name="hash_password", kind="function", line=4, end_line=6),
                SymbolInfo(name="login", kind="function", line=9, end_line=16),
                SymbolInfo(name="logout", kind="function", line=19, end_line=20),
            ],
            import_summary=["hashlib", "db.find_user"],
            chunk_boundaries=[0, 4, 9, 19],
            summary="Password hashing and login",
        ),
        FileIndex(
            path="src/db.py",
            language="python",
            symbols=[
                SymbolInfo(name="find_user", kind="function", line=3, references=["login"]),
                SymbolInfo(name="save_user", kind="function", line=7),
            ],
            chunk_boundaries=[0, 3, 7],
            summary="In-memory user store",
        ),
    ])
    index.save()
    return tmp_path


@pytest.fixture
def project_index(tmp_project: Path) -> JsonCodebaseIndex:
    return JsonCodebaseIndex.load(tmp_project)


class FakeLLM(LLMProvider):
    """Replays scripted replies. An exception in the script is raised instead."""

    def __init__(self, replies: list[str | Exception] | None = None, model: str = "fake-model"):
        super().__init__(model=model)
        self.replies = list(replies or [])
        self.calls: list[list[Message]] = []

    async def complete(
        self,
        messages: list[Message],
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        self.calls.append(messages)
        if not self.replies:
            raise LLMError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return LLMResponse(content=reply, finish_reason="stop")


class FakeEmbedder(EmbeddingProvider):
    """Embeds text as keyword counts over a fixed vocabulary."""

    def __init__(self, vocabulary: list[str], fail: bool = False):
        self.vocabulary = vocabulary
        self.fail = fail
        self.calls = 0

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.fail:
            raise LLMError("embedding service down")
        lowered = text.lower()
        return [float(lowered.count(word)) for word in self.vocabulary]


class TickingClock:
    """A clock that moves forward one second every time it is read."""

    def __init__(self, start: datetime | None = None, step: float = 1.0):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.step = timedelta(seconds=step)

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current


@pytest.fixture
def fake_llm():
    return FakeLLM


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def fake_embedder():
    return FakeEmbedder
