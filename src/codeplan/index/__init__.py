"""Read-only access to the pre-computed codebase index."""

from codeplan.index.provider import CodebaseIndex, JsonCodebaseIndex

__all__ = ["CodebaseIndex", "JsonCodebaseIndex"]
