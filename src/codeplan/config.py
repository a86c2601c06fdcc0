"""Configuration management for codeplan."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

CODEPLAN_DIR = ".codeplan"
CONFIG_FILE = "config.json"
INDEX_FILE = "index.json"
SESSIONS_DIR = "sessions"


class LLMConfig(BaseModel):
    """Reasoning service configuration."""

    provider: str = "anthropic"
    model: str = "claude-sonnet-4-5-20250929"
    mode: str = "thinking"  # "thinking" or "max"
    api_key_env: str = ""
    max_tokens: int = 4096
    base_url: str | None = None
    embedding_model: str = ""  # empty = lexical ranking only

    @property
    def api_key(self) -> str | None:
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        # Try common env vars
        env_map = {
            "openai": "OPENAI_API_KEY",
            "anthropic": "ANTHROPIC_API_KEY",
        }
        env_var = env_map.get(self.provider, "")
        return os.environ.get(env_var)

    @property
    def temperature(self) -> float:
        return 0.3 if self.mode == "thinking" else 0.7


class ExecutorConfig(BaseModel):
    """Step execution behavior."""

    rate_limit_backoff_seconds: float = 60.0
    max_rate_limit_retries: int = 3
    step_context_tokens: int = 8000
    require_approval: bool = True
    summarize_context: bool = False  # ask the service for a one-line window summary


class ContextConfig(BaseModel):
    """Context packing limits."""

    small_file_tokens: int = 2000
    chunk_lines: int = 50
    symbol_line_cap: int = 20
    symbol_keep_lines: int = 15
    max_search_results: int = 10


class PlanningConfig(BaseModel):
    """Plan construction and validation limits."""

    max_plan_tokens: int = 200_000
    available_capabilities: list[str] = Field(default_factory=list)  # empty = every known capability
    use_llm_analysis: bool = False
    fallback_to_heuristics: bool = True
    test_command: str = "pytest"
    check_tools: bool = True  # probe PATH for test runners and linters


class SessionConfig(BaseModel):
    """Session ledger persistence."""

    autosave_interval_seconds: float = 30.0
    preprocessor_model: str = ""


class ModelRate(BaseModel):
    """Per-model pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


def default_pricing() -> dict[str, ModelRate]:
    return {
        "claude-opus-4-20250514": ModelRate(input_per_1m=15.0, output_per_1m=75.0),
        "claude-sonnet-4-20250514": ModelRate(input_per_1m=3.0, output_per_1m=15.0),
        "claude-sonnet-4-5-20250929": ModelRate(input_per_1m=3.0, output_per_1m=15.0),
        "gpt-4o": ModelRate(input_per_1m=2.5, output_per_1m=10.0),
    }


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    root_path: str = "."
    llm: LLMConfig = Field(default_factory=LLMConfig)
    planning: PlanningConfig = Field(default_factory=PlanningConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    pricing: dict[str, ModelRate] = Field(default_factory=default_pricing)


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .codeplan directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / CODEPLAN_DIR).is_dir():
            return current
        current = current.parent
    if (current / CODEPLAN_DIR).is_dir():
        return current
    return None


def get_codeplan_dir(root: Path) -> Path:
    """Get the .codeplan directory for a project root."""
    return root / CODEPLAN_DIR


def get_sessions_dir(root: Path) -> Path:
    return get_codeplan_dir(root) / SESSIONS_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .codeplan/config.json."""
    config_path = get_codeplan_dir(root) / CONFIG_FILE
    if config_path.exists():
        data = json.loads(config_path.read_text())
        return ProjectConfig(**data)
    return ProjectConfig(name=root.name, root_path=str(root))


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .codeplan/config.json."""
    cp_dir = get_codeplan_dir(root)
    cp_dir.mkdir(parents=True, exist_ok=True)
    config_path = cp_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'llm.provider')."""
    parts = key.split(".")
    data = config.model_dump()
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    return ProjectConfig(**data)
