"""Command-line interface for codeplan."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console as RichConsole
from rich.logging import RichHandler

from codeplan import __version__
from codeplan.config import (
    INDEX_FILE,
    ProjectConfig,
    find_project_root,
    get_codeplan_dir,
    get_sessions_dir,
    load_config,
    save_config,
    set_config_value,
)
from codeplan.exceptions import CircularDependencyError, CodeplanError, PlanValidationError
from codeplan.ui.console import Console

console = Console()

# Tools looked up on PATH when describing the workspace to the planner.
_KNOWN_TOOLS = ("pytest", "ruff", "mypy", "npm", "node", "make", "git")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=RichConsole(stderr=True), rich_tracebacks=verbose)],
        force=True,
    )


def _get_project_root(path: str | None = None) -> Path:
    """Find the project root or error."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No codeplan project found. Run 'codeplan init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


def _load_index(root: Path):
    from codeplan.index.provider import JsonCodebaseIndex

    try:
        return JsonCodebaseIndex.load(root)
    except CodeplanError as e:
        console.error(str(e))
        sys.exit(1)


def _codebase_summary(config: ProjectConfig, index):
    from codeplan.planning.models import CodebaseSummary

    languages = sorted({
        entry.language
        for entry in (index.get_file_index(p) for p in index.files())
        if entry is not None and entry.language
    })
    return CodebaseSummary(
        files=index.files(),
        languages=languages,
        installed_tools=(
            [t for t in _KNOWN_TOOLS if shutil.which(t)] if config.planning.check_tools else None
        ),
        test_command=config.planning.test_command,
    )


def _constraints(config: ProjectConfig, max_tokens: int | None = None):
    from codeplan.planning.builder import KNOWN_CAPABILITIES
    from codeplan.planning.models import PlanConstraints

    return PlanConstraints(
        max_tokens=max_tokens or config.planning.max_plan_tokens,
        available_capabilities=config.planning.available_capabilities or KNOWN_CAPABILITIES,
    )


def _make_packer(config: ProjectConfig, index):
    from codeplan.context.packer import ContextPacker
    from codeplan.context.ranking import RelevanceRanker
    from codeplan.llm.factory import create_embedder

    return ContextPacker(
        ranker=RelevanceRanker(embedder=create_embedder(config.llm)),
        config=config.context,
        index=index,
    )


@click.group()
@click.version_option(version=__version__, prog_name="codeplan")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def main(verbose: bool):
    """codeplan - plan, contextualize and execute coding tasks."""
    _setup_logging(verbose)


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--provider", default=None, help="LLM provider (openai, anthropic, local).")
@click.option("--model", default=None, help="LLM model name.")
def init(path: str | None, provider: str | None, model: str | None):
    """Initialize codeplan for a repository."""
    from codeplan.index.provider import JsonCodebaseIndex

    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    console.info(f"Initializing codeplan for: {root}")

    config = load_config(root)
    config.name = root.name
    config.root_path = str(root)
    if provider:
        config.llm.provider = provider
    if model:
        config.llm.model = model

    save_config(root, config)
    console.success("Configuration saved")

    if not (get_codeplan_dir(root) / INDEX_FILE).exists():
        JsonCodebaseIndex(root).save()
        console.success(f"Created empty symbol index at .codeplan/{INDEX_FILE}")
    get_sessions_dir(root).mkdir(parents=True, exist_ok=True)
    console.success("Project ready")


# =========================================================================
# Planning and context
# =========================================================================

@main.command()
@click.argument("task")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--max-tokens", type=int, default=None, help="Token budget for the whole plan.")
@click.option("--json", "as_json", is_flag=True, help="Print the plan as JSON.")
def plan(task: str, path: str | None, max_tokens: int | None, as_json: bool):
    """Build and validate a step plan for TASK without executing it."""
    from codeplan.planning.builder import PlanGraphBuilder

    root = _get_project_root(path)
    config = load_config(root)
    index = _load_index(root)

    builder = PlanGraphBuilder()
    try:
        task_plan = builder.create_plan(task, _codebase_summary(config, index))
    except CircularDependencyError as e:
        console.error(str(e))
        sys.exit(1)
    validation = builder.validate_plan(task_plan, _constraints(config, max_tokens))

    if as_json:
        click.echo(json.dumps({
            "plan": task_plan.model_dump(mode="json"),
            "validation": validation.model_dump(mode="json"),
        }, indent=2))
    else:
        console.show_plan(task_plan)
        console.show_validation(validation)

    if not validation.valid:
        sys.exit(1)


@main.command()
@click.argument("task")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--budget", "-b", type=int, default=8000, help="Token budget (default: 8000).")
@click.option("--file", "-f", "files", multiple=True, help="File to include (repeatable).")
@click.option("--full", is_flag=True, help="Print the packed file contents.")
def context(task: str, path: str | None, budget: int, files: tuple[str, ...], full: bool):
    """Pack the most relevant source context for TASK within a token budget."""
    root = _get_project_root(path)
    config = load_config(root)
    index = _load_index(root)
    packer = _make_packer(config, index)

    window = asyncio.run(packer.create_task_context(task, list(files), budget))
    if window.is_empty:
        console.warning(
            "No relevant files found. Add entries to .codeplan/index.json "
            "or pass files with --file."
        )
    console.show_context(window, full=full)


# =========================================================================
# Execution
# =========================================================================

@main.command()
@click.argument("task")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--auto", is_flag=True, help="Apply proposed changes without prompting.")
def run(task: str, path: str | None, auto: bool):
    """Plan TASK and execute it step by step with the configured LLM."""
    root = _get_project_root(path)
    config = load_config(root)

    llm_config = config.llm
    if not llm_config.api_key and llm_config.provider not in ("local",):
        provider = llm_config.provider
        env_var = {"openai": "OPENAI_API_KEY", "anthropic": "ANTHROPIC_API_KEY"}.get(
            provider, f"{provider.upper()}_API_KEY"
        )
        console.error(
            f"No API key found for {provider}. "
            f"Set the {env_var} environment variable or configure it with:\n"
            f"  codeplan config set llm.api_key_env {env_var}"
        )
        sys.exit(1)

    from codeplan.llm.factory import create_provider

    try:
        llm = create_provider(llm_config)
    except (CodeplanError, ValueError) as e:
        console.error(str(e))
        sys.exit(1)

    _run_task(root, config, llm, task, auto)


def _run_task(root: Path, config: ProjectConfig, llm, description: str, auto: bool):
    from codeplan.agent.collaborators import FileChangeApplier
    from codeplan.agent.executor import StepExecutor
    from codeplan.agent.models import TaskStatus
    from codeplan.session.ledger import SessionLedger
    from codeplan.session.models import SessionSettings
    from codeplan.session.store import SessionStore
    from codeplan.ui.console import LineProgress

    index = _load_index(root)

    def confirm(change) -> bool:
        console.show_change(change)
        return console.confirm(f"Apply {change.change_type.value} to {change.path}?")

    ledger = SessionLedger(
        store=SessionStore(get_sessions_dir(root)),
        settings=SessionSettings(
            model=config.llm.model,
            mode=config.llm.mode,
            max_tokens=config.llm.max_tokens,
            preprocessor_model=config.session.preprocessor_model,
        ),
        pricing=config.pricing,
        autosave_interval=config.session.autosave_interval_seconds,
    )
    executor = StepExecutor(
        llm=llm,
        ledger=ledger,
        packer=_make_packer(config, index),
        applier=FileChangeApplier(root, confirm=None if auto else confirm),
        config=config.executor,
        llm_config=config.llm,
        progress=LineProgress(console),
        project_name=config.name,
    )

    async def execute():
        ledger.start_autosave()
        try:
            analysis = None
            if config.planning.use_llm_analysis:
                analysis = await executor.analyze_task(
                    description, fallback=config.planning.fallback_to_heuristics
                )
            return await executor.run_task(
                description,
                codebase=_codebase_summary(config, index),
                constraints=_constraints(config),
                analysis=analysis,
            )
        finally:
            ledger.end_session()

    console.info(f"Running task: {description}")
    try:
        task = asyncio.run(execute())
    except PlanValidationError as e:
        console.error("Plan failed validation:")
        for issue in e.issues:
            console.console.print(f"  [red]-[/red] {issue}")
        sys.exit(1)
    except CodeplanError as e:
        console.error(str(e))
        sys.exit(1)

    console.console.print()
    console.show_task(task)
    console.show_session_summary(ledger.get_session_summary())
    if task.status == TaskStatus.FAILED:
        sys.exit(1)


# =========================================================================
# Sessions
# =========================================================================

@main.group()
def session():
    """Inspect recorded sessions."""


def _open_session(root: Path, session_id: str | None):
    from codeplan.session.ledger import SessionLedger
    from codeplan.session.store import SessionStore

    store = SessionStore(get_sessions_dir(root))
    if session_id is None:
        sessions = store.list()
        if not sessions:
            console.error("No sessions recorded yet.")
            sys.exit(1)
        session_id = sessions[0].id

    ledger = SessionLedger.load(store, session_id)
    if ledger is None:
        console.error(f"Session not found: {session_id}")
        sys.exit(1)
    return ledger


@session.command("list")
@click.option("--path", "-p", default=None, help="Path to the project root.")
def session_list(path: str | None):
    """List recorded sessions, newest first."""
    from codeplan.session.store import SessionStore

    root = _get_project_root(path)
    console.show_sessions(SessionStore(get_sessions_dir(root)).list())


@session.command("show")
@click.argument("session_id", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def session_show(session_id: str | None, path: str | None):
    """Show the summary of a session (default: the latest)."""
    root = _get_project_root(path)
    ledger = _open_session(root, session_id)
    console.show_session_summary(ledger.get_session_summary())


@session.command("export")
@click.argument("session_id", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option(
    "--format", "-f", "fmt",
    type=click.Choice(["json", "markdown"]),
    default="markdown",
    help="Export format (default: markdown).",
)
@click.option("--output", "-o", default=None, help="Write to a file instead of stdout.")
def session_export(session_id: str | None, path: str | None, fmt: str, output: str | None):
    """Export a session report (default: the latest session)."""
    root = _get_project_root(path)
    ledger = _open_session(root, session_id)
    text = ledger.export_session(fmt)
    if output:
        Path(output).write_text(text, encoding="utf-8")
        console.success(f"Exported {ledger.session_id} to {output}")
    else:
        click.echo(text)


# =========================================================================
# Config Management
# =========================================================================

@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage codeplan configuration."""
    root = _get_project_root(path)
    config = load_config(root)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: codeplan config get <key>")
            sys.exit(1)
        data = config.model_dump()
        for part in key.split("."):
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        console.console.print(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: codeplan config set <key> <value>")
            sys.exit(1)
        try:
            try:
                parsed_value = json.loads(value)
            except json.JSONDecodeError:
                parsed_value = value

            config = set_config_value(config, key, parsed_value)
            save_config(root, config)
            console.success(f"Set {key} = {parsed_value}")
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        except ValidationError as e:
            console.error(f"Invalid value for {key}: {e.errors()[0]['msg']}")
            sys.exit(1)


if __name__ == "__main__":
    main()
