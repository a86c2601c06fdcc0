"""Rich-powered console output for codeplan."""

from __future__ import annotations

import networkx as nx
from rich.console import Console as RichConsole
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.tree import Tree

from codeplan import __version__
from codeplan.agent.models import Task, TaskStatus
from codeplan.context.models import ContextWindow
from codeplan.planning.graph import build_graph
from codeplan.planning.models import FileChange, Plan, PlanValidation, RiskLevel, StepStatus
from codeplan.session.ledger import format_duration
from codeplan.session.models import SessionInfo, SessionSummary

_RISK_COLORS = {RiskLevel.LOW: "green", RiskLevel.MEDIUM: "yellow", RiskLevel.HIGH: "red"}
_STATUS_ICONS = {
    StepStatus.PENDING: "[dim]○[/dim]",
    StepStatus.RUNNING: "[blue]…[/blue]",
    StepStatus.COMPLETED: "[green]✓[/green]",
    StepStatus.FAILED: "[red]✗[/red]",
}


class Console:
    """Terminal output for codeplan using Rich."""

    def __init__(self, console: RichConsole | None = None) -> None:
        self.console = console or RichConsole()

    def banner(self) -> None:
        self.console.print(
            Panel(
                f"[bold cyan]codeplan[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Plan, pack context, execute, account[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    # -------------------------------------------------------------------
    # Plans
    # -------------------------------------------------------------------

    def show_plan(self, plan: Plan) -> None:
        """Display a plan: summary panel, step table and dependency levels."""
        self.console.print(
            Panel(
                f"[bold]Summary:[/bold] {plan.summary}\n"
                f"[bold]Complexity:[/bold] {plan.complexity.value}\n"
                f"[bold]Estimated duration:[/bold] {plan.estimated_duration} min\n"
                f"[bold]Estimated tokens:[/bold] {plan.total_estimated_tokens:,}",
                title="[bold]Plan[/bold]",
                border_style="cyan",
            )
        )

        table = Table(border_style="cyan")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Step", style="bold")
        table.add_column("Type")
        table.add_column("Depends on", style="dim")
        table.add_column("Risk")
        table.add_column("Tokens", justify="right", style="cyan")
        for i, step in enumerate(plan.steps, start=1):
            color = _RISK_COLORS[step.risk_level]
            name = step.id + (" [dim](parallel)[/dim]" if step.can_parallelize else "")
            table.add_row(
                str(i),
                name,
                step.type.value,
                ", ".join(step.dependencies) or "-",
                f"[{color}]{step.risk_level.value}[/{color}]",
                f"{step.estimated_tokens:,}",
            )
        self.console.print(table)

        tree = Tree("[bold cyan]Dependency levels[/bold cyan]")
        graph = build_graph(plan.steps)
        for level, ids in enumerate(nx.topological_generations(graph)):
            tree.add(f"[bold]{level}[/bold]: " + ", ".join(sorted(ids)))
        self.console.print(tree)

        if plan.risks:
            self.console.print("\n[bold]Risks:[/bold]")
            for risk in plan.risks:
                color = _RISK_COLORS[risk.severity]
                self.console.print(
                    f"  [{color}]{risk.severity.value}[/{color}] {risk.description}"
                    f" [dim]- {risk.mitigation}[/dim]"
                )

        if plan.dependencies:
            self.console.print("\n[bold]External dependencies:[/bold]")
            for dep in plan.dependencies:
                mark = "[green]✓[/green]" if dep.available else "[red]✗[/red]"
                required = "" if dep.required else " [dim](optional)[/dim]"
                self.console.print(f"  {mark} {dep.name} [dim]({dep.kind.value})[/dim]{required}")

        if plan.rollback_strategy:
            self.console.print(Panel(plan.rollback_strategy, title="Rollback", border_style="yellow"))

    def show_validation(self, validation: PlanValidation) -> None:
        if validation.valid:
            self.success("Plan is valid")
            return
        self.error("Plan failed validation:")
        for issue in validation.issues:
            self.console.print(f"  [red]-[/red] {issue}")

    # -------------------------------------------------------------------
    # Context
    # -------------------------------------------------------------------

    def show_context(self, window: ContextWindow, full: bool = False) -> None:
        used = window.total_tokens / window.token_budget if window.token_budget else 0.0
        self.console.print()
        self.console.print("[bold]Context Window[/bold]")
        self.console.print(
            f"  Tokens: {window.total_tokens:,} / {window.token_budget:,} ({used:.0%})"
        )
        self.console.print(f"  Files: {len(window.files)}")
        self.console.print(f"  [dim]{window.summary}[/dim]")
        self.console.print()

        table = Table(border_style="cyan")
        table.add_column("File", style="bold")
        table.add_column("Mode")
        table.add_column("Relevance", justify="right")
        table.add_column("Tokens", justify="right", style="cyan")
        for f in window.files:
            table.add_row(f.path, f.mode.value, f"{f.relevance:.3f}", f"{f.tokens:,}")
        self.console.print(table)

        if full:
            for f in window.files:
                self.console.print(f"\n[bold cyan]{f.path}[/bold cyan]")
                self.console.print(Syntax(f.content, f.language or "text", theme="monokai"))

    # -------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------

    def show_task(self, task: Task) -> None:
        for step in task.steps:
            line = f"  {_STATUS_ICONS[step.status]} [bold]{step.id}[/bold] {step.description}"
            self.console.print(line)
            if step.result is not None and step.result.summary:
                self.console.print(f"      [dim]{escape(step.result.summary)}[/dim]")
            if step.error:
                self.console.print(f"      [red]{escape(step.error)}[/red]")

        self.console.print()
        if task.status == TaskStatus.COMPLETED:
            self.success(f"Task completed: {task.description}")
        else:
            self.error(f"Task failed: {escape(task.error or task.status.value)}")

    def show_change(self, change: FileChange) -> None:
        self.console.print(f"\n[bold]{change.change_type.value}[/bold] [cyan]{change.path}[/cyan]")
        if change.diff:
            self.console.print(Syntax(change.diff, "diff", theme="monokai"))

    # -------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------

    def show_session_summary(self, summary: SessionSummary) -> None:
        table = Table(title=f"Session {summary.session_id}", border_style="cyan")
        table.add_column("Metric", style="bold")
        table.add_column("Value", justify="right", style="cyan")

        table.add_row("Duration", format_duration(summary.duration))
        table.add_row("Tasks", str(summary.tasks.total))
        table.add_row("  completed", str(summary.tasks.completed))
        table.add_row("  failed", str(summary.tasks.failed))
        table.add_row("  in progress", str(summary.tasks.in_progress))
        table.add_row("Prompt tokens", f"{summary.usage.prompt_tokens:,}")
        table.add_row("Completion tokens", f"{summary.usage.completion_tokens:,}")
        table.add_row("Cost", f"${summary.usage.cost:.4f}")
        table.add_row("Files modified", str(len(summary.files_modified)))

        if summary.usage.by_model:
            table.add_section()
            for key, usage in sorted(summary.usage.by_model.items()):
                table.add_row(f"  {key}", f"{usage.calls} calls, ${usage.cost:.4f}")

        self.console.print(table)

    def show_sessions(self, sessions: list[SessionInfo]) -> None:
        if not sessions:
            self.info("No sessions recorded yet")
            return
        table = Table(title="Sessions", border_style="cyan")
        table.add_column("ID", style="bold")
        table.add_column("Started")
        table.add_column("Ended")
        table.add_column("Tasks", justify="right", style="cyan")
        for s in sessions:
            table.add_row(
                s.id,
                s.start_time.strftime("%Y-%m-%d %H:%M:%S"),
                s.end_time.strftime("%Y-%m-%d %H:%M:%S") if s.end_time else "-",
                str(s.task_count),
            )
        self.console.print(table)

    def confirm(self, message: str) -> bool:
        """Ask for user confirmation."""
        response = self.console.input(f"\n{message} [y/N] ")
        return response.lower().strip() in ("y", "yes")


class LineProgress:
    """Prints one line per progress update. Safe to mix with prompts."""

    def __init__(self, console: Console) -> None:
        self.console = console

    def report(self, percent: int, message: str) -> None:
        self.console.console.print(f"[dim][{percent:3d}%][/dim] {message}")
