"""Drives a task through its planned steps.

Task and step state machines:

    pending -> running -> completed
                       -> failed

Steps run strictly one after another in plan order. The first failed step
fails the task; earlier step results stay on the task record. Parallel-eligible
steps are grouped by the planner but still run sequentially here, since edit
steps mutate files.

Every reasoning-service call is logged to the session ledger, including
rate-limited and failed attempts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from codeplan.agent.collaborators import (
    CancellationToken,
    ChangeApplier,
    MonotonicProgress,
    ProgressReporter,
)
from codeplan.agent.handlers import HANDLERS, StepRun
from codeplan.agent.models import Task, TaskStatus, utcnow
from codeplan.agent.prompts import get_context_summary_prompt, get_system_prompt
from codeplan.config import ExecutorConfig, LLMConfig
from codeplan.context.models import ContextWindow, TokenEstimator
from codeplan.context.packer import ContextPacker
from codeplan.exceptions import (
    CancellationError,
    CodeplanError,
    ExternalServiceError,
    LLMError,
    PlanValidationError,
    RateLimitError,
)
from codeplan.llm.base import LLMProvider, Message
from codeplan.planning.builder import KNOWN_CAPABILITIES, PlanGraphBuilder
from codeplan.planning.models import (
    CodebaseSummary,
    Plan,
    PlanConstraints,
    Step,
    StepStatus,
    TaskAnalysis,
)
from codeplan.planning.parser import ParseOk
from codeplan.session.ledger import SessionLedger
from codeplan.session.models import ReportType

logger = logging.getLogger("codeplan.executor")

Sleep = Callable[[float], Awaitable[None]]

# Progress milestones (percent).
_PLANNED = 10
_CONTEXT_READY = 20


class StepExecutor:
    """Runs plans step by step against the reasoning service.

    Usage:
        executor = StepExecutor(llm, ledger, packer=packer, applier=applier)
        task = await executor.run_task("Refactor auth.js to async/await")
        if task.status == TaskStatus.FAILED:
            print(task.error)
    """

    def __init__(
        self,
        llm: LLMProvider,
        ledger: SessionLedger,
        packer: ContextPacker | None = None,
        builder: PlanGraphBuilder | None = None,
        applier: ChangeApplier | None = None,
        config: ExecutorConfig | None = None,
        llm_config: LLMConfig | None = None,
        progress: ProgressReporter | None = None,
        sleep: Sleep = asyncio.sleep,
        project_name: str = "",
    ) -> None:
        self.llm = llm
        self.ledger = ledger
        self.packer = packer or ContextPacker()
        self.builder = builder or PlanGraphBuilder()
        self.applier = applier
        self.config = config or ExecutorConfig()
        self.llm_config = llm_config or LLMConfig(model=llm.model)
        self.progress = progress
        self.sleep = sleep
        self.project_name = project_name
        self._active: Task | None = None
        self._cancel = CancellationToken()
        if self.config.summarize_context and self.packer.summarizer is None:
            self.packer.summarizer = self.summarize_context
        if self.packer.ranker.on_embed is None:
            self.packer.ranker.on_embed = self._record_embedding

    @property
    def current_task(self) -> Task | None:
        return self._active

    # -------------------------------------------------------------------
    # Main entry points
    # -------------------------------------------------------------------

    def plan(
        self,
        description: str,
        codebase: CodebaseSummary | None = None,
        constraints: PlanConstraints | None = None,
        analysis: TaskAnalysis | None = None,
    ) -> Plan:
        """Build and validate a plan.

        Raises:
            CircularDependencyError: If the plan's steps contain a cycle.
            PlanValidationError: If the plan fails any constraint.
        """
        plan = self.builder.create_plan(description, codebase, analysis)
        constraints = constraints or PlanConstraints(available_capabilities=KNOWN_CAPABILITIES)
        validation = self.builder.validate_plan(plan, constraints)
        if not validation.valid:
            raise PlanValidationError(validation.issues)
        return plan

    async def run_task(
        self,
        description: str,
        codebase: CodebaseSummary | None = None,
        constraints: PlanConstraints | None = None,
        cancel: CancellationToken | None = None,
        analysis: TaskAnalysis | None = None,
    ) -> Task:
        """Plan, validate and execute a task.

        An invalid plan raises before any task exists. Once execution
        starts, failures are recorded on the returned task rather than raised.
        """
        progress = MonotonicProgress(self.progress)
        progress.report(0, "Analyzing request...")
        plan = self.plan(description, codebase, constraints, analysis)
        progress.report(_PLANNED, f"Planned {len(plan.steps)} steps")

        task = Task(description=description, summary=plan.summary, steps=plan.steps)
        return await self.execute_task(task, cancel=cancel, progress=progress)

    async def analyze_task(self, description: str, fallback: bool = True) -> TaskAnalysis | None:
        """Classify a task with the reasoning service.

        Returns None when the reply is malformed and `fallback` is set, so
        the planner uses its keyword heuristics instead.
        """
        result = await self.builder.analyze_task(description, self.call_service)
        if isinstance(result, ParseOk):
            return result.value
        if fallback:
            logger.info("Falling back to heuristic task analysis")
            return None
        raise ExternalServiceError(f"Task analysis was malformed: {result.message}")

    async def execute_task(
        self,
        task: Task,
        cancel: CancellationToken | None = None,
        progress: MonotonicProgress | None = None,
    ) -> Task:
        if self._active is not None:
            raise CodeplanError(f"Task {self._active.id} is still running in this session")

        self._active = task
        self._cancel = cancel or CancellationToken()
        progress = progress or MonotonicProgress(self.progress)
        started = time.monotonic()

        try:
            self.ledger.add_task(task)
            task.status = TaskStatus.RUNNING
            self._cancel.raise_if_cancelled()
            progress.report(_PLANNED, "Gathering context...")
            window = await self._gather_context(task.description, self._task_files(task))
            progress.report(_CONTEXT_READY, "Context ready")

            span = 100 - _CONTEXT_READY
            for i, step in enumerate(task.steps, start=1):
                self._cancel.raise_if_cancelled()
                progress.report(
                    _CONTEXT_READY + span * (i - 1) // len(task.steps),
                    f"Executing: {step.description}",
                )
                await self._run_step(task, step, window)
                self.ledger.update_task(task.id, task)

            task.status = TaskStatus.COMPLETED
            progress.report(100, "Task completed")
        except CancellationError as e:
            task.status = TaskStatus.FAILED
            task.error = str(e)
            logger.info("Task %s cancelled", task.id)
        except Exception as e:
            task.status = TaskStatus.FAILED
            task.error = str(e)
            logger.error("Task %s failed: %s", task.id, e)
        finally:
            self._active = None
            task.completed_at = utcnow()
            self._add_task_report(task, time.monotonic() - started)
            self.ledger.update_task(task.id, task)
            self.ledger.complete_task(task.id)

        return task

    async def call_service(self, prompt: str, purpose: str) -> str:
        """Send one prompt, retrying on rate limits.

        A rate-limit error sleeps for the fixed backoff and retries the same
        call, up to ``max_rate_limit_retries`` times. Any other failure is
        raised as ``ExternalServiceError``. Every attempt is recorded, with token
        counts from the provider when it reports them and estimated otherwise.
        """
        system = get_system_prompt(self.project_name)
        messages = [
            Message(role="system", content=system),
            Message(role="user", content=prompt),
        ]
        prompt_tokens = TokenEstimator.estimate(system) + TokenEstimator.estimate(prompt)
        retries = 0

        while True:
            try:
                response = await self.llm.complete(
                    messages,
                    temperature=self.llm_config.temperature,
                    max_tokens=self.llm_config.max_tokens,
                )
            except RateLimitError as e:
                self._record_usage(purpose, prompt_tokens, 0, error=str(e))
                if retries >= self.config.max_rate_limit_retries:
                    logger.error("Rate limited on %s; giving up after %d retries", purpose, retries)
                    raise
                retries += 1
                logger.warning(
                    "Rate limited on %s; retrying in %.0fs (%d/%d)",
                    purpose, self.config.rate_limit_backoff_seconds,
                    retries, self.config.max_rate_limit_retries,
                )
                await self.sleep(self.config.rate_limit_backoff_seconds)
                self._cancel.raise_if_cancelled()
                continue
            except LLMError as e:
                self._record_usage(purpose, prompt_tokens, 0, error=str(e))
                if isinstance(e, ExternalServiceError):
                    raise
                raise ExternalServiceError(str(e)) from e
            except Exception as e:
                self._record_usage(purpose, prompt_tokens, 0, error=str(e))
                raise ExternalServiceError(f"Reasoning service call failed: {e}") from e

            reported = response.usage
            self._record_usage(
                purpose,
                reported.get("prompt_tokens") or prompt_tokens,
                reported.get("completion_tokens") or TokenEstimator.estimate(response.content),
            )
            return response.content

    async def summarize_context(self, window: ContextWindow, query: str | None) -> str:
        return await self.call_service(get_context_summary_prompt(window, query), "context")

    # -------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------

    async def _run_step(self, task: Task, step: Step, task_window: ContextWindow) -> None:
        step.status = StepStatus.RUNNING
        try:
            window = task_window
            if step.files:
                window = await self._gather_context(step.description, step.files)
                self._cancel.raise_if_cancelled()

            run = StepRun(
                task=task,
                step=step,
                window=window,
                call=self.call_service,
                applier=self.applier,
            )
            step.result = await HANDLERS[step.type](run)
            step.status = StepStatus.COMPLETED
        except Exception as e:
            step.status = StepStatus.FAILED
            step.error = str(e)
            raise

    async def _gather_context(self, query: str, files: list[str]) -> ContextWindow:
        self._cancel.raise_if_cancelled()
        window = await self.packer.create_task_context(query, files, self.config.step_context_tokens)
        self._cancel.raise_if_cancelled()
        return window

    def _task_files(self, task: Task) -> list[str]:
        return list(dict.fromkeys(f for s in task.steps for f in s.files))

    def _record_usage(
        self,
        purpose: str,
        prompt_tokens: int,
        completion_tokens: int,
        error: str | None = None,
    ) -> None:
        self.ledger.record_usage(
            model=self.llm_config.model,
            mode=self.llm_config.mode,
            purpose=purpose,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            succeeded=error is None,
            error=error,
        )

    def _record_embedding(self, text: str) -> None:
        self.ledger.record_usage(
            model=self.llm_config.embedding_model or self.llm_config.model,
            mode="embedding",
            purpose="embedding",
            prompt_tokens=TokenEstimator.estimate(text),
            completion_tokens=0,
        )

    def _add_task_report(self, task: Task, duration: float) -> None:
        changes = task.changes
        self.ledger.add_report(ReportType.TASK, {
            "task": task.description,
            "task_id": task.id,
            "files_modified": list(dict.fromkeys(c.path for c in changes if c.approved)),
            "total_changes": len(changes),
            "status": task.status.value,
            "duration": round(duration, 3),
            "error": task.error,
        })
