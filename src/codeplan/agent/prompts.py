"""Prompts sent to the reasoning service."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from codeplan.context.models import ContextWindow
    from codeplan.planning.models import Step


def get_system_prompt(project_name: str = "") -> str:
    """Get the system prompt used for every step call."""
    project_str = f" for the '{project_name}' project" if project_name else ""

    return f"""You are codeplan, a coding assistant{project_str} that carries out one planned step at a time.

## How You Work
1. **Stay on the step**: Only do what the current step asks. Later steps will handle the rest.
2. **Use the context**: The context below was selected for this step. Cite files and symbols from it.
3. **Be precise**: When proposing edits, give the full new content of each file you change.

## Rules
- ALWAYS answer with a single JSON object matching the requested shape. No prose outside it.
- NEVER invent files that are not in the context unless the step asks you to create one.
- If you're unsure about something, say so in the summary. Don't guess.
"""


def get_task_analysis_prompt(description: str) -> str:
    """Ask the service to classify a task before planning."""
    return f"""Analyze this coding task and classify it.

Task: {description}

Respond with a JSON object:
{{
  "summary": "one sentence restating the task",
  "complexity": "simple" | "moderate" | "complex",
  "capabilities": ["skills needed, e.g. ast-manipulation, async-patterns"],
  "challenges": ["what could make this hard"],
  "risks": ["what could break"]
}}"""


def get_context_summary_prompt(window: ContextWindow, query: str | None) -> str:
    files = "\n".join(f"- {f.path} ({f.mode.value}, {f.tokens} tokens)" for f in window.files)
    focus = f" with respect to: {query}" if query else ""
    return (
        f"Summarize in two sentences what this code context covers{focus}.\n\n"
        f"Files:\n{files}\n\n{window.render()}"
    )


_STEP_INSTRUCTIONS = {
    "analyze": """Analyze the code for this step.

Respond with a JSON object:
{
  "summary": "what you found",
  "target_files": ["files that need changes"],
  "findings": ["specific locations or patterns, with file:line where possible"]
}""",
    "edit": """Propose the file changes for this step.

Respond with a JSON object:
{
  "summary": "what the changes do",
  "changes": [
    {"path": "relative/path", "change_type": "create" | "modify" | "delete",
     "content": "full new file content (omit for delete)"}
  ]
}""",
    "test": """Plan how to verify the changes for this step.

Respond with a JSON object:
{
  "summary": "verification approach",
  "command": "command to run the tests, or null",
  "suggested_tests": ["tests worth adding or running"],
  "concerns": ["behaviour the tests may not cover"]
}""",
    "validate": """Check the changes so far for correctness.

Respond with a JSON object:
{
  "summary": "overall assessment",
  "valid": true | false,
  "issues": ["problems found; empty when valid"]
}""",
    "review": """Review the changes for this step.

Respond with a JSON object:
{
  "summary": "review outcome",
  "approved": true | false,
  "notes": ["review comments"]
}""",
}


def get_step_prompt(step: Step, task: str, context: str, history: str = "") -> str:
    """Build the user prompt for one step from its description and packed context."""
    parts = [
        f"## Task\n{task}",
        f"## Current step ({step.type.value}): {step.description}",
    ]
    if step.purpose:
        parts.append(f"Purpose: {step.purpose}")
    if step.files:
        parts.append("Files in scope: " + ", ".join(step.files))
    if step.patterns:
        parts.append("Patterns to look for: " + ", ".join(step.patterns))
    if history:
        parts.append(f"## Earlier steps\n{history}")
    parts.append(f"## Context\n{context or '(no relevant files found)'}")
    parts.append(_STEP_INSTRUCTIONS[step.type.value])
    return "\n\n".join(parts)
