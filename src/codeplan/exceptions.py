"""Custom exceptions for codeplan."""


class CodeplanError(Exception):
    """Base exception for all codeplan errors."""


class ConfigError(CodeplanError):
    """Configuration-related errors."""


class PlanValidationError(CodeplanError):
    """A plan failed validation and must not be executed."""

    def __init__(self, issues: list[str]):
        self.issues = list(issues)
        super().__init__("Plan validation failed: " + "; ".join(self.issues))


class CircularDependencyError(CodeplanError):
    """Step dependencies contain a cycle."""

    def __init__(self, cycle: list[str] | None = None):
        self.cycle = list(cycle or [])
        detail = " -> ".join(self.cycle) if self.cycle else "unknown cycle"
        super().__init__(f"Plan contains circular dependencies: {detail}")


class LLMError(CodeplanError):
    """LLM provider errors."""


class RateLimitError(LLMError):
    """The reasoning service asked us to back off before retrying."""


class ExternalServiceError(LLMError):
    """A non-recoverable failure from an external service."""


class CancellationError(CodeplanError):
    """The task was cancelled by the caller."""

    def __init__(self, message: str = "Task cancelled"):
        super().__init__(message)


class ContextBudgetExceeded(CodeplanError):
    """Packed context went over its token budget."""

    def __init__(self, total_tokens: int, budget: int):
        self.total_tokens = total_tokens
        self.budget = budget
        super().__init__(
            f"Context window holds {total_tokens} tokens, over the {budget} token budget"
        )


class ProviderNotAvailableError(LLMError):
    """Raised when an LLM provider's SDK is not installed."""

    def __init__(self, provider: str, package: str):
        super().__init__(
            f"Provider '{provider}' requires the '{package}' package. "
            f"Install it with: pip install codeplan[{provider}]"
        )
