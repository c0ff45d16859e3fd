"""Error kinds raised by the parsing pipeline.

Ingestion errors are isolated per item and reported in the batch response.
Parse errors mark the event FAILED. Guard errors (budget, circuit breaker) are
always raised to the caller of the orchestrator so sweeps can back off.
"""


class PipelineError(Exception):
    """Base class for pipeline failures.

    ``heuristic_confidence`` is filled in by the orchestrator when the failure
    happened after a heuristic attempt, so the event keeps it for inspection.
    """

    retryable: bool = False

    def __init__(self, message: str) -> None:
        """Initialize with a human readable message."""
        super().__init__(message)
        self.message = message
        self.heuristic_confidence: float | None = None


class PersistenceError(PipelineError):
    """A single event could not be stored."""


class ProviderError(PipelineError):
    """A language-model provider call failed."""

    def __init__(
        self,
        message: str,
        provider: str,
        *,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        """Initialize with the provider name and failure classification."""
        super().__init__(message)
        self.provider = provider
        self.retryable = retryable
        self.status_code = status_code


class RateLimitError(ProviderError):
    """The provider rejected the call because of rate limiting. Always retryable."""

    def __init__(self, provider: str, retry_after: float | None = None) -> None:
        """Initialize with an optional retry-after hint in seconds."""
        super().__init__(f"Rate limit exceeded for {provider}", provider, retryable=True, status_code=429)
        self.retry_after = retry_after


class GuardError(PipelineError):
    """The cost guard refused to let a provider call through."""

    def __init__(self, message: str, provider: str) -> None:
        """Initialize with the provider that was guarded."""
        super().__init__(message)
        self.provider = provider


class BudgetExceededError(GuardError):
    """A daily budget is spent. Not retryable until the day rolls over."""

    def __init__(self, provider: str, scope: str) -> None:
        """Initialize with the budget scope, ``global`` or ``user``."""
        super().__init__(f"{scope} daily budget exceeded for {provider}", provider)
        self.scope = scope


class CircuitOpenError(GuardError):
    """The provider's circuit breaker is open."""

    retryable = True

    def __init__(self, provider: str, retry_after: float | None = None) -> None:
        """Initialize with the seconds left until the breaker half-opens."""
        super().__init__(f"Circuit breaker open for {provider}", provider)
        self.retry_after = retry_after


class ConcurrentParseError(PipelineError):
    """The event left PENDING while this attempt was in flight."""
