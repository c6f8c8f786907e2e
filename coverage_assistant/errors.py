"""Error taxonomy shared by the governor, the tool registry and the loop.

Every error carries a stable ``kind`` string.  The HTTP layer maps kinds to
status codes and generic user-facing messages; the kind itself is never
shown to the end user.
"""

from __future__ import annotations


class CoverageAssistantError(Exception):
    """Base class for all errors raised by the assistant core."""

    kind = "internal"


# ── Transport (raised through the Resilience Governor) ──────────────


class TransportError(CoverageAssistantError):
    """A call to an external dependency failed."""

    def __init__(
        self,
        message: str,
        *,
        dependency: str,
        status_code: int | None = None,
    ):
        self.dependency = dependency
        self.status_code = status_code
        super().__init__(message)


class RetryableTransportError(TransportError):
    """Timeout, network failure, HTTP 429 or 5xx."""

    kind = "retryable_transport"


class NonRetryableTransportError(TransportError):
    """HTTP 4xx other than 429.  Propagates without retry."""

    kind = "non_retryable_transport"


class CircuitOpenError(CoverageAssistantError):
    """The dependency's circuit is open; the call was not attempted."""

    kind = "circuit_open"

    def __init__(self, dependency: str, retry_after: float):
        self.dependency = dependency
        self.retry_after = retry_after
        super().__init__(
            f"Circuit for {dependency} is open (retry in {retry_after:.1f}s)"
        )


class RateLimitError(CoverageAssistantError):
    """No token was available and the caller chose to fail fast."""

    kind = "rate_limited"

    def __init__(self, dependency: str, retry_after: float):
        self.dependency = dependency
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit for {dependency} reached (retry in {retry_after:.2f}s)"
        )


class CallAbandonedError(CoverageAssistantError):
    """The caller gave up on the call (its iteration timed out)."""

    kind = "call_abandoned"

    def __init__(self, dependency: str):
        self.dependency = dependency
        super().__init__(f"Call to {dependency} was abandoned by its caller")


# ── Orchestration ────────────────────────────────────────────────────


class ToolLoopExceeded(CoverageAssistantError):
    """The loop used all of its iterations without a final answer."""

    kind = "tool_loop_exceeded"

    def __init__(self, max_iterations: int):
        self.max_iterations = max_iterations
        super().__init__(
            f"No final answer after {max_iterations} tool-calling iterations"
        )


class ModelTimeoutError(CoverageAssistantError):
    """A single model call exceeded the per-iteration timeout."""

    kind = "model_timeout"

    def __init__(self, timeout: float, iteration: int):
        self.timeout = timeout
        self.iteration = iteration
        super().__init__(
            f"Model call timed out after {timeout:.0f}s on iteration {iteration}"
        )


# ── Capabilities (contained as failed ToolResults) ───────────────────


class CapabilityExecutionFault(CoverageAssistantError):
    """A registered executor raised."""

    kind = "capability_fault"

    def __init__(self, name: str, cause: BaseException):
        self.name = name
        self.cause = cause
        super().__init__(f"Capability {name} failed: {cause}")


class UnknownCapabilityError(CoverageAssistantError):
    """The model requested a capability that is not registered."""

    kind = "unknown_capability"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown capability: {name}")
