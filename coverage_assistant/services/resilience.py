"""Resilience Governor: token-bucket rate limiting, circuit breaking and
retry with exponential backoff for every outbound dependency call.

Composition order for one guarded attempt::

    circuit check → token (wait or fail fast) → execute
        success → breaker.record_success
        failure → breaker.record_failure → retry per policy, or propagate

Every retry goes back through the circuit check and the token bucket, so a
retry never bypasses either guard.

State is owned by a ``ResilienceGovernor`` instance (one bucket and one
breaker per dependency name, each guarded by its own lock).  Build one with
``ResilienceGovernor.from_config()`` and pass it to every client that
should share it; tests construct isolated instances with fake clocks.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import httpx

from coverage_assistant import config
from coverage_assistant.errors import (
    CallAbandonedError,
    CircuitOpenError,
    NonRetryableTransportError,
    RateLimitError,
    RetryableTransportError,
)
from coverage_assistant.services.metrics import MetricsClient, metrics as default_metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DEPENDENCY = "default"

_abandoned: ContextVar[threading.Event | None] = ContextVar("governor_abandoned", default=None)


# ── Policies ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RateLimit:
    requests_per_minute: float
    burst: int

    def __post_init__(self) -> None:
        if self.requests_per_minute <= 0 or self.burst < 1:
            raise ValueError(
                f"Rate limit needs a positive rate and a burst of at least 1, "
                f"got {self.requests_per_minute} rpm / burst {self.burst}"
            )

    @property
    def tokens_per_second(self) -> float:
        return self.requests_per_minute / 60.0


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with symmetric jitter.

    ``max_retries`` counts retries after the first attempt, so a call is
    executed at most ``max_retries + 1`` times.
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.2

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        """Seconds to wait before retry number ``attempt + 1``."""
        base = min(self.initial_delay * (self.multiplier ** attempt), self.max_delay)
        if not self.jitter:
            return base
        rng = rng or random
        spread = base * self.jitter * (rng.random() * 2 - 1)
        return max(0.0, base + spread)


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: float = 60.0
    half_open_requests: int = 2


# ── Token bucket ─────────────────────────────────────────────────────


class TokenBucket:
    """Continuously refilled bucket.  Not thread-safe on its own."""

    def __init__(self, limit: RateLimit, now: float) -> None:
        self.limit = limit
        self.tokens = float(limit.burst)
        self.last_refill = now

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(
            float(self.limit.burst),
            self.tokens + elapsed * self.limit.tokens_per_second,
        )
        self.last_refill = now

    def try_acquire(self, now: float) -> float:
        """Take one token.  Returns 0 on success, else seconds until one is free."""
        self.refill(now)
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return 0.0
        return (1.0 - self.tokens) / self.limit.tokens_per_second


# ── Circuit breaker ──────────────────────────────────────────────────


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Closed → open after N failures; open → half-open after the reset
    timeout; half-open → closed after M successful trial calls, or back to open
    on any trial failure.  Not thread-safe on its own.
    """

    def __init__(
        self,
        name: str,
        cfg: CircuitBreakerConfig,
        on_transition: Callable[[str, CircuitState], None] | None = None,
    ) -> None:
        self.name = name
        self.config = cfg
        self._on_transition = on_transition
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.last_failure_time: float | None = None
        self.half_open_successes = 0
        self.half_open_trials = 0

    def rejection(self, now: float) -> float | None:
        """Return seconds until a call may pass, or ``None`` if it may pass now."""
        if self.state is CircuitState.CLOSED:
            return None
        remaining = max(
            0.0, (self.last_failure_time or now) + self.config.reset_timeout - now,
        )
        if self.state is CircuitState.OPEN:
            return None if remaining == 0.0 else remaining
        if self.half_open_trials < self.config.half_open_requests:
            return None
        return remaining

    def admit(self, now: float) -> None:
        """Account for a call that passed ``rejection``."""
        if self.state is CircuitState.OPEN:
            self._transition(CircuitState.HALF_OPEN)
            self.half_open_successes = 0
            self.half_open_trials = 0
        if self.state is CircuitState.HALF_OPEN:
            self.half_open_trials += 1

    def record_success(self) -> None:
        if self.state is CircuitState.HALF_OPEN:
            self.half_open_successes += 1
            if self.half_open_successes >= self.config.half_open_requests:
                self._transition(CircuitState.CLOSED)
                self.consecutive_failures = 0
        elif self.consecutive_failures > 0:
            self.consecutive_failures -= 1

    def record_failure(self, now: float) -> None:
        self.last_failure_time = now
        if self.state is CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
            return
        self.consecutive_failures += 1
        if (
            self.state is CircuitState.CLOSED
            and self.consecutive_failures >= self.config.failure_threshold
        ):
            self._transition(CircuitState.OPEN)

    def _transition(self, state: CircuitState) -> None:
        if state is self.state:
            return
        log = logger.info if state is CircuitState.CLOSED else logger.warning
        log("Circuit %s: %s → %s", self.name, self.state.value, state.value)
        self.state = state
        if self._on_transition is not None:
            self._on_transition(self.name, state)


# ── Error classification ─────────────────────────────────────────────


def is_retryable(exc: BaseException) -> bool:
    """Timeouts, network errors, 429 and 5xx are retryable; nothing else is."""
    if isinstance(exc, RetryableTransportError):
        return True
    if isinstance(exc, NonRetryableTransportError):
        return False
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


# ── Abandonment ──────────────────────────────────────────────────────


@contextmanager
def abandon_on(event: threading.Event) -> Iterator[None]:
    """Stop governed calls made inside the block once *event* is set.

    An abandoned call makes no further attempts and stops waiting for
    tokens or backoff.  The attempt already in flight runs to completion.
    """
    token = _abandoned.set(event)
    try:
        yield
    finally:
        _abandoned.reset(token)


def _is_abandoned() -> bool:
    event = _abandoned.get()
    return event is not None and event.is_set()


# ── Governor ─────────────────────────────────────────────────────────


class _Dependency:
    __slots__ = ("bucket", "breaker", "lock")

    def __init__(self, bucket: TokenBucket, breaker: CircuitBreaker) -> None:
        self.bucket = bucket
        self.breaker = breaker
        self.lock = threading.Lock()


class ResilienceGovernor:
    """Per-dependency rate limiter + circuit breaker + retry."""

    def __init__(
        self,
        rate_limits: Mapping[str, RateLimit] | None = None,
        retry_policy: RetryPolicy | None = None,
        breaker_config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        metrics: MetricsClient | None = None,
    ) -> None:
        self._rate_limits = dict(rate_limits or {})
        self._rate_limits.setdefault(DEFAULT_DEPENDENCY, RateLimit(30, 5))
        self._retry = retry_policy or RetryPolicy()
        self._breaker_config = breaker_config or CircuitBreakerConfig()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._metrics = metrics if metrics is not None else default_metrics
        self._deps: dict[str, _Dependency] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def from_config(cls, **kwargs: Any) -> ResilienceGovernor:
        """Build a governor from the environment-driven settings."""
        return cls(
            rate_limits={
                name: RateLimit(rpm, burst)
                for name, (rpm, burst) in config.RATE_LIMITS.items()
            },
            retry_policy=RetryPolicy(
                max_retries=config.RETRY_MAX_ATTEMPTS,
                initial_delay=config.RETRY_INITIAL_DELAY_SECONDS,
                max_delay=config.RETRY_MAX_DELAY_SECONDS,
                multiplier=config.RETRY_BACKOFF_MULTIPLIER,
                jitter=config.RETRY_JITTER_FACTOR,
            ),
            breaker_config=CircuitBreakerConfig(
                failure_threshold=config.CIRCUIT_FAILURE_THRESHOLD,
                reset_timeout=config.CIRCUIT_RESET_TIMEOUT_SECONDS,
                half_open_requests=config.CIRCUIT_HALF_OPEN_REQUESTS,
            ),
            **kwargs,
        )

    def _record_transition(self, dependency: str, state: CircuitState) -> None:
        self._metrics.record_circuit_transition(dependency, state.value)

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    def _dependency(self, name: str) -> _Dependency:
        dep = self._deps.get(name)
        if dep is not None:
            return dep
        with self._registry_lock:
            dep = self._deps.get(name)
            if dep is None:
                limit = self._rate_limits.get(name, self._rate_limits[DEFAULT_DEPENDENCY])
                dep = _Dependency(
                    TokenBucket(limit, self._clock()),
                    CircuitBreaker(name, self._breaker_config, self._record_transition),
                )
                self._deps[name] = dep
        return dep

    # ── Guards ───────────────────────────────────────────────────────

    def acquire(self, dependency: str, *, wait: bool = True) -> None:
        """Pass the circuit check and take a token, waiting if allowed.

        Raises ``CircuitOpenError`` when the circuit rejects the call and
        ``RateLimitError`` when no token is free and ``wait`` is false.
        Raises ``CallAbandonedError`` inside an abandoned ``abandon_on`` block.
        """
        dep = self._dependency(dependency)
        while True:
            if _is_abandoned():
                raise CallAbandonedError(dependency)
            with dep.lock:
                now = self._clock()
                retry_after = dep.breaker.rejection(now)
                if retry_after is not None:
                    self._metrics.record_failure(
                        dependency, "acquire", error_type="CircuitOpen",
                    )
                    raise CircuitOpenError(dependency, retry_after)
                wait_seconds = dep.bucket.try_acquire(now)
                if wait_seconds <= 0:
                    dep.breaker.admit(now)
                    return
            if not wait:
                raise RateLimitError(dependency, wait_seconds)
            logger.debug("Rate limit %s: waiting %.2fs for a token", dependency, wait_seconds)
            self._sleep(wait_seconds)

    def record_success(self, dependency: str) -> None:
        dep = self._dependency(dependency)
        with dep.lock:
            dep.breaker.record_success()

    def record_failure(self, dependency: str) -> None:
        dep = self._dependency(dependency)
        with dep.lock:
            dep.breaker.record_failure(self._clock())

    # ── Guarded call ─────────────────────────────────────────────────

    def call(
        self,
        dependency: str,
        fn: Callable[[], T],
        *,
        operation: str = "call",
        wait: bool = True,
    ) -> T:
        """Run *fn* under the dependency's guards with retry.

        Non-retryable failures propagate immediately.  Retryable failures
        are retried per the policy; the last one propagates once retries
        are exhausted.  Inside an abandoned ``abandon_on`` block the failure
        propagates without retry.
        """
        attempt = 0
        while True:
            self.acquire(dependency, wait=wait)
            t0 = time.perf_counter()
            try:
                result = fn()
            except Exception as exc:
                elapsed = (time.perf_counter() - t0) * 1000
                self.record_failure(dependency)
                self._metrics.record_failure(
                    dependency, operation,
                    error_type=type(exc).__name__, latency_ms=elapsed,
                )
                if not is_retryable(exc) or attempt >= self._retry.max_retries:
                    raise
                if _is_abandoned():
                    logger.info("%s %s abandoned after attempt %d", dependency, operation, attempt + 1)
                    raise
                delay = self._retry.delay_for(attempt, self._rng)
                attempt += 1
                logger.warning(
                    "%s %s attempt %d/%d failed (%s). Retrying in %.1fs…",
                    dependency, operation, attempt, self._retry.max_retries + 1,
                    type(exc).__name__, delay,
                )
                self._sleep(delay)
                continue

            elapsed = (time.perf_counter() - t0) * 1000
            self.record_success(dependency)
            self._metrics.record_success(dependency, operation, latency_ms=elapsed)
            return result

    # ── Introspection ────────────────────────────────────────────────

    def circuit_state(self, dependency: str) -> CircuitState:
        return self._dependency(dependency).breaker.state

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Current breaker and bucket state for every dependency seen so far."""
        with self._registry_lock:
            deps = dict(self._deps)
        now = self._clock()
        out: dict[str, dict[str, Any]] = {}
        for name, dep in sorted(deps.items()):
            with dep.lock:
                dep.bucket.refill(now)
                out[name] = {
                    "circuit": dep.breaker.state.value,
                    "consecutive_failures": dep.breaker.consecutive_failures,
                    "tokens": round(dep.bucket.tokens, 2),
                    "burst": dep.bucket.limit.burst,
                }
        return out

    def reset(self, dependency: str | None = None) -> None:
        """Forget state for one dependency, or for all of them."""
        with self._registry_lock:
            if dependency is None:
                self._deps.clear()
            else:
                self._deps.pop(dependency, None)
