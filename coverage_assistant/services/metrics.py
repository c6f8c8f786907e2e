"""CloudWatch custom metrics emitter with background batching.

Publishes per-dependency call metrics (count, latency, errors) and circuit
transitions from the Resilience Governor, hit/miss counts from the knowledge
caches, per-capability outcomes from the tool registry and per-turn outcomes
from the orchestration loop.

Design
------
* Metrics are collected in a thread-safe in-memory buffer.
* A daemon thread flushes the buffer to CloudWatch every
  ``FLUSH_INTERVAL_SECONDS`` (default 60 s).
* When running locally (``METRICS_ENABLED != "true"``), metrics are
  logged at DEBUG level but **not** pushed to CloudWatch.
* Each ``put_metric_data`` call sends up to 1 000 metric data points
  (the CloudWatch API limit per request).

Usage
-----
>>> from coverage_assistant.services.metrics import metrics
>>> metrics.record_success("npi", "search_providers", latency_ms=123.4)
>>> metrics.record_failure("claude", "invoke", error_type="APITimeoutError")
>>> metrics.record_capability("search_icd10", success=True)
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "CoverageAssistant"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


def _datum(
    name: str,
    dimensions: list[dict[str, str]],
    value: float,
    unit: str,
) -> dict[str, Any]:
    return {
        "MetricName": name,
        "Dimensions": dimensions,
        "Timestamp": datetime.now(UTC),
        "Value": value,
        "Unit": unit,
    }


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None  # lazy-init

        if self._enabled:
            self._start_flush_thread()

    # ── Lazy CloudWatch client ────────────────────────────────────────

    def _get_cw_client(self):
        """Create the boto3 CloudWatch client on first use."""
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Public API ────────────────────────────────────────────────────

    def record_success(
        self,
        dependency: str,
        operation: str,
        latency_ms: float,
    ) -> None:
        """Record a successful dependency call."""
        dims = [{"Name": "Dependency", "Value": dependency}]
        self._append(
            _datum(
                "Dependency/RequestCount",
                dims + [{"Name": "Status", "Value": "success"}],
                1, "Count",
            )
        )
        self._append(
            _datum(
                "Dependency/Latency",
                dims + [{"Name": "Operation", "Value": operation}],
                latency_ms, "Milliseconds",
            )
        )
        logger.debug(
            "Metric: %s %s success latency=%.1fms", dependency, operation, latency_ms,
        )

    def record_failure(
        self,
        dependency: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed or rejected dependency call."""
        dims = [{"Name": "Dependency", "Value": dependency}]
        self._append(
            _datum(
                "Dependency/RequestCount",
                dims + [{"Name": "Status", "Value": "failure"}],
                1, "Count",
            )
        )
        self._append(
            _datum(
                "Dependency/ErrorCount",
                dims + [{"Name": "ErrorType", "Value": error_type}],
                1, "Count",
            )
        )
        if latency_ms > 0:
            self._append(
                _datum(
                    "Dependency/Latency",
                    dims + [{"Name": "Operation", "Value": operation}],
                    latency_ms, "Milliseconds",
                )
            )
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            dependency, operation, error_type, latency_ms,
        )

    def record_capability(self, name: str, *, success: bool) -> None:
        """Record one capability execution and whether it succeeded."""
        self._append(
            _datum(
                "Capability/InvocationCount",
                [
                    {"Name": "Capability", "Value": name},
                    {"Name": "Status", "Value": "success" if success else "failure"},
                ],
                1, "Count",
            )
        )

    def record_circuit_transition(self, dependency: str, state: str) -> None:
        """Record a circuit breaker entering *state*."""
        self._append(
            _datum(
                "Circuit/Transition",
                [
                    {"Name": "Dependency", "Value": dependency},
                    {"Name": "State", "Value": state},
                ],
                1, "Count",
            )
        )

    def record_cache(self, cache: str, *, hit: bool) -> None:
        self._append(
            _datum(
                "Cache/HitCount" if hit else "Cache/MissCount",
                [{"Name": "Cache", "Value": cache}],
                1, "Count",
            )
        )

    def record_turn(self, outcome: str, iterations: int, latency_ms: float) -> None:
        """Record one conversation turn (``outcome`` is ``ok`` or an error kind)."""
        dims = [{"Name": "Outcome", "Value": outcome}]
        self._append(_datum("Turn/Count", dims, 1, "Count"))
        self._append(_datum("Turn/Iterations", dims, iterations, "Count"))
        self._append(_datum("Turn/Latency", dims, latency_ms, "Milliseconds"))

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    # ── Internal ──────────────────────────────────────────────────────

    def _append(self, metric_data: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(metric_data)

    def _start_flush_thread(self) -> None:
        """Start a daemon thread that flushes metrics periodically."""

        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)
        logger.info(
            "Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS,
        )


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
