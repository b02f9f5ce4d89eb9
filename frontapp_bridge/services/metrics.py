"""CloudWatch custom metrics emitter with background batching.

Publishes metrics for the two reliability paths of the bridge:

* **Outbound**: every Frontapp API request (count, latency, errors) and
  every retry the engine schedules.
* **Inbound**: every webhook delivery outcome (accepted, rejected,
  succeeded, failed, unhandled), dimensioned by event type.

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
>>> from frontapp_bridge.services.metrics import metrics
>>> metrics.record_api_call("GET /tags", status_code=200, latency_ms=84.2)
>>> metrics.record_webhook("conversation.created", "succeeded")
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

NAMESPACE = "FrontappBridge"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call

WEBHOOK_OUTCOMES = frozenset({"accepted", "rejected", "succeeded", "failed", "unhandled"})


def _dims(**pairs: str) -> list[dict[str, str]]:
    return [{"Name": name, "Value": value} for name, value in pairs.items()]


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

    # ── Outbound API ──────────────────────────────────────────────────

    def record_api_call(
        self,
        operation: str,
        *,
        status_code: int | None,
        latency_ms: float,
        error_type: str | None = None,
    ) -> None:
        """Record one Frontapp request.  ``status_code`` is ``None`` when no
        response was received (network failure)."""
        outcome = "success" if error_type is None else "failure"
        self._put("FrontappAPI/RequestCount", 1, "Count", _dims(Status=outcome))
        self._put(
            "FrontappAPI/Latency", latency_ms, "Milliseconds",
            _dims(Operation=operation),
        )
        if error_type is not None:
            self._put(
                "FrontappAPI/ErrorCount", 1, "Count",
                _dims(ErrorType=error_type, StatusCode=str(status_code or "none")),
            )
        logger.debug(
            "Metric: %s %s status=%s latency=%.1fms",
            operation, outcome, status_code, latency_ms,
        )

    def record_retry(self, scope: str, error_type: str, delay_seconds: float) -> None:
        """Record a retry scheduled by the retry engine."""
        self._put("Retry/Count", 1, "Count", _dims(Scope=scope, ErrorType=error_type))
        self._put("Retry/Delay", delay_seconds * 1000, "Milliseconds", _dims(Scope=scope))

    # ── Agent LLM calls ──────────────────────────────────────────────

    def record_llm_call(
        self, operation: str, *, latency_ms: float, error_type: str | None = None,
    ) -> None:
        """Record one Anthropic invocation made by the agent."""
        outcome = "success" if error_type is None else "failure"
        self._put("Anthropic/RequestCount", 1, "Count", _dims(Status=outcome))
        self._put(
            "Anthropic/Latency", latency_ms, "Milliseconds", _dims(Operation=operation),
        )
        if error_type is not None:
            self._put("Anthropic/ErrorCount", 1, "Count", _dims(ErrorType=error_type))

    # ── Inbound webhooks ─────────────────────────────────────────────

    def record_webhook(self, event_type: str, outcome: str, reason: str | None = None) -> None:
        """Record a webhook delivery outcome."""
        if outcome not in WEBHOOK_OUTCOMES:
            raise ValueError(f"Unknown webhook outcome: {outcome}")
        dims = _dims(EventType=event_type or "unknown", Outcome=outcome)
        if reason:
            dims += _dims(Reason=reason)
        self._put("Webhook/Count", 1, "Count", dims)
        logger.debug("Metric: webhook %s %s reason=%s", event_type, outcome, reason)

    # ── Flushing ─────────────────────────────────────────────────────

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

    def _put(
        self, name: str, value: float, unit: str, dimensions: list[dict[str, str]],
    ) -> None:
        point = {
            "MetricName": name,
            "Dimensions": dimensions,
            "Timestamp": datetime.now(UTC),
            "Value": value,
            "Unit": unit,
        }
        with self._lock:
            self._buffer.append(point)

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
