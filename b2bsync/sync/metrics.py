"""Prometheus metrics helpers for the sync engine."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Gauge, Histogram

_rows_counter = Counter(
    "b2bsync_rows_total",
    "Rows processed by the sync engine by entity and outcome.",
    ["entity", "outcome"],
)
_batch_counter = Counter(
    "b2bsync_batches_total",
    "Number of source batches processed by entity and status.",
    ["entity", "status"],
)
_batch_duration = Histogram(
    "b2bsync_batch_duration_seconds",
    "Duration of source batch processing in seconds.",
    ["entity"],
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)
_watermark_gauge = Gauge(
    "b2bsync_watermark_timestamp_seconds",
    "Unix timestamp of the last committed watermark per entity.",
    ["entity"],
)
_retry_counter = Counter(
    "b2bsync_retries_total",
    "Retries performed by the resilience wrapper by target and reason.",
    ["target", "reason"],
)


def record_rows(*, entity: str, outcome: str, count: int) -> None:
    """Increment the row counter for ``entity``/``outcome``."""

    if count <= 0:
        return
    _rows_counter.labels(entity=entity, outcome=outcome).inc(count)


def record_batch(
    *,
    entity: str,
    status: Literal["success", "failure"],
    duration_seconds: float,
) -> None:
    """Capture metrics for one processed batch."""

    _batch_counter.labels(entity=entity, status=status).inc()
    _batch_duration.labels(entity=entity).observe(duration_seconds)


def record_watermark(*, entity: str, timestamp: float) -> None:
    _watermark_gauge.labels(entity=entity).set(timestamp)


def record_retry(*, target: str, reason: Literal["transient", "rate_limited"]) -> None:
    _retry_counter.labels(target=target, reason=reason).inc()
