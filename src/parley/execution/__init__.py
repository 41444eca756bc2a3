"""Parley execution utilities - the rate-limit-aware retry queue."""

from parley.execution.retry_queue import (
    QueuedRequest,
    RetryQueue,
    compute_backoff_delay,
)

__all__ = [
    "QueuedRequest",
    "RetryQueue",
    "compute_backoff_delay",
]
