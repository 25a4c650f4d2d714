"""Delivery worker: sink writes, delayed retries, and dead-lettering.

The retry republisher (``beacon.delivery.scheduler``) is not imported here
because importing it installs the process-wide Dramatiq broker.
"""

from __future__ import annotations

from .config import DeliveryConfig, DeliveryConfigError, RetryPolicy
from .errors import RetrySchedulingError
from .observability import DeliveryEventLogger, DeliveryEventType
from .processor import (
    DeliveryOutcome,
    DeliveryProcessor,
    InboundMessage,
    MessageState,
    RetryScheduler,
    resolve_retry_count,
)
from .worker import DeliveryWorker

__all__ = [
    "DeliveryConfig",
    "DeliveryConfigError",
    "DeliveryEventLogger",
    "DeliveryEventType",
    "DeliveryOutcome",
    "DeliveryProcessor",
    "DeliveryWorker",
    "InboundMessage",
    "MessageState",
    "RetryPolicy",
    "RetryScheduler",
    "RetrySchedulingError",
    "resolve_retry_count",
]
