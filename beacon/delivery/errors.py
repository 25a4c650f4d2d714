"""Errors raised by the delivery worker."""

from __future__ import annotations


class RetrySchedulingError(Exception):
    """Raised when the delayed retry scheduler refuses a job."""

    @classmethod
    def enqueue_failed(cls, detail: str) -> RetrySchedulingError:
        """Create error for a job the scheduler backend did not accept."""
        return cls(f"retry job could not be enqueued: {detail}")


__all__ = ["RetrySchedulingError"]
