"""Errors raised by the columnar sink adapters."""

from __future__ import annotations


class SinkWriteError(Exception):
    """Raised when a row could not be persisted.

    The delivery worker treats this, and any other exception from a sink
    write, as retryable.
    """

    @classmethod
    def from_backend(cls, backend: str, detail: str) -> SinkWriteError:
        """Create error wrapping a backend driver failure."""
        return cls(f"{backend} insert failed: {detail}")


class SinkConfigError(Exception):
    """Raised when the sink URL is missing or unusable."""

    @classmethod
    def missing_url(cls) -> SinkConfigError:
        """Create error when BEACON_SINK_URL is not set."""
        return cls("BEACON_SINK_URL environment variable is required")

    @classmethod
    def invalid_url(cls, url: str, detail: str) -> SinkConfigError:
        """Create error for a URL no adapter accepts."""
        return cls(f"Invalid sink URL {url!r}: {detail}")


__all__ = ["SinkConfigError", "SinkWriteError"]
