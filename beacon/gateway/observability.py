"""Emit structured observability events for ingestion requests."""

from __future__ import annotations

import enum
import typing as typ

from beacon.logging import get_logger, log_error, log_info, log_warning

if typ.TYPE_CHECKING:
    import collections.abc as cabc

logger = get_logger(__name__)


class IngestEventType(enum.StrEnum):
    """Structured log event types for the ingestion gateway."""

    BATCH_ACCEPTED = "ingest.batch.accepted"
    BATCH_DROPPED = "ingest.batch.dropped"
    PUBLISH_FAILED = "ingest.publish.failed"
    REQUEST_FAILED = "ingest.request.failed"
    RATE_LIMITED = "ingest.request.rate_limited"


class IngestEventLogger:
    """Emit structured ingestion events via femtologging."""

    def log_batch_accepted(
        self,
        *,
        accepted: int,
        rejected: int,
        parse_errors: int,
        dropped: int,
    ) -> None:
        """Log the counts of one published batch."""
        log_info(
            logger,
            "[%s] accepted=%d rejected=%d parse_errors=%d dropped=%d",
            IngestEventType.BATCH_ACCEPTED,
            accepted,
            rejected,
            parse_errors,
            dropped,
        )

    def log_batch_dropped(
        self,
        *,
        project_ids: cabc.Iterable[str],
        dropped: int,
    ) -> None:
        """Log events gated out because their projects are inactive.

        Parameters
        ----------
        project_ids
            Inactive projects whose events were dropped.
        dropped
            Number of events dropped.

        """
        log_info(
            logger,
            "[%s] project_ids=%s dropped=%d",
            IngestEventType.BATCH_DROPPED,
            ",".join(sorted(project_ids)),
            dropped,
        )

    def log_publish_failed(self, *, events: int, error: BaseException) -> None:
        """Log a batch the broker did not acknowledge."""
        log_error(
            logger,
            "[%s] events=%d error_type=%s error_message=%s",
            IngestEventType.PUBLISH_FAILED,
            events,
            type(error).__name__,
            str(error),
        )

    def log_request_failed(self, *, path: str, error: BaseException) -> None:
        """Log an unexpected failure with its traceback."""
        log_error(
            logger,
            "[%s] path=%s error_type=%s error_message=%s",
            IngestEventType.REQUEST_FAILED,
            path,
            type(error).__name__,
            str(error),
            exc_info=error,
        )

    def log_rate_limited(self, *, client: str, limit: int) -> None:
        """Log a request refused by the per-IP rate limiter."""
        log_warning(
            logger,
            "[%s] client=%s limit=%d",
            IngestEventType.RATE_LIMITED,
            client,
            limit,
        )


__all__ = ["IngestEventLogger", "IngestEventType"]
