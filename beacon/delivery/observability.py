"""Emit structured observability events for message delivery.

Usage
-----
>>> event_logger = DeliveryEventLogger()
>>> event_logger.log_acked(topic="beacon-events", partition=0, offset=42)

"""

from __future__ import annotations

import enum

from beacon.logging import get_logger, log_error, log_info, log_warning

logger = get_logger(__name__)


class DeliveryEventType(enum.StrEnum):
    """Structured log event types for the delivery worker."""

    MESSAGE_ACKED = "delivery.message.acked"
    MESSAGE_RESCHEDULED = "delivery.message.rescheduled"
    MESSAGE_DEAD_LETTERED = "delivery.message.dead_lettered"
    DEAD_LETTER_FAILED = "delivery.dead_letter.failed"
    RETRY_REPUBLISHED = "delivery.retry.republished"
    WORKER_STARTED = "delivery.worker.started"
    WORKER_STOPPED = "delivery.worker.stopped"


class DeliveryEventLogger:
    """Emit structured delivery events via femtologging."""

    def log_acked(self, *, topic: str, partition: int, offset: int) -> None:
        """Log a message written to the sink."""
        log_info(
            logger,
            "[%s] topic=%s partition=%d offset=%d",
            DeliveryEventType.MESSAGE_ACKED,
            topic,
            partition,
            offset,
        )

    def log_rescheduled(
        self,
        *,
        key: str,
        retry_count: int,
        backoff_ms: int,
        error: str,
    ) -> None:
        """Log a failed write handed to the delayed retry scheduler.

        Parameters
        ----------
        key
            Partition key of the message.
        retry_count
            Retry count the envelope will carry.
        backoff_ms
            Delay before the envelope is republished.
        error
            Sink failure that caused the retry.

        """
        log_warning(
            logger,
            "[%s] key=%s retry_count=%d backoff_ms=%d error=%r",
            DeliveryEventType.MESSAGE_RESCHEDULED,
            key,
            retry_count,
            backoff_ms,
            error,
        )

    def log_dead_lettered(
        self,
        *,
        key: str,
        reason: str,
        retry_count: int,
        error: str,
    ) -> None:
        """Log a message routed to the dead-letter topic."""
        log_error(
            logger,
            "[%s] key=%s reason=%s retry_count=%d error=%r",
            DeliveryEventType.MESSAGE_DEAD_LETTERED,
            key,
            reason,
            retry_count,
            error,
        )

    def log_dead_letter_failed(
        self,
        *,
        topic: str,
        partition: int,
        offset: int,
        error: BaseException,
    ) -> None:
        """Log a dead-letter publish failure; the offset stays uncommitted."""
        log_error(
            logger,
            "[%s] topic=%s partition=%d offset=%d error_type=%s error_message=%s",
            DeliveryEventType.DEAD_LETTER_FAILED,
            topic,
            partition,
            offset,
            type(error).__name__,
            str(error),
            exc_info=error,
        )

    def log_retry_republished(self, *, key: str, retry_count: int) -> None:
        """Log a delayed retry placed back on the retry topic."""
        log_info(
            logger,
            "[%s] key=%s retry_count=%d",
            DeliveryEventType.RETRY_REPUBLISHED,
            key,
            retry_count,
        )

    def log_worker_started(self, *, topics: tuple[str, ...], group_id: str) -> None:
        """Log consumer start."""
        log_info(
            logger,
            "[%s] topics=%s group_id=%s",
            DeliveryEventType.WORKER_STARTED,
            ",".join(topics),
            group_id,
        )

    def log_worker_stopped(self, *, processed: int) -> None:
        """Log consumer shutdown."""
        log_info(
            logger,
            "[%s] processed=%d",
            DeliveryEventType.WORKER_STOPPED,
            processed,
        )


__all__ = ["DeliveryEventLogger", "DeliveryEventType"]
