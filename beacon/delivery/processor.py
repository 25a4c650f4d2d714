"""Per-message delivery state machine.

Each consumed message moves ``RECEIVED -> SINK_WRITE_ATTEMPTED`` and ends in
exactly one terminal state:

- ``ACKED``: the row was written to the sink.
- ``RESCHEDULED``: the write failed and a retry envelope was handed to the
  durable delayed retry scheduler.
- ``DEAD_LETTERED``: the payload was unparseable, retries were exhausted, or
  the scheduler refused the retry.

Every terminal state means the consumer may commit the offset. When the
dead-letter publish itself fails, :class:`BrokerUnavailableError` propagates
and the caller must leave the offset uncommitted.
"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import enum
import typing as typ

import msgspec

from beacon.broker.messages import RETRY_COUNT_HEADER, build_retry_message, header_value
from beacon.common.time import epoch_ms
from beacon.delivery.config import RetryPolicy
from beacon.delivery.errors import RetrySchedulingError
from beacon.delivery.observability import DeliveryEventLogger
from beacon.events.models import (
    RETRY_META_KEY,
    UNKNOWN_KEY,
    DeadLetterReason,
    DeadLetterRecord,
    ScheduledRetry,
)
from beacon.sink.schema import build_sink_row

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from aiokafka.structs import ConsumerRecord

    from beacon.broker.publisher import EventPublisher
    from beacon.sink.protocol import EventSink

_DEFAULT_WRITE_TIMEOUT_S = 5.0


class MessageState(enum.StrEnum):
    """Delivery states of one consumed message."""

    RECEIVED = "received"
    SINK_WRITE_ATTEMPTED = "sink_write_attempted"
    ACKED = "acked"
    RESCHEDULED = "rescheduled"
    DEAD_LETTERED = "dead_lettered"


@dc.dataclass(frozen=True, slots=True)
class InboundMessage:
    """Broker-agnostic view of one consumed record.

    Attributes
    ----------
    topic, partition, offset
        Position of the record.
    key
        Decoded partition key, if any.
    value
        Raw message value, if any.
    headers
        Transport headers in arrival order.

    """

    topic: str
    partition: int
    offset: int
    key: str | None
    value: bytes | None
    headers: tuple[tuple[str, bytes], ...] = ()

    @classmethod
    def from_record(cls, record: ConsumerRecord[bytes, bytes]) -> InboundMessage:
        """Wrap an aiokafka ``ConsumerRecord``."""
        key = record.key.decode("utf-8", errors="replace") if record.key else None
        return cls(
            topic=record.topic,
            partition=record.partition,
            offset=record.offset,
            key=key,
            value=record.value,
            headers=tuple(record.headers or ()),
        )


@dc.dataclass(frozen=True, slots=True)
class DeliveryOutcome:
    """Terminal state reached for one message."""

    state: MessageState
    retry_count: int = 0
    error: str | None = None
    backoff_ms: int | None = None
    reason: DeadLetterReason | None = None


@typ.runtime_checkable
class RetryScheduler(typ.Protocol):
    """Port for durable delayed retries."""

    async def schedule(self, job: ScheduledRetry, delay_ms: int) -> None:
        """Arrange for *job* to be republished after *delay_ms*.

        Raises
        ------
        RetrySchedulingError
            If the job could not be durably recorded.

        """
        ...


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def resolve_retry_count(
    headers: cabc.Iterable[tuple[str, bytes]],
    payload: dict[str, typ.Any],
) -> int:
    """Return the retry count a message carries.

    The ``retry_count`` transport header wins when present and integral;
    otherwise ``__retry_meta.retry_count`` from the payload; otherwise 0.
    """
    from_header = _as_int(header_value(headers, RETRY_COUNT_HEADER))
    if from_header is not None:
        return max(0, from_header)
    meta = payload.get(RETRY_META_KEY)
    if isinstance(meta, dict):
        from_body = _as_int(meta.get("retry_count"))
        if from_body is not None:
            return max(0, from_body)
    return 0


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _decode_payload(value: bytes | None) -> dict[str, typ.Any] | None:
    if not value:
        return None
    try:
        decoded = msgspec.json.decode(value)
    except msgspec.DecodeError:
        return None
    return decoded if isinstance(decoded, dict) else None


class DeliveryProcessor:
    """Drive one message from receipt to a terminal delivery state."""

    def __init__(  # noqa: PLR0913 - collaborators are injected explicitly
        self,
        *,
        sink: EventSink,
        publisher: EventPublisher,
        scheduler: RetryScheduler,
        policy: RetryPolicy | None = None,
        write_timeout_s: float = _DEFAULT_WRITE_TIMEOUT_S,
        clock: cabc.Callable[[], int] = epoch_ms,
        event_logger: DeliveryEventLogger | None = None,
    ) -> None:
        """Bind the processor to its collaborators.

        Parameters
        ----------
        sink
            Destination of successfully delivered rows.
        publisher
            Used for the dead-letter topic.
        scheduler
            Durable delayed retry scheduler.
        policy
            Backoff and dead-letter thresholds.
        write_timeout_s
            Upper bound on one sink write attempt.
        clock
            Epoch-millisecond time source for failure timestamps.
        event_logger
            Structured delivery event logger.

        """
        self._sink = sink
        self._publisher = publisher
        self._scheduler = scheduler
        self._policy = policy or RetryPolicy()
        self._write_timeout_s = write_timeout_s
        self._clock = clock
        self._events = event_logger or DeliveryEventLogger()

    async def process(self, message: InboundMessage) -> DeliveryOutcome:
        """Deliver *message* and return the terminal state reached.

        Raises
        ------
        BrokerUnavailableError
            If a dead-letter record could not be published; the message must
            not be acknowledged.

        """
        payload = _decode_payload(message.value)
        if payload is None:
            raw = (message.value or b"").decode("utf-8", errors="replace")
            return await self._dead_letter(
                key=message.key,
                original=raw,
                last_error="unparseable payload",
                retry_count=0,
                reason=DeadLetterReason.UNPARSEABLE_PAYLOAD,
            )

        retry_count = resolve_retry_count(message.headers, payload)
        try:
            row = build_sink_row(payload)
            async with asyncio.timeout(self._write_timeout_s):
                await self._sink.write(row)
        except Exception as exc:  # noqa: BLE001 - every sink failure is retryable
            return await self._handle_failure(message, payload, retry_count, exc)

        self._events.log_acked(
            topic=message.topic, partition=message.partition, offset=message.offset
        )
        return DeliveryOutcome(state=MessageState.ACKED, retry_count=retry_count)

    def _key_for(self, message: InboundMessage, payload: dict[str, typ.Any]) -> str:
        if message.key:
            return message.key
        project_id = payload.get("project_id")
        return project_id if isinstance(project_id, str) and project_id else UNKNOWN_KEY

    async def _handle_failure(
        self,
        message: InboundMessage,
        payload: dict[str, typ.Any],
        retry_count: int,
        exc: BaseException,
    ) -> DeliveryOutcome:
        error = _describe(exc)
        key = self._key_for(message, payload)

        if self._policy.exhausted(retry_count):
            return await self._dead_letter(
                key=key,
                original=payload,
                last_error=error,
                retry_count=retry_count,
                reason=DeadLetterReason.RETRIES_EXHAUSTED,
            )

        next_count = retry_count + 1
        backoff_ms = self._policy.backoff_ms(retry_count)
        envelope = build_retry_message(payload, next_count, error, self._clock())
        job = ScheduledRetry(
            key=key,
            value=envelope.value.decode("utf-8"),
            retry_count=next_count,
            last_error=error,
            original=payload,
        )
        try:
            await self._scheduler.schedule(job, backoff_ms)
        except RetrySchedulingError as sched_exc:
            return await self._dead_letter(
                key=key,
                original=payload,
                last_error=f"{error}; republish_failed:{sched_exc}",
                retry_count=next_count,
                reason=DeadLetterReason.REPUBLISH_FAILED,
            )

        self._events.log_rescheduled(
            key=key, retry_count=next_count, backoff_ms=backoff_ms, error=error
        )
        return DeliveryOutcome(
            state=MessageState.RESCHEDULED,
            retry_count=next_count,
            error=error,
            backoff_ms=backoff_ms,
        )

    async def _dead_letter(  # noqa: PLR0913 - mirrors DeadLetterRecord fields
        self,
        *,
        key: str | None,
        original: typ.Any,  # noqa: ANN401 - decoded JSON or raw text
        last_error: str,
        retry_count: int,
        reason: DeadLetterReason,
    ) -> DeliveryOutcome:
        record = DeadLetterRecord(
            original=original,
            last_error=last_error,
            failed_at=self._clock(),
            retry_count=retry_count,
            reason=reason,
        )
        await self._publisher.publish_dead_letter(key, record)
        self._events.log_dead_lettered(
            key=key or UNKNOWN_KEY,
            reason=reason,
            retry_count=retry_count,
            error=last_error,
        )
        return DeliveryOutcome(
            state=MessageState.DEAD_LETTERED,
            retry_count=retry_count,
            error=last_error,
            reason=reason,
        )


__all__ = [
    "DeliveryOutcome",
    "DeliveryProcessor",
    "InboundMessage",
    "MessageState",
    "RetryScheduler",
    "resolve_retry_count",
]
