"""Kafka consumer loop for the delivery worker.

Records are processed one at a time per partition with manual commits: an
offset is committed only after :class:`DeliveryProcessor` reports a terminal
state. If a message could not even be dead-lettered, the consumer seeks back
to it and pauses before trying again, so nothing is skipped.
"""

from __future__ import annotations

import asyncio
import contextlib
import typing as typ

from aiokafka.structs import TopicPartition

from beacon.broker.errors import BrokerUnavailableError
from beacon.delivery.observability import DeliveryEventLogger
from beacon.delivery.processor import InboundMessage

if typ.TYPE_CHECKING:
    from aiokafka import AIOKafkaConsumer
    from aiokafka.structs import ConsumerRecord

    from beacon.delivery.processor import DeliveryProcessor

_POLL_TIMEOUT_MS = 500
_DEFAULT_REDELIVERY_PAUSE_S = 5.0


class DeliveryWorker:
    """Consume main and retry topics and deliver each record."""

    def __init__(
        self,
        consumer: AIOKafkaConsumer,
        processor: DeliveryProcessor,
        *,
        redelivery_pause_s: float = _DEFAULT_REDELIVERY_PAUSE_S,
        event_logger: DeliveryEventLogger | None = None,
    ) -> None:
        """Bind the worker to a started consumer and a processor.

        Parameters
        ----------
        consumer
            Started aiokafka consumer with auto-commit disabled.
        processor
            Per-message delivery state machine.
        redelivery_pause_s
            Pause after seeking back to a message that could not be
            dead-lettered.
        event_logger
            Structured delivery event logger.

        """
        self._consumer = consumer
        self._processor = processor
        self._redelivery_pause_s = redelivery_pause_s
        self._events = event_logger or DeliveryEventLogger()
        self._stopping = asyncio.Event()
        self._processed = 0

    @property
    def processed(self) -> int:
        """Number of messages that reached a terminal state."""
        return self._processed

    def request_stop(self) -> None:
        """Ask :meth:`run` to return after the in-flight message."""
        self._stopping.set()

    async def run(self) -> None:
        """Poll and deliver until :meth:`request_stop` is called."""
        while not self._stopping.is_set():
            batches = await self._consumer.getmany(timeout_ms=_POLL_TIMEOUT_MS)
            for partition, records in batches.items():
                if self._stopping.is_set():
                    break
                await self._deliver_partition(partition, records)
        self._events.log_worker_stopped(processed=self._processed)

    async def _deliver_partition(
        self,
        partition: TopicPartition,
        records: list[ConsumerRecord[bytes, bytes]],
    ) -> None:
        for record in records:
            if self._stopping.is_set():
                # Uncommitted records are redelivered after restart.
                return
            delivered = await self.deliver(record)
            if not delivered:
                # The remaining records were fetched past the seek point.
                return

    async def deliver(self, record: ConsumerRecord[bytes, bytes]) -> bool:
        """Process and commit one record.

        Returns
        -------
        bool
            ``False`` when the record was left uncommitted and the consumer
            was rewound to it.

        """
        message = InboundMessage.from_record(record)
        partition = TopicPartition(record.topic, record.partition)
        try:
            await self._processor.process(message)
        except BrokerUnavailableError as exc:
            self._events.log_dead_letter_failed(
                topic=record.topic,
                partition=record.partition,
                offset=record.offset,
                error=exc,
            )
            self._consumer.seek(partition, record.offset)
            await self._pause()
            return False

        await self._consumer.commit({partition: record.offset + 1})
        self._processed += 1
        return True

    async def _pause(self) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(
                self._stopping.wait(), timeout=self._redelivery_pause_s
            )


__all__ = ["DeliveryWorker"]
