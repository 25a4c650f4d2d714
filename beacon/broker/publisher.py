"""Kafka producer adapter for the main, retry, and dead-letter topics.

One ``KafkaEventPublisher`` owns one pooled aiokafka producer for the life
of the process. The gateway publishes canonical events through it; the
delivery worker and the retry republisher use it for the retry and
dead-letter topics.

Usage
-----
>>> publisher = KafkaEventPublisher(KafkaConfig.from_env())
>>> await publisher.start()
>>> await publisher.publish_events(events)
>>> await publisher.stop()

"""

from __future__ import annotations

import asyncio
import typing as typ

import msgspec
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from beacon.broker.errors import BrokerUnavailableError
from beacon.broker.messages import encode_key
from beacon.common.time import epoch_ms
from beacon.logging import get_logger, log_info, log_warning

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from beacon.broker.config import KafkaConfig
    from beacon.broker.messages import Headers
    from beacon.events.models import CanonicalEvent, DeadLetterRecord

logger = get_logger(__name__)

type ProducerFactory = cabc.Callable[[KafkaConfig], AIOKafkaProducer]


@typ.runtime_checkable
class EventPublisher(typ.Protocol):
    """Port for publishing to the broker topics."""

    async def start(self) -> None:
        """Connect to the broker."""
        ...

    async def stop(self) -> None:
        """Flush pending sends and disconnect."""
        ...

    async def publish_events(self, events: cabc.Sequence[CanonicalEvent]) -> None:
        """Publish canonical events to the main topic."""
        ...

    async def publish_retry(
        self, key: str | None, value: bytes, headers: Headers
    ) -> None:
        """Publish a retry envelope to the retry topic."""
        ...

    async def publish_dead_letter(
        self, key: str | None, record: DeadLetterRecord
    ) -> None:
        """Publish a dead-letter record to the dead-letter topic."""
        ...


def _default_producer(config: KafkaConfig) -> AIOKafkaProducer:
    return AIOKafkaProducer(acks="all", **config.client_options())


class KafkaEventPublisher:
    """aiokafka-backed :class:`EventPublisher`."""

    def __init__(
        self,
        config: KafkaConfig,
        *,
        producer_factory: ProducerFactory = _default_producer,
    ) -> None:
        """Bind the publisher to its configuration.

        Parameters
        ----------
        config
            Kafka connection settings and topic names.
        producer_factory
            Builds the underlying producer; replaced in tests.

        """
        self._config = config
        self._producer_factory = producer_factory
        self._producer: AIOKafkaProducer | None = None
        self._lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        """Return True when the producer is connected."""
        return self._producer is not None

    async def start(self) -> None:
        """Connect the producer, bounded by the connect timeout.

        Calling ``start`` on a started publisher is a no-op.

        Raises
        ------
        BrokerUnavailableError
            If the brokers cannot be reached within the timeout.

        """
        async with self._lock:
            if self._producer is not None:
                return
            producer = self._producer_factory(self._config)
            timeout_s = self._config.connect_timeout_ms / 1000
            try:
                await asyncio.wait_for(producer.start(), timeout=timeout_s)
            except (TimeoutError, KafkaError) as exc:
                await producer.stop()
                detail = str(exc) or f"no connection within {timeout_s:g}s"
                raise BrokerUnavailableError.connect_failed(detail) from exc
            self._producer = producer
        log_info(
            logger,
            "Kafka producer connected to %s (main topic %s)",
            ",".join(self._config.brokers),
            self._config.topics.main,
        )

    async def stop(self) -> None:
        """Flush and disconnect the producer; idempotent."""
        async with self._lock:
            producer, self._producer = self._producer, None
        if producer is None:
            return
        try:
            await producer.stop()
        except KafkaError as exc:
            log_warning(logger, "Kafka producer stop failed: %s", exc)

    def _require_producer(self) -> AIOKafkaProducer:
        if self._producer is None:
            raise BrokerUnavailableError.not_started()
        return self._producer

    async def _send(
        self,
        topic: str,
        items: cabc.Iterable[tuple[bytes, bytes, Headers | None]],
    ) -> None:
        producer = self._require_producer()
        timestamp_ms = epoch_ms()
        try:
            futures = [
                await producer.send(
                    topic,
                    value=value,
                    key=key,
                    headers=headers,
                    timestamp_ms=timestamp_ms,
                )
                for key, value, headers in items
            ]
            await asyncio.gather(*futures)
        except KafkaError as exc:
            raise BrokerUnavailableError.publish_failed(topic, str(exc)) from exc

    async def publish_events(self, events: cabc.Sequence[CanonicalEvent]) -> None:
        """Publish one message per event to the main topic.

        Each message is keyed by ``project_id`` so a project's events stay
        on one partition. Returns once every send is acknowledged.

        Raises
        ------
        BrokerUnavailableError
            If any send fails or the producer is not started.

        """
        if not events:
            return
        await self._send(
            self._config.topics.main,
            (
                (encode_key(event.project_id), msgspec.json.encode(event), None)
                for event in events
            ),
        )

    async def publish_retry(
        self, key: str | None, value: bytes, headers: Headers
    ) -> None:
        """Publish an encoded retry envelope to the retry topic."""
        await self._send(self._config.topics.retry, [(encode_key(key), value, headers)])

    async def publish_dead_letter(
        self, key: str | None, record: DeadLetterRecord
    ) -> None:
        """Publish a dead-letter record, keyed by the original key."""
        await self._send(
            self._config.topics.dead_letter,
            [(encode_key(key), msgspec.json.encode(record), None)],
        )


__all__ = ["EventPublisher", "KafkaEventPublisher", "ProducerFactory"]
