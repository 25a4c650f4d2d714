"""Delivery worker entrypoint.

Builds the sink, the producer used for dead letters, the Dramatiq retry
scheduler and the Kafka consumer from environment variables, ensures the
sink schema exists, then consumes until SIGINT or SIGTERM.

Configuration is driven by environment variables:

- ``BEACON_SINK_URL``: ``clickhouse[s]://`` or SQLAlchemy async URL
- ``BEACON_KAFKA_*``: broker connection and topic names
- ``BEACON_VALKEY_URL``: Dramatiq broker for delayed retries
- ``BEACON_MAX_RETRIES`` and friends: see :class:`DeliveryConfig`
- ``BEACON_LOG_LEVEL``: Log level (default ``INFO``)

Run the worker with ``beacon-worker`` or ``python -m beacon.delivery.runtime``.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses as dc
import os
import signal
import typing as typ

from beacon.logging import configure_logging, get_logger, log_info, log_warning

if typ.TYPE_CHECKING:
    from aiokafka import AIOKafkaConsumer

    from beacon.broker.config import KafkaConfig
    from beacon.broker.publisher import EventPublisher
    from beacon.delivery.config import DeliveryConfig
    from beacon.delivery.processor import RetryScheduler
    from beacon.sink.protocol import EventSink

__all__ = ["DeliveryDependencies", "main", "serve"]

logger = get_logger(__name__)


@dc.dataclass(frozen=True, slots=True)
class DeliveryDependencies:
    """Service handles the worker owns for its lifetime.

    Attributes
    ----------
    kafka
        Broker connection settings and topic names.
    delivery
        Retry policy and timeouts.
    sink
        Destination of delivered rows.
    publisher
        Producer for the dead-letter topic.
    scheduler
        Durable delayed retry scheduler.
    consumer
        Consumer subscribed to the main and retry topics.

    """

    kafka: KafkaConfig
    delivery: DeliveryConfig
    sink: EventSink
    publisher: EventPublisher
    scheduler: RetryScheduler
    consumer: AIOKafkaConsumer


def build_dependencies() -> DeliveryDependencies:
    """Construct worker dependencies from the environment.

    Raises
    ------
    BrokerConfigError, SinkConfigError, DeliveryConfigError
        If configuration is missing or invalid.

    """
    from aiokafka import AIOKafkaConsumer

    from beacon.broker.config import KafkaConfig
    from beacon.broker.publisher import KafkaEventPublisher
    from beacon.delivery.config import DeliveryConfig
    from beacon.delivery.scheduler import DramatiqRetryScheduler
    from beacon.sink.factory import create_event_sink_from_env

    kafka = KafkaConfig.from_env()
    consumer = AIOKafkaConsumer(
        *kafka.topics.consumed(),
        group_id=kafka.group_id,
        enable_auto_commit=False,
        auto_offset_reset="latest",
        **kafka.client_options(),
    )
    return DeliveryDependencies(
        kafka=kafka,
        delivery=DeliveryConfig.from_env(),
        sink=create_event_sink_from_env(),
        publisher=KafkaEventPublisher(kafka),
        scheduler=DramatiqRetryScheduler(),
        consumer=consumer,
    )


async def serve(deps: DeliveryDependencies) -> int:
    """Run the worker until a stop signal arrives.

    The sink schema is ensured and the producer connected before the
    consumer joins its group, so no message is fetched that could not be
    delivered or dead-lettered.

    Returns
    -------
    int
        Number of messages delivered.

    """
    from beacon.delivery.observability import DeliveryEventLogger
    from beacon.delivery.processor import DeliveryProcessor
    from beacon.delivery.worker import DeliveryWorker

    events = DeliveryEventLogger()
    await deps.sink.ensure_schema()
    await deps.publisher.start()
    try:
        await deps.consumer.start()
        processor = DeliveryProcessor(
            sink=deps.sink,
            publisher=deps.publisher,
            scheduler=deps.scheduler,
            policy=deps.delivery.retry_policy,
            write_timeout_s=deps.delivery.sink_write_timeout_s,
            event_logger=events,
        )
        worker = DeliveryWorker(
            deps.consumer,
            processor,
            redelivery_pause_s=deps.delivery.redelivery_pause_s,
            event_logger=events,
        )
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # add_signal_handler is unavailable on some platforms
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, worker.request_stop)

        events.log_worker_started(
            topics=deps.kafka.topics.consumed(), group_id=deps.kafka.group_id
        )
        await worker.run()
        return worker.processed
    finally:
        await deps.consumer.stop()
        await deps.publisher.stop()
        await deps.sink.close()


def main() -> None:
    """Start the delivery worker."""
    log_level_str = os.environ.get("BEACON_LOG_LEVEL", "INFO")
    normalized_level, invalid_level = configure_logging(log_level_str)
    if invalid_level:
        log_warning(
            logger,
            "Invalid BEACON_LOG_LEVEL %r, falling back to %s",
            log_level_str,
            normalized_level,
        )

    log_info(logger, "Starting Beacon delivery worker (log_level=%s)", normalized_level)
    asyncio.run(serve(build_dependencies()))


if __name__ == "__main__":
    main()
