"""Durable delayed retries on a Dramatiq delay queue.

A failed sink write is not held in worker memory: the retry envelope is
enqueued as a ``republish_retry_job`` message with ``delay=backoff_ms`` on
a Valkey-backed Dramatiq broker, so pending retries survive worker
restarts. When the delay expires a Dramatiq worker republishes the
envelope to the retry topic, or dead-letters it if that fails.

Run the republisher with::

    dramatiq beacon.delivery.scheduler

"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import threading
import typing as typ

import dramatiq
import msgspec
from dramatiq.errors import DramatiqError
from redis.exceptions import RedisError

from beacon.broker.config import KafkaConfig
from beacon.broker.errors import BrokerUnavailableError
from beacon.broker.messages import retry_headers
from beacon.broker.publisher import KafkaEventPublisher
from beacon.common.time import epoch_ms
from beacon.delivery._broker import ensure_broker_configured
from beacon.delivery.errors import RetrySchedulingError
from beacon.delivery.observability import DeliveryEventLogger
from beacon.events.models import DeadLetterReason, DeadLetterRecord, ScheduledRetry

if typ.TYPE_CHECKING:
    from beacon.broker.publisher import EventPublisher

RETRY_QUEUE = "beacon-retries"

ensure_broker_configured()


async def republish(
    job: ScheduledRetry,
    publisher: EventPublisher,
    *,
    event_logger: DeliveryEventLogger | None = None,
) -> DeadLetterReason | None:
    """Republish *job* to the retry topic, dead-lettering on failure.

    Parameters
    ----------
    job
        Retry job recorded by the delivery worker.
    publisher
        Started publisher for the retry and dead-letter topics.
    event_logger
        Structured delivery event logger.

    Returns
    -------
    DeadLetterReason | None
        ``REPUBLISH_FAILED`` when the job was dead-lettered instead, else
        ``None``.

    Raises
    ------
    BrokerUnavailableError
        If neither the retry nor the dead-letter publish succeeded; Dramatiq
        then retries the job.

    """
    events = event_logger or DeliveryEventLogger()
    try:
        await publisher.publish_retry(
            job.key,
            job.value.encode("utf-8"),
            retry_headers(job.retry_count, job.last_error),
        )
    except BrokerUnavailableError as exc:
        last_error = f"{job.last_error}; republish_failed:{exc}"
        record = DeadLetterRecord(
            original=job.original,
            last_error=last_error,
            failed_at=epoch_ms(),
            retry_count=job.retry_count,
            reason=DeadLetterReason.REPUBLISH_FAILED,
        )
        await publisher.publish_dead_letter(job.key, record)
        events.log_dead_lettered(
            key=job.key,
            reason=DeadLetterReason.REPUBLISH_FAILED,
            retry_count=job.retry_count,
            error=last_error,
        )
        return DeadLetterReason.REPUBLISH_FAILED

    events.log_retry_republished(key=job.key, retry_count=job.retry_count)
    return None


@dc.dataclass(slots=True)
class _ThreadPublisher:
    """Event loop and producer owned by one Dramatiq worker thread.

    aiokafka producers are bound to the loop that started them, so the loop
    is kept open between jobs rather than replaced by ``asyncio.run``.
    """

    loop: asyncio.AbstractEventLoop
    publisher: EventPublisher


# Reused across actor invocations so each job does not pay a broker handshake.
_PUBLISHER_CACHE: dict[int, _ThreadPublisher] = {}
_CACHE_LOCK = threading.Lock()


def _publisher_factory() -> EventPublisher:
    return KafkaEventPublisher(KafkaConfig.from_env())


def _get_or_create_thread_publisher() -> _ThreadPublisher:
    """Return the calling thread's cached publisher, creating it if absent."""
    thread_id = threading.get_ident()
    with _CACHE_LOCK:
        cached = _PUBLISHER_CACHE.get(thread_id)
        if cached is None:
            cached = _ThreadPublisher(
                loop=asyncio.new_event_loop(),
                publisher=_publisher_factory(),
            )
            _PUBLISHER_CACHE[thread_id] = cached
        return cached


def release_thread_publisher() -> None:
    """Stop and forget the calling thread's publisher, if it has one."""
    with _CACHE_LOCK:
        cached = _PUBLISHER_CACHE.pop(threading.get_ident(), None)
    if cached is None:
        return
    try:
        cached.loop.run_until_complete(cached.publisher.stop())
    finally:
        cached.loop.close()


async def _republish_with_publisher(
    job: ScheduledRetry, publisher: EventPublisher
) -> None:
    await publisher.start()
    await republish(job, publisher)


class ReleasePublisherMiddleware(dramatiq.Middleware):
    """Close a worker thread's cached producer when the thread exits."""

    def before_worker_thread_shutdown(
        self, broker: dramatiq.Broker, thread: object
    ) -> None:
        """Run on the exiting worker thread itself."""
        release_thread_publisher()


dramatiq.get_broker().add_middleware(ReleasePublisherMiddleware())


@dramatiq.actor(queue_name=RETRY_QUEUE, max_retries=5)
def republish_retry_job(job: dict[str, typ.Any]) -> None:
    """Dramatiq actor republishing one delayed retry envelope.

    Parameters
    ----------
    job
        ``ScheduledRetry`` as plain JSON builtins.

    """
    scheduled = msgspec.convert(job, ScheduledRetry)
    cached = _get_or_create_thread_publisher()
    cached.loop.run_until_complete(
        _republish_with_publisher(scheduled, cached.publisher)
    )


class DramatiqRetryScheduler:
    """:class:`~beacon.delivery.processor.RetryScheduler` on a Dramatiq actor."""

    def __init__(self, actor: dramatiq.Actor = republish_retry_job) -> None:
        """Bind the scheduler to the republishing actor."""
        self._actor = actor

    async def schedule(self, job: ScheduledRetry, delay_ms: int) -> None:
        """Enqueue *job* to run after *delay_ms* milliseconds.

        Raises
        ------
        RetrySchedulingError
            If the broker did not accept the message.

        """
        payload = msgspec.to_builtins(job)
        try:
            await asyncio.to_thread(
                self._actor.send_with_options,
                args=(payload,),
                delay=delay_ms,
            )
        except (DramatiqError, RedisError) as exc:
            raise RetrySchedulingError.enqueue_failed(str(exc)) from exc


__all__ = [
    "RETRY_QUEUE",
    "DramatiqRetryScheduler",
    "ReleasePublisherMiddleware",
    "republish",
    "release_thread_publisher",
    "republish_retry_job",
]
