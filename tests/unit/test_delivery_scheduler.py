"""Unit tests for the Dramatiq-backed delayed retry scheduler."""

from __future__ import annotations

import typing as typ
from unittest import mock

import dramatiq
import msgspec
import pytest
from dramatiq.brokers.stub import StubBroker
from dramatiq.common import dq_name
from dramatiq.errors import QueueNotFound
from redis.exceptions import ConnectionError as RedisConnectionError

from beacon.broker.errors import BrokerUnavailableError
from beacon.broker.messages import LAST_ERROR_HEADER, RETRY_COUNT_HEADER, header_value
from beacon.delivery import scheduler as scheduler_module
from beacon.delivery.errors import RetrySchedulingError
from beacon.delivery.scheduler import (
    RETRY_QUEUE,
    DramatiqRetryScheduler,
    ReleasePublisherMiddleware,
    release_thread_publisher,
    republish,
    republish_retry_job,
)
from beacon.events.models import DeadLetterReason, ScheduledRetry
from tests.helpers.fakes import FakePublisher

if typ.TYPE_CHECKING:
    import collections.abc as cabc


def _job(**overrides: object) -> ScheduledRetry:
    fields: dict[str, object] = {
        "key": "proj-1",
        "value": '{"event_id":"e1","__retry_meta":{"retry_count":2}}',
        "retry_count": 2,
        "last_error": "ClickHouse insert failed: timeout",
        "original": {"event_id": "e1"},
    }
    fields.update(overrides)
    return ScheduledRetry(**fields)  # type: ignore[arg-type]


@pytest.fixture
def stub_broker() -> StubBroker:
    """Return the process-wide stub broker with empty queues."""
    broker = dramatiq.get_broker()
    assert isinstance(broker, StubBroker), "tests must run on the stub broker"
    broker.flush_all()
    return broker


class TestDramatiqRetryScheduler:
    """Tests for enqueueing delayed retry jobs."""

    @pytest.mark.asyncio
    async def test_job_is_enqueued_on_delay_queue(
        self, stub_broker: StubBroker
    ) -> None:
        """The job lands on the delay queue with its backoff as ETA."""
        await DramatiqRetryScheduler().schedule(_job(), 4000)

        queue = stub_broker.queues[dq_name(RETRY_QUEUE)]
        assert queue.qsize() == 1, "expected one delayed message"
        message = dramatiq.Message.decode(queue.get())
        assert message.actor_name == "republish_retry_job"
        assert "eta" in message.options
        assert msgspec.convert(message.args[0], ScheduledRetry) == _job()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [QueueNotFound("beacon-retries"), RedisConnectionError("refused")]
    )
    async def test_enqueue_failure_is_scheduling_error(self, error: Exception) -> None:
        """Broker failures surface as RetrySchedulingError."""
        actor = mock.Mock()
        actor.send_with_options.side_effect = error

        with pytest.raises(RetrySchedulingError, match="could not be enqueued"):
            await DramatiqRetryScheduler(actor).schedule(_job(), 1000)


class TestRepublish:
    """Tests for republishing a due retry job."""

    @pytest.mark.asyncio
    async def test_envelope_goes_to_retry_topic_with_headers(self) -> None:
        """The stored envelope is republished verbatim with headers."""
        publisher = FakePublisher()
        job = _job()

        reason = await republish(job, publisher)

        assert reason is None
        published = publisher.retries[0]
        assert published.key == "proj-1"
        assert published.value == job.value.encode("utf-8")
        assert header_value(published.headers, RETRY_COUNT_HEADER) == "2"
        assert header_value(published.headers, LAST_ERROR_HEADER) == job.last_error

    @pytest.mark.asyncio
    async def test_failed_republish_is_dead_lettered(self) -> None:
        """When the retry topic is unreachable the job is dead-lettered."""
        publisher = FakePublisher(fail_retry=True)

        reason = await republish(_job(), publisher)

        assert reason is DeadLetterReason.REPUBLISH_FAILED
        key, record = publisher.dead_letters[0]
        assert key == "proj-1"
        assert record.original == {"event_id": "e1"}
        assert record.retry_count == 2
        assert record.last_error.startswith("ClickHouse insert failed: timeout")
        assert "republish_failed:" in record.last_error

    @pytest.mark.asyncio
    async def test_total_broker_outage_propagates(self) -> None:
        """If neither topic accepts the job Dramatiq must retry it."""
        publisher = FakePublisher(fail_retry=True, fail_dead_letter=True)

        with pytest.raises(BrokerUnavailableError):
            await republish(_job(), publisher)


class TestRepublishActor:
    """Tests for the actor and its per-thread publisher cache."""

    @pytest.fixture
    def publishers(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> cabc.Iterator[list[FakePublisher]]:
        """Record every publisher the actor builds; release them afterwards."""
        built: list[FakePublisher] = []

        def factory() -> FakePublisher:
            publisher = FakePublisher()
            built.append(publisher)
            return publisher

        monkeypatch.setattr(scheduler_module, "_publisher_factory", factory)
        yield built
        release_thread_publisher()

    def test_actor_decodes_job_and_republishes(
        self, publishers: list[FakePublisher]
    ) -> None:
        """The actor converts its JSON argument back into a ScheduledRetry."""
        republish_retry_job(msgspec.to_builtins(_job()))

        assert len(publishers) == 1
        (retry,) = publishers[0].retries
        assert retry.key == "proj-1"

    def test_publisher_is_reused_across_jobs(
        self, publishers: list[FakePublisher]
    ) -> None:
        """Consecutive jobs on one thread share a single started producer."""
        republish_retry_job(msgspec.to_builtins(_job()))
        republish_retry_job(msgspec.to_builtins(_job(key="proj-2")))

        assert len(publishers) == 1, "expected one publisher per thread"
        assert publishers[0].stop_calls == 0
        assert [retry.key for retry in publishers[0].retries] == ["proj-1", "proj-2"]

    def test_release_stops_the_cached_publisher(
        self, publishers: list[FakePublisher]
    ) -> None:
        """Releasing the thread's publisher stops it and drops it from the cache."""
        republish_retry_job(msgspec.to_builtins(_job()))

        release_thread_publisher()

        assert publishers[0].stop_calls == 1
        republish_retry_job(msgspec.to_builtins(_job()))
        assert len(publishers) == 2, "a fresh publisher follows a release"

    def test_middleware_is_installed_on_the_broker(
        self, stub_broker: StubBroker
    ) -> None:
        """Worker threads release their publisher on shutdown."""
        assert any(
            isinstance(middleware, ReleasePublisherMiddleware)
            for middleware in stub_broker.middleware
        )
