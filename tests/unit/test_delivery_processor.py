"""Unit tests for the per-message delivery state machine."""

from __future__ import annotations

import asyncio

import msgspec
import pytest

from beacon.broker.errors import BrokerUnavailableError
from beacon.broker.messages import retry_headers
from beacon.delivery.config import RetryPolicy
from beacon.delivery.processor import (
    DeliveryProcessor,
    InboundMessage,
    MessageState,
    resolve_retry_count,
)
from beacon.events.models import DeadLetterReason
from tests.helpers.event_builders import NOW_MS, encoded_event
from tests.helpers.fakes import FakePublisher, FakeScheduler, FakeSink, FixedClock


def _message(
    value: bytes | None,
    *,
    key: str | None = "proj-1",
    headers: tuple[tuple[str, bytes], ...] = (),
    topic: str = "beacon-events",
) -> InboundMessage:
    return InboundMessage(
        topic=topic, partition=0, offset=7, key=key, value=value, headers=headers
    )


def _processor(
    sink: FakeSink,
    publisher: FakePublisher | None = None,
    scheduler: FakeScheduler | None = None,
    **kwargs: object,
) -> tuple[DeliveryProcessor, FakePublisher, FakeScheduler]:
    publisher = publisher or FakePublisher()
    scheduler = scheduler or FakeScheduler()
    processor = DeliveryProcessor(
        sink=sink,
        publisher=publisher,
        scheduler=scheduler,
        clock=FixedClock(NOW_MS),
        **kwargs,  # type: ignore[arg-type]
    )
    return processor, publisher, scheduler


def _redeliver(
    job_value: str, retry_count: int, error: str, key: str
) -> InboundMessage:
    return _message(
        job_value.encode("utf-8"),
        key=key,
        headers=tuple(retry_headers(retry_count, error)),
        topic="beacon-events-retry",
    )


class TestResolveRetryCount:
    """Tests for reading the retry count from headers or payload."""

    def test_header_wins_over_body(self) -> None:
        """A transport header overrides the embedded metadata."""
        payload = {"__retry_meta": {"retry_count": 1}}

        assert resolve_retry_count([("retry_count", b"3")], payload) == 3

    def test_body_is_used_without_header(self) -> None:
        """Embedded metadata is read when headers were dropped."""
        payload = {"__retry_meta": {"retry_count": 2}}

        assert resolve_retry_count([], payload) == 2

    def test_garbage_header_falls_back_to_body(self) -> None:
        """A non-integer header is ignored."""
        payload = {"__retry_meta": {"retry_count": 4}}

        assert resolve_retry_count([("retry_count", b"many")], payload) == 4

    def test_defaults_to_zero(self) -> None:
        """First deliveries carry no retry count."""
        assert resolve_retry_count([], {"event": "pageview"}) == 0


class TestDeliveryProcessor:
    """Tests for DeliveryProcessor.process."""

    @pytest.mark.asyncio
    async def test_successful_write_is_acked(self) -> None:
        """A written row ends ACKED with nothing published."""
        sink = FakeSink()
        processor, publisher, scheduler = _processor(sink)

        outcome = await processor.process(_message(encoded_event()))

        assert outcome.state is MessageState.ACKED
        assert len(sink.rows) == 1
        assert sink.rows[0]["event_id"] == "00000000-0000-4000-8000-000000000001"
        assert not publisher.dead_letters
        assert not scheduler.jobs

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [b"{not json", b"", None, b"[1, 2]"])
    async def test_unparseable_payload_is_dead_lettered(
        self, value: bytes | None
    ) -> None:
        """Undecodable or non-object payloads go straight to the DLQ."""
        sink = FakeSink()
        processor, publisher, _ = _processor(sink)

        outcome = await processor.process(_message(value))

        assert outcome.state is MessageState.DEAD_LETTERED
        assert outcome.reason is DeadLetterReason.UNPARSEABLE_PAYLOAD
        assert sink.attempts == 0, "unparseable payloads never reach the sink"
        key, record = publisher.dead_letters[0]
        assert key == "proj-1"
        assert record.retry_count == 0
        assert record.last_error == "unparseable payload"
        assert record.original == (value or b"").decode("utf-8")

    @pytest.mark.asyncio
    async def test_first_failure_is_rescheduled_with_initial_backoff(self) -> None:
        """A failed write schedules retry 1 after 1000 ms."""
        processor, _, scheduler = _processor(FakeSink(failures=1))

        outcome = await processor.process(_message(encoded_event()))

        assert outcome.state is MessageState.RESCHEDULED
        assert outcome.retry_count == 1
        assert outcome.backoff_ms == 1000
        job, delay = scheduler.jobs[0]
        assert delay == 1000
        assert job.key == "proj-1"
        envelope = msgspec.json.decode(job.value)
        assert envelope["__retry_meta"]["retry_count"] == 1
        assert envelope["__retry_meta"]["last_failed_at"] == NOW_MS
        assert "Fake insert failed" in envelope["__retry_meta"]["last_error"]
        assert envelope["event_id"] == "00000000-0000-4000-8000-000000000001"

    @pytest.mark.asyncio
    async def test_backoff_doubles_until_retries_are_exhausted(self) -> None:
        """Retries back off 1s..16s, then the message is dead-lettered."""
        sink = FakeSink(always_fail=True)
        processor, publisher, scheduler = _processor(sink)

        outcome = await processor.process(_message(encoded_event()))
        while outcome.state is MessageState.RESCHEDULED:
            job, _delay = scheduler.jobs[-1]
            outcome = await processor.process(
                _redeliver(job.value, job.retry_count, job.last_error, job.key)
            )

        assert scheduler.delays == [1000, 2000, 4000, 8000, 16000]
        assert sink.attempts == 6, "expected the first attempt plus five retries"
        assert outcome.state is MessageState.DEAD_LETTERED
        assert outcome.reason is DeadLetterReason.RETRIES_EXHAUSTED
        _key, record = publisher.dead_letters[0]
        assert record.retry_count == 5
        assert record.original["event_id"] == "00000000-0000-4000-8000-000000000001"

    @pytest.mark.asyncio
    async def test_recovery_after_retries_is_acked(self) -> None:
        """A retry that succeeds is acknowledged like any other message."""
        sink = FakeSink(failures=2)
        processor, publisher, scheduler = _processor(sink)

        outcome = await processor.process(_message(encoded_event()))
        while outcome.state is MessageState.RESCHEDULED:
            job, _delay = scheduler.jobs[-1]
            outcome = await processor.process(
                _redeliver(job.value, job.retry_count, job.last_error, job.key)
            )

        assert outcome.state is MessageState.ACKED
        assert outcome.retry_count == 2
        assert len(sink.rows) == 1
        assert not publisher.dead_letters

    @pytest.mark.asyncio
    async def test_custom_policy_changes_threshold(self) -> None:
        """With max_retries=0 the first failure is dead-lettered."""
        processor, publisher, scheduler = _processor(
            FakeSink(always_fail=True), policy=RetryPolicy(max_retries=0)
        )

        outcome = await processor.process(_message(encoded_event()))

        assert outcome.state is MessageState.DEAD_LETTERED
        assert not scheduler.jobs
        assert publisher.dead_letters[0][1].reason is DeadLetterReason.RETRIES_EXHAUSTED

    @pytest.mark.asyncio
    async def test_scheduler_failure_is_dead_lettered(self) -> None:
        """A refused retry is dead-lettered as republish_failed."""
        processor, publisher, _ = _processor(
            FakeSink(failures=1), scheduler=FakeScheduler(fail=True)
        )

        outcome = await processor.process(_message(encoded_event()))

        assert outcome.state is MessageState.DEAD_LETTERED
        assert outcome.reason is DeadLetterReason.REPUBLISH_FAILED
        _key, record = publisher.dead_letters[0]
        assert record.retry_count == 1
        assert "republish_failed:" in record.last_error
        assert record.last_error.startswith("Fake insert failed")

    @pytest.mark.asyncio
    async def test_dead_letter_failure_propagates(self) -> None:
        """If the DLQ is unreachable the caller must not commit."""
        processor, _, _ = _processor(
            FakeSink(), publisher=FakePublisher(fail_dead_letter=True)
        )

        with pytest.raises(BrokerUnavailableError):
            await processor.process(_message(b"{not json"))

    @pytest.mark.asyncio
    async def test_slow_write_times_out_and_is_rescheduled(self) -> None:
        """A sink write that exceeds its timeout counts as a failure."""

        class _HangingSink(FakeSink):
            async def write(self, row: dict[str, object]) -> None:
                await asyncio.Event().wait()

        processor, _, scheduler = _processor(_HangingSink(), write_timeout_s=0.01)

        outcome = await processor.process(_message(encoded_event()))

        assert outcome.state is MessageState.RESCHEDULED
        assert outcome.error == "TimeoutError"
        assert len(scheduler.jobs) == 1

    @pytest.mark.asyncio
    async def test_missing_key_falls_back_to_project_id(self) -> None:
        """Retries of unkeyed messages are keyed by project_id."""
        processor, _, scheduler = _processor(FakeSink(failures=1))

        await processor.process(_message(encoded_event(project_id="proj-9"), key=None))

        assert scheduler.jobs[0][0].key == "proj-9"
