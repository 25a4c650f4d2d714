"""Batch ingestion workflow behind ``POST /e``.

The service validates every candidate independently, enriches and
canonicalizes the valid ones, drops events of inactive projects, and
publishes the rest to the main topic, awaiting broker acknowledgement.
"""

from __future__ import annotations

import collections
import dataclasses as dc
import typing as typ

from beacon.broker.errors import BrokerUnavailableError
from beacon.common.time import ServerClock
from beacon.events.canonical import to_canonical_event
from beacon.events.enrichment import enrich_event
from beacon.events.validation import validate_event
from beacon.gateway.observability import IngestEventLogger

if typ.TYPE_CHECKING:
    from beacon.broker.publisher import EventPublisher
    from beacon.cache.gate import ActivityGate
    from beacon.events.enrichment import RequestContext
    from beacon.events.models import CanonicalEvent, RejectReason
    from beacon.events.parsing import ParsedBody

PROJECT_DISABLED = "project_disabled"


@dc.dataclass(frozen=True, slots=True)
class IngestOutcome:
    """Counts for one ingestion request.

    Attributes
    ----------
    accepted
        Events published to the broker.
    rejected
        Candidates that failed validation.
    parse_errors
        NDJSON lines that failed to decode.
    dropped
        Valid events gated out because their project is inactive.
    reject_reasons
        Rejection counts per validation rule.

    """

    accepted: int
    rejected: int
    parse_errors: int = 0
    dropped: int = 0
    reject_reasons: dict[RejectReason, int] = dc.field(default_factory=dict)

    @property
    def all_dropped(self) -> bool:
        """Return True when every valid event was gated out."""
        return self.dropped > 0 and self.accepted == 0

    def to_media(self) -> dict[str, typ.Any]:
        """Render the ``202`` response body."""
        if self.all_dropped:
            return {
                "ok": True,
                "accepted": 0,
                "rejected": self.rejected,
                "dropped": self.dropped,
                "reason": PROJECT_DISABLED,
            }
        media: dict[str, typ.Any] = {
            "ok": True,
            "accepted": self.accepted,
            "rejected": self.rejected,
            "parseErrors": self.parse_errors,
        }
        if self.dropped:
            media["dropped"] = self.dropped
            media["reason"] = PROJECT_DISABLED
        return media


class IngestionService:
    """Validate, enrich, gate, and publish event batches."""

    def __init__(
        self,
        publisher: EventPublisher,
        gate: ActivityGate,
        *,
        clock: ServerClock | None = None,
        event_logger: IngestEventLogger | None = None,
    ) -> None:
        """Bind the service to its collaborators.

        Parameters
        ----------
        publisher
            Started publisher for the main topic.
        gate
            Resolves project activity flags.
        clock
            Non-decreasing millisecond clock for ``server_time``.
        event_logger
            Structured ingestion event logger.

        """
        self._publisher = publisher
        self._gate = gate
        self._clock = clock or ServerClock()
        self._events = event_logger or IngestEventLogger()

    def canonicalize(
        self,
        candidates: list[object],
        context: RequestContext,
    ) -> tuple[list[CanonicalEvent], collections.Counter[RejectReason]]:
        """Validate and canonicalize *candidates*, counting rejections.

        One clock reading stamps the whole batch so the validation window
        and ``server_time`` agree.
        """
        now_ms = self._clock.now_ms()
        events: list[CanonicalEvent] = []
        reasons: collections.Counter[RejectReason] = collections.Counter()
        for candidate in candidates:
            reason = validate_event(candidate, now_ms)
            if reason is not None:
                reasons[reason] += 1
                continue
            raw = typ.cast("dict[str, typ.Any]", candidate)
            events.append(to_canonical_event(enrich_event(raw, context, now_ms)))
        return events, reasons

    async def ingest(
        self, parsed: ParsedBody, context: RequestContext
    ) -> IngestOutcome:
        """Run one parsed request body through the pipeline.

        Raises
        ------
        BrokerUnavailableError
            If the broker does not acknowledge every published event.

        """
        events, reasons = self.canonicalize(parsed.events, context)
        rejected = sum(reasons.values())

        gated = await self._gate.partition(events)
        if gated.dropped:
            self._events.log_batch_dropped(
                project_ids=gated.inactive_projects, dropped=len(gated.dropped)
            )

        if gated.kept:
            try:
                await self._publisher.publish_events(gated.kept)
            except BrokerUnavailableError as exc:
                self._events.log_publish_failed(events=len(gated.kept), error=exc)
                raise

        outcome = IngestOutcome(
            accepted=len(gated.kept),
            rejected=rejected,
            parse_errors=parsed.parse_errors,
            dropped=len(gated.dropped),
            reject_reasons=dict(reasons),
        )
        self._events.log_batch_accepted(
            accepted=outcome.accepted,
            rejected=outcome.rejected,
            parse_errors=outcome.parse_errors,
            dropped=outcome.dropped,
        )
        return outcome


__all__ = ["PROJECT_DISABLED", "IngestOutcome", "IngestionService"]
