"""Typed event structures shared by the gateway and the delivery worker."""

from __future__ import annotations

import enum
import typing as typ

import msgspec

# Keys the tracker (or the gateway's enrichment) may set on an event. Anything
# else a client sends is carried verbatim in ``CanonicalEvent.props``.
KNOWN_KEYS: frozenset[str] = frozenset(
    {
        "event",
        "event_time",
        "project_id",
        "path",
        "url",
        "referrer",
        "viewport_w",
        "viewport_h",
        "session_id",
        "user_id",
        "ua",
        "utm",
        "server_time",
        "ip",
        "country",
        "region",
        "city",
        "browser",
        "browser_version",
        "os",
        "os_version",
        "device_type",
    }
)

RETRY_META_KEY = "__retry_meta"
UNKNOWN_KEY = "unknown"


class RejectReason(enum.StrEnum):
    """Per-event validation failure codes."""

    INVALID_EVENT = "invalid_event"
    MISSING_EVENT = "missing_event"
    MISSING_EVENT_TIME = "missing_event_time"
    MISSING_PROJECT_ID = "missing_project_id"
    EVENT_TIME_OUT_OF_RANGE = "event_time_out_of_range"


class DeadLetterReason(enum.StrEnum):
    """Why a message ended up on the dead-letter topic."""

    UNPARSEABLE_PAYLOAD = "unparseable_payload"
    RETRIES_EXHAUSTED = "retries_exhausted"
    REPUBLISH_FAILED = "republish_failed"


class CanonicalEvent(msgspec.Struct, kw_only=True):
    """Fixed-schema projection of one validated, enriched event.

    Attributes
    ----------
    event_id : str
        UUID generated at canonicalization time; the sink deduplicates on it.
    project_id : str
        Owning project; also the broker partition key.
    event : str
        Event name, for example ``pageview``.
    event_time : int
        Client timestamp in epoch milliseconds.
    server_time : int
        Gateway receive time in epoch milliseconds.
    props : dict[str, Any]
        Every client key outside :data:`KNOWN_KEYS`, verbatim.

    """

    event_id: str
    project_id: str
    event: str
    event_time: int
    server_time: int
    user_id: str | None = None
    session_id: str | None = None
    path: str | None = None
    url: str | None = None
    referrer: str | None = None
    ua: str | None = None
    browser: str | None = None
    browser_version: str | None = None
    os: str | None = None
    os_version: str | None = None
    device_type: str | None = None
    ip: str | None = None
    country: str | None = None
    region: str | None = None
    city: str | None = None
    viewport_w: int | None = None
    viewport_h: int | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    props: dict[str, typ.Any] = msgspec.field(default_factory=dict)


class RetryMeta(msgspec.Struct, kw_only=True):
    """Retry bookkeeping embedded in a retry envelope as ``__retry_meta``."""

    retry_count: int
    last_error: str
    last_failed_at: int


class DeadLetterRecord(msgspec.Struct, kw_only=True):
    """Terminal failure record written to the dead-letter topic.

    ``original`` is the decoded payload when it could be parsed, otherwise
    the raw message text.
    """

    original: typ.Any
    last_error: str
    failed_at: int
    retry_count: int = 0
    reason: DeadLetterReason = DeadLetterReason.RETRIES_EXHAUSTED


class ScheduledRetry(msgspec.Struct, kw_only=True, frozen=True):
    """Serializable job handed to the delayed retry scheduler.

    Attributes
    ----------
    key : str
        Partition key for the republished message.
    value : str
        JSON-encoded retry envelope.
    retry_count : int
        Retry count carried by the envelope (already incremented).
    last_error : str
        Sink error that triggered the retry.
    original : Any
        Decoded payload, kept so a failed republish can be dead-lettered.

    """

    key: str
    value: str
    retry_count: int
    last_error: str
    original: typ.Any = None


__all__ = [
    "KNOWN_KEYS",
    "RETRY_META_KEY",
    "UNKNOWN_KEY",
    "CanonicalEvent",
    "DeadLetterReason",
    "DeadLetterRecord",
    "RejectReason",
    "RetryMeta",
    "ScheduledRetry",
]
