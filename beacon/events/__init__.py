"""Event parsing, validation, enrichment, and canonicalization."""

from __future__ import annotations

from .canonical import to_canonical_event
from .enrichment import RequestContext, enrich_event, parse_ua
from .errors import (
    ClientInputError,
    EmptyBodyError,
    InvalidBodyError,
    PayloadTooLargeError,
    UnsupportedContentTypeError,
)
from .models import (
    KNOWN_KEYS,
    CanonicalEvent,
    DeadLetterReason,
    DeadLetterRecord,
    RejectReason,
    RetryMeta,
    ScheduledRetry,
)
from .parsing import ParsedBody, parse_body, parse_ndjson
from .validation import EVENT_TIME_WINDOW_MS, validate_event

__all__ = [
    "EVENT_TIME_WINDOW_MS",
    "KNOWN_KEYS",
    "CanonicalEvent",
    "ClientInputError",
    "DeadLetterReason",
    "DeadLetterRecord",
    "EmptyBodyError",
    "InvalidBodyError",
    "ParsedBody",
    "PayloadTooLargeError",
    "RejectReason",
    "RequestContext",
    "RetryMeta",
    "ScheduledRetry",
    "UnsupportedContentTypeError",
    "enrich_event",
    "parse_body",
    "parse_ndjson",
    "parse_ua",
    "to_canonical_event",
    "validate_event",
]
