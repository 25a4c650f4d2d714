"""Per-event validation rules applied before enrichment."""

from __future__ import annotations

import math

from beacon.common.time import MS_PER_DAY
from beacon.events.models import RejectReason

# Accepted distance between event_time and the gateway clock, either side.
EVENT_TIME_WINDOW_MS = 7 * MS_PER_DAY


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _is_non_empty_str(value: object) -> bool:
    return isinstance(value, str) and bool(value)


def validate_event(candidate: object, now_ms: int) -> RejectReason | None:
    """Return the first rule *candidate* breaks, or ``None`` when valid.

    Rules are checked in a fixed order so the reported reason is stable:
    object shape, ``event``, ``event_time``, ``project_id``, then the
    ``event_time`` window (the window edges themselves are accepted).
    """
    if not isinstance(candidate, dict):
        return RejectReason.INVALID_EVENT
    if not _is_non_empty_str(candidate.get("event")):
        return RejectReason.MISSING_EVENT

    event_time = candidate.get("event_time")
    if not _is_number(event_time):
        return RejectReason.MISSING_EVENT_TIME
    if not _is_non_empty_str(candidate.get("project_id")):
        return RejectReason.MISSING_PROJECT_ID
    if isinstance(event_time, float) and not math.isfinite(event_time):
        return RejectReason.EVENT_TIME_OUT_OF_RANGE
    if abs(now_ms - event_time) > EVENT_TIME_WINDOW_MS:
        return RejectReason.EVENT_TIME_OUT_OF_RANGE
    return None


__all__ = ["EVENT_TIME_WINDOW_MS", "validate_event"]
