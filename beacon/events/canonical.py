"""Projection of enriched events onto the fixed canonical schema."""

from __future__ import annotations

import typing as typ
import uuid

from beacon.events.models import KNOWN_KEYS, CanonicalEvent


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _optional_dimension(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return int(value)


def to_canonical_event(enriched: dict[str, typ.Any]) -> CanonicalEvent:
    """Build a :class:`CanonicalEvent` from a validated, enriched event.

    Every key outside :data:`KNOWN_KEYS` is moved verbatim into ``props``
    and a fresh ``event_id`` is generated, so two calls with the same input
    differ only in ``event_id``.
    """
    utm = enriched.get("utm")
    if not isinstance(utm, dict):
        utm = {}

    props = {key: value for key, value in enriched.items() if key not in KNOWN_KEYS}

    return CanonicalEvent(
        event_id=str(uuid.uuid4()),
        project_id=str(enriched["project_id"]),
        event=str(enriched["event"]),
        event_time=int(enriched["event_time"]),
        server_time=int(enriched["server_time"]),
        user_id=_optional_str(enriched.get("user_id")),
        session_id=_optional_str(enriched.get("session_id")),
        path=_optional_str(enriched.get("path")),
        url=_optional_str(enriched.get("url")),
        referrer=_optional_str(enriched.get("referrer")),
        ua=_optional_str(enriched.get("ua")),
        browser=_optional_str(enriched.get("browser")),
        browser_version=_optional_str(enriched.get("browser_version")),
        os=_optional_str(enriched.get("os")),
        os_version=_optional_str(enriched.get("os_version")),
        device_type=_optional_str(enriched.get("device_type")),
        ip=_optional_str(enriched.get("ip")),
        country=_optional_str(enriched.get("country")),
        region=_optional_str(enriched.get("region")),
        city=_optional_str(enriched.get("city")),
        viewport_w=_optional_dimension(enriched.get("viewport_w")),
        viewport_h=_optional_dimension(enriched.get("viewport_h")),
        utm_source=_optional_str(utm.get("source")),
        utm_medium=_optional_str(utm.get("medium")),
        utm_campaign=_optional_str(utm.get("campaign")),
        props=props,
    )


__all__ = ["to_canonical_event"]
