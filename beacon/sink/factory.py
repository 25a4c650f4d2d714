"""Select an event sink adapter from a URL."""

from __future__ import annotations

import os
import typing as typ
import urllib.parse

from beacon.sink.clickhouse import PLAIN_SCHEME, SECURE_SCHEME, ClickHouseEventSink
from beacon.sink.errors import SinkConfigError
from beacon.sink.sql import SqlEventSink

if typ.TYPE_CHECKING:
    from beacon.sink.protocol import EventSink

_CLICKHOUSE_SCHEMES = frozenset({PLAIN_SCHEME, SECURE_SCHEME})


def create_event_sink(url: str) -> EventSink:
    """Return the adapter for *url*.

    ``clickhouse://`` and ``clickhouses://`` select ClickHouse; any other
    scheme is handed to SQLAlchemy (for example ``postgresql+asyncpg://`` or
    ``sqlite+aiosqlite://``).

    Raises
    ------
    SinkConfigError
        If the URL is blank or SQLAlchemy cannot load a dialect for it.

    """
    stripped = url.strip()
    if not stripped:
        raise SinkConfigError.missing_url()

    scheme = urllib.parse.urlsplit(stripped).scheme.lower()
    if scheme in _CLICKHOUSE_SCHEMES:
        return ClickHouseEventSink.from_url(stripped)

    from sqlalchemy.exc import ArgumentError, NoSuchModuleError

    try:
        return SqlEventSink.from_url(stripped)
    except (ArgumentError, NoSuchModuleError) as exc:
        raise SinkConfigError.invalid_url(stripped, str(exc)) from exc


def create_event_sink_from_env() -> EventSink:
    """Return the adapter configured by ``BEACON_SINK_URL``."""
    return create_event_sink(os.environ.get("BEACON_SINK_URL", ""))


__all__ = ["create_event_sink", "create_event_sink_from_env"]
