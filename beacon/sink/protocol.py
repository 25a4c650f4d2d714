"""EventSink protocol for persisting delivered events.

This module defines the port (in hexagonal architecture terms) the delivery
worker writes through. Adapters persist rows to ClickHouse or to any
SQLAlchemy-supported database.

The protocol is ``runtime_checkable`` to support ``isinstance`` checks in
dependency injection and tests.
"""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from beacon.sink.schema import SinkRow


@typ.runtime_checkable
class EventSink(typ.Protocol):
    """Protocol for an append-only, month-partitioned event table."""

    async def ensure_schema(self) -> None:
        """Create the events table if it does not exist.

        Must be idempotent; the worker calls it on every start.
        """
        ...

    async def write(self, row: SinkRow) -> None:
        """Persist one row built by :func:`beacon.sink.schema.build_sink_row`.

        Writing a row whose ``event_id`` is already stored must not create a
        second visible copy once the backend has deduplicated.
        """
        ...

    async def close(self) -> None:
        """Release connections held by the adapter."""
        ...


__all__ = ["EventSink"]
