"""Columnar sink adapters and the fixed events-table schema."""

from __future__ import annotations

from .clickhouse import ClickHouseEventSink, ClickHouseSettings
from .errors import SinkConfigError, SinkWriteError
from .factory import create_event_sink, create_event_sink_from_env
from .protocol import EventSink
from .schema import SCHEMA_VERSION, SINK_COLUMNS, build_sink_row
from .sql import SqlEventSink, init_sink_storage

__all__ = [
    "SCHEMA_VERSION",
    "SINK_COLUMNS",
    "ClickHouseEventSink",
    "ClickHouseSettings",
    "EventSink",
    "SinkConfigError",
    "SinkWriteError",
    "SqlEventSink",
    "build_sink_row",
    "create_event_sink",
    "create_event_sink_from_env",
    "init_sink_storage",
]
