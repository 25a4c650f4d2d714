"""Fixed, versioned column list of the ``events`` table and row coercion.

Only the columns listed here are persisted; every other payload key is
ignored except through ``props``. Coercion never raises: malformed values
fall back to a typed default so a single bad field cannot stall delivery.

Usage
-----
>>> row = build_sink_row({"event": "pageview", "event_time": 1_700_000_000_000})
>>> row["event_time"].isoformat()
'2023-11-14T22:13:20+00:00'
>>> row["viewport_w"], row["path"]
(0, '')

"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import enum
import math
import typing as typ

import msgspec

from beacon.common.time import EPOCH, from_epoch_ms

# Bump when SINK_COLUMNS changes; stored alongside the DDL for operators.
SCHEMA_VERSION = 2

# Epoch values at or above this magnitude are milliseconds, below are seconds.
MS_EPOCH_THRESHOLD = 1e10

UINT32_MAX = 2**32 - 1


class ColumnKind(enum.StrEnum):
    """Storage type family of a sink column."""

    TEXT = "text"
    TIMESTAMP = "timestamp"
    DIMENSION = "dimension"
    JSON = "json"


@dc.dataclass(frozen=True, slots=True)
class SinkColumn:
    """One column of the ``events`` table."""

    name: str
    kind: ColumnKind = ColumnKind.TEXT


SINK_COLUMNS: tuple[SinkColumn, ...] = (
    SinkColumn("event_id"),
    SinkColumn("project_id"),
    SinkColumn("event"),
    SinkColumn("event_time", ColumnKind.TIMESTAMP),
    SinkColumn("server_time", ColumnKind.TIMESTAMP),
    SinkColumn("user_id"),
    SinkColumn("session_id"),
    SinkColumn("path"),
    SinkColumn("url"),
    SinkColumn("referrer"),
    SinkColumn("ua"),
    SinkColumn("browser"),
    SinkColumn("browser_version"),
    SinkColumn("os"),
    SinkColumn("os_version"),
    SinkColumn("device_type"),
    SinkColumn("ip"),
    SinkColumn("country"),
    SinkColumn("region"),
    SinkColumn("city"),
    SinkColumn("viewport_w", ColumnKind.DIMENSION),
    SinkColumn("viewport_h", ColumnKind.DIMENSION),
    SinkColumn("utm_source"),
    SinkColumn("utm_medium"),
    SinkColumn("utm_campaign"),
    SinkColumn("props", ColumnKind.JSON),
)

COLUMN_NAMES: tuple[str, ...] = tuple(column.name for column in SINK_COLUMNS)

type SinkRow = dict[str, typ.Any]


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _from_epoch_number(value: float) -> dt.datetime:
    if not math.isfinite(value):
        return EPOCH
    millis = value if abs(value) >= MS_EPOCH_THRESHOLD else value * 1000
    try:
        return from_epoch_ms(int(millis))
    except OverflowError:
        return EPOCH


def _from_iso(text: str) -> dt.datetime:
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        return EPOCH
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)


def coerce_timestamp(value: object) -> dt.datetime:
    """Normalize an epoch number or ISO-8601 string to an aware UTC datetime.

    Numbers (and numeric strings) of magnitude ``>= 1e10`` are read as
    milliseconds, smaller ones as seconds. Missing or unparseable values map
    to the epoch-zero sentinel.
    """
    if isinstance(value, dt.datetime):
        return value if value.tzinfo else value.replace(tzinfo=dt.UTC)
    if _is_number(value):
        try:
            return _from_epoch_number(float(typ.cast("float", value)))
        except OverflowError:
            return EPOCH
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return EPOCH
        try:
            return _from_epoch_number(float(text))
        except ValueError:
            return _from_iso(text)
    return EPOCH


def coerce_dimension(value: object) -> int:
    """Return a non-negative integer pixel dimension, defaulting to 0."""
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return 0
    if not _is_number(value):
        return 0
    if isinstance(value, int):
        return min(max(0, value), UINT32_MAX)
    number = float(typ.cast("float", value))
    if not math.isfinite(number):
        return 0
    return min(max(0, math.floor(number)), UINT32_MAX)


def coerce_text(value: object) -> str:
    """Render a payload value for a text column.

    ``None`` becomes ``""``, booleans ``true``/``false``, objects and arrays
    compact JSON, and everything else its string form.
    """
    match value:
        case None:
            return ""
        case bool():
            return "true" if value else "false"
        case str():
            return value
        case dict() | list():
            return msgspec.json.encode(value).decode("utf-8")
        case _:
            return str(value)


def coerce_json(value: object) -> str:
    """Serialize ``props`` as compact JSON text (``{}`` when absent)."""
    if value is None:
        return "{}"
    if isinstance(value, str):
        return value
    try:
        return msgspec.json.encode(value).decode("utf-8")
    except (TypeError, msgspec.EncodeError):
        return "{}"


_COERCERS: dict[ColumnKind, typ.Callable[[object], typ.Any]] = {
    ColumnKind.TEXT: coerce_text,
    ColumnKind.TIMESTAMP: coerce_timestamp,
    ColumnKind.DIMENSION: coerce_dimension,
    ColumnKind.JSON: coerce_json,
}


def build_sink_row(payload: dict[str, typ.Any]) -> SinkRow:
    """Project a decoded message payload onto :data:`SINK_COLUMNS`.

    Parameters
    ----------
    payload
        Canonical event (or retry envelope) as decoded from the broker.

    Returns
    -------
    SinkRow
        One value per column, keyed by column name, in column order.

    """
    return {
        column.name: _COERCERS[column.kind](payload.get(column.name))
        for column in SINK_COLUMNS
    }


__all__ = [
    "COLUMN_NAMES",
    "MS_EPOCH_THRESHOLD",
    "SCHEMA_VERSION",
    "SINK_COLUMNS",
    "ColumnKind",
    "SinkColumn",
    "SinkRow",
    "build_sink_row",
    "coerce_dimension",
    "coerce_json",
    "coerce_text",
    "coerce_timestamp",
]
