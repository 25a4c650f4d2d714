"""Unit tests for sink column coercion."""

from __future__ import annotations

import datetime as dt

import msgspec
import pytest

from beacon.common.time import EPOCH
from beacon.sink.schema import (
    COLUMN_NAMES,
    UINT32_MAX,
    build_sink_row,
    coerce_dimension,
    coerce_json,
    coerce_text,
    coerce_timestamp,
)
from tests.helpers.event_builders import NOW_MS, canonical_event

NOW = dt.datetime(2023, 11, 14, 22, 13, 20, tzinfo=dt.UTC)


class TestCoerceTimestamp:
    """Tests for timestamp normalization."""

    @pytest.mark.parametrize(
        "value",
        [NOW_MS, float(NOW_MS), NOW_MS // 1000, str(NOW_MS), "2023-11-14T22:13:20Z"],
    )
    def test_accepts_epoch_and_iso_forms(self, value: object) -> None:
        """Milliseconds, seconds, numeric strings and ISO text agree."""
        assert coerce_timestamp(value) == NOW, f"unexpected timestamp for {value!r}"

    def test_offset_iso_is_converted_to_utc(self) -> None:
        """ISO strings with offsets are normalized to UTC."""
        result = coerce_timestamp("2023-11-14T23:13:20+01:00")

        assert result == NOW
        assert result.utcoffset() == dt.timedelta(0)

    @pytest.mark.parametrize(
        "value", [None, "", "yesterday", True, float("nan"), 10**400, {}]
    )
    def test_unparseable_values_map_to_epoch(self, value: object) -> None:
        """Garbage falls back to the epoch-zero sentinel."""
        assert coerce_timestamp(value) == EPOCH


class TestCoerceDimension:
    """Tests for viewport dimension coercion."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (1280, 1280),
            (1280.9, 1280),
            ("720", 720),
            (-5, 0),
            (2**40, UINT32_MAX),
            (10**400, UINT32_MAX),
            (-(10**400), 0),
            ("wide", 0),
            (None, 0),
            (True, 0),
        ],
    )
    def test_coerce_dimension(self, value: object, expected: int) -> None:
        """Dimensions are floored and clamped to UInt32."""
        assert coerce_dimension(value) == expected


class TestCoerceText:
    """Tests for text column rendering."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, ""),
            (True, "true"),
            (False, "false"),
            (42, "42"),
            ("x", "x"),
            ({"a": 1}, '{"a":1}'),
            ([1, 2], "[1,2]"),
        ],
    )
    def test_coerce_text(self, value: object, expected: str) -> None:
        """Values render as text without raising."""
        assert coerce_text(value) == expected

    def test_props_default_to_empty_object(self) -> None:
        """Missing props serialize to an empty JSON object."""
        assert coerce_json(None) == "{}"
        assert msgspec.json.decode(coerce_json({"plan": "pro"})) == {"plan": "pro"}


class TestBuildSinkRow:
    """Tests for projecting payloads onto the fixed column list."""

    def test_row_has_exactly_the_sink_columns(self) -> None:
        """Unknown payload keys are ignored."""
        payload = msgspec.to_builtins(canonical_event())
        payload["__retry_meta"] = {"retry_count": 1}
        payload["surprise"] = "ignored"

        row = build_sink_row(payload)

        assert tuple(row) == COLUMN_NAMES
        assert row["event_time"] == NOW
        assert row["props"] == '{"plan":"pro"}'
        assert row["viewport_w"] == 0
        assert row["user_id"] == ""

    def test_oversized_numbers_are_coerced_not_raised(self) -> None:
        """Integers too large for a float still yield a storable row."""
        payload = msgspec.to_builtins(canonical_event())
        payload["viewport_w"] = 10**400
        payload["server_time"] = 10**400

        row = build_sink_row(payload)

        assert row["viewport_w"] == UINT32_MAX
        assert row["server_time"] == EPOCH
