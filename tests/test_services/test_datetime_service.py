"""Tests for datetime helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from draftsync.services.datetime_service import (
    as_utc,
    format_iso,
    millis_to_seconds,
    now_utc,
    parse_iso,
)


class TestDatetimeHelpers:
    def test_now_is_aware_utc(self) -> None:
        assert now_utc().tzinfo is UTC

    def test_naive_values_are_treated_as_utc(self) -> None:
        result = as_utc(datetime(2026, 1, 1, 12, 0))
        assert result == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def test_aware_values_are_converted(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        result = as_utc(datetime(2026, 1, 1, 14, 0, tzinfo=plus_two))
        assert result == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        assert result.utcoffset() == timedelta(0)

    def test_format_and_parse_roundtrip(self) -> None:
        dt = datetime(2026, 3, 1, 8, 30, 15, 123456, tzinfo=UTC)
        text = format_iso(dt)
        assert text == "2026-03-01T08:30:15.123456+00:00"
        assert parse_iso(text) == dt

    def test_parse_rejects_garbage(self) -> None:
        with pytest.raises(ValueError):
            parse_iso("yesterday-ish")

    def test_millis_to_seconds(self) -> None:
        assert millis_to_seconds(1500) == 1.5
