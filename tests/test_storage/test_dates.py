"""Tests for email date parsing and normalisation."""

from datetime import datetime, timezone

import pytest

from mailsage.storage.dates import normalize_date, parse_date, timestamp


class TestParseDate:
    def test_iso_with_offset_converted_to_utc(self) -> None:
        parsed = parse_date("2026-01-01T10:00:00+05:00")
        assert parsed == datetime(2026, 1, 1, 5, 0, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc  # type: ignore[union-attr]

    def test_trailing_z_is_utc(self) -> None:
        assert parse_date("2026-01-01T05:00:00Z") == datetime(2026, 1, 1, 5, tzinfo=timezone.utc)

    def test_naive_read_as_utc(self) -> None:
        assert parse_date("2026-03-01T00:00:00") == parse_date("2026-03-01T00:00:00+00:00")

    def test_rfc2822_header(self) -> None:
        parsed = parse_date("Thu, 01 Jan 2026 10:00:00 +0500")
        assert parsed == datetime(2026, 1, 1, 5, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "   ", "sometime last week", "2026-13-45"])
    def test_unparseable_is_none(self, value: str | None) -> None:
        assert parse_date(value) is None


class TestNormalizeDate:
    def test_canonical_form(self) -> None:
        assert normalize_date("Thu, 01 Jan 2026 10:00:00 +0500") == "2026-01-01T05:00:00+00:00"
        assert normalize_date("2026-01-01T06:00:00.123456+00:00") == "2026-01-01T06:00:00+00:00"

    def test_canonical_form_is_stable(self) -> None:
        once = normalize_date("2026-01-01T10:00:00+05:00")
        assert normalize_date(once) == once

    def test_canonical_text_orders_chronologically(self) -> None:
        earlier = normalize_date("2026-01-01T10:00:00+05:00")
        later = normalize_date("2026-01-01T06:00:00+00:00")
        assert earlier < later  # type: ignore[operator]

    def test_unparseable_logged_and_dropped(self, caplog: pytest.LogCaptureFixture) -> None:
        assert normalize_date("not a date") is None
        assert "not a date" in caplog.text

    def test_missing_is_silent(self, caplog: pytest.LogCaptureFixture) -> None:
        assert normalize_date(None) is None
        assert caplog.records == []


class TestTimestamp:
    def test_offsets_compare_by_instant(self) -> None:
        assert timestamp("2026-01-01T10:00:00+05:00") < timestamp("2026-01-01T06:00:00+00:00")

    def test_unknown_sorts_oldest(self) -> None:
        assert timestamp("garbage") == float("-inf")
        assert timestamp(None) == float("-inf")
