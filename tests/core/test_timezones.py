"""Tests for hashcal.core.timezones — validation, display cards and search."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from hashcal.core.timezones import (
    format_utc_offset,
    is_valid_zone,
    normalize_timezones,
    parse_offset_search_term,
    search_zones,
    zone_info,
)

pytestmark = pytest.mark.unit

# A fixed winter instant keeps offsets free of DST.
WINTER = datetime(2025, 1, 15, 20, 0, tzinfo=UTC)

ZONES = (
    "America/New_York",
    "America/St_Johns",
    "Asia/Kathmandu",
    "Asia/Kolkata",
    "Asia/Tokyo",
    "Europe/Berlin",
    "Europe/London",
    "Pacific/Kiritimati",
)


class TestValidation:
    @pytest.mark.parametrize("zone", ["UTC", "Europe/Berlin", "America/Argentina/Buenos_Aires"])
    def test_valid(self, zone):
        assert is_valid_zone(zone)

    @pytest.mark.parametrize("zone", ["", "Mars/Olympus", "../etc/passwd", None, 5])
    def test_invalid(self, zone):
        assert not is_valid_zone(zone)

    def test_normalize_trims_and_deduplicates(self):
        assert normalize_timezones([" Asia/Tokyo", "Asia/Tokyo", "bogus", "", 7, "UTC"]) == [
            "Asia/Tokyo",
            "UTC",
        ]

    def test_normalize_non_list(self):
        assert normalize_timezones("Asia/Tokyo") == []
        assert normalize_timezones(None) == []


class TestZoneInfo:
    @pytest.mark.parametrize(
        ("minutes", "label"),
        [(0, "+0:00"), (330, "+5:30"), (-210, "-3:30"), (840, "+14:00"), (-300, "-5:00")],
    )
    def test_format_offset(self, minutes, label):
        assert format_utc_offset(minutes) == label

    def test_card_for_zone_ahead(self):
        card = zone_info("Asia/Tokyo", now=WINTER, local_zone="Europe/Berlin")
        assert card.name == "Tokyo"
        assert card.full_zone == "Asia/Tokyo"
        assert card.time == "05:00"
        assert card.day_diff == "Tomorrow"
        assert card.offset == "+9:00"
        assert card.offset_minutes == 540

    def test_card_for_zone_behind(self):
        card = zone_info("America/New_York", now=datetime(2025, 1, 15, 2, tzinfo=UTC))
        assert card.name == "New York"
        assert card.day_diff == "Yesterday"
        assert card.offset == "-5:00"

    def test_same_day(self):
        assert zone_info("Europe/London", now=WINTER).day_diff == ""


class TestOffsetParsing:
    @pytest.mark.parametrize(
        ("term", "sign", "hours", "minutes", "has_minutes"),
        [
            ("UTC+5:30", "+", 5, 30, True),
            ("gmt-3", "-", 3, 0, False),
            ("+0530", "+", 5, 30, True),
            ("545", None, 5, 45, True),
            ("9", None, 9, 0, False),
            ("utc + 9.5", "+", 9, 5, True),
            ("-3:", "-", 3, 0, False),
        ],
    )
    def test_parses(self, term, sign, hours, minutes, has_minutes):
        query = parse_offset_search_term(term)
        assert query is not None
        assert (query.sign, query.hours, query.minutes, query.has_minutes) == (
            sign,
            hours,
            minutes,
            has_minutes,
        )

    @pytest.mark.parametrize("term", ["", None, "utc", "tokyo", "+15", "5:75", "12345", "1:2:3"])
    def test_rejects(self, term):
        assert parse_offset_search_term(term) is None

    def test_hours_only_matches_any_minutes(self):
        query = parse_offset_search_term("+5")
        assert query.matches("+5:00")
        assert query.matches("+5:45")
        assert not query.matches("+15:00")
        assert not query.matches("-5:00")

    def test_unsigned_matches_both_directions(self):
        query = parse_offset_search_term("3:30")
        assert query.matches("+3:30")
        assert query.matches("-3:30")
        assert not query.matches("+3:00")


class TestSearch:
    def test_name_search(self):
        assert search_zones("tok", zones=ZONES, now=WINTER) == ["Asia/Tokyo"]

    def test_short_text_term_matches_nothing(self):
        assert search_zones("a", zones=ZONES, now=WINTER) == []

    def test_offset_search(self):
        assert search_zones("utc+5:30", zones=ZONES, now=WINTER) == ["Asia/Kolkata"]
        assert search_zones("UTC+5", zones=ZONES, now=WINTER) == [
            "Asia/Kathmandu",
            "Asia/Kolkata",
        ]
        assert search_zones("-3:30", zones=ZONES, now=WINTER) == ["America/St_Johns"]

    def test_exclude_and_limit(self):
        found = search_zones("america", zones=ZONES, now=WINTER, exclude=["America/New_York"])
        assert found == ["America/St_Johns"]
        assert len(search_zones("a/", zones=ZONES, now=WINTER, limit=3)) == 3

    def test_search_over_all_zones(self):
        assert "Asia/Tokyo" in search_zones("tokyo")
