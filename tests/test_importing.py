"""Tests for converting parsed calendar-file entries into event records."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from hashcal.core.models import Recurrence, datetime_to_minutes
from hashcal.importing import DEFAULT_IMPORTED_TITLE, ImportedEntry, entries_to_records

pytestmark = pytest.mark.unit


class TestImportedEntry:
    def test_naive_times_are_utc(self):
        entry = ImportedEntry(start="2025-03-01T10:00:00")
        assert entry.start == datetime(2025, 3, 1, 10, tzinfo=UTC)

    def test_offset_times_kept(self):
        entry = ImportedEntry(start="2025-03-01T10:00:00+02:00")
        assert entry.start.utcoffset() == timedelta(hours=2)

    def test_duration_rounded_to_minutes(self):
        entry = ImportedEntry(
            start=datetime(2025, 3, 1, 10, tzinfo=UTC),
            end=datetime(2025, 3, 1, 10, 44, 40, tzinfo=UTC),
        )
        assert entry.duration_minutes == 45

    def test_missing_or_inverted_end_is_zero(self):
        start = datetime(2025, 3, 1, 10, tzinfo=UTC)
        assert ImportedEntry(start=start).duration_minutes == 0
        assert ImportedEntry(start=start, end=start - timedelta(hours=1)).duration_minutes == 0

    def test_all_day_ignores_end(self):
        entry = ImportedEntry(
            start="2025-03-01T00:00:00", end="2025-03-02T00:00:00", is_all_day=True
        )
        assert entry.duration_minutes == 0

    @pytest.mark.parametrize(
        ("rule", "expected"),
        [("daily", Recurrence.DAILY), ("m", Recurrence.MONTHLY), ("secondly", None), (None, None)],
    )
    def test_rule_parsing(self, rule, expected):
        entry = ImportedEntry(start="2025-03-01T10:00:00Z", rule=rule)
        assert entry.rule is expected

    def test_blank_title_becomes_none(self):
        assert ImportedEntry(start="2025-03-01T10:00:00Z", title="   ").title is None

    def test_unknown_fields_ignored(self):
        entry = ImportedEntry.model_validate(
            {"start": "2025-03-01T10:00:00Z", "uid": "abc@example", "location": "Room 1"}
        )
        assert entry.title is None

    def test_start_required(self):
        with pytest.raises(ValidationError):
            ImportedEntry.model_validate({"title": "No start"})


class TestEntriesToRecords:
    def test_colors_cycle_over_palette(self):
        start = datetime(2025, 3, 1, 10, tzinfo=UTC)
        entries = [{"start": start + timedelta(days=i), "title": f"e{i}"} for i in range(5)]
        records = entries_to_records(entries, color_count=2)
        assert [r.color_index for r in records] == [0, 1, 0, 1, 0]

    def test_record_fields(self):
        start = datetime(2025, 3, 1, 10, tzinfo=timezone(timedelta(hours=-5)))
        entry = ImportedEntry(
            start=start, end=start + timedelta(minutes=30), title=" Sync ", rule="weekly"
        )
        (record,) = entries_to_records([entry], color_count=5)
        assert record.start_minutes == datetime_to_minutes(start)
        assert record.duration_minutes == 30
        assert record.title == "Sync"
        assert record.recurrence is Recurrence.WEEKLY

    def test_untitled_entries_get_default_title(self):
        (record,) = entries_to_records([{"start": "2025-03-01T10:00:00Z"}], color_count=5)
        assert record.title == DEFAULT_IMPORTED_TITLE

    def test_empty_palette_still_valid(self):
        (record,) = entries_to_records([{"start": "2025-03-01T10:00:00Z"}], color_count=0)
        assert record.color_index == 0

    def test_invalid_entry_raises(self):
        with pytest.raises(ValidationError):
            entries_to_records([{"start": "not a date"}], color_count=5)
