"""Tests for hashcal.core.models — event model, normalization, mutations."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from hashcal.core.models import (
    DEFAULT_COLORS,
    DEFAULT_TITLE,
    MAX_EVENT_TITLE_LENGTH,
    MAX_TITLE_LENGTH,
    CalendarState,
    CalendarView,
    EventRecord,
    Recurrence,
    Settings,
    datetime_to_minutes,
    export_json,
    minutes_to_datetime,
    normalize_state,
)

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Recurrence / CalendarView parsing
# ---------------------------------------------------------------------------


class TestRecurrenceParse:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("d", Recurrence.DAILY),
            ("daily", Recurrence.DAILY),
            ("W", Recurrence.WEEKLY),
            ("monthly", Recurrence.MONTHLY),
            ("y", Recurrence.YEARLY),
        ],
    )
    def test_known_values(self, raw, expected):
        assert Recurrence.parse(raw) is expected

    @pytest.mark.parametrize("raw", ["", "hourly", None, 3, ["d"]])
    def test_unknown_values_mean_no_rule(self, raw):
        assert Recurrence.parse(raw) is None

    def test_unknown_view_falls_back_to_month(self):
        assert CalendarView.parse("timeline") is CalendarView.MONTH
        assert CalendarView.parse("agenda") is CalendarView.AGENDA


# ---------------------------------------------------------------------------
# normalize_state
# ---------------------------------------------------------------------------


class TestNormalizeState:
    def test_non_mapping_gives_default_state(self):
        for raw in (None, "x", 42, [1, 2]):
            state = normalize_state(raw)
            assert state == CalendarState()
            assert state.title == DEFAULT_TITLE
            assert state.colors == list(DEFAULT_COLORS)

    def test_title_truncated(self):
        state = normalize_state({"t": "x" * 100})
        assert len(state.title) == MAX_TITLE_LENGTH

    def test_non_string_title_ignored(self):
        assert normalize_state({"t": 5}).title == DEFAULT_TITLE

    def test_color_list_filters_and_prefixes(self):
        state = normalize_state({"c": ["abc", "#112233", "red", 7, "#12345"]})
        assert state.colors == ["#abc", "#112233"]

    def test_color_list_with_no_valid_entries_gives_defaults(self):
        assert normalize_state({"c": ["nope"]}).colors == list(DEFAULT_COLORS)

    def test_color_mapping_overlays_defaults(self):
        state = normalize_state({"c": {"1": "000000", "9": "#ffffff", "x": "#fff"}})
        expected = list(DEFAULT_COLORS)
        expected[1] = "#000000"
        assert state.colors == expected

    def test_event_fields_normalized(self):
        raw = {
            "c": ["#111111", "#222222"],
            "e": [[100, -5, "", 9, "w"], ["200", "30", "Lunch", "1"]],
        }
        state = normalize_state(raw)
        assert state.events == [
            EventRecord(100, 0, "Untitled", 1, Recurrence.WEEKLY),
            EventRecord(200, 30, "Lunch", 1, None),
        ]

    def test_event_title_truncated(self):
        state = normalize_state({"e": [[0, 60, "y" * 200, 0]]})
        assert len(state.events[0].title) == MAX_EVENT_TITLE_LENGTH

    def test_negative_color_index_clamped_to_zero(self):
        state = normalize_state({"e": [[0, 60, "A", -3]]})
        assert state.events[0].color_index == 0

    def test_unknown_rule_dropped(self):
        state = normalize_state({"e": [[0, 60, "A", 0, "fortnightly"]]})
        assert state.events[0].recurrence is None

    @pytest.mark.parametrize(
        "entry",
        [
            ["abc", 60, "bad start"],
            [float("nan"), 60, "nan"],
            [float("inf"), 60, "inf"],
            [None, 60, "none"],
            [True, 60, "true"],
            [False, 60, "false"],
            [1e300, 60, "too far"],
            [0, 60],
            "not-a-list",
        ],
    )
    def test_invalid_events_dropped(self, entry):
        state = normalize_state({"e": [entry, [5, 10, "kept", 0]]})
        assert [event.title for event in state.events] == ["kept"]

    def test_settings(self):
        state = normalize_state({"s": {"d": 1, "m": "yes", "v": "week"}})
        assert state.settings == Settings(
            dark_mode=True, week_starts_monday=True, active_view=CalendarView.WEEK
        )

    def test_invalid_view_falls_back(self):
        assert normalize_state({"s": {"v": "bogus"}}).settings.active_view is CalendarView.MONTH

    def test_timezones_validated_and_deduplicated(self):
        state = normalize_state(
            {"timezones": [" Europe/Paris ", "Europe/Paris", "Mars/Olympus", 3, "UTC"]}
        )
        assert state.timezones == ["Europe/Paris", "UTC"]

    @pytest.mark.parametrize("key", ["z", "tz"])
    def test_legacy_timezone_keys(self, key):
        assert normalize_state({key: ["Asia/Tokyo"]}).timezones == ["Asia/Tokyo"]

    def test_idempotent(self, sample_state):
        messy = {
            "t": "z" * 90,
            "c": ["abc", "#DDEEFF"],
            "e": [[1.7, "15", None, 40, "monthly"], [3, 0, "x", 0]],
            "s": {"d": 2, "v": "year"},
            "tz": ["UTC", "UTC"],
        }
        once = normalize_state(messy)
        assert normalize_state(once) == once
        assert normalize_state(once.to_compact()) == once
        assert normalize_state(sample_state) == sample_state

    def test_compact_shape(self, sample_state):
        compact = sample_state.to_compact()
        assert set(compact) == {"t", "c", "e", "s", "timezones"}
        assert compact["e"][0][4] == "w"
        assert len(compact["e"][1]) == 4
        assert compact["s"] == {"d": 0, "m": 0, "v": "month"}


# ---------------------------------------------------------------------------
# EventRecord
# ---------------------------------------------------------------------------


class TestEventRecord:
    def test_build_from_datetime(self):
        start = datetime(2025, 1, 2, 3, 4, tzinfo=UTC)
        record = EventRecord.build(
            start=start, duration_minutes=45, title="  Review  ", recurrence="daily"
        )
        assert record.start_minutes == datetime_to_minutes(start)
        assert record.title == "Review"
        assert record.recurrence is Recurrence.DAILY
        assert record.start_at() == start

    def test_build_blank_title(self):
        assert EventRecord.build(start=0, duration_minutes=10, title="   ").title == "Untitled"

    def test_build_rejects_out_of_range_start(self):
        with pytest.raises(ValueError):
            EventRecord.build(start=10**12, duration_minutes=10, title="x")

    def test_zero_duration_is_all_day(self):
        assert EventRecord(0, 0, "x", 0).is_all_day
        assert not EventRecord(0, 1, "x", 0).is_all_day

    def test_minutes_round_trip(self):
        value = minutes_to_datetime(1440)
        assert value == datetime(1970, 1, 2, tzinfo=UTC)
        assert datetime_to_minutes(value) == 1440

    def test_naive_datetime_rejected(self):
        with pytest.raises(ValueError):
            datetime_to_minutes(datetime(2025, 1, 1))


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


class TestMutations:
    def test_insert_append_and_at_index(self):
        state = CalendarState()
        assert state.insert_event(EventRecord(0, 10, "a", 0)) == 0
        assert state.insert_event(EventRecord(1, 10, "b", 0)) == 1
        assert state.insert_event(EventRecord(2, 10, "c", 0), index=0) == 0
        assert [e.title for e in state.events] == ["c", "a", "b"]

    def test_insert_clamps_color_index(self):
        state = CalendarState()
        state.insert_event(EventRecord(0, 10, "a", 99))
        assert state.events[0].color_index == len(DEFAULT_COLORS) - 1

    def test_replace_and_delete(self):
        state = CalendarState()
        state.insert_event(EventRecord(0, 10, "a", 0))
        state.replace_event(0, EventRecord(0, 10, "b", 1))
        assert state.events[0].title == "b"
        removed = state.delete_event(0)
        assert removed.title == "b"
        assert state.events == []

    @pytest.mark.parametrize("index", [-1, 1])
    def test_out_of_range_index(self, index):
        state = CalendarState()
        state.insert_event(EventRecord(0, 10, "a", 0))
        with pytest.raises(IndexError):
            state.replace_event(index, EventRecord(0, 10, "b", 0))
        with pytest.raises(IndexError):
            state.delete_event(index)

    def test_ensure_color_reuses_case_insensitively(self):
        state = CalendarState()
        assert state.ensure_color("#FF6B6B") == 0
        assert state.ensure_color("123456") == len(DEFAULT_COLORS)
        assert state.colors[-1] == "#123456"
        assert state.ensure_color("#123456") == len(DEFAULT_COLORS)

    def test_ensure_color_rejects_invalid(self):
        with pytest.raises(ValueError):
            CalendarState().ensure_color("blue")

    def test_replace_color(self):
        state = CalendarState()
        state.replace_color(0, "000")
        assert state.colors[0] == "#000"
        with pytest.raises(IndexError):
            state.replace_color(10, "#000")

    def test_set_title_truncates(self):
        state = CalendarState()
        state.set_title("t" * 70)
        assert len(state.title) == MAX_TITLE_LENGTH

    def test_timezones(self):
        state = CalendarState()
        assert state.add_timezone("Europe/Oslo")
        assert not state.add_timezone("Europe/Oslo")
        assert not state.add_timezone("Nowhere/Land")
        assert state.remove_timezone("Europe/Oslo")
        assert not state.remove_timezone("Europe/Oslo")

    def test_is_empty(self):
        state = CalendarState(title="Named", colors=["#000"])
        assert state.is_empty
        state.timezones.append("UTC")
        assert not state.is_empty

    def test_snapshot_is_independent(self, sample_state):
        snap = sample_state.snapshot()
        snap.events.clear()
        snap.colors.append("#000")
        snap.settings.dark_mode = True
        assert len(sample_state.events) == 2
        assert "#000" not in sample_state.colors
        assert sample_state.settings.dark_mode is False


def test_export_json(sample_state):
    exported = json.loads(export_json(sample_state))
    assert exported == sample_state.to_compact()
    assert normalize_state(exported) == sample_state
