"""Event model for hashcal.

The whole calendar is one :class:`CalendarState`.  It persists as a compact
mapping with short keys so the encoded fragment stays small::

    {
        "t": "hash-calendar",
        "c": ["#ff6b6b", ...],
        "e": [[start_minutes, duration_minutes, title, color_index, "w"], ...],
        "s": {"d": 0, "m": 1, "v": "month"},
        "timezones": ["Europe/Berlin"],
    }

:func:`normalize_state` rebuilds a state from whatever a decoder produced.  It
never raises: invalid fields are clamped or dropped, so a damaged link still
opens to a usable calendar.
"""

from __future__ import annotations

import enum
import json
import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Any

from hashcal.core.timezones import is_valid_zone, normalize_timezones

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "hash-calendar"
DEFAULT_COLORS: tuple[str, ...] = ("#ff6b6b", "#ffd43b", "#4dabf7", "#63e6be", "#9775fa")
DEFAULT_EVENT_TITLE = "Untitled"
MAX_TITLE_LENGTH = 60
MAX_EVENT_TITLE_LENGTH = 80

_COLOR_PATTERN = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# Starts outside this span cannot be represented as datetimes once expanded.
MIN_START_MINUTES = int((datetime(2, 1, 1, tzinfo=UTC) - _EPOCH).total_seconds() // 60)
MAX_START_MINUTES = int((datetime(9998, 1, 1, tzinfo=UTC) - _EPOCH).total_seconds() // 60)
MAX_DURATION_MINUTES = 366 * 24 * 60


class Recurrence(enum.StrEnum):
    """The four supported repeat rules; values are the wire codes."""

    DAILY = "d"
    WEEKLY = "w"
    MONTHLY = "m"
    YEARLY = "y"

    @classmethod
    def parse(cls, value: Any) -> Recurrence | None:
        """Accept a wire code or a long name; anything else means no rule."""
        if isinstance(value, Recurrence):
            return value
        if not isinstance(value, str):
            return None
        lowered = value.strip().lower()
        for rule in cls:
            if lowered in (rule.value, rule.name.lower()):
                return rule
        return None


class CalendarView(enum.StrEnum):
    """Views the UI can show; the active one is persisted."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    AGENDA = "agenda"

    @classmethod
    def parse(cls, value: Any) -> CalendarView:
        try:
            return cls(value)
        except ValueError:
            return DEFAULT_VIEW


DEFAULT_VIEW = CalendarView.MONTH


def minutes_to_datetime(minutes: int, tz: tzinfo = UTC) -> datetime:
    """Convert epoch minutes to an aware datetime in *tz*."""
    return (_EPOCH + timedelta(minutes=minutes)).astimezone(tz)


def datetime_to_minutes(value: datetime) -> int:
    """Convert an aware datetime to whole epoch minutes (floor)."""
    if value.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return math.floor((value - _EPOCH).total_seconds() / 60)


def is_valid_color(value: Any) -> bool:
    return isinstance(value, str) and _COLOR_PATTERN.match(value) is not None


def normalize_color(value: str) -> str:
    """Return *value* with a leading ``#``; raises ValueError if not a hex color."""
    if not is_valid_color(value):
        raise ValueError(f"Invalid hex color: {value!r}")
    return value if value.startswith("#") else f"#{value}"


@dataclass(frozen=True)
class EventRecord:
    """One stored event; recurring events are expanded on demand.

    ``duration_minutes == 0`` marks an all-day event.
    """

    start_minutes: int
    duration_minutes: int
    title: str
    color_index: int
    recurrence: Recurrence | None = None

    @classmethod
    def build(
        cls,
        *,
        start: datetime | int,
        duration_minutes: int,
        title: str,
        color_index: int = 0,
        recurrence: Recurrence | str | None = None,
    ) -> EventRecord:
        """Create a record from UI-style input, applying the storage rules."""
        start_minutes = start if isinstance(start, int) else datetime_to_minutes(start)
        if not MIN_START_MINUTES <= start_minutes <= MAX_START_MINUTES:
            raise ValueError(f"Event start out of range: {start_minutes}")
        return cls(
            start_minutes=start_minutes,
            duration_minutes=max(0, min(int(duration_minutes), MAX_DURATION_MINUTES)),
            title=_event_title(title.strip() if isinstance(title, str) else title),
            color_index=max(0, int(color_index)),
            recurrence=Recurrence.parse(recurrence),
        )

    @property
    def is_all_day(self) -> bool:
        return self.duration_minutes == 0

    def start_at(self, tz: tzinfo = UTC) -> datetime:
        return minutes_to_datetime(self.start_minutes, tz)

    def to_compact(self) -> list[Any]:
        entry: list[Any] = [
            self.start_minutes,
            self.duration_minutes,
            self.title,
            self.color_index,
        ]
        if self.recurrence is not None:
            entry.append(self.recurrence.value)
        return entry


@dataclass
class Settings:
    """Display preferences persisted with the calendar."""

    dark_mode: bool = False
    week_starts_monday: bool = False
    active_view: CalendarView = DEFAULT_VIEW

    def to_compact(self) -> dict[str, Any]:
        return {
            "d": int(self.dark_mode),
            "m": int(self.week_starts_monday),
            "v": self.active_view.value,
        }


@dataclass
class CalendarState:
    """The root persisted object.

    An event's position in :attr:`events` is its identity (``source_index``)
    until an insert or delete shifts later entries.
    """

    title: str = DEFAULT_TITLE
    colors: list[str] = field(default_factory=lambda: list(DEFAULT_COLORS))
    events: list[EventRecord] = field(default_factory=list)
    settings: Settings = field(default_factory=Settings)
    timezones: list[str] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def is_empty(self) -> bool:
        """True when nothing worth persisting exists (no events, no zones)."""
        return not self.events and not self.timezones

    def snapshot(self) -> CalendarState:
        """Return an independent copy safe to hand to other components."""
        return replace(
            self,
            colors=list(self.colors),
            events=list(self.events),
            settings=replace(self.settings),
            timezones=list(self.timezones),
        )

    def to_compact(self) -> dict[str, Any]:
        return {
            "t": self.title,
            "c": list(self.colors),
            "e": [event.to_compact() for event in self.events],
            "s": self.settings.to_compact(),
            "timezones": list(self.timezones),
        }

    def color_for(self, color_index: int) -> str:
        if 0 <= color_index < len(self.colors):
            return self.colors[color_index]
        return DEFAULT_COLORS[0]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _clamp_color_index(self, record: EventRecord) -> EventRecord:
        clamped = max(0, min(len(self.colors) - 1, record.color_index))
        if clamped == record.color_index:
            return record
        return replace(record, color_index=clamped)

    def insert_event(self, record: EventRecord, index: int | None = None) -> int:
        """Insert *record* at *index* (append when None) and return its index."""
        record = self._clamp_color_index(record)
        if index is None:
            self.events.append(record)
            return len(self.events) - 1
        if not 0 <= index <= len(self.events):
            raise IndexError(f"Event index out of range: {index}")
        self.events.insert(index, record)
        return index

    def replace_event(self, index: int, record: EventRecord) -> None:
        if not 0 <= index < len(self.events):
            raise IndexError(f"Event index out of range: {index}")
        self.events[index] = self._clamp_color_index(record)

    def delete_event(self, index: int) -> EventRecord:
        if not 0 <= index < len(self.events):
            raise IndexError(f"Event index out of range: {index}")
        return self.events.pop(index)

    def clear_events(self) -> None:
        self.events.clear()

    def ensure_color(self, color: str) -> int:
        """Return the palette index of *color*, appending it when new."""
        normalized = normalize_color(color).lower()
        for index, existing in enumerate(self.colors):
            if existing.lower() == normalized:
                return index
        self.colors.append(normalized)
        return len(self.colors) - 1

    def replace_color(self, index: int, color: str) -> None:
        if not 0 <= index < len(self.colors):
            raise IndexError(f"Color index out of range: {index}")
        self.colors[index] = normalize_color(color)

    def set_title(self, title: str) -> None:
        self.title = title[:MAX_TITLE_LENGTH]

    def add_timezone(self, zone: str) -> bool:
        """Pin *zone*; returns False when it is invalid or already pinned."""
        zone = zone.strip()
        if not is_valid_zone(zone) or zone in self.timezones:
            return False
        self.timezones.append(zone)
        return True

    def remove_timezone(self, zone: str) -> bool:
        if zone not in self.timezones:
            return False
        self.timezones = [z for z in self.timezones if z != zone]
        return True


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _to_number(value: Any) -> float | None:
    """Loose numeric coercion; returns None for anything non-finite."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip() or "0")
        except ValueError:
            return None
    elif value is None:
        return 0.0
    else:
        return None
    return number if math.isfinite(number) else None


def _event_title(raw: Any) -> str:
    return str(raw or DEFAULT_EVENT_TITLE)[:MAX_EVENT_TITLE_LENGTH]


def _normalize_colors(raw: Any) -> list[str]:
    if isinstance(raw, Mapping):
        colors = list(DEFAULT_COLORS)
        for key, color in raw.items():
            try:
                index = int(key)
            except (TypeError, ValueError):
                continue
            if 0 <= index < len(colors) and is_valid_color(color):
                colors[index] = normalize_color(color)
        return colors
    if isinstance(raw, list) and raw:
        colors = [normalize_color(color) for color in raw if is_valid_color(color)]
        return colors or list(DEFAULT_COLORS)
    return list(DEFAULT_COLORS)


def _normalize_event(entry: Any, color_count: int) -> EventRecord | None:
    if not isinstance(entry, (list, tuple)) or len(entry) < 3:
        return None
    start = entry[0]
    if isinstance(start, bool) or start is None:
        return None
    start_number = _to_number(start)
    if start_number is None or not MIN_START_MINUTES <= start_number <= MAX_START_MINUTES:
        return None

    duration = min(_to_number(entry[1]) or 0.0, MAX_DURATION_MINUTES)
    color_number = _to_number(entry[3]) if len(entry) > 3 else 0.0
    color_index = max(0, min(color_count - 1, int(color_number or 0)))
    rule = Recurrence.parse(entry[4]) if len(entry) > 4 else None

    return EventRecord(
        start_minutes=int(start_number),
        duration_minutes=max(0, int(duration)),
        title=_event_title(entry[2]),
        color_index=color_index,
        recurrence=rule,
    )


def _normalize_settings(raw: Any) -> Settings:
    if not isinstance(raw, Mapping):
        return Settings()
    return Settings(
        dark_mode=bool(raw.get("d")),
        week_starts_monday=bool(raw.get("m")),
        active_view=CalendarView.parse(raw.get("v")),
    )


def normalize_state(raw: Any) -> CalendarState:
    """Defensively rebuild a :class:`CalendarState` from decoded data.

    Accepts a compact mapping (as produced by :meth:`CalendarState.to_compact`)
    or an existing :class:`CalendarState`.  Never raises.
    """
    if isinstance(raw, CalendarState):
        raw = raw.to_compact()
    state = CalendarState()
    if not isinstance(raw, Mapping):
        return state

    title = raw.get("t")
    if isinstance(title, str):
        state.title = title[:MAX_TITLE_LENGTH]

    if "c" in raw:
        state.colors = _normalize_colors(raw.get("c"))

    events = raw.get("e")
    if isinstance(events, list):
        normalized = [_normalize_event(entry, len(state.colors)) for entry in events]
        state.events = [event for event in normalized if event is not None]
        dropped = len(events) - len(state.events)
        if dropped:
            logger.debug("Dropped %d invalid event record(s) during normalization", dropped)

    if "s" in raw:
        state.settings = _normalize_settings(raw.get("s"))

    for key in ("timezones", "z", "tz"):
        if isinstance(raw.get(key), list):
            state.timezones = normalize_timezones(raw[key])
            break

    return state


def export_json(state: CalendarState) -> str:
    """Pretty-printed structured-text export of *state*."""
    return json.dumps(state.to_compact(), indent=2, ensure_ascii=False)
