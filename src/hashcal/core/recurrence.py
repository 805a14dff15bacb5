"""Recurrence expansion: stored records to concrete occurrences in a window.

Each repeating record jumps straight to the first step inside the window
(integer day/week/month/year offset from its anchor) and enumerates forward
from there, so the cost depends on how many occurrences the window holds and
not on how long ago the series started.

Stepping happens in local wall-clock time of the supplied ``tz``: a weekly
09:00 meeting stays at 09:00 across DST changes.  Monthly and yearly steps are
computed from the anchor with :class:`dateutil.relativedelta.relativedelta`,
which clamps the 31st to the last day of shorter months (and Feb 29 to Feb 28)
for that occurrence only.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import MAXYEAR, MINYEAR, UTC, date, datetime, time, timedelta, tzinfo

from dateutil.relativedelta import relativedelta

from hashcal.core.errors import ExpansionBudgetExceeded
from hashcal.core.models import EventRecord, Recurrence, datetime_to_minutes

logger = logging.getLogger(__name__)

AGENDA_MONTHS = 6
MONTH_GRID_DAYS = 42


@dataclass(frozen=True)
class Occurrence:
    """One concrete instance of an event.  Derived, never persisted.

    ``source_index`` points back at the record in ``CalendarState.events``
    and is only valid until the next insert/delete.
    """

    start: datetime
    end: datetime
    title: str
    color_index: int
    is_all_day: bool
    source_index: int

    @property
    def start_minutes(self) -> int:
        return datetime_to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return datetime_to_minutes(self.end)


def _first_step(rule: Recurrence, anchor: datetime, window_start: datetime) -> int:
    """Smallest step index whose occurrence can fall on or after *window_start*.

    Both arguments are naive local wall-clock datetimes.  Every step before the
    returned index lands on an earlier calendar day/week/month/year, so none of
    them can be inside the window.
    """
    if window_start <= anchor:
        return 0
    if rule is Recurrence.DAILY:
        return (window_start.date() - anchor.date()).days
    if rule is Recurrence.WEEKLY:
        return (window_start.date() - anchor.date()).days // 7
    if rule is Recurrence.MONTHLY:
        return (window_start.year - anchor.year) * 12 + (window_start.month - anchor.month)
    return window_start.year - anchor.year


def _step(rule: Recurrence, anchor: datetime, index: int) -> datetime:
    if rule is Recurrence.DAILY:
        return anchor + timedelta(days=index)
    if rule is Recurrence.WEEKLY:
        return anchor + timedelta(weeks=index)
    if rule is Recurrence.MONTHLY:
        return anchor + relativedelta(months=index)
    return anchor + relativedelta(years=index)


def _local_day_bounds(value: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    day = value.astimezone(tz).date()
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)


def _occurrence(record: EventRecord, index: int, start: datetime) -> Occurrence:
    end = start if record.is_all_day else start + timedelta(minutes=record.duration_minutes)
    return Occurrence(
        start=start,
        end=end,
        title=record.title,
        color_index=record.color_index,
        is_all_day=record.is_all_day,
        source_index=index,
    )


def _expand_single(
    record: EventRecord,
    index: int,
    range_start: datetime,
    range_end: datetime,
    tz: tzinfo,
) -> Iterator[Occurrence]:
    occurrence = _occurrence(record, index, record.start_at(tz))
    if record.is_all_day:
        # All-day events cover their whole local day.
        span_start, span_end = _local_day_bounds(occurrence.start, tz)
    else:
        span_start, span_end = occurrence.start, occurrence.end
    if span_start < range_end and span_end > range_start:
        yield occurrence


def _expand_repeating(
    record: EventRecord,
    index: int,
    range_start: datetime,
    range_end: datetime,
    tz: tzinfo,
    max_steps: int | None,
) -> Iterator[Occurrence]:
    rule = record.recurrence
    assert rule is not None
    anchor = record.start_at(tz).replace(tzinfo=None)
    window_start = range_start.astimezone(tz).replace(tzinfo=None)

    step_index = _first_step(rule, anchor, window_start)
    steps = 0
    while True:
        steps += 1
        if max_steps is not None and steps > max_steps:
            raise ExpansionBudgetExceeded(index, max_steps)
        try:
            start = _step(rule, anchor, step_index).replace(tzinfo=tz)
        except (OverflowError, ValueError):
            # Stepped past the last representable year.
            return
        step_index += 1
        if start >= range_end:
            return
        if start < range_start:
            continue
        yield _occurrence(record, index, start)


def expand(
    events: Sequence[EventRecord],
    range_start: datetime,
    range_end: datetime,
    *,
    tz: tzinfo = UTC,
    max_steps: int | None = None,
) -> list[Occurrence]:
    """Expand *events* into the occurrences inside ``[range_start, range_end)``.

    Non-repeating records are included when their span intersects the window;
    repeating records contribute every step whose start lies in the window.
    The result is ascending per record, not globally sorted; use
    :func:`group_occurrences` or sort by ``start`` when order matters.

    Parameters
    ----------
    events:
        Normalized records; their position is reported as ``source_index``.
    range_start, range_end:
        Timezone-aware window bounds; *range_end* is exclusive.
    tz:
        Zone whose wall clock drives calendar stepping and all-day days.
    max_steps:
        Optional per-record cap on generated candidates.

    Raises
    ------
    ExpansionBudgetExceeded
        Only when *max_steps* is given and a record needs more steps.
    """
    if range_start.tzinfo is None or range_end.tzinfo is None:
        raise ValueError("range_start and range_end must be timezone-aware")
    if range_end <= range_start:
        return []

    occurrences: list[Occurrence] = []
    for index, record in enumerate(events):
        if record.recurrence is None:
            occurrences.extend(_expand_single(record, index, range_start, range_end, tz))
        else:
            occurrences.extend(
                _expand_repeating(record, index, range_start, range_end, tz, max_steps)
            )
    return occurrences


def group_occurrences(
    occurrences: Sequence[Occurrence],
    tz: tzinfo = UTC,
) -> dict[date, list[Occurrence]]:
    """Bucket occurrences by local calendar day, each bucket sorted by start."""
    buckets: dict[date, list[Occurrence]] = {}
    for occurrence in occurrences:
        buckets.setdefault(occurrence.start.astimezone(tz).date(), []).append(occurrence)
    for bucket in buckets.values():
        bucket.sort(key=lambda occ: occ.start)
    return dict(sorted(buckets.items()))


def upcoming(
    events: Sequence[EventRecord],
    now: datetime,
    *,
    limit: int = 5,
    horizon: timedelta = timedelta(days=366),
    tz: tzinfo = UTC,
) -> list[Occurrence]:
    """The next *limit* occurrences starting at or after *now*."""
    found = [
        occ for occ in expand(events, now, now + horizon, tz=tz) if occ.start >= now
    ]
    found.sort(key=lambda occ: (occ.start, occ.source_index))
    return found[:limit]


# ---------------------------------------------------------------------------
# View windows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DateWindow:
    """A half-open window plus the calendar days it shows."""

    start: datetime
    end: datetime
    dates: tuple[date, ...]


def _midnight(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def _window(first: date, days: int, tz: tzinfo) -> DateWindow:
    dates = tuple(first + timedelta(days=offset) for offset in range(days))
    return DateWindow(
        start=_midnight(first, tz),
        end=_midnight(first + timedelta(days=days), tz),
        dates=dates,
    )


def week_start_for(day: date, week_starts_monday: bool) -> date:
    """First day of the week containing *day*."""
    first_weekday = 0 if week_starts_monday else 6
    return day - timedelta(days=(day.weekday() - first_weekday) % 7)


def day_range(day: date, tz: tzinfo = UTC) -> DateWindow:
    return _window(day, 1, tz)


def week_range(day: date, week_starts_monday: bool = False, tz: tzinfo = UTC) -> DateWindow:
    return _window(week_start_for(day, week_starts_monday), 7, tz)


def month_grid_range(
    day: date,
    week_starts_monday: bool = False,
    tz: tzinfo = UTC,
) -> DateWindow:
    """Six full weeks starting on the week that contains the 1st of the month."""
    first = week_start_for(day.replace(day=1), week_starts_monday)
    return _window(first, MONTH_GRID_DAYS, tz)


def year_range(year: int, tz: tzinfo = UTC) -> DateWindow:
    if not MINYEAR <= year < MAXYEAR:
        raise ValueError(f"year must be in {MINYEAR}..{MAXYEAR - 1}, got {year}")
    first = date(year, 1, 1)
    return _window(first, (date(year + 1, 1, 1) - first).days, tz)


def agenda_range(day: date, tz: tzinfo = UTC, months: int = AGENDA_MONTHS) -> DateWindow:
    return _window(day, (day + relativedelta(months=months) - day).days, tz)
