"""Pinned comparison timezones.

Zone names are IANA identifiers validated through :mod:`zoneinfo`.  Besides
validation this module builds the small display records shown next to the
calendar (offset label, "Tomorrow"/"Yesterday" hints) and answers the zone
search box, which accepts either a name fragment or a UTC offset such as
``UTC+5:30``.
"""

from __future__ import annotations

import functools
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError, available_timezones

MAX_SEARCH_RESULTS = 12

_OFFSET_PREFIXES = ("utc", "gmt")
_WHITESPACE = re.compile(r"\s+")


def is_valid_zone(name: object) -> bool:
    """Return True when *name* resolves to a known IANA timezone."""
    if not isinstance(name, str) or not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True


def normalize_timezones(raw: object) -> list[str]:
    """Trim, de-duplicate and validate a raw list of zone names.

    Anything that is not a list yields an empty list; invalid entries are
    dropped silently and first-seen order is preserved.
    """
    if not isinstance(raw, list):
        return []
    zones: list[str] = []
    seen: set[str] = set()
    for zone in raw:
        if not isinstance(zone, str):
            continue
        trimmed = zone.strip()
        if not trimmed or trimmed in seen:
            continue
        if not is_valid_zone(trimmed):
            continue
        seen.add(trimmed)
        zones.append(trimmed)
    return zones


@functools.cache
def all_zones() -> tuple[str, ...]:
    """Every zone name known to the interpreter, sorted."""
    return tuple(sorted(available_timezones()))


def format_utc_offset(offset_minutes: int) -> str:
    """Format an offset in minutes as ``+5:30`` / ``-3:00``."""
    sign = "+" if offset_minutes >= 0 else "-"
    hours, minutes = divmod(abs(offset_minutes), 60)
    return f"{sign}{hours}:{minutes:02d}"


@dataclass(frozen=True)
class ZoneInfoCard:
    """Display data for one pinned timezone."""

    name: str
    full_zone: str
    time: str
    day_diff: str
    offset: str
    offset_minutes: int


def zone_info(
    zone_name: str,
    *,
    now: datetime | None = None,
    local_zone: str = "UTC",
) -> ZoneInfoCard:
    """Describe *zone_name* relative to *local_zone* at instant *now*."""
    now = now or datetime.now(UTC)
    target = now.astimezone(ZoneInfo(zone_name))
    local = now.astimezone(ZoneInfo(local_zone))

    offset = target.utcoffset()
    offset_minutes = round(offset.total_seconds() / 60) if offset is not None else 0

    if target.date() > local.date():
        day_diff = "Tomorrow"
    elif target.date() < local.date():
        day_diff = "Yesterday"
    else:
        day_diff = ""

    return ZoneInfoCard(
        name=zone_name.split("/")[-1].replace("_", " "),
        full_zone=zone_name,
        time=target.strftime("%H:%M"),
        day_diff=day_diff,
        offset=format_utc_offset(offset_minutes),
        offset_minutes=offset_minutes,
    )


@dataclass(frozen=True)
class OffsetQuery:
    """A parsed UTC-offset search term."""

    sign: str | None
    hours: int
    minutes: int
    has_minutes: bool

    @property
    def value(self) -> str:
        return f"{self.sign or '+'}{self.hours}:{self.minutes:02d}"

    def matches(self, offset_label: str) -> bool:
        """Return True when a ``+H:MM`` label satisfies this query."""
        if self.has_minutes:
            normalized = f"{self.hours}:{self.minutes:02d}"
            signs = (self.sign,) if self.sign else ("+", "-")
            return any(offset_label == f"{sign}{normalized}" for sign in signs)
        # Hours only: "+5" must match "+5:00" and "+5:30" but not "+15:00".
        signs = (self.sign,) if self.sign else ("+", "-")
        return any(offset_label.startswith(f"{sign}{self.hours}:") for sign in signs)


def parse_offset_search_term(raw: str | None) -> OffsetQuery | None:
    """Parse terms like ``UTC+5:30``, ``gmt-3``, ``+0530`` or ``5``.

    Returns None when the term does not look like an offset.
    """
    if not raw:
        return None
    term = _WHITESPACE.sub("", raw.lower())
    for prefix in _OFFSET_PREFIXES:
        if term.startswith(prefix):
            term = term[len(prefix) :]
            break
    if not term:
        return None

    sign: str | None = None
    if term[0] in "+-":
        sign = term[0]
        term = term[1:]

    has_minutes = False
    if ":" in term or "." in term:
        parts = re.split(r"[:.]", term)
        if len(parts) != 2 or not parts[0].isdigit():
            return None
        if parts[1] and not parts[1].isdigit():
            return None
        hours = int(parts[0])
        minutes = int(parts[1]) if parts[1] else 0
        has_minutes = bool(parts[1])
    elif re.fullmatch(r"\d{1,2}", term):
        hours = int(term)
        minutes = 0
    elif re.fullmatch(r"\d{3,4}", term):
        padded = term.zfill(4)
        hours = int(padded[:2])
        minutes = int(padded[2:])
        has_minutes = True
    else:
        return None

    if hours > 14 or minutes > 59:
        return None
    return OffsetQuery(sign=sign, hours=hours, minutes=minutes, has_minutes=has_minutes)


def search_zones(
    term: str,
    *,
    exclude: Iterable[str] = (),
    limit: int = MAX_SEARCH_RESULTS,
    now: datetime | None = None,
    zones: Iterable[str] | None = None,
) -> list[str]:
    """Return up to *limit* zone names matching *term* by name or offset.

    Names in *exclude* (the local zone and already pinned zones) are skipped.
    Plain-text terms shorter than two characters match nothing.
    """
    cleaned = term.strip().lower()
    offset_query = parse_offset_search_term(cleaned)
    if len(cleaned) < 2 and offset_query is None:
        return []

    now = now or datetime.now(UTC)
    excluded = set(exclude)
    matches: list[str] = []
    for zone in zones if zones is not None else all_zones():
        if zone in excluded:
            continue
        if cleaned and cleaned in zone.lower():
            matches.append(zone)
        elif offset_query is not None and offset_query.matches(
            zone_info(zone, now=now).offset
        ):
            matches.append(zone)
        if len(matches) >= limit:
            break
    return matches
