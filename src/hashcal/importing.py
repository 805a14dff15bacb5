"""Adapter from parsed calendar-file entries to stored event records.

Parsing ICS text is left to an external parser; it hands over
:class:`ImportedEntry` values, which are validated here and turned into
:class:`~hashcal.core.models.EventRecord` instances.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from hashcal.core.models import EventRecord, Recurrence, datetime_to_minutes

DEFAULT_IMPORTED_TITLE = "Imported"


class ImportedEntry(BaseModel):
    """One event as produced by a calendar-file parser."""

    model_config = ConfigDict(extra="ignore")

    start: datetime
    end: datetime | None = None
    title: str | None = None
    is_all_day: bool = False
    rule: Recurrence | None = None

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @field_validator("rule", mode="before")
    @classmethod
    def _parse_rule(cls, value: Any) -> Recurrence | None:
        return Recurrence.parse(value)

    @field_validator("title")
    @classmethod
    def _normalize_title(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @property
    def duration_minutes(self) -> int:
        if self.is_all_day or self.end is None:
            return 0
        return max(0, math.floor((self.end - self.start).total_seconds() / 60 + 0.5))


def entries_to_records(
    entries: Iterable[ImportedEntry | dict[str, Any]],
    color_count: int,
) -> list[EventRecord]:
    """Convert imported entries, cycling colors over the current palette."""
    color_count = max(1, color_count)
    records: list[EventRecord] = []
    for position, raw in enumerate(entries):
        entry = raw if isinstance(raw, ImportedEntry) else ImportedEntry.model_validate(raw)
        records.append(
            EventRecord.build(
                start=datetime_to_minutes(entry.start),
                duration_minutes=entry.duration_minutes,
                title=entry.title or DEFAULT_IMPORTED_TITLE,
                color_index=position % color_count,
                recurrence=entry.rule,
            )
        )
    return records
