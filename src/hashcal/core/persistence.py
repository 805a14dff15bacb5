"""Persistence controller. Owns the live calendar and keeps the fragment in sync.

Write path::

    mutation → schedule_save() → (debounce) → encode → fragment.write(token)

Writes are debounced: every mutation cancels the pending timer and arms a new
one, so only the latest state is written once edits pause.  A write generation
counter is bumped on every mutation; an encode that finishes after a newer
mutation is discarded instead of overwriting a fresher fragment.  Encodes are
serialized through a single lock, so at most one is in flight.

Load path::

    fragment navigation → load() → decode → replace state

A load generation counter makes sure only the most recent navigation's result
is applied, whichever decode finishes first.

An empty calendar (no events, no pinned zones) is never encoded: the fragment
is cleared so the shared link is the bare URL.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from hashcal.config import HashcalConfig
from hashcal.core.codec import DEFAULT_KDF_ITERATIONS, decode_async, encode_async, peek_is_encrypted
from hashcal.core.errors import DecodeError, LockedError, WrongPasswordError
from hashcal.core.fragment import AddressFragment
from hashcal.core.logging import set_calendar_context
from hashcal.core.models import (
    CalendarState,
    CalendarView,
    EventRecord,
    Recurrence,
)
from hashcal.core.recurrence import Occurrence, expand, group_occurrences
from hashcal.importing import ImportedEntry, entries_to_records

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 500
DEFAULT_EVENT_DURATION_MINUTES = 60


class LoadStatus(enum.StrEnum):
    """Outcome of reading the fragment into the live state."""

    EMPTY = "empty"
    LOADED = "loaded"
    LOCKED = "locked"
    CORRUPT = "corrupt"
    WRONG_PASSWORD = "wrong_password"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class LoadResult:
    status: LoadStatus
    state: CalendarState


@dataclass(frozen=True)
class LockState:
    """Password protection status of the current fragment."""

    encrypted: bool = False
    unlocked: bool = True

    @property
    def is_locked(self) -> bool:
        return self.encrypted and not self.unlocked


class PersistenceController:
    """Single owner of the live :class:`CalendarState`.

    Parameters
    ----------
    fragment:
        Where tokens are read from and written to.
    debounce_ms:
        Quiescence window before a write is issued.
    kdf_iterations:
        PBKDF2 iteration count passed to the codec.
    tz:
        Zone used for expansion and all-day event placement.
    local_zone:
        The viewer's own zone; it is never pinned as a comparison zone.
    """

    def __init__(
        self,
        fragment: AddressFragment,
        *,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        kdf_iterations: int = DEFAULT_KDF_ITERATIONS,
        tz: tzinfo = UTC,
        local_zone: str = "UTC",
    ) -> None:
        self._fragment = fragment
        self._debounce_s = debounce_ms / 1000
        self._kdf_iterations = kdf_iterations
        self._tz = tz
        self._local_zone = local_zone

        self._state = CalendarState()
        self._password: str | None = None
        self._lock_state = LockState()

        self._pending_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._encode_lock = asyncio.Lock()
        self._write_generation = 0
        self._load_generation = 0
        self._attached = False

    @classmethod
    def from_config(cls, fragment: AddressFragment, config: HashcalConfig) -> PersistenceController:
        return cls(
            fragment,
            debounce_ms=config.persistence.debounce_ms,
            kdf_iterations=config.codec.kdf_iterations,
            tz=ZoneInfo(config.timezone),
            local_zone=config.effective_local_zone,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> CalendarState:
        """A snapshot of the live state; edits to it are not persisted."""
        return self._state.snapshot()

    @property
    def lock_state(self) -> LockState:
        return self._lock_state

    @property
    def fragment(self) -> AddressFragment:
        return self._fragment

    @property
    def has_pending_write(self) -> bool:
        return self._pending_task is not None and not self._pending_task.done()

    def expand(self, start: datetime, end: datetime) -> list[Occurrence]:
        return expand(list(self._state.events), start, end, tz=self._tz)

    def occurrences_by_day(self, start: datetime, end: datetime) -> dict[date, list[Occurrence]]:
        return group_occurrences(self.expand(start, end), self._tz)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def attach(self) -> None:
        """Reload whenever the fragment changes through navigation."""
        if not self._attached:
            self._fragment.add_listener(self._on_navigation)
            self._attached = True

    def detach(self) -> None:
        if self._attached:
            self._fragment.remove_listener(self._on_navigation)
            self._attached = False

    def _on_navigation(self, token: str | None) -> None:  # noqa: ARG002
        self._track(asyncio.get_running_loop().create_task(self.load(), name="hashcal-load"))

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed", task.get_name(), exc_info=exc)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _apply_load(
        self,
        generation: int,
        status: LoadStatus,
        state: CalendarState,
        lock_state: LockState,
        password: str | None,
    ) -> LoadResult:
        if generation != self._load_generation:
            logger.debug(
                "Discarding superseded load (generation=%d, latest=%d)",
                generation,
                self._load_generation,
            )
            return LoadResult(LoadStatus.SUPERSEDED, state.snapshot())
        self._state = state
        self._lock_state = lock_state
        self._password = password
        set_calendar_context(state.title)
        return LoadResult(status, state.snapshot())

    def _begin_load(self) -> int:
        self._load_generation += 1
        self._cancel_pending()
        # In-flight encodes describe the state being replaced.
        self._write_generation += 1
        return self._load_generation

    async def load(self) -> LoadResult:
        """Read the fragment into the live state.

        Never raises for bad input: a corrupt token yields an empty calendar
        with :attr:`LoadStatus.CORRUPT`; an encrypted token yields an empty,
        locked calendar until :meth:`unlock` succeeds.
        """
        generation = self._begin_load()
        token = self._fragment.read()

        if token is None:
            return self._apply_load(generation, LoadStatus.EMPTY, CalendarState(), LockState(), None)

        if peek_is_encrypted(token):
            logger.info("Fragment is encrypted; calendar locked until unlocked")
            return self._apply_load(
                generation,
                LoadStatus.LOCKED,
                CalendarState(),
                LockState(encrypted=True, unlocked=False),
                None,
            )

        try:
            state = await decode_async(token, iterations=self._kdf_iterations)
        except DecodeError as exc:
            logger.warning("Fragment could not be decoded, starting empty: %s", exc)
            return self._apply_load(
                generation, LoadStatus.CORRUPT, CalendarState(), LockState(), None
            )
        return self._apply_load(generation, LoadStatus.LOADED, state, LockState(), None)

    async def unlock(self, password: str) -> LoadResult:
        """Decrypt the current fragment with *password*.

        A wrong password leaves the calendar locked and returns
        :attr:`LoadStatus.WRONG_PASSWORD` so the caller can ask again.  An
        already unlocked calendar is returned as is; pending edits are kept.
        """
        if not password:
            raise ValueError("Password is required")
        if not self._lock_state.is_locked:
            return LoadResult(LoadStatus.LOADED, self.state)
        token = self._fragment.read()
        if token is None or not peek_is_encrypted(token):
            return await self.load()

        generation = self._begin_load()
        try:
            state = await decode_async(token, password, iterations=self._kdf_iterations)
        except WrongPasswordError:
            logger.info("Unlock failed: incorrect password")
            if generation == self._load_generation:
                self._lock_state = LockState(encrypted=True, unlocked=False)
            return LoadResult(LoadStatus.WRONG_PASSWORD, CalendarState())
        except DecodeError as exc:
            logger.warning("Encrypted fragment is corrupt, starting empty: %s", exc)
            return self._apply_load(
                generation, LoadStatus.CORRUPT, CalendarState(), LockState(), None
            )
        return self._apply_load(
            generation,
            LoadStatus.LOADED,
            state,
            LockState(encrypted=True, unlocked=True),
            password,
        )

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    async def lock(self, password: str) -> None:
        """Protect the calendar with *password* and rewrite the fragment."""
        if self._lock_state.is_locked:
            raise LockedError("Calendar is locked; unlock it before changing the password")
        if not password:
            raise ValueError("Password is required")
        self._password = password
        self._lock_state = LockState(encrypted=True, unlocked=True)
        await self._persist_now()
        logger.info("Calendar locked")

    async def remove_lock(self) -> None:
        """Drop password protection and rewrite the fragment unencrypted."""
        if self._lock_state.is_locked:
            raise LockedError("Calendar is locked; unlock it before removing the lock")
        if not self._lock_state.encrypted:
            return
        self._password = None
        self._lock_state = LockState()
        await self._persist_now()
        logger.info("Calendar lock removed")

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _cancel_pending(self) -> None:
        if self._pending_task is not None and not self._pending_task.done():
            self._pending_task.cancel()
        self._pending_task = None

    def schedule_save(self, *, immediate: bool = False) -> None:
        """Arm the debounced write for the current state.

        Supersedes any pending write.  An empty calendar clears the fragment
        right away instead of being encoded.  Does nothing while locked.
        """
        if self._lock_state.is_locked:
            return
        self._cancel_pending()
        self._write_generation += 1
        if self._state.is_empty:
            self._fragment.clear()
            return
        delay = 0.0 if immediate else self._debounce_s
        self._pending_task = asyncio.get_running_loop().create_task(
            self._write_after(delay, self._write_generation),
            name="hashcal-persist",
        )
        self._track(self._pending_task)

    async def _write_after(self, delay: float, generation: int) -> None:
        await asyncio.sleep(delay)
        # Past the quiescence window; later mutations supersede rather than cancel.
        if self._pending_task is asyncio.current_task():
            self._pending_task = None
        await self._persist(generation)

    async def _persist_now(self) -> None:
        self._cancel_pending()
        self._write_generation += 1
        await self._persist(self._write_generation)

    async def _persist(self, generation: int) -> None:
        async with self._encode_lock:
            if generation != self._write_generation or self._lock_state.is_locked:
                return
            snapshot = self._state.snapshot()
            if snapshot.is_empty:
                self._fragment.clear()
                return
            token = await encode_async(snapshot, self._password, iterations=self._kdf_iterations)
            if generation != self._write_generation:
                logger.debug(
                    "Discarding stale encode (generation=%d, latest=%d)",
                    generation,
                    self._write_generation,
                )
                return
            self._fragment.write(token)
            logger.debug(
                "Persisted calendar (events=%d, encrypted=%s, length=%d)",
                len(snapshot.events),
                self._password is not None,
                self._fragment.length,
            )

    async def flush(self) -> None:
        """Write the pending state now and wait for background work to settle."""
        if self.has_pending_write:
            self._cancel_pending()
            await self._persist(self._write_generation)
        await self.drain()

    async def drain(self) -> None:
        """Wait for all background loads and writes to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.flush()
        self.detach()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _editable(self) -> CalendarState:
        if self._lock_state.is_locked:
            raise LockedError("Calendar is locked; unlock it before editing")
        return self._state

    def insert_event(self, record: EventRecord, index: int | None = None) -> int:
        position = self._editable().insert_event(record, index)
        self.schedule_save()
        return position

    def replace_event(self, index: int, record: EventRecord) -> None:
        self._editable().replace_event(index, record)
        self.schedule_save()

    def delete_event(self, index: int) -> EventRecord:
        removed = self._editable().delete_event(index)
        self.schedule_save()
        return removed

    def clear_events(self) -> None:
        self._editable().clear_events()
        self.schedule_save()

    def save_event(
        self,
        *,
        start: datetime,
        title: str,
        all_day: bool = False,
        duration_minutes: int = DEFAULT_EVENT_DURATION_MINUTES,
        color: str | None = None,
        recurrence: Recurrence | str | None = None,
        index: int | None = None,
    ) -> int:
        """Create (or, with *index*, replace) an event from editor input.

        All-day events are anchored at local midnight of *start*'s day and get
        a zero duration.  A color not yet in the palette is appended to it.
        """
        state = self._editable()
        if all_day:
            local_day = start.astimezone(self._tz).date()
            start = datetime.combine(local_day, time.min, tzinfo=self._tz)
            duration_minutes = 0
        color_index = state.ensure_color(color) if color else 0
        record = EventRecord.build(
            start=start,
            duration_minutes=duration_minutes,
            title=title,
            color_index=color_index,
            recurrence=recurrence,
        )
        if index is None:
            position = state.insert_event(record)
        else:
            state.replace_event(index, record)
            position = index
        self.schedule_save()
        return position

    def import_entries(self, entries: Iterable[ImportedEntry | dict[str, Any]]) -> int:
        """Append events handed over by a calendar-file parser; returns the count."""
        state = self._editable()
        records = entries_to_records(entries, len(state.colors))
        for record in records:
            state.insert_event(record)
        if records:
            self.schedule_save()
        logger.info("Imported %d event(s)", len(records))
        return len(records)

    def ensure_color(self, color: str) -> int:
        state = self._editable()
        before = len(state.colors)
        index = state.ensure_color(color)
        if len(state.colors) != before:
            self.schedule_save()
        return index

    def replace_color(self, index: int, color: str) -> None:
        self._editable().replace_color(index, color)
        self.schedule_save()

    def set_title(self, title: str) -> None:
        self._editable().set_title(title)
        set_calendar_context(self._state.title)
        self.schedule_save()

    def toggle_dark_mode(self) -> bool:
        settings = self._editable().settings
        settings.dark_mode = not settings.dark_mode
        self.schedule_save()
        return settings.dark_mode

    def toggle_week_start(self) -> bool:
        settings = self._editable().settings
        settings.week_starts_monday = not settings.week_starts_monday
        self.schedule_save()
        return settings.week_starts_monday

    def set_view(self, view: CalendarView | str) -> bool:
        """Switch the active view; persisted without waiting for the debounce.

        Allowed while locked (nothing is written until unlocked).
        """
        try:
            parsed = CalendarView(view)
        except ValueError:
            return False
        settings = self._state.settings
        if settings.active_view is parsed:
            return False
        settings.active_view = parsed
        self.schedule_save(immediate=True)
        return True

    def add_timezone(self, zone: str) -> bool:
        state = self._editable()
        if zone.strip() == self._local_zone or not state.add_timezone(zone):
            return False
        self.schedule_save()
        return True

    def remove_timezone(self, zone: str) -> bool:
        if not self._editable().remove_timezone(zone):
            return False
        self.schedule_save()
        return True
