"""Shared test fixtures for the hashcal test suite."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from hashcal.core.fragment import AddressFragment
from hashcal.core.models import CalendarState, EventRecord, Recurrence
from hashcal.core.persistence import PersistenceController

# Real links use a slow KDF; tests only need the same code path.
FAST_KDF_ITERATIONS = 1_000
FAST_DEBOUNCE_MS = 20


def minutes(value: datetime) -> int:
    return int(value.timestamp()) // 60


@pytest.fixture
def sample_state() -> CalendarState:
    """A small calendar with one plain and one weekly event."""
    state = CalendarState(title="Team")
    state.insert_event(
        EventRecord(
            start_minutes=minutes(datetime(2025, 3, 3, 9, 0, tzinfo=UTC)),
            duration_minutes=30,
            title="Standup",
            color_index=2,
            recurrence=Recurrence.WEEKLY,
        )
    )
    state.insert_event(
        EventRecord(
            start_minutes=minutes(datetime(2025, 3, 14, tzinfo=UTC)),
            duration_minutes=0,
            title="Release day",
            color_index=0,
        )
    )
    state.timezones.append("Asia/Tokyo")
    return state


@pytest.fixture
def fragment() -> AddressFragment:
    return AddressFragment(base_url="https://cal.example/")


@pytest.fixture
async def controller(fragment: AddressFragment):
    ctl = PersistenceController(
        fragment,
        debounce_ms=FAST_DEBOUNCE_MS,
        kdf_iterations=FAST_KDF_ITERATIONS,
    )
    yield ctl
    await ctl.close()


@pytest.fixture
def kdf_iterations() -> int:
    return FAST_KDF_ITERATIONS


@pytest.fixture
async def make_controller(fragment: AddressFragment):
    """Factory for extra controllers on the shared fragment; all are closed on teardown."""
    created: list[PersistenceController] = []

    def _make(**kwargs) -> PersistenceController:
        kwargs.setdefault("debounce_ms", FAST_DEBOUNCE_MS)
        kwargs.setdefault("kdf_iterations", FAST_KDF_ITERATIONS)
        ctl = PersistenceController(fragment, **kwargs)
        created.append(ctl)
        return ctl

    yield _make
    for ctl in created:
        await ctl.close()
