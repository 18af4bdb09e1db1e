from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.schemas.ticket import TicketInput, TicketPriority, UserRef
from app.services.board import TicketBoard
from app.services.pulse import UpdatePulseTracker
from app.services.storage import MemoryStorage
from app.services.tickets import TicketStore

ALICE = UserRef(id="u1", name="Alice")
BOB = UserRef(id="u2", name="Bob")


class FakeClock:
    """Each call moves one second forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


def make_input(title: str = "Fix login bug", owner: UserRef = ALICE, **fields) -> TicketInput:
    fields.setdefault("priority", TicketPriority.HIGH)
    return TicketInput(title=title, created_by=owner, **fields)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(storage: MemoryStorage, clock: FakeClock) -> TicketStore:
    return TicketStore(storage, clock=clock)


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def board(store: TicketStore, monotonic: FakeMonotonic) -> TicketBoard:
    return TicketBoard(store=store, pulse=UpdatePulseTracker(window_seconds=3.0, clock=monotonic))
