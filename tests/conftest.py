from datetime import datetime, timedelta, timezone

import pytest

from revisit.application.card_service import CardService
from revisit.application.session_manager import SessionManager, SessionStore
from revisit.domain.models import Card, CardStatus
from revisit.infrastructure.adapters.memory_store import InMemoryCardRepository

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo():
    return InMemoryCardRepository()


@pytest.fixture
def service(repo, clock):
    return CardService(repo, clock=clock)


@pytest.fixture
def sessions(service, clock):
    return SessionManager(service, store=SessionStore(clock=clock), clock=clock)


@pytest.fixture
def make_card(clock):
    """Factory for cards with sensible defaults relative to the fake clock."""
    counter = {"n": 0}

    def _make(
        status: CardStatus = CardStatus.NEW,
        overdue: timedelta = timedelta(0),
        student_id: str = "student-1",
        **kwargs,
    ) -> Card:
        counter["n"] += 1
        kwargs.setdefault("id", f"card-{counter['n']:03d}")
        kwargs.setdefault("subject", "math")
        kwargs.setdefault("grade_level", 5)
        kwargs.setdefault("created_at", clock.now - timedelta(days=30))
        kwargs.setdefault("next_review_at", clock.now - overdue)
        return Card(student_id=student_id, status=status, **kwargs)

    return _make
