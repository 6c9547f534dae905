from datetime import timedelta
from unittest.mock import patch

import pytest

from revisit.application.session_manager import (
    SessionManager,
    SessionStore,
    compose_session_cards,
)
from revisit.domain.errors import (
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from revisit.domain.models import CardStatus, Performance
from revisit.domain.session import ReviewSession, SessionState


def _pool(make_card, **counts):
    cards = []
    for status, n in counts.items():
        cards.extend(make_card(status=CardStatus(status)) for _ in range(n))
    return cards


class TestCompose:
    def test_quota_mix(self, make_card):
        pool = _pool(make_card, learning=10, review=10, new=10)

        chosen = compose_session_cards(pool, target_cards=10, max_new_cards=5)

        assert len(chosen) == 10
        statuses = [c.status for c in chosen]
        assert statuses.count(CardStatus.LEARNING) == 5
        assert statuses.count(CardStatus.REVIEW) == 3
        assert statuses.count(CardStatus.NEW) == 2

    def test_backfill_from_review(self, make_card):
        pool = _pool(make_card, review=8)

        chosen = compose_session_cards(pool, target_cards=10, max_new_cards=5)

        assert len(chosen) == 8

    def test_backfill_prefers_learning(self, make_card):
        pool = _pool(make_card, learning=12, review=1)

        chosen = compose_session_cards(pool, target_cards=10, max_new_cards=5)

        assert len(chosen) == 10
        assert [c.status for c in chosen].count(CardStatus.REVIEW) == 1

    def test_new_cards_capped(self, make_card):
        pool = _pool(make_card, learning=2, new=20)

        chosen = compose_session_cards(pool, target_cards=10, max_new_cards=3)

        assert [c.status for c in chosen].count(CardStatus.NEW) == 3
        assert len(chosen) == 5

    def test_mastered_fill_review_slots(self, make_card):
        pool = _pool(make_card, mastered=4)
        chosen = compose_session_cards(pool, target_cards=4, max_new_cards=0)
        assert len(chosen) == 4

    def test_no_duplicates(self, make_card):
        pool = _pool(make_card, learning=6, review=6, new=6)
        chosen = compose_session_cards(pool, target_cards=12, max_new_cards=6)
        assert len({c.id for c in chosen}) == len(chosen) == 12

    def test_empty_pool(self):
        assert compose_session_cards([], target_cards=10, max_new_cards=5) == []


@pytest.fixture
def stocked(repo, make_card):
    """Two due learning cards and one future card for student s1."""
    repo.save_card(
        make_card(student_id="s1", status=CardStatus.LEARNING, overdue=timedelta(days=2))
    )
    repo.save_card(
        make_card(student_id="s1", status=CardStatus.LEARNING, overdue=timedelta(days=1))
    )
    repo.save_card(
        make_card(student_id="s1", status=CardStatus.REVIEW, overdue=timedelta(days=-5))
    )
    return repo


class TestStartSession:
    def test_start(self, sessions, stocked, clock):
        session = sessions.start_session("s1")

        assert session.session_id.startswith("session_")
        assert session.state is SessionState.IN_PROGRESS
        assert [c.id for c in session.cards] == ["card-001", "card-002"]
        assert session.started_at == clock.now
        assert sessions.get_session(session.session_id) is session

    def test_no_due_cards(self, sessions):
        session = sessions.start_session("nobody")
        assert session.total_cards == 0
        assert session.is_complete

    def test_target_respected(self, sessions, stocked):
        session = sessions.start_session("s1", target_cards=1)
        assert session.total_cards == 1

    @pytest.mark.parametrize("kwargs", [{"target_cards": 0}, {"max_new_cards": -1}])
    def test_invalid_parameters(self, sessions, kwargs):
        with pytest.raises(ValidationError):
            sessions.start_session("s1", **kwargs)

    def test_subject_filter(self, sessions, repo, make_card):
        repo.save_card(make_card(student_id="s1", subject="math"))
        repo.save_card(make_card(student_id="s1", subject="reading"))

        session = sessions.start_session("s1", "reading")

        assert [c.subject for c in session.cards] == ["reading"]


class TestReviewInSession:
    def test_review_flow(self, sessions, stocked, repo):
        session = sessions.start_session("s1")

        first = sessions.review_card_in_session(
            session.session_id, "card-001", Performance(quality=5, time_spent=6)
        )
        assert first.is_complete is False
        assert first.result.card_id == "card-001"
        assert repo.load_card("card-001").total_reviews == 1

        second = sessions.review_card_in_session(
            session.session_id, "card-002", {"quality": 1, "time_spent": 20}
        )
        assert second.is_complete is True
        assert session.completed_cards == 2
        assert [r.correct for r in session.results] == [True, False]

    def test_card_not_in_session(self, sessions, stocked):
        session = sessions.start_session("s1")
        with pytest.raises(NotFoundError):
            sessions.review_card_in_session(session.session_id, "card-003", {"quality": 4})

    def test_unknown_session(self, sessions):
        with pytest.raises(NotFoundError):
            sessions.review_card_in_session("session_nope", "card-001", {"quality": 4})

    def test_bad_performance(self, sessions, stocked):
        session = sessions.start_session("s1")
        with pytest.raises(ValidationError):
            sessions.review_card_in_session(session.session_id, "card-001", {"quality": 7})
        assert session.completed_cards == 0

    def test_session_cards_track_reviews(self, sessions, stocked, clock):
        session = sessions.start_session("s1")

        sessions.review_card_in_session(session.session_id, "card-001", {"quality": 5})

        card = session.find_card("card-001")
        assert card.repetitions == 1
        assert card.next_review_at == clock.now + timedelta(days=1)
        assert [c.id for c in session.cards] == ["card-001", "card-002"]

    def test_unsaved_review_is_still_recorded(self, sessions, service, stocked):
        session = sessions.start_session("s1")

        with patch.object(stocked, "save_card", side_effect=StorageError("disk full")):
            with pytest.raises(StorageError):
                sessions.review_card_in_session(session.session_id, "card-001", {"quality": 5})

        assert service.pending_writes == ["card-001"]
        assert session.completed_cards == 1
        assert len(session.results) == 1
        assert session.results[0].result.interval == 1
        assert session.find_card("card-001").repetitions == 1
        assert service.get_card("card-001").total_reviews == 1

    def test_failed_load_is_not_recorded(self, sessions, stocked):
        session = sessions.start_session("s1")

        with patch.object(stocked, "load_card", side_effect=StorageError("disk gone")):
            with pytest.raises(StorageError):
                sessions.review_card_in_session(session.session_id, "card-001", {"quality": 5})

        assert session.completed_cards == 0
        assert session.results == []


class TestCompleteSession:
    def test_stats(self, sessions, stocked, clock):
        session = sessions.start_session("s1")
        sessions.review_card_in_session(session.session_id, "card-001", {"quality": 5})
        sessions.review_card_in_session(session.session_id, "card-002", {"quality": 2})
        clock.advance(minutes=4)

        completion = sessions.complete_session(session.session_id)

        stats = completion.stats
        assert stats.total_cards == 2
        assert stats.completed_cards == 2
        assert stats.correct == 1
        assert stats.accuracy == 50.0
        assert stats.average_quality == 3.5
        assert stats.duration_minutes == 4.0
        assert stats.cards_per_minute == 0.5
        assert session.state is SessionState.COMPLETED
        assert session.completed_at == clock.now

    def test_next_session_summary(self, sessions, stocked, clock):
        session = sessions.start_session("s1")
        sessions.review_card_in_session(session.session_id, "card-001", {"quality": 5})

        completion = sessions.complete_session(session.session_id)

        # card-002 is still due; card-001 moved a day out
        assert completion.next_session.has_due_cards is True
        assert completion.next_session.due_count == 1
        assert completion.next_session.upcoming_week == 2

    def test_empty_session_has_zero_rates(self, sessions):
        session = sessions.start_session("nobody")

        stats = sessions.complete_session(session.session_id).stats

        assert stats.accuracy == 0.0
        assert stats.average_quality == 0.0
        assert stats.cards_per_minute == 0.0

    def test_completed_session_is_gone(self, sessions, stocked):
        session = sessions.start_session("s1")
        sessions.complete_session(session.session_id)

        with pytest.raises(NotFoundError):
            sessions.complete_session(session.session_id)
        with pytest.raises(NotFoundError):
            sessions.review_card_in_session(session.session_id, "card-001", {"quality": 4})


class TestAbandon:
    def test_abandon_keeps_reviews(self, sessions, stocked, repo):
        session = sessions.start_session("s1")
        sessions.review_card_in_session(session.session_id, "card-001", {"quality": 4})

        abandoned = sessions.abandon_session(session.session_id)

        assert abandoned.state is SessionState.ABANDONED
        assert repo.load_card("card-001").total_reviews == 1
        with pytest.raises(NotFoundError):
            sessions.get_session(session.session_id)

    def test_not_in_progress(self, sessions, stocked):
        session = sessions.start_session("s1")
        session.state = SessionState.ABANDONED
        with pytest.raises(InvalidStateError):
            sessions.complete_session(session.session_id)


class TestSessionStore:
    def _session(self, sid, clock):
        return ReviewSession(
            session_id=sid, student_id="s1", subject=None, cards=[], started_at=clock.now
        )

    def test_expiry(self, clock):
        store = SessionStore(ttl=timedelta(minutes=120), clock=clock)
        store.add(self._session("a", clock))

        clock.advance(minutes=120)
        assert store.get("a").session_id == "a"

        clock.advance(minutes=1)
        with pytest.raises(NotFoundError):
            store.get("a")
        assert "a" not in store

    def test_activity_extends_lifetime(self, sessions, stocked, clock):
        session = sessions.start_session("s1")
        clock.advance(minutes=100)
        sessions.review_card_in_session(session.session_id, "card-001", {"quality": 4})
        clock.advance(minutes=100)

        assert sessions.get_session(session.session_id) is session

    def test_purge(self, clock):
        store = SessionStore(ttl=timedelta(minutes=10), clock=clock)
        store.add(self._session("old", clock))
        clock.advance(minutes=5)
        store.add(self._session("fresh", clock))
        clock.advance(minutes=6)

        assert store.purge_expired() == 1
        assert len(store) == 1
        assert "fresh" in store

    def test_capacity(self, clock):
        store = SessionStore(ttl=timedelta(minutes=10), max_sessions=1, clock=clock)
        store.add(self._session("a", clock))

        with pytest.raises(InvalidStateError):
            store.add(self._session("b", clock))

        clock.advance(minutes=11)
        store.add(self._session("b", clock))
        assert len(store) == 1

    def test_manager_uses_default_store(self, service, clock):
        manager = SessionManager(service, clock=clock)
        assert manager.store.get(manager.start_session("s1").session_id)
