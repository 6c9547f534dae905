"""
Review session orchestration.

A session pulls a prioritized pool from the due selector, composes a
bounded mix of learning / review / new cards, routes each answer through
the card service and closes with aggregate statistics.

Session lifecycle:
    in-progress --complete--> completed
    in-progress --abandon---> abandoned
    in-progress --ttl-------> expired (dropped from the store)
"""

import logging
import math
import threading
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from revisit.domain.clock import Clock, utc_now
from revisit.domain.constants import (
    DEFAULT_MAX_NEW_CARDS,
    DEFAULT_MAX_SESSIONS,
    DEFAULT_SESSION_TTL_MINUTES,
    DEFAULT_TARGET_CARDS,
    LEARNING_SHARE,
    REVIEW_SHARE,
    SESSION_POOL_FACTOR,
)
from revisit.domain.errors import (
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from revisit.domain.models import Card, CardStatus, Performance, ReviewResult
from revisit.domain.session import (
    ReviewSession,
    SessionCompletion,
    SessionResult,
    SessionReviewOutcome,
    SessionState,
    SessionStats,
)

from .card_service import CardService
from .id_service import generate_session_id

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Holds in-progress sessions. Sessions idle for longer than `ttl` are
    treated as missing and dropped.
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(minutes=DEFAULT_SESSION_TTL_MINUTES),
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        clock: Clock = utc_now,
    ):
        self.ttl = ttl
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: dict[str, ReviewSession] = {}
        self._lock = threading.Lock()

    def _is_expired(self, session: ReviewSession) -> bool:
        return self._clock() - session.last_activity_at > self.ttl

    def add(self, session: ReviewSession) -> None:
        with self._lock:
            if len(self._sessions) >= self.max_sessions:
                self._purge_locked()
            if len(self._sessions) >= self.max_sessions:
                raise InvalidStateError(
                    f"Too many active sessions ({self.max_sessions}); complete or abandon some"
                )
            self._sessions[session.session_id] = session

    def get(self, session_id: str) -> ReviewSession:
        """
        Raises:
            NotFoundError: Unknown or expired session.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and self._is_expired(session):
                del self._sessions[session_id]
                logger.info(f"Session {session_id} expired after {self.ttl}")
                session = None
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def remove(self, session_id: str) -> ReviewSession | None:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def _purge_locked(self) -> int:
        expired = [sid for sid, s in self._sessions.items() if self._is_expired(s)]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def purge_expired(self) -> int:
        """Drop every expired session. Returns how many were removed."""
        with self._lock:
            removed = self._purge_locked()
        if removed:
            logger.info(f"Purged {removed} expired sessions")
        return removed

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions


def compose_session_cards(
    pool: list[Card], target_cards: int, max_new_cards: int
) -> list[Card]:
    """
    Pick at most `target_cards` cards from a priority-ordered pool.

    Primary fill: floor(50%) learning, floor(30%) review, then new cards
    (never more than `max_new_cards`). Any shortfall is backfilled from the
    leftover learning cards, then review, then new, so the session is only
    short when the pool itself is.
    """
    learning = [c for c in pool if c.status is CardStatus.LEARNING]
    review = [c for c in pool if c.status in (CardStatus.REVIEW, CardStatus.MASTERED)]
    new = [c for c in pool if c.status is CardStatus.NEW][:max_new_cards]

    learning_quota = math.floor(target_cards * LEARNING_SHARE)
    review_quota = math.floor(target_cards * REVIEW_SHARE)

    selected = learning[:learning_quota] + review[:review_quota] + new
    selected = selected[:target_cards]

    chosen = {c.id for c in selected}
    for bucket in (learning, review, new):
        for card in bucket:
            if len(selected) >= target_cards:
                return selected
            if card.id not in chosen:
                selected.append(card)
                chosen.add(card.id)
    return selected


class SessionManager:
    def __init__(
        self,
        cards: CardService,
        store: SessionStore | None = None,
        clock: Clock = utc_now,
        default_target_cards: int = DEFAULT_TARGET_CARDS,
        default_max_new_cards: int = DEFAULT_MAX_NEW_CARDS,
    ):
        self._cards = cards
        self._clock = clock
        self.store = store if store is not None else SessionStore(clock=clock)
        self.default_target_cards = default_target_cards
        self.default_max_new_cards = default_max_new_cards

    def start_session(
        self,
        student_id: str,
        subject: str | None = None,
        *,
        target_cards: int | None = None,
        max_new_cards: int | None = None,
    ) -> ReviewSession:
        target_cards = self.default_target_cards if target_cards is None else target_cards
        max_new_cards = self.default_max_new_cards if max_new_cards is None else max_new_cards
        if target_cards < 1:
            raise ValidationError(f"target_cards must be at least 1, got {target_cards}")
        if max_new_cards < 0:
            raise ValidationError(f"max_new_cards must be non-negative, got {max_new_cards}")

        pool = self._cards.get_due_cards(
            student_id, subject, limit=target_cards * SESSION_POOL_FACTOR
        )
        session = ReviewSession(
            session_id=generate_session_id(),
            student_id=student_id,
            subject=subject,
            cards=compose_session_cards(pool, target_cards, max_new_cards),
            started_at=self._clock(),
        )
        self.store.add(session)

        logger.info(
            f"Started session {session.session_id} for {student_id}: "
            f"{session.total_cards} cards (pool {len(pool)})"
        )
        return session

    def get_session(self, session_id: str) -> ReviewSession:
        return self.store.get(session_id)

    def _active(self, session_id: str) -> ReviewSession:
        session = self.store.get(session_id)
        if session.state is not SessionState.IN_PROGRESS:
            raise InvalidStateError(f"Session {session_id} is {session.state.value}")
        return session

    def review_card_in_session(
        self,
        session_id: str,
        card_id: str,
        performance: Performance | Mapping[str, Any],
    ) -> SessionReviewOutcome:
        """
        Raises:
            NotFoundError: Unknown session, or card not part of it.
            InvalidStateError: Session no longer in progress.
            ValidationError: Malformed performance.
            StorageError: The review was applied and recorded but could not be saved.
        """
        session = self._active(session_id)
        if session.find_card(card_id) is None:
            raise NotFoundError(f"Card {card_id} is not part of session {session_id}")
        if not isinstance(performance, Performance):
            performance = Performance.from_mapping(performance)

        try:
            result = self._cards.review_card(card_id, performance)
        except StorageError:
            # The card was rescheduled in memory and is pending a retry; count the answer
            if card_id in self._cards.pending_writes:
                card = self._cards.get_card(card_id)
                self._record(session, card, performance, ReviewResult.from_card(card))
                logger.warning(f"Session {session_id}: review of {card_id} recorded but not saved")
            raise

        self._record(session, self._cards.get_card(card_id), performance, result)
        return SessionReviewOutcome(
            result=result, is_complete=session.is_complete, session=session
        )

    def _record(
        self,
        session: ReviewSession,
        card: Card,
        performance: Performance,
        result: ReviewResult,
    ) -> None:
        now = self._clock()
        session.results.append(
            SessionResult(
                card_id=card.id,
                quality=performance.quality,
                time_spent=performance.time_spent,
                correct=performance.correct,
                result=result,
                reviewed_at=now,
            )
        )
        session.replace_card(card)
        session.completed_cards += 1
        session.last_activity_at = now

    def complete_session(self, session_id: str) -> SessionCompletion:
        """
        Close a session and compute its statistics.

        Raises:
            NotFoundError: Unknown or expired session.
            InvalidStateError: Session already completed or abandoned.
        """
        session = self._active(session_id)

        now = self._clock()
        session.state = SessionState.COMPLETED
        session.completed_at = now
        session.duration_minutes = (now - session.started_at).total_seconds() / 60

        answered = len(session.results)
        correct = sum(1 for r in session.results if r.correct)
        session.stats = SessionStats(
            total_cards=session.total_cards,
            completed_cards=session.completed_cards,
            correct=correct,
            accuracy=correct / answered * 100 if answered else 0.0,
            average_quality=(
                sum(r.quality for r in session.results) / answered if answered else 0.0
            ),
            duration_minutes=session.duration_minutes,
            cards_per_minute=(
                session.completed_cards / session.duration_minutes
                if session.duration_minutes > 0
                else 0.0
            ),
        )
        self.store.remove(session_id)

        logger.info(
            f"Completed session {session_id}: {session.completed_cards}/{session.total_cards} "
            f"cards, accuracy {session.stats.accuracy:.0f}%"
        )
        return SessionCompletion(
            stats=session.stats,
            next_session=self._cards.next_session_info(session.student_id, session.subject),
            session=session,
        )

    def abandon_session(self, session_id: str) -> ReviewSession:
        """Cancel an in-progress session. Reviews already applied are kept."""
        session = self._active(session_id)
        session.state = SessionState.ABANDONED
        session.completed_at = self._clock()
        self.store.remove(session_id)
        logger.info(f"Abandoned session {session_id} after {session.completed_cards} reviews")
        return session
