"""
Card <-> plain dict conversion for storage adapters.

Timestamps are ISO-8601 strings; status is its enum value.
"""

from datetime import datetime
from typing import Any

from revisit.domain.constants import (
    DEFAULT_DIFFICULTY,
    INITIAL_EASINESS_FACTOR,
)
from revisit.domain.errors import StorageError, ValidationError
from revisit.domain.models import Card, ReviewHistory, ReviewRecord


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def record_to_dict(record: ReviewRecord) -> dict[str, Any]:
    return {
        "timestamp": _dt(record.timestamp),
        "quality": record.quality,
        "time_spent": record.time_spent,
        "correct": record.correct,
        "interval": record.interval,
        "easiness_factor": record.easiness_factor,
    }


def record_from_dict(data: dict[str, Any]) -> ReviewRecord:
    return ReviewRecord(
        timestamp=_parse_dt(data["timestamp"]),
        quality=data["quality"],
        time_spent=data.get("time_spent", 0.0),
        correct=data["correct"],
        interval=data["interval"],
        easiness_factor=data["easiness_factor"],
    )


def card_to_dict(card: Card) -> dict[str, Any]:
    return {
        "id": card.id,
        "student_id": card.student_id,
        "topic_id": card.topic_id,
        "subject": card.subject,
        "grade_level": card.grade_level,
        "question_id": card.question_id,
        "concept_text": card.concept_text,
        "difficulty": card.difficulty,
        "easiness_factor": card.easiness_factor,
        "interval": card.interval,
        "repetitions": card.repetitions,
        "status": card.status.value,
        "created_at": _dt(card.created_at),
        "last_reviewed_at": _dt(card.last_reviewed_at),
        "next_review_at": _dt(card.next_review_at),
        "retired_at": _dt(card.retired_at),
        "review_history": [record_to_dict(r) for r in card.review_history],
        "total_reviews": card.total_reviews,
        "successful_reviews": card.successful_reviews,
    }


def card_from_dict(data: dict[str, Any]) -> Card:
    """
    Rebuild a Card from its stored form.

    Raises:
        StorageError: The stored document is malformed.
    """
    try:
        return Card(
            id=data["id"],
            student_id=data["student_id"],
            topic_id=data.get("topic_id"),
            subject=data.get("subject"),
            grade_level=data.get("grade_level", 0),
            question_id=data.get("question_id"),
            concept_text=data.get("concept_text"),
            difficulty=(
                DEFAULT_DIFFICULTY if data.get("difficulty") is None else data["difficulty"]
            ),
            easiness_factor=data.get("easiness_factor", INITIAL_EASINESS_FACTOR),
            interval=data.get("interval", 0),
            repetitions=data.get("repetitions", 0),
            status=data.get("status", "new"),
            created_at=_parse_dt(data["created_at"]),
            last_reviewed_at=_parse_dt(data.get("last_reviewed_at")),
            next_review_at=_parse_dt(data["next_review_at"]),
            retired_at=_parse_dt(data.get("retired_at")),
            review_history=ReviewHistory(
                record_from_dict(r) for r in data.get("review_history", [])
            ),
            total_reviews=data.get("total_reviews", 0),
            successful_reviews=data.get("successful_reviews", 0),
        )
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise StorageError(f"Malformed card record {data.get('id', '?')}: {e}") from e
