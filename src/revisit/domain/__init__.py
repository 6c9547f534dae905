# Domain Package
from .clock import Clock, utc_now
from .errors import (
    InvalidStateError,
    NotFoundError,
    RevisitError,
    StorageError,
    ValidationError,
)
from .models import Card, CardStatus, Performance, ReviewHistory, ReviewRecord, ReviewResult
from .ports import CardRepository

__all__ = [
    "Card",
    "CardRepository",
    "CardStatus",
    "Clock",
    "InvalidStateError",
    "NotFoundError",
    "Performance",
    "ReviewHistory",
    "ReviewRecord",
    "ReviewResult",
    "RevisitError",
    "StorageError",
    "ValidationError",
    "utc_now",
]
