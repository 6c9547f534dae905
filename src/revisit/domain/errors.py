"""
Error taxonomy for the scheduling engine.

Every failure is scoped to the operation that raised it; none of these are
fatal to the process.
"""


class RevisitError(Exception):
    """Base class for all engine errors."""


class ValidationError(RevisitError, ValueError):
    """Malformed input: quality outside 0..5, bad performance payload, bad options."""


class NotFoundError(RevisitError, LookupError):
    """Unknown card, unknown session, or card not present in a session."""


class InvalidStateError(RevisitError):
    """Operation not allowed in the current state (e.g. completing a finished session)."""


class StorageError(RevisitError):
    """Persistence read or write failure."""
