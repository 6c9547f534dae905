"""Identifier generation for cards and sessions."""

from ulid import ULID


def generate_card_id() -> str:
    """Generate a sortable, collision-resistant card ID using ULID."""
    return f"card_{ULID()}"


def generate_session_id() -> str:
    """Generate a session ID using ULID."""
    return f"session_{ULID()}"
