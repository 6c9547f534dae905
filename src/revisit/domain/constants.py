"""Centralized constants for the scheduling engine.

All algorithm tuning values and interval tables live here so every layer
imports from a single source of truth.
"""

# ---------- Easiness factor ----------
INITIAL_EASINESS_FACTOR = 2.5
MIN_EASINESS_FACTOR = 1.3

# ---------- Review quality (0-5) ----------
MIN_QUALITY = 0
MAX_QUALITY = 5
PASSING_QUALITY = 3  # quality below this is a failed recall

# ---------- Scheduling ----------
FAILED_REVIEW_DELAY_DAYS = 0.5  # failed cards come back later the same day
MASTERY_MIN_REPETITIONS = 6
MASTERY_MIN_EASINESS = 2.3
DEFAULT_DIFFICULTY = 5

# ---------- Interval tables (days) ----------
DEFAULT_INTERVALS: tuple[int, ...] = (1, 3, 7, 14, 30, 60, 120, 240)

# Younger students get shorter, denser tables. Grades 6-12 share the standard one.
GRADE_INTERVALS: dict[int, tuple[int, ...]] = {
    0: (1, 2, 4, 7, 14, 21, 35, 60),  # K
    1: (1, 2, 4, 7, 14, 21, 35, 60),
    2: (1, 2, 5, 8, 16, 25, 40, 70),
    3: (1, 3, 6, 10, 18, 30, 50, 90),
    4: (1, 3, 6, 12, 21, 35, 60, 100),
    5: (1, 3, 7, 14, 25, 40, 70, 120),
    **{grade: DEFAULT_INTERVALS for grade in range(6, 13)},
}

KINDERGARTEN = 0

# ---------- Review history ----------
MAX_REVIEW_HISTORY = 50

# ---------- Due selector ----------
DEFAULT_DUE_LIMIT = 20
ARCHIVE_AFTER_DAYS = 180
ARCHIVE_MIN_REPETITIONS = 8

# ---------- Sessions ----------
DEFAULT_TARGET_CARDS = 20
DEFAULT_MAX_NEW_CARDS = 5
SESSION_POOL_FACTOR = 2  # pull this many times target_cards from the due selector
LEARNING_SHARE = 0.5
REVIEW_SHARE = 0.3
DEFAULT_SESSION_TTL_MINUTES = 120
DEFAULT_MAX_SESSIONS = 1000

# ---------- Statistics ----------
UPCOMING_WINDOW_DAYS = 7
DEFAULT_CALENDAR_DAYS = 30
