"""Centralized constants for Kioku.

All scheduling defaults and tuning knobs live here so every layer
imports from a single source of truth.
"""

# ---------- Ease ----------
MIN_EASE = 1.3
MAX_EASE = 3.2
INITIAL_EASE = 2.5
EASE_PRECISION = 4  # decimal places kept after each ease adjustment

AGAIN_EASE_PENALTY = 0.2
HARD_EASE_PENALTY = 0.15
EASY_EASE_BONUS = 0.15

# ---------- Intervals ----------
FIRST_INTERVAL_DAYS = 1
SECOND_INTERVAL_DAYS = 3
HARD_INTERVAL_FACTOR = 0.8
EASY_INTERVAL_FACTOR = 1.3
MAX_INTERVAL_DAYS = 36500  # keeps due dates inside the datetime range

# ---------- Sessions ----------
DEFAULT_SESSION_LIMIT = 20
DEFAULT_USER_ID = "local"
MAX_OPEN_SESSIONS = 1000  # per server process

# ---------- Background writes ----------
WRITE_MAX_ATTEMPTS = 3
WRITE_BASE_DELAY = 0.5  # seconds
WRITE_BACKOFF_MULTIPLIER = 2.0
WRITE_MAX_DELAY = 5.0  # seconds

# ---------- REST backend ----------
REQUEST_TIMEOUT = 30.0
