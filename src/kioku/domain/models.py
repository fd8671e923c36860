"""
Domain models for spaced-repetition scheduling.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum, IntEnum


class Rating(IntEnum):
    """
    Learner-supplied recall quality, ordered Again < Hard < Good < Easy.

    Values follow the Anki button numbering (1=Again ... 4=Easy).
    """

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4

    @property
    def is_correct(self) -> bool:
        return self is not Rating.AGAIN

    @classmethod
    def parse(cls, value: "str | int | Rating") -> "Rating":
        """Parse a rating from its name ("good"), its digit ("3") or an int."""
        if isinstance(value, Rating):
            return value
        if isinstance(value, int):
            return cls(value)

        text = str(value).strip()
        if text.isdigit():
            return cls(int(text))
        try:
            return cls[text.upper()]
        except KeyError:
            raise ValueError(f"Unknown rating: {value!r}") from None


class WriteStatus(str, Enum):
    """Durable outcome of a background write."""

    PENDING = "pending"
    SAVED = "saved"
    FAILED = "failed"


@dataclass(frozen=True)
class LearningItem:
    """
    A catalog entry (one kanji) that cards point at.

    Attributes:
        item_id: Stable identifier; for kanji this is the character itself.
        text: Display text shown on the card front.
        level: Catalog level, e.g. "N5".
        meaning: Answer shown on the card back.
        onyomi: On reading.
        kunyomi: Kun reading.
    """

    item_id: str
    text: str
    level: str | None = None
    meaning: str | None = None
    onyomi: str | None = None
    kunyomi: str | None = None


@dataclass(frozen=True)
class ItemFilter:
    """Selects catalog items by level and/or explicit ids."""

    level: str | None = None
    item_ids: tuple[str, ...] | None = None

    def matches(self, item: LearningItem) -> bool:
        if self.level is not None and item.level != self.level:
            return False
        if self.item_ids is not None and item.item_id not in self.item_ids:
            return False
        return True


@dataclass(frozen=True)
class CardState:
    """
    The scheduling record for one (user, item) pair.

    Attributes:
        user_id: Owner of the card.
        item_id: Catalog item the card reviews.
        ease: Interval growth multiplier, kept within [1.3, 3.2].
        interval_days: Days until next due at the last grading (0 = due now).
        repetition: Consecutive successful gradings since the last reset.
        lapses: Lifetime count of Again gradings.
        due_at: When the card re-enters the due set (UTC).
        last_reviewed_at: Time of the last grading, None if never reviewed.
    """

    user_id: str
    item_id: str
    ease: float
    interval_days: int
    repetition: int
    lapses: int
    due_at: datetime
    last_reviewed_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.item_id)

    def is_due(self, now: datetime) -> bool:
        return self.due_at <= now


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)
