"""
Due-queue builder for review sessions.

Builds ordered study queues by:
1. Keeping cards whose due date has passed
2. Ordering by due date, oldest first, ties broken by item id
3. Capping the queue at the session size limit
"""

import logging
from collections.abc import Iterable
from datetime import datetime

from kioku.domain.constants import DEFAULT_SESSION_LIMIT
from kioku.domain.models import CardState, ensure_utc

logger = logging.getLogger(__name__)


def due_sort_key(card: CardState) -> tuple[datetime, str]:
    return (ensure_utc(card.due_at), card.item_id)


def build_due_queue(
    cards: Iterable[CardState],
    now: datetime,
    limit: int = DEFAULT_SESSION_LIMIT,
) -> list[CardState]:
    """
    Select and order the cards that are due.

    Args:
        cards: Every card the learner has enrolled.
        now: Reference time; cards due at exactly `now` are included.
        limit: Maximum queue length. Negative values are treated as 0.

    Returns:
        A new list; the input is never mutated. An empty input (nothing
        enrolled) yields an empty queue, and seeding is left to the caller.
    """
    now = ensure_utc(now)
    due = [card for card in cards if ensure_utc(card.due_at) <= now]
    due.sort(key=due_sort_key)

    capped = due[: max(0, limit)]
    logger.debug(f"Due queue: {len(due)} due, {len(capped)} queued (limit={limit})")
    return capped
