"""
Review session: the state machine that drives one study run.

IDLE -> LOADED -> PRESENTING -> GRADED -> PRESENTING ... -> COMPLETED

Grading is synchronous and in-memory. Persistence and progress notifications
are handed to a BackgroundWriter so a slow or failing backend never blocks
the learner; each graded entry records the durable outcome separately.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import partial

from kioku.domain.constants import DEFAULT_SESSION_LIMIT
from kioku.domain.errors import SessionLoadError, SessionStateError
from kioku.domain.models import (
    CardState,
    ItemFilter,
    LearningItem,
    Rating,
    WriteStatus,
    utcnow,
)
from kioku.domain.ports import CardStore, CatalogReader, ProgressTracker

from .queue_builder import build_due_queue
from .scheduler import Scheduler
from .write_queue import BackgroundWriter

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    LOADED = "loaded"
    PRESENTING = "presenting"
    GRADED = "graded"
    COMPLETED = "completed"


@dataclass
class SessionEntry:
    """
    One card in the session queue.

    Attributes:
        card: State as loaded when the session started.
        item: Catalog display data for the card.
        rating: Rating applied, None until graded.
        new_state: Scheduler output, None until graded.
        persist_status: Outcome of the card store upsert.
        progress_status: Outcome of the progress notification.
    """

    card: CardState
    item: LearningItem
    rating: Rating | None = None
    new_state: CardState | None = None
    persist_status: WriteStatus | None = None
    progress_status: WriteStatus | None = None

    @property
    def item_id(self) -> str:
        return self.card.item_id

    @property
    def correct(self) -> bool | None:
        return None if self.rating is None else self.rating.is_correct


class ReviewSession:
    """
    A bounded run through a user's due queue.

    All collaborators are injected; the session never reaches for global
    clients. One session serves one learner and one grading at a time.
    """

    def __init__(
        self,
        user_id: str,
        cards: CardStore,
        catalog: CatalogReader,
        progress: ProgressTracker,
        scheduler: Scheduler | None = None,
        writer: BackgroundWriter | None = None,
        limit: int = DEFAULT_SESSION_LIMIT,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.user_id = user_id
        self.limit = limit
        self._cards = cards
        self._catalog = catalog
        self._progress = progress
        self._scheduler = scheduler or Scheduler()
        self._writer = writer or BackgroundWriter()
        self._clock = clock

        self._state = SessionState.IDLE
        self._queue: list[SessionEntry] = []
        self._graded: list[SessionEntry] = []
        self._initial_size = 0
        self._closed = False
        self.enrolled_count = 0
        self.dropped_count = 0
        self.correct_count = 0
        self.wrong_count = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current(self) -> SessionEntry | None:
        """The card being presented, if any."""
        if self._state is SessionState.PRESENTING and self._queue:
            return self._queue[0]
        return None

    @property
    def remaining(self) -> int:
        return len(self._queue)

    @property
    def size(self) -> int:
        """Number of cards the queue held when it was loaded."""
        return self._initial_size

    @property
    def graded(self) -> list[SessionEntry]:
        return list(self._graded)

    @property
    def nothing_due(self) -> bool:
        return self._state is SessionState.COMPLETED and self._initial_size == 0

    @property
    def exited_early(self) -> bool:
        return self._closed and bool(self._queue)

    @property
    def pending_writes(self) -> int:
        return self._writer.pending

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """
        Fetch the user's cards and build the due queue (IDLE -> LOADED).

        Raises:
            SessionLoadError: If the card store or catalog fails. The session
                stays IDLE and may be loaded again.
        """
        self._require(SessionState.IDLE, "load")
        now = self._clock()

        try:
            cards = await self._cards.get_cards_for_user(self.user_id)
            queue = build_due_queue(cards, now, self.limit)
            items: list[LearningItem] = []
            if queue:
                item_filter = ItemFilter(item_ids=tuple(card.item_id for card in queue))
                items = await self._catalog.get_items_by_filter(item_filter)
        except Exception as e:
            logger.error(f"Failed to load review queue for user={self.user_id}: {e}")
            raise SessionLoadError(f"Could not load review queue: {e}") from e

        by_id = {item.item_id: item for item in items}
        entries = []
        for card in queue:
            item = by_id.get(card.item_id)
            if item is None:
                self.dropped_count += 1
                logger.warning(f"Skipping card {card.item_id}: not found in catalog")
                continue
            entries.append(SessionEntry(card=card, item=item))

        self.enrolled_count = len(cards)
        self._queue = entries
        self._initial_size = len(entries)
        self._transition(SessionState.LOADED)

    def start(self) -> SessionEntry | None:
        """Present the front card (LOADED -> PRESENTING), or complete if empty."""
        self._require(SessionState.LOADED, "start")
        if not self._queue:
            logger.info(f"Nothing due for user={self.user_id}")
            self._transition(SessionState.COMPLETED)
            return None
        self._transition(SessionState.PRESENTING)
        return self._queue[0]

    async def open(self) -> SessionEntry | None:
        """Load and start in one step."""
        await self.load()
        return self.start()

    def grade(self, rating: Rating | str | int, item_id: str) -> SessionEntry | None:
        """
        Grade the presented card and advance.

        Must be called from code running on an event loop, since the
        persistence and progress writes are scheduled on it.

        Args:
            rating: The learner's rating.
            item_id: Card the rating is meant for. When it is not the
                presented card (for example a repeat grade of a card that was
                already removed), the call is ignored.

        Returns:
            The graded entry, or None when the rating was ignored.

        Raises:
            ValueError: If the rating cannot be parsed.
            SessionStateError: If no event loop is running. The session is
                left unchanged.
        """
        rating = Rating.parse(rating)
        entry = self.current
        if entry is None:
            logger.debug(f"Ignoring {rating.name}: no card is being presented")
            return None
        if item_id != entry.item_id:
            logger.debug(f"Ignoring {rating.name} for {item_id}: not the presented card")
            return None

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            raise SessionStateError(
                "grade() needs a running event loop to schedule its writes"
            ) from None

        entry.new_state = self._scheduler.advance(entry.card, rating, self._clock())
        entry.rating = rating
        self._queue.pop(0)
        self._graded.append(entry)
        if rating.is_correct:
            self.correct_count += 1
        else:
            self.wrong_count += 1

        self._transition(SessionState.GRADED)
        self._submit_writes(entry)

        if self._queue:
            self._transition(SessionState.PRESENTING)
        else:
            self._transition(SessionState.COMPLETED)
        return entry

    def close(self) -> None:
        """
        End the session now (the learner exits).

        In-flight writes are not awaited; ungraded cards keep their state.
        """
        self._closed = True
        if self._state is not SessionState.COMPLETED:
            self._transition(SessionState.COMPLETED)

    async def flush(self) -> None:
        """Wait for every background write submitted so far."""
        await self._writer.drain()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _submit_writes(self, entry: SessionEntry) -> None:
        state = entry.new_state
        assert state is not None and entry.rating is not None

        entry.persist_status = WriteStatus.PENDING
        entry.progress_status = WriteStatus.PENDING

        self._writer.submit(
            f"upsert_card(user={self.user_id}, item={entry.item_id})",
            partial(self._cards.upsert_card, self.user_id, entry.item_id, state),
            on_done=partial(self._set_status, entry, "persist_status"),
        )
        self._writer.submit(
            f"record_outcome(user={self.user_id}, item={entry.item_id})",
            partial(
                self._progress.record_outcome,
                self.user_id,
                entry.item_id,
                entry.rating.is_correct,
                entry.rating,
            ),
            on_done=partial(self._set_status, entry, "progress_status"),
        )

    @staticmethod
    def _set_status(entry: SessionEntry, field_name: str, status: WriteStatus) -> None:
        setattr(entry, field_name, status)

    def _require(self, expected: SessionState, action: str) -> None:
        if self._state is not expected:
            raise SessionStateError(
                f"Cannot {action} a session in state '{self._state.value}'"
            )

    def _transition(self, new_state: SessionState) -> None:
        logger.debug(f"Session user={self.user_id}: {self._state.value} -> {new_state.value}")
        self._state = new_state
