"""
SQLite backend: infrastructure adapter for a local study database.

Implements every collaborator port against a single SQLite file:
cards, catalog items, review logs and daily review tallies.
"""

import logging
import sqlite3
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from kioku.domain.errors import CollaboratorError
from kioku.domain.models import (
    CardState,
    ItemFilter,
    LearningItem,
    Rating,
    ensure_utc,
    utcnow,
)
from kioku.domain.ports import BulkEnroller, CardStore, CatalogReader, ProgressTracker

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    item_id TEXT PRIMARY KEY,
    text TEXT NOT NULL,
    level TEXT,
    meaning TEXT,
    onyomi TEXT,
    kunyomi TEXT,
    position INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_items_level ON items(level);

CREATE TABLE IF NOT EXISTS srs_cards (
    user_id TEXT NOT NULL,
    item_id TEXT NOT NULL,
    ease REAL NOT NULL,
    interval_days INTEGER NOT NULL,
    reps INTEGER NOT NULL,
    lapses INTEGER NOT NULL,
    due_at TEXT NOT NULL,
    last_reviewed_at TEXT,
    PRIMARY KEY (user_id, item_id)
);

CREATE TABLE IF NOT EXISTS review_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    item_id TEXT NOT NULL,
    correct INTEGER NOT NULL,
    rating TEXT NOT NULL,
    mode TEXT NOT NULL,
    reviewed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS daily_progress (
    user_id TEXT NOT NULL,
    prog_date TEXT NOT NULL,
    reviews_done INTEGER NOT NULL DEFAULT 0,
    correct_done INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (user_id, prog_date)
);
"""

UPSERT_CARD = """
INSERT INTO srs_cards
    (user_id, item_id, ease, interval_days, reps, lapses, due_at, last_reviewed_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(user_id, item_id) DO UPDATE SET
    ease = excluded.ease,
    interval_days = excluded.interval_days,
    reps = excluded.reps,
    lapses = excluded.lapses,
    due_at = excluded.due_at,
    last_reviewed_at = excluded.last_reviewed_at
"""

SEED_CARD = """
INSERT OR IGNORE INTO srs_cards
    (user_id, item_id, ease, interval_days, reps, lapses, due_at, last_reviewed_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""


def _dump_ts(dt: datetime | None) -> str | None:
    return ensure_utc(dt).isoformat() if dt else None


def _load_ts(raw: str | None) -> datetime | None:
    return ensure_utc(datetime.fromisoformat(raw)) if raw else None


def _card_row(user_id: str, item_id: str, state: CardState) -> tuple:
    return (
        user_id,
        item_id,
        state.ease,
        state.interval_days,
        state.repetition,
        state.lapses,
        _dump_ts(state.due_at),
        _dump_ts(state.last_reviewed_at),
    )


class SqliteBackend(CatalogReader, CardStore, ProgressTracker, BulkEnroller):
    """
    Local SQLite implementation of the collaborator ports.

    Each call opens a short-lived connection, so one instance can be shared
    by concurrent sessions; writes to the same card are last-write-wins.
    """

    def __init__(self, db_path: Path, clock: Callable[[], datetime] = utcnow):
        self.db_path = Path(db_path)
        self._clock = clock
        self._schema_ready = False

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path)
        except (OSError, sqlite3.Error) as e:
            raise CollaboratorError(f"Cannot open database {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            if not self._schema_ready:
                conn.executescript(SCHEMA)
                self._schema_ready = True
            with conn:
                yield conn
        except sqlite3.Error as e:
            logger.warning(f"SQLite error on {self.db_path}: {e}")
            raise CollaboratorError(str(e)) from e
        finally:
            conn.close()

    # ---------- CatalogReader ----------

    async def get_items_by_filter(self, item_filter: ItemFilter) -> list[LearningItem]:
        query = "SELECT * FROM items"
        clauses: list[str] = []
        params: list[str] = []

        if item_filter.level is not None:
            clauses.append("level = ?")
            params.append(item_filter.level)
        if item_filter.item_ids is not None:
            if not item_filter.item_ids:
                return []
            placeholders = ",".join("?" for _ in item_filter.item_ids)
            clauses.append(f"item_id IN ({placeholders})")
            params.extend(item_filter.item_ids)

        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY position, item_id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        return [
            LearningItem(
                item_id=row["item_id"],
                text=row["text"],
                level=row["level"],
                meaning=row["meaning"],
                onyomi=row["onyomi"],
                kunyomi=row["kunyomi"],
            )
            for row in rows
        ]

    async def import_items(self, items: Iterable[LearningItem]) -> int:
        """Insert or refresh catalog items, keeping their given order."""
        rows = [
            (item.item_id, item.text, item.level, item.meaning, item.onyomi, item.kunyomi, i)
            for i, item in enumerate(items)
        ]
        with self._connect() as conn:
            conn.executemany(
                "INSERT INTO items (item_id, text, level, meaning, onyomi, kunyomi, position) "
                "VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(item_id) DO UPDATE SET text = excluded.text, "
                "level = excluded.level, meaning = excluded.meaning, "
                "onyomi = excluded.onyomi, kunyomi = excluded.kunyomi, "
                "position = excluded.position",
                rows,
            )
        return len(rows)

    # ---------- CardStore ----------

    async def get_cards_for_user(self, user_id: str) -> list[CardState]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM srs_cards WHERE user_id = ?", (user_id,)
            ).fetchall()

        return [
            CardState(
                user_id=row["user_id"],
                item_id=row["item_id"],
                ease=row["ease"],
                interval_days=row["interval_days"],
                repetition=row["reps"],
                lapses=row["lapses"],
                due_at=_load_ts(row["due_at"]),
                last_reviewed_at=_load_ts(row["last_reviewed_at"]),
            )
            for row in rows
        ]

    async def upsert_card(self, user_id: str, item_id: str, state: CardState) -> None:
        with self._connect() as conn:
            conn.execute(UPSERT_CARD, _card_row(user_id, item_id, state))

    # ---------- ProgressTracker ----------

    async def record_outcome(
        self, user_id: str, item_id: str, correct: bool, rating: Rating
    ) -> None:
        now = ensure_utc(self._clock())
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO review_logs (user_id, item_id, correct, rating, mode, reviewed_at) "
                "VALUES (?, ?, ?, ?, 'review', ?)",
                (user_id, item_id, int(correct), Rating.parse(rating).name.lower(), now.isoformat()),
            )
            conn.execute(
                "INSERT INTO daily_progress (user_id, prog_date, reviews_done, correct_done) "
                "VALUES (?, ?, 1, ?) "
                "ON CONFLICT(user_id, prog_date) DO UPDATE SET "
                "reviews_done = reviews_done + 1, "
                "correct_done = correct_done + excluded.correct_done",
                (user_id, now.date().isoformat(), int(correct)),
            )

    async def get_daily_progress(self, user_id: str, day: str) -> tuple[int, int]:
        """Return (reviews_done, correct_done) for a day in YYYY-MM-DD form."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT reviews_done, correct_done FROM daily_progress "
                "WHERE user_id = ? AND prog_date = ?",
                (user_id, day),
            ).fetchone()
        if row is None:
            return (0, 0)
        return (row["reviews_done"], row["correct_done"])

    # ---------- BulkEnroller ----------

    async def seed_cards(
        self, user_id: str, item_ids: list[str], defaults: CardState
    ) -> int:
        rows = [_card_row(user_id, item_id, defaults) for item_id in item_ids]
        with self._connect() as conn:
            before = conn.total_changes
            conn.executemany(SEED_CARD, rows)
            return conn.total_changes - before
