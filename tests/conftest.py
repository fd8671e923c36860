from datetime import UTC, datetime, timedelta

import pytest

from kioku.application.factory import Backend
from kioku.domain.models import CardState, ItemFilter, LearningItem, Rating
from kioku.domain.ports import BulkEnroller, CardStore, CatalogReader, ProgressTracker

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


def make_card(item_id: str, due_offset_days: float = 0, user_id: str = "u1", **kwargs) -> CardState:
    """Card due `due_offset_days` relative to NOW (negative = overdue)."""
    fields = dict(
        user_id=user_id,
        item_id=item_id,
        ease=2.5,
        interval_days=0,
        repetition=0,
        lapses=0,
        due_at=NOW + timedelta(days=due_offset_days),
        last_reviewed_at=None,
    )
    fields.update(kwargs)
    return CardState(**fields)


def make_item(item_id: str, level: str = "N5", meaning: str | None = None) -> LearningItem:
    return LearningItem(
        item_id=item_id,
        text=item_id,
        level=level,
        meaning=meaning or f"meaning of {item_id}",
        onyomi="on",
        kunyomi="kun",
    )


class InMemoryBackend(CatalogReader, CardStore, ProgressTracker, BulkEnroller):
    """Dict-backed collaborators for tests."""

    def __init__(self, items=(), cards=()):
        self.items = list(items)
        self.cards = {card.key: card for card in cards}
        self.outcomes: list[tuple[str, str, bool, Rating]] = []

    async def get_items_by_filter(self, item_filter: ItemFilter) -> list[LearningItem]:
        return [item for item in self.items if item_filter.matches(item)]

    async def get_cards_for_user(self, user_id: str) -> list[CardState]:
        return [card for (uid, _), card in self.cards.items() if uid == user_id]

    async def upsert_card(self, user_id: str, item_id: str, state: CardState) -> None:
        self.cards[(user_id, item_id)] = state

    async def record_outcome(self, user_id, item_id, correct, rating) -> None:
        self.outcomes.append((user_id, item_id, correct, rating))

    async def seed_cards(self, user_id, item_ids, defaults) -> int:
        created = 0
        for item_id in item_ids:
            if (user_id, item_id) not in self.cards:
                self.cards[(user_id, item_id)] = CardState(
                    user_id=user_id,
                    item_id=item_id,
                    ease=defaults.ease,
                    interval_days=defaults.interval_days,
                    repetition=defaults.repetition,
                    lapses=defaults.lapses,
                    due_at=defaults.due_at,
                    last_reviewed_at=defaults.last_reviewed_at,
                )
                created += 1
        return created

    def as_backend(self) -> Backend:
        return Backend(catalog=self, cards=self, progress=self, enroller=self)


@pytest.fixture
def memory_backend():
    items = [make_item(k) for k in ["一", "二", "三", "日", "月"]]
    cards = [
        make_card("一", -2),
        make_card("二", -1),
        make_card("三", 0),
        make_card("日", 1),
        make_card("月", 3),
    ]
    return InMemoryBackend(items=items, cards=cards)


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config and the default database
    monkeypatch.setenv("HOME", str(home))
    for var in ["KIOKU_BACKEND", "KIOKU_DB_PATH", "KIOKU_CATALOG_PATH", "KIOKU_USER_ID"]:
        monkeypatch.delenv(var, raising=False)
    return home
