from unittest.mock import AsyncMock

import pytest

from conftest import NOW, InMemoryBackend, make_card, make_item
from kioku.application.enrollment import enroll_level
from kioku.application.scheduler import SchedulerParams


@pytest.fixture
def backend():
    items = [make_item("一", "N5"), make_item("二", "N5"), make_item("語", "N4")]
    return InMemoryBackend(items=items)


@pytest.mark.asyncio
async def test_enroll_creates_new_cards(backend):
    created = await enroll_level(backend, backend, "u1", "N5", NOW)

    assert created == 2
    card = backend.cards[("u1", "一")]
    assert card.ease == 2.5
    assert card.repetition == 0
    assert card.due_at == NOW
    assert ("u1", "語") not in backend.cards


@pytest.mark.asyncio
async def test_enroll_keeps_existing_progress(backend):
    existing = make_card("一", 10, repetition=4, interval_days=10, ease=2.8)
    backend.cards[existing.key] = existing

    created = await enroll_level(backend, backend, "u1", "N5", NOW)

    assert created == 1
    assert backend.cards[("u1", "一")] == existing

    assert await enroll_level(backend, backend, "u1", "N5", NOW) == 0


@pytest.mark.asyncio
async def test_enroll_unknown_level(backend, caplog):
    backend.seed_cards = AsyncMock()

    assert await enroll_level(backend, backend, "u1", "N1", NOW) == 0
    backend.seed_cards.assert_not_awaited()
    assert "No catalog items found for level 'N1'" in caplog.text


@pytest.mark.asyncio
async def test_enroll_uses_params(backend):
    await enroll_level(backend, backend, "u2", "N4", NOW, SchedulerParams(initial_ease=2.0))

    assert backend.cards[("u2", "語")].ease == 2.0
