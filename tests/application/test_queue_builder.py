from datetime import timedelta

from conftest import NOW, make_card
from kioku.application.queue_builder import build_due_queue


def test_due_queue_ordering_and_filter():
    cards = [
        make_card("A", -1),
        make_card("B", 0),
        make_card("C", 1),
        make_card("D", -2),
    ]

    queue = build_due_queue(cards, NOW, limit=20)

    assert [c.item_id for c in queue] == ["D", "A", "B"]


def test_ties_break_on_item_id():
    due = NOW - timedelta(hours=1)
    cards = [make_card(k, due_at=due) for k in ["z", "b", "m", "a"]]

    queue = build_due_queue(cards, NOW)

    assert [c.item_id for c in queue] == ["a", "b", "m", "z"]


def test_order_does_not_depend_on_input_order():
    cards = [make_card(k, off) for k, off in [("x", -1), ("y", -1), ("w", -3), ("v", 0)]]

    first = build_due_queue(cards, NOW)
    second = build_due_queue(list(reversed(cards)), NOW)

    assert first == second


def test_limit_keeps_most_overdue():
    cards = [make_card(f"k{i}", -i) for i in range(10)]

    queue = build_due_queue(cards, NOW, limit=3)

    assert [c.item_id for c in queue] == ["k9", "k8", "k7"]


def test_empty_and_zero_limit():
    assert build_due_queue([], NOW) == []
    assert build_due_queue([make_card("a", -1)], NOW, limit=0) == []
    assert build_due_queue([make_card("a", -1)], NOW, limit=-5) == []


def test_nothing_due():
    cards = [make_card("a", 1), make_card("b", 0.01)]
    assert build_due_queue(cards, NOW) == []
