"""
Tests for the pure move planner (no persistence involved).
"""
import pytest

from agendaboard.kanban.errors import WipLimitExceeded
from agendaboard.kanban.moves import ordered_card_ids, plan_insert, plan_move, plan_removal
from agendaboard.kanban.schema import Card, Column

from conftest import FIXED_TIME


def make(layout):
    """layout: {column_id: [card_id, ...]} in board order; returns (columns, cards)."""
    columns, cards = {}, {}
    for col_pos, (column_id, card_ids) in enumerate(layout.items()):
        columns[column_id] = Column(column_id=column_id, name=column_id, position=col_pos)
        for pos, card_id in enumerate(card_ids):
            cards[card_id] = Card(card_id=card_id, column_id=column_id, title=card_id, position=pos)
    return columns, cards


def apply(cards, plan):
    for p in plan.placements:
        cards[p.card_id].column_id = p.column_id
        cards[p.card_id].position = p.position


def test_plan_does_not_mutate_inputs():
    columns, cards = make({"A": ["a", "b", "c"], "B": []})
    plan_move(columns, cards, "a", "B", 0)
    assert [(c.column_id, c.position) for c in cards.values()] == [("A", 0), ("A", 1), ("A", 2)]


def test_placements_ordered_by_board_then_position():
    columns, cards = make({"A": ["a", "b", "c"], "B": ["x", "y"]})
    plan = plan_move(columns, cards, "a", "B", 0)
    assert [(p.column_id, p.position, p.card_id) for p in plan.placements] == [
        ("A", 0, "b"),
        ("A", 1, "c"),
        ("B", 0, "a"),
        ("B", 1, "x"),
        ("B", 2, "y"),
    ]


def test_plan_is_deterministic_regardless_of_dict_order():
    columns, cards = make({"A": ["a", "b", "c", "d"], "B": ["x"]})
    reversed_cards = dict(reversed(list(cards.items())))
    assert plan_move(columns, cards, "c", "B", 1) == plan_move(columns, reversed_cards, "c", "B", 1)


def test_duplicate_positions_break_ties_by_id():
    columns, cards = make({"A": ["a", "b"]})
    cards["b"].position = 0  # both at 0
    assert ordered_card_ids(cards, "A") == ["a", "b"]
    plan = plan_move(columns, cards, "a", "A", 0)
    # Renumbering repairs the duplicate
    assert [(p.card_id, p.position) for p in plan.placements] == [("b", 1)]


@pytest.mark.parametrize("target", [0, 1, 2, 3, 7])
def test_same_column_moves_keep_density(target):
    columns, cards = make({"A": ["a", "b", "c", "d"]})
    plan = plan_move(columns, cards, "b", "A", target)
    apply(cards, plan)
    assert sorted(c.position for c in cards.values()) == [0, 1, 2, 3]
    assert ordered_card_ids(cards, "A").index("b") == min(target, 3)


def test_wip_check_counts_target_only():
    columns, cards = make({"A": ["a"], "B": ["x", "y"]})
    columns["B"].limit_wip = 2
    with pytest.raises(WipLimitExceeded):
        plan_move(columns, cards, "a", "B", 0)
    columns["B"].limit_wip = 3
    assert not plan_move(columns, cards, "a", "B", 0).is_noop


def test_zero_wip_limit_means_unlimited():
    columns, cards = make({"A": ["a"], "B": ["x"]})
    columns["B"].limit_wip = 0
    plan = plan_move(columns, cards, "a", "B", 5)
    assert plan.to_position == 1


def test_completed_at_uses_given_clock():
    columns, cards = make({"A": ["a"], "Done": []})
    columns["Done"].is_done = True
    plan = plan_move(columns, cards, "a", "Done", 0, now=FIXED_TIME)
    assert plan.placements[-1].completed_at == FIXED_TIME


def test_plan_insert_middle():
    columns, cards = make({"A": ["a", "b", "c"]})
    slot, shifted = plan_insert(columns, cards, "A", 1)
    assert slot == 1
    assert [(p.card_id, p.position) for p in shifted] == [("b", 2), ("c", 3)]


def test_plan_removal_closes_gap():
    columns, cards = make({"A": ["a", "b", "c"]})
    placements = plan_removal(columns, cards, "a")
    assert [(p.card_id, p.position) for p in placements] == [("b", 0), ("c", 1)]
