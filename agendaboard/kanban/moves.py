"""
Move planner: validates a card relocation and computes the renumbering.

Pure functions over (columns, cards) mappings. Nothing here mutates the
board; BoardStore applies the returned placements and persists them.

Clamping rules:
  cross-column move → min(to_position, target_count)
  same-column move  → min(to_position, count - 1)
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple

from .errors import CardNotFound, ColumnNotFound, WipLimitExceeded
from .schema import Card, CardPlacement, Column, utc_now


@dataclass(frozen=True)
class MovePlan:
    """Outcome of plan_move. Empty placements means nothing changes."""
    card_id: str
    from_column_id: str
    to_column_id: str
    from_position: int
    to_position: int
    placements: Tuple[CardPlacement, ...] = ()

    @property
    def is_noop(self) -> bool:
        return not self.placements

    @property
    def changes_column(self) -> bool:
        return self.from_column_id != self.to_column_id

    def touched_columns(self) -> Tuple[str, ...]:
        if self.changes_column:
            return (self.from_column_id, self.to_column_id)
        return (self.to_column_id,)


def ordered_card_ids(cards: Mapping[str, Card], column_id: str) -> List[str]:
    """Card ids of a column ordered by (position, card_id)."""
    members = [c for c in cards.values() if c.column_id == column_id]
    members.sort(key=lambda c: (c.position, c.card_id))
    return [c.card_id for c in members]


def _diff(
    cards: Mapping[str, Card],
    column_id: str,
    order: List[str],
    completed: Optional[Dict[str, Optional[datetime]]] = None,
) -> List[CardPlacement]:
    """Placements for cards in `order` whose column, slot or completion differ."""
    completed = completed or {}
    out: List[CardPlacement] = []
    for position, card_id in enumerate(order):
        card = cards[card_id]
        completed_at = completed.get(card_id, card.completed_at)
        if (card.column_id, card.position, card.completed_at) != (column_id, position, completed_at):
            out.append(CardPlacement(card_id, column_id, position, completed_at))
    return out


def _sorted_placements(
    columns: Mapping[str, Column], placements: List[CardPlacement]
) -> Tuple[CardPlacement, ...]:
    placements.sort(key=lambda p: (columns[p.column_id].position, p.column_id, p.position))
    return tuple(placements)


def plan_move(
    columns: Mapping[str, Column],
    cards: Mapping[str, Card],
    card_id: str,
    to_column_id: str,
    to_position: int,
    now: Optional[datetime] = None,
) -> MovePlan:
    """Validate a move and compute every placement it changes.

    Raises CardNotFound, ColumnNotFound, WipLimitExceeded or ValueError
    before anything is computed against the board.
    """
    card = cards.get(card_id)
    if card is None:
        raise CardNotFound(card_id)
    target = columns.get(to_column_id)
    if target is None:
        raise ColumnNotFound(to_column_id)
    if to_position < 0:
        raise ValueError(f"Position must be >= 0, got {to_position}")

    source_id = card.column_id
    source_order = ordered_card_ids(cards, source_id)
    from_position = source_order.index(card_id)

    if source_id == to_column_id:
        slot = min(to_position, len(source_order) - 1)
        order = [cid for cid in source_order if cid != card_id]
        order.insert(slot, card_id)
        placements = _diff(cards, to_column_id, order)
        return MovePlan(
            card_id=card_id,
            from_column_id=source_id,
            to_column_id=to_column_id,
            from_position=from_position,
            to_position=slot,
            placements=_sorted_placements(columns, placements),
        )

    target_order = ordered_card_ids(cards, to_column_id)
    if target.has_wip_limit() and len(target_order) >= target.limit_wip:
        raise WipLimitExceeded(to_column_id, target.limit_wip)

    slot = min(to_position, len(target_order))
    target_order.insert(slot, card_id)
    source_order.remove(card_id)

    completed_at = card.completed_at
    source = columns.get(source_id)
    if target.is_done and completed_at is None:
        completed_at = now or utc_now()
    elif not target.is_done and source is not None and source.is_done:
        completed_at = None

    placements = _diff(cards, source_id, source_order)
    placements += _diff(cards, to_column_id, target_order, {card_id: completed_at})
    return MovePlan(
        card_id=card_id,
        from_column_id=source_id,
        to_column_id=to_column_id,
        from_position=from_position,
        to_position=slot,
        placements=_sorted_placements(columns, placements),
    )


def plan_insert(
    columns: Mapping[str, Column],
    cards: Mapping[str, Card],
    column_id: str,
    position: Optional[int] = None,
) -> Tuple[int, List[CardPlacement]]:
    """Slot for a new card plus the placements shifting later cards down.

    position=None appends. The new card itself is not in the result.
    """
    column = columns.get(column_id)
    if column is None:
        raise ColumnNotFound(column_id)
    order = ordered_card_ids(cards, column_id)
    if column.has_wip_limit() and len(order) >= column.limit_wip:
        raise WipLimitExceeded(column_id, column.limit_wip)
    if position is not None and position < 0:
        raise ValueError(f"Position must be >= 0, got {position}")
    slot = len(order) if position is None else min(position, len(order))
    shifted = [
        CardPlacement(cid, column_id, i + 1, cards[cid].completed_at)
        for i, cid in enumerate(order)
        if i >= slot and cards[cid].position != i + 1
    ]
    # Cards before the slot may still need renumbering if positions had gaps
    shifted += _diff(cards, column_id, order[:slot])
    return slot, list(_sorted_placements(columns, shifted))


def plan_removal(
    columns: Mapping[str, Column], cards: Mapping[str, Card], card_id: str
) -> List[CardPlacement]:
    """Placements closing the gap left by removing card_id."""
    card = cards.get(card_id)
    if card is None:
        raise CardNotFound(card_id)
    order = [cid for cid in ordered_card_ids(cards, card.column_id) if cid != card_id]
    return list(_sorted_placements(columns, _diff(cards, card.column_id, order)))
