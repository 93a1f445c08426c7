"""
BoardStore: the in-memory board of one tenant.

The store is the only writer of card placement fields. Every mutation
follows the same path:

  1. validate against current state (nothing touched on error)
  2. apply locally (optimistic)
  3. commit to the backend, with column version checks when enabled
  4. on failure restore the snapshot (and reload when the backend cannot
     commit atomically) and re-raise; on success notify once

reload() replaces the whole state from the backend; there is no merging.
"""
import logging
import uuid
from dataclasses import fields, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .backend import BoardBackend, BoardChanges
from .errors import CardNotFound, ColumnNotEmpty, ColumnNotFound, KanbanError
from .events import BOARD_CHANGED, BoardEventBridge
from .moves import MovePlan, ordered_card_ids, plan_insert, plan_move, plan_removal
from .schema import (
    Card,
    CardComment,
    CardMovement,
    CardPlacement,
    Column,
    ColumnStats,
    DEFAULT_COLUMN_COLOR,
    Priority,
    parse_dt,
    utc_now,
)
from .stats import compute_stats

logger = logging.getLogger(__name__)

# Card fields only the move engine may change
PLACEMENT_FIELDS = frozenset({"card_id", "column_id", "position", "completed_at"})
COLUMN_FIELDS = frozenset({"name", "color", "limit_wip", "description", "is_done", "is_default"})
CARD_FIELDS = frozenset(f.name for f in fields(Card))

Snapshot = Tuple[Dict[str, Column], Dict[str, Card], Dict[str, datetime]]


def new_id() -> str:
    return str(uuid.uuid4())


def _coerce_card_fields(values: Dict[str, Any]) -> Dict[str, Any]:
    if isinstance(values.get("priority"), str):
        values["priority"] = Priority.from_str(values["priority"])
    if isinstance(values.get("due_date"), str):
        values["due_date"] = parse_dt(values["due_date"])
    return values


class BoardStore:
    """Authoritative view of one tenant's columns and cards."""

    def __init__(
        self,
        backend: BoardBackend,
        tenant_id: str,
        events: Optional[BoardEventBridge] = None,
        optimistic_concurrency: bool = True,
    ):
        self.backend = backend
        self.tenant_id = tenant_id
        self.events = events or BoardEventBridge()
        self.optimistic_concurrency = optimistic_concurrency
        self._columns: Dict[str, Column] = {}
        self._cards: Dict[str, Card] = {}
        self._entered_at: Dict[str, datetime] = {}  # card_id -> entry into current column

    # ── loading ──────────────────────────────────────────────────────────

    def reload(self) -> None:
        """Replace all local state with the backend's current board."""
        columns, cards = self.backend.load_board(self.tenant_id)
        movements = self.backend.latest_movements(self.tenant_id)
        by_id = {c.column_id: c for c in columns}
        kept: Dict[str, Card] = {}
        for card in cards:
            if card.column_id not in by_id:
                logger.warning(f"Skipping card {card.card_id}: column {card.column_id} does not exist")
                continue
            kept[card.card_id] = card
        self._columns = by_id
        self._cards = kept
        self._entered_at = {
            m.card_id: m.moved_at
            for m in movements
            if m.card_id in kept and kept[m.card_id].column_id == m.to_column_id
        }
        logger.info(
            f"Board {self.tenant_id} reloaded: {len(self._columns)} columns, {len(self._cards)} cards"
        )
        self._notify("reload", tuple(self._cards))

    # ── queries ──────────────────────────────────────────────────────────

    def list_columns(self) -> List[Column]:
        return sorted(self._columns.values(), key=lambda c: (c.position, c.column_id))

    def list_cards(self, column_id: str) -> List[Card]:
        if column_id not in self._columns:
            raise ColumnNotFound(column_id)
        return [self._cards[cid] for cid in ordered_card_ids(self._cards, column_id)]

    def all_cards(self) -> List[Card]:
        return [card for column in self.list_columns() for card in self.list_cards(column.column_id)]

    def get_card(self, card_id: str) -> Card:
        card = self._cards.get(card_id)
        if card is None:
            raise CardNotFound(card_id)
        return card

    def get_column(self, column_id: str) -> Column:
        column = self._columns.get(column_id)
        if column is None:
            raise ColumnNotFound(column_id)
        return column

    def stats(self, now: Optional[datetime] = None) -> List[ColumnStats]:
        return compute_stats(self._columns.values(), self._cards.values(), now, self._entered_at)

    def card_history(self, card_id: str) -> List[CardMovement]:
        """Column changes of a card, most recent first."""
        return self.backend.list_movements(self.tenant_id, card_id)

    def card_comments(self, card_id: str) -> List[CardComment]:
        """Comments on a card, newest first."""
        self.get_card(card_id)
        return self.backend.list_comments(self.tenant_id, card_id)

    def add_comment(self, card_id: str, comment: str, user_id: Optional[str] = None) -> CardComment:
        self.get_card(card_id)
        text = comment.strip()
        if not text:
            raise ValueError("Comment must not be empty")
        stored = self.backend.add_comment(
            self.tenant_id,
            CardComment(comment_id=new_id(), card_id=card_id, comment=text, user_id=user_id),
        )
        self._notify("add_comment", (card_id,))
        return stored

    # ── cards ────────────────────────────────────────────────────────────

    def apply_move(
        self,
        card_id: str,
        to_column_id: str,
        to_position: int,
        moved_by: Optional[str] = None,
        notes: str = "",
    ) -> MovePlan:
        """Move a card to (to_column_id, to_position) and persist every shifted card.

        Raises CardNotFound, ColumnNotFound or WipLimitExceeded without
        touching the board, and PersistenceError or Conflict after rolling
        the board back.
        """
        plan = plan_move(self._columns, self._cards, card_id, to_column_id, to_position)
        if plan.is_noop:
            logger.debug(f"Move of {card_id} to {to_column_id}[{to_position}] is a no-op")
            return plan

        movement = None
        if plan.changes_column:
            movement = CardMovement(
                movement_id=new_id(),
                card_id=card_id,
                from_column_id=plan.from_column_id,
                to_column_id=plan.to_column_id,
                moved_by=moved_by,
                notes=notes,
            )

        snapshot = self._snapshot()
        self._apply_placements(plan.placements)
        if movement is not None:
            self._entered_at[card_id] = movement.moved_at
        self._commit(
            "move",
            BoardChanges(placements=list(plan.placements), movement=movement),
            plan.touched_columns(),
            snapshot,
            tuple(p.card_id for p in plan.placements),
        )
        logger.info(
            f"Moved card {card_id}: {plan.from_column_id}[{plan.from_position}] -> "
            f"{plan.to_column_id}[{plan.to_position}] ({len(plan.placements)} placement(s))"
        )
        return plan

    def add_card(
        self,
        column_id: str,
        title: str,
        position: Optional[int] = None,
        **attrs: Any,
    ) -> Card:
        """Create a card; position=None appends. Honours the column's WIP limit."""
        bad = PLACEMENT_FIELDS.intersection(attrs)
        if bad:
            raise ValueError(f"Cannot set {sorted(bad)} when adding a card")
        slot, shifted = plan_insert(self._columns, self._cards, column_id, position)
        column = self._columns[column_id]
        card = Card(
            card_id=new_id(),
            column_id=column_id,
            title=title,
            position=slot,
            completed_at=utc_now() if column.is_done else None,
            **_coerce_card_fields(dict(attrs)),
        )

        snapshot = self._snapshot()
        self._apply_placements(shifted)
        self._cards[card.card_id] = card
        self._commit(
            "add_card",
            BoardChanges(saved_cards=[card], placements=shifted),
            (column_id,),
            snapshot,
            (card.card_id,) + tuple(p.card_id for p in shifted),
        )
        logger.info(f"Added card {card.card_id} to {column_id}[{slot}]")
        return card

    def update_card(self, card_id: str, **updates: Any) -> Card:
        """Edit content fields. Placement changes go through apply_move."""
        card = self.get_card(card_id)
        bad = PLACEMENT_FIELDS.intersection(updates)
        if bad:
            raise ValueError(f"Cannot update {sorted(bad)} directly; use apply_move")
        unknown = sorted(set(updates) - CARD_FIELDS)
        if unknown:
            raise ValueError(f"Unknown card field(s): {unknown}")
        values = _coerce_card_fields(dict(updates))
        values["updated_at"] = utc_now()
        updated = replace(card, **values)

        snapshot = self._snapshot()
        self._cards[card_id] = updated
        self._commit("update_card", BoardChanges(saved_cards=[updated]), (), snapshot, (card_id,))
        return updated

    def delete_card(self, card_id: str) -> None:
        """Remove a card and close the gap it leaves."""
        placements = plan_removal(self._columns, self._cards, card_id)
        column_id = self._cards[card_id].column_id

        snapshot = self._snapshot()
        del self._cards[card_id]
        self._entered_at.pop(card_id, None)
        self._apply_placements(placements)
        self._commit(
            "delete_card",
            BoardChanges(deleted_card_ids=[card_id], placements=placements),
            (column_id,),
            snapshot,
            (card_id,) + tuple(p.card_id for p in placements),
        )
        logger.info(f"Deleted card {card_id} from {column_id}")

    # ── columns ──────────────────────────────────────────────────────────

    def add_column(
        self,
        name: str,
        color: str = DEFAULT_COLUMN_COLOR,
        limit_wip: Optional[int] = None,
        position: Optional[int] = None,
        **attrs: Any,
    ) -> Column:
        """Create a column; position=None appends after the last one."""
        order = [c.column_id for c in self.list_columns()]
        if position is not None and position < 0:
            raise ValueError(f"Position must be >= 0, got {position}")
        slot = len(order) if position is None else min(position, len(order))
        column = Column(
            column_id=new_id(),
            name=name,
            color=color,
            limit_wip=limit_wip,
            position=slot,
            **attrs,
        )
        order.insert(slot, column.column_id)

        snapshot = self._snapshot()
        self._columns[column.column_id] = column
        changed = self._renumber_columns(order, include=column.column_id)
        self._commit("add_column", BoardChanges(saved_columns=changed), (), snapshot, ())
        logger.info(f"Added column {column.column_id} ({name}) at {slot}")
        return self._columns[column.column_id]

    def update_column(self, column_id: str, **updates: Any) -> Column:
        """Edit column attributes. Toggling is_done stamps or clears its cards' completed_at."""
        column = self.get_column(column_id)
        unknown = set(updates) - COLUMN_FIELDS
        if unknown:
            raise ValueError(f"Cannot update column field(s): {sorted(unknown)}")
        updated = replace(column, updated_at=utc_now(), **updates)
        count = len(ordered_card_ids(self._cards, column_id))
        if updated.has_wip_limit() and count > updated.limit_wip:
            logger.warning(
                f"Column {column_id} holds {count} cards, above its new WIP limit {updated.limit_wip}"
            )
        placements = []
        if updated.is_done != column.is_done:
            placements = self._completion_placements(updated)

        snapshot = self._snapshot()
        self._columns[column_id] = updated
        self._apply_placements(placements)
        self._commit(
            "update_column",
            BoardChanges(saved_columns=[updated], placements=placements),
            (column_id,) if placements else (),
            snapshot,
            tuple(p.card_id for p in placements),
        )
        return self._columns[column_id]

    def reorder_columns(self, column_ids: Iterable[str]) -> List[Column]:
        """Reorder the board; column_ids must list every column exactly once."""
        order = list(column_ids)
        if sorted(order) != sorted(self._columns):
            raise ValueError("Column order must contain every column exactly once")

        snapshot = self._snapshot()
        changed = self._renumber_columns(order)
        if changed:
            self._commit("reorder_columns", BoardChanges(saved_columns=changed), (), snapshot, ())
        return self.list_columns()

    def delete_column(self, column_id: str) -> None:
        """Delete an empty column and close the gap in column positions."""
        self.get_column(column_id)
        count = len(ordered_card_ids(self._cards, column_id))
        if count:
            raise ColumnNotEmpty(column_id, count)

        snapshot = self._snapshot()
        del self._columns[column_id]
        changed = self._renumber_columns([c.column_id for c in self.list_columns()])
        self._commit(
            "delete_column",
            BoardChanges(saved_columns=changed, deleted_column_ids=[column_id]),
            (),
            snapshot,
            (),
        )
        logger.info(f"Deleted column {column_id}")

    # ── internals ────────────────────────────────────────────────────────

    def _snapshot(self) -> Snapshot:
        # Card and Column objects are replaced, never mutated, so shallow copies suffice
        return dict(self._columns), dict(self._cards), dict(self._entered_at)

    def _restore(self, snapshot: Snapshot, reason: str, error: BaseException) -> None:
        self._columns, self._cards, self._entered_at = snapshot
        logger.warning(f"{reason} on board {self.tenant_id} rolled back: {error}")

    def _resync(self, reason: str) -> None:
        """Reload after a failed non-atomic commit; storage may hold part of the batch."""
        try:
            self.reload()
        except KanbanError as e:
            logger.warning(f"Reload after failed {reason} on board {self.tenant_id} failed: {e}")

    def _apply_placements(self, placements: Iterable[CardPlacement]) -> None:
        now = utc_now()
        for p in placements:
            self._cards[p.card_id] = replace(
                self._cards[p.card_id],
                column_id=p.column_id,
                position=p.position,
                completed_at=p.completed_at,
                updated_at=now,
            )

    def _completion_placements(self, column: Column) -> List[CardPlacement]:
        """Placements giving every card of column the completed_at its is_done flag implies."""
        now = utc_now()
        placements = []
        for card in self.list_cards(column.column_id):
            completed_at = (card.completed_at or now) if column.is_done else None
            if completed_at != card.completed_at:
                placements.append(
                    CardPlacement(card.card_id, card.column_id, card.position, completed_at)
                )
        return placements

    def _renumber_columns(self, order: List[str], include: Optional[str] = None) -> List[Column]:
        """Assign dense positions following `order`; returns the changed columns.

        `include` names a column to return even if its position is unchanged.
        """
        changed = []
        for position, column_id in enumerate(order):
            column = self._columns[column_id]
            if column.position != position or column_id == include:
                column = replace(column, position=position, updated_at=utc_now())
                self._columns[column_id] = column
                changed.append(column)
        return changed

    def _commit(
        self,
        reason: str,
        changes: BoardChanges,
        touched_columns: Iterable[str],
        snapshot: Snapshot,
        card_ids: Tuple[str, ...],
    ) -> None:
        # Versions are checked against the snapshot: what this session last saw
        expected = None
        if self.optimistic_concurrency:
            expected = {
                cid: snapshot[0][cid].version for cid in touched_columns if cid in snapshot[0]
            }
        try:
            versions = self.backend.commit(self.tenant_id, changes, expected)
        except Exception as e:
            self._restore(snapshot, reason, e)
            if not self.backend.atomic_commits:
                self._resync(reason)
            raise
        for column_id, version in versions.items():
            if column_id in self._columns:
                self._columns[column_id] = replace(self._columns[column_id], version=version)
        self._notify(reason, card_ids)

    def _notify(self, reason: str, card_ids: Tuple[str, ...]) -> None:
        self.events.emit(BOARD_CHANGED, tenant_id=self.tenant_id, reason=reason, card_ids=card_ids)
