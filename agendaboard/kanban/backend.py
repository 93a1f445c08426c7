"""
Persistence interface for the board.

Backends are keyed by an opaque tenant id (the company the board belongs
to). Every failure surfaces as PersistenceError; stale column versions
surface as Conflict.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .schema import Card, CardComment, CardMovement, CardPlacement, Column


@dataclass
class BoardChanges:
    """One batch of writes produced by a single board mutation."""
    saved_columns: List[Column] = field(default_factory=list)
    deleted_column_ids: List[str] = field(default_factory=list)
    saved_cards: List[Card] = field(default_factory=list)
    deleted_card_ids: List[str] = field(default_factory=list)
    placements: List[CardPlacement] = field(default_factory=list)
    movement: Optional[CardMovement] = None


class BoardBackend(ABC):
    """
    Interface every persistence collaborator implements.

    commit() has a default, non-atomic implementation built from the
    single-row calls; backends with transactions override it and set
    atomic_commits. After a failed non-atomic commit the store reloads
    instead of trusting its snapshot.
    """

    atomic_commits = False

    @abstractmethod
    def load_board(self, tenant_id: str) -> Tuple[List[Column], List[Card]]:
        """Fetch every column and card of the tenant's board."""

    @abstractmethod
    def save_card_placement(
        self,
        tenant_id: str,
        card_id: str,
        column_id: str,
        position: int,
        completed_at: Optional[datetime] = None,
    ) -> None:
        """Persist a card's column, position and completion timestamp."""

    @abstractmethod
    def save_column(self, tenant_id: str, column: Column) -> None:
        """Insert or update a column. The stored version is left alone."""

    @abstractmethod
    def delete_column(self, tenant_id: str, column_id: str) -> None:
        pass

    @abstractmethod
    def save_card(self, tenant_id: str, card: Card) -> None:
        """Insert or update every field of a card."""

    @abstractmethod
    def delete_card(self, tenant_id: str, card_id: str) -> None:
        pass

    @abstractmethod
    def record_movement(self, tenant_id: str, movement: CardMovement) -> None:
        pass

    @abstractmethod
    def list_movements(self, tenant_id: str, card_id: str) -> List[CardMovement]:
        """Movement history of a card, most recent first."""

    @abstractmethod
    def latest_movements(self, tenant_id: str) -> List[CardMovement]:
        """The most recent movement of every card that has one."""

    @abstractmethod
    def add_comment(self, tenant_id: str, comment: CardComment) -> CardComment:
        """Store a comment and return it as persisted."""

    @abstractmethod
    def list_comments(self, tenant_id: str, card_id: str) -> List[CardComment]:
        """Comments of a card, newest first."""

    @abstractmethod
    def bump_column_versions(
        self, tenant_id: str, expected: Dict[str, int]
    ) -> Dict[str, int]:
        """
        Increment each column's version if it still equals the expected one.

        Returns the new versions. Raises Conflict for the first column
        whose stored version moved on, after undoing the bumps already made.
        """

    def commit(
        self,
        tenant_id: str,
        changes: BoardChanges,
        expected_versions: Optional[Dict[str, int]] = None,
    ) -> Dict[str, int]:
        """Apply a batch of writes. Returns new column versions (may be empty)."""
        versions: Dict[str, int] = {}
        if expected_versions:
            versions = self.bump_column_versions(tenant_id, expected_versions)
        for card_id in changes.deleted_card_ids:
            self.delete_card(tenant_id, card_id)
        for column_id in changes.deleted_column_ids:
            self.delete_column(tenant_id, column_id)
        for column in changes.saved_columns:
            self.save_column(tenant_id, column)
        for card in changes.saved_cards:
            self.save_card(tenant_id, card)
        for p in changes.placements:
            self.save_card_placement(
                tenant_id, p.card_id, p.column_id, p.position, completed_at=p.completed_at
            )
        if changes.movement is not None:
            self.record_movement(tenant_id, changes.movement)
        return versions
