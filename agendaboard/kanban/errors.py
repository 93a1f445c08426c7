"""
Kanban error taxonomy.

Validation errors (NotFound, WipLimitExceeded, ColumnNotEmpty) are raised
before the board is touched. PersistenceError and Conflict are raised after
the store has rolled back its optimistic change.
"""
from typing import Optional


class KanbanError(Exception):
    """Base class for every board error. str() is the user-facing message."""
    pass


class NotFound(KanbanError):
    """A card or column identifier does not resolve."""

    kind = "item"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"{self.kind.capitalize()} {item_id} not found")


class CardNotFound(NotFound):
    kind = "card"


class ColumnNotFound(NotFound):
    kind = "column"


class WipLimitExceeded(KanbanError):
    """Target column already holds limit_wip cards."""

    def __init__(self, column_id: str, limit: int):
        self.column_id = column_id
        self.limit = limit
        super().__init__(f"WIP limit reached ({limit})")


class ColumnNotEmpty(KanbanError):
    """A column still owns cards and cannot be deleted."""

    def __init__(self, column_id: str, card_count: int):
        self.column_id = column_id
        self.card_count = card_count
        super().__init__(
            f"Column {column_id} still has {card_count} card(s); "
            f"move or delete them first"
        )


class PersistenceError(KanbanError):
    """The persistence collaborator failed. Wraps the opaque cause."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class Conflict(KanbanError):
    """A column changed since the last reload; reload and retry."""

    def __init__(self, column_id: str, expected_version: int):
        self.column_id = column_id
        self.expected_version = expected_version
        super().__init__(
            f"Column {column_id} changed since version {expected_version}; "
            f"reload the board and retry"
        )
