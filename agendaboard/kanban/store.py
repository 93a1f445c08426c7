"""
Kanban board storage backend (SQLite).

Every table is partitioned by company_id (the tenant). commit() runs a
whole board mutation, version checks included, in one transaction.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from .backend import BoardBackend, BoardChanges
from .errors import Conflict, PersistenceError
from .schema import Card, CardComment, CardMovement, Column, iso, utc_now

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "agendaboard" / "board.db"


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class SqliteBoardBackend(BoardBackend):
    """SQLite-backed store for columns, cards and movement history."""

    atomic_commits = True

    def __init__(self, db_path: Optional[str] = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(DEFAULT_DB_PATH)
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on error, always close."""
        try:
            conn = _connect(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open board database {self.db_path}: {e}", e) from e
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise PersistenceError(f"Board database error: {e}", e) from e
        finally:
            conn.close()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kanban_columns (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    color TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    is_default INTEGER DEFAULT 0,
                    is_done INTEGER DEFAULT 0,
                    limit_wip INTEGER,
                    version INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kanban_cards (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    column_id TEXT NOT NULL,
                    appointment_id TEXT,
                    title TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    client_name TEXT DEFAULT '',
                    client_phone TEXT DEFAULT '',
                    assigned_to TEXT,
                    priority TEXT DEFAULT 'medium',
                    tags TEXT,  -- JSON list
                    position INTEGER NOT NULL,
                    due_date TEXT,
                    completed_at TEXT,
                    created_by TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (column_id) REFERENCES kanban_columns(id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kanban_movements (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    card_id TEXT NOT NULL,
                    from_column_id TEXT,
                    to_column_id TEXT NOT NULL,
                    moved_by TEXT,
                    moved_at TEXT NOT NULL,
                    notes TEXT DEFAULT ''
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kanban_comments (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    card_id TEXT NOT NULL,
                    user_id TEXT,
                    comment TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (card_id) REFERENCES kanban_cards(id) ON DELETE CASCADE
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_columns_company ON kanban_columns(company_id, position)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_cards_company ON kanban_cards(company_id, column_id, position)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_movements_card ON kanban_movements(card_id, moved_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_comments_card ON kanban_comments(card_id, created_at)")

    # ── reads ────────────────────────────────────────────────────────────

    def load_board(self, tenant_id: str) -> Tuple[List[Column], List[Card]]:
        with self._transaction() as conn:
            column_rows = conn.execute(
                "SELECT * FROM kanban_columns WHERE company_id = ? ORDER BY position, id",
                (tenant_id,),
            ).fetchall()
            card_rows = conn.execute(
                "SELECT * FROM kanban_cards WHERE company_id = ? ORDER BY column_id, position, id",
                (tenant_id,),
            ).fetchall()
        columns = [Column.from_row(dict(r)) for r in column_rows]
        cards = [Card.from_row(dict(r)) for r in card_rows]
        logger.debug(f"Loaded board {tenant_id}: {len(columns)} columns, {len(cards)} cards")
        return columns, cards

    def list_movements(self, tenant_id: str, card_id: str) -> List[CardMovement]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM kanban_movements WHERE company_id = ? AND card_id = ? "
                "ORDER BY moved_at DESC, rowid DESC",
                (tenant_id, card_id),
            ).fetchall()
        return [CardMovement.from_row(dict(r)) for r in rows]

    def latest_movements(self, tenant_id: str) -> List[CardMovement]:
        with self._transaction() as conn:
            rows = conn.execute("""
                SELECT m.* FROM kanban_movements m
                WHERE m.company_id = ? AND m.rowid = (
                    SELECT l.rowid FROM kanban_movements l
                    WHERE l.company_id = m.company_id AND l.card_id = m.card_id
                    ORDER BY l.moved_at DESC, l.rowid DESC LIMIT 1
                )
            """, (tenant_id,)).fetchall()
        return [CardMovement.from_row(dict(r)) for r in rows]

    def list_comments(self, tenant_id: str, card_id: str) -> List[CardComment]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM kanban_comments WHERE company_id = ? AND card_id = ? "
                "ORDER BY created_at DESC, rowid DESC",
                (tenant_id, card_id),
            ).fetchall()
        return [CardComment.from_row(dict(r)) for r in rows]

    # ── single-row writes ────────────────────────────────────────────────

    def save_card_placement(
        self,
        tenant_id: str,
        card_id: str,
        column_id: str,
        position: int,
        completed_at: Optional[datetime] = None,
    ) -> None:
        with self._transaction() as conn:
            self._save_placement(conn, tenant_id, card_id, column_id, position, completed_at)

    def save_column(self, tenant_id: str, column: Column) -> None:
        with self._transaction() as conn:
            self._save_column(conn, tenant_id, column)

    def delete_column(self, tenant_id: str, column_id: str) -> None:
        with self._transaction() as conn:
            self._delete_column(conn, tenant_id, column_id)

    def save_card(self, tenant_id: str, card: Card) -> None:
        with self._transaction() as conn:
            self._save_card(conn, tenant_id, card)

    def delete_card(self, tenant_id: str, card_id: str) -> None:
        with self._transaction() as conn:
            self._delete_card(conn, tenant_id, card_id)

    def record_movement(self, tenant_id: str, movement: CardMovement) -> None:
        with self._transaction() as conn:
            self._record_movement(conn, tenant_id, movement)

    def add_comment(self, tenant_id: str, comment: CardComment) -> CardComment:
        row = comment.to_row()
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO kanban_comments "
                "(id, company_id, card_id, user_id, comment, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (row["id"], tenant_id, row["card_id"], row["user_id"], row["comment"],
                 row["created_at"], row["updated_at"]),
            )
        return comment

    def bump_column_versions(self, tenant_id: str, expected: Dict[str, int]) -> Dict[str, int]:
        with self._transaction() as conn:
            return self._bump_versions(conn, tenant_id, expected)

    # ── batch ────────────────────────────────────────────────────────────

    def commit(
        self,
        tenant_id: str,
        changes: BoardChanges,
        expected_versions: Optional[Dict[str, int]] = None,
    ) -> Dict[str, int]:
        """Apply the whole batch in one transaction."""
        with self._transaction() as conn:
            versions: Dict[str, int] = {}
            if expected_versions:
                versions = self._bump_versions(conn, tenant_id, expected_versions)
            for card_id in changes.deleted_card_ids:
                self._delete_card(conn, tenant_id, card_id)
            for column_id in changes.deleted_column_ids:
                self._delete_column(conn, tenant_id, column_id)
            for column in changes.saved_columns:
                self._save_column(conn, tenant_id, column)
            for card in changes.saved_cards:
                self._save_card(conn, tenant_id, card)
            for p in changes.placements:
                self._save_placement(conn, tenant_id, p.card_id, p.column_id, p.position, p.completed_at)
            if changes.movement is not None:
                self._record_movement(conn, tenant_id, changes.movement)
            return versions

    # ── helpers (caller owns the transaction) ────────────────────────────

    def _bump_versions(self, conn, tenant_id: str, expected: Dict[str, int]) -> Dict[str, int]:
        versions = {}
        for column_id in sorted(expected):
            version = expected[column_id]
            cur = conn.execute(
                "UPDATE kanban_columns SET version = version + 1 "
                "WHERE id = ? AND company_id = ? AND version = ?",
                (column_id, tenant_id, version),
            )
            if cur.rowcount == 0:
                raise Conflict(column_id, version)
            versions[column_id] = version + 1
        return versions

    def _save_placement(self, conn, tenant_id, card_id, column_id, position, completed_at):
        cur = conn.execute(
            "UPDATE kanban_cards SET column_id = ?, position = ?, completed_at = ?, updated_at = ? "
            "WHERE id = ? AND company_id = ?",
            (column_id, position, iso(completed_at), iso(utc_now()), card_id, tenant_id),
        )
        if cur.rowcount == 0:
            raise PersistenceError(f"Card {card_id} does not exist in storage")

    def _save_column(self, conn, tenant_id: str, column: Column):
        row = column.to_row(tenant_id)
        conn.execute("""
            INSERT INTO kanban_columns
            (id, company_id, name, description, color, position, is_default, is_done,
             limit_wip, version, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                description = excluded.description,
                color = excluded.color,
                position = excluded.position,
                is_default = excluded.is_default,
                is_done = excluded.is_done,
                limit_wip = excluded.limit_wip,
                updated_at = excluded.updated_at
        """, (
            row["id"],
            row["company_id"],
            row["name"],
            row["description"],
            row["color"],
            row["position"],
            1 if row["is_default"] else 0,
            1 if row["is_done"] else 0,
            row["limit_wip"],
            row["version"],
            row["created_at"],
            row["updated_at"],
        ))

    def _save_card(self, conn, tenant_id: str, card: Card):
        row = card.to_row(tenant_id)
        conn.execute("""
            INSERT INTO kanban_cards
            (id, company_id, column_id, appointment_id, title, description,
             client_name, client_phone, assigned_to, priority, tags, position,
             due_date, completed_at, created_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                column_id = excluded.column_id,
                appointment_id = excluded.appointment_id,
                title = excluded.title,
                description = excluded.description,
                client_name = excluded.client_name,
                client_phone = excluded.client_phone,
                assigned_to = excluded.assigned_to,
                priority = excluded.priority,
                tags = excluded.tags,
                position = excluded.position,
                due_date = excluded.due_date,
                completed_at = excluded.completed_at,
                updated_at = excluded.updated_at
        """, (
            row["id"],
            row["company_id"],
            row["column_id"],
            row["appointment_id"],
            row["title"],
            row["description"],
            row["client_name"],
            row["client_phone"],
            row["assigned_to"],
            row["priority"],
            json.dumps(row["tags"]),
            row["position"],
            row["due_date"],
            row["completed_at"],
            row["created_by"],
            row["created_at"],
            row["updated_at"],
        ))

    def _delete_column(self, conn, tenant_id: str, column_id: str):
        conn.execute(
            "DELETE FROM kanban_columns WHERE id = ? AND company_id = ?",
            (column_id, tenant_id),
        )

    def _delete_card(self, conn, tenant_id: str, card_id: str):
        conn.execute(
            "DELETE FROM kanban_cards WHERE id = ? AND company_id = ?",
            (card_id, tenant_id),
        )

    def _record_movement(self, conn, tenant_id: str, movement: CardMovement):
        row = movement.to_row(tenant_id)
        conn.execute(
            "INSERT INTO kanban_movements "
            "(id, company_id, card_id, from_column_id, to_column_id, moved_by, moved_at, notes) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (row["id"], row["company_id"], row["card_id"], row["from_column_id"],
             row["to_column_id"], row["moved_by"], row["moved_at"], row["notes"]),
        )
