"""
Kanban board storage backend (PostgREST over HTTP).

Talks to the managed database's REST endpoint the admin panel uses:

    GET    /kanban_columns?company_id=eq.<tenant>&order=position
    GET    /kanban_cards?company_id=eq.<tenant>&order=position
    PATCH  /kanban_cards?id=eq.<card>&company_id=eq.<tenant>
    PATCH  /kanban_columns?id=eq.<col>&company_id=eq.<tenant>&version=eq.<n>
    POST   /kanban_columns, /kanban_cards (upsert), /kanban_movements, /kanban_comments
    DELETE /kanban_columns?id=eq.<col>, /kanban_cards?id=eq.<card>

Row-level security on the server decides what the api key may touch.
commit() uses the non-atomic default from BoardBackend.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import requests

from .backend import BoardBackend
from .errors import Conflict, KanbanError, PersistenceError
from .schema import Card, CardComment, CardMovement, Column, iso, utc_now

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class RestBoardBackend(BoardBackend):
    """Board persistence through a PostgREST-compatible HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    def _request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        """Send one request; return decoded JSON (or None for empty bodies)."""
        headers = {"Prefer": prefer} if prefer else None
        url = f"{self.base_url}/{table}"
        try:
            r = self.session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise PersistenceError(f"{method} {table} failed: {e}", e) from e
        if not r.ok:
            raise PersistenceError(f"{method} {table} returned HTTP {r.status_code}: {r.text[:200]}")
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            raise PersistenceError(f"{method} {table} returned invalid JSON", e) from e

    # ── reads ────────────────────────────────────────────────────────────

    def load_board(self, tenant_id: str) -> Tuple[List[Column], List[Card]]:
        scope = {"company_id": f"eq.{tenant_id}", "select": "*", "order": "position"}
        column_rows = self._request("GET", "kanban_columns", params=scope) or []
        card_rows = self._request("GET", "kanban_cards", params=scope) or []
        return (
            [Column.from_row(r) for r in column_rows],
            [Card.from_row(r) for r in card_rows],
        )

    def list_movements(self, tenant_id: str, card_id: str) -> List[CardMovement]:
        rows = self._request("GET", "kanban_movements", params={
            "card_id": f"eq.{card_id}",
            "company_id": f"eq.{tenant_id}",
            "order": "moved_at.desc",
        }) or []
        return [CardMovement.from_row(r) for r in rows]

    def latest_movements(self, tenant_id: str) -> List[CardMovement]:
        rows = self._request("GET", "kanban_movements", params={
            "company_id": f"eq.{tenant_id}",
            "order": "moved_at.desc",
        }) or []
        latest: Dict[str, CardMovement] = {}
        for r in rows:
            movement = CardMovement.from_row(r)
            latest.setdefault(movement.card_id, movement)
        return list(latest.values())

    def list_comments(self, tenant_id: str, card_id: str) -> List[CardComment]:
        # kanban_comments has no company_id; row-level security scopes it through the card
        rows = self._request("GET", "kanban_comments", params={
            "card_id": f"eq.{card_id}",
            "select": "*",
            "order": "created_at.desc",
        }) or []
        return [CardComment.from_row(r) for r in rows]

    # ── writes ───────────────────────────────────────────────────────────

    def save_card_placement(
        self,
        tenant_id: str,
        card_id: str,
        column_id: str,
        position: int,
        completed_at: Optional[datetime] = None,
    ) -> None:
        self._request(
            "PATCH",
            "kanban_cards",
            params={"id": f"eq.{card_id}", "company_id": f"eq.{tenant_id}"},
            json_body={
                "column_id": column_id,
                "position": position,
                "completed_at": iso(completed_at),
                "updated_at": iso(utc_now()),
            },
        )

    def save_column(self, tenant_id: str, column: Column) -> None:
        row = column.to_row(tenant_id)
        row.pop("version")  # owned by bump_column_versions
        self._request(
            "POST",
            "kanban_columns",
            json_body=[row],
            prefer="resolution=merge-duplicates",
        )

    def delete_column(self, tenant_id: str, column_id: str) -> None:
        self._request(
            "DELETE",
            "kanban_columns",
            params={"id": f"eq.{column_id}", "company_id": f"eq.{tenant_id}"},
        )

    def save_card(self, tenant_id: str, card: Card) -> None:
        self._request(
            "POST",
            "kanban_cards",
            json_body=[card.to_row(tenant_id)],
            prefer="resolution=merge-duplicates",
        )

    def delete_card(self, tenant_id: str, card_id: str) -> None:
        self._request(
            "DELETE",
            "kanban_cards",
            params={"id": f"eq.{card_id}", "company_id": f"eq.{tenant_id}"},
        )

    def record_movement(self, tenant_id: str, movement: CardMovement) -> None:
        self._request("POST", "kanban_movements", json_body=[movement.to_row(tenant_id)])

    def add_comment(self, tenant_id: str, comment: CardComment) -> CardComment:
        rows = self._request(
            "POST",
            "kanban_comments",
            json_body=[comment.to_row()],
            prefer="return=representation",
        )
        return CardComment.from_row(rows[0]) if rows else comment

    def bump_column_versions(self, tenant_id: str, expected: Dict[str, int]) -> Dict[str, int]:
        """Conditional PATCH per column. A failure part way undoes the earlier bumps."""
        versions: Dict[str, int] = {}
        try:
            for column_id in sorted(expected):
                version = expected[column_id]
                if not self._patch_version(tenant_id, column_id, version, version + 1):
                    logger.warning(f"Version check failed for column {column_id} (expected {version})")
                    raise Conflict(column_id, version)
                versions[column_id] = version + 1
        except KanbanError:
            self._revert_versions(tenant_id, versions)
            raise
        return versions

    def _patch_version(self, tenant_id: str, column_id: str, current: int, new: int) -> bool:
        rows = self._request(
            "PATCH",
            "kanban_columns",
            params={
                "id": f"eq.{column_id}",
                "company_id": f"eq.{tenant_id}",
                "version": f"eq.{current}",
            },
            json_body={"version": new},
            prefer="return=representation",
        )
        return bool(rows)

    def _revert_versions(self, tenant_id: str, bumped: Dict[str, int]) -> None:
        for column_id, version in bumped.items():
            try:
                if not self._patch_version(tenant_id, column_id, version, version - 1):
                    logger.warning(f"Column {column_id} moved past version {version}; not reverted")
            except PersistenceError as e:
                logger.warning(f"Could not revert version of column {column_id}: {e}")
