"""Shared test fixtures for the agenda-board tests."""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure the package is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent))

from agendaboard.kanban.board import BoardStore
from agendaboard.kanban.events import BOARD_CHANGED, BoardEventBridge
from agendaboard.kanban.schema import Card, Column, Priority
from agendaboard.kanban.store import SqliteBoardBackend

TENANT = "company-1"
FIXED_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class RecordingBackend(SqliteBoardBackend):
    """SQLite backend that records commits and can fail on demand."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.commits = []
        self.fail_next = None

    def commit(self, tenant_id, changes, expected_versions=None):
        self.commits.append((changes, expected_versions))
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error
        return super().commit(tenant_id, changes, expected_versions)


def seed_board(backend, layout, tenant_id=TENANT):
    """
    Write columns and cards straight to the backend.

    layout: list of (column_id, options, [card_id, ...]) in board order.
    options may hold limit_wip / is_done.
    """
    for col_pos, (column_id, options, card_ids) in enumerate(layout):
        backend.save_column(tenant_id, Column(
            column_id=column_id,
            name=column_id.upper(),
            position=col_pos,
            **options,
        ))
        for card_pos, card_id in enumerate(card_ids):
            backend.save_card(tenant_id, Card(
                card_id=card_id,
                column_id=column_id,
                title=f"Card {card_id}",
                position=card_pos,
                priority=Priority.MEDIUM,
            ))


def order(store, column_id):
    return [c.card_id for c in store.list_cards(column_id)]


def assert_dense(store):
    for column in store.list_columns():
        positions = [c.position for c in store.list_cards(column.column_id)]
        assert positions == list(range(len(positions))), column.column_id


@pytest.fixture
def backend(tmp_path):
    return RecordingBackend(str(tmp_path / "board.db"))


@pytest.fixture
def events():
    bridge = BoardEventBridge()
    bridge.received = []
    bridge.subscribe(BOARD_CHANGED, lambda **kw: bridge.received.append(kw))
    return bridge


@pytest.fixture
def board(backend, events):
    """
    Standard board:
        todo  : a, b, c, d
        doing : x, y          (WIP limit 2)
        review: p, q, r       (no limit)
        done  : (empty)       (terminal)
    """
    seed_board(backend, [
        ("todo", {}, ["a", "b", "c", "d"]),
        ("doing", {"limit_wip": 2}, ["x", "y"]),
        ("review", {}, ["p", "q", "r"]),
        ("done", {"is_done": True}, []),
    ])
    store = BoardStore(backend, TENANT, events=events)
    store.reload()
    events.received.clear()
    return store
