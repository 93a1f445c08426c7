"""
Tests for the HTTP backend with a mocked requests session.
"""
from unittest.mock import MagicMock

import pytest
import requests

from agendaboard.kanban.backend import BoardChanges
from agendaboard.kanban.errors import Conflict, PersistenceError
from agendaboard.kanban.rest import RestBoardBackend
from agendaboard.kanban.schema import CardComment, CardMovement, CardPlacement, Column

from conftest import FIXED_TIME, TENANT


def response(payload=None, status=200):
    r = MagicMock()
    r.ok = status < 400
    r.status_code = status
    r.text = "" if payload is None else str(payload)
    r.content = b"" if payload is None else b"json"
    r.json.return_value = payload
    return r


@pytest.fixture
def session():
    s = MagicMock()
    s.headers = {}
    s.request.return_value = response()
    return s


@pytest.fixture
def rest(session):
    return RestBoardBackend("https://db.example.com/rest/v1/", "secret", session=session)


def calls(session):
    """(method, url, kwargs) for every request sent."""
    return [(c.args[0], c.args[1], c.kwargs) for c in session.request.call_args_list]


def test_auth_headers(rest, session):
    assert session.headers["apikey"] == "secret"
    assert session.headers["Authorization"] == "Bearer secret"


def test_load_board_parses_rows(rest, session):
    session.request.side_effect = [
        response([
            {"id": "todo", "name": "A fazer", "position": 0, "limit_wip": None, "version": 3},
            {"id": "done", "name": "Feito", "position": 1, "limit_wip": 0, "is_done": True},
        ]),
        response([
            {"id": "a", "column_id": "todo", "title": "A", "position": 0,
             "priority": "high", "tags": ["vip"], "due_date": "2024-05-01T12:00:00Z"},
        ]),
    ]
    columns, cards = rest.load_board(TENANT)

    assert [c.column_id for c in columns] == ["todo", "done"]
    assert columns[0].version == 3
    assert columns[1].is_done and not columns[1].has_wip_limit()
    assert cards[0].is_high_priority()
    assert cards[0].due_date == FIXED_TIME

    (m1, url1, kw1), (_, url2, _) = calls(session)
    assert m1 == "GET"
    assert url1 == "https://db.example.com/rest/v1/kanban_columns"
    assert url2 == "https://db.example.com/rest/v1/kanban_cards"
    assert kw1["params"]["company_id"] == f"eq.{TENANT}"
    assert kw1["timeout"] == 5.0


def test_save_placement_patches_card(rest, session):
    rest.save_card_placement(TENANT, "a", "done", 2, completed_at=FIXED_TIME)
    method, url, kw = calls(session)[0]
    assert method == "PATCH"
    assert url.endswith("/kanban_cards")
    assert kw["params"] == {"id": "eq.a", "company_id": f"eq.{TENANT}"}
    assert kw["json"]["column_id"] == "done"
    assert kw["json"]["position"] == 2
    assert kw["json"]["completed_at"] == FIXED_TIME.isoformat()


def test_save_column_upserts_without_version(rest, session):
    rest.save_column(TENANT, Column(column_id="todo", name="To do", version=7))
    method, _, kw = calls(session)[0]
    assert method == "POST"
    assert kw["headers"] == {"Prefer": "resolution=merge-duplicates"}
    assert "version" not in kw["json"][0]
    assert kw["json"][0]["company_id"] == TENANT


def test_bump_versions_sends_conditional_patch(rest, session):
    session.request.return_value = response([{"id": "todo", "version": 2}])
    assert rest.bump_column_versions(TENANT, {"todo": 1}) == {"todo": 2}
    _, _, kw = calls(session)[0]
    assert kw["params"]["version"] == "eq.1"
    assert kw["json"] == {"version": 2}
    assert kw["headers"] == {"Prefer": "return=representation"}


def test_bump_versions_conflict_on_empty_representation(rest, session):
    session.request.return_value = response([])
    with pytest.raises(Conflict):
        rest.bump_column_versions(TENANT, {"todo": 1})


def test_http_error_becomes_persistence_error(rest, session):
    session.request.return_value = response({"message": "boom"}, status=500)
    with pytest.raises(PersistenceError, match="HTTP 500"):
        rest.delete_card(TENANT, "a")


def test_network_error_keeps_cause(rest, session):
    error = requests.ConnectionError("unreachable")
    session.request.side_effect = error
    with pytest.raises(PersistenceError) as exc:
        rest.load_board(TENANT)
    assert exc.value.cause is error


def test_default_commit_order(rest, session):
    session.request.side_effect = [
        response([{"id": "done", "version": 1}]),
        response([{"id": "todo", "version": 1}]),
        response(),
        response(),
        response(),
    ]
    movement = CardMovement(movement_id="m1", card_id="a", from_column_id="todo", to_column_id="done")
    versions = rest.commit(
        TENANT,
        BoardChanges(
            placements=[CardPlacement("b", "todo", 0), CardPlacement("a", "done", 0)],
            movement=movement,
        ),
        {"todo": 0, "done": 0},
    )
    assert versions == {"done": 1, "todo": 1}
    assert [(m, url.rsplit("/", 1)[1]) for m, url, _ in calls(session)] == [
        ("PATCH", "kanban_columns"),
        ("PATCH", "kanban_columns"),
        ("PATCH", "kanban_cards"),
        ("PATCH", "kanban_cards"),
        ("POST", "kanban_movements"),
    ]


def test_commit_stops_at_conflict(rest, session):
    session.request.side_effect = [response([])]
    with pytest.raises(Conflict):
        rest.commit(TENANT, BoardChanges(placements=[CardPlacement("a", "todo", 0)]), {"todo": 0})
    assert session.request.call_count == 1


def test_conflict_reverts_earlier_bumps(rest, session):
    session.request.side_effect = [
        response([{"id": "done", "version": 1}]),
        response([]),
        response([{"id": "done", "version": 0}]),
    ]
    with pytest.raises(Conflict):
        rest.bump_column_versions(TENANT, {"todo": 0, "done": 0})

    sent = calls(session)
    assert len(sent) == 3
    _, _, revert = sent[2]
    assert revert["params"]["id"] == "eq.done"
    assert revert["params"]["version"] == "eq.1"
    assert revert["json"] == {"version": 0}


def test_failed_revert_keeps_original_error(rest, session):
    session.request.side_effect = [
        response([{"id": "done", "version": 1}]),
        response({"message": "boom"}, status=503),
        response({"message": "boom"}, status=503),
    ]
    with pytest.raises(PersistenceError, match="HTTP 503"):
        rest.bump_column_versions(TENANT, {"todo": 0, "done": 0})
    assert session.request.call_count == 3


def test_latest_movements_keeps_newest_per_card(rest, session):
    session.request.return_value = response([
        {"id": "m3", "card_id": "a", "to_column_id": "done", "moved_at": "2024-05-01T12:00:00Z"},
        {"id": "m2", "card_id": "b", "to_column_id": "todo", "moved_at": "2024-05-01T11:00:00Z"},
        {"id": "m1", "card_id": "a", "to_column_id": "todo", "moved_at": "2024-05-01T10:00:00Z"},
    ])
    latest = {m.card_id: m.movement_id for m in rest.latest_movements(TENANT)}
    assert latest == {"a": "m3", "b": "m2"}
    _, _, kw = calls(session)[0]
    assert kw["params"]["order"] == "moved_at.desc"


def test_comments(rest, session):
    session.request.side_effect = [
        response([{"id": "c1", "card_id": "a", "comment": "hi", "user_id": "u1",
                   "created_at": "2024-05-01T12:00:00Z"}]),
        response([
            {"id": "c2", "card_id": "a", "comment": "later", "created_at": "2024-05-01T13:00:00Z"},
            {"id": "c1", "card_id": "a", "comment": "hi", "created_at": "2024-05-01T12:00:00Z"},
        ]),
    ]
    stored = rest.add_comment(TENANT, CardComment(comment_id="c1", card_id="a", comment="hi", user_id="u1"))
    assert stored.created_at == FIXED_TIME
    assert [c.comment_id for c in rest.list_comments(TENANT, "a")] == ["c2", "c1"]

    (post_method, post_url, post), (_, _, get) = calls(session)
    assert (post_method, post_url.rsplit("/", 1)[1]) == ("POST", "kanban_comments")
    assert post["json"][0]["comment"] == "hi"
    assert get["params"] == {"card_id": "eq.a", "select": "*", "order": "created_at.desc"}
