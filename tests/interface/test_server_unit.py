from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from conftest import InMemoryBackend, make_card, make_item
from kioku.application.config import AppConfig
from kioku.consts import VERSION
from kioku.domain.errors import CollaboratorError
from kioku.domain.models import utcnow
from kioku.server import create_app


@pytest.fixture
def backend():
    now = utcnow()
    items = [make_item(k) for k in ["一", "二", "三", "日"]] + [make_item("語", "N4")]
    cards = [
        make_card("一", due_at=now - timedelta(days=2)),
        make_card("二", due_at=now - timedelta(days=1)),
        make_card("日", due_at=now + timedelta(days=3)),
    ]
    return InMemoryBackend(items=items, cards=cards)


@pytest.fixture
def client(mock_home, backend):
    app = create_app(config=AppConfig(user_id="u1"), backend=backend.as_backend())
    with TestClient(app) as client:
        yield client


def _open(client, **body):
    response = client.post("/sessions", json=body)
    assert response.status_code == 200
    return response.json()


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == VERSION


def test_get_version(client):
    response = client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": VERSION}


def test_list_due(client):
    response = client.get("/users/u1/due")
    assert response.status_code == 200
    assert [row["item_id"] for row in response.json()] == ["一", "二"]

    limited = client.get("/users/u1/due", params={"limit": 1}).json()
    assert [row["item_id"] for row in limited] == ["一"]


def test_list_due_backend_failure(client, backend):
    backend.get_cards_for_user = AsyncMock(side_effect=CollaboratorError("offline"))

    response = client.get("/users/u1/due")

    assert response.status_code == 502
    assert "offline" in response.json()["detail"]


def test_session_flow(client, backend):
    session = _open(client)
    sid = session["session_id"]
    assert session["state"] == "presenting"
    assert session["remaining"] == 2
    assert session["current"]["item_id"] == "一"
    assert session["current"]["preview"]["again"] == 0
    assert session["current"]["preview"]["good"] == 1

    response = client.post(f"/sessions/{sid}/grade", json={"item_id": "一", "rating": "good"})
    assert response.status_code == 200
    data = response.json()
    assert data["accepted"] is True
    assert data["interval_days"] == 1
    assert data["session"]["current"]["item_id"] == "二"

    data = client.post(f"/sessions/{sid}/grade", json={"item_id": "二", "rating": "1"}).json()
    assert data["accepted"] is True
    assert data["interval_days"] == 0
    assert data["session"]["state"] == "completed"
    assert data["session"]["correct_count"] == 1
    assert data["session"]["wrong_count"] == 1

    # Completed sessions leave the registry
    assert client.get(f"/sessions/{sid}").status_code == 404
    assert client.delete(f"/sessions/{sid}").status_code == 404


def test_close_session_midway(client):
    sid = _open(client)["session_id"]
    client.post(f"/sessions/{sid}/grade", json={"item_id": "一", "rating": "good"})

    closed = client.delete(f"/sessions/{sid}").json()

    assert closed["closed"] is True
    assert closed["graded"] == 1
    assert "pending_writes" in closed
    assert client.get(f"/sessions/{sid}").status_code == 404


def test_repeat_grade_is_not_accepted(client):
    sid = _open(client)["session_id"]
    payload = {"item_id": "一", "rating": "easy"}

    assert client.post(f"/sessions/{sid}/grade", json=payload).json()["accepted"] is True
    repeat = client.post(f"/sessions/{sid}/grade", json=payload).json()

    assert repeat["accepted"] is False
    assert repeat["session"]["remaining"] == 1
    assert repeat["session"]["correct_count"] == 1


def test_bad_rating(client):
    sid = _open(client)["session_id"]

    response = client.post(f"/sessions/{sid}/grade", json={"item_id": "一", "rating": "meh"})

    assert response.status_code == 400


def test_unknown_session(client):
    assert client.get("/sessions/nope").status_code == 404
    assert client.delete("/sessions/nope").status_code == 404
    response = client.post("/sessions/nope/grade", json={"item_id": "一", "rating": "good"})
    assert response.status_code == 404


def test_nothing_due_session(client):
    session = _open(client, user_id="newcomer")

    assert session["state"] == "completed"
    assert session["nothing_due"] is True
    assert session["enrolled_count"] == 0
    assert session["current"] is None


def test_session_load_failure(client, backend):
    backend.get_items_by_filter = AsyncMock(side_effect=CollaboratorError("catalog down"))

    response = client.post("/sessions", json={})

    assert response.status_code == 502
    assert "catalog down" in response.json()["detail"]


def test_enroll(client, backend):
    response = client.post("/users/u2/enroll", json={"level": "N5"})

    assert response.status_code == 200
    assert response.json() == {"created": 4, "level": "N5"}
    assert ("u2", "日") in backend.cards

    again = client.post("/users/u2/enroll", json={"level": "N5"}).json()
    assert again["created"] == 0


def test_writes_finish_before_shutdown(mock_home, backend):
    app = create_app(config=AppConfig(user_id="u1"), backend=backend.as_backend())
    with TestClient(app) as client:
        sid = _open(client)["session_id"]
        client.post(f"/sessions/{sid}/grade", json={"item_id": "一", "rating": "good"})
        client.post(f"/sessions/{sid}/grade", json={"item_id": "二", "rating": "again"})
        assert app.state.sessions == {}

    assert backend.cards[("u1", "一")].repetition == 1
    assert backend.cards[("u1", "二")].lapses == 1
    assert [outcome[1] for outcome in sorted(backend.outcomes)] == ["一", "二"]


def test_open_sessions_are_capped(mock_home, backend):
    config = AppConfig(user_id="u1", max_open_sessions=2)
    app = create_app(config=config, backend=backend.as_backend())
    with TestClient(app) as client:
        first = _open(client)["session_id"]
        second = _open(client)["session_id"]
        third = _open(client)["session_id"]

        assert list(app.state.sessions) == [second, third]
        assert client.get(f"/sessions/{first}").status_code == 404
        assert client.get(f"/sessions/{third}").status_code == 200


def test_nothing_due_session_is_not_kept(mock_home, backend):
    app = create_app(config=AppConfig(user_id="u1"), backend=backend.as_backend())
    with TestClient(app) as client:
        _open(client, user_id="newcomer")
        assert app.state.sessions == {}


def test_shutdown_closes_resolved_backend(mock_home, backend):
    owned = backend.as_backend()
    with (
        patch("kioku.server.get_backend", return_value=owned),
        patch.object(owned.__class__, "aclose", new_callable=AsyncMock) as mock_close,
    ):
        with TestClient(create_app(config=AppConfig(user_id="u1"))) as client:
            assert client.get("/health").status_code == 200
        mock_close.assert_awaited_once()
