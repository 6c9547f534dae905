from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from revisit.application.factory import Services
from revisit.consts import VERSION
from revisit.domain.errors import StorageError
from revisit.domain.models import CardStatus
from revisit.server import create_app


@pytest.fixture
def client(service, sessions):
    return TestClient(create_app(services=Services(cards=service, sessions=sessions)))


@pytest.fixture
def stocked(repo, make_card):
    repo.save_card(
        make_card(student_id="s1", status=CardStatus.LEARNING, overdue=timedelta(days=2))
    )
    repo.save_card(
        make_card(student_id="s1", status=CardStatus.REVIEW, overdue=timedelta(days=1))
    )
    repo.save_card(make_card(student_id="s1", overdue=timedelta(days=-3)))
    return repo


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


# --- Cards ---


def test_create_and_fetch_card(client, clock):
    response = client.post(
        "/cards", json={"student_id": "s1", "subject": "math", "grade_level": "K"}
    )
    assert response.status_code == 201
    card = response.json()
    assert card["grade_level"] == 0
    assert card["next_review_at"] == clock.now.isoformat()

    fetched = client.get(f"/cards/{card['id']}")
    assert fetched.status_code == 200
    assert fetched.json() == card


def test_create_card_bad_grade(client):
    response = client.post("/cards", json={"student_id": "s1", "grade_level": "seventh"})
    assert response.status_code == 422


def test_unknown_card(client):
    response = client.get("/cards/nope")
    assert response.status_code == 404
    assert "nope" in response.json()["detail"]


def test_review_card(client, stocked, clock):
    response = client.post("/cards/card-001/review", json={"quality": 5, "time_spent": 8})

    assert response.status_code == 200
    data = response.json()
    assert data["card_id"] == "card-001"
    assert data["interval"] == 1
    assert data["status"] == "learning"
    assert data["easiness_factor"] == pytest.approx(2.6)
    assert data["next_review_at"] == (clock.now + timedelta(days=1)).isoformat()


@pytest.mark.parametrize(
    "payload", [{"quality": 6}, {"quality": -1}, {"quality": 3, "time_spent": -2}]
)
def test_review_rejects_bad_performance(client, stocked, payload):
    response = client.post("/cards/card-001/review", json=payload)
    assert response.status_code == 422


def test_review_retired_card_conflicts(client, repo, make_card):
    repo.save_card(make_card(student_id="s1", status=CardStatus.RETIRED))
    response = client.post("/cards/card-001/review", json={"quality": 4})
    assert response.status_code == 409


def test_review_storage_failure(client, stocked):
    with patch.object(stocked, "save_card", side_effect=StorageError("disk full")):
        response = client.post("/cards/card-001/review", json={"quality": 4})
    assert response.status_code == 503


def test_reset_card(client, stocked):
    client.post("/cards/card-001/review", json={"quality": 5})

    response = client.post("/cards/card-001/reset")

    assert response.status_code == 200
    assert response.json()["status"] == "new"
    assert response.json()["repetitions"] == 0


def test_mastery(client, stocked):
    response = client.get("/cards/card-001/mastery")
    assert response.status_code == 200
    assert response.json() == {"card_id": "card-001", "mastery": 20}


# --- Students ---


def test_list_and_due(client, stocked):
    cards = client.get("/students/s1/cards").json()["cards"]
    assert len(cards) == 3

    learning = client.get("/students/s1/cards", params={"status": "learning"}).json()["cards"]
    assert [c["id"] for c in learning] == ["card-001"]

    due = client.get("/students/s1/due").json()["cards"]
    assert [c["id"] for c in due] == ["card-001", "card-002"]

    limited = client.get("/students/s1/due", params={"limit": 1}).json()["cards"]
    assert len(limited) == 1


def test_list_unknown_status(client):
    response = client.get("/students/s1/cards", params={"status": "archived"})
    assert response.status_code == 422


def test_stats_and_upcoming(client, stocked):
    stats = client.get("/students/s1/stats").json()
    assert stats["total"] == 3
    assert stats["due_today"] == 2
    assert stats["due_this_week"] == 1

    days = client.get("/students/s1/upcoming", params={"days": 5}).json()["days"]
    assert len(days) == 5
    assert days[3]["count"] == 1


def test_archive(client, repo, make_card, clock):
    repo.save_card(
        make_card(
            student_id="s1",
            status=CardStatus.MASTERED,
            repetitions=8,
            last_reviewed_at=clock.now - timedelta(days=40),
        )
    )

    assert client.post("/students/s1/archive").json() == {"archived": 0}
    assert client.post("/students/s1/archive", json={"days_old": 30}).json() == {"archived": 1}


# --- Sessions ---


def test_session_lifecycle(client, stocked):
    started = client.post("/sessions", json={"student_id": "s1"})
    assert started.status_code == 201
    session = started.json()
    sid = session["session_id"]
    assert session["state"] == "in-progress"
    assert session["total_cards"] == 2

    assert client.get(f"/sessions/{sid}").json()["completed_cards"] == 0

    first = client.post(f"/sessions/{sid}/review", json={"card_id": "card-001", "quality": 4})
    assert first.status_code == 200
    assert first.json()["is_complete"] is False

    second = client.post(f"/sessions/{sid}/review", json={"card_id": "card-002", "quality": 2})
    assert second.json()["is_complete"] is True

    done = client.post(f"/sessions/{sid}/complete")
    assert done.status_code == 200
    body = done.json()
    assert body["stats"]["completed_cards"] == 2
    assert body["stats"]["accuracy"] == 50.0
    # both cards were pushed into the future
    assert body["next_session"]["has_due_cards"] is False

    assert client.get(f"/sessions/{sid}").status_code == 404


def test_session_card_not_in_session(client, stocked):
    sid = client.post("/sessions", json={"student_id": "s1"}).json()["session_id"]
    response = client.post(f"/sessions/{sid}/review", json={"card_id": "card-003", "quality": 4})
    assert response.status_code == 404


def test_session_shows_reviewed_card(client, stocked, clock):
    sid = client.post("/sessions", json={"student_id": "s1"}).json()["session_id"]
    client.post(f"/sessions/{sid}/review", json={"card_id": "card-001", "quality": 4})

    cards = {c["id"]: c for c in client.get(f"/sessions/{sid}").json()["cards"]}

    assert cards["card-001"]["repetitions"] == 1
    assert cards["card-001"]["total_reviews"] == 1
    assert cards["card-001"]["next_review_at"] == (clock.now + timedelta(days=1)).isoformat()
    assert cards["card-002"]["total_reviews"] == 0


def test_session_bad_target(client):
    response = client.post("/sessions", json={"student_id": "s1", "target_cards": 0})
    assert response.status_code == 422


def test_abandon_session(client, stocked):
    sid = client.post("/sessions", json={"student_id": "s1"}).json()["session_id"]

    response = client.delete(f"/sessions/{sid}")

    assert response.status_code == 200
    assert response.json() == {"session_id": sid, "state": "abandoned"}
    assert client.post(f"/sessions/{sid}/complete").status_code == 404


def test_expired_session(client, stocked, clock):
    sid = client.post("/sessions", json={"student_id": "s1"}).json()["session_id"]
    clock.advance(hours=3)
    assert client.get(f"/sessions/{sid}").status_code == 404
