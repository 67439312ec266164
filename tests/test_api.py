"""
HTTP API tests - endpoint wiring, error status mapping and the acting-user header.
"""

from datetime import timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from conftest import NOW, fixed_clock
from equiploan.api.main import app, get_clock
from equiploan.core import config, dao


@pytest.fixture
def client():
    app.dependency_overrides[get_clock] = lambda: fixed_clock()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def enrolled(client):
    """One student and one available item created through the API."""
    student = client.post("/students", json={
        "student_id": "S-1001",
        "full_name": "Jordan Reyes",
        "year_group": "Year 9",
        "email": "jordan@example.org"
    }).json()
    item = client.post("/equipment", json={
        "item_id": "EQ-FB-01",
        "name": "Football",
        "category": "Football"
    }).json()
    return student, item


def checkout(client, student, item, due_at=NOW + timedelta(days=2), actor="captain-9"):
    return client.post(
        "/loans",
        json={"student_id": student["id"], "equipment_id": item["id"], "due_at": due_at.isoformat()},
        headers={"X-User-Id": actor},
    )


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["db_health"] is True
    assert data["counts"] == {"students": 0, "equipment": 0, "open_loans": 0}
    assert data["config_issues"] == []


def test_health_reports_bad_policy(client, monkeypatch):
    monkeypatch.setattr(config, "LOSS_PENALTY_FACTOR", 1.5)

    data = client.get("/health").json()

    assert data["status"] == "degraded"
    assert len(data["config_issues"]) == 1
    assert "LOSS_PENALTY_FACTOR" in data["config_issues"][0]


def test_enroll_student_starts_at_base_score(client, enrolled):
    student, _ = enrolled

    response = client.get(f"/students/{student['id']}")

    assert response.status_code == 200
    assert response.json()["trust_score"] == 50.0
    assert response.json()["is_suspended"] is False


def test_invalid_equipment_status_rejected(client):
    response = client.post("/equipment", json={"item_id": "EQ-X", "name": "Cone", "status": "melted"})
    assert response.status_code == 422


def test_checkout_records_actor(client, enrolled):
    student, item = enrolled

    response = checkout(client, student, item)

    assert response.status_code == 201
    loan = response.json()
    assert loan["status"] == "active"
    assert loan["borrowed_by_user_id"] == "captain-9"
    assert client.get(f"/equipment/{item['id']}").json()["status"] == "borrowed"


def test_checkout_accepts_zulu_due_date(client, enrolled):
    student, item = enrolled
    due_local = NOW + timedelta(days=2)
    due_zulu = due_local.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    response = client.post(
        "/loans",
        json={"student_id": student["id"], "equipment_id": item["id"], "due_at": due_zulu},
    )

    assert response.status_code == 201
    assert response.json()["due_at"] == due_local.isoformat()
    assert dao.get_loan(response.json()["id"]).due_at == due_local


def test_checkout_of_borrowed_item_conflicts(client, enrolled):
    student, item = enrolled
    checkout(client, student, item)

    response = checkout(client, student, item)

    assert response.status_code == 409
    assert response.json()["error_type"] == "EQUIPMENT_UNAVAILABLE"


def test_on_time_return(client, enrolled):
    student, item = enrolled
    loan = checkout(client, student, item).json()

    response = client.post(f"/loans/{loan['id']}/return", json={"outcome": "normal"},
                           headers={"X-User-Id": "admin-1"})

    assert response.status_code == 200
    data = response.json()
    assert data["verdict"] == "on_time"
    assert data["trust_score"] == 75.0
    assert data["equipment_status"] == "available"
    assert data["loan"]["status"] == "returned"
    assert data["suspension"] is None

    activity = client.get("/activity", params={"entity_type": "loan", "entity_id": loan["id"]}).json()
    assert activity[0]["action"] == "loan.returned"
    assert activity[0]["user_id"] == "admin-1"


def test_lost_return_suspends_student(client, enrolled):
    student, item = enrolled
    loan = checkout(client, student, item).json()

    data = client.post(f"/loans/{loan['id']}/return", json={"outcome": "lost"}).json()

    assert data["equipment_status"] == "lost"
    assert data["trust_score"] == 25.0
    assert data["suspension"]["reason"] == "Lost equipment: Football"

    stored = client.get(f"/students/{student['id']}").json()
    assert stored["is_suspended"] is True
    assert stored["blacklist_end_date"] == (NOW + timedelta(days=14)).isoformat()

    # suspended students cannot borrow
    other = client.post("/equipment", json={"item_id": "EQ-FB-02", "name": "Football"}).json()
    response = checkout(client, student, other)
    assert response.status_code == 409
    assert response.json()["error_type"] == "STUDENT_SUSPENDED"


def test_second_return_conflicts(client, enrolled):
    student, item = enrolled
    loan = checkout(client, student, item).json()
    client.post(f"/loans/{loan['id']}/return", json={})

    response = client.post(f"/loans/{loan['id']}/return", json={"outcome": "damaged"})

    assert response.status_code == 409
    assert response.json()["error_type"] == "ALREADY_RETURNED"


def test_unknown_outcome_rejected(client, enrolled):
    student, item = enrolled
    loan = checkout(client, student, item).json()

    response = client.post(f"/loans/{loan['id']}/return", json={"outcome": "stolen"})

    assert response.status_code == 422
    assert dao.get_loan(loan["id"]).returned_at is None


def test_missing_records_are_404(client):
    assert client.get("/students/nobody").status_code == 404
    assert client.get("/equipment/nothing").status_code == 404
    response = client.post("/loans/missing/return", json={})
    assert response.status_code == 404
    assert response.json()["error_type"] == "NOT_FOUND"


def test_open_loans_resolved_at_request_time(client, enrolled):
    student, item = enrolled
    loan = checkout(client, student, item).json()

    app.dependency_overrides[get_clock] = lambda: fixed_clock(NOW + timedelta(days=3))
    grouped = client.get("/loans/open").json()
    single = client.get(f"/loans/{loan['id']}").json()

    assert [entry["id"] for entry in grouped["overdue"]] == [loan["id"]]
    assert grouped["active"] == []
    assert single["status"] == "overdue"
    # reads do not persist
    assert dao.get_loan(loan["id"]).status == "active"


def test_refresh_persists_status(client, enrolled):
    student, item = enrolled
    loan = checkout(client, student, item).json()
    app.dependency_overrides[get_clock] = lambda: fixed_clock(NOW + timedelta(days=3))

    response = client.post(f"/loans/{loan['id']}/refresh")

    assert response.json() == {"loan_id": loan["id"], "status": "overdue", "is_overdue": True}
    assert dao.get_loan(loan["id"]).is_overdue is True


def test_trust_history(client, enrolled):
    student, item = enrolled
    loan = checkout(client, student, item).json()
    client.post(f"/loans/{loan['id']}/return", json={})

    data = client.get(f"/students/{student['id']}/trust").json()

    assert data["trust_score"] == 75.0
    assert [(e["verdict"], e["score_before"], e["score_after"]) for e in data["events"]] == [
        ("on_time", 50.0, 75.0)
    ]


def test_recalculate_trust(client, enrolled):
    student, _ = enrolled
    dao.update_student_trust(student["id"], 12.3, 12.3, NOW)

    response = client.post(f"/students/{student['id']}/trust/recalculate")

    assert response.status_code == 200
    assert response.json()["trust_score"] == 50.0


def test_recalculate_trust_while_maintenance_disabled(client, enrolled, maintenance_disabled):
    student, _ = enrolled

    response = client.post(f"/students/{student['id']}/trust/recalculate")

    assert response.status_code == 503
    assert response.json()["error_type"] == "MAINTENANCE_DISABLED"


def test_manual_suspension(client, enrolled):
    student, _ = enrolled

    response = client.post(f"/students/{student['id']}/suspend", json={"days": 3, "reason": "Misuse"},
                           headers={"X-User-Id": "admin-4"})

    assert response.status_code == 201
    assert response.json()["blacklisted_by_user_id"] == "admin-4"
    history = client.get(f"/students/{student['id']}/suspensions").json()
    assert [entry["reason"] for entry in history] == ["Misuse"]


@pytest.mark.parametrize("body", [{"days": 0, "reason": "x"}, {"days": 3, "reason": "  "}])
def test_invalid_suspension_rejected(client, enrolled, body):
    student, _ = enrolled
    response = client.post(f"/students/{student['id']}/suspend", json=body)
    assert response.status_code == 422


def test_activity_filter_validation(client):
    response = client.get("/activity", params={"entity_type": "equipment"})
    assert response.status_code == 400
