from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from conftest import make_donor, make_location, make_request
from donorlink.db import get_db
from donorlink.main import app
from donorlink.models import ActiveToken, BloodRequest, RequestStatus
from donorlink.services.invitation_service import invitation_service, issue_token
from donorlink.utils.time import utcnow


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_mark_donation_fulfils_request_and_notifies(client, db):
    request = make_request(db, hospital_id="H1")
    make_donor(db)
    make_location(db, request_id=request.id)

    response = client.post("/api/mark-donation", json={"donor_id": "DON-0001"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["donation_history"]["donor_name"] == "Asha Patel"
    assert body["donation_history"]["blood_group"] == "A+"
    assert body["request"]["fulfilled"] is True

    titles = [n["title"] for n in client.get("/api/notifications/H1").json()["notifications"]]
    assert "Donation Confirmed" in titles
    assert "Blood Request Fulfilled" in titles


@pytest.mark.parametrize("setup, status, reason", [
    ("no_location", 404, "donor_not_found"),
    ("fulfilled", 409, "reservation_conflict"),
    ("expired", 410, "request_expired"),
])
def test_mark_donation_failures(client, db, setup, status, reason):
    if setup == "fulfilled":
        request = make_request(db, confirmed_units=1, status=RequestStatus.FULFILLED.value)
        make_location(db, request_id=request.id)
    elif setup == "expired":
        request = make_request(db, required_by=utcnow() - timedelta(hours=1))
        make_location(db, request_id=request.id)

    response = client.post("/api/mark-donation", json={"donor_id": "DON-0001"})

    assert response.status_code == status
    assert response.json()["success"] is False
    assert response.json()["reason"] == reason


def test_second_mark_donation_is_rejected(client, db):
    request = make_request(db, quantity=2)
    make_location(db, request_id=request.id)

    assert client.post("/api/mark-donation", json={"donor_id": "DON-0001"}).status_code == 200
    second = client.post("/api/mark-donation", json={"donor_id": "DON-0001"})

    assert second.status_code == 409
    assert second.json()["reason"] == "already_processing"


def test_token_response_flow(client, db):
    request = make_request(db, hospital_id="H1")
    donor = make_donor(db)
    token = issue_token(db, request, donor).token
    db.commit()

    details = client.get(f"/r/{token}").json()
    assert details["data"]["is_fulfilled"] is False
    assert details["data"]["request"]["active_tokens"] == [token]

    payload = {"latitude": 22.6, "longitude": 72.8, "is_available": True}
    first = client.post(f"/r/{token}/respond", json=payload)
    second = client.post(f"/r/{token}/respond", json=payload)

    assert first.status_code == 200
    assert first.json()["data"]["donor_id"] == "DON-0001"
    assert second.status_code == 404
    assert client.get(f"/r/{token}").status_code == 404

    live = client.get("/api/locations").json()
    assert live["summary"]["total"] == 1
    assert live["responses"][0]["blood_group"] == "A+"

    responses = client.get(f"/api/responses/{request.id}").json()
    assert len(responses["responses"]) == 1

    confirmed = client.post("/api/mark-donation", json={"donor_id": "DON-0001"})
    assert confirmed.status_code == 200
    assert client.get(f"/api/responses/{request.id}").json()["responses"] == []


def test_direct_share_rejected_for_closed_request(client, db):
    request = make_request(db, status=RequestStatus.CANCELLED.value)

    response = client.post(
        "/api/donor-location",
        json={"request_id": request.id, "donor_id": "DON-0001", "lat": 22.6, "lng": 72.8},
    )

    assert response.status_code == 400


def test_direct_share_appears_on_live_map(client, db):
    request = make_request(db)
    make_donor(db)

    response = client.post(
        "/api/donor-location",
        json={"request_id": request.id, "donor_id": "DON-0001", "lat": 22.6, "lng": 72.8},
    )

    assert response.status_code == 200
    entry = client.get("/api/locations").json()["responses"][0]
    assert entry["direct"] is True
    assert entry["name"] == "Asha Patel"
    assert entry["expiry_info"]["is_expiring_soon"] is False

    verify = client.get("/api/verify-location/DON-0001").json()
    assert verify["donor"]["blood_group"] == "A+"


def test_blood_request_lifecycle(client):
    created = client.post("/api/blood-requests", json={
        "hospital_id": "H1",
        "blood_group": "B+",
        "quantity": 2,
        "urgency": "high",
        "required_by": (utcnow() + timedelta(days=1)).isoformat(),
    })
    assert created.status_code == 200
    request_id = created.json()["id"]
    assert created.json()["confirmed_units"] == 0

    ignored = client.put(f"/api/blood-requests/{request_id}", json={"confirmed_units": 2, "description": "ICU"})
    assert ignored.status_code == 200
    assert ignored.json()["blood_request"]["confirmed_units"] == 0
    assert ignored.json()["blood_request"]["description"] == "ICU"

    cancelled = client.put(f"/api/blood-requests/{request_id}", json={"status": "cancelled"})
    assert cancelled.json()["blood_request"]["status"] == "cancelled"

    reopened = client.put(f"/api/blood-requests/{request_id}", json={"status": "active"})
    assert reopened.status_code == 400

    hospital = client.get("/api/blood-requests/hospital/H1").json()["blood_requests"]
    assert [r["id"] for r in hospital] == [request_id]

    titles = [n["title"] for n in client.get("/api/notifications/H1").json()["notifications"]]
    assert titles.count("Blood Request Updated") == 2


def test_quantity_cannot_drop_below_confirmed_units(client, db):
    request = make_request(db, quantity=3, confirmed_units=2)

    assert client.put(f"/api/blood-requests/{request.id}", json={"quantity": 1}).status_code == 400

    lowered = client.put(f"/api/blood-requests/{request.id}", json={"quantity": 2})
    assert lowered.json()["blood_request"]["status"] == "fulfilled"


def test_delete_blood_request_removes_tokens(client, db):
    request_id = make_request(db).id
    db.add(ActiveToken(request_id=request_id, token="tok-1"))
    db.commit()

    assert client.delete(f"/api/blood-requests/{request_id}").status_code == 200
    assert client.get(f"/api/blood-requests/{request_id}").status_code == 404

    db.expire_all()
    assert db.get(BloodRequest, request_id) is None
    assert db.execute(select(ActiveToken)).scalars().all() == []


def test_accept_donor_then_list(client, db):
    request = make_request(db)

    accepted = client.post("/api/accept-donor", json={
        "donor_id": "DON-0001",
        "donor_name": "Asha Patel",
        "donor_phone": "+919876543210",
        "donor_blood_group": "A+",
        "blood_request_id": request.id,
    })
    duplicate = client.post("/api/accept-donor", json={
        "donor_id": "DON-0001",
        "donor_name": "Asha Patel",
        "donor_phone": "+919876543210",
        "donor_blood_group": "A+",
        "blood_request_id": request.id,
    })

    assert accepted.status_code == 200
    assert duplicate.status_code == 400
    listed = client.get(f"/api/accepted-donors/{request.id}").json()["accepted_donors"]
    assert [d["donor_id"] for d in listed] == ["DON-0001"]


def test_donor_registry(client):
    created = client.post("/api/donors", json={
        "name": "Ravi Kumar", "phone": "9000000001", "blood_group": "O-", "unique_id": "DON-0002",
    })
    assert created.status_code == 200
    assert client.post("/api/donors", json={"name": "Dup", "phone": "1", "unique_id": "DON-0002"}).status_code == 400

    donors = client.get("/api/available-donors").json()
    assert donors["total"] == 1
    assert donors["donors"][0]["status"] == "available"


def test_connected_clients_endpoint(client):
    body = client.get("/api/notifications/clients").json()
    assert body == {"success": True, "size": 0, "hospitals": []}


def test_recent_requests_cover_last_week(client, db):
    make_request(db, hospital_id="OLD", created_at=utcnow() - timedelta(days=10))
    older = make_request(db, blood_group="O-", quantity=2, created_at=utcnow() - timedelta(days=2))
    newer = make_request(db, hospital_id="H2")

    body = client.get("/api/recent-requests").json()

    assert body["total"] == 2
    assert [r["id"] for r in body["requests"]] == [newer.id, older.id]
    assert body["requests"][1]["label"].startswith("O- - 2 unit(s) - H1 - ")


def test_invite_route_sends_links(client, db, monkeypatch):
    sent = []

    def fake_send_sms(to, message):
        sent.append(to)
        return {'success': True, 'sid': "SM1"}

    monkeypatch.setattr(invitation_service.sms, "send_sms", fake_send_sms)
    request = make_request(db)
    make_donor(db)

    response = client.post(f"/api/blood-requests/{request.id}/invite", json={"hospital_name": "City Hospital"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "invited": 1, "sent": 1, "failed": 0}
    assert sent == ["+919876543210"]
