from datetime import date, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from railpass.ledger.service import LedgerStore

API = "/api/v1"


@pytest.fixture
def schedule(client):
    train = client.post(f"{API}/schedules/trains", json={
        "name": "Subarna Express",
        "train_number": "701",
        "from_station": "Dhaka",
        "to_station": "Chattogram",
        "departure_time": "07:00:00",
        "arrival_time": "12:10:00",
        "total_seats": 2
    })
    assert train.status_code == 201, train.text

    response = client.post(f"{API}/schedules/", json={
        "train_id": train.json()["id"],
        "journey_date": (date.today() + timedelta(days=3)).isoformat(),
        "price": "450.00"
    })
    assert response.status_code == 201, response.text
    return response.json()


def register(client, email, opening_balance=None):
    payload = {"name": "Rahim", "email": email}
    if opening_balance:
        payload["opening_balance"] = opening_balance
    response = client.post(f"{API}/users/", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_user_registration_and_wallet(client):
    user = register(client, "rahim@example.com", opening_balance="100.00")
    assert user["balance"] == "100.00"

    duplicate = client.post(f"{API}/users/", json={"name": "Other", "email": "rahim@example.com"})
    assert duplicate.status_code == 400

    topped = client.post(f"{API}/wallets/user/{user['id']}/add-funds", json={
        "amount": "400.00", "payment_method": "bkash", "payment_id": "TRX-9"
    })
    assert topped.status_code == 200, topped.text
    assert topped.json()["wallet"]["balance"] == "500.00"

    wallet = client.get(f"{API}/wallets/user/{user['id']}").json()
    assert len(wallet["recent_transactions"]) == 2

    report = client.get(f"{API}/wallets/{wallet['id']}/reconcile").json()
    assert report["is_consistent"]

    assert client.get(f"{API}/wallets/user/9999").status_code == 404


def test_schedule_endpoints(client, schedule):
    detail = client.get(f"{API}/schedules/{schedule['id']}").json()
    assert detail["train"]["train_number"] == "701"
    assert detail["available_seats"] == 2

    search = client.get(f"{API}/schedules/", params={"from_station": "dhaka"}).json()
    assert search["total"] == 1

    closed = client.patch(f"{API}/schedules/{schedule['id']}/status", json={"status": "closed"})
    assert closed.json()["status"] == "closed"

    assert client.get(f"{API}/schedules/9999").status_code == 404


def test_book_verify_and_download(client, schedule):
    user = register(client, "karim@example.com", opening_balance="1000.00")

    response = client.post(f"{API}/bookings/", json={
        "user_id": user["id"], "schedule_id": schedule["id"], "seat_number": " a1 "
    })
    assert response.status_code == 201, response.text
    booking = response.json()
    ticket = booking["ticket"]
    assert ticket["seat_number"] == "A1"
    assert ticket["price"] == "450.00"

    attempt = client.get(f"{API}/bookings/attempts/{booking['attempt_id']}").json()
    assert attempt["state"] == "issued"

    seats = client.get(f"{API}/schedules/{schedule['id']}/seats").json()
    assert seats["taken_seats"] == ["A1"]
    assert seats["available_seats"] == 1

    qr = client.get(f"{API}/tickets/{ticket['id']}/qr.png")
    assert qr.headers["content-type"] == "image/png"
    pdf = client.get(f"{API}/tickets/{ticket['id']}/pdf")
    assert pdf.headers["content-type"] == "application/pdf"

    first = client.post(f"{API}/tickets/verify", json={"qr_code": ticket["qr_code"], "location": "Kamalapur"})
    second = client.post(f"{API}/tickets/verify", json={"qr_code": ticket["qr_code"]})
    assert first.json()["outcome"] == "valid"
    assert second.json()["outcome"] == "already_used"

    history = client.get(f"{API}/tickets/{ticket['id']}").json()
    assert [v["outcome"] for v in history["verifications"]] == ["valid", "already_used"]
    assert history["status"] == "used"

    mine = client.get(f"{API}/tickets/user/{user['id']}").json()
    assert [t["id"] for t in mine] == [ticket["id"]]


def test_booking_errors_map_to_statuses(client, schedule):
    rich = register(client, "rich@example.com", opening_balance="1000.00")
    poor = register(client, "poor@example.com", opening_balance="10.00")

    assert client.post(f"{API}/bookings/", json={
        "user_id": rich["id"], "schedule_id": schedule["id"], "seat_number": "A1"
    }).status_code == 201

    taken = client.post(f"{API}/bookings/", json={
        "user_id": poor["id"], "schedule_id": schedule["id"], "seat_number": "A1"
    })
    assert taken.status_code == 409
    assert taken.json()["detail"]["code"] == "seat_taken"

    broke = client.post(f"{API}/bookings/", json={
        "user_id": poor["id"], "schedule_id": schedule["id"], "seat_number": "A2"
    })
    assert broke.status_code == 402
    assert broke.json()["detail"]["code"] == "insufficient_funds"
    assert broke.json()["detail"]["attempt_id"]

    missing = client.post(f"{API}/bookings/", json={
        "user_id": rich["id"], "schedule_id": 9999, "seat_number": "A1"
    })
    assert missing.status_code == 404

    invalid = client.post(f"{API}/bookings/", json={
        "user_id": rich["id"], "schedule_id": schedule["id"], "seat_number": "A3", "price": "-5"
    })
    assert invalid.status_code == 422


def test_refund_endpoint(client, schedule):
    user = register(client, "refund@example.com", opening_balance="450.00")
    booking = client.post(f"{API}/bookings/", json={
        "user_id": user["id"], "schedule_id": schedule["id"], "seat_number": "B1"
    }).json()
    ticket_id = booking["ticket"]["id"]

    refunded = client.post(f"{API}/bookings/tickets/{ticket_id}/refund", json={"reason": "plans changed"})
    assert refunded.status_code == 200, refunded.text
    assert refunded.json()["transaction"]["amount"] == "450.00"

    again = client.post(f"{API}/bookings/tickets/{ticket_id}/refund")
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "not_refundable"

    assert client.get(f"{API}/users/{user['id']}").json()["balance"] == "450.00"
    assert client.get(f"{API}/tickets/{ticket_id}").json()["status"] == "void"


def test_verify_requires_ticket_data(client):
    response = client.post(f"{API}/tickets/verify", json={"location": "Gate 3"})
    assert response.status_code == 422

    garbage = client.post(f"{API}/tickets/verify", json={"qr_code": "not-a-ticket"})
    assert garbage.status_code == 400


def test_maintenance_sweep(client):
    report = client.post(f"{API}/bookings/maintenance/recover")
    assert report.status_code == 200
    assert report.json()["attempts_recovered"] == 0


def test_refund_storage_failure_is_503(client, schedule, monkeypatch):
    user = register(client, "outage@example.com", opening_balance="450.00")
    booking = client.post(f"{API}/bookings/", json={
        "user_id": user["id"], "schedule_id": schedule["id"], "seat_number": "C1"
    }).json()

    def lost_connection(self, *args, **kwargs):
        raise OperationalError("UPDATE wallets", {}, Exception("server closed the connection unexpectedly"))

    monkeypatch.setattr(LedgerStore, "credit", lost_connection)

    response = client.post(f"{API}/bookings/tickets/{booking['ticket']['id']}/refund")
    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "storage_unavailable"
