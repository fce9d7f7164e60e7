from __future__ import annotations

import hashlib
import json
from typing import Any

import pytest
from fastapi.testclient import TestClient

from coachticket import api
from coachticket.db.repositories import BookingIndexRepository
from coachticket.runtime import TicketingRuntime


class FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = json.dumps(payload)

    def json(self) -> Any:
        return self._payload


class FakeUpstream:
    """Answers the four reservation API calls by path."""

    def __init__(self) -> None:
        self.pay_result: Any = {"Success": True}
        self.paths: list[str] = []

    def request(self, **kwargs: Any) -> FakeResponse:
        path = kwargs["url"].split("/api/v2/")[-1]
        self.paths.append(path)
        if path == "trips/reserve_seats":
            return FakeResponse({"Success": True, "ReservationID": "R-77", "Seats": ["4", "5"]})
        if path == "reservation/make_payment":
            return FakeResponse(self.pay_result)
        if path == "reservation/print_tickets":
            return FakeResponse({"Success": True, "Tickets": [{"TicketNo": "T-1"}]})
        return FakeResponse({"Success": True})


@pytest.fixture
def upstream(monkeypatch) -> FakeUpstream:
    monkeypatch.setenv("COACHTICKET_UPSTREAM_USERNAME", "agent")
    monkeypatch.setenv("COACHTICKET_UPSTREAM_PASSWORD", "s3cret")
    fake = FakeUpstream()
    monkeypatch.setattr(api, "runtime", TicketingRuntime(session=fake))  # type: ignore[arg-type]
    return fake


@pytest.fixture
def client(upstream: FakeUpstream) -> TestClient:
    return TestClient(api.app)


def _reserve(client: TestClient) -> str:
    response = client.post(
        "/api/reservations",
        json={
            "trip_id": 55,
            "departure_stop_id": 3,
            "destination_stop_id": 9,
            "departure_date": "2026-03-04",
            "passengers": 2,
            "reservation_time": 600,
            "passenger_details": [
                {"first_name": "Rudo", "last_name": "Moyo", "title": "Ms"},
                {"first_name": "Tendai", "last_name": "Moyo"},
            ],
            "origin": "Harare",
            "destination": "Bulawayo",
            "estimated_total": "60.00",
        },
    )
    assert response.status_code == 200
    return response.json()["pnr"]


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["storage_backend"] == "memory"


def test_reservation_is_mirrored_after_response(client: TestClient) -> None:
    pnr = _reserve(client)

    row = BookingIndexRepository().get(pnr)
    assert row is not None
    assert row["reservation_id"] == "R-77"
    assert api.runtime.mirror_queue.pending == 0


def test_hold_ticket_then_final_after_payment(client: TestClient) -> None:
    pnr = _reserve(client)

    hold = client.get(f"/api/tickets/{pnr}")
    assert hold.status_code == 200
    assert hold.headers["content-type"] == "application/pdf"
    assert hold.headers["content-disposition"] == f'inline; filename="hold-{pnr}.pdf"'
    assert hold.headers["content-length"] == str(len(hold.content))
    assert hold.headers["x-content-sha256"] == hashlib.sha256(hold.content).hexdigest()
    assert hold.content.startswith(b"%PDF-")

    paid = client.post(f"/api/reservations/{pnr}/pay", json={"amount": "60.00"})
    assert paid.status_code == 200
    assert paid.json()["reservation"]["status"] == "paid"

    final = client.get(f"/api/tickets/{pnr}", params={"regen": "true", "download": "true"})
    assert final.status_code == 200
    assert final.headers["content-disposition"] == f'attachment; filename="final-{pnr}.pdf"'
    assert final.content != hold.content


def test_zip_ticket_after_payment(client: TestClient) -> None:
    pnr = _reserve(client)
    client.post(f"/api/reservations/{pnr}/pay", json={"amount": "60.00"})

    response = client.get(f"/api/tickets/{pnr}", params={"zip": "true"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert response.headers["content-disposition"] == f'inline; filename="final_zip-{pnr}.zip"'
    assert response.content.startswith(b"PK\x03\x04")


def test_split_flag_also_bundles_a_zip(client: TestClient) -> None:
    pnr = _reserve(client)
    client.post(f"/api/reservations/{pnr}/pay", json={"amount": "60.00"})
    client.get(f"/api/tickets/{pnr}")

    response = client.get(f"/api/tickets/{pnr}", params={"split": "true"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert response.headers["content-disposition"] == f'inline; filename="final_zip-{pnr}.zip"'
    assert response.headers["content-length"] == str(len(response.content))


def test_thermal_ticket(client: TestClient) -> None:
    pnr = _reserve(client)

    response = client.get(f"/api/tickets/{pnr}", params={"thermal": "true", "width": "58"})

    assert response.status_code == 200
    assert response.content.startswith(b"%PDF-")


def test_unknown_ticket_is_404(client: TestClient) -> None:
    response = client.get("/api/tickets/199999999")

    assert response.status_code == 404


def test_invalid_reservation_is_400_without_upstream_call(client: TestClient, upstream: FakeUpstream) -> None:
    response = client.post(
        "/api/reservations",
        json={
            "trip_id": 55,
            "departure_stop_id": 3,
            "destination_stop_id": 9,
            "departure_date": "2026-03-04",
            "passengers": 1,
            "reservation_time": 10,
        },
    )

    assert response.status_code == 400
    assert "reservation_time" in response.json()["detail"]
    assert upstream.paths == []


def test_declined_payment_is_502(client: TestClient, upstream: FakeUpstream) -> None:
    pnr = _reserve(client)
    upstream.pay_result = {"Success": False, "Error": "Card declined"}

    response = client.post(f"/api/reservations/{pnr}/pay", json={"amount": "60.00"})

    assert response.status_code == 502
    assert response.json()["detail"]["message"] == "Card declined"
    reservation = client.get("/api/reservations/R-77").json()
    assert reservation["status"] == "reserved"
    assert reservation["pnr"] == pnr


def test_print_cancel_and_listing(client: TestClient) -> None:
    pnr = _reserve(client)

    printed = client.post(f"/api/reservations/{pnr}/print")
    cancelled = client.post("/api/reservations/R-77/cancel")
    listing = client.get("/api/reservations")

    assert printed.status_code == 200
    assert cancelled.json()["reservation"]["status"] == "cancelled"
    assert [row["reservation_id"] for row in listing.json()] == ["R-77"]
    booking = client.get(f"/api/bookings/{pnr}").json()
    assert booking["reservation"]["status"] == "cancelled"
    assert client.get("/api/bookings/199999999").status_code == 404


def test_events_endpoint_lists_lifecycle_topics(client: TestClient) -> None:
    _reserve(client)

    payload = client.get("/api/events").json()

    assert payload["topics"]["reservation.lifecycle"]["count"] == 1


def test_events_endpoint_filters_by_pnr(client: TestClient) -> None:
    pnr = _reserve(client)
    client.post(f"/api/reservations/{pnr}/cancel")

    payload = client.get("/api/events", params={"pnr": pnr}).json()

    assert payload["pnr"] == pnr
    assert [event["event_type"] for event in payload["events"]] == ["reservation_created", "reservation_cancelled"]
    assert client.get("/api/events", params={"pnr": "199999999"}).json()["count"] == 0
