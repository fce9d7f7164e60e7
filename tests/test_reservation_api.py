from __future__ import annotations

import hashlib
import json
from typing import Any

import pytest
import requests

from coachticket.config import UpstreamConfig
from coachticket.errors import UpstreamError, ValidationError
from coachticket.upstream.reservation_api import (
    ReservationApiClient,
    gender_for,
    normalize_passenger_detail,
)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload if payload is not None else {"Success": True}
        self.text = json.dumps(self._payload)

    def json(self) -> Any:
        return self._payload


class FakeSession:
    def __init__(self, *responses: FakeResponse) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def request(self, **kwargs: Any) -> FakeResponse:
        self.calls.append(kwargs)
        if self.responses:
            return self.responses.pop(0)
        return FakeResponse()


def _client(session: FakeSession, username: str = "agent", password: str = "s3cret") -> ReservationApiClient:
    config = UpstreamConfig(base_url="https://upstream.test", username=username, password=password, timeout_seconds=7)
    return ReservationApiClient(config, session=session)  # type: ignore[arg-type]


def test_reserve_posts_trip_details_with_hashed_credentials() -> None:
    session = FakeSession(FakeResponse(payload={"Success": True, "ReservationID": "R-1"}))

    result = _client(session).reserve(
        trip_id="55",
        departure_stop_id=3,
        destination_stop_id=9,
        departure_date="2026-03-04",
        passengers=2,
        passenger_details=[{"first_name": "Rudo", "title": "Ms"}, {"Firstname": "Tendai", "type": "2"}],
        reservation_time=600,
    )

    assert result["ReservationID"] == "R-1"
    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://upstream.test/api/v2/trips/reserve_seats"
    assert call["timeout"] == 7
    body = call["json"]
    assert body["Credentials"] == {"username": "agent", "password": hashlib.sha512(b"s3cret").hexdigest()}
    assert body["ReservationTime"] == 600
    trip = body["TripReservationDetails"]["Trip1"]
    assert trip["TripID"] == 55
    assert trip["Passengers"] == 2
    assert trip["PassengerDetails"][0] == {
        "Firstname": "Rudo",
        "Title": "Ms",
        "PassengerNo": 1,
        "Type": 1,
        "Gender": "F",
        "WithInfant": False,
    }
    assert trip["PassengerDetails"][1]["Type"] == 2
    assert trip["PassengerDetails"][1]["Title"] == "Mr"


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"trip_id": 0}, "trip_id"),
        ({"departure_stop_id": None}, "departure_stop_id"),
        ({"destination_stop_id": "x"}, "destination_stop_id"),
        ({"departure_date": ""}, "departure_date"),
        ({"passengers": 0}, "passengers"),
        ({"reservation_time": 29}, "reservation_time"),
        ({"reservation_time": 901}, "reservation_time"),
    ],
)
def test_reserve_validates_before_calling_upstream(overrides: dict, message: str) -> None:
    session = FakeSession()
    args = {
        "trip_id": 55,
        "departure_stop_id": 3,
        "destination_stop_id": 9,
        "departure_date": "2026-03-04",
        "passengers": 1,
        "reservation_time": 600,
        **overrides,
    }

    with pytest.raises(ValidationError) as exc_info:
        _client(session).reserve(**args)

    assert message in str(exc_info.value)
    assert session.calls == []


def test_reservation_time_bounds_are_inclusive() -> None:
    session = FakeSession()
    client = _client(session)
    client.reserve(55, 3, 9, "2026-03-04", 1, reservation_time=30)
    client.reserve(55, 3, 9, "2026-03-04", 1, reservation_time=900)

    assert len(session.calls) == 2


def test_pay_validates_amount_and_method() -> None:
    session = FakeSession()
    client = _client(session)

    with pytest.raises(ValidationError):
        client.pay("R-1", 0)
    with pytest.raises(ValidationError):
        client.pay("R-1", "abc")
    with pytest.raises(ValidationError):
        client.pay("R-1", 10, payment_method=2)
    with pytest.raises(ValidationError):
        client.pay(" ", 10)
    assert session.calls == []

    client.pay("R-1", "45.50")
    body = session.calls[0]["json"]
    assert session.calls[0]["url"].endswith("/api/v2/reservation/make_payment")
    assert body["ReservationID"] == "R-1"
    assert body["AmountReceived"] == 45.5
    assert body["PaymentMethod"] == 1


def test_print_and_cancel_paths() -> None:
    session = FakeSession()
    client = _client(session)

    client.print_tickets("R-1")
    client.cancel("R-1")

    assert session.calls[0]["url"].endswith("/api/v2/reservation/print_tickets")
    assert session.calls[1]["url"].endswith("/api/v2/reservation/cancel_reservation")
    assert session.calls[1]["json"]["ReservationID"] == "R-1"


def test_http_error_becomes_upstream_error_with_details() -> None:
    session = FakeSession(FakeResponse(status_code=503, payload={"message": "maintenance"}))

    with pytest.raises(UpstreamError) as exc_info:
        _client(session).cancel("R-1")

    assert exc_info.value.status_code == 502
    assert exc_info.value.upstream_status == 503
    assert exc_info.value.details == {"message": "maintenance"}


def test_transport_error_becomes_upstream_error() -> None:
    class DownSession:
        def request(self, **kwargs: Any) -> None:
            raise requests.ConnectionError("connection refused")

    client = ReservationApiClient(
        UpstreamConfig(base_url="https://upstream.test", username="a", password="b", timeout_seconds=1),
        session=DownSession(),  # type: ignore[arg-type]
    )

    with pytest.raises(UpstreamError):
        client.print_tickets("R-1")


def test_missing_credentials_fail_before_request() -> None:
    session = FakeSession()

    with pytest.raises(UpstreamError):
        _client(session, username="", password="").cancel("R-1")
    assert session.calls == []


def test_passenger_detail_normalization_drops_unknown_keys() -> None:
    detail = normalize_passenger_detail(
        {"Firstname": "Rudo", "Surname": " ", "Gender": "f", "WithInfant": "yes", "Nationality": "ZW"},
        2,
    )

    assert detail == {
        "Firstname": "Rudo",
        "Gender": "F",
        "WithInfant": True,
        "PassengerNo": 3,
        "Type": 1,
        "Title": "Mr",
    }


def test_gender_from_title() -> None:
    assert gender_for(None, "Mrs") == "F"
    assert gender_for(None, "miss") == "F"
    assert gender_for(None, "Mister") == "M"
    assert gender_for(None, "Dr") == "M"
    assert gender_for("m", "Mrs") == "M"
