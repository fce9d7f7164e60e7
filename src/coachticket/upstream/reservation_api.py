from __future__ import annotations

import hashlib
import logging
import random
import time
from decimal import Decimal
from typing import Any

import requests

from coachticket.config import UpstreamConfig
from coachticket.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

RESERVE_PATH = "/api/v2/trips/reserve_seats"
PAYMENT_PATH = "/api/v2/reservation/make_payment"
PRINT_PATH = "/api/v2/reservation/print_tickets"
CANCEL_PATH = "/api/v2/reservation/cancel_reservation"

MIN_RESERVATION_SECONDS = 30
MAX_RESERVATION_SECONDS = 900

UPSTREAM_DETAIL_KEYS = (
    "PassengerNo",
    "Type",
    "Title",
    "Firstname",
    "Surname",
    "Gender",
    "Telephone",
    "Seat",
    "SeatNo",
    "WithInfant",
    "IDNumber",
    "PassportNo",
)

# local snake_case field -> upstream field
_DETAIL_ALIASES = {
    "first_name": "Firstname",
    "last_name": "Surname",
    "phone": "Telephone",
    "seat": "Seat",
    "id_number": "IDNumber",
    "passport_no": "PassportNo",
}


def hash_password(password: str) -> str:
    return hashlib.sha512(str(password or "").encode("utf-8")).hexdigest()


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _as_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in {"true", "1", "yes", "y"}:
        return True
    if text in {"false", "0", "no", "n"}:
        return False
    return default


def gender_for(gender: Any, title: Any) -> str:
    explicit = str(gender or "").strip().upper()
    if explicit in {"M", "F"}:
        return explicit
    normalized_title = str(title or "").strip().lower()
    if normalized_title in {"mrs", "ms", "miss"}:
        return "F"
    return "M"


def normalize_passenger_detail(detail: dict[str, Any] | None, index: int) -> dict[str, Any]:
    """Shape one passenger for the reserve_seats call; unknown keys are dropped."""
    source = dict(detail or {})
    for local, upstream in _DETAIL_ALIASES.items():
        if source.get(upstream) is None and source.get(local) is not None:
            source[upstream] = source[local]

    out: dict[str, Any] = {}
    for key in UPSTREAM_DETAIL_KEYS:
        value = source.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        out[key] = value

    passenger_type = _as_int(
        source.get("Type") or source.get("type") or source.get("passenger_type") or source.get("TypeID"), 0
    )
    title = source.get("Title") or source.get("title") or "Mr"
    out.update(
        {
            "PassengerNo": _as_int(source.get("PassengerNo") or source.get("passenger_no"), index + 1) or index + 1,
            "Type": passenger_type if passenger_type > 0 else 1,
            "Title": title,
            "Gender": gender_for(source.get("Gender") or source.get("gender"), title),
            "WithInfant": _as_bool(source.get("WithInfant", source.get("with_infant")), False),
        }
    )
    return out


def upstream_error_message(result: Any) -> str | None:
    if not isinstance(result, dict):
        return None
    for key in ("Error", "error", "message", "Message"):
        if result.get(key):
            return str(result[key])
    return None


def _request_id(operation: str) -> str:
    return f"upstream-{operation}-{int(time.time() * 1000)}-{random.randint(0, 99999)}"


class ReservationApiClient:
    """Client for the coach operator's reservation API (reserve, pay, print, cancel)."""

    def __init__(self, config: UpstreamConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self.session = session or requests.Session()

    def _credentials(self) -> dict[str, Any]:
        if not self.config.username or not self.config.password:
            raise UpstreamError(
                "Missing reservation API credentials. Set COACHTICKET_UPSTREAM_USERNAME and "
                "COACHTICKET_UPSTREAM_PASSWORD."
            )
        return {"Credentials": {"username": self.config.username, "password": hash_password(self.config.password)}}

    def _post(self, operation: str, path: str, data: dict[str, Any], log_body: dict[str, Any] | None = None) -> Any:
        request_id = _request_id(operation)
        payload = {**self._credentials(), **data}
        logger.info("upstream %s request %s path=%s body=%s", operation, request_id, path, log_body or data)
        try:
            response = self.session.request(
                method="POST",
                url=f"{self.config.base_url}{path}",
                json=payload,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.error("upstream %s request %s failed: %s", operation, request_id, exc)
            raise UpstreamError(f"Reservation API unreachable: {exc}") from exc

        try:
            result = response.json() if response.text else {}
        except ValueError:
            result = {"raw": response.text}

        if response.status_code >= 400:
            logger.error("upstream %s request %s returned %s", operation, request_id, response.status_code)
            raise UpstreamError(
                f"Reservation API error {response.status_code}",
                upstream_status=response.status_code,
                details=result,
            )

        success = not (isinstance(result, dict) and result.get("Success") is False)
        logger.info(
            "upstream %s response %s success=%s error=%s",
            operation,
            request_id,
            success,
            upstream_error_message(result),
        )
        return result

    def reserve(
        self,
        trip_id: Any,
        departure_stop_id: Any,
        destination_stop_id: Any,
        departure_date: str,
        passengers: Any,
        passenger_details: list[dict[str, Any]] | None = None,
        reservation_time: Any = 600,
    ) -> Any:
        trip = _as_int(trip_id)
        origin = _as_int(departure_stop_id)
        destination = _as_int(destination_stop_id)
        count = _as_int(passengers)
        lease = _as_int(reservation_time)
        if not trip:
            raise ValidationError("trip_id is required")
        if not origin:
            raise ValidationError("departure_stop_id is required")
        if not destination:
            raise ValidationError("destination_stop_id is required")
        if not departure_date:
            raise ValidationError("departure_date is required")
        if count <= 0:
            raise ValidationError("passengers must be >= 1")
        if lease < MIN_RESERVATION_SECONDS or lease > MAX_RESERVATION_SECONDS:
            raise ValidationError(
                f"reservation_time must be between {MIN_RESERVATION_SECONDS} and {MAX_RESERVATION_SECONDS} seconds"
            )

        details = (
            [normalize_passenger_detail(detail, index) for index, detail in enumerate(passenger_details)]
            if passenger_details is not None
            else None
        )
        trip_details = {
            "DestinationStopID": destination,
            "TripID": trip,
            "Passengers": count,
            "PassengerDetails": details,
            "DepartureDate": str(departure_date),
            "DepartureStopID": origin,
        }
        # passenger names stay out of the logs
        log_body = {
            **trip_details,
            "PassengerDetails": [
                {key: detail.get(key) for key in ("PassengerNo", "Type", "Gender", "WithInfant", "Title", "Seat")}
                for detail in details or []
            ],
        }
        return self._post(
            "reserve_seats",
            RESERVE_PATH,
            {"ReservationTime": lease, "TripReservationDetails": {"Trip1": trip_details}},
            log_body=log_body,
        )

    def pay(self, reservation_id: str, amount: Any, payment_method: Any = 1) -> Any:
        rid = str(reservation_id or "").strip()
        if not rid:
            raise ValidationError("reservation_id is required")
        try:
            value = Decimal(str(amount))
        except ArithmeticError as exc:
            raise ValidationError("amount must be a positive number") from exc
        if not value.is_finite() or value <= 0:
            raise ValidationError("amount must be a positive number")
        if _as_int(payment_method if payment_method is not None else 1, -1) != 1:
            raise ValidationError("payment_method must be 1")
        return self._post(
            "make_payment",
            PAYMENT_PATH,
            {"ReservationID": rid, "AmountReceived": float(value), "PaymentMethod": 1},
        )

    def print_tickets(self, reservation_id: str) -> Any:
        rid = str(reservation_id or "").strip()
        if not rid:
            raise ValidationError("reservation_id is required")
        return self._post("print_tickets", PRINT_PATH, {"ReservationID": rid})

    def cancel(self, reservation_id: str) -> Any:
        rid = str(reservation_id or "").strip()
        if not rid:
            raise ValidationError("reservation_id is required")
        return self._post("cancel_reservation", CANCEL_PATH, {"ReservationID": rid})
