from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from coachticket.db.repositories import ReservationRepository
from coachticket.errors import ValidationError
from coachticket.models.booking import ReservationStatus

Clock = Callable[[], datetime]

TERMINAL_STATUSES = frozenset({ReservationStatus.PAID.value, ReservationStatus.CANCELLED.value})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TripReference:
    trip_id: str | None = None
    origin_stop_id: str | None = None
    destination_stop_id: str | None = None
    departure_date: str | None = None


@dataclass
class Reservation:
    reservation_id: str
    created_at: datetime
    lease_seconds: int = 0
    expires_at: datetime | None = None
    status: str = ReservationStatus.RESERVED.value
    trip: TripReference = field(default_factory=TripReference)
    passenger_count: int = 0
    passenger_details: list[dict[str, Any]] = field(default_factory=list)
    seats: list[str] = field(default_factory=list)
    payment: dict[str, Any] | None = None
    print_result: dict[str, Any] | None = None
    printed_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None


_DATETIME_FIELDS = ("created_at", "expires_at", "printed_at", "paid_at", "cancelled_at")
_FIELD_NAMES = {f.name for f in fields(Reservation)}


def _to_datetime(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _normalize_lease(value: Any) -> int:
    try:
        seconds = int(float(value or 0))
    except (TypeError, ValueError):
        return 0
    return max(seconds, 0)


def _trip_from(value: Any) -> TripReference:
    if isinstance(value, TripReference):
        return value
    data = value or {}
    return TripReference(
        trip_id=str(data["trip_id"]) if data.get("trip_id") is not None else None,
        origin_stop_id=str(data["origin_stop_id"]) if data.get("origin_stop_id") is not None else None,
        destination_stop_id=(
            str(data["destination_stop_id"]) if data.get("destination_stop_id") is not None else None
        ),
        departure_date=data.get("departure_date"),
    )


def payment_succeeded(payment_result: dict[str, Any] | None) -> bool:
    if not payment_result:
        return False
    return bool(payment_result.get("Success") or payment_result.get("success"))


def derive_status(record: Reservation, now: datetime) -> str:
    """Effective status of a reservation at `now`.

    Paid and cancelled are terminal and returned as stored. Anything else is
    expired once `now` reaches the lease expiry.
    """
    if record.status in TERMINAL_STATUSES:
        return record.status
    if record.expires_at is not None and now >= record.expires_at:
        return ReservationStatus.EXPIRED.value
    return record.status or ReservationStatus.RESERVED.value


def _reservation_from_row(row: dict[str, Any]) -> Reservation:
    values = {key: value for key, value in row.items() if key in _FIELD_NAMES}
    for name in _DATETIME_FIELDS:
        values[name] = _to_datetime(values.get(name))
    values["trip"] = _trip_from(values.get("trip"))
    values["lease_seconds"] = _normalize_lease(values.get("lease_seconds"))
    values["passenger_details"] = list(values.get("passenger_details") or [])
    values["seats"] = [str(seat) for seat in values.get("seats") or []]
    return Reservation(**values)


def _row_from_reservation(record: Reservation) -> dict[str, Any]:
    row = asdict(record)
    for name in _DATETIME_FIELDS:
        value = getattr(record, name)
        row[name] = value.isoformat() if value is not None else None
    return row


class ReservationRegistry:
    def __init__(self, repository: ReservationRepository | None = None, clock: Clock = utc_now) -> None:
        self.repository = repository or ReservationRepository()
        self.clock = clock

    def upsert(self, reservation_id: str, updates: dict[str, Any]) -> Reservation:
        rid = str(reservation_id or "").strip()
        if not rid:
            raise ValidationError("reservation_id is required")

        previous = self.repository.get(rid) or {}
        updates = dict(updates)
        requested = updates.pop("status", None)
        merged: dict[str, Any] = {**previous, **updates, "reservation_id": rid}
        # paid and cancelled are only set by mark_paid / mark_cancelled and never undone here
        if requested and requested not in TERMINAL_STATUSES and previous.get("status") not in TERMINAL_STATUSES:
            merged["status"] = requested

        created_at = _to_datetime(merged.get("created_at")) or self.clock()
        merged["created_at"] = created_at
        lease_seconds = _normalize_lease(merged.get("lease_seconds"))
        merged["lease_seconds"] = lease_seconds
        if not merged.get("expires_at") and lease_seconds > 0:
            merged["expires_at"] = created_at + timedelta(seconds=lease_seconds)
        if isinstance(merged.get("trip"), TripReference):
            merged["trip"] = asdict(merged["trip"])

        record = _reservation_from_row(merged)
        record.status = derive_status(record, self.clock())
        self.repository.upsert(_row_from_reservation(record))
        return record

    def get(self, reservation_id: str) -> Reservation | None:
        rid = str(reservation_id or "").strip()
        if not rid:
            return None
        row = self.repository.get(rid)
        if row is None:
            return None
        return self._refresh(_reservation_from_row(row))

    def list(self) -> list[Reservation]:
        records = [self._refresh(_reservation_from_row(row)) for row in self.repository.list_all()]
        records.sort(key=lambda record: record.created_at, reverse=True)
        return records

    def mark_cancelled(self, reservation_id: str) -> Reservation | None:
        record = self.get(reservation_id)
        if record is None:
            return None
        record.status = ReservationStatus.CANCELLED.value
        record.cancelled_at = self.clock()
        self.repository.upsert(_row_from_reservation(record))
        return record

    def mark_paid(self, reservation_id: str, payment_result: dict[str, Any] | None) -> Reservation | None:
        record = self.get(reservation_id)
        if record is None:
            return None
        record.payment = payment_result or None
        if payment_succeeded(payment_result):
            record.status = ReservationStatus.PAID.value
            record.paid_at = self.clock()
        self.repository.upsert(_row_from_reservation(record))
        return record

    def record_print(self, reservation_id: str, print_result: dict[str, Any] | None) -> Reservation | None:
        record = self.get(reservation_id)
        if record is None:
            return None
        record.print_result = print_result or None
        record.printed_at = self.clock()
        self.repository.upsert(_row_from_reservation(record))
        return record

    def _refresh(self, record: Reservation) -> Reservation:
        status = derive_status(record, self.clock())
        if status != record.status:
            record.status = status
            self.repository.upsert(_row_from_reservation(record))
        return record


def serialize_reservation(record: Reservation) -> dict[str, Any]:
    return _row_from_reservation(record)
