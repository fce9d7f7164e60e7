from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class ReservationStatus(str, Enum):
    RESERVED = "reserved"
    PAID = "paid"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class MappingStatus(str, Enum):
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"


class ArtifactKind(str, Enum):
    HOLD = "hold"
    FINAL = "final"
    FINAL_ZIP = "final_zip"


class BookingEventType(str, Enum):
    RESERVATION_CREATED = "reservation_created"
    RESERVATION_PAID = "reservation_paid"
    PAYMENT_FAILED = "payment_failed"
    RESERVATION_CANCELLED = "reservation_cancelled"
    TICKETS_PRINTED = "tickets_printed"
    TICKET_RENDERED = "ticket_rendered"


class BookingEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: BookingEventType
    reservation_id: str | None = None
    pnr: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.pnr or self.reservation_id or self.event_id


class PassengerDetail(BaseModel):
    first_name: str = ""
    last_name: str = ""
    title: str | None = None
    gender: str | None = None
    category: str | None = None
    passenger_type: int | None = None
    phone: str | None = None
    id_number: str | None = None
    seat: str | None = None
    with_infant: bool = False
    retail_price: Decimal | None = None


class ContactInfo(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class ReserveRequest(BaseModel):
    trip_id: int
    departure_stop_id: int
    destination_stop_id: int
    departure_date: str
    passengers: int
    reservation_time: int = 600
    passenger_details: list[PassengerDetail] = Field(default_factory=list)
    origin: str | None = None
    destination: str | None = None
    departure_time: str | None = None
    arrival_time: str | None = None
    return_trip: dict[str, Any] | None = None
    estimated_total: Decimal | None = None
    currency: str = "USD"
    contact: ContactInfo = Field(default_factory=ContactInfo)
    booked_by: str | None = None
    ticket_type: str = "1"
    branch: str = "01"


class PaymentRequest(BaseModel):
    amount: Decimal
    payment_method: int = 1
