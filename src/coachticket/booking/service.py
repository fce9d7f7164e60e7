from __future__ import annotations

import logging
from typing import Any

from coachticket.booking.pnr import PnrGenerator
from coachticket.booking.pnr_mapper import PnrMapper
from coachticket.bus.in_memory import InMemoryBus
from coachticket.db.repositories import PurchaseRepository
from coachticket.errors import NotFoundError, UpstreamError
from coachticket.models.booking import (
    BookingEvent,
    BookingEventType,
    PaymentRequest,
    ReserveRequest,
)
from coachticket.stores.reservation_registry import (
    ReservationRegistry,
    payment_succeeded,
    serialize_reservation,
)
from coachticket.upstream.reservation_api import ReservationApiClient, upstream_error_message

logger = logging.getLogger(__name__)

PURCHASE_COMPLETED = "payment_completed"


def extract_reservation_id(result: Any) -> str | None:
    if not isinstance(result, dict):
        return None
    for key in ("ReservationID", "ReservationId", "reservationId", "reservation_id"):
        if result.get(key):
            return str(result[key])
    nested = result.get("Reservation") or result.get("Data") or result.get("data")
    if isinstance(nested, dict):
        return extract_reservation_id(nested)
    return None


def _list_field(result: Any, *keys: str) -> list[Any]:
    if not isinstance(result, dict):
        return []
    for key in keys:
        value = result.get(key)
        if isinstance(value, list):
            return value
    return []


def _ensure_success(result: Any, message: str) -> None:
    if isinstance(result, dict) and result.get("Success") is False:
        raise UpstreamError(upstream_error_message(result) or message, details=result)


class ReservationService:
    """Reserve, pay, print and cancel against the reservation API, keeping local state in step."""

    def __init__(
        self,
        client: ReservationApiClient,
        registry: ReservationRegistry | None = None,
        mapper: PnrMapper | None = None,
        pnr_generator: PnrGenerator | None = None,
        purchases: PurchaseRepository | None = None,
        bus: Any = None,
    ) -> None:
        self.client = client
        self.registry = registry or ReservationRegistry()
        self.mapper = mapper or PnrMapper()
        self.pnr_generator = pnr_generator or PnrGenerator(self.mapper.documents)
        self.purchases = purchases or PurchaseRepository()
        self.bus = bus if bus is not None else InMemoryBus()

    def reserve(self, request: ReserveRequest) -> dict[str, Any]:
        details = [detail.model_dump(mode="json", exclude_none=True) for detail in request.passenger_details]
        result = self.client.reserve(
            trip_id=request.trip_id,
            departure_stop_id=request.departure_stop_id,
            destination_stop_id=request.destination_stop_id,
            departure_date=request.departure_date,
            passengers=request.passengers,
            passenger_details=details or None,
            reservation_time=request.reservation_time,
        )
        _ensure_success(result, "Reservation was not accepted")
        reservation_id = extract_reservation_id(result)
        if reservation_id is None:
            raise UpstreamError("Reservation API did not return a reservation id", details=result)

        record = self.registry.upsert(
            reservation_id,
            {
                "lease_seconds": request.reservation_time,
                "trip": {
                    "trip_id": request.trip_id,
                    "origin_stop_id": request.departure_stop_id,
                    "destination_stop_id": request.destination_stop_id,
                    "departure_date": request.departure_date,
                },
                "passenger_count": request.passengers,
                "passenger_details": details,
                "seats": [str(seat) for seat in _list_field(result, "Seats", "seats")],
            },
        )

        pnr = self.pnr_generator.next_pnr(request.ticket_type, request.branch)
        trip: dict[str, Any] = {
            "trip_id": request.trip_id,
            "origin": request.origin,
            "destination": request.destination,
            "departure_date": request.departure_date,
            "departure_time": request.departure_time,
            "arrival_time": request.arrival_time,
        }
        if request.return_trip:
            trip["return"] = request.return_trip
        mapping = self.mapper.upsert_mapping(
            pnr,
            reservation_id,
            {
                "trip": trip,
                "passengers": details,
                "total": request.estimated_total,
                "currency": request.currency,
                "contact": request.contact.model_dump(exclude_none=True),
                "booked_by": request.booked_by,
            },
        )
        self._publish(BookingEventType.RESERVATION_CREATED, reservation_id, pnr, {"lease_seconds": record.lease_seconds})
        logger.info("reservation %s held as %s until %s", reservation_id, pnr, record.expires_at)
        return {
            "pnr": mapping.pnr,
            "reservation": serialize_reservation(record),
            "upstream": result,
        }

    def pay(self, reference: str, request: PaymentRequest) -> dict[str, Any]:
        identifier = self.mapper.resolve(reference)
        reservation_id = identifier.reservation_id
        result = self.client.pay(reservation_id, request.amount, request.payment_method)
        record = self.registry.mark_paid(reservation_id, result)

        if not payment_succeeded(result):
            self._publish(BookingEventType.PAYMENT_FAILED, reservation_id, identifier.pnr, {"result": result})
            raise UpstreamError(upstream_error_message(result) or "Payment was not accepted", details=result)

        pnr = identifier.pnr
        if pnr is not None:
            self.mapper.mark_paid(pnr, result)
            self.purchases.upsert(
                {
                    "pnr": pnr,
                    "reservation_id": reservation_id,
                    "status": PURCHASE_COMPLETED,
                    "invoice": {"amount_total": str(request.amount)},
                    "payment": result,
                }
            )
        self._publish(BookingEventType.RESERVATION_PAID, reservation_id, pnr, {"amount": str(request.amount)})
        return {
            "pnr": pnr,
            "reservation": serialize_reservation(record) if record else None,
            "payment": result,
        }

    def print_tickets(self, reference: str) -> dict[str, Any]:
        identifier = self.mapper.resolve(reference)
        reservation_id = identifier.reservation_id
        result = self.client.print_tickets(reservation_id)
        _ensure_success(result, "Ticket printing was not accepted")
        record = self.registry.record_print(reservation_id, result)

        tickets = _list_field(result, "Tickets", "tickets")
        if identifier.pnr is not None and tickets:
            self.purchases.upsert({"pnr": identifier.pnr, "reservation_id": reservation_id, "tickets": tickets})
        self._publish(BookingEventType.TICKETS_PRINTED, reservation_id, identifier.pnr, {"tickets": len(tickets)})
        return {
            "pnr": identifier.pnr,
            "reservation": serialize_reservation(record) if record else None,
            "print": result,
        }

    def cancel(self, reference: str) -> dict[str, Any]:
        identifier = self.mapper.resolve(reference)
        reservation_id = identifier.reservation_id
        result = self.client.cancel(reservation_id)
        _ensure_success(result, "Cancellation was not accepted")
        record = self.registry.mark_cancelled(reservation_id)
        self._publish(BookingEventType.RESERVATION_CANCELLED, reservation_id, identifier.pnr, {})
        return {
            "pnr": identifier.pnr,
            "reservation": serialize_reservation(record) if record else None,
            "cancel": result,
        }

    def get_reservation(self, reference: str) -> dict[str, Any]:
        identifier = self.mapper.resolve(reference)
        record = self.registry.get(identifier.reservation_id)
        if record is None:
            raise NotFoundError(f"Reservation {reference} not found")
        return {"pnr": identifier.pnr, **serialize_reservation(record)}

    def list_reservations(self) -> list[dict[str, Any]]:
        return [serialize_reservation(record) for record in self.registry.list()]

    def get_booking(self, pnr: str) -> dict[str, Any]:
        doc = self.mapper.get_document(pnr)
        if doc is None:
            raise NotFoundError(f"PNR {pnr} not found")
        record = self.registry.get(doc.get("reservation_id") or "")
        return {
            **doc,
            "reservation": serialize_reservation(record) if record else None,
        }

    def _publish(
        self,
        event_type: BookingEventType,
        reservation_id: str | None,
        pnr: str | None,
        payload: dict[str, Any],
    ) -> None:
        self.bus.publish(
            BookingEvent(event_type=event_type, reservation_id=reservation_id, pnr=pnr, payload=payload)
        )
