from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Union

from coachticket.db.mirror_queue import MirrorQueue
from coachticket.db.repositories import BookingDocumentRepository, BookingIndexRepository
from coachticket.errors import NotFoundError, ValidationError
from coachticket.models.booking import MappingStatus
from coachticket.stores.reservation_registry import payment_succeeded, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PnrRef:
    """Input was a known PNR."""

    pnr: str
    reservation_id: str


@dataclass(frozen=True)
class ReservationRef:
    """Input was an upstream reservation id; `pnr` is set when a mapping points at it."""

    reservation_id: str
    pnr: str | None = None


@dataclass(frozen=True)
class UnresolvedRef:
    """Input matched nothing; it is used verbatim as the reservation id."""

    raw: str

    @property
    def reservation_id(self) -> str:
        return self.raw

    @property
    def pnr(self) -> None:
        return None


Identifier = Union[PnrRef, ReservationRef, UnresolvedRef]


@dataclass
class PnrMapping:
    pnr: str
    reservation_id: str
    status: str = MappingStatus.AWAITING_PAYMENT.value
    trip: dict[str, Any] = field(default_factory=dict)
    passengers: list[dict[str, Any]] = field(default_factory=list)
    total: Decimal | None = None
    currency: str = "USD"
    contact: dict[str, Any] = field(default_factory=dict)
    booked_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    paid_at: str | None = None


def _mapping_from_document(doc: dict[str, Any]) -> PnrMapping:
    total = doc.get("total")
    return PnrMapping(
        pnr=doc["pnr"],
        reservation_id=str(doc.get("reservation_id") or ""),
        status=doc.get("status") or MappingStatus.AWAITING_PAYMENT.value,
        trip=dict(doc.get("trip") or {}),
        passengers=list(doc.get("passengers") or []),
        total=Decimal(str(total)) if total is not None else None,
        currency=doc.get("currency") or "USD",
        contact=dict(doc.get("contact") or {}),
        booked_by=doc.get("booked_by"),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
        paid_at=doc.get("paid_at"),
    )


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


class PnrMapper:
    def __init__(
        self,
        documents: BookingDocumentRepository | None = None,
        index: BookingIndexRepository | None = None,
        mirror_queue: MirrorQueue | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.documents = documents or BookingDocumentRepository()
        self.index = index or BookingIndexRepository()
        self.mirror_queue = mirror_queue or MirrorQueue()
        self.clock = clock

    def get(self, pnr: str) -> PnrMapping | None:
        doc = self.documents.get(str(pnr or "").strip())
        return _mapping_from_document(doc) if doc else None

    def get_document(self, pnr: str) -> dict[str, Any] | None:
        return self.documents.get(str(pnr or "").strip())

    def resolve_pnr_for_reservation(self, reservation_id: str) -> str | None:
        rid = str(reservation_id or "").strip()
        if not rid:
            return None
        doc = self.documents.find_by_reservation_id(rid)
        return doc["pnr"] if doc else None

    def resolve(self, raw: str) -> Identifier:
        value = str(raw or "").strip()
        if not value:
            raise ValidationError("booking reference is required")
        doc = self.documents.get(value)
        if doc and doc.get("reservation_id"):
            return PnrRef(pnr=value, reservation_id=str(doc["reservation_id"]))
        pnr = self.resolve_pnr_for_reservation(value)
        if pnr is not None:
            return ReservationRef(reservation_id=value, pnr=pnr)
        return UnresolvedRef(raw=value)

    def upsert_mapping(self, pnr: str, reservation_id: str, snapshot: dict[str, Any] | None = None) -> PnrMapping:
        pnr = str(pnr or "").strip()
        rid = str(reservation_id or "").strip()
        if not pnr or not rid:
            raise ValidationError("pnr and reservation_id are required")

        now = self.clock().isoformat()
        existing = self.documents.get(pnr)
        fields: dict[str, Any] = {**_jsonable(snapshot or {}), "reservation_id": rid, "updated_at": now}
        if existing is None:
            fields.setdefault("status", MappingStatus.AWAITING_PAYMENT.value)
            fields["created_at"] = now
        doc = self.documents.merge(pnr, fields)
        mapping = _mapping_from_document(doc)

        projection = self._projection(mapping)
        self.mirror_queue.submit("bookings_index.upsert", pnr, lambda: self.index.upsert(projection))
        return mapping

    def mark_paid(self, pnr: str, payment_result: dict[str, Any] | None) -> PnrMapping:
        pnr = str(pnr or "").strip()
        doc = self.documents.get(pnr)
        if doc is None:
            raise NotFoundError(f"PNR {pnr} not found")
        if not payment_succeeded(payment_result):
            logger.info("payment for %s not confirmed, mapping left as %s", pnr, doc.get("status"))
            return _mapping_from_document(doc)

        paid_at = self.clock().isoformat()
        doc = self.documents.merge(
            pnr,
            {
                "status": MappingStatus.PAID.value,
                "paid_at": paid_at,
                "updated_at": paid_at,
                "payment": _jsonable(payment_result),
            },
        )
        self.mirror_queue.submit(
            "bookings_index.mark_paid",
            pnr,
            lambda: self.index.upsert({"pnr": pnr, "status": MappingStatus.PAID.value, "paid_at": paid_at}),
        )
        return _mapping_from_document(doc)

    @staticmethod
    def _projection(mapping: PnrMapping) -> dict[str, Any]:
        trip = mapping.trip
        return_leg = trip.get("return") or {}
        return {
            "pnr": mapping.pnr,
            "reservation_id": mapping.reservation_id,
            "status": mapping.status,
            "booked_by": mapping.booked_by,
            "origin": trip.get("origin"),
            "destination": trip.get("destination"),
            "depart_at": trip.get("departure_time") or trip.get("departure_date"),
            "arrive_at": trip.get("arrival_time"),
            "return_origin": return_leg.get("origin"),
            "return_destination": return_leg.get("destination"),
            "return_depart_at": return_leg.get("departure_time") or return_leg.get("departure_date"),
            "passenger_count": len(mapping.passengers),
            "passengers": mapping.passengers,
            "purchaser": mapping.contact,
            "retail_price": str(mapping.total) if mapping.total is not None else None,
            "currency": mapping.currency,
            "paid_at": mapping.paid_at,
            "created_at": mapping.created_at,
        }
