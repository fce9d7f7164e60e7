from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from coachticket.booking.pnr_mapper import PnrMapper
from coachticket.db.repositories import PurchaseRepository
from coachticket.errors import NotFoundError, RenderFailure, ValidationError
from coachticket.models.booking import ArtifactKind, BookingEvent, BookingEventType
from coachticket.pricing.adjustments import PricingPolicy
from coachticket.pricing.fare_allocator import FareAllocation, FareAllocator
from coachticket.pricing.totals import resolve_known_total
from coachticket.stores.reservation_registry import ReservationRegistry
from coachticket.tickets.artifact_cache import ArtifactCache, TicketArtifact, content_hash
from coachticket.tickets.rendering import (
    RenderHints,
    ReportlabTicketRenderer,
    TicketContent,
    TicketRenderer,
    bundle_zip,
)
from coachticket.tickets.type_resolver import TicketTypeResolver, opposite

logger = logging.getLogger(__name__)

MEDIA_TYPES = {
    ArtifactKind.HOLD: "application/pdf",
    ArtifactKind.FINAL: "application/pdf",
    ArtifactKind.FINAL_ZIP: "application/zip",
}


@dataclass(frozen=True)
class ResolvedTicket:
    pnr: str
    kind: ArtifactKind
    content: bytes
    content_hash: str
    from_cache: bool = False
    fallback_used: bool = False

    @property
    def media_type(self) -> str:
        return MEDIA_TYPES[self.kind]

    @property
    def filename(self) -> str:
        extension = "zip" if self.kind == ArtifactKind.FINAL_ZIP else "pdf"
        return f"{self.kind.value}-{self.pnr}.{extension}"


def _from_artifact(artifact: TicketArtifact) -> ResolvedTicket:
    return ResolvedTicket(
        pnr=artifact.pnr,
        kind=artifact.kind,
        content=artifact.content,
        content_hash=artifact.content_hash,
        from_cache=True,
    )


class TicketResolutionOrchestrator:
    """Produces the ticket artifact for a PNR: cache first, then type decision, pricing and rendering."""

    def __init__(
        self,
        mapper: PnrMapper | None = None,
        registry: ReservationRegistry | None = None,
        cache: ArtifactCache | None = None,
        resolver: TicketTypeResolver | None = None,
        renderer: TicketRenderer | None = None,
        purchases: PurchaseRepository | None = None,
        allocator: FareAllocator | None = None,
        pricing: PricingPolicy | None = None,
        public_base_url: str = "",
        bus: Any = None,
    ) -> None:
        self.mapper = mapper or PnrMapper()
        self.registry = registry or ReservationRegistry()
        self.cache = cache or ArtifactCache()
        self.purchases = purchases or PurchaseRepository()
        self.resolver = resolver or TicketTypeResolver(purchases=self.purchases, documents=self.mapper.documents)
        self.renderer = renderer or ReportlabTicketRenderer()
        self.allocator = allocator or FareAllocator()
        self.pricing = pricing or PricingPolicy()
        self.public_base_url = public_base_url.rstrip("/")
        self.bus = bus

    def resolve(
        self,
        pnr: str,
        force_regen: bool = False,
        wants_zip: bool = False,
        hints: RenderHints | None = None,
    ) -> ResolvedTicket:
        raw = str(pnr or "").strip()
        if not raw:
            raise ValidationError("pnr is required")
        identifier = self.mapper.resolve(raw)
        key = identifier.pnr or raw

        if not force_regen:
            cached = self._cached(key, wants_zip)
            if cached is not None:
                return cached

        doc = self.mapper.get_document(key) if identifier.pnr else None
        if doc is None:
            raise NotFoundError(f"No booking found for {raw}")
        decision = self.resolver.resolve(key)

        hints = hints or RenderHints()
        kind = decision.kind
        fallback_used = False
        try:
            kind, content = self._render(doc, kind, wants_zip, hints)
        except RenderFailure as exc:
            fallback = opposite(kind)
            logger.warning("rendering %s ticket for %s failed (%s), trying %s", kind.value, key, exc, fallback.value)
            kind, content = self._render(doc, fallback, False, hints)
            fallback_used = True

        digest = content_hash(content)
        self._store(key, kind, content, doc.get("booked_by"))
        self._publish(key, doc.get("reservation_id"), kind, digest, fallback_used)
        return ResolvedTicket(
            pnr=key,
            kind=kind,
            content=content,
            content_hash=digest,
            fallback_used=fallback_used,
        )

    def _cached(self, pnr: str, wants_zip: bool) -> ResolvedTicket | None:
        # a zip request is only satisfied by a bundle; a miss renders one
        if wants_zip:
            artifact = self.cache.lookup(pnr, ArtifactKind.FINAL_ZIP)
        else:
            artifact = self.cache.preferred(pnr)
        return _from_artifact(artifact) if artifact is not None else None

    def _render(
        self,
        doc: dict[str, Any],
        kind: ArtifactKind,
        wants_zip: bool,
        hints: RenderHints,
    ) -> tuple[ArtifactKind, bytes]:
        ticket = self._ticket_content(doc, kind)
        if kind == ArtifactKind.FINAL and wants_zip:
            parts = self._split(ticket)
            if len(parts) > 1:
                entries = [(name, self.renderer.render(part, hints)) for name, part in parts]
                return ArtifactKind.FINAL_ZIP, bundle_zip(entries)
        return kind, self.renderer.render(ticket, hints)

    def _ticket_content(self, doc: dict[str, Any], kind: ArtifactKind) -> TicketContent:
        pnr = doc["pnr"]
        trip = dict(doc.get("trip") or {})
        return_trip = trip.pop("return", None) or None
        passengers = [p for p in doc.get("passengers") or [] if isinstance(p, dict)]
        purchase = self.purchases.get(pnr)
        currency = doc.get("currency") or "USD"
        allocation = self._allocate(doc, purchase, passengers, bool(return_trip), currency)

        reservation = self.registry.get(doc.get("reservation_id") or "")
        expires_at = reservation.expires_at.isoformat() if reservation and reservation.expires_at else None
        return TicketContent(
            pnr=pnr,
            kind=kind,
            reservation_id=doc.get("reservation_id"),
            trip=trip,
            return_trip=return_trip,
            passengers=passengers,
            fare_lines=allocation.lines,
            total=str(allocation.total),
            currency=currency,
            booked_by=doc.get("booked_by"),
            contact=dict(doc.get("contact") or {}),
            expires_at=expires_at,
            paid_at=doc.get("paid_at"),
        )

    def _allocate(
        self,
        doc: dict[str, Any],
        purchase: dict[str, Any] | None,
        passengers: list[dict[str, Any]],
        round_trip: bool,
        currency: str,
    ) -> FareAllocation:
        total = resolve_known_total(doc, purchase, self.pricing)
        return self.allocator.allocate(
            total,
            passengers,
            purchase=purchase,
            round_trip=round_trip,
            currency=currency,
        )

    @staticmethod
    def _split(ticket: TicketContent) -> list[tuple[str, TicketContent]]:
        legs: list[tuple[str, dict[str, Any]]] = [("outbound", ticket.trip)]
        if ticket.return_trip:
            legs.append(("return", ticket.return_trip))
        parts = []
        for index, passenger in enumerate(ticket.passengers, start=1):
            lines = [line for line in ticket.fare_lines if line.passenger_index == index]
            for leg_name, leg_trip in legs:
                part = TicketContent(
                    pnr=ticket.pnr,
                    kind=ticket.kind,
                    reservation_id=ticket.reservation_id,
                    trip=leg_trip,
                    passengers=[passenger],
                    fare_lines=[replace(line, passenger_index=1) for line in lines],
                    total=str(lines[0].leg_price) if lines else None,
                    currency=ticket.currency,
                    booked_by=ticket.booked_by,
                    contact=ticket.contact,
                    paid_at=ticket.paid_at,
                    leg_label=f"Passenger {index} - {leg_name}",
                )
                parts.append((f"{ticket.pnr}-p{index}-{leg_name}.pdf", part))
        return parts

    def _store(self, pnr: str, kind: ArtifactKind, content: bytes, booked_by: str | None) -> None:
        url = f"{self.public_base_url}/api/tickets/{pnr}" if self.public_base_url else None
        try:
            self.cache.put(pnr, kind, content, url=url, booked_by=booked_by)
        except Exception as exc:
            logger.warning("could not cache %s ticket for %s: %s", kind.value, pnr, exc)

    def _publish(
        self,
        pnr: str,
        reservation_id: str | None,
        kind: ArtifactKind,
        digest: str,
        fallback_used: bool,
    ) -> None:
        if self.bus is None:
            return
        self.bus.publish(
            BookingEvent(
                event_type=BookingEventType.TICKET_RENDERED,
                pnr=pnr,
                reservation_id=reservation_id,
                payload={"kind": kind.value, "content_hash": digest, "fallback_used": fallback_used},
            )
        )
