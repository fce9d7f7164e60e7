from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from reportlab.lib.pagesizes import A4, letter
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from coachticket.errors import RenderFailure
from coachticket.models.booking import ArtifactKind
from coachticket.pricing.fare_allocator import PassengerFareLine

DEFAULT_THERMAL_WIDTH_MM = 80
MIN_THERMAL_WIDTH_MM = 48
MAX_THERMAL_WIDTH_MM = 120


@dataclass(frozen=True)
class RenderHints:
    thermal: bool = False
    paper: str = "A4"
    width_mm: int | None = None


@dataclass
class TicketContent:
    """Everything drawn on a ticket; one instance per rendered PDF."""

    pnr: str
    kind: ArtifactKind
    reservation_id: str | None = None
    trip: dict[str, Any] = field(default_factory=dict)
    return_trip: dict[str, Any] | None = None
    passengers: list[dict[str, Any]] = field(default_factory=list)
    fare_lines: list[PassengerFareLine] = field(default_factory=list)
    total: str | None = None
    currency: str = "USD"
    booked_by: str | None = None
    contact: dict[str, Any] = field(default_factory=dict)
    expires_at: str | None = None
    paid_at: str | None = None
    leg_label: str | None = None


class TicketRenderer(Protocol):
    def render(self, ticket: TicketContent, hints: RenderHints) -> bytes: ...


def _passenger_name(passenger: dict[str, Any]) -> str:
    parts = [
        passenger.get("title"),
        passenger.get("first_name") or passenger.get("firstName"),
        passenger.get("last_name") or passenger.get("lastName"),
    ]
    name = " ".join(str(part) for part in parts if part)
    return name or passenger.get("name") or "(Not provided)"


def _page_size(ticket: TicketContent, hints: RenderHints) -> tuple[float, float]:
    if hints.thermal:
        width = hints.width_mm or DEFAULT_THERMAL_WIDTH_MM
        width = min(max(width, MIN_THERMAL_WIDTH_MM), MAX_THERMAL_WIDTH_MM)
        height = 150 + 14 * len(ticket.passengers) + (40 if ticket.return_trip else 0)
        return width * mm, height * mm
    if hints.paper.strip().lower() == "letter":
        return letter
    return A4


class ReportlabTicketRenderer:
    """Draws hold and final tickets with the reportlab canvas."""

    def render(self, ticket: TicketContent, hints: RenderHints | None = None) -> bytes:
        hints = hints or RenderHints()
        if not ticket.passengers:
            raise RenderFailure(f"ticket {ticket.pnr} has no passengers")
        try:
            return self._draw(ticket, hints)
        except RenderFailure:
            raise
        except Exception as exc:
            raise RenderFailure(f"could not render {ticket.kind.value} ticket for {ticket.pnr}", str(exc)) from exc

    def _draw(self, ticket: TicketContent, hints: RenderHints) -> bytes:
        buf = io.BytesIO()
        size = _page_size(ticket, hints)
        c = canvas.Canvas(buf, pagesize=size, pageCompression=0)
        c.setTitle(f"Ticket {ticket.pnr}")
        c.setAuthor(ticket.booked_by or "coachticket")
        c.setSubject(f"{ticket.kind.value} ticket")
        width, height = size

        margin = 6 * mm if hints.thermal else 40
        heading = 12 if hints.thermal else 18
        body = 7 if hints.thermal else 11
        step = body + 4
        y = height - margin - heading

        def line(text: str, bold: bool = False, size: int = body) -> None:
            nonlocal y
            c.setFont("Helvetica-Bold" if bold else "Helvetica", size)
            c.drawString(margin, y, text)
            y -= size + 4

        # Header
        title = "Booking Confirmation - Awaiting Payment" if ticket.kind == ArtifactKind.HOLD else "E-Ticket"
        line(title, bold=True, size=heading)
        y -= 4
        line(f"Booking Reference: {ticket.pnr}")
        if ticket.reservation_id:
            line(f"Reservation: {ticket.reservation_id}")
        if ticket.leg_label:
            line(ticket.leg_label)

        y -= step / 2
        self._trip_block(line, "Outbound", ticket.trip)
        if ticket.return_trip:
            self._trip_block(line, "Return", ticket.return_trip)

        # Passengers
        y -= step / 2
        line("Passengers", bold=True, size=body + 1)
        fares = {fare.passenger_index: fare for fare in ticket.fare_lines}
        for index, passenger in enumerate(ticket.passengers, start=1):
            fare = fares.get(index)
            text = f"{index}. {_passenger_name(passenger)}"
            if fare is not None:
                text += f"  {fare.category}  {fare.leg_price} {fare.currency}"
            seat = passenger.get("seat")
            if seat:
                text += f"  seat {seat}"
            line(text)

        # Payment
        y -= step / 2
        line("Payment", bold=True, size=body + 1)
        if ticket.total is not None:
            line(f"Total: {ticket.total} {ticket.currency}")
        if ticket.kind == ArtifactKind.HOLD:
            line("Status: awaiting payment")
            if ticket.expires_at:
                line(f"Seats held until: {ticket.expires_at}")
        else:
            line("Status: paid")
            if ticket.paid_at:
                line(f"Paid at: {ticket.paid_at}")
        if ticket.booked_by:
            line(f"Booked by: {ticket.booked_by}")

        # Footer
        c.setFont("Helvetica", 6 if hints.thermal else 9)
        c.drawString(margin, margin, f"Generated: {datetime.now(timezone.utc).isoformat()}")
        if not hints.thermal:
            c.drawRightString(width - margin, margin, ticket.pnr)

        c.showPage()
        c.save()
        return buf.getvalue()

    @staticmethod
    def _trip_block(line: Any, label: str, trip: dict[str, Any]) -> None:
        line(label, bold=True, size=12)
        line(f"From: {trip.get('origin') or '-'}")
        line(f"To:   {trip.get('destination') or '-'}")
        departs = trip.get("departure_time") or trip.get("departure_date")
        if departs:
            line(f"Departs: {departs}")
        if trip.get("arrival_time"):
            line(f"Arrives: {trip['arrival_time']}")


def bundle_zip(entries: list[tuple[str, bytes]]) -> bytes:
    """Pack (filename, pdf bytes) pairs into one zip archive."""
    if not entries:
        raise RenderFailure("nothing to bundle")
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, content in entries:
            archive.writestr(name, content)
    return buf.getvalue()
