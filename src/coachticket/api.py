from __future__ import annotations

import os
from typing import Any

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware

from coachticket.errors import TicketingError, UpstreamError
from coachticket.models.booking import PaymentRequest, ReserveRequest
from coachticket.runtime import TicketingRuntime
from coachticket.tickets.rendering import RenderHints

app = FastAPI(title="CoachTicket API", version="0.1.0")


def _cors_origins() -> list[str]:
    raw = os.getenv("COACHTICKET_CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
    parsed = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if "*" in parsed:
        return ["*"]
    return parsed


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Content-SHA256"],
)

runtime = TicketingRuntime()


def _http_error(exc: TicketingError) -> HTTPException:
    if isinstance(exc, UpstreamError):
        detail: Any = {"message": exc.message, "upstream_status": exc.upstream_status, "details": exc.details}
    else:
        detail = exc.message
    return HTTPException(status_code=exc.status_code, detail=detail)


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "coachticket-api", "status": "ok"}


@app.get("/health")
def health() -> dict[str, Any]:
    return {"status": "ok", **runtime.status_payload()}


@app.get("/api/events")
def get_events(pnr: str | None = None) -> dict[str, Any]:
    return runtime.events_payload(pnr)


@app.post("/api/reservations")
def create_reservation(payload: ReserveRequest, background_tasks: BackgroundTasks) -> dict[str, Any]:
    try:
        result = runtime.service.reserve(payload)
    except TicketingError as exc:
        raise _http_error(exc) from exc
    background_tasks.add_task(runtime.drain_mirror)
    return result


@app.get("/api/reservations")
def list_reservations() -> list[dict[str, Any]]:
    return runtime.service.list_reservations()


@app.get("/api/reservations/{reference}")
def get_reservation(reference: str) -> dict[str, Any]:
    try:
        return runtime.service.get_reservation(reference)
    except TicketingError as exc:
        raise _http_error(exc) from exc


@app.post("/api/reservations/{reference}/pay")
def pay_reservation(reference: str, payload: PaymentRequest, background_tasks: BackgroundTasks) -> dict[str, Any]:
    try:
        result = runtime.service.pay(reference, payload)
    except TicketingError as exc:
        raise _http_error(exc) from exc
    background_tasks.add_task(runtime.drain_mirror)
    return result


@app.post("/api/reservations/{reference}/print")
def print_reservation(reference: str) -> dict[str, Any]:
    try:
        return runtime.service.print_tickets(reference)
    except TicketingError as exc:
        raise _http_error(exc) from exc


@app.post("/api/reservations/{reference}/cancel")
def cancel_reservation(reference: str) -> dict[str, Any]:
    try:
        return runtime.service.cancel(reference)
    except TicketingError as exc:
        raise _http_error(exc) from exc


@app.get("/api/bookings/{pnr}")
def get_booking(pnr: str) -> dict[str, Any]:
    try:
        return runtime.service.get_booking(pnr)
    except TicketingError as exc:
        raise _http_error(exc) from exc


@app.get("/api/tickets/{pnr}")
def get_ticket(
    pnr: str,
    regen: bool = False,
    wants_zip: bool = Query(False, alias="zip"),
    split: bool = False,
    thermal: bool = False,
    paper: str = "A4",
    width: int | None = None,
    download: bool = False,
) -> Response:
    hints = RenderHints(thermal=thermal, paper=paper, width_mm=width)
    try:
        ticket = runtime.resolve_ticket(pnr, force_regen=regen, wants_zip=wants_zip or split, hints=hints)
    except TicketingError as exc:
        raise _http_error(exc) from exc

    disposition = "attachment" if download else "inline"
    return Response(
        content=ticket.content,
        media_type=ticket.media_type,
        headers={
            "Content-Disposition": f'{disposition}; filename="{ticket.filename}"',
            "Content-Length": str(len(ticket.content)),
            "X-Content-SHA256": ticket.content_hash,
        },
    )
