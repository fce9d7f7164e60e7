from __future__ import annotations

import pytest

from coachticket.db.repositories import BookingDocumentRepository, PurchaseRepository
from coachticket.models.booking import ArtifactKind
from coachticket.tickets.type_resolver import TicketTypeResolver, is_completed_status, opposite


def test_unknown_pnr_gets_hold() -> None:
    decision = TicketTypeResolver().resolve("101000001")

    assert decision.kind == ArtifactKind.HOLD


def test_purchase_with_tickets_is_final() -> None:
    PurchaseRepository().upsert({"pnr": "101000001", "tickets": [{"TicketNo": "T1"}]})

    assert TicketTypeResolver().resolve("101000001").kind == ArtifactKind.FINAL


@pytest.mark.parametrize("status", ["Completed", "payment_completed", " PAID ", "succeeded"])
def test_completed_purchase_status_is_final(status: str) -> None:
    PurchaseRepository().upsert({"pnr": "101000001", "status": status})

    assert TicketTypeResolver().resolve("101000001").kind == ArtifactKind.FINAL


def test_pending_purchase_without_tickets_is_hold() -> None:
    PurchaseRepository().upsert({"pnr": "101000001", "status": "pending", "items": []})

    assert TicketTypeResolver().resolve("101000001").kind == ArtifactKind.HOLD


def test_nested_booking_tickets_are_final() -> None:
    PurchaseRepository().upsert({"pnr": "101000001", "status": "pending", "booking": {"tickets": [{"id": 1}]}})

    decision = TicketTypeResolver().resolve("101000001")
    assert decision.kind == ArtifactKind.FINAL
    assert decision.reason == "booking has tickets"


def test_document_status_is_final() -> None:
    BookingDocumentRepository().merge("101000001", {"reservation_id": "R-1", "status": "paid"})

    assert TicketTypeResolver().resolve("101000001").kind == ArtifactKind.FINAL


def test_awaiting_payment_document_is_hold() -> None:
    BookingDocumentRepository().merge("101000001", {"reservation_id": "R-1", "status": "awaiting_payment"})

    assert TicketTypeResolver().resolve("101000001").kind == ArtifactKind.HOLD


def test_helpers() -> None:
    assert opposite(ArtifactKind.HOLD) == ArtifactKind.FINAL
    assert opposite(ArtifactKind.FINAL) == ArtifactKind.HOLD
    assert is_completed_status("CONFIRMED") is True
    assert is_completed_status(None) is False
