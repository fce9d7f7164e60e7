from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from coachticket.db.repositories import BookingDocumentRepository, PurchaseRepository
from coachticket.models.booking import ArtifactKind

logger = logging.getLogger(__name__)

COMPLETED_STATUS_TOKENS = frozenset(
    {
        "completed",
        "complete",
        "booked",
        "confirmed",
        "success",
        "succeeded",
        "paid",
        "purchase_completed",
        "payment_completed",
    }
)


@dataclass(frozen=True)
class TicketDecision:
    kind: ArtifactKind
    reason: str


def is_completed_status(value: Any) -> bool:
    return str(value or "").strip().lower() in COMPLETED_STATUS_TOKENS


def opposite(kind: ArtifactKind) -> ArtifactKind:
    if kind == ArtifactKind.HOLD:
        return ArtifactKind.FINAL
    return ArtifactKind.HOLD


def _has_tickets(record: dict[str, Any]) -> bool:
    for key in ("items", "tickets"):
        value = record.get(key)
        if isinstance(value, (list, dict)) and len(value) > 0:
            return True
    return False


class TicketTypeResolver:
    """Decides whether a PNR gets a hold (unpaid) or final (paid) ticket."""

    def __init__(
        self,
        purchases: PurchaseRepository | None = None,
        documents: BookingDocumentRepository | None = None,
    ) -> None:
        self.purchases = purchases or PurchaseRepository()
        self.documents = documents or BookingDocumentRepository()

    def resolve(self, pnr: str) -> TicketDecision:
        purchase = self.purchases.get(pnr) or {}
        if _has_tickets(purchase):
            return TicketDecision(ArtifactKind.FINAL, "purchase has tickets")
        if is_completed_status(purchase.get("status")):
            return TicketDecision(ArtifactKind.FINAL, f"purchase status {purchase.get('status')}")

        booking = purchase.get("booking")
        if isinstance(booking, dict) and _has_tickets(booking):
            return TicketDecision(ArtifactKind.FINAL, "booking has tickets")

        snapshot = self.documents.get(pnr) or {}
        if is_completed_status(snapshot.get("status")):
            return TicketDecision(ArtifactKind.FINAL, f"booking status {snapshot.get('status')}")

        logger.debug("no completion signal for %s, issuing hold ticket", pnr)
        return TicketDecision(ArtifactKind.HOLD, "no completion signal")
