from __future__ import annotations

from coachticket.db.repositories import BookingDocumentRepository
from coachticket.errors import ValidationError

# 1: internal, 2: online, 3: in-store
TICKET_TYPES = ("1", "2", "3")
BRANCHES = ("01", "02", "03", "04", "05")

COUNTER_NAME = "global_counter"


class PnrGenerator:
    """Issues booking references shaped `<ticket type><branch><6-digit counter>`, e.g. 101000001."""

    def __init__(self, repository: BookingDocumentRepository | None = None) -> None:
        self.repository = repository or BookingDocumentRepository()

    def next_pnr(self, ticket_type: str = "1", branch: str = "01") -> str:
        if ticket_type not in TICKET_TYPES:
            raise ValidationError(f"Invalid ticket type: {ticket_type}. Must be one of: {', '.join(TICKET_TYPES)}")
        if branch not in BRANCHES:
            raise ValidationError(f"Invalid branch code: {branch}. Must be one of: {', '.join(BRANCHES)}")
        value = self.repository.next_counter(COUNTER_NAME)
        return f"{ticket_type}{branch}{value:06d}"
