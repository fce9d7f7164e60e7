from __future__ import annotations

from coachticket.models.booking import BookingEventType

LIFECYCLE_TOPIC = "reservation.lifecycle"
TICKET_TOPIC = "ticket.issued"

EVENT_TOPIC_MAP = {
    BookingEventType.RESERVATION_CREATED: LIFECYCLE_TOPIC,
    BookingEventType.RESERVATION_PAID: LIFECYCLE_TOPIC,
    BookingEventType.PAYMENT_FAILED: LIFECYCLE_TOPIC,
    BookingEventType.RESERVATION_CANCELLED: LIFECYCLE_TOPIC,
    BookingEventType.TICKETS_PRINTED: TICKET_TOPIC,
    BookingEventType.TICKET_RENDERED: TICKET_TOPIC,
}
