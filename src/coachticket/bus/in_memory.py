from __future__ import annotations

from collections import defaultdict

from coachticket.bus.routing import EVENT_TOPIC_MAP
from coachticket.models.booking import BookingEvent


class InMemoryBus:
    def __init__(self) -> None:
        self.topics: dict[str, list[BookingEvent]] = defaultdict(list)

    def publish(self, event: BookingEvent) -> None:
        self.topics[EVENT_TOPIC_MAP[event.event_type]].append(event)

    def events_for(self, key: str) -> list[BookingEvent]:
        found = [event for events in self.topics.values() for event in events if event.key == key]
        return sorted(found, key=lambda event: event.occurred_at)
