from __future__ import annotations

import logging
from typing import Iterable

from coachticket.models.booking import BookingEvent

logger = logging.getLogger(__name__)


class FanoutBus:
    def __init__(self, buses: Iterable[object]) -> None:
        self._buses = list(buses)

    def publish(self, event: BookingEvent) -> None:
        for bus in self._buses:
            try:
                bus.publish(event)
            except Exception:
                # lifecycle events are notifications; the booking write already happened
                logger.exception("publishing %s to %s failed", event.event_type.value, type(bus).__name__)

    def close(self) -> None:
        for bus in self._buses:
            close = getattr(bus, "close", None)
            if callable(close):
                close()
