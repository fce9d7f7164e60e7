from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import requests

from coachticket.booking.pnr import PnrGenerator
from coachticket.booking.pnr_mapper import PnrMapper
from coachticket.booking.service import ReservationService
from coachticket.bus.factory import build_event_bus_from_env
from coachticket.bus.in_memory import InMemoryBus
from coachticket.config import TicketingConfig
from coachticket.db.mirror_queue import DrainResult, MirrorFailure, MirrorQueue
from coachticket.db.repositories import (
    BookingDocumentRepository,
    BookingIndexRepository,
    PurchaseRepository,
    ReservationRepository,
    TicketArtifactRepository,
)
from coachticket.pricing.adjustments import PricingPolicy
from coachticket.stores.reservation_registry import Clock, ReservationRegistry, utc_now
from coachticket.tickets.artifact_cache import ArtifactCache
from coachticket.tickets.orchestrator import ResolvedTicket, TicketResolutionOrchestrator
from coachticket.tickets.rendering import RenderHints, TicketRenderer
from coachticket.tickets.type_resolver import TicketTypeResolver
from coachticket.upstream.reservation_api import ReservationApiClient

logger = logging.getLogger(__name__)


class TicketingRuntime:
    def __init__(
        self,
        config: TicketingConfig | None = None,
        session: requests.Session | None = None,
        renderer: TicketRenderer | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config or TicketingConfig.from_env()
        self.mirror_queue = MirrorQueue(maxsize=self.config.mirror_queue_size, on_error=self._on_mirror_error)
        self.documents = BookingDocumentRepository()
        self.index = BookingIndexRepository()
        self.purchases = PurchaseRepository()
        self.registry = ReservationRegistry(ReservationRepository(), clock=clock)
        self.mapper = PnrMapper(self.documents, self.index, self.mirror_queue, clock=clock)
        self.cache = ArtifactCache(TicketArtifactRepository())
        self.memory_bus = InMemoryBus()
        self.bus = build_event_bus_from_env(self.memory_bus)
        self.client = ReservationApiClient(self.config.upstream, session=session)
        self.service = ReservationService(
            self.client,
            registry=self.registry,
            mapper=self.mapper,
            pnr_generator=PnrGenerator(self.documents),
            purchases=self.purchases,
            bus=self.bus,
        )
        self.orchestrator = TicketResolutionOrchestrator(
            mapper=self.mapper,
            registry=self.registry,
            cache=self.cache,
            resolver=TicketTypeResolver(self.purchases, self.documents),
            renderer=renderer,
            purchases=self.purchases,
            pricing=PricingPolicy.from_config(self.config.pricing),
            public_base_url=self.config.public_base_url,
            bus=self.bus,
        )

    def drain_mirror(self) -> DrainResult:
        result = self.mirror_queue.drain()
        if result.processed:
            logger.debug("mirror drain processed=%s failed=%s", result.processed, result.failed)
        return result

    def resolve_ticket(
        self,
        pnr: str,
        force_regen: bool = False,
        wants_zip: bool = False,
        hints: RenderHints | None = None,
    ) -> ResolvedTicket:
        return self.orchestrator.resolve(pnr, force_regen=force_regen, wants_zip=wants_zip, hints=hints)

    def status_payload(self) -> dict[str, Any]:
        return {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "storage_backend": self.config.storage_backend,
            "bus_backend": self.config.bus_backend,
            "mirror_pending": self.mirror_queue.pending,
            "mirror_failures": len(self.mirror_queue.failures),
            "mirror_dropped": self.mirror_queue.dropped,
        }

    def events_payload(self, pnr: str | None = None) -> dict[str, Any]:
        if pnr:
            events = [event.model_dump(mode="json") for event in self.memory_bus.events_for(pnr)]
            return {"pnr": pnr, "count": len(events), "events": events}
        topics: dict[str, Any] = {}
        for topic, events in sorted(self.memory_bus.topics.items()):
            serialized = [event.model_dump(mode="json") for event in events]
            topics[topic] = {"count": len(serialized), "events": serialized}
        return {"total_topics": len(topics), "topics": topics}

    @staticmethod
    def _on_mirror_error(failure: MirrorFailure) -> None:
        logger.error("bookings mirror out of date for %s after %s: %s", failure.key, failure.name, failure.error)
