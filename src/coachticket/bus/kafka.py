from __future__ import annotations

import json
import logging

from kafka import KafkaProducer

from coachticket.bus.routing import EVENT_TOPIC_MAP
from coachticket.models.booking import BookingEvent

logger = logging.getLogger(__name__)


class KafkaBus:
    """Lifecycle events on Kafka, one message per event, keyed by PNR or reservation id."""

    def __init__(
        self,
        bootstrap_servers: str,
        client_id: str = "coachticket-producer",
        producer: KafkaProducer | None = None,
    ) -> None:
        self._owns_producer = producer is None
        self._producer = producer or KafkaProducer(
            bootstrap_servers=bootstrap_servers,
            client_id=client_id,
            linger_ms=10,
            acks="all",
            retries=3,
            value_serializer=lambda payload: json.dumps(payload).encode("utf-8"),
            key_serializer=lambda key: key.encode("utf-8"),
        )

    def publish(self, event: BookingEvent) -> None:
        future = self._producer.send(
            EVENT_TOPIC_MAP[event.event_type],
            key=event.key,
            value=event.model_dump(mode="json"),
            headers=[("event_type", event.event_type.value.encode("utf-8"))],
        )
        # send is asynchronous; a broker-side failure only shows up on the future
        future.add_errback(self._on_send_error, event)

    @staticmethod
    def _on_send_error(event: BookingEvent, exc: BaseException) -> None:
        logger.error("kafka delivery of %s for %s failed: %s", event.event_type.value, event.key, exc)

    def close(self) -> None:
        if self._owns_producer:
            self._producer.flush()
            self._producer.close()
