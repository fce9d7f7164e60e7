from __future__ import annotations

import os

from coachticket.bus.fanout import FanoutBus
from coachticket.bus.in_memory import InMemoryBus
from coachticket.bus.kafka import KafkaBus


def build_transport_bus_from_env() -> KafkaBus | None:
    backend = os.getenv("COACHTICKET_BUS_BACKEND", "memory").strip().lower()
    if backend == "memory":
        return None
    if backend == "kafka":
        bootstrap_servers = os.getenv("COACHTICKET_KAFKA_BOOTSTRAP_SERVERS", "127.0.0.1:9092")
        client_id = os.getenv("COACHTICKET_KAFKA_CLIENT_ID", "coachticket-producer")
        return KafkaBus(bootstrap_servers=bootstrap_servers, client_id=client_id)
    raise ValueError("Unsupported COACHTICKET_BUS_BACKEND. Use 'memory' or 'kafka'.")


def build_event_bus_from_env(memory_bus: InMemoryBus) -> InMemoryBus | FanoutBus:
    transport = build_transport_bus_from_env()
    if transport is None:
        return memory_bus
    return FanoutBus([memory_bus, transport])
