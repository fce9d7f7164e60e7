from __future__ import annotations

import logging

from coachticket.bus.factory import build_event_bus_from_env, build_transport_bus_from_env
from coachticket.bus.fanout import FanoutBus
from coachticket.bus.in_memory import InMemoryBus
from coachticket.bus.kafka import KafkaBus
from coachticket.models.booking import BookingEvent, BookingEventType


class FakeFuture:
    def __init__(self) -> None:
        self.errbacks: list = []

    def add_errback(self, callback, *args) -> None:
        self.errbacks.append((callback, args))

    def fail(self, exc: Exception) -> None:
        for callback, args in self.errbacks:
            callback(*args, exc)


class FakeProducer:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict, list]] = []
        self.futures: list[FakeFuture] = []
        self.flush_count = 0
        self.closed = False

    def send(self, topic: str, key: str, value: dict, headers: list) -> FakeFuture:
        self.sent.append((topic, key, value, headers))
        future = FakeFuture()
        self.futures.append(future)
        return future

    def flush(self) -> None:
        self.flush_count += 1

    def close(self) -> None:
        self.closed = True


def test_kafka_bus_publishes_event_keyed_by_pnr() -> None:
    producer = FakeProducer()
    bus = KafkaBus(bootstrap_servers="127.0.0.1:9092", producer=producer)  # type: ignore[arg-type]
    event = BookingEvent(event_type=BookingEventType.RESERVATION_PAID, reservation_id="R-1", pnr="101000001")

    bus.publish(event)

    assert len(producer.sent) == 1
    topic, key, value, headers = producer.sent[0]
    assert topic == "reservation.lifecycle"
    assert key == "101000001"
    assert value["event_type"] == "reservation_paid"
    assert headers == [("event_type", b"reservation_paid")]
    bus.close()
    assert producer.closed is False
    assert producer.flush_count == 0


def test_kafka_delivery_failure_is_logged(caplog) -> None:
    producer = FakeProducer()
    bus = KafkaBus(bootstrap_servers="127.0.0.1:9092", producer=producer)  # type: ignore[arg-type]
    bus.publish(BookingEvent(event_type=BookingEventType.TICKET_RENDERED, pnr="101000001"))

    with caplog.at_level(logging.ERROR, logger="coachticket.bus.kafka"):
        producer.futures[0].fail(TimeoutError("no leader"))

    assert "ticket_rendered for 101000001 failed" in caplog.text


def test_event_key_falls_back_to_reservation_id() -> None:
    event = BookingEvent(event_type=BookingEventType.PAYMENT_FAILED, reservation_id="R-1")

    assert event.key == "R-1"


def test_in_memory_bus_routes_by_event_type() -> None:
    bus = InMemoryBus()
    bus.publish(BookingEvent(event_type=BookingEventType.RESERVATION_CREATED, pnr="101000001"))
    bus.publish(BookingEvent(event_type=BookingEventType.TICKETS_PRINTED, pnr="101000001"))

    assert len(bus.topics["reservation.lifecycle"]) == 1
    assert len(bus.topics["ticket.issued"]) == 1
    assert [event.event_type for event in bus.events_for("101000001")] == [
        BookingEventType.RESERVATION_CREATED,
        BookingEventType.TICKETS_PRINTED,
    ]


def test_fanout_keeps_publishing_when_one_bus_fails() -> None:
    class DownBus:
        def publish(self, event: BookingEvent) -> None:
            raise ConnectionError("broker down")

    memory = InMemoryBus()
    FanoutBus([DownBus(), memory]).publish(BookingEvent(event_type=BookingEventType.RESERVATION_CANCELLED))

    assert len(memory.topics["reservation.lifecycle"]) == 1


def test_factory_returns_none_for_memory_backend(monkeypatch) -> None:
    monkeypatch.setenv("COACHTICKET_BUS_BACKEND", "memory")
    assert build_transport_bus_from_env() is None
    memory = InMemoryBus()
    assert build_event_bus_from_env(memory) is memory


def test_factory_builds_kafka_bus(monkeypatch) -> None:
    captured: dict[str, str] = {}

    class DummyKafkaBus:
        def __init__(self, bootstrap_servers: str, client_id: str) -> None:
            captured["bootstrap_servers"] = bootstrap_servers
            captured["client_id"] = client_id

    monkeypatch.setenv("COACHTICKET_BUS_BACKEND", "kafka")
    monkeypatch.setenv("COACHTICKET_KAFKA_BOOTSTRAP_SERVERS", "localhost:19092")
    monkeypatch.setenv("COACHTICKET_KAFKA_CLIENT_ID", "coachticket-test")
    monkeypatch.setattr("coachticket.bus.factory.KafkaBus", DummyKafkaBus)

    bus = build_event_bus_from_env(InMemoryBus())

    assert isinstance(bus, FanoutBus)
    assert captured == {
        "bootstrap_servers": "localhost:19092",
        "client_id": "coachticket-test",
    }


def test_factory_rejects_unknown_backend(monkeypatch) -> None:
    monkeypatch.setenv("COACHTICKET_BUS_BACKEND", "redis")
    try:
        build_transport_bus_from_env()
        raise AssertionError("Expected ValueError")
    except ValueError as exc:
        assert "Unsupported COACHTICKET_BUS_BACKEND" in str(exc)
