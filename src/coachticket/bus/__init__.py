from .factory import build_event_bus_from_env, build_transport_bus_from_env
from .fanout import FanoutBus
from .in_memory import InMemoryBus
from .kafka import KafkaBus

__all__ = ["InMemoryBus", "KafkaBus", "FanoutBus", "build_event_bus_from_env", "build_transport_bus_from_env"]
