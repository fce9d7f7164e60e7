from .mirror_queue import DrainResult, MirrorFailure, MirrorQueue
from .repositories import (
    BookingDocumentRepository,
    BookingIndexRepository,
    PurchaseRepository,
    ReservationRepository,
    StorageBackend,
    TicketArtifactRepository,
    get_storage_backend,
    reset_memory_backend,
)

__all__ = [
    "BookingDocumentRepository",
    "BookingIndexRepository",
    "DrainResult",
    "MirrorFailure",
    "MirrorQueue",
    "PurchaseRepository",
    "ReservationRepository",
    "StorageBackend",
    "TicketArtifactRepository",
    "get_storage_backend",
    "reset_memory_backend",
]
