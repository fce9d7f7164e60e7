from __future__ import annotations

import os
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class StorageBackend(str, Enum):
    MEMORY = "memory"
    SUPABASE = "supabase"


def get_storage_backend() -> StorageBackend:
    raw = os.getenv("COACHTICKET_STORAGE_BACKEND", StorageBackend.MEMORY.value).strip().lower()
    if raw == StorageBackend.SUPABASE.value:
        return StorageBackend.SUPABASE
    return StorageBackend.MEMORY


def get_client() -> Any:
    """Build a Supabase client from SUPABASE_URL / SUPABASE_KEY."""
    try:
        from supabase import create_client
    except Exception as exc:  # pragma: no cover - import path only exercised in supabase mode
        raise RuntimeError("supabase package is required for COACHTICKET_STORAGE_BACKEND=supabase") from exc
    return create_client(os.environ["SUPABASE_URL"], os.environ["SUPABASE_KEY"])


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class _MemoryState:
    # relational store
    reservations: dict[str, dict[str, Any]] = field(default_factory=dict)
    bookings_index: dict[str, dict[str, Any]] = field(default_factory=dict)
    purchases: dict[str, dict[str, Any]] = field(default_factory=dict)
    tickets: dict[str, dict[str, Any]] = field(default_factory=dict)
    # document store
    booking_documents: dict[str, dict[str, Any]] = field(default_factory=dict)
    counters: dict[str, int] = field(default_factory=dict)

    def reset(self) -> None:
        self.reservations.clear()
        self.bookings_index.clear()
        self.purchases.clear()
        self.tickets.clear()
        self.booking_documents.clear()
        self.counters.clear()


_MEMORY_STATE = _MemoryState()


class _BaseRepository:
    def __init__(self) -> None:
        self.backend = get_storage_backend()
        self.client = get_client() if self.backend == StorageBackend.SUPABASE else None


class ReservationRepository(_BaseRepository):
    def get(self, reservation_id: str) -> dict[str, Any] | None:
        if self.backend == StorageBackend.MEMORY:
            row = _MEMORY_STATE.reservations.get(reservation_id)
            return deepcopy(row) if row is not None else None
        response = (
            self.client.table("reservations")
            .select("*")
            .eq("reservation_id", reservation_id)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return rows[0] if rows else None

    def upsert(self, row: dict[str, Any]) -> dict[str, Any]:
        if self.backend == StorageBackend.MEMORY:
            _MEMORY_STATE.reservations[row["reservation_id"]] = deepcopy(row)
            return row
        response = self.client.table("reservations").upsert(row, on_conflict="reservation_id").execute()
        return (response.data or [row])[0]

    def list_all(self) -> list[dict[str, Any]]:
        if self.backend == StorageBackend.MEMORY:
            return [deepcopy(row) for row in _MEMORY_STATE.reservations.values()]
        response = self.client.table("reservations").select("*").execute()
        return response.data or []


class BookingDocumentRepository(_BaseRepository):
    """System-of-record booking documents keyed by PNR, with merge writes."""

    def get(self, pnr: str) -> dict[str, Any] | None:
        if self.backend == StorageBackend.MEMORY:
            doc = _MEMORY_STATE.booking_documents.get(pnr)
            return deepcopy(doc) if doc is not None else None
        response = self.client.table("booking_documents").select("data").eq("pnr", pnr).limit(1).execute()
        rows = response.data or []
        return rows[0]["data"] if rows else None

    def merge(self, pnr: str, fields: dict[str, Any]) -> dict[str, Any]:
        existing = self.get(pnr) or {}
        merged = {**existing, **deepcopy(fields), "pnr": pnr}
        if self.backend == StorageBackend.MEMORY:
            _MEMORY_STATE.booking_documents[pnr] = merged
            return deepcopy(merged)
        row = {
            "pnr": pnr,
            "reservation_id": merged.get("reservation_id"),
            "data": merged,
            "updated_at": _now_iso(),
        }
        self.client.table("booking_documents").upsert(row, on_conflict="pnr").execute()
        return merged

    def find_by_reservation_id(self, reservation_id: str) -> dict[str, Any] | None:
        if self.backend == StorageBackend.MEMORY:
            for doc in _MEMORY_STATE.booking_documents.values():
                if doc.get("reservation_id") == reservation_id:
                    return deepcopy(doc)
            return None
        response = (
            self.client.table("booking_documents")
            .select("data")
            .eq("reservation_id", reservation_id)
            .order("updated_at", desc=True)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return rows[0]["data"] if rows else None

    def next_counter(self, name: str) -> int:
        if self.backend == StorageBackend.MEMORY:
            value = _MEMORY_STATE.counters.get(name, 0) + 1
            _MEMORY_STATE.counters[name] = value
            return value
        response = self.client.table("document_counters").select("last_id").eq("name", name).limit(1).execute()
        rows = response.data or []
        value = (int(rows[0]["last_id"]) if rows else 0) + 1
        self.client.table("document_counters").upsert({"name": name, "last_id": value}, on_conflict="name").execute()
        return value


class BookingIndexRepository(_BaseRepository):
    """Relational projection of booking documents used for lookup and reporting."""

    def upsert(self, row: dict[str, Any]) -> dict[str, Any]:
        row = {**row, "updated_at": _now_iso()}
        if self.backend == StorageBackend.MEMORY:
            existing = _MEMORY_STATE.bookings_index.get(row["pnr"], {})
            merged = {**existing, **deepcopy(row)}
            _MEMORY_STATE.bookings_index[row["pnr"]] = merged
            return merged
        response = self.client.table("bookings_index").upsert(row, on_conflict="pnr").execute()
        return (response.data or [row])[0]

    def get(self, pnr: str) -> dict[str, Any] | None:
        if self.backend == StorageBackend.MEMORY:
            row = _MEMORY_STATE.bookings_index.get(pnr)
            return deepcopy(row) if row is not None else None
        response = self.client.table("bookings_index").select("*").eq("pnr", pnr).limit(1).execute()
        rows = response.data or []
        return rows[0] if rows else None


class PurchaseRepository(_BaseRepository):
    """Purchase-completion records keyed by PNR."""

    def upsert(self, row: dict[str, Any]) -> dict[str, Any]:
        row = {**row, "updated_at": _now_iso()}
        if self.backend == StorageBackend.MEMORY:
            existing = _MEMORY_STATE.purchases.get(row["pnr"], {})
            merged = {**existing, **deepcopy(row)}
            _MEMORY_STATE.purchases[row["pnr"]] = merged
            return deepcopy(merged)
        response = self.client.table("purchases").upsert(row, on_conflict="pnr").execute()
        return (response.data or [row])[0]

    def get(self, pnr: str) -> dict[str, Any] | None:
        if self.backend == StorageBackend.MEMORY:
            row = _MEMORY_STATE.purchases.get(pnr)
            return deepcopy(row) if row is not None else None
        response = self.client.table("purchases").select("*").eq("pnr", pnr).limit(1).execute()
        rows = response.data or []
        return rows[0] if rows else None


class TicketArtifactRepository(_BaseRepository):
    """Rows of the `tickets` table: one per PNR, one payload column per artifact kind."""

    def upsert(self, row: dict[str, Any]) -> dict[str, Any]:
        if self.backend == StorageBackend.MEMORY:
            existing = _MEMORY_STATE.tickets.get(row["pnr"])
            merged = {**(existing or {"created_at": _now_iso()}), **row}
            _MEMORY_STATE.tickets[row["pnr"]] = merged
            return dict(merged)
        response = self.client.table("tickets").upsert(row, on_conflict="pnr").execute()
        return (response.data or [row])[0]

    def get(self, pnr: str) -> dict[str, Any] | None:
        if self.backend == StorageBackend.MEMORY:
            row = _MEMORY_STATE.tickets.get(pnr)
            return dict(row) if row is not None else None
        response = self.client.table("tickets").select("*").eq("pnr", pnr).limit(1).execute()
        rows = response.data or []
        return rows[0] if rows else None


def reset_memory_backend() -> None:
    _MEMORY_STATE.reset()
