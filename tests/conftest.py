from __future__ import annotations

import pytest

from coachticket.db.repositories import reset_memory_backend


@pytest.fixture(autouse=True)
def memory_backend(monkeypatch) -> None:
    monkeypatch.setenv("COACHTICKET_STORAGE_BACKEND", "memory")
    monkeypatch.setenv("COACHTICKET_BUS_BACKEND", "memory")
    reset_memory_backend()
