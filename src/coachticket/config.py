from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation


def _env_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


def _env_decimal(name: str, default: str = "0") -> Decimal:
    raw = os.getenv(name, default).strip() or default
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"{name} must be a number") from exc


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "y"}:
        return True
    if value in {"0", "false", "no", "n"}:
        return False
    return default


@dataclass(frozen=True)
class UpstreamConfig:
    base_url: str
    username: str
    password: str
    timeout_seconds: int


@dataclass(frozen=True)
class PricingConfig:
    apply: bool
    markup_pct: Decimal
    discount_pct: Decimal
    charges: Decimal
    round_to: Decimal


@dataclass(frozen=True)
class TicketingConfig:
    storage_backend: str
    bus_backend: str
    public_base_url: str
    mirror_queue_size: int
    upstream: UpstreamConfig
    pricing: PricingConfig

    @classmethod
    def from_env(cls) -> TicketingConfig:
        return cls(
            storage_backend=_env_str("COACHTICKET_STORAGE_BACKEND", "memory").lower(),
            bus_backend=_env_str("COACHTICKET_BUS_BACKEND", "memory").lower(),
            public_base_url=_env_str("COACHTICKET_PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/"),
            mirror_queue_size=_env_int("COACHTICKET_MIRROR_QUEUE_SIZE", 256),
            upstream=UpstreamConfig(
                base_url=_env_str("COACHTICKET_UPSTREAM_BASE_URL", "https://enable.eaglezim.co.za").rstrip("/"),
                username=_env_str("COACHTICKET_UPSTREAM_USERNAME", ""),
                password=os.getenv("COACHTICKET_UPSTREAM_PASSWORD", ""),
                timeout_seconds=_env_int("COACHTICKET_UPSTREAM_TIMEOUT_SECONDS", 30),
            ),
            pricing=PricingConfig(
                apply=_env_bool("COACHTICKET_PRICING_APPLY", False),
                markup_pct=_env_decimal("COACHTICKET_PRICING_MARKUP_PCT"),
                discount_pct=_env_decimal("COACHTICKET_PRICING_DISCOUNT_PCT"),
                charges=_env_decimal("COACHTICKET_PRICING_CHARGES"),
                round_to=_env_decimal("COACHTICKET_PRICING_ROUND_TO"),
            ),
        )
