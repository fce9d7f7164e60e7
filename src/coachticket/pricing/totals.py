from __future__ import annotations

from decimal import Decimal
from typing import Any

from coachticket.pricing.adjustments import PricingPolicy, apply_adjustments
from coachticket.pricing.amounts import money, parse_amount

SNAPSHOT_TOTAL_KEYS = ("total", "total_amount", "totalAmount", "estimated_total")
INVOICE_TOTAL_KEYS = ("amount_total", "total", "amount_untaxed")
CHARGES_TOTAL_KEYS = ("amount", "subtotal", "total")


def _first_amount(data: Any, keys: tuple[str, ...]) -> Decimal | None:
    if not isinstance(data, dict):
        return None
    for key in keys:
        amount = parse_amount(data.get(key))
        if amount is not None:
            return amount
    return None


def _from_cents(amount: Decimal, policy: PricingPolicy | None) -> Decimal:
    return money(apply_adjustments(amount / 100, policy))


def resolve_known_total(
    snapshot: dict[str, Any] | None,
    purchase: dict[str, Any] | None,
    policy: PricingPolicy | None = None,
) -> Decimal:
    """Best known total for a booking, in major units.

    Explicit snapshot totals and invoice totals are taken as-is. Purchase
    charges and item display prices come from upstream in cents and go
    through the pricing policy.
    """
    explicit = _first_amount(snapshot, SNAPSHOT_TOTAL_KEYS)
    if explicit is not None:
        return money(explicit)

    purchase = purchase or {}
    invoice = _first_amount(purchase.get("invoice"), INVOICE_TOTAL_KEYS)
    if invoice is not None:
        return money(invoice)

    charges = _first_amount(purchase.get("charges"), CHARGES_TOTAL_KEYS)
    if charges is not None:
        return _from_cents(charges, policy)

    items = purchase.get("items")
    if isinstance(items, list) and items and isinstance(items[0], dict):
        display = _first_amount(items[0].get("display_price"), ("amount", "total"))
        if display is not None:
            return _from_cents(display, policy)

    return Decimal("0.00")
