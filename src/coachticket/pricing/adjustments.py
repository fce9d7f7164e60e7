from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any

from coachticket.config import PricingConfig
from coachticket.pricing.amounts import parse_amount

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
ZERO = Decimal("0")


@dataclass(frozen=True)
class PricingPolicy:
    apply: bool = False
    markup_pct: Decimal = ZERO
    discount_pct: Decimal = ZERO
    charges: Decimal = ZERO
    round_to: Decimal = ZERO

    @classmethod
    def from_config(cls, config: PricingConfig) -> PricingPolicy:
        return cls(
            apply=config.apply,
            markup_pct=config.markup_pct,
            discount_pct=config.discount_pct,
            charges=config.charges,
            round_to=config.round_to,
        )


def apply_adjustments(base_price: Any, policy: PricingPolicy | None = None) -> Decimal:
    """Retail price for an upstream base price.

    With the policy applied: base + base*markup% + charges - base*discount%.
    Rounding to the nearest step happens whenever a step is configured; an
    applied policy then rounds any fraction up to the next whole unit. The
    result is never negative.
    """
    policy = policy or PricingPolicy()
    original = parse_amount(base_price) or ZERO
    adjusted = original

    if policy.apply:
        markup = original * policy.markup_pct / HUNDRED
        discount = original * policy.discount_pct / HUNDRED
        adjusted = original + markup + policy.charges - discount

    if policy.round_to > 0:
        steps = (adjusted / policy.round_to).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        adjusted = steps * policy.round_to

    if policy.apply and adjusted != adjusted.to_integral_value(rounding=ROUND_FLOOR):
        adjusted = adjusted.to_integral_value(rounding=ROUND_CEILING)

    adjusted = max(ZERO, adjusted)
    if adjusted != original:
        logger.debug("price adjusted from %s to %s", original, adjusted)
    return adjusted
