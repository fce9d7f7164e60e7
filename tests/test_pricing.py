from __future__ import annotations

from decimal import Decimal

from coachticket.config import PricingConfig
from coachticket.pricing.adjustments import PricingPolicy, apply_adjustments
from coachticket.pricing.totals import resolve_known_total


def test_adjustments_disabled_keep_base_price() -> None:
    assert apply_adjustments("42.30") == Decimal("42.30")


def test_markup_discount_and_charges_round_up_to_whole_units() -> None:
    policy = PricingPolicy(apply=True, markup_pct=Decimal("10"), discount_pct=Decimal("5"), charges=Decimal("2"))

    # 40 + 4 + 2 - 2 = 44; 41 + 4.1 + 2 - 2.05 = 45.05 -> 46
    assert apply_adjustments(40, policy) == Decimal("44")
    assert apply_adjustments(41, policy) == Decimal("46")


def test_round_to_nearest_step() -> None:
    policy = PricingPolicy(round_to=Decimal("5"))

    assert apply_adjustments(42, policy) == Decimal("40")
    assert apply_adjustments(43, policy) == Decimal("45")


def test_adjusted_price_is_never_negative() -> None:
    policy = PricingPolicy(apply=True, discount_pct=Decimal("150"))

    assert apply_adjustments(10, policy) == Decimal("0")


def test_policy_from_config() -> None:
    config = PricingConfig(
        apply=True,
        markup_pct=Decimal("12"),
        discount_pct=Decimal("0"),
        charges=Decimal("1.5"),
        round_to=Decimal("0"),
    )

    policy = PricingPolicy.from_config(config)

    assert policy.apply is True
    assert policy.charges == Decimal("1.5")


def test_known_total_prefers_snapshot_total() -> None:
    purchase = {"invoice": {"amount_total": 99}}

    assert resolve_known_total({"total": "45.00"}, purchase) == Decimal("45.00")


def test_known_total_from_invoice() -> None:
    purchase = {"invoice": {"amount_untaxed": "80.5"}, "charges": {"amount": 9999}}

    assert resolve_known_total({}, purchase) == Decimal("80.50")


def test_known_total_from_charges_in_cents_with_policy() -> None:
    purchase = {"charges": {"subtotal": 4130}}
    policy = PricingPolicy(apply=True, markup_pct=Decimal("0"), charges=Decimal("0"))

    assert resolve_known_total(None, purchase) == Decimal("41.30")
    assert resolve_known_total(None, purchase, policy) == Decimal("42.00")


def test_known_total_from_first_item_display_price() -> None:
    purchase = {"items": [{"display_price": {"amount": 2500}}, {"display_price": {"amount": 1000}}]}

    assert resolve_known_total(None, purchase) == Decimal("25.00")


def test_known_total_defaults_to_zero() -> None:
    assert resolve_known_total(None, None) == Decimal("0.00")
