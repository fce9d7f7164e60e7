from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable

from coachticket.errors import ValidationError
from coachticket.pricing.amounts import money, parse_amount

CHILD_TOKENS = ("child", "children", "youth", "teen", "student")
ADULT_TOKENS = ("adult", "adults")

ADULT = "adult"
CHILD = "child"

PASSENGER_PRICE_KEYS = ("retail_price", "retailPrice", "price", "fare", "amount")
PASSENGER_CATEGORY_KEYS = ("category", "fare_category", "passenger_type", "passengerType", "type")
BREAKDOWN_SKIP_KEYS = {"total", "tax", "taxes", "fee", "fees"}

ROUND_TRIP_TOLERANCE_PER_PASSENGER = Decimal("0.05")
ROUND_TRIP_MIN_TOLERANCE = Decimal("0.05")


@dataclass(frozen=True)
class CategoryFares:
    adult_unit: Decimal | None = None
    child_unit: Decimal | None = None
    adult_count: int = 0
    child_count: int = 0

    @property
    def has_any(self) -> bool:
        return self.adult_unit is not None or self.child_unit is not None


@dataclass(frozen=True)
class PassengerFareLine:
    passenger_index: int
    category: str
    unit_price: Decimal
    line_total: Decimal
    leg_price: Decimal
    currency: str


@dataclass
class FareAllocation:
    total: Decimal
    currency: str
    method: str
    round_trip: bool
    figures_are_per_leg: bool = False
    lines: list[PassengerFareLine] = field(default_factory=list)

    @property
    def allocated_total(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0"))


def classify_category(raw: Any) -> str:
    """Fare category for a passenger: child-like tokens are `child`, everything else `adult`."""
    value = str(raw or "").strip().lower()
    if any(token in value for token in CHILD_TOKENS):
        return CHILD
    return ADULT


def _strict_category(raw: Any) -> str | None:
    value = str(raw or "").strip().lower()
    if not value:
        return None
    if any(token in value for token in CHILD_TOKENS):
        return CHILD
    if any(token in value for token in ADULT_TOKENS):
        return ADULT
    return None


def _first_present(data: dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def _category_of(passenger: dict[str, Any]) -> str:
    return classify_category(_first_present(passenger, PASSENGER_CATEGORY_KEYS))


def looks_like_cents(value: Decimal, total: Decimal) -> bool:
    """Heuristic used when upstream does not say whether a price is in cents.

    A value is cents when it exceeds the known total more than fivefold, or when
    it is four digits or more while the total is below 1000.
    """
    if value > total * 5:
        return True
    return value >= 1000 and total < 1000


def _entry_total(node: dict[str, Any]) -> Decimal | None:
    for candidate in (
        node.get("total"),
        (node.get("breakdown") or {}).get("total") if isinstance(node.get("breakdown"), dict) else None,
        (node.get("breakdown") or {}).get("base") if isinstance(node.get("breakdown"), dict) else None,
        node.get("amount"),
        (node.get("price") or {}).get("amount") if isinstance(node.get("price"), dict) else None,
        (node.get("fare") or {}).get("total") if isinstance(node.get("fare"), dict) else None,
    ):
        amount = parse_amount(candidate)
        if amount is not None:
            return amount
    return None


def _entry_count(node: dict[str, Any]) -> int:
    try:
        count = int(node.get("count") or 0)
    except (TypeError, ValueError):
        count = 0
    return count if count > 0 else 1


class _CategoryTotals:
    def __init__(self) -> None:
        self.totals = {ADULT: Decimal("0"), CHILD: Decimal("0")}
        self.counts = {ADULT: 0, CHILD: 0}
        self.has_any = False

    def add(self, category: str, amount: Decimal, count: int) -> None:
        self.totals[category] += amount
        self.counts[category] += count
        self.has_any = True

    def add_breakdown(self, breakdown: dict[str, Any]) -> None:
        for raw_key, value in breakdown.items():
            key = str(raw_key).lower()
            if key == "passengers" and isinstance(value, list):
                for passenger in value:
                    if not isinstance(passenger, dict):
                        continue
                    category = _strict_category(_first_present(passenger, PASSENGER_CATEGORY_KEYS))
                    amount = _entry_total(passenger)
                    if category is None or amount is None:
                        continue
                    self.add(category, amount, _entry_count(passenger))
                continue
            if key in BREAKDOWN_SKIP_KEYS:
                continue
            category = _strict_category(key)
            if category is None and isinstance(value, dict):
                category = _strict_category(_first_present(value, PASSENGER_CATEGORY_KEYS))
            if category is None:
                continue
            if isinstance(value, dict):
                amount = _entry_total(value)
                count = _entry_count(value)
            else:
                amount = parse_amount(value)
                count = 1
            if amount is not None:
                self.add(category, amount, count)


def _price_entries(purchase: dict[str, Any]) -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    prices = purchase.get("prices")
    if isinstance(prices, list):
        entries.extend(entry for entry in prices if isinstance(entry, dict))
    trips = purchase.get("trips")
    trip_values = trips.values() if isinstance(trips, dict) else trips if isinstance(trips, list) else []
    for trip in trip_values:
        if isinstance(trip, dict) and isinstance(trip.get("prices"), list):
            entries.extend(entry for entry in trip["prices"] if isinstance(entry, dict))
    return entries


def extract_category_fares(purchase: dict[str, Any] | None) -> CategoryFares | None:
    """Per-category unit prices from upstream price breakdowns, if any are present."""
    if not purchase:
        return None
    totals = _CategoryTotals()
    for entry in _price_entries(purchase):
        nested = entry.get("prices")
        if isinstance(nested, dict) and isinstance(nested.get("breakdown"), dict):
            totals.add_breakdown(nested["breakdown"])
        elif isinstance(entry.get("breakdown"), dict):
            totals.add_breakdown(entry["breakdown"])
        else:
            category = _strict_category(_first_present(entry, PASSENGER_CATEGORY_KEYS))
            amount = _entry_total(entry)
            if category is not None and amount is not None:
                totals.add(category, amount, _entry_count(entry))
    if not totals.has_any:
        return None

    def unit(category: str) -> Decimal | None:
        count = totals.counts[category]
        return totals.totals[category] / count if count > 0 else None

    return CategoryFares(
        adult_unit=unit(ADULT),
        child_unit=unit(CHILD),
        adult_count=totals.counts[ADULT],
        child_count=totals.counts[CHILD],
    )


def _item_price(item: dict[str, Any]) -> Decimal | None:
    display = item.get("display_price")
    if isinstance(display, dict):
        for key in ("amount", "total"):
            amount = parse_amount(display.get(key))
            if amount is not None:
                return amount
    price = item.get("price")
    if isinstance(price, dict):
        amount = parse_amount(price.get("amount") if price.get("amount") is not None else price.get("total"))
        if amount is not None:
            return amount
    return parse_amount(_first_present(item, ("price", "amount", "total", "retail_price")))


def split_to_total(weights: list[Decimal], total: Decimal) -> list[Decimal] | None:
    """Scale `weights` so the rounded parts add up to `total` exactly; residual cents go to the last part."""
    weight_sum = sum(weights, Decimal("0"))
    if not weights or weight_sum <= 0:
        return None
    target = money(total)
    parts = [money(target * weight / weight_sum) for weight in weights]
    parts[-1] += target - sum(parts, Decimal("0"))
    return parts


class FareAllocator:
    def allocate(
        self,
        total: Any,
        passengers: list[dict[str, Any]] | None,
        *,
        purchase: dict[str, Any] | None = None,
        category_fares: CategoryFares | None = None,
        round_trip: bool = False,
        currency: str = "USD",
        passenger_count: int | None = None,
    ) -> FareAllocation:
        known_total = parse_amount(total)
        if known_total is None or known_total < 0:
            raise ValidationError("total must be a non-negative amount")

        entries = [dict(p) if isinstance(p, dict) else {} for p in passengers or []]
        count = passenger_count if passenger_count and passenger_count > 0 else len(entries)
        entries = (entries + [{} for _ in range(count - len(entries))])[:count]
        if count == 0:
            return FareAllocation(total=money(known_total), currency=currency, method="none", round_trip=round_trip)

        categories = [_category_of(p) for p in entries]
        unit_prices: list[Decimal] | None = None

        figures = self._from_passenger_prices(entries)
        method = "passenger_prices"
        if figures is None:
            figures = self._from_item_prices(purchase, count, known_total)
            method = "item_prices"
        if figures is None:
            fares = category_fares or extract_category_fares(purchase)
            weighted = self._from_categories(categories, fares, known_total)
            if weighted is not None:
                figures, unit_prices = weighted
                method = "category_weighted"
        if figures is None:
            figures = split_to_total([Decimal("1")] * count, known_total) or [Decimal("0.00")] * count
            method = "even_split"

        per_leg_figures = False
        if round_trip:
            per_leg_figures = self._figures_are_per_leg(figures, known_total)
            if per_leg_figures:
                line_totals = [money(f * 2) for f in figures]
                leg_prices = [money(f) for f in figures]
            else:
                line_totals = [money(f) for f in figures]
                leg_prices = [money(f / 2) for f in figures]
        else:
            line_totals = [money(f) for f in figures]
            leg_prices = list(line_totals)

        lines = [
            PassengerFareLine(
                passenger_index=index + 1,
                category=categories[index],
                unit_price=unit_prices[index] if unit_prices else line_totals[index],
                line_total=line_totals[index],
                leg_price=leg_prices[index],
                currency=currency,
            )
            for index in range(count)
        ]
        return FareAllocation(
            total=money(known_total),
            currency=currency,
            method=method,
            round_trip=round_trip,
            figures_are_per_leg=per_leg_figures,
            lines=lines,
        )

    @staticmethod
    def _figures_are_per_leg(figures: list[Decimal], total: Decimal) -> bool:
        computed = sum(figures, Decimal("0"))
        tolerance = max(ROUND_TRIP_MIN_TOLERANCE, len(figures) * ROUND_TRIP_TOLERANCE_PER_PASSENGER)
        doubled_gap = abs(computed * 2 - total)
        return doubled_gap <= tolerance and doubled_gap < abs(computed - total)

    @staticmethod
    def _from_passenger_prices(entries: list[dict[str, Any]]) -> list[Decimal] | None:
        prices = [parse_amount(_first_present(p, PASSENGER_PRICE_KEYS)) for p in entries]
        if any(price is None for price in prices):
            return None
        return [money(price) for price in prices]

    @staticmethod
    def _from_item_prices(purchase: dict[str, Any] | None, count: int, total: Decimal) -> list[Decimal] | None:
        items = (purchase or {}).get("items")
        if not isinstance(items, list) or len(items) != count:
            return None
        prices = [_item_price(item) if isinstance(item, dict) else None for item in items]
        if any(price is None for price in prices):
            return None
        normalized = [price / 100 if looks_like_cents(price, total) else price for price in prices]
        return split_to_total(normalized, total)

    @staticmethod
    def _from_categories(
        categories: list[str],
        fares: CategoryFares | None,
        total: Decimal,
    ) -> tuple[list[Decimal], list[Decimal]] | None:
        if fares is None or not fares.has_any:
            return None
        adult_unit = fares.adult_unit if fares.adult_unit is not None else fares.child_unit
        child_unit = fares.child_unit if fares.child_unit is not None else adult_unit
        units = {ADULT: adult_unit, CHILD: child_unit}
        weights = [units[category] for category in categories]
        parts = split_to_total(weights, total)
        if parts is None:
            return None
        population = {category: categories.count(category) for category in (ADULT, CHILD)}
        scaled_units = []
        for category in categories:
            share = [part for part, cat in zip(parts, categories) if cat == category]
            scaled_units.append(money(sum(share, Decimal("0")) / population[category]))
        return parts, scaled_units
