"""Price-band classification.

Bands are ``(category, price)`` ceilings sorted ascending by price. A
per-meter price falls into the first band whose ceiling is >= the price;
anything above the highest ceiling lands in the highest band.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from fabricsync.models import PriceBand

DEFAULT_CATEGORIES: list[PriceBand] = [
    PriceBand(category=category, price=Decimal(price))
    for category, price in [
        (1, 550),
        (2, 650),
        (3, 800),
        (4, 1000),
        (5, 1250),
        (6, 1550),
        (7, 1900),
        (8, 2300),
        (9, 2750),
        (10, 3250),
        (11, 3800),
        (12, 4400),
        (13, 5050),
        (14, 5750),
        (15, 6500),
        (16, 7300),
    ]
]


def sort_bands(bands: Sequence[PriceBand]) -> list[PriceBand]:
    """Return bands ascending by ceiling; duplicate ceilings are rejected."""
    ordered = sorted(bands, key=lambda band: band.price)
    for lower, upper in zip(ordered, ordered[1:]):
        if lower.price == upper.price:
            raise ValueError(
                f"Price bands must be strictly increasing: categories "
                f"{lower.category} and {upper.category} share ceiling {lower.price}"
            )
    return ordered


def classify_price(price: Decimal | float | None, bands: Sequence[PriceBand]) -> int | None:
    """Map a per-unit price to its category.

    Args:
        price: Normalized price per meter (or per unit when no meterage)
        bands: Price bands, any order

    Returns:
        Category number, or None when there are no bands or no price
    """
    if not bands or price is None:
        return None

    value = Decimal(str(price))
    if value <= 0:
        return None

    ordered = sorted(bands, key=lambda band: band.price)
    for band in ordered:
        if band.price >= value:
            return band.category

    return ordered[-1].category


def price_per_meter(price: Decimal | None, meterage: float | None) -> Decimal | None:
    """``price / meterage`` rounded to kopecks, None unless both are positive."""
    if price is None or meterage is None or meterage <= 0 or price <= 0:
        return None
    result = price / Decimal(str(meterage))
    return result.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def derive_category(
    price: Decimal | None,
    meterage: float | None,
    bands: Sequence[PriceBand],
) -> tuple[Decimal | None, int | None]:
    """Compute ``(pricePerMeter, category)`` for a price/meterage pair.

    The category is taken from the per-meter price, or from the raw price
    when the meterage is unknown.
    """
    per_meter = price_per_meter(price, meterage)
    basis = per_meter if per_meter is not None else price
    return per_meter, classify_price(basis, bands)
