"""Price and meterage normalization.

Supplier sheets mix at least four numeric conventions:

- Russian:   "3 171,00р."  (space thousands, comma decimal)
- European:  "3.171,00"    (dot thousands, comma decimal)
- US:        "3,171.00"    (comma thousands, dot decimal)
- Plain:     "1000", "1 000"

All prices are returned as positive Decimals in the base currency, or None.
"""

from __future__ import annotations

import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any

# Longest tokens first so "руб." is removed before "р".
_CURRENCY_TOKENS = re.compile(
    r"(рублей|рубля|рубль|руб\.?|р\.|р\b|₽|rub\b|rur\b|"
    r"евро|eur\b|euro\b|€|"
    r"долл\w*\.?|usd\b|\$)",
    re.IGNORECASE,
)
# Trailing unit of a per-meter price: "руб/м", "р. за м", "/пог.м"
_PER_UNIT = re.compile(
    r"\s*(?:/|\bза\b)\s*(?:пог\.?\s*|п\.?\s*)?(?:метр\w*|м|m)\.?\s*$",
    re.IGNORECASE,
)
_RUB_MARKERS = re.compile(r"руб|₽|\brub\b|\brur\b|\d\s*р\b", re.IGNORECASE)
_SPACES = re.compile(r"[\s  ]+")
_EMPTY_MARKERS = {"", "-", "—", "–", "нет", "n/a"}


def _to_decimal(text: str) -> Decimal | None:
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite() or value <= 0:
        return None
    return value


def _clean_number_text(text: str) -> str:
    """Resolve thousands/decimal separators into a plain "1234.56" string."""
    has_comma = "," in text
    has_dot = "." in text

    if has_comma and has_dot:
        # The separator that appears last is the decimal one
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif has_comma:
        # Russian convention: whitespace groups thousands, comma is decimal
        text = text.replace(",", ".")
    elif has_dot and text.count(".") > 1:
        # "1.234.567" - dots can only be grouping
        text = text.replace(".", "")

    return _SPACES.sub("", text)


def normalize_price(value: Any) -> Decimal | None:
    """Convert an arbitrary price value into a positive Decimal.

    Returns None for empty, zero, negative or unparsable input.

    Examples:
        >>> normalize_price("3 171,00р.")
        Decimal('3171.00')
        >>> normalize_price("3,171.00")
        Decimal('3171.00')
        >>> normalize_price("-") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        return value if value.is_finite() and value > 0 else None

    if isinstance(value, (int, float)):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None
        return Decimal(str(value)) if value > 0 else None

    text = str(value).strip()
    if text.lower() in _EMPTY_MARKERS:
        return None

    text = _PER_UNIT.sub("", text)
    text = _CURRENCY_TOKENS.sub("", text).strip()
    # Leftover punctuation such as a trailing dot from "р." or "руб"
    text = text.strip(" .")
    if not text:
        return None

    text = _clean_number_text(text)
    if not re.fullmatch(r"-?\d+(\.\d+)?", text):
        return None

    return _to_decimal(text)


def detect_currency(value: Any, default: str = "RUB") -> str:
    """Report the currency a raw price string was quoted in.

    Only detection; values are never converted between currencies.
    """
    if value is None or isinstance(value, (int, float, Decimal)):
        return default

    text = str(value).lower()
    if "€" in text or "eur" in text or "евро" in text:
        return "EUR"
    if "$" in text or "usd" in text or "долл" in text:
        return "USD"
    if _RUB_MARKERS.search(text):
        return "RUB"
    return default


def parse_meterage(value: Any) -> float | None:
    """Parse a meterage cell ("85,6", ">300", "12 м") into meters.

    Comparison signs are dropped; the number they qualify is kept.
    Returns None for empty markers, non-positive or unparsable values.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        number = float(value)
        if math.isnan(number) or number <= 0:
            return None
        return number

    text = str(value).strip()
    if text.lower() in _EMPTY_MARKERS:
        return None

    text = re.sub(r"^[<>≤≥~]+|[<>]+$", "", text).strip()
    compact = _SPACES.sub("", text)

    decimal_match = re.search(r"(\d+)[,.](\d+)", compact)
    if decimal_match:
        number = float(f"{decimal_match.group(1)}.{decimal_match.group(2)}")
        return number if number > 0 else None

    integer_match = re.search(r"\d+", compact)
    if integer_match:
        number = float(integer_match.group(0))
        return number if number > 0 else None

    return None


def parse_number(value: Any) -> float | None:
    """Lenient numeric parse: comma or dot decimals, None when not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
        return None if math.isnan(number) else number

    text = _SPACES.sub("", str(value)).replace(",", ".")
    try:
        return float(text)
    except ValueError:
        return None
