"""Next-arrival date parsing."""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

MIN_YEAR = 1900
MAX_YEAR = 2100

# Excel serial 1 is 1900-01-01; the 1899-12-30 epoch absorbs the 1900 leap bug
_EXCEL_EPOCH = date(1899, 12, 30)

_DAY_FIRST = [
    re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{4})"),
    re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})"),
]
_ISO = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")
# "15.03.24": two-digit years are 20xx
_SHORT_YEAR = re.compile(r"(\d{1,2})[./](\d{1,2})[./](\d{2})(?!\d)")

# Whole month words: nominative, case forms ("января", "в мае") and abbreviations
_MONTH_WORDS = [
    (1, re.compile(r"январ[ьяюе]|янв")),
    (2, re.compile(r"феврал[ьяюе]|февр?")),
    (3, re.compile(r"март[аеу]?|мар")),
    (4, re.compile(r"апрел[ьяюе]|апр")),
    (5, re.compile(r"ма[йяюе]")),
    (6, re.compile(r"июн[ьяюе]?")),
    (7, re.compile(r"июл[ьяюе]?")),
    (8, re.compile(r"август[аеу]?|авг")),
    (9, re.compile(r"сентябр[ьяюе]|сент?")),
    (10, re.compile(r"октябр[ьяюе]|окт")),
    (11, re.compile(r"ноябр[ьяюе]|нояб?")),
    (12, re.compile(r"декабр[ьяюе]|дек")),
]


def validate_date(value: date | datetime | None) -> date | None:
    """Drop dates outside 1900-2100 before they are stored."""
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    if not MIN_YEAR <= value.year <= MAX_YEAR:
        return None
    return value


def _build(year: int, month: int, day: int) -> date | None:
    try:
        return validate_date(date(year, month, day))
    except ValueError:
        return None


def month_from_text(text: str) -> int | None:
    """Month number for a Russian month word anywhere in ``text``."""
    for word in re.findall(r"[а-яё]+", text.lower()):
        for month, pattern in _MONTH_WORDS:
            if pattern.fullmatch(word):
                return month
    return None


def parse_date(value: Any, today: date | None = None) -> date | None:
    """Parse an arrival date from a cell.

    Accepts Excel serial numbers, ``DD.MM.YYYY``, ``DD/MM/YYYY``,
    ``YYYY-MM-DD`` and bare Russian month names ("конец марта"), which
    resolve to the first day of the next such month on or after ``today``.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return validate_date(value)
    if isinstance(value, date):
        return validate_date(value)

    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        try:
            return validate_date(_EXCEL_EPOCH + timedelta(days=int(value)))
        except OverflowError:
            return None

    text = str(value).strip()
    if not text or text == "-" or text.lower() == "нет":
        return None

    # Serial numbers that reached the grid as text
    if re.fullmatch(r"\d{5}(\.\d+)?", text):
        return parse_date(float(text))

    match = _ISO.search(text)
    if match:
        return _build(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    for pattern in _DAY_FIRST:
        match = pattern.search(text)
        if match:
            return _build(int(match.group(3)), int(match.group(2)), int(match.group(1)))

    match = _SHORT_YEAR.search(text)
    if match:
        return _build(2000 + int(match.group(3)), int(match.group(2)), int(match.group(1)))

    month = month_from_text(text)
    if month is not None:
        today = today or date.today()
        year = today.year if month >= today.month else today.year + 1
        return _build(year, month, 1)

    return None


def looks_like_date(value: Any) -> bool:
    """True when a cell reads as a date or month rather than a quantity."""
    if isinstance(value, (date, datetime)):
        return True
    if not isinstance(value, str):
        return False
    text = value.strip()
    if not text:
        return False
    if _ISO.search(text) or _SHORT_YEAR.search(text) or any(p.search(text) for p in _DAY_FIRST):
        return True
    return month_from_text(text) is not None


def utc_now() -> datetime:
    """Naive UTC timestamp, the form stored in the catalog."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
