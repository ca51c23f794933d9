"""Identity keys for fabric records.

Suppliers expose no stable IDs, so a record is identified within its
supplier by ``(collection, colorNumber)`` compared case- and
whitespace-insensitively.
"""

from __future__ import annotations

import re
import unicodedata

_WHITESPACE = re.compile(r"\s+")


def normalize_key_part(text: str | None) -> str:
    """Normalize one key component.

    NFKC folds compatibility forms (non-breaking spaces, full-width
    characters), whitespace runs collapse to one space, case is folded.
    """
    if not text:
        return ""
    text = unicodedata.normalize("NFKC", str(text))
    return _WHITESPACE.sub(" ", text).strip().casefold()


def fabric_key(collection: str | None, color_number: str | None) -> tuple[str, str]:
    """Supplier-scoped identity key."""
    return normalize_key_part(collection), normalize_key_part(color_number)
