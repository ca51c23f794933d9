"""Text helpers for supplier cells.

Many suppliers put the collection and the color into one cell
("Ткань Aphrodite 07 Mocca", "YW-0415-B2 BLACK ПЕРФ"). ``split_collection_color``
applies the supplier's ``specialRules`` flags in a fixed order, then falls back
to the default "letters, then number and the rest" split.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

_LETTERS = r"A-Za-zА-Яа-яЁё"

_FURNITURE_TEXT = [
    re.compile(r"мебельная\s+ткань\s*", re.IGNORECASE),
    re.compile(r"ткань\s+мебельная\s*", re.IGNORECASE),
]
_QUOTES = re.compile(r"[\"'«»“”]")
_KOZH_ZAM = [
    re.compile(r"КОЖ\s+ЗАМ\s+АВТО\s*", re.IGNORECASE),
    re.compile(r"КОЖ\s+ЗАМ\s*", re.IGNORECASE),
]
_ALFA_2303 = re.compile(r"^(Alfa\s+2303)\s+(.+)$", re.IGNORECASE)
_DASH_SPLIT = re.compile(r"^(.+?)\s*-\s*(.+)$")
_VEKTOR_PATTERNS = [
    # Order matters: the dashed form also matches spaced codes at their first dash
    # "YW-0415 BR1 BROWN ГЛАДКАЯ" -> ("YW-0415", "BR1 BROWN ГЛАДКАЯ")
    re.compile(r"^([A-Z0-9-]+)\s+([A-Z]{1,3}\d+[A-Z0-9]*)\s+(.+)$", re.IGNORECASE),
    # "YW-0415-B2 BLACK ПЕРФ" -> ("YW-0415", "B2 BLACK ПЕРФ")
    re.compile(r"^([A-Z0-9-]+)-([A-Z0-9]+)\s+(.+)$", re.IGNORECASE),
]
_VEKTOR_NAME_NUMBER = re.compile(rf"^([{_LETTERS}0-9]+)\s+(\d+.*)$")
_VEKTOR_FALLBACK = re.compile(rf"^([{_LETTERS}0-9-]+?)\s*(\d+.*)$")
_DEFAULT_SPLIT = re.compile(rf"^([{_LETTERS}\s]+?)\s+(\d+.*)$")

_TRUE_MARKERS = {"есть", "да", "yes", "true", "+", "много", "v", "✓", "✔", "в наличии"}
_FALSE_MARKERS = {"нет", "no", "false", "-", "мало", "нет в наличии"}


def _first_word_split(text: str, require_color: bool = True) -> tuple[str, str] | None:
    parts = text.split()
    if not parts:
        return None
    collection, color = parts[0], " ".join(parts[1:])
    if require_color and not color:
        return None
    return collection, color


def split_collection_color(
    text: Any, special_rules: Mapping[str, Any] | None = None
) -> tuple[str, str]:
    """Split a compound cell into ``(collection, color)``.

    Returns ``(text, "")`` when no rule can find a color; callers treat a
    missing color as an unusable row.

    Examples:
        >>> split_collection_color("Helena 01")
        ('Helena', '01')
        >>> split_collection_color("Ткань Aphrodite 07 Mocca", {"nortexPattern": True})
        ('Aphrodite', '07 Mocca')
    """
    if not isinstance(text, str) or not text.strip():
        return "", ""

    rules = special_rules or {}
    trimmed = text.strip()

    if rules.get("removeFurnitureText"):
        for pattern in _FURNITURE_TEXT:
            trimmed = pattern.sub("", trimmed).strip()

    if rules.get("removeQuotes"):
        trimmed = _QUOTES.sub("", trimmed).strip()

    if rules.get("alfa2303Pattern"):
        match = _ALFA_2303.match(trimmed)
        if match:
            return match.group(1), match.group(2).strip()

    if rules.get("artvisionDashPattern"):
        match = _DASH_SPLIT.match(trimmed)
        if match:
            return match.group(1).strip(), match.group(2).strip()

    if rules.get("removeUnderscoreBackslash"):
        trimmed = trimmed.replace("_\\", "")

    if rules.get("colorOnlyNumbers"):
        digits = re.search(r"\d+", trimmed)
        color = digits.group(0) if digits else ""
        collection = re.sub(r"\s+", " ", re.sub(r"\d+", "", trimmed)).strip()
        if collection and color:
            return collection, color

    if rules.get("removeKozhZam"):
        for pattern in _KOZH_ZAM:
            trimmed = pattern.sub("", trimmed).strip()

    if rules.get("egidaPattern") or rules.get("artefactPattern"):
        # Name up to the first digit ("№" also opens an artefact color)
        marker = re.search(r"\d|№" if rules.get("artefactPattern") else r"\d", trimmed)
        if marker and marker.start() > 0:
            return trimmed[: marker.start()].strip(), trimmed[marker.start() :].strip()
        if marker is None and rules.get("artefactPattern"):
            parts = trimmed.split()
            if len(parts) > 1:
                return " ".join(parts[:-1]), parts[-1]
        return trimmed, ""

    if rules.get("vektorPattern"):
        for pattern in _VEKTOR_PATTERNS:
            match = pattern.match(trimmed)
            if match:
                return match.group(1), f"{match.group(2)} {match.group(3)}".strip()

        match = _VEKTOR_NAME_NUMBER.match(trimmed)
        if match:
            return match.group(1), match.group(2)

        if re.search(rf"[{_LETTERS}]", trimmed) and re.search(r"\d", trimmed):
            match = _VEKTOR_FALLBACK.match(trimmed)
            if match:
                return match.group(1).strip(), match.group(2).strip()

    elif rules.get("nortexPattern") or rules.get("removeTkanPrefix"):
        trimmed = re.sub(r"^ткань\s+", "", trimmed, flags=re.IGNORECASE).strip()
        split = _first_word_split(trimmed, require_color=False)
        if split:
            return split

    if rules.get("texGroupPattern"):
        split = _first_word_split(trimmed)
        if split and re.search(r"\d", split[1]):
            return split

    if rules.get("textilenovaPattern") or rules.get("viptextilPattern"):
        split = _first_word_split(trimmed)
        if split:
            return split

    if not rules.get("textilenovaPattern"):
        match = _DEFAULT_SPLIT.match(trimmed)
        if match:
            return match.group(1).strip(), match.group(2).strip()

    return trimmed, ""


def parse_stock_flag(value: Any) -> bool | None:
    """Map a stock marker to True/False, or None when it is not a marker.

    Numbers are not handled here: a numeric stock cell is a meterage.
    """
    if isinstance(value, bool):
        return value
    if value is None or isinstance(value, (int, float)):
        return None

    text = str(value).strip().lower()
    if not text:
        return None
    if text in _TRUE_MARKERS:
        return True
    if text in _FALSE_MARKERS:
        return False
    return None
