"""The two-dimensional cell grid every source adapter produces."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Sequence

from fabricsync.errors import SourceFormatError

Grid = list[list[str]]

# Report boilerplate that does not count as data when validating a workbook
_NOISE_MARKERS = ("отчет создан", "ед.изм.")


@dataclass
class Sheet:
    """One worksheet or HTML table."""

    name: str
    rows: Grid = field(default_factory=list)


@dataclass
class SourceGrid:
    """Grid(s) extracted from one raw document.

    ``available_names`` lists every worksheet or table the document holds,
    including ones not selected into ``sheets``.
    """

    sheets: list[Sheet]
    available_names: list[str] = field(default_factory=list)

    @property
    def rows(self) -> Grid:
        """Rows of the first selected sheet."""
        return self.sheets[0].rows if self.sheets else []

    def select(self, names: Sequence[str] | None) -> list[Sheet]:
        """Sheets whose names overlap any of ``names`` (substring either way).

        Falls back to the first sheet when ``names`` is empty or matches nothing.
        """
        if names:
            wanted = [n.strip() for n in names if n and n.strip()]
            matched = [
                sheet
                for sheet in self.sheets
                if any(w in sheet.name or sheet.name in w for w in wanted)
            ]
            if matched:
                return matched
        return self.sheets[:1]


def cell(row: Sequence[str], index: int | None) -> str:
    """Trimmed cell text, empty for unmapped or missing columns."""
    if index is None or index < 0 or index >= len(row):
        return ""
    value = row[index]
    return value.strip() if value else ""


def is_blank(row: Sequence[str]) -> bool:
    return not any(c and c.strip() for c in row)


def has_data_rows(grid: Grid) -> bool:
    """True when at least one row holds two or more meaningful cells."""
    for row in grid:
        filled = [
            c
            for c in row
            if c
            and c.strip()
            and not any(marker in c.lower() for marker in _NOISE_MARKERS)
            and c.strip() != "пог. м"
        ]
        if len(filled) >= 2:
            return True
    return False


def ensure_has_data(source: SourceGrid, source_name: str) -> None:
    """Reject attachments that hold only headers or blank rows."""
    if not any(has_data_rows(sheet.rows) for sheet in source.sheets):
        raise SourceFormatError(
            f"Document from {source_name} contains no data rows",
            found_names=source.available_names,
        )


def grid_signature(source: SourceGrid) -> str:
    """Short fingerprint of the document layout.

    Built from the widest row, the first non-empty row and the sheet names,
    so a supplier reshuffling columns changes the signature while a change in
    values does not.
    """
    rows = source.rows
    width = max((len(r) for r in rows), default=0)
    first = next((r for r in rows if not is_blank(r)), [])
    parts = [
        str(width),
        "|".join(c.strip().lower() for c in first),
        "|".join(source.available_names),
    ]
    return hashlib.sha1("\n".join(parts).encode("utf-8")).hexdigest()[:16]
