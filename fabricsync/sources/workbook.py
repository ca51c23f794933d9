"""Excel workbook adapter (.xlsx via openpyxl, legacy .xls via xlrd).

Sheets are read with ``header=None`` so every row, including headers and
titles, lands in the grid; missing and merged cells become empty strings.
"""

from __future__ import annotations

import io
import logging
import math
from datetime import date, datetime
from typing import Any

import pandas as pd

from fabricsync.errors import SourceFormatError, SourceUnavailable
from fabricsync.sources.grid import Grid, Sheet, SourceGrid

logger = logging.getLogger(__name__)

# OLE2 compound document header used by .xls files
XLS_MAGIC = b"\xd0\xcf\x11\xe0"


def cell_to_text(value: Any) -> str:
    """Render a workbook cell value as grid text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (pd.Timestamp, datetime)):
        if pd.isna(value):
            return ""
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def _frame_to_grid(frame: pd.DataFrame) -> Grid:
    grid: Grid = []
    for values in frame.itertuples(index=False, name=None):
        row = [cell_to_text(v) for v in values]
        # Trailing blanks carry no column information
        while row and not row[-1]:
            row.pop()
        grid.append(row)
    return grid


def _engine_for(content: bytes) -> str:
    return "xlrd" if content.startswith(XLS_MAGIC) else "openpyxl"


def read_workbook(
    content: bytes,
    *,
    source: str = "workbook",
    sheet_name: str | None = None,
) -> SourceGrid:
    """Read all worksheets of a workbook into grids.

    Args:
        content: Workbook bytes
        source: Name used in error messages
        sheet_name: Restrict the result to this worksheet

    Raises:
        SourceUnavailable: The bytes are not a readable workbook
        SourceFormatError: ``sheet_name`` does not exist in the workbook
    """
    engine = _engine_for(content)
    try:
        frames: dict[str, pd.DataFrame] = pd.read_excel(
            io.BytesIO(content),
            sheet_name=None,
            header=None,
            dtype=object,
            engine=engine,
        )
    except Exception as exc:
        raise SourceUnavailable(source, f"cannot open workbook ({engine}): {exc}") from exc

    names = [str(name) for name in frames]
    if not names:
        raise SourceFormatError(f"Workbook {source} has no worksheets")

    if sheet_name is not None:
        wanted = sheet_name.strip().lower()
        chosen = [n for n in names if n.strip().lower() == wanted]
        if not chosen:
            raise SourceFormatError(
                f"Worksheet '{sheet_name}' not found in {source}", found_names=names
            )
        names_to_read = chosen
    else:
        names_to_read = names

    sheets = [
        Sheet(name=name, rows=_frame_to_grid(frames[name])) for name in names_to_read
    ]
    logger.info(
        f"Read workbook {source}: sheets={names}, rows={[len(s.rows) for s in sheets]}"
    )
    return SourceGrid(sheets=sheets, available_names=names)
