"""HTML table adapter."""

from __future__ import annotations

import logging

import lxml.html
from lxml import etree

from fabricsync.errors import SourceFormatError
from fabricsync.sources.grid import Grid, Sheet, SourceGrid

logger = logging.getLogger(__name__)


def _cell_text(element) -> str:
    return " ".join(element.text_content().split())


def _table_name(table, index: int) -> str:
    return table.get("id") or table.get("class") or f"table[{index}]"


def _table_rows(table) -> Grid:
    rows: Grid = []
    # Rows of nested tables belong to those tables, not this one
    for tr in table.iter("tr"):
        if next(tr.iterancestors("table"), None) is not table:
            continue
        cells: list[str] = []
        for td in tr.xpath("./td|./th"):
            cells.append(_cell_text(td))
            try:
                span = int(td.get("colspan", "1"))
            except ValueError:
                span = 1
            # Keep later columns aligned under merged header cells
            cells.extend([""] * (max(span, 1) - 1))
        rows.append(cells)
    return rows


def parse_html_tables(
    html: str | bytes,
    *,
    table_index: int = 0,
    table_id: str | None = None,
) -> SourceGrid:
    """Extract one ``<table>`` as a grid: a row per ``<tr>``, a cell per ``<td>``/``<th>``.

    Args:
        html: Page markup
        table_index: Which table to take when no id is given
        table_id: Select the table by its ``id`` attribute

    Raises:
        SourceFormatError: No table, or the requested table does not exist
    """
    try:
        document = lxml.html.fromstring(html)
    except (etree.ParserError, ValueError) as exc:
        raise SourceFormatError(f"Unparsable HTML document: {exc}") from exc

    tables = document.xpath("//table")
    names = [_table_name(t, i) for i, t in enumerate(tables)]

    if table_id is not None:
        selected = [t for t in tables if t.get("id") == table_id]
        if not selected:
            raise SourceFormatError(f"HTML table '{table_id}' not found", found_names=names)
        table, index = selected[0], tables.index(selected[0])
    else:
        if table_index >= len(tables):
            raise SourceFormatError(
                f"HTML table #{table_index} not found ({len(tables)} tables on page)",
                found_names=names,
            )
        table, index = tables[table_index], table_index

    rows = _table_rows(table)
    logger.debug(f"HTML table {names[index]}: {len(rows)} rows")
    return SourceGrid(sheets=[Sheet(name=names[index], rows=rows)], available_names=names)
