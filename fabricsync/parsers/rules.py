"""Rule-driven extraction.

Applies a stored ``ExtractionRuleSet`` uniformly over a grid: fixed column
indices per role, 1-based skip rows, substring skip patterns and the
supplier's ``specialRules`` text transforms.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from fabricsync.canonical.prices import parse_number
from fabricsync.canonical.text import parse_stock_flag, split_collection_color
from fabricsync.models import ExtractionRuleSet
from fabricsync.parsers.base import RecordCollector, register_parser
from fabricsync.pipeline.types import FabricRecord
from fabricsync.sources.grid import Grid, SourceGrid, cell, is_blank

logger = logging.getLogger(__name__)


def iter_data_rows(
    rows: Grid, rules: ExtractionRuleSet, key_column: int | None = None
) -> Iterator[tuple[int, list[str], str]]:
    """Yield ``(row_number, row, key_text)`` for rows the rules do not skip.

    ``key_text`` is the cell holding the collection (and often the color).
    ``specialRules.stopPatterns`` ends the scan at the first matching row.
    """
    skip = set(rules.skip_rows)
    header_row = rules.header_row or 0
    if key_column is None:
        key_column = rules.column_mappings.collection or 0
    patterns = [p.lower() for p in rules.skip_patterns if p]
    stop_patterns = [p.lower() for p in rules.special_rules.get("stopPatterns", []) if p]

    for index, row in enumerate(rows):
        row_number = index + 1
        if row_number in skip or row_number <= header_row or is_blank(row):
            continue

        text = cell(row, key_column)
        lowered = text.lower()
        if stop_patterns and any(p in lowered for p in stop_patterns):
            logger.debug(f"Stop marker at row {row_number}: {text!r}")
            return
        if not text or any(p in lowered for p in patterns):
            continue

        yield row_number, row, text


def stock_from_cell(text: str) -> bool | None:
    """Stock flag from a stock column: markers first, then a quantity."""
    flag = parse_stock_flag(text)
    if flag is not None or not text:
        return flag
    number = parse_number(text.lstrip("<>~ "))
    if number is None:
        return None
    return number > 0


def extract_with_rules(
    rows: Grid, rules: ExtractionRuleSet, collector: RecordCollector
) -> None:
    mappings = rules.column_mappings

    for row_number, row, text in iter_data_rows(rows, rules):
        if mappings.color is not None:
            collection, color = text, cell(row, mappings.color)
        else:
            collection, color = split_collection_color(text, rules.special_rules)

        price, currency = collector.price(cell(row, mappings.price) or None, row_number)
        comment = cell(row, mappings.comment)

        collector.add(
            FabricRecord(
                collection=collection,
                color_number=color,
                in_stock=stock_from_cell(cell(row, mappings.in_stock)),
                meterage=collector.meterage(cell(row, mappings.meterage), row_number),
                price=price,
                currency=currency,
                comment=comment or None,
                next_arrival_date=collector.arrival_date(
                    cell(row, mappings.next_arrival_date), row_number
                ),
                row_number=row_number,
            )
        )


@register_parser("rules")
def parse_with_rules(
    source: SourceGrid, rules: ExtractionRuleSet, collector: RecordCollector
) -> None:
    """Generic parser: every selected sheet through the same column mapping."""
    for sheet in source.select(rules.special_rules.get("sheetNames")):
        logger.debug(f"Extracting sheet {sheet.name!r} ({len(sheet.rows)} rows)")
        extract_with_rules(sheet.rows, rules, collector)
