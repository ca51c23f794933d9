"""Supplier parser strategy table.

Parsers are plain functions keyed by supplier kind. Each one reads a
``SourceGrid`` with an ``ExtractionRuleSet`` and feeds rows into a
``RecordCollector``; none of them touches the catalog.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable

from fabricsync.canonical.dates import parse_date
from fabricsync.canonical.prices import (
    detect_currency,
    normalize_price,
    parse_meterage,
    parse_number,
)
from fabricsync.errors import CurrencyMismatchWarning, NormalizationWarning
from fabricsync.models import ExtractionRuleSet
from fabricsync.pipeline.types import FabricRecord, ParseOutcome
from fabricsync.sources.grid import SourceGrid, grid_signature

logger = logging.getLogger(__name__)

ParseFunction = Callable[[SourceGrid, ExtractionRuleSet, "RecordCollector"], None]


@dataclass(frozen=True)
class SupplierParser:
    """Registry entry: how to parse one supplier kind."""

    kind: str
    parse: ParseFunction
    # Rule set used when the supplier has none stored
    preset: ExtractionRuleSet | None = None


# Parser registry (maps supplier kind to entry)
PARSER_REGISTRY: dict[str, SupplierParser] = {}


def register_parser(kind: str, preset: ExtractionRuleSet | None = None):
    """Decorator to register parse functions.

    Usage:
        @register_parser("domiart", preset=DOMIART_RULES)
        def parse_domiart(source, rules, collector):
            ...
    """

    def decorator(func: ParseFunction) -> ParseFunction:
        PARSER_REGISTRY[kind] = SupplierParser(kind=kind, parse=func, preset=preset)
        return func

    return decorator


def get_parser(kind: str) -> SupplierParser:
    """Look up a parser by supplier kind.

    Raises:
        ValueError: If no parser is registered for the kind
    """
    try:
        return PARSER_REGISTRY[kind]
    except KeyError:
        raise ValueError(
            f"Unknown supplier kind: {kind} (known: {', '.join(sorted(PARSER_REGISTRY))})"
        ) from None


_EMPTY = {"", "-", "—", "–"}


class RecordCollector:
    """Accumulates parsed records for one pass.

    - rows without both a collection and a color are counted and dropped
    - a repeated identity key replaces the earlier record (last wins)
    - unparsable prices, meterages and dates become None plus a warning
    """

    def __init__(self, base_currency: str = "RUB"):
        self.base_currency = base_currency
        self._records: dict[tuple[str, str], FabricRecord] = {}
        self.warnings: list[NormalizationWarning] = []
        self.skipped_rows = 0
        self.duplicate_rows = 0

    def _warn(self, field_name: str, raw: Any, row_number: int | None) -> None:
        self.warnings.append(NormalizationWarning(field_name, raw, row_number))

    def price(self, raw: Any, row_number: int | None = None) -> tuple[Decimal | None, str]:
        """Normalize a price cell, returning ``(value, currency)``.

        A price quoted in another currency is dropped with a warning.
        """
        if raw is None or str(raw).strip() in _EMPTY:
            return None, self.base_currency
        value = normalize_price(raw)
        if value is None:
            self._warn("price", raw, row_number)
        currency = detect_currency(raw, default=self.base_currency)
        if value is not None and currency != self.base_currency:
            self.warnings.append(
                CurrencyMismatchWarning(raw, currency, self.base_currency, row_number)
            )
            return None, currency
        return value, currency

    def meterage(self, raw: Any, row_number: int | None = None) -> float | None:
        if raw is None or str(raw).strip() in _EMPTY:
            return None
        value = parse_meterage(raw)
        if value is None and parse_number(raw) != 0:
            self._warn("meterage", raw, row_number)
        return value

    def arrival_date(self, raw: Any, row_number: int | None = None) -> date | None:
        if raw is None or str(raw).strip() in _EMPTY or str(raw).strip().lower() == "нет":
            return None
        value = parse_date(raw)
        if value is None:
            self._warn("nextArrivalDate", raw, row_number)
        return value

    def add(self, record: FabricRecord) -> bool:
        """Keep a record if it has a usable identity key."""
        record.collection = " ".join(record.collection.split()) if record.collection else ""
        record.color_number = " ".join(record.color_number.split()) if record.color_number else ""
        if not record.collection or not record.color_number:
            self.skipped_rows += 1
            return False

        key = record.key
        if key in self._records:
            self.duplicate_rows += 1
            # Re-insert so the record takes the position of its last occurrence
            del self._records[key]
        self._records[key] = record
        return True

    def skip(self) -> None:
        self.skipped_rows += 1

    @property
    def records(self) -> list[FabricRecord]:
        return list(self._records.values())


def parse_grid(
    kind: str,
    source: SourceGrid,
    rules: ExtractionRuleSet | None = None,
    base_currency: str = "RUB",
) -> ParseOutcome:
    """Run the parser for ``kind`` over a grid.

    Falls back to the kind's preset rules when ``rules`` is None.

    Raises:
        ValueError: Unknown supplier kind, or no rules and no preset
    """
    parser = get_parser(kind)
    effective = rules or parser.preset
    if effective is None:
        raise ValueError(f"Parser '{kind}' needs an extraction rule set")

    collector = RecordCollector(base_currency=base_currency)
    parser.parse(source, effective, collector)

    outcome = ParseOutcome(
        records=collector.records,
        warnings=collector.warnings,
        skipped_rows=collector.skipped_rows,
        duplicate_rows=collector.duplicate_rows,
        sheet_names=list(source.available_names),
        signature=grid_signature(source),
    )

    logger.info(
        f"Parsed {len(outcome.records)} records with '{kind}' "
        f"({outcome.skipped_rows} rows skipped, {outcome.duplicate_rows} duplicates, "
        f"{len(outcome.warnings)} normalization warnings)"
    )
    for warning in outcome.warnings[:20]:
        logger.warning(str(warning))

    return outcome
