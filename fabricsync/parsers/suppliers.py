"""Heuristic parsers for suppliers whose layouts fixed columns cannot express.

Each function documents the stock semantics of its supplier. Suppliers whose
lists fit a plain column mapping are registered at the bottom with the
generic rule-driven parser and their preset.
"""

from __future__ import annotations

import logging
import re

from fabricsync.canonical.dates import looks_like_date
from fabricsync.canonical.prices import parse_meterage
from fabricsync.canonical.text import parse_stock_flag, split_collection_color
from fabricsync.inference.auto_rules import PRESETS
from fabricsync.models import ExtractionRuleSet
from fabricsync.parsers.base import RecordCollector, register_parser
from fabricsync.parsers.rules import iter_data_rows, parse_with_rules
from fabricsync.pipeline.types import FabricRecord
from fabricsync.sources.grid import Grid, SourceGrid, cell

logger = logging.getLogger(__name__)

# Meterage recorded when a supplier only says "more than 100 m"
NORTEX_STOCK_SENTINEL = 100.0
# Meterage recorded for ">" without a readable number
VEKTOR_OPEN_ENDED_METERAGE = 300.0
TEXTILEDATA_IN_STOCK_ABOVE = 10.0

LIMITED_STOCK_COMMENT = "ВНИМАНИЕ, МАЛО!"
ROLL_SIZE_PREFIX = "Максимальный размер ролика"

_CHECK_MARKS = {"v", "✓", "✔", "true"}


def _find_nortex_stock_column(rows: Grid, default: int = 5) -> int:
    """Column F sits right of the header cell reading "пог.м"."""
    for row in rows[:10]:
        for index, text in enumerate(row):
            lowered = text.strip().lower()
            if "пог.м" in lowered or "пог м" in lowered:
                return index + 1
    return default


@register_parser("nortex", preset=PRESETS["nortex"])
def parse_nortex(source: SourceGrid, rules: ExtractionRuleSet, collector: RecordCollector) -> None:
    """Nortex workbook: "Ткань Collection Color" in column C, stock over E/F/G.

    - G populated: in stock, more than 100 m (sentinel meterage)
    - F "V": in stock; F a number: in stock with that meterage
    - F a date or month: out of stock, expected then
    - F other text: out of stock, text kept as comment
    - E "V" (nothing in F/G): in stock under 100 m
    - all empty: out of stock, no ETA
    """
    for sheet in source.select(rules.special_rules.get("sheetNames")):
        stock_col = _find_nortex_stock_column(sheet.rows)

        for row_number, row, text in iter_data_rows(sheet.rows, rules):
            if "ткань" not in text.lower():
                collector.skip()
                continue

            collection, color = split_collection_color(text, rules.special_rules)
            record = FabricRecord(
                collection=collection, color_number=color, in_stock=False, row_number=row_number
            )

            e_value = cell(row, stock_col - 1)
            f_value = cell(row, stock_col)
            g_value = cell(row, stock_col + 1)

            if g_value:
                record.in_stock = True
                record.meterage = NORTEX_STOCK_SENTINEL
            elif f_value:
                if f_value.lower() in _CHECK_MARKS:
                    record.in_stock = True
                elif looks_like_date(f_value):
                    record.next_arrival_date = collector.arrival_date(f_value, row_number)
                    record.comment = f_value
                elif re.fullmatch(r"[<>]?\s*\d+([.,]\d+)?", f_value):
                    record.meterage = parse_meterage(f_value)
                    record.in_stock = bool(record.meterage)
                else:
                    record.comment = f_value
            elif e_value.lower() in _CHECK_MARKS:
                record.in_stock = True

            collector.add(record)


_TEXTILENOVA_LEGEND = ("больше", "метров")


@register_parser("textilenova", preset=PRESETS["textilenova"])
def parse_textilenova(
    source: SourceGrid, rules: ExtractionRuleSet, collector: RecordCollector
) -> None:
    """TextileNova: A name, B stock marker, C next arrival.

    A row with an empty B and no digits in A opens a collection section;
    following rows are prefixed with it unless they already start with it.
    Markers: "+" in stock, "ограничено" in stock but limited, "нет" out.
    """
    mappings = rules.column_mappings
    stock_col = mappings.in_stock if mappings.in_stock is not None else 1
    arrival_col = mappings.next_arrival_date if mappings.next_arrival_date is not None else 2

    for sheet in source.select(rules.special_rules.get("sheetNames")):
        current_collection = ""

        for row_number, row, text in iter_data_rows(sheet.rows, rules):
            lowered = text.lower()
            if any(word in lowered for word in _TEXTILENOVA_LEGEND):
                continue

            stock_text = cell(row, stock_col)
            if not stock_text:
                if not re.search(r"\d", text):
                    current_collection = text
                continue

            stock_lower = stock_text.lower()
            if "+" not in stock_text and any(word in stock_lower for word in _TEXTILENOVA_LEGEND):
                continue

            in_stock = None
            comment = None
            if "+" in stock_text:
                in_stock = True
            elif "ограничен" in stock_lower:
                in_stock = True
                comment = LIMITED_STOCK_COMMENT
            elif "нет" in stock_lower:
                in_stock = False

            full_text = text
            if current_collection and not lowered.startswith(current_collection.lower()):
                full_text = f"{current_collection} {text}"

            collection, color = split_collection_color(full_text, rules.special_rules)
            collector.add(
                FabricRecord(
                    collection=collection,
                    color_number=color,
                    in_stock=in_stock,
                    comment=comment,
                    next_arrival_date=collector.arrival_date(cell(row, arrival_col), row_number),
                    row_number=row_number,
                )
            )


_VIPTEXTIL_HEADERS = ("номенклатура", "итого", "остатки на:", "искусственная", "кожа иск")
_VIPTEXTIL_SECTIONS = {"ткани", "жакард", "шенилл", "остатки", "итого", "компаньон", "основа"}


@register_parser("viptextil", preset=PRESETS["viptextil"])
def parse_viptextil(
    source: SourceGrid, rules: ExtractionRuleSet, collector: RecordCollector
) -> None:
    """VipTextil HTML table: first word of column 1 is the collection.

    Only "есть в наличии" means in stock; any other note ("уточнять наличие
    по звонку") is out of stock with the note as comment. Rows with an empty
    second column or a single word are collection headings.
    """
    stock_col = rules.column_mappings.in_stock if rules.column_mappings.in_stock is not None else 1

    for row_number, row, text in iter_data_rows(source.rows, rules):
        lowered = text.lower()
        if any(h in lowered for h in _VIPTEXTIL_HEADERS) or lowered in _VIPTEXTIL_SECTIONS:
            collector.skip()
            continue

        stock_text = cell(row, stock_col)
        if not stock_text or len(text.split()) < 2:
            collector.skip()
            continue

        collection, color = split_collection_color(text, rules.special_rules)
        in_stock = "есть в наличии" in stock_text.lower()
        collector.add(
            FabricRecord(
                collection=collection,
                color_number=color,
                in_stock=in_stock,
                comment=None if in_stock else stock_text,
                row_number=row_number,
            )
        )


_VEKTOR_UNITS = {"пог.м", "шт"}


@register_parser("vektor", preset=PRESETS["vektor"])
def parse_vektor(source: SourceGrid, rules: ExtractionRuleSet, collector: RecordCollector) -> None:
    """Vektor workbook: stops at the "ФУРНИТУРА" section.

    Only rows whose unit column (E) reads "пог.м" or "шт" are fabrics. The
    stock column holds a meterage, ">N" (at least N meters) or "по запросу"
    (out of stock).
    """
    stock_col = rules.column_mappings.in_stock if rules.column_mappings.in_stock is not None else 5
    unit_col = int(rules.special_rules.get("unitColumn", 4))

    for row_number, row, text in iter_data_rows(source.rows, rules):
        if cell(row, unit_col) not in _VEKTOR_UNITS:
            collector.skip()
            continue

        collection, color = split_collection_color(text, rules.special_rules)
        record = FabricRecord(collection=collection, color_number=color, row_number=row_number)

        stock_text = cell(row, stock_col).lower()
        if "по запросу" in stock_text:
            record.in_stock = False
        elif stock_text.startswith(">"):
            record.meterage = parse_meterage(stock_text) or VEKTOR_OPEN_ENDED_METERAGE
            record.in_stock = True
        elif stock_text:
            record.meterage = parse_meterage(stock_text)
            if record.meterage:
                record.in_stock = True

        collector.add(record)


@register_parser("textiledata", preset=PRESETS["textiledata"])
def parse_textiledata(
    source: SourceGrid, rules: ExtractionRuleSet, collector: RecordCollector
) -> None:
    """TextileData HTML table: stock is decided by meterage alone.

    More than 10 m is in stock; 10 m or less, "-" or no digits is out of
    stock. A ">"/"<" meterage keeps its original text in the comment, and a
    numeric comment is the maximum roll size.
    """
    mappings = rules.column_mappings
    special_rules = {**rules.special_rules, "removeUnderscoreBackslash": True, "colorOnlyNumbers": True}

    for row_number, row, text in iter_data_rows(source.rows, rules):
        collection, color = split_collection_color(text, special_rules)
        record = FabricRecord(
            collection=collection, color_number=color, in_stock=False, row_number=row_number
        )

        meterage_text = cell(row, mappings.meterage)
        comments: list[str] = []
        if meterage_text and meterage_text != "-":
            record.meterage = parse_meterage(meterage_text)
            if record.meterage is not None:
                record.in_stock = record.meterage > TEXTILEDATA_IN_STOCK_ABOVE
                if re.search(r"[<>]", meterage_text):
                    comments.append(meterage_text)

        comment_text = cell(row, mappings.comment)
        if comment_text:
            if re.search(r"\d", comment_text):
                comments.append(f"{ROLL_SIZE_PREFIX} {comment_text}")
            else:
                comments.append(comment_text)

        record.comment = ". ".join(comments) or None
        record.next_arrival_date = collector.arrival_date(
            cell(row, mappings.next_arrival_date), row_number
        )
        collector.add(record)


@register_parser("domiart", preset=PRESETS["domiart"])
def parse_domiart(source: SourceGrid, rules: ExtractionRuleSet, collector: RecordCollector) -> None:
    """Domiart workbook: "+" / "много" in stock; "-", "нет", "+/-", "мало" out."""
    mappings = rules.column_mappings

    for row_number, row, text in iter_data_rows(source.rows, rules):
        stock_text = cell(row, mappings.in_stock).lower()
        if stock_text in ("+/-", "мало"):
            in_stock = False
        else:
            in_stock = parse_stock_flag(stock_text)

        collection, color = split_collection_color(text, rules.special_rules)
        collector.add(
            FabricRecord(
                collection=collection,
                color_number=color,
                in_stock=in_stock,
                next_arrival_date=collector.arrival_date(
                    cell(row, mappings.next_arrival_date), row_number
                ),
                row_number=row_number,
            )
        )


_EGIDA_STATUSES = {"в наличии": True, "мало": True, "нет в наличии": False, "нет": False}
_EGIDA_STATUS_NOTES = {"есть в наличии", "мало", "нет в наличии"}
EGIDA_WAREHOUSE_PREFIX = "На складе в Казани"


@register_parser("egida", preset=PRESETS["egida"])
def parse_egida(source: SourceGrid, rules: ExtractionRuleSet, collector: RecordCollector) -> None:
    """Egida workbook: A "Collection 12", B stock status, C warehouse note, D arrival.

    Only rows whose B cell is a known status are fabrics; "мало" is in stock
    with a low-stock comment. A row whose A cell is itself a status is a
    misplaced header and is skipped.
    """
    mappings = rules.column_mappings
    stock_col = mappings.in_stock if mappings.in_stock is not None else 1
    note_col = mappings.comment if mappings.comment is not None else 2
    arrival_col = mappings.next_arrival_date if mappings.next_arrival_date is not None else 3

    for row_number, row, text in iter_data_rows(source.rows, rules):
        status = cell(row, stock_col).lower()
        if text.lower() in _EGIDA_STATUSES or status not in _EGIDA_STATUSES:
            collector.skip()
            continue

        comments: list[str] = []
        if status == "мало":
            comments.append(LIMITED_STOCK_COMMENT)
        note = cell(row, note_col)
        if note and note.lower() not in _EGIDA_STATUS_NOTES:
            comments.append(f"{EGIDA_WAREHOUSE_PREFIX} {note}")

        collection, color = split_collection_color(text, rules.special_rules)
        collector.add(
            FabricRecord(
                collection=collection,
                color_number=color,
                in_stock=_EGIDA_STATUSES[status],
                comment=". ".join(comments) or None,
                next_arrival_date=collector.arrival_date(cell(row, arrival_col), row_number),
                row_number=row_number,
            )
        )


_NUMBERED_SECTION = re.compile(r"^\d+_")


@register_parser("artefact", preset=PRESETS["artefact"])
def parse_artefact(
    source: SourceGrid, rules: ExtractionRuleSet, collector: RecordCollector
) -> None:
    """Artefact workbook: A name, C meterage, D comment, F next arrival.

    Numbered section headings ("1_Ткани") and rows without a meterage are
    skipped; the accessories section ends the list. C reads "нет" (out of
    stock), "много" (in stock, amount unknown) or meters. Any other text is
    out of stock and kept as the comment.
    """
    mappings = rules.column_mappings
    meterage_col = mappings.meterage if mappings.meterage is not None else 2

    for row_number, row, text in iter_data_rows(source.rows, rules):
        meterage_text = cell(row, meterage_col)
        if _NUMBERED_SECTION.match(text) or not meterage_text:
            collector.skip()
            continue

        collection, color = split_collection_color(text, rules.special_rules)
        record = FabricRecord(
            collection=collection, color_number=color, in_stock=False, row_number=row_number
        )

        comments: list[str] = []
        lowered = meterage_text.lower()
        if lowered == "много":
            record.in_stock = True
        elif lowered != "нет":
            meterage = parse_meterage(meterage_text) if re.match(r"\d", lowered) else None
            if meterage:
                record.meterage = meterage
                record.in_stock = True
            else:
                comments.append(meterage_text)

        note = cell(row, mappings.comment)
        if note:
            comments.append(note)
        record.comment = ". ".join(comments) or None
        record.next_arrival_date = collector.arrival_date(
            cell(row, mappings.next_arrival_date), row_number
        )
        collector.add(record)


@register_parser("ametist", preset=PRESETS["ametist"])
def parse_ametist(source: SourceGrid, rules: ExtractionRuleSet, collector: RecordCollector) -> None:
    """Ametist workbook: C collection, E color, G meterage ("м" in H), J arrival."""
    mappings = rules.column_mappings
    color_col = mappings.color if mappings.color is not None else 4
    meterage_col = mappings.meterage if mappings.meterage is not None else 6

    for row_number, row, text in iter_data_rows(source.rows, rules):
        record = FabricRecord(
            collection=text, color_number=cell(row, color_col), row_number=row_number
        )

        meterage_text = cell(row, meterage_col)
        lowered = meterage_text.lower()
        if "нет" in lowered or "не в наличии" in lowered:
            record.in_stock = False
        elif meterage_text:
            record.meterage = collector.meterage(meterage_text, row_number)
            if record.meterage:
                record.in_stock = True

        record.next_arrival_date = collector.arrival_date(
            cell(row, mappings.next_arrival_date), row_number
        )
        collector.add(record)


_HAS_LETTER = re.compile(r"[A-Za-zА-Яа-яЁё]")
TEXGROUP_LOW_STOCK_COMMENT = "мало"


@register_parser("texgroup", preset=PRESETS["texgroup"])
def parse_texgroup(
    source: SourceGrid, rules: ExtractionRuleSet, collector: RecordCollector
) -> None:
    """Tex.Group workbook: B "Collection 123 color", D stock.

    Only B cells holding both letters and digits are fabrics. D "есть" means
    a little is left; a number is the meterage in stock. Anything else
    leaves stock unknown.
    """
    stock_col = rules.column_mappings.in_stock if rules.column_mappings.in_stock is not None else 3

    for row_number, row, text in iter_data_rows(source.rows, rules):
        if not (_HAS_LETTER.search(text) and re.search(r"\d", text)):
            collector.skip()
            continue

        collection, color = split_collection_color(text, rules.special_rules)
        record = FabricRecord(collection=collection, color_number=color, row_number=row_number)

        stock_text = cell(row, stock_col)
        if stock_text.lower() == "есть":
            record.in_stock = True
            record.comment = TEXGROUP_LOW_STOCK_COMMENT
        else:
            quantity = re.search(r"\d+(?:[.,]\d+)?", stock_text)
            record.meterage = parse_meterage(quantity.group(0)) if quantity else None
            if record.meterage:
                record.in_stock = True

        collector.add(record)


# Layouts a fixed column mapping covers
for _kind in ("artvision", "souzm", "arteks", "noframes"):
    register_parser(_kind, preset=PRESETS[_kind])(parse_with_rules)
