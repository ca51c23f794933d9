"""Rule inference for suppliers without a stored rule set.

Scans the first rows of a sample grid for the header row (the row matching
the most distinct column roles by keyword), derives column indices from it,
and returns a provisional rule set. Operators confirm or correct it through
the question/answer flow (``build_questions`` / ``apply_answers``).

Keyword headers are a known weak spot: abbreviations and merged header cells
defeat them, which is why inferred rules stay unconfirmed until answered.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from fabricsync.errors import RuleMissingError
from fabricsync.models import ColumnMappings, ColumnRole, ExtractionRuleSet
from fabricsync.sources.grid import Grid, is_blank

logger = logging.getLogger(__name__)

# Checked in this order; the first role whose keyword occurs in a header cell wins
ROLE_KEYWORDS: list[tuple[ColumnRole, tuple[str, ...]]] = [
    (ColumnRole.NEXT_ARRIVAL_DATE, ("дата", "поступлен", "приход", "ожида", "arrival", "eta")),
    (ColumnRole.PRICE, ("цена", "стоимость", "price", "руб")),
    (ColumnRole.COMMENT, ("комментар", "примечан", "comment", "note", "ролик")),
    (ColumnRole.COLLECTION, ("коллекция", "collection", "номенклатура", "наименование", "товар", "ткань")),
    (ColumnRole.COLOR, ("цвет", "color", "colour", "номер")),
    (ColumnRole.IN_STOCK, ("наличие", "наличии", "in stock", "availability")),
    (ColumnRole.METERAGE, ("метраж", "остаток", "остатки", "stock", "пог.м", "пог. м", "кол-во", "количество", "qty")),
]

QUESTION_ROLES: list[tuple[str, ColumnRole, str]] = [
    ("collection-column", ColumnRole.COLLECTION, "В какой колонке название коллекции (и цвета)?"),
    ("color-column", ColumnRole.COLOR, "В какой колонке номер цвета, если он отдельно?"),
    ("stock-column", ColumnRole.IN_STOCK, "В какой колонке наличие?"),
    ("meterage-column", ColumnRole.METERAGE, "В какой колонке метраж / остаток?"),
    ("price-column", ColumnRole.PRICE, "В какой колонке цена?"),
    ("arrival-column", ColumnRole.NEXT_ARRIVAL_DATE, "В какой колонке дата поступления?"),
    ("comment-column", ColumnRole.COMMENT, "В какой колонке комментарий?"),
]

NO_COLUMN = "Нет"


def _preset(
    mappings: dict[str, int],
    special_rules: dict[str, Any] | None = None,
    header_row: int | None = 1,
    skip_patterns: list[str] | None = None,
) -> ExtractionRuleSet:
    return ExtractionRuleSet(
        column_mappings=ColumnMappings.model_validate(mappings),
        skip_rows=list(range(1, header_row + 1)) if header_row else [],
        header_row=header_row,
        skip_patterns=skip_patterns or [],
        special_rules=special_rules or {},
        origin="preset",
        confirmed=True,
    )


# Hand-written rule sets for known supplier layouts
PRESETS: dict[str, ExtractionRuleSet] = {
    "artvision": _preset(
        {"collection": 0, "inStock": 1, "meterage": 2, "nextArrivalDate": 3},
        {"artvisionDashPattern": True},
    ),
    "souzm": _preset({"collection": 1, "inStock": 2, "nextArrivalDate": 3, "comment": 4}),
    "domiart": _preset(
        {"collection": 0, "inStock": 1, "nextArrivalDate": 2},
        {"alfa2303Pattern": True},
    ),
    "arteks": _preset(
        {"collection": 0, "inStock": 1, "nextArrivalDate": 2},
        {"removeFurnitureText": True},
    ),
    "textiledata": _preset(
        {"collection": 0, "meterage": 1, "comment": 2, "nextArrivalDate": 3},
        {"removeUnderscoreBackslash": True, "colorOnlyNumbers": True},
    ),
    "noframes": _preset(
        {"collection": 1, "inStock": 3, "nextArrivalDate": 4},
        {"removeFurnitureText": True, "removeQuotes": True},
        header_row=6,
    ),
    "nortex": _preset(
        {"collection": 2},
        {"nortexPattern": True, "removeTkanPrefix": True},
        header_row=10,
        skip_patterns=["пог. м", "Ед.изм.", "отчет создан"],
    ),
    "textilenova": _preset(
        {"collection": 0, "inStock": 1, "nextArrivalDate": 2},
        {"textilenovaPattern": True},
        header_row=None,
        skip_patterns=["остатки"],
    ),
    "viptextil": _preset(
        {"collection": 0, "inStock": 1},
        {"viptextilPattern": True},
        header_row=None,
    ),
    "vektor": _preset(
        {"collection": 0, "inStock": 5},
        {"removeKozhZam": True, "vektorPattern": True, "stopPatterns": ["ФУРНИТУРА"]},
    ),
    "egida": _preset(
        {"collection": 0, "inStock": 1, "comment": 2, "nextArrivalDate": 3},
        {"egidaPattern": True},
        header_row=None,
    ),
    "artefact": _preset(
        {"collection": 0, "meterage": 2, "comment": 3, "nextArrivalDate": 5},
        {"artefactPattern": True, "stopPatterns": ["3_Материалы сопутствующие"]},
        header_row=None,
        skip_patterns=["номенклатура", "артефакт", "москва", "www.artefakt"],
    ),
    "ametist": _preset({"collection": 2, "color": 4, "meterage": 6, "nextArrivalDate": 9}),
    "texgroup": _preset({"collection": 1, "inStock": 3}, {"texGroupPattern": True}),
}


def get_preset(kind: str) -> ExtractionRuleSet | None:
    preset = PRESETS.get(kind)
    return preset.model_copy(deep=True) if preset is not None else None


def classify_header_cell(text: str) -> ColumnRole | None:
    lowered = text.strip().lower()
    if not lowered:
        return None
    for role, keywords in ROLE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return role
    return None


def _header_roles(row: list[str]) -> dict[ColumnRole, int]:
    roles: dict[ColumnRole, int] = {}
    for index, text in enumerate(row):
        role = classify_header_cell(text)
        if role is not None and role not in roles:
            roles[role] = index
    return roles


def find_header_row(grid: Grid, scan_rows: int = 15) -> tuple[int | None, dict[ColumnRole, int]]:
    """Locate the most header-like row among the first ``scan_rows`` rows.

    Returns:
        ``(row_number, roles)`` with a 1-based row number, or ``(None, {})``
    """
    best_row: int | None = None
    best_roles: dict[ColumnRole, int] = {}

    for index, row in enumerate(grid[:scan_rows]):
        if is_blank(row):
            continue
        roles = _header_roles(row)
        # Strictly greater: ties keep the earlier row
        if len(roles) > len(best_roles):
            best_row, best_roles = index + 1, roles

    return best_row, best_roles


def infer_rule_set(grid: Grid, supplier: str = "", scan_rows: int = 15) -> ExtractionRuleSet:
    """Infer a provisional rule set from a sample grid.

    Raises:
        RuleMissingError: No header row, or no collection column could be found
    """
    header_row, roles = find_header_row(grid, scan_rows)
    if header_row is None:
        raise RuleMissingError(
            supplier, f"no header row found in the first {scan_rows} rows"
        )

    if ColumnRole.COLLECTION not in roles and ColumnRole.COLOR in roles:
        # A lone "цвет"/"номер" column usually holds the compound name
        roles[ColumnRole.COLLECTION] = roles.pop(ColumnRole.COLOR)

    mappings = ColumnMappings.model_validate({role.value: index for role, index in roles.items()})
    provisional = ExtractionRuleSet(
        column_mappings=mappings,
        skip_rows=list(range(1, header_row + 1)),
        header_row=header_row,
        origin="inferred",
        confirmed=False,
    )

    if mappings.collection is None:
        raise RuleMissingError(
            supplier, "no collection column recognised", provisional_rules=provisional
        )

    logger.info(
        f"Inferred rules for {supplier or 'supplier'}: header row {header_row}, "
        f"columns {mappings.as_dict()}"
    )
    return provisional


@dataclass
class Question:
    """One step of the guided rule refinement."""

    id: str
    question: str
    type: str
    options: list[str] = field(default_factory=list)
    default: str | None = None


def column_label(index: int) -> str:
    """``2 -> "Колонка 3 (C)"``; letters run A..Z then AA.."""
    letters = ""
    number = index + 1
    while number:
        number, remainder = divmod(number - 1, 26)
        letters = chr(65 + remainder) + letters
    return f"Колонка {index + 1} ({letters})"


def column_from_answer(answer: Any) -> int | None:
    """Parse a column answer: an index, a letter, or a ``column_label`` string."""
    if answer is None:
        return None
    if isinstance(answer, bool):
        raise ValueError(f"Not a column: {answer!r}")
    if isinstance(answer, int):
        return answer
    text = str(answer).strip()
    if not text or text.lower() in ("нет", "none", "-", NO_COLUMN.lower()):
        return None
    label = re.match(r"^Колонка\s+(\d+)", text)
    if label:
        return int(label.group(1)) - 1
    if re.fullmatch(r"[A-Za-z]{1,2}", text):
        index = 0
        for char in text.upper():
            index = index * 26 + (ord(char) - 64)
        return index - 1
    if text.isdigit():
        return int(text)
    raise ValueError(f"Not a column: {answer!r}")


def build_questions(grid: Grid, provisional: ExtractionRuleSet | None = None) -> list[Question]:
    """Questions for the operator, pre-filled from the provisional rules."""
    width = max((len(r) for r in grid[:30]), default=0)
    options = [column_label(i) for i in range(width)] + [NO_COLUMN]
    mappings = provisional.column_mappings if provisional else ColumnMappings()

    questions = [
        Question(
            id="header-row",
            question="Номер строки заголовков (0, если заголовков нет)",
            type="header",
            options=[str(i) for i in range(0, min(len(grid), 30) + 1)],
            default=str(provisional.header_row or 0) if provisional else "0",
        )
    ]
    for question_id, role, text in QUESTION_ROLES:
        current = mappings.get(role)
        questions.append(
            Question(
                id=question_id,
                question=text,
                type="column",
                options=options,
                default=column_label(current) if current is not None else NO_COLUMN,
            )
        )
    return questions


def apply_answers(
    provisional: ExtractionRuleSet | None, answers: dict[str, Any]
) -> ExtractionRuleSet:
    """Merge operator answers into a confirmed rule set.

    Unanswered questions keep the provisional value.

    Raises:
        ValueError: An answer is not a column, or no collection column results
    """
    base = provisional.model_copy(deep=True) if provisional else ExtractionRuleSet()
    mapping = base.column_mappings.as_dict()

    for question_id, role, _ in QUESTION_ROLES:
        if question_id not in answers:
            continue
        index = column_from_answer(answers[question_id])
        if index is None:
            mapping.pop(role.value, None)
        else:
            mapping[role.value] = index

    if "collection" not in mapping:
        raise ValueError("A collection column is required")

    header_row = base.header_row
    skip_rows = list(base.skip_rows)
    if "header-row" in answers:
        header_row = int(answers["header-row"]) or None
        skip_rows = list(range(1, header_row + 1)) if header_row else []

    return base.model_copy(
        update={
            "column_mappings": ColumnMappings.model_validate(mapping),
            "header_row": header_row,
            "skip_rows": skip_rows,
            "skip_patterns": list(answers.get("skip-patterns", base.skip_patterns)),
            "origin": "manual" if provisional is None else provisional.origin,
            "confirmed": True,
        }
    )
