"""Two-writer precedence between automated parsing and manual overrides."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, TypeVar

from fabricsync.canonical.prices import normalize_price, parse_meterage
from fabricsync.canonical.text import parse_stock_flag
from fabricsync.models import HELD_FIELDS, ManualOverride

T = TypeVar("T")


def resolve_field(automated: T, override_value: T, override_active: bool) -> T:
    """The override's value while it is active, the parser's otherwise.

    Shared by stock fields (``in_stock``, ``meterage``) and price fields
    (``price``, ``price_per_meter``, ``category``).
    """
    return override_value if override_active else automated


def is_superseded(
    override: ManualOverride,
    source_timestamp: datetime | None = None,
    parser_supersedes: bool = False,
) -> bool:
    """True when parsed data is explicitly newer than the override."""
    if not override.is_active:
        return False
    if parser_supersedes:
        return True
    return (
        source_timestamp is not None
        and override.uploaded_at is not None
        and source_timestamp > override.uploaded_at
    )


def _override_value(field: str, row: dict[str, Any]) -> tuple[bool, Any]:
    """Value an override row carries for a held field, if it carries one."""
    if field == "in_stock" and "inStock" in row:
        value = row["inStock"]
        return True, value if isinstance(value, bool) or value is None else parse_stock_flag(value)
    if field == "meterage" and "meterage" in row:
        value = row["meterage"]
        return True, None if value is None else parse_meterage(value)
    if field == "price" and "price" in row:
        value = row["price"]
        return True, None if value is None else normalize_price(value)
    return False, None


@dataclass(frozen=True)
class OverrideCoverage:
    """An active override with its covered rows indexed by identity key.

    ``rows`` is None for an override that covers every row of the supplier.
    """

    override: ManualOverride
    rows: dict[tuple[str, str], dict[str, Any]] | None

    @classmethod
    def build(cls, override: ManualOverride) -> OverrideCoverage:
        return cls(override, None if override.covers_all_rows else override.covered_rows())

    def row_for(self, key: tuple[str, str]) -> dict[str, Any] | None:
        if self.rows is None:
            return {}
        return self.rows.get(key)


def index_overrides(overrides: Iterable[ManualOverride]) -> list[OverrideCoverage]:
    """Key maps of the active overrides, built once per reconciliation pass."""
    return [OverrideCoverage.build(o) for o in overrides if o.is_active]


class HeldFields:
    """Fields held by the active overrides covering one identity key."""

    def __init__(self, key: tuple[str, str], coverage: Iterable[OverrideCoverage]):
        self.fields: set[str] = set()
        self._values: dict[str, Any] = {}

        for entry in coverage:
            row = entry.row_for(key)
            if row is None:
                continue
            override = entry.override
            self.fields.update(HELD_FIELDS[override.type])
            for field in HELD_FIELDS[override.type]:
                present, value = _override_value(field, row)
                if present:
                    self._values[field] = value

    def __contains__(self, field: str) -> bool:
        return field in self.fields

    def resolve(self, field: str, automated: Any, stored: Any) -> Any:
        """Resolve one field; an override without its own value keeps the stored one."""
        held = field in self.fields
        override_value = self._values.get(field, stored)
        return resolve_field(automated, override_value, held)
