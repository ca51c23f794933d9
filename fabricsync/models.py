"""FabricSync Pydantic models for persisted configuration and overrides.

Serialized rule sets use camelCase keys (``columnMappings``, ``skipRows``...)
so stored rules stay readable by the rule-editing UI.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from fabricsync.canonical.keys import fabric_key


class ColumnRole(str, Enum):
    """Roles a grid column can play in extraction."""

    COLLECTION = "collection"
    COLOR = "color"
    IN_STOCK = "inStock"
    METERAGE = "meterage"
    PRICE = "price"
    NEXT_ARRIVAL_DATE = "nextArrivalDate"
    COMMENT = "comment"


class ColumnMappings(BaseModel):
    """Role -> 0-based column index."""

    model_config = ConfigDict(populate_by_name=True)

    collection: int | None = Field(default=None, ge=0)
    color: int | None = Field(default=None, ge=0)
    in_stock: int | None = Field(default=None, ge=0, alias="inStock")
    meterage: int | None = Field(default=None, ge=0)
    price: int | None = Field(default=None, ge=0)
    next_arrival_date: int | None = Field(default=None, ge=0, alias="nextArrivalDate")
    comment: int | None = Field(default=None, ge=0)

    def get(self, role: ColumnRole | str) -> int | None:
        role = ColumnRole(role)
        return self.as_dict().get(role.value)

    def as_dict(self) -> dict[str, int]:
        """Mapped roles only, keyed by their serialized names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ExtractionRuleSet(BaseModel):
    """Declarative extraction rules for one supplier.

    ``skip_rows`` and ``header_row`` are 1-based (spreadsheet row numbers),
    column indices are 0-based.
    """

    model_config = ConfigDict(populate_by_name=True)

    column_mappings: ColumnMappings = Field(
        default_factory=ColumnMappings, alias="columnMappings"
    )
    skip_rows: list[int] = Field(default_factory=list, alias="skipRows")
    skip_patterns: list[str] = Field(default_factory=list, alias="skipPatterns")
    header_row: int | None = Field(default=None, alias="headerRow")
    special_rules: dict[str, Any] = Field(default_factory=dict, alias="specialRules")

    # Provenance: inferred rules stay provisional until an operator confirms them
    origin: Literal["manual", "inferred", "preset"] = "manual"
    confirmed: bool = True

    @field_validator("skip_rows")
    @classmethod
    def validate_skip_rows(cls, v: list[int]) -> list[int]:
        if any(row < 1 for row in v):
            raise ValueError("skipRows are 1-based row numbers")
        return sorted(set(v))

    def flag(self, name: str) -> bool:
        """True when a supplier-specific special rule is switched on."""
        return bool(self.special_rules.get(name))

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, payload: str) -> ExtractionRuleSet:
        return cls.model_validate_json(payload)


class PriceBand(BaseModel):
    """Upper price bound (per meter) for a category."""

    category: int
    price: Decimal

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("band price must be positive")
        return v


class OverrideType(str, Enum):
    STOCK = "stock"
    PRICE = "price"


# Fields an active override of each type holds against automated parsing
HELD_FIELDS: dict[OverrideType, tuple[str, ...]] = {
    OverrideType.STOCK: ("in_stock", "meterage"),
    OverrideType.PRICE: ("price", "price_per_meter", "category"),
}


class ManualOverride(BaseModel):
    """Operator-supplied correction that outranks parsing for some fields.

    ``data["rows"]`` lists covered rows as dicts with ``collection``,
    ``colorNumber`` and the held values. Without a ``rows`` entry the
    override covers every row of the supplier.
    """

    id: str | None = None
    supplier_id: str
    type: OverrideType
    is_active: bool = True
    data: dict[str, Any] = Field(default_factory=dict)
    uploaded_at: datetime | None = None
    last_parser_update: datetime | None = None

    @property
    def covers_all_rows(self) -> bool:
        return "rows" not in self.data

    def covered_rows(self) -> dict[tuple[str, str], dict[str, Any]]:
        """Normalized identity key -> override row."""
        rows: dict[tuple[str, str], dict[str, Any]] = {}
        for row in self.data.get("rows", []):
            collection = row.get("collection") or ""
            color = row.get("colorNumber") or row.get("color_number") or ""
            if collection.strip() and color.strip():
                rows[fabric_key(collection, color)] = row
        return rows


class SupplierStatus(str, Enum):
    ACTIVE = "active"
    ERROR = "error"


class SupplierStatusUpdate(BaseModel):
    """Status record written for a supplier after every run."""

    status: SupplierStatus
    error_message: str | None = None
    fabrics_count: int = 0
    last_updated_at: datetime


class SourceSpec(BaseModel):
    """Where and in which physical format a supplier publishes its list."""

    type: Literal["html", "workbook", "google_sheets", "text"]
    url: str | None = None
    path: str | None = None
    sheet_name: str | None = None
    table_index: int = 0
    content_type: str | None = None

    @model_validator(mode="after")
    def check_location(self) -> SourceSpec:
        if not self.url and not self.path:
            raise ValueError("source needs either 'url' or 'path'")
        return self


class SupplierSpec(BaseModel):
    """Supplier entry from the suppliers YAML file."""

    name: str
    kind: str = "rules"
    enabled: bool = True
    source: SourceSpec
