"""Type definitions for pipeline operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from fabricsync.canonical.keys import fabric_key
from fabricsync.errors import NormalizationWarning


class ImportStatus(str, Enum):
    """Status of a supplier run."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    SKIPPED = "SKIPPED"


@dataclass
class FabricRecord:
    """Canonical fabric row produced by a supplier parser.

    This is the format every parser must produce. Records are transient:
    only reconciliation decides whether they reach the catalog.
    """

    # Business key (supplier-scoped)
    collection: str
    color_number: str

    # Stock
    in_stock: Optional[bool] = None
    meterage: Optional[float] = None

    # Pricing
    price: Optional[Decimal] = None
    currency: str = "RUB"

    # Supplementary
    comment: Optional[str] = None
    next_arrival_date: Optional[date] = None

    # Spreadsheet row the record came from (1-based)
    row_number: Optional[int] = None

    @property
    def key(self) -> tuple[str, str]:
        return fabric_key(self.collection, self.color_number)


@dataclass(frozen=True)
class CatalogRow:
    """Stored catalog state for one fabric, as seen by reconciliation."""

    collection: str
    color_number: str
    in_stock: Optional[bool] = None
    meterage: Optional[float] = None
    price: Optional[Decimal] = None
    price_per_meter: Optional[Decimal] = None
    category: Optional[int] = None
    comment: Optional[str] = None
    next_arrival_date: Optional[date] = None
    last_updated_at: Optional[datetime] = None
    excluded_from_parsing: bool = False
    id: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return fabric_key(self.collection, self.color_number)


@dataclass
class ParseOutcome:
    """Records and diagnostics from one parse pass."""

    records: list[FabricRecord] = field(default_factory=list)
    warnings: list[NormalizationWarning] = field(default_factory=list)
    skipped_rows: int = 0
    duplicate_rows: int = 0
    sheet_names: list[str] = field(default_factory=list)
    signature: str = ""


@dataclass
class RunResult:
    """Result of one supplier run."""

    supplier_name: str
    status: ImportStatus
    supplier_id: Optional[str] = None
    records_parsed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_unchanged: int = 0
    records_skipped: int = 0
    fabrics_count: int = 0
    message: str = ""
    error_details: Optional[dict] = None
    duration_seconds: float = 0.0
    warnings: list[str] = field(default_factory=list)
    structure_changed: bool = False

    @property
    def success(self) -> bool:
        """Check if the run was successful."""
        return self.status in (ImportStatus.SUCCESS, ImportStatus.PARTIAL_SUCCESS)

    @property
    def total_changes(self) -> int:
        return self.records_created + self.records_updated
