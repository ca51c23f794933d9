"""SQLAlchemy async database models for FabricSync.

Catalog rows are supplier-scoped; the normalized ``(collection_key,
color_key)`` pair is unique within a supplier and is the only matching key.
Timestamps are naive UTC.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from fabricsync.canonical.dates import utc_now


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class SupplierModel(Base):
    """Supplier with its source location and last-run status."""

    __tablename__ = "suppliers"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    kind: Mapped[str] = mapped_column(Text, nullable=False, default="rules")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Source
    source_type: Mapped[str] = mapped_column(Text, nullable=False, default="workbook")
    source_url: Mapped[str | None] = mapped_column(Text)
    source_path: Mapped[str | None] = mapped_column(Text)
    sheet_name: Mapped[str | None] = mapped_column(Text)
    table_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_type: Mapped[str | None] = mapped_column(Text)

    # Status written after every run
    status: Mapped[str] = mapped_column(Text, nullable=False, default="active")
    error_message: Mapped[str | None] = mapped_column(Text)
    fabrics_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Layout fingerprint of the last parsed document
    structure_signature: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('active', 'error')", name="check_supplier_status_valid"),
        CheckConstraint("fabrics_count >= 0", name="check_fabrics_count_non_negative"),
    )


class FabricModel(Base):
    """Catalog row: one collection/color of one supplier."""

    __tablename__ = "fabrics"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    supplier_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False
    )

    # Display values as the supplier wrote them
    collection: Mapped[str] = mapped_column(Text, nullable=False)
    color_number: Mapped[str] = mapped_column(Text, nullable=False)

    # Normalized identity key
    collection_key: Mapped[str] = mapped_column(Text, nullable=False)
    color_key: Mapped[str] = mapped_column(Text, nullable=False)

    # Stock
    in_stock: Mapped[bool | None] = mapped_column(Boolean)
    meterage: Mapped[float | None] = mapped_column(Float)

    # Pricing (base currency)
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    price_per_meter: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    category: Mapped[int | None] = mapped_column(Integer)

    comment: Mapped[str | None] = mapped_column(Text)
    next_arrival_date: Mapped[date | None] = mapped_column(Date)

    # Operator exclusion: parsing never touches this row
    excluded_from_parsing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    last_updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "supplier_id", "collection_key", "color_key", name="uq_fabric_supplier_key"
        ),
        CheckConstraint("price IS NULL OR price > 0", name="check_fabric_price_positive"),
        Index("idx_fabrics_supplier", "supplier_id"),
        Index("idx_fabrics_category", "category"),
    )


class ParsingRuleModel(Base):
    """Serialized extraction rule set, one per supplier."""

    __tablename__ = "parsing_rules"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    supplier_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("suppliers.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    rules: Mapped[dict] = mapped_column(JSON, nullable=False)
    origin: Mapped[str] = mapped_column(Text, nullable=False, default="manual")
    confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )


class ManualUploadModel(Base):
    """Operator upload acting as a stock or price override."""

    __tablename__ = "manual_uploads"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    supplier_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    file_name: Mapped[str | None] = mapped_column(Text)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    last_parser_update: Mapped[datetime | None] = mapped_column(DateTime)

    __table_args__ = (
        CheckConstraint("type IN ('stock', 'price')", name="check_upload_type_valid"),
        Index("idx_manual_uploads_active", "supplier_id", "type", "is_active"),
    )


class FabricCategoryModel(Base):
    """Price band: upper per-meter price of a category."""

    __tablename__ = "fabric_categories"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    category: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    __table_args__ = (
        CheckConstraint("price > 0", name="check_category_price_positive"),
    )


class ParseRunLogModel(Base):
    """One row per supplier run, for monitoring and diagnostics."""

    __tablename__ = "parse_run_log"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    run_timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    supplier_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))
    supplier_name: Mapped[str] = mapped_column(Text, nullable=False, index=True)

    status: Mapped[str] = mapped_column(Text, nullable=False)
    records_parsed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_unchanged: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    message: Mapped[str | None] = mapped_column(Text)
    error_details: Mapped[dict | None] = mapped_column(JSON)
    duration_seconds: Mapped[float | None] = mapped_column()

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('SUCCESS', 'FAILED', 'PARTIAL_SUCCESS', 'SKIPPED')",
            name="check_run_status_valid",
        ),
        Index("idx_run_supplier_time", "supplier_name", "run_timestamp"),
    )
