"""Catalog repository: the persistence boundary of ingestion.

Converts between ORM rows and the plain records reconciliation works on.
Methods only flush; committing or rolling back is left to the caller so a
whole reconciliation lands in a single transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fabricsync.canonical.categories import DEFAULT_CATEGORIES, sort_bands
from fabricsync.canonical.dates import utc_now
from fabricsync.canonical.keys import fabric_key
from fabricsync.db.models import (
    FabricCategoryModel,
    FabricModel,
    ManualUploadModel,
    ParseRunLogModel,
    ParsingRuleModel,
    SupplierModel,
)
from fabricsync.models import (
    ExtractionRuleSet,
    ManualOverride,
    OverrideType,
    PriceBand,
    SupplierSpec,
    SupplierStatus,
    SupplierStatusUpdate,
)
from fabricsync.pipeline.types import CatalogRow, RunResult
from fabricsync.reconciliation.engine import Action, RecordAction, ReconciliationResult

logger = logging.getLogger(__name__)


def _to_uuid(value: UUID | str) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def fabric_to_row(model: FabricModel) -> CatalogRow:
    return CatalogRow(
        id=str(model.id),
        collection=model.collection,
        color_number=model.color_number,
        in_stock=model.in_stock,
        meterage=model.meterage,
        price=model.price,
        price_per_meter=model.price_per_meter,
        category=model.category,
        comment=model.comment,
        next_arrival_date=model.next_arrival_date,
        last_updated_at=model.last_updated_at,
        excluded_from_parsing=model.excluded_from_parsing,
    )


def upload_to_override(model: ManualUploadModel) -> ManualOverride:
    return ManualOverride(
        id=str(model.id),
        supplier_id=str(model.supplier_id),
        type=OverrideType(model.type),
        is_active=model.is_active,
        data=model.data or {},
        uploaded_at=model.uploaded_at,
        last_parser_update=model.last_parser_update,
    )


_ROW_FIELDS = (
    "collection",
    "color_number",
    "in_stock",
    "meterage",
    "price",
    "price_per_meter",
    "category",
    "comment",
    "next_arrival_date",
    "last_updated_at",
)


class CatalogRepository:
    """Async repository over one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Suppliers

    async def get_supplier(self, supplier_id: UUID | str) -> SupplierModel | None:
        return await self.session.get(SupplierModel, _to_uuid(supplier_id))

    async def get_supplier_by_name(self, name: str) -> SupplierModel | None:
        result = await self.session.execute(
            select(SupplierModel).where(SupplierModel.name == name)
        )
        return result.scalar_one_or_none()

    async def list_suppliers(self, enabled_only: bool = False) -> list[SupplierModel]:
        query = select(SupplierModel).order_by(SupplierModel.name)
        if enabled_only:
            query = query.where(SupplierModel.enabled.is_(True))
        result = await self.session.execute(query)
        return list(result.scalars())

    async def upsert_supplier(self, spec: SupplierSpec) -> SupplierModel:
        """Create or update a supplier from its YAML definition."""
        supplier = await self.get_supplier_by_name(spec.name)
        if supplier is None:
            supplier = SupplierModel(name=spec.name)
            self.session.add(supplier)
            logger.info(f"Registering supplier {spec.name} ({spec.kind})")

        supplier.kind = spec.kind
        supplier.enabled = spec.enabled
        supplier.source_type = spec.source.type
        supplier.source_url = spec.source.url
        supplier.source_path = spec.source.path
        supplier.sheet_name = spec.source.sheet_name
        supplier.table_index = spec.source.table_index
        supplier.content_type = spec.source.content_type

        await self.session.flush()
        return supplier

    async def update_supplier_status(
        self, supplier_id: UUID | str, status: SupplierStatusUpdate
    ) -> None:
        values: dict[str, Any] = {
            "status": status.status.value,
            "error_message": status.error_message,
            "last_updated_at": status.last_updated_at,
        }
        if status.status is SupplierStatus.ACTIVE:
            values["fabrics_count"] = status.fabrics_count
        await self.session.execute(
            update(SupplierModel)
            .where(SupplierModel.id == _to_uuid(supplier_id))
            .values(**values)
        )

    async def mark_supplier_error(
        self, supplier_id: UUID | str, message: str, now: datetime | None = None
    ) -> None:
        """Record a failed run; the stored fabrics count stays as it was."""
        await self.update_supplier_status(
            supplier_id,
            SupplierStatusUpdate(
                status=SupplierStatus.ERROR,
                error_message=message,
                last_updated_at=now or utc_now(),
            ),
        )
        await self.session.flush()

    # Catalog

    async def load_catalog(self, supplier_id: UUID | str) -> list[CatalogRow]:
        result = await self.session.execute(
            select(FabricModel)
            .where(FabricModel.supplier_id == _to_uuid(supplier_id))
            .order_by(FabricModel.created_at, FabricModel.collection, FabricModel.color_number)
            .execution_options(populate_existing=True)
        )
        return [fabric_to_row(model) for model in result.scalars()]

    async def count_fabrics(self, supplier_id: UUID | str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(FabricModel)
            .where(FabricModel.supplier_id == _to_uuid(supplier_id))
        )
        return int(result.scalar_one())

    async def set_exclusion(
        self, supplier_id: UUID | str, collection: str, color_number: str, excluded: bool = True
    ) -> bool:
        """Flag a catalog row so parsing leaves it alone. False if no such row."""
        collection_key, color_key = fabric_key(collection, color_number)
        result = await self.session.execute(
            update(FabricModel)
            .where(
                FabricModel.supplier_id == _to_uuid(supplier_id),
                FabricModel.collection_key == collection_key,
                FabricModel.color_key == color_key,
            )
            .values(excluded_from_parsing=excluded)
        )
        return result.rowcount > 0

    # Price bands

    async def load_price_bands(self) -> list[PriceBand]:
        """Stored bands ascending by price, or the default table when none are stored."""
        result = await self.session.execute(
            select(FabricCategoryModel).order_by(FabricCategoryModel.price)
        )
        bands = [PriceBand(category=m.category, price=m.price) for m in result.scalars()]
        return bands or list(DEFAULT_CATEGORIES)

    async def save_price_bands(self, bands: Sequence[PriceBand]) -> None:
        """Replace the band table.

        Raises:
            ValueError: If two bands share a ceiling
        """
        ordered = sort_bands(bands)
        await self.session.execute(delete(FabricCategoryModel))
        self.session.add_all(
            FabricCategoryModel(category=band.category, price=band.price) for band in ordered
        )
        await self.session.flush()

    # Rules

    async def load_rules(self, supplier_id: UUID | str) -> ExtractionRuleSet | None:
        result = await self.session.execute(
            select(ParsingRuleModel).where(ParsingRuleModel.supplier_id == _to_uuid(supplier_id))
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        rules = ExtractionRuleSet.model_validate(model.rules)
        return rules.model_copy(update={"origin": model.origin, "confirmed": model.confirmed})

    async def save_rules(self, supplier_id: UUID | str, rules: ExtractionRuleSet) -> None:
        """Store the rule set; takes effect from the next parse only."""
        result = await self.session.execute(
            select(ParsingRuleModel).where(ParsingRuleModel.supplier_id == _to_uuid(supplier_id))
        )
        model = result.scalar_one_or_none()
        payload = rules.model_dump(mode="json", by_alias=True)
        if model is None:
            model = ParsingRuleModel(supplier_id=_to_uuid(supplier_id), rules=payload)
            self.session.add(model)
        else:
            model.rules = payload
        model.origin = rules.origin
        model.confirmed = rules.confirmed
        await self.session.flush()

    # Manual overrides

    async def load_active_overrides(self, supplier_id: UUID | str) -> list[ManualOverride]:
        """Active overrides, always re-read from the database."""
        result = await self.session.execute(
            select(ManualUploadModel)
            .where(
                ManualUploadModel.supplier_id == _to_uuid(supplier_id),
                ManualUploadModel.is_active.is_(True),
            )
            .order_by(ManualUploadModel.uploaded_at)
            .execution_options(populate_existing=True)
        )
        return [upload_to_override(model) for model in result.scalars()]

    async def deactivate_overrides(
        self,
        supplier_id: UUID | str,
        override_type: OverrideType | None = None,
        override_ids: Sequence[str] | None = None,
    ) -> int:
        query = update(ManualUploadModel).where(
            ManualUploadModel.supplier_id == _to_uuid(supplier_id),
            ManualUploadModel.is_active.is_(True),
        )
        if override_type is not None:
            query = query.where(ManualUploadModel.type == override_type.value)
        if override_ids is not None:
            query = query.where(ManualUploadModel.id.in_([_to_uuid(i) for i in override_ids]))
        result = await self.session.execute(query.values(is_active=False))
        return result.rowcount

    async def activate_override(
        self,
        supplier_id: UUID | str,
        override_type: OverrideType,
        data: dict[str, Any],
        file_name: str | None = None,
        uploaded_at: datetime | None = None,
    ) -> ManualOverride:
        """Record a new active override, retiring the previous one of the same type."""
        retired = await self.deactivate_overrides(supplier_id, override_type)
        if retired:
            logger.info(f"Deactivated {retired} previous {override_type.value} override(s)")

        model = ManualUploadModel(
            supplier_id=_to_uuid(supplier_id),
            type=override_type.value,
            is_active=True,
            data=data,
            file_name=file_name,
            uploaded_at=uploaded_at or utc_now(),
        )
        self.session.add(model)
        await self.session.flush()
        return upload_to_override(model)

    # Reconciliation

    async def _apply_action(
        self,
        supplier_id: UUID,
        action: RecordAction,
        existing: dict[str, FabricModel],
    ) -> None:
        row = action.after
        if action.action is Action.CREATE:
            collection_key, color_key = row.key
            self.session.add(
                FabricModel(
                    supplier_id=supplier_id,
                    collection_key=collection_key,
                    color_key=color_key,
                    excluded_from_parsing=False,
                    **{name: getattr(row, name) for name in _ROW_FIELDS},
                )
            )
        elif action.action is Action.UPDATE:
            model = existing[row.id]
            for name in action.changed_fields + ("price_per_meter", "category", "last_updated_at"):
                setattr(model, name, getattr(row, name))

    async def apply_reconciliation(
        self,
        supplier_id: UUID | str,
        result: ReconciliationResult,
        *,
        now: datetime,
        signature: str | None = None,
    ) -> None:
        """Write a reconciliation result: rows, override bookkeeping, supplier status.

        Only flushes. If anything raises, the caller's rollback discards the
        whole batch.
        """
        supplier_uuid = _to_uuid(supplier_id)

        models = await self.session.execute(
            select(FabricModel).where(FabricModel.supplier_id == supplier_uuid)
        )
        existing = {str(model.id): model for model in models.scalars()}

        for action in result.changes:
            await self._apply_action(supplier_uuid, action, existing)

        superseded = [o.id for o in result.superseded_overrides if o.id]
        if superseded:
            await self.deactivate_overrides(supplier_uuid, override_ids=superseded)

        # Stamp the remaining active overrides with this parser run
        await self.session.execute(
            update(ManualUploadModel)
            .where(
                ManualUploadModel.supplier_id == supplier_uuid,
                ManualUploadModel.is_active.is_(True),
            )
            .values(last_parser_update=now)
        )

        await self.update_supplier_status(
            supplier_uuid,
            SupplierStatusUpdate(
                status=SupplierStatus.ACTIVE,
                error_message=None,
                fabrics_count=result.fabrics_count,
                last_updated_at=now,
            ),
        )
        if signature is not None:
            await self.session.execute(
                update(SupplierModel)
                .where(SupplierModel.id == supplier_uuid)
                .values(structure_signature=signature)
            )

        await self.session.flush()

    # Run log

    async def log_run(self, result: RunResult, run_timestamp: datetime) -> None:
        self.session.add(
            ParseRunLogModel(
                run_timestamp=run_timestamp,
                supplier_id=_to_uuid(result.supplier_id) if result.supplier_id else None,
                supplier_name=result.supplier_name,
                status=result.status.value,
                records_parsed=result.records_parsed,
                records_created=result.records_created,
                records_updated=result.records_updated,
                records_unchanged=result.records_unchanged,
                records_skipped=result.records_skipped,
                message=result.message,
                error_details=result.error_details,
                duration_seconds=result.duration_seconds,
            )
        )
        await self.session.flush()

    async def recent_runs(
        self, supplier_name: str | None = None, limit: int = 20
    ) -> list[ParseRunLogModel]:
        query = select(ParseRunLogModel).order_by(ParseRunLogModel.run_timestamp.desc())
        if supplier_name:
            query = query.where(ParseRunLogModel.supplier_name == supplier_name)
        result = await self.session.execute(query.limit(limit))
        return list(result.scalars())
