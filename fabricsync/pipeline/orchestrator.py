"""Ingestion orchestrator - runs supplier parses end to end.

One run: fetch the supplier's document, turn it into grids, parse it with the
supplier's parser and rules, reconcile against the catalog and write the
result in a single transaction.

Key features:
- Single-flight: runs for one supplier never overlap (serialized, or rejected
  with ``wait=False``)
- Resilient: a failing supplier is marked ``error`` and the others carry on
- Atomic: a failed run leaves the catalog exactly as it was
- Auditable: every run writes a parse_run_log entry
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import AbstractAsyncContextManager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from fabricsync.canonical.dates import utc_now
from fabricsync.config import AppConfig, get_config
from fabricsync.core.logging import bind_supplier, clear_supplier
from fabricsync.db.connection import get_session
from fabricsync.db.models import SupplierModel
from fabricsync.db.repository import CatalogRepository
from fabricsync.errors import (
    FabricSyncError,
    ParseInProgressError,
    ReconciliationFailure,
    RuleMissingError,
)
from fabricsync.inference.auto_rules import infer_rule_set
from fabricsync.models import ExtractionRuleSet, OverrideType, SourceSpec, SupplierSpec
from fabricsync.parsers import AnalysisResult, analyze, get_parser, parse_grid
from fabricsync.pipeline.context import RunContext
from fabricsync.pipeline.types import CatalogRow, FabricRecord, ImportStatus, ParseOutcome, RunResult
from fabricsync.reconciliation import ReconcileSettings, reconcile
from fabricsync.sources import (
    RawDocument,
    SourceGrid,
    detect_format,
    ensure_has_data,
    fetch_source,
    load_grid,
    read_local_document,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def source_spec_of(supplier: SupplierModel) -> SourceSpec:
    return SourceSpec(
        type=supplier.source_type,
        url=supplier.source_url,
        path=supplier.source_path,
        sheet_name=supplier.sheet_name,
        table_index=supplier.table_index,
        content_type=supplier.content_type,
    )


def override_rows(records: Iterable[FabricRecord], override_type: OverrideType) -> list[dict]:
    """Serialize uploaded records into the ``data["rows"]`` of an override."""
    rows = []
    for record in records:
        row: dict[str, Any] = {"collection": record.collection, "colorNumber": record.color_number}
        if override_type is OverrideType.STOCK:
            row["inStock"] = record.in_stock
            row["meterage"] = record.meterage
        else:
            row["price"] = str(record.price) if record.price is not None else None
        rows.append(row)
    return rows


def overlay_upload(
    records: Iterable[FabricRecord],
    catalog: Sequence[CatalogRow],
    override_type: OverrideType,
) -> list[FabricRecord]:
    """Uploaded records carrying stored values for the fields the upload does not own.

    A stock upload only speaks for stock, a price upload only for price; the
    remaining fields are taken from the catalog so reconciliation leaves them be.
    """
    stored = {row.key: row for row in catalog}
    merged = []
    for record in records:
        row = stored.get(record.key)
        if override_type is OverrideType.STOCK:
            merged.append(
                replace(
                    record,
                    price=None,
                    next_arrival_date=row.next_arrival_date if row else record.next_arrival_date,
                    comment=record.comment if record.comment is not None else (row.comment if row else None),
                )
            )
        else:
            merged.append(
                replace(
                    record,
                    in_stock=row.in_stock if row else record.in_stock,
                    meterage=row.meterage if row else record.meterage,
                    comment=row.comment if row else record.comment,
                    next_arrival_date=row.next_arrival_date if row else record.next_arrival_date,
                )
            )
    return merged


class IngestionOrchestrator:
    """Runs supplier ingestion with per-supplier single-flight locking.

    Responsibilities:
    1. Resolve each supplier's source, parser kind and rule set
    2. Fetch and parse the document
    3. Reconcile the records and persist the batch atomically
    4. Record supplier status and a run-log entry, success or not
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        session_factory: SessionFactory | None = None,
        transport: Any = None,
    ):
        """Initialize the orchestrator.

        Args:
            config: Application configuration (defaults to the environment)
            session_factory: Callable returning an async session context manager
            transport: Optional httpx transport, used by tests to stub fetching
        """
        self.config = config or get_config()
        self.session_factory = session_factory or get_session
        self.transport = transport
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, supplier_name: str) -> asyncio.Lock:
        return self._locks.setdefault(supplier_name, asyncio.Lock())

    def is_running(self, supplier_name: str) -> bool:
        lock = self._locks.get(supplier_name)
        return lock is not None and lock.locked()

    @property
    def reconcile_settings(self) -> ReconcileSettings:
        ingest = self.config.ingest
        return ReconcileSettings(
            epsilon=ingest.change_epsilon,
            low_stock_threshold=ingest.low_stock_threshold,
            low_stock_comment=ingest.low_stock_comment,
        )

    # Supplier registry

    async def sync_suppliers(self, specs: Sequence[SupplierSpec]) -> int:
        """Create or update supplier rows from their YAML definitions."""
        async with self.session_factory() as session:
            repo = CatalogRepository(session)
            for spec in specs:
                await repo.upsert_supplier(spec)
            await session.commit()
        logger.info(f"Synchronized {len(specs)} suppliers")
        return len(specs)

    # Runs

    async def run_supplier(
        self,
        supplier_name: str,
        *,
        wait: bool = True,
        parser_supersedes_overrides: bool = False,
        source_timestamp: datetime | None = None,
        document: RawDocument | None = None,
    ) -> RunResult:
        """Parse and reconcile one supplier.

        Args:
            supplier_name: Registered supplier name
            wait: Queue behind a running parse of the same supplier; when
                False, raise ParseInProgressError instead
            parser_supersedes_overrides: Declare this parse newer than every
                active manual override
            source_timestamp: When the document was produced, if known
            document: Pre-fetched document (e.g. an email attachment)

        Returns:
            RunResult; failures are reported here, not raised

        Raises:
            ParseInProgressError: ``wait=False`` and a run is in flight
        """
        lock = self._lock_for(supplier_name)
        if not wait and lock.locked():
            raise ParseInProgressError(supplier_name)

        async with lock:
            return await self._run_locked(
                supplier_name,
                parser_supersedes_overrides=parser_supersedes_overrides,
                source_timestamp=source_timestamp,
                document=document,
            )

    async def run_all(
        self, supplier_names: Sequence[str] | None = None, max_concurrency: int = 4
    ) -> dict:
        """Run every enabled supplier (or the named ones).

        Suppliers run concurrently up to ``max_concurrency``; one failure
        never stops the others.

        Returns:
            Summary dict with overall status and per-supplier results
        """
        run_timestamp = utc_now()

        if supplier_names is None:
            async with self.session_factory() as session:
                suppliers = await CatalogRepository(session).list_suppliers(enabled_only=True)
            supplier_names = [s.name for s in suppliers]

        logger.info(f"Starting ingestion run at {run_timestamp}")
        logger.info(f"Configured suppliers: {len(supplier_names)}")

        semaphore = asyncio.Semaphore(max(1, max_concurrency))

        async def bounded(name: str) -> RunResult:
            async with semaphore:
                return await self.run_supplier(name)

        results = list(await asyncio.gather(*(bounded(name) for name in supplier_names)))

        failures = [r for r in results if not r.success]
        for result in failures:
            logger.warning(f"  - {result.supplier_name}: {result.message}")

        summary = {
            "run_timestamp": run_timestamp.isoformat(),
            "total_suppliers": len(results),
            "successful_suppliers": len(results) - len(failures),
            "failed_suppliers": len(failures),
            "overall_success": not failures,
            "results": results,
        }

        logger.info(
            f"Ingestion run completed: {summary['successful_suppliers']}/"
            f"{summary['total_suppliers']} suppliers successful"
        )
        return summary

    async def run_manual_upload(
        self,
        supplier_name: str,
        path: str | Path,
        override_type: OverrideType,
        *,
        wait: bool = True,
    ) -> RunResult:
        """Apply an operator upload as the supplier's active override.

        The upload is parsed with the supplier's rules, stored as a new
        override (retiring the previous one of the same type) and reconciled,
        all in one transaction.
        """
        lock = self._lock_for(supplier_name)
        if not wait and lock.locked():
            raise ParseInProgressError(supplier_name)

        async with lock:
            return await self._run_locked(
                supplier_name,
                upload_type=override_type,
                upload_path=Path(path),
            )

    async def _run_locked(
        self,
        supplier_name: str,
        *,
        parser_supersedes_overrides: bool = False,
        source_timestamp: datetime | None = None,
        document: RawDocument | None = None,
        upload_type: OverrideType | None = None,
        upload_path: Path | None = None,
    ) -> RunResult:
        start = time.monotonic()
        run_timestamp = utc_now()
        result = RunResult(supplier_name=supplier_name, status=ImportStatus.SUCCESS)

        async with self.session_factory() as session:
            repo = CatalogRepository(session)
            supplier = await repo.get_supplier_by_name(supplier_name)
            if supplier is None:
                result.status = ImportStatus.FAILED
                result.message = f"Unknown supplier: {supplier_name}"
                logger.error(result.message)
                return result

            context = RunContext(
                supplier_id=str(supplier.id),
                supplier_name=supplier.name,
                kind=supplier.kind,
                source=source_spec_of(supplier),
                settings=self.config.ingest,
                base_currency=self.config.base_currency,
                parser_supersedes_overrides=parser_supersedes_overrides,
                source_timestamp=source_timestamp,
                previous_signature=supplier.structure_signature,
                started_at=run_timestamp,
            )
            result.supplier_id = context.supplier_id
            bind_supplier(context.supplier_name, context.run_id)
            logger.info(f"Processing supplier: {context.supplier_name} ({context.kind})")

            try:
                await self._ingest(
                    context, repo, session, result, document, upload_type, upload_path
                )
            except Exception as e:
                await session.rollback()
                await self._record_failure(context, repo, result, e)
            finally:
                clear_supplier()

            result.duration_seconds = time.monotonic() - start
            await repo.log_run(result, run_timestamp)
            await session.commit()

        return result

    async def _ingest(
        self,
        context: RunContext,
        repo: CatalogRepository,
        session: AsyncSession,
        result: RunResult,
        document: RawDocument | None,
        upload_type: OverrideType | None,
        upload_path: Path | None,
    ) -> None:
        if upload_path is not None:
            document = read_local_document(upload_path)
        elif document is None:
            document = await fetch_source(
                context.source,
                timeout=context.settings.fetch_timeout_seconds,
                user_agent=context.settings.user_agent,
                transport=self.transport,
            )

        spec = context.source if upload_type is None else None
        source = await asyncio.to_thread(load_grid, document, spec)
        if detect_format(document) == "workbook":
            ensure_has_data(source, context.supplier_name)

        rules = await self._resolve_rules(context, repo, session, source)
        outcome: ParseOutcome = await asyncio.to_thread(
            parse_grid, context.kind, source, rules, context.base_currency
        )
        result.records_parsed = len(outcome.records)
        result.warnings = [str(w) for w in outcome.warnings]

        signature = outcome.signature if upload_type is None else None
        if signature and context.previous_signature and signature != context.previous_signature:
            result.structure_changed = True
            logger.warning(
                f"{context.supplier_name}: document structure changed "
                f"(sheets: {', '.join(outcome.sheet_names)}); check the extraction rules"
            )

        catalog = await repo.load_catalog(context.supplier_id)
        records = outcome.records
        if upload_type is not None:
            await repo.activate_override(
                context.supplier_id,
                upload_type,
                {"rows": override_rows(records, upload_type)},
                file_name=upload_path.name if upload_path else None,
                uploaded_at=context.started_at,
            )
            records = overlay_upload(records, catalog, upload_type)

        # Overrides are re-read on every run; an operator may have changed them
        overrides = await repo.load_active_overrides(context.supplier_id)
        bands = await repo.load_price_bands()

        reconciliation = await asyncio.to_thread(
            reconcile,
            catalog,
            records,
            overrides,
            bands,
            now=context.started_at,
            settings=self.reconcile_settings,
            source_timestamp=context.source_timestamp,
            parser_supersedes=context.parser_supersedes_overrides,
        )

        try:
            await repo.apply_reconciliation(
                context.supplier_id,
                reconciliation,
                now=context.started_at,
                signature=signature,
            )
            await session.commit()
        except Exception as e:
            raise ReconciliationFailure(context.supplier_id, e) from e

        stats = reconciliation.stats
        result.records_created = stats.created
        result.records_updated = stats.updated
        result.records_unchanged = stats.unchanged
        result.records_skipped = stats.skipped + outcome.skipped_rows
        result.fabrics_count = reconciliation.fabrics_count
        result.message = (
            f"Processed {result.records_parsed} records: "
            f"{stats.created} new, "
            f"{stats.updated} updated, "
            f"{stats.unchanged} unchanged, "
            f"{stats.skipped} skipped"
        )
        if upload_type is not None:
            result.message = f"Manual {upload_type.value} upload. {result.message}"
        if outcome.warnings:
            result.status = ImportStatus.PARTIAL_SUCCESS
            result.message += f", {len(outcome.warnings)} warnings"

        logger.info(f"✓ {context.supplier_name}: {result.message}")

    async def _resolve_rules(
        self,
        context: RunContext,
        repo: CatalogRepository,
        session: AsyncSession,
        source: SourceGrid,
    ) -> ExtractionRuleSet | None:
        """Stored rules, else the kind's preset (None), else inferred rules.

        Inferred rules are stored as provisional right away so the operator
        can confirm them even when this run goes on to fail.
        """
        require_confirmed = context.settings.require_confirmed_rules
        rules = await repo.load_rules(context.supplier_id)

        if rules is None:
            if get_parser(context.kind).preset is not None:
                return None
            rules = infer_rule_set(
                source.rows, context.supplier_name, context.settings.inference_scan_rows
            )
            await repo.save_rules(context.supplier_id, rules)
            await session.commit()
            logger.info(f"{context.supplier_name}: stored inferred rules awaiting confirmation")

        if require_confirmed and not rules.confirmed:
            raise RuleMissingError(
                context.supplier_name,
                "stored rules are provisional and need confirmation",
                provisional_rules=rules,
            )
        return rules

    async def _record_failure(
        self,
        context: RunContext,
        repo: CatalogRepository,
        result: RunResult,
        error: Exception,
    ) -> None:
        result.status = ImportStatus.FAILED
        result.message = f"Import failed: {error}"
        cause = error.cause if isinstance(error, ReconciliationFailure) else error
        result.error_details = {
            "error_type": type(error).__name__,
            "error_message": str(error),
        }
        if cause is not error:
            result.error_details["cause_type"] = type(cause).__name__

        if isinstance(error, FabricSyncError) and not isinstance(error, ReconciliationFailure):
            logger.error(f"✗ {context.supplier_name} failed: {error}")
        else:
            logger.error(f"✗ {context.supplier_name} failed: {error}", exc_info=True)

        await repo.mark_supplier_error(context.supplier_id, str(error), now=utc_now())

    # Rule editing

    async def fetch_grid(self, supplier_name: str) -> tuple[SupplierModel, SourceGrid]:
        """Fetch a supplier's current document as grids, without parsing it."""
        async with self.session_factory() as session:
            supplier = await CatalogRepository(session).get_supplier_by_name(supplier_name)
        if supplier is None:
            raise ValueError(f"Unknown supplier: {supplier_name}")

        spec = source_spec_of(supplier)
        document = await fetch_source(
            spec,
            timeout=self.config.ingest.fetch_timeout_seconds,
            user_agent=self.config.ingest.user_agent,
            transport=self.transport,
        )
        return supplier, await asyncio.to_thread(load_grid, document, spec)

    async def analyze_supplier(self, supplier_name: str) -> AnalysisResult:
        """Sample rows and suggested columns for the rule editor. Persists nothing."""
        supplier, source = await self.fetch_grid(supplier_name)
        async with self.session_factory() as session:
            rules = await CatalogRepository(session).load_rules(supplier.id)
        return analyze(source, rules, scan_rows=self.config.ingest.inference_scan_rows)

    async def save_rules(self, supplier_name: str, rules: ExtractionRuleSet) -> None:
        """Persist a rule set; it takes effect from the next parse."""
        async with self.session_factory() as session:
            repo = CatalogRepository(session)
            supplier = await repo.get_supplier_by_name(supplier_name)
            if supplier is None:
                raise ValueError(f"Unknown supplier: {supplier_name}")
            await repo.save_rules(supplier.id, rules)
            await session.commit()
        logger.info(
            f"Saved {'confirmed' if rules.confirmed else 'provisional'} rules for {supplier_name}"
        )
