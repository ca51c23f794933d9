"""End-to-end ingestion runs against a SQLite database."""

from __future__ import annotations

import asyncio
import threading

import httpx
import pytest
import pytest_asyncio

from fabricsync.config import AppConfig, DBConfig, IngestConfig
from fabricsync.db.repository import CatalogRepository
from fabricsync.errors import ParseInProgressError
from fabricsync.models import OverrideType, SourceSpec, SupplierSpec
from fabricsync.pipeline import orchestrator as orchestrator_module
from fabricsync.pipeline.orchestrator import IngestionOrchestrator
from fabricsync.pipeline.types import ImportStatus

pytestmark = pytest.mark.integration

HEADER = ["Коллекция - цвет", "Наличие", "Метраж", "Поступление"]

STOCK_ROWS = [
    HEADER,
    ["Verona - 12", "да", 85.6, None],
    ["Verona - 14", "нет", None, "15.04.2025"],
    ["Helena - 01", "да", 120, None],
]


def artvision_spec(path, name="Artvision"):
    return SupplierSpec(
        name=name, kind="artvision", source=SourceSpec(type="workbook", path=str(path))
    )


@pytest.fixture
def stock_file(xlsx_file):
    return xlsx_file(STOCK_ROWS, name="artvision.xlsx")


@pytest_asyncio.fixture()
async def orchestrator(app_config, session_factory, stock_file):
    orchestrator = IngestionOrchestrator(config=app_config, session_factory=session_factory)
    await orchestrator.sync_suppliers([artvision_spec(stock_file)])
    return orchestrator


async def catalog_of(session_factory, name="Artvision"):
    async with session_factory() as session:
        repo = CatalogRepository(session)
        supplier = await repo.get_supplier_by_name(name)
        rows = await repo.load_catalog(supplier.id)
    return supplier, {(r.collection, r.color_number): r for r in rows}


async def runs_of(session_factory, name="Artvision"):
    async with session_factory() as session:
        return await CatalogRepository(session).recent_runs(name)


class TestSupplierRun:
    @pytest.mark.asyncio
    async def test_first_run_creates_rows(self, orchestrator, session_factory):
        result = await orchestrator.run_supplier("Artvision")

        assert result.status is ImportStatus.SUCCESS
        assert result.records_parsed == 3
        assert result.records_created == 3
        assert result.fabrics_count == 3
        assert result.message == "Processed 3 records: 3 new, 0 updated, 0 unchanged, 0 skipped"

        supplier, catalog = await catalog_of(session_factory)
        assert supplier.status == "active"
        assert supplier.fabrics_count == 3
        assert supplier.structure_signature
        assert catalog[("Verona", "12")].meterage == 85.6
        assert catalog[("Verona", "14")].in_stock is False
        assert catalog[("Helena", "01")].meterage == 120

        runs = await runs_of(session_factory)
        assert [r.status for r in runs] == ["SUCCESS"]

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self, orchestrator, session_factory):
        await orchestrator.run_supplier("Artvision")
        _, before = await catalog_of(session_factory)

        result = await orchestrator.run_supplier("Artvision")

        _, after = await catalog_of(session_factory)
        assert result.records_unchanged == 3
        assert result.total_changes == 0
        assert result.structure_changed is False
        assert after == before

    @pytest.mark.asyncio
    async def test_changed_values_update(self, orchestrator, session_factory, xlsx_file):
        await orchestrator.run_supplier("Artvision")
        changed = [list(row) for row in STOCK_ROWS]
        changed[1][2] = 90
        xlsx_file(changed, name="artvision.xlsx")

        result = await orchestrator.run_supplier("Artvision")

        assert result.records_updated == 1
        assert result.records_unchanged == 2
        _, catalog = await catalog_of(session_factory)
        assert catalog[("Verona", "12")].meterage == 90

    @pytest.mark.asyncio
    async def test_layout_change_flagged(self, orchestrator, xlsx_file):
        await orchestrator.run_supplier("Artvision")
        xlsx_file([HEADER + ["Примечание"]] + STOCK_ROWS[1:], name="artvision.xlsx")

        result = await orchestrator.run_supplier("Artvision")

        assert result.success
        assert result.structure_changed is True

    @pytest.mark.asyncio
    async def test_excluded_rows_untouched(self, orchestrator, session_factory, xlsx_file):
        await orchestrator.run_supplier("Artvision")
        async with session_factory() as session:
            repo = CatalogRepository(session)
            supplier = await repo.get_supplier_by_name("Artvision")
            await repo.set_exclusion(supplier.id, "Verona", "12")
            await session.commit()
        changed = [list(row) for row in STOCK_ROWS]
        changed[1][2] = 5
        xlsx_file(changed, name="artvision.xlsx")

        result = await orchestrator.run_supplier("Artvision")

        assert result.records_skipped == 1
        _, catalog = await catalog_of(session_factory)
        assert catalog[("Verona", "12")].meterage == 85.6


class TestFailures:
    @pytest.mark.asyncio
    async def test_unknown_supplier(self, orchestrator, session_factory):
        result = await orchestrator.run_supplier("Nobody")

        assert result.status is ImportStatus.FAILED
        assert result.message == "Unknown supplier: Nobody"
        assert await runs_of(session_factory, "Nobody") == []

    @pytest.mark.asyncio
    async def test_missing_file_marks_supplier_error(self, orchestrator, session_factory, tmp_path):
        await orchestrator.run_supplier("Artvision")
        await orchestrator.sync_suppliers([artvision_spec(tmp_path / "missing.xlsx")])

        result = await orchestrator.run_supplier("Artvision")

        assert result.status is ImportStatus.FAILED
        assert result.message.startswith("Import failed: Source unavailable")
        assert result.error_details["error_type"] == "SourceUnavailable"
        supplier, catalog = await catalog_of(session_factory)
        assert supplier.status == "error"
        assert "missing.xlsx" in supplier.error_message
        assert supplier.fabrics_count == 3
        assert len(catalog) == 3
        assert [r.status for r in await runs_of(session_factory)] == ["FAILED", "SUCCESS"]

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back_whole_batch(
        self, orchestrator, session_factory, xlsx_file, monkeypatch
    ):
        await orchestrator.run_supplier("Artvision")
        _, before = await catalog_of(session_factory)

        changed = [list(row) for row in STOCK_ROWS]
        changed[1][2] = 50
        changed[3][2] = 60
        changed.append(["Helena - 02", "да", 30, None])
        xlsx_file(changed, name="artvision.xlsx")

        original = CatalogRepository._apply_action
        calls = {"n": 0}

        async def failing_apply(self, supplier_id, action, existing):
            calls["n"] += 1
            if calls["n"] == 3:
                raise RuntimeError("disk full")
            await original(self, supplier_id, action, existing)

        monkeypatch.setattr(CatalogRepository, "_apply_action", failing_apply)

        result = await orchestrator.run_supplier("Artvision")

        assert result.status is ImportStatus.FAILED
        assert result.error_details["error_type"] == "ReconciliationFailure"
        assert result.error_details["cause_type"] == "RuntimeError"
        supplier, after = await catalog_of(session_factory)
        assert after == before
        assert supplier.status == "error"
        assert "disk full" in supplier.error_message
        assert supplier.fabrics_count == 3

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_others(self, orchestrator, tmp_path):
        await orchestrator.sync_suppliers([artvision_spec(tmp_path / "missing.xlsx", name="Broken")])

        summary = await orchestrator.run_all(max_concurrency=1)

        assert summary["total_suppliers"] == 2
        assert summary["successful_suppliers"] == 1
        assert summary["failed_suppliers"] == 1
        assert summary["overall_success"] is False
        statuses = {r.supplier_name: r.status for r in summary["results"]}
        assert statuses == {"Artvision": ImportStatus.SUCCESS, "Broken": ImportStatus.FAILED}


class TestRuleInference:
    ROWS = [
        ["Остатки тканей на 01.03.2025"],
        ["Коллекция", "Цвет", "Наличие", "Остаток, м"],
        ["Helena", "01", "+", 85.6],
        ["Helena", "02", "-", None],
    ]

    @pytest.mark.asyncio
    async def test_rules_inferred_and_stored_provisionally(self, orchestrator, session_factory, xlsx_file):
        path = xlsx_file(self.ROWS, name="orion.xlsx")
        await orchestrator.sync_suppliers(
            [SupplierSpec(name="Orion", kind="rules", source=SourceSpec(type="workbook", path=str(path)))]
        )

        result = await orchestrator.run_supplier("Orion")

        assert result.status is ImportStatus.SUCCESS
        assert result.records_created == 2
        async with session_factory() as session:
            repo = CatalogRepository(session)
            supplier = await repo.get_supplier_by_name("Orion")
            rules = await repo.load_rules(supplier.id)
        assert rules.origin == "inferred"
        assert rules.confirmed is False
        assert rules.header_row == 2

    @pytest.mark.asyncio
    async def test_confirmation_required(self, session_factory, xlsx_file, app_config):
        config = AppConfig(db=app_config.db, ingest=IngestConfig(require_confirmed_rules=True))
        orchestrator = IngestionOrchestrator(config=config, session_factory=session_factory)
        path = xlsx_file(self.ROWS, name="orion.xlsx")
        await orchestrator.sync_suppliers(
            [SupplierSpec(name="Orion", kind="rules", source=SourceSpec(type="workbook", path=str(path)))]
        )

        result = await orchestrator.run_supplier("Orion")

        assert result.status is ImportStatus.FAILED
        assert result.error_details["error_type"] == "RuleMissingError"
        assert "provisional" in result.message
        async with session_factory() as session:
            repo = CatalogRepository(session)
            supplier = await repo.get_supplier_by_name("Orion")
            assert await repo.load_rules(supplier.id) is not None
            assert await repo.count_fabrics(supplier.id) == 0

    @pytest.mark.asyncio
    async def test_confirmed_rules_used(self, orchestrator, session_factory, xlsx_file):
        path = xlsx_file(self.ROWS, name="orion.xlsx")
        await orchestrator.sync_suppliers(
            [SupplierSpec(name="Orion", kind="rules", source=SourceSpec(type="workbook", path=str(path)))]
        )
        await orchestrator.run_supplier("Orion")
        async with session_factory() as session:
            repo = CatalogRepository(session)
            supplier = await repo.get_supplier_by_name("Orion")
            rules = await repo.load_rules(supplier.id)

        await orchestrator.save_rules("Orion", rules.model_copy(update={"confirmed": True}))

        async with session_factory() as session:
            stored = await CatalogRepository(session).load_rules(supplier.id)
        assert stored.confirmed is True


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_busy_supplier_rejected_without_wait(self, orchestrator):
        async with orchestrator._lock_for("Artvision"):
            assert orchestrator.is_running("Artvision")
            with pytest.raises(ParseInProgressError):
                await orchestrator.run_supplier("Artvision", wait=False)

        assert not orchestrator.is_running("Artvision")

    @pytest.mark.asyncio
    async def test_concurrent_runs_serialize(self, orchestrator):
        results = await asyncio.gather(
            orchestrator.run_supplier("Artvision"), orchestrator.run_supplier("Artvision")
        )

        assert sorted(r.records_created for r in results) == [0, 3]
        assert sorted(r.records_unchanged for r in results) == [0, 3]

    @pytest.mark.asyncio
    async def test_reconciliation_runs_off_the_event_loop(self, orchestrator, monkeypatch):
        loop_thread = threading.get_ident()
        threads = []
        real_reconcile = orchestrator_module.reconcile

        def recording_reconcile(*args, **kwargs):
            threads.append(threading.get_ident())
            return real_reconcile(*args, **kwargs)

        monkeypatch.setattr(orchestrator_module, "reconcile", recording_reconcile)

        result = await orchestrator.run_supplier("Artvision")

        assert result.records_created == 3
        assert threads and loop_thread not in threads


class TestManualUpload:
    @pytest.mark.asyncio
    async def test_upload_holds_until_deactivated(self, orchestrator, session_factory, xlsx_file):
        await orchestrator.run_supplier("Artvision")
        upload = xlsx_file([HEADER, ["Verona - 12", "да", 100, None]], name="upload.xlsx")

        uploaded = await orchestrator.run_manual_upload("Artvision", upload, OverrideType.STOCK)

        assert uploaded.status is ImportStatus.SUCCESS
        assert uploaded.message.startswith("Manual stock upload. ")
        assert uploaded.records_updated == 1
        _, catalog = await catalog_of(session_factory)
        assert catalog[("Verona", "12")].meterage == 100

        # The supplier's own list still says 85.6; the upload wins
        rerun = await orchestrator.run_supplier("Artvision")
        assert rerun.records_unchanged == 3
        _, catalog = await catalog_of(session_factory)
        assert catalog[("Verona", "12")].meterage == 100

        async with session_factory() as session:
            repo = CatalogRepository(session)
            supplier = await repo.get_supplier_by_name("Artvision")
            active = await repo.load_active_overrides(supplier.id)
            assert active[0].last_parser_update is not None
            await repo.deactivate_overrides(supplier.id, OverrideType.STOCK)
            await session.commit()

        released = await orchestrator.run_supplier("Artvision")

        assert released.records_updated == 1
        _, catalog = await catalog_of(session_factory)
        assert catalog[("Verona", "12")].meterage == 85.6

    @pytest.mark.asyncio
    async def test_parser_can_supersede_upload(self, orchestrator, session_factory, xlsx_file):
        await orchestrator.run_supplier("Artvision")
        upload = xlsx_file([HEADER, ["Verona - 12", "да", 100, None]], name="upload.xlsx")
        await orchestrator.run_manual_upload("Artvision", upload, OverrideType.STOCK)

        result = await orchestrator.run_supplier("Artvision", parser_supersedes_overrides=True)

        assert result.records_updated == 1
        supplier, catalog = await catalog_of(session_factory)
        assert catalog[("Verona", "12")].meterage == 85.6
        async with session_factory() as session:
            assert await CatalogRepository(session).load_active_overrides(supplier.id) == []


VIPTEXTIL_PAGE = """
<html><body><table>
<tr><td>Номенклатура</td><td>Наличие</td></tr>
<tr><td>Lux 01 beige</td><td>есть в наличии</td></tr>
<tr><td>Lux 02 grey</td><td>уточнять наличие по звонку</td></tr>
</table></body></html>
"""


@pytest.mark.asyncio
async def test_html_supplier_over_http(app_config, session_factory):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, content=VIPTEXTIL_PAGE.encode("cp1251"), headers={"content-type": "text/html"}
        )

    orchestrator = IngestionOrchestrator(
        config=app_config,
        session_factory=session_factory,
        transport=httpx.MockTransport(handler),
    )
    await orchestrator.sync_suppliers(
        [
            SupplierSpec(
                name="VipTextil",
                kind="viptextil",
                source=SourceSpec(type="html", url="https://viptextil.example/ostatki"),
            )
        ]
    )

    result = await orchestrator.run_supplier("VipTextil")

    assert result.status is ImportStatus.SUCCESS
    assert result.records_created == 2
    assert result.records_skipped == 1
    _, catalog = await catalog_of(session_factory, "VipTextil")
    assert catalog[("Lux", "02 grey")].comment == "уточнять наличие по звонку"
    assert catalog[("Lux", "01 beige")].in_stock is True


@pytest.mark.asyncio
async def test_unreachable_source(session_factory):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    config = AppConfig(db=DBConfig(url="sqlite+aiosqlite://"))
    orchestrator = IngestionOrchestrator(
        config=config, session_factory=session_factory, transport=httpx.MockTransport(handler)
    )
    await orchestrator.sync_suppliers(
        [SupplierSpec(name="TextileData", kind="textiledata", source=SourceSpec(type="html", url="https://td.example/"))]
    )

    result = await orchestrator.run_supplier("TextileData")

    assert result.status is ImportStatus.FAILED
    assert "request failed" in result.message
