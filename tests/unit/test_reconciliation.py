"""Unit tests for catalog reconciliation."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal

import pytest

from fabricsync import models
from fabricsync.models import ManualOverride, OverrideType
from fabricsync.pipeline.types import CatalogRow, FabricRecord
from fabricsync.reconciliation import Action, ReconcileSettings, reconcile
from fabricsync.reconciliation.engine import annotate_low_stock, numbers_differ

LATER = datetime(2025, 3, 2, 9, 0, 0)


def record(collection="Verona", color="12", **kwargs):
    return FabricRecord(collection=collection, color_number=color, **kwargs)


def stock_override(rows=None, **kwargs):
    data = {"rows": rows} if rows is not None else {}
    return ManualOverride(supplier_id="s1", type=OverrideType.STOCK, data=data, **kwargs)


class TestCreate:
    def test_new_key_creates_row_with_derived_fields(self, bands, now):
        result = reconcile(
            [], [record(in_stock=True, meterage=12.0, price=Decimal("30000"))], [], bands, now=now
        )

        assert [a.action for a in result.actions] == [Action.CREATE]
        row = result.catalog[0]
        assert row.price_per_meter == Decimal("2500.00")
        assert row.category == 2
        assert row.last_updated_at == now
        assert result.stats.created == 1
        assert result.fabrics_count == 1

    def test_category_from_raw_price_without_meterage(self, bands, now):
        result = reconcile([], [record(price=Decimal("4000"))], [], bands, now=now)

        row = result.catalog[0]
        assert row.price_per_meter is None
        assert row.category == 3

    def test_no_bands_no_category(self, now):
        result = reconcile([], [record(price=Decimal("4000"))], [], [], now=now)
        assert result.catalog[0].category is None


class TestIdempotence:
    def test_second_pass_changes_nothing(self, bands, now):
        records = [
            record(in_stock=True, meterage=85.6, price=Decimal("1500")),
            record("Verona", "14", in_stock=False, next_arrival_date=date(2025, 4, 15)),
            record("Helena", "01", meterage=5.0, comment="под заказ"),
        ]

        first = reconcile([], records, [], bands, now=now)
        second = reconcile(first.catalog, records, [], bands, now=LATER)

        assert first.stats.created == 3
        assert [a.action for a in second.actions] == [Action.NOOP] * 3
        assert second.catalog == first.catalog
        assert second.change_count == 0
        assert second.changes == []


class TestUpdate:
    def test_changed_meterage_updates_and_rederives(self, bands, now, sample_record, sample_catalog_row):
        result = reconcile([sample_catalog_row], [sample_record], [], bands, now=now)

        action = result.actions[0]
        assert action.action is Action.UPDATE
        assert action.changed_fields == ("meterage",)
        assert action.before == sample_catalog_row
        row = result.catalog[0]
        assert row.meterage == 85.6
        assert row.price_per_meter == Decimal("17.52")
        assert row.id == "row-1"
        assert row.last_updated_at == now

    def test_difference_within_epsilon_is_noop(self, bands, now, sample_catalog_row):
        parsed = record(in_stock=True, meterage=100.005, price=Decimal("1500.004"))

        result = reconcile([sample_catalog_row], [parsed], [], bands, now=now)

        assert result.actions[0].action is Action.NOOP
        assert result.catalog[0].last_updated_at == datetime(2025, 2, 1)

    def test_custom_epsilon(self, bands, now, sample_catalog_row):
        parsed = record(in_stock=True, meterage=100.4, price=Decimal("1500"))
        settings = ReconcileSettings(epsilon=Decimal("0.5"))

        result = reconcile([sample_catalog_row], [parsed], [], bands, now=now, settings=settings)

        assert result.actions[0].action is Action.NOOP

    def test_missing_price_keeps_stored_price(self, bands, now, sample_catalog_row):
        parsed = record(in_stock=True, meterage=100.0, price=None)

        result = reconcile([sample_catalog_row], [parsed], [], bands, now=now)

        assert result.actions[0].action is Action.NOOP
        assert result.catalog[0].price == Decimal("1500")

    def test_rows_missing_from_parse_are_kept(self, bands, now, sample_catalog_row):
        other = replace(sample_catalog_row, id="row-2", color_number="14")

        result = reconcile(
            [sample_catalog_row, other], [record(in_stock=True, meterage=100.0)], [], bands, now=now
        )

        assert result.fabrics_count == 2
        assert result.catalog[1] == other
        assert len(result.actions) == 1

    def test_key_matching_ignores_case_and_spacing(self, bands, now, sample_catalog_row):
        stored = replace(sample_catalog_row, collection="  VERONA", meterage=85.6)

        result = reconcile(
            [stored], [record("verona", " 12", in_stock=True, meterage=85.6)], [], bands, now=now
        )

        assert result.actions[0].action is Action.NOOP
        assert result.catalog[0].collection == "  VERONA"

    def test_duplicate_records_last_wins(self, bands, now):
        result = reconcile(
            [], [record(meterage=20.0), record("VERONA", "12", meterage=30.0)], [], bands, now=now
        )

        assert len(result.actions) == 1
        assert result.catalog[0].meterage == 30.0

    def test_inputs_not_modified(self, bands, now, sample_record, sample_catalog_row):
        catalog = [sample_catalog_row]

        reconcile(catalog, [sample_record], [], bands, now=now)

        assert catalog == [sample_catalog_row]
        assert catalog[0].meterage == 100.0


class TestExclusion:
    def test_excluded_row_skipped(self, bands, now, sample_record, sample_catalog_row):
        excluded = replace(sample_catalog_row, excluded_from_parsing=True)

        result = reconcile([excluded], [sample_record], [], bands, now=now)

        assert result.actions[0].action is Action.SKIPPED
        assert result.catalog == [excluded]
        assert result.stats.skipped == 1


class TestOverrides:
    def test_active_override_holds_meterage(self, bands, now, sample_record, sample_catalog_row):
        override = stock_override(rows=[{"collection": "Verona", "colorNumber": "12", "meterage": 100}])

        held = reconcile([sample_catalog_row], [sample_record], [override], bands, now=now)
        released = reconcile(
            [sample_catalog_row],
            [sample_record],
            [override.model_copy(update={"is_active": False})],
            bands,
            now=now,
        )

        assert held.actions[0].action is Action.NOOP
        assert held.actions[0].held_fields == ("in_stock", "meterage")
        assert held.catalog[0].meterage == 100.0
        assert released.actions[0].action is Action.UPDATE
        assert released.catalog[0].meterage == 85.6

    def test_override_value_applied_to_new_rows(self, bands, now):
        override = stock_override(
            rows=[{"collection": "Verona", "colorNumber": "12", "inStock": False, "meterage": 0}]
        )

        result = reconcile([], [record(in_stock=True, meterage=85.6)], [override], bands, now=now)

        row = result.catalog[0]
        assert row.in_stock is False
        assert row.meterage is None

    def test_held_price_keeps_derived_fields(self, bands, now, sample_catalog_row):
        override = ManualOverride(supplier_id="s1", type=OverrideType.PRICE)
        parsed = record(in_stock=True, meterage=50.0, price=Decimal("2000"))

        result = reconcile([sample_catalog_row], [parsed], [override], bands, now=now)

        row = result.catalog[0]
        assert result.actions[0].changed_fields == ("meterage",)
        assert row.price == Decimal("1500")
        assert row.price_per_meter == Decimal("15.00")
        assert row.category == 1

    def test_newer_source_supersedes(self, bands, now, sample_record, sample_catalog_row):
        override = stock_override(
            rows=[{"collection": "Verona", "colorNumber": "12", "meterage": 100}],
            uploaded_at=datetime(2025, 2, 20),
        )

        result = reconcile(
            [sample_catalog_row],
            [sample_record],
            [override],
            bands,
            now=now,
            source_timestamp=datetime(2025, 2, 25),
        )

        assert result.superseded_overrides == [override]
        assert result.catalog[0].meterage == 85.6

    def test_parser_supersedes_flag(self, bands, now, sample_record, sample_catalog_row):
        override = stock_override()

        result = reconcile(
            [sample_catalog_row], [sample_record], [override], bands, now=now, parser_supersedes=True
        )

        assert result.superseded_overrides == [override]
        assert result.actions[0].action is Action.UPDATE

    def test_full_list_override_keys_normalized_once(self, bands, now, monkeypatch):
        calls = []
        real_fabric_key = models.fabric_key

        def counting_fabric_key(collection, color):
            calls.append(color)
            return real_fabric_key(collection, color)

        monkeypatch.setattr(models, "fabric_key", counting_fabric_key)
        colors = [str(n) for n in range(3000)]
        override = stock_override(
            rows=[{"collection": "Verona", "colorNumber": c, "meterage": 100} for c in colors]
        )
        catalog = [
            CatalogRow(collection="Verona", color_number=c, in_stock=True, meterage=100.0)
            for c in colors
        ]
        parsed = [record(color=c, in_stock=True, meterage=85.6) for c in colors]

        result = reconcile(catalog, parsed, [override], bands, now=now)

        assert len(calls) == len(colors)
        assert result.stats.unchanged == len(colors)
        assert all(row.meterage == 100.0 for row in result.catalog)


class TestLowStock:
    def test_comment_annotated_once(self, bands, now):
        parsed = [record(in_stock=True, meterage=5.0, comment="под заказ")]

        first = reconcile([], parsed, [], bands, now=now)
        second = reconcile(first.catalog, parsed, [], bands, now=LATER)

        assert first.catalog[0].comment == "ВНИМАНИЕ, МАЛО! под заказ"
        assert second.actions[0].action is Action.NOOP

    @pytest.mark.parametrize(
        "comment,meterage,expected",
        [
            (None, 5.0, "ВНИМАНИЕ, МАЛО!"),
            ("ВНИМАНИЕ, МАЛО! под заказ", 5.0, "ВНИМАНИЕ, МАЛО! под заказ"),
            ("под заказ", 10.0, "под заказ"),
            ("под заказ", None, "под заказ"),
        ],
    )
    def test_annotate_low_stock(self, comment, meterage, expected):
        assert annotate_low_stock(comment, meterage, ReconcileSettings()) == expected

    def test_disabled_threshold(self):
        settings = ReconcileSettings(low_stock_threshold=None)
        assert annotate_low_stock(None, 1.0, settings) is None


@pytest.mark.parametrize(
    "old,new,differs",
    [(None, None, False), (None, 1, True), (1, None, True), (1.0, 1.009, False), (1, 2, True)],
)
def test_numbers_differ(old, new, differs):
    assert numbers_differ(old, new, Decimal("0.01")) is differs
