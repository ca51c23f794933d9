"""Unit tests for rule inference and the guided rule refinement flow."""

from __future__ import annotations

import pytest

from fabricsync.errors import RuleMissingError
from fabricsync.inference.auto_rules import (
    NO_COLUMN,
    PRESETS,
    apply_answers,
    build_questions,
    classify_header_cell,
    column_from_answer,
    column_label,
    get_preset,
    infer_rule_set,
)
from fabricsync.models import ColumnRole, ExtractionRuleSet
from fabricsync.parsers import analyze
from fabricsync.sources.grid import Sheet, SourceGrid

STOCK_LIST = [
    ["Остатки тканей на 01.03.2025"],
    ["Коллекция", "Цвет", "Наличие", "Остаток, м", "Цена, руб"],
    ["Helena", "01", "+", "85,6", "1500"],
    ["Helena", "02", "-", "", "1500"],
]


class TestHeaderDetection:
    @pytest.mark.parametrize(
        "text,role",
        [
            ("Коллекция", ColumnRole.COLLECTION),
            ("Наименование товара", ColumnRole.COLLECTION),
            ("Цвет", ColumnRole.COLOR),
            ("Наличие", ColumnRole.IN_STOCK),
            ("Остаток, м", ColumnRole.METERAGE),
            ("Цена, руб", ColumnRole.PRICE),
            ("Дата поступления", ColumnRole.NEXT_ARRIVAL_DATE),
            ("Примечание", ColumnRole.COMMENT),
            ("", None),
            ("Helena 01", None),
        ],
    )
    def test_classify_header_cell(self, text, role):
        assert classify_header_cell(text) == role

    def test_infers_after_title_row(self):
        rules = infer_rule_set(STOCK_LIST, supplier="Orion")

        assert rules.header_row == 2
        assert rules.skip_rows == [1, 2]
        assert rules.column_mappings.as_dict() == {
            "collection": 0,
            "color": 1,
            "inStock": 2,
            "meterage": 3,
            "price": 4,
        }
        assert rules.origin == "inferred"
        assert rules.confirmed is False

    def test_lone_color_column_holds_collection(self):
        rules = infer_rule_set([["Цвет", "Наличие"], ["Helena 01", "+"]])

        assert rules.column_mappings.collection == 0
        assert rules.column_mappings.color is None

    def test_no_header_row(self):
        with pytest.raises(RuleMissingError) as exc_info:
            infer_rule_set([["Helena 01", "+"], ["Helena 02", "-"]], supplier="Orion")

        assert "Orion" in str(exc_info.value)
        assert exc_info.value.provisional_rules is None

    def test_no_collection_column_keeps_provisional(self):
        with pytest.raises(RuleMissingError) as exc_info:
            infer_rule_set([["Наличие", "Цена"], ["+", "100"]])

        provisional = exc_info.value.provisional_rules
        assert provisional is not None
        assert provisional.column_mappings.as_dict() == {"inStock": 0, "price": 1}

    def test_scan_window(self):
        grid = [[f"строка {i}"] for i in range(20)] + [["Коллекция", "Наличие"]]

        with pytest.raises(RuleMissingError):
            infer_rule_set(grid, scan_rows=15)


class TestPresets:
    def test_get_preset_returns_copy(self):
        preset = get_preset("vektor")
        preset.special_rules["stopPatterns"].append("ЛЕНТА")

        assert PRESETS["vektor"].special_rules["stopPatterns"] == ["ФУРНИТУРА"]

    def test_unknown_preset(self):
        assert get_preset("acme") is None

    def test_presets_are_confirmed(self):
        assert all(p.confirmed and p.origin == "preset" for p in PRESETS.values())


class TestColumns:
    @pytest.mark.parametrize(
        "index,label",
        [(0, "Колонка 1 (A)"), (2, "Колонка 3 (C)"), (25, "Колонка 26 (Z)"), (26, "Колонка 27 (AA)")],
    )
    def test_column_label(self, index, label):
        assert column_label(index) == label

    @pytest.mark.parametrize(
        "answer,index",
        [
            (3, 3),
            ("c", 2),
            ("AA", 26),
            ("Колонка 3 (C)", 2),
            ("4", 4),
            ("Нет", None),
            ("", None),
            (None, None),
        ],
    )
    def test_column_from_answer(self, answer, index):
        assert column_from_answer(answer) == index

    @pytest.mark.parametrize("answer", [True, "третья", "A1"])
    def test_invalid_answers(self, answer):
        with pytest.raises(ValueError):
            column_from_answer(answer)


class TestQuestions:
    def test_questions_prefilled_from_provisional(self):
        provisional = infer_rule_set(STOCK_LIST)

        questions = {q.id: q for q in build_questions(STOCK_LIST, provisional)}

        assert len(questions) == 8
        assert questions["header-row"].default == "2"
        assert questions["collection-column"].default == "Колонка 1 (A)"
        assert questions["arrival-column"].default == NO_COLUMN
        assert questions["stock-column"].options[-1] == NO_COLUMN
        assert len(questions["stock-column"].options) == 6

    def test_apply_answers_confirms(self):
        provisional = infer_rule_set(STOCK_LIST)

        rules = apply_answers(
            provisional,
            {
                "color-column": "Нет",
                "comment-column": "F",
                "arrival-column": "Колонка 7 (G)",
                "header-row": "3",
            },
        )

        assert rules.confirmed is True
        assert rules.origin == "inferred"
        assert rules.header_row == 3
        assert rules.skip_rows == [1, 2, 3]
        assert rules.column_mappings.as_dict() == {
            "collection": 0,
            "inStock": 2,
            "meterage": 3,
            "price": 4,
            "nextArrivalDate": 6,
            "comment": 5,
        }
        # Provisional rules are left untouched
        assert provisional.confirmed is False

    def test_header_row_zero_clears_skip_rows(self):
        rules = apply_answers(infer_rule_set(STOCK_LIST), {"header-row": "0"})

        assert rules.header_row is None
        assert rules.skip_rows == []

    def test_answers_without_provisional(self):
        rules = apply_answers(None, {"collection-column": "A", "stock-column": "B"})

        assert rules.origin == "manual"
        assert rules.column_mappings.as_dict() == {"collection": 0, "inStock": 1}

    def test_collection_column_required(self):
        with pytest.raises(ValueError, match="collection column"):
            apply_answers(None, {"stock-column": "B"})

    def test_rules_survive_json_roundtrip(self):
        rules = apply_answers(infer_rule_set(STOCK_LIST), {"comment-column": "F"})

        restored = ExtractionRuleSet.from_json(rules.to_json())

        assert restored == rules
        assert '"columnMappings"' in rules.to_json()


class TestAnalyze:
    def test_suggests_columns(self):
        source = SourceGrid([Sheet("Остатки", STOCK_LIST)], ["Остатки", "Архив"])

        result = analyze(source)
        payload = result.to_dict()

        assert payload["headerRow"] == 2
        assert payload["suggestedColumns"]["meterage"] == 3
        assert payload["sheetNames"] == ["Остатки", "Архив"]
        assert payload["sampleRows"] == STOCK_LIST
        assert len(payload["questions"]) == 8

    def test_sample_returned_when_inference_fails(self):
        rows = [["Helena 01", "+"]] * 20
        source = SourceGrid([Sheet("S", rows)], ["S"])

        result = analyze(source, scan_rows=5)

        assert result.provisional_rules is None
        assert result.suggested_columns == {}
        assert len(result.sample_rows) == 5
        assert result.questions[0].default == "0"

    def test_stored_rules_used_as_is(self):
        rules = get_preset("artvision")
        source = SourceGrid([Sheet("S", STOCK_LIST)], ["S"])

        result = analyze(source, rules)

        assert result.provisional_rules is rules
        assert result.suggested_columns == rules.column_mappings.as_dict()
