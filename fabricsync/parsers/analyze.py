"""Diagnostic analysis for the rule-editing UI. Never persists anything."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from fabricsync.errors import RuleMissingError
from fabricsync.inference.auto_rules import Question, build_questions, infer_rule_set
from fabricsync.models import ExtractionRuleSet
from fabricsync.sources.grid import Grid, SourceGrid

SAMPLE_ROWS = 15


@dataclass
class AnalysisResult:
    sample_rows: Grid
    suggested_columns: dict[str, int]
    header_row: int | None = None
    sheet_names: list[str] = field(default_factory=list)
    questions: list[Question] = field(default_factory=list)
    provisional_rules: ExtractionRuleSet | None = None

    def to_dict(self) -> dict[str, Any]:
        """Payload in the shape the rule editor reads."""
        return {
            "sampleRows": self.sample_rows,
            "suggestedColumns": self.suggested_columns,
            "headerRow": self.header_row,
            "sheetNames": self.sheet_names,
            "questions": [asdict(q) for q in self.questions],
        }


def analyze(
    source: SourceGrid,
    rules: ExtractionRuleSet | None = None,
    scan_rows: int = SAMPLE_ROWS,
) -> AnalysisResult:
    """Sample rows plus suggested column roles.

    Uses ``rules`` when given; otherwise runs inference and, if inference
    fails, still returns the sample so the operator can answer the questions.
    """
    grid = source.rows
    provisional = rules
    if provisional is None:
        try:
            provisional = infer_rule_set(grid, scan_rows=scan_rows)
        except RuleMissingError as exc:
            provisional = exc.provisional_rules

    return AnalysisResult(
        sample_rows=[list(row) for row in grid[:scan_rows]],
        suggested_columns=provisional.column_mappings.as_dict() if provisional else {},
        header_row=provisional.header_row if provisional else None,
        sheet_names=list(source.available_names),
        questions=build_questions(grid, provisional),
        provisional_rules=provisional,
    )
