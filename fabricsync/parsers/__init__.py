"""Supplier parsers: one registered parse function per supplier kind."""

from fabricsync.parsers.base import (
    PARSER_REGISTRY,
    RecordCollector,
    get_parser,
    parse_grid,
    register_parser,
)
from fabricsync.parsers import rules, suppliers  # noqa: F401  (registration)
from fabricsync.parsers.analyze import AnalysisResult, analyze

__all__ = [
    "PARSER_REGISTRY",
    "AnalysisResult",
    "RecordCollector",
    "analyze",
    "get_parser",
    "parse_grid",
    "register_parser",
]
