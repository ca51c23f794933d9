"""Reconciliation of parsed records with the stored catalog."""

from fabricsync.reconciliation.engine import (
    Action,
    ReconciliationResult,
    ReconcileSettings,
    RecordAction,
    reconcile,
)
from fabricsync.reconciliation.precedence import resolve_field

__all__ = [
    "Action",
    "ReconciliationResult",
    "ReconcileSettings",
    "RecordAction",
    "reconcile",
    "resolve_field",
]
