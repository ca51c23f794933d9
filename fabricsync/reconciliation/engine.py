"""Reconciliation of freshly parsed records against a supplier's catalog.

Pure and side-effect free: the engine takes the current catalog slice, the
parsed records and the overrides, and returns the new catalog plus one
action per parsed record. Persisting the result (in one transaction) is
the repository's job.

Per parsed record, keyed by normalized ``(collection, colorNumber)``:

1. no catalog row with the key: CREATE
2. catalog row excluded from parsing: SKIPPED
3. fields held by an active override keep the override's value
4. no tracked field differs (numbers within epsilon): NOOP, timestamp untouched
5. otherwise UPDATE: differing fields written, derived price fields
   recomputed, ``last_updated_at`` refreshed

Catalog rows missing from the parse are left as they are.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Sequence

from fabricsync.canonical.categories import derive_category
from fabricsync.models import ManualOverride, PriceBand
from fabricsync.pipeline.types import CatalogRow, FabricRecord
from fabricsync.reconciliation.precedence import HeldFields, index_overrides, is_superseded

logger = logging.getLogger(__name__)

TRACKED_FIELDS = ("in_stock", "meterage", "price", "comment", "next_arrival_date")
NUMERIC_FIELDS = {"meterage", "price"}


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    NOOP = "noop"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RecordAction:
    """Decision for one parsed record."""

    action: Action
    key: tuple[str, str]
    before: CatalogRow | None
    after: CatalogRow | None
    changed_fields: tuple[str, ...] = ()
    held_fields: tuple[str, ...] = ()


@dataclass
class ReconciliationStats:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0

    def count(self, action: Action) -> None:
        if action is Action.CREATE:
            self.created += 1
        elif action is Action.UPDATE:
            self.updated += 1
        elif action is Action.NOOP:
            self.unchanged += 1
        else:
            self.skipped += 1


@dataclass(frozen=True)
class ReconcileSettings:
    epsilon: Decimal = Decimal("0.01")
    low_stock_threshold: float | None = 10.0
    low_stock_comment: str = "ВНИМАНИЕ, МАЛО!"


@dataclass
class ReconciliationResult:
    catalog: list[CatalogRow]
    actions: list[RecordAction]
    stats: ReconciliationStats
    superseded_overrides: list[ManualOverride] = field(default_factory=list)

    @property
    def changes(self) -> list[RecordAction]:
        return [a for a in self.actions if a.action in (Action.CREATE, Action.UPDATE)]

    @property
    def change_count(self) -> int:
        return self.stats.created + self.stats.updated

    @property
    def fabrics_count(self) -> int:
        return len(self.catalog)


def numbers_differ(old: Any, new: Any, epsilon: Decimal) -> bool:
    """Null-aware numeric comparison with a tolerance."""
    if old is None or new is None:
        return old is not new
    return abs(Decimal(str(old)) - Decimal(str(new))) > epsilon


def field_differs(name: str, old: Any, new: Any, epsilon: Decimal) -> bool:
    if name in NUMERIC_FIELDS:
        return numbers_differ(old, new, epsilon)
    return old != new


def annotate_low_stock(
    comment: str | None, meterage: float | None, settings: ReconcileSettings
) -> str | None:
    """Prefix the comment with the low-stock marker when meterage is short.

    Applied once: an already annotated comment is returned unchanged.
    """
    threshold = settings.low_stock_threshold
    marker = settings.low_stock_comment
    if threshold is None or meterage is None or meterage >= threshold or not marker:
        return comment
    if comment and comment.startswith(marker):
        return comment
    return f"{marker} {comment}" if comment else marker


def _dedupe(parsed: Iterable[FabricRecord]) -> list[FabricRecord]:
    latest: dict[tuple[str, str], FabricRecord] = {}
    for record in parsed:
        latest.pop(record.key, None)
        latest[record.key] = record
    return list(latest.values())


def _resolve(
    record: FabricRecord,
    stored: CatalogRow | None,
    held: HeldFields,
    settings: ReconcileSettings,
) -> dict[str, Any]:
    """Field values this record asks for, after override precedence."""
    stored_value = (lambda name: getattr(stored, name)) if stored else (lambda name: None)

    # A price the source did not report keeps the stored one
    automated_price = record.price if record.price is not None else stored_value("price")

    values = {
        "in_stock": held.resolve("in_stock", record.in_stock, stored_value("in_stock")),
        "meterage": held.resolve("meterage", record.meterage, stored_value("meterage")),
        "price": held.resolve("price", automated_price, stored_value("price")),
        "next_arrival_date": record.next_arrival_date,
    }
    values["comment"] = annotate_low_stock(record.comment, values["meterage"], settings)
    return values


def reconcile(
    catalog: Sequence[CatalogRow],
    parsed: Iterable[FabricRecord],
    overrides: Sequence[ManualOverride],
    bands: Sequence[PriceBand],
    *,
    now: datetime,
    settings: ReconcileSettings | None = None,
    source_timestamp: datetime | None = None,
    parser_supersedes: bool = False,
) -> ReconciliationResult:
    """Compute the next catalog state for one supplier.

    Args:
        catalog: Current catalog rows of the supplier
        parsed: Records from this parse pass
        overrides: The supplier's manual overrides (inactive ones are ignored)
        bands: Price bands for category derivation
        now: Timestamp written to created/updated rows
        settings: Epsilon and low-stock annotation settings
        source_timestamp: When the parsed document was produced, if known
        parser_supersedes: Parsed data is declared newer than every override

    Returns:
        ReconciliationResult; the input sequences are not modified
    """
    settings = settings or ReconcileSettings()

    superseded = [
        o for o in overrides if is_superseded(o, source_timestamp, parser_supersedes)
    ]
    superseded_ids = {id(o) for o in superseded}
    coverage = index_overrides(o for o in overrides if id(o) not in superseded_ids)

    index: dict[tuple[str, str], int] = {}
    rows: list[CatalogRow] = list(catalog)
    for position, row in enumerate(rows):
        index.setdefault(row.key, position)

    actions: list[RecordAction] = []
    stats = ReconciliationStats()

    for record in _dedupe(parsed):
        key = record.key
        position = index.get(key)
        stored = rows[position] if position is not None else None

        if stored is not None and stored.excluded_from_parsing:
            action = RecordAction(Action.SKIPPED, key, stored, stored)
            actions.append(action)
            stats.count(action.action)
            continue

        held = HeldFields(key, coverage)
        values = _resolve(record, stored, held, settings)
        held_names = tuple(sorted(held.fields))

        if stored is None:
            per_meter, category = derive_category(values["price"], values["meterage"], bands)
            created = CatalogRow(
                collection=record.collection,
                color_number=record.color_number,
                price_per_meter=per_meter,
                category=category,
                last_updated_at=now,
                **values,
            )
            index[key] = len(rows)
            rows.append(created)
            action = RecordAction(
                Action.CREATE, key, None, created, tuple(TRACKED_FIELDS), held_names
            )
        else:
            changed = tuple(
                name
                for name in TRACKED_FIELDS
                if field_differs(name, getattr(stored, name), values[name], settings.epsilon)
            )
            if not changed:
                action = RecordAction(Action.NOOP, key, stored, stored, (), held_names)
            else:
                updates = {name: values[name] for name in changed}
                if "price" in changed or "meterage" in changed:
                    # Held price fields move only with the held price itself
                    if "price" not in held or "price" in changed:
                        per_meter, category = derive_category(
                            values["price"], values["meterage"], bands
                        )
                        updates["price_per_meter"] = per_meter
                        updates["category"] = category
                updated = replace(stored, last_updated_at=now, **updates)
                rows[position] = updated
                action = RecordAction(
                    Action.UPDATE, key, stored, updated, changed, held_names
                )

        actions.append(action)
        stats.count(action.action)

    logger.info(
        f"Reconciled {len(actions)} records: {stats.created} new, {stats.updated} updated, "
        f"{stats.unchanged} unchanged, {stats.skipped} skipped"
    )
    if superseded:
        logger.info(f"{len(superseded)} manual overrides superseded by newer parser data")

    return ReconciliationResult(
        catalog=rows,
        actions=actions,
        stats=stats,
        superseded_overrides=superseded,
    )
