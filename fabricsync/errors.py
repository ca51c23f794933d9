"""Error taxonomy for supplier ingestion.

Fatal errors derive from FabricSyncError. NormalizationWarning is a warning
category: it is collected per parse and logged, never raised out of a parser.
"""

from __future__ import annotations

from typing import Any, Sequence


class FabricSyncError(Exception):
    """Base class for all ingestion errors."""

    pass


class SourceUnavailable(FabricSyncError):
    """The raw document could not be fetched or opened.

    Covers timeouts, HTTP errors and unreadable files. Retried by the
    scheduler on a later attempt, never inside one parse invocation.
    """

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Source unavailable ({source}): {reason}")


class SourceFormatError(FabricSyncError):
    """The document was retrieved but does not have the expected shape."""

    def __init__(self, message: str, found_names: Sequence[str] = ()):
        self.found_names = list(found_names)
        if self.found_names:
            message = f"{message} (found: {', '.join(self.found_names)})"
        super().__init__(message)


class RuleMissingError(FabricSyncError):
    """No usable extraction rule set exists for a supplier.

    ``provisional_rules`` carries the best inference result, if any, so the
    operator can confirm or correct it through the guided Q&A flow.
    """

    def __init__(self, supplier: str, reason: str = "", provisional_rules: Any = None):
        self.supplier = supplier
        self.provisional_rules = provisional_rules
        message = f"No extraction rules for supplier '{supplier}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ReconciliationFailure(FabricSyncError):
    """The create/update pass failed; nothing from the batch was committed."""

    def __init__(self, supplier_id: str, cause: BaseException):
        self.supplier_id = supplier_id
        self.cause = cause
        super().__init__(f"Reconciliation failed for supplier {supplier_id}: {cause}")


class ParseInProgressError(FabricSyncError):
    """A run for the same supplier is already in flight."""

    def __init__(self, supplier: str):
        self.supplier = supplier
        super().__init__(f"A parse run for supplier '{supplier}' is already running")


class NormalizationWarning(UserWarning):
    """A cell could not be parsed as a price, meterage or date.

    The field is stored as ``None`` and the row is kept.
    """

    def __init__(
        self,
        field: str,
        raw_value: Any,
        row_number: int | None = None,
        message: str | None = None,
    ):
        self.field = field
        self.raw_value = raw_value
        self.row_number = row_number
        where = f" at row {row_number}" if row_number is not None else ""
        super().__init__(message or f"Could not parse {field} from {raw_value!r}{where}")


class CurrencyMismatchWarning(NormalizationWarning):
    """A price was quoted in a currency other than the base one.

    Prices are never converted, so the value is dropped and the stored
    price stays.
    """

    def __init__(
        self, raw_value: Any, currency: str, base_currency: str, row_number: int | None = None
    ):
        self.currency = currency
        self.base_currency = base_currency
        where = f" at row {row_number}" if row_number is not None else ""
        super().__init__(
            "price",
            raw_value,
            row_number,
            message=f"Price {raw_value!r}{where} is in {currency}, not {base_currency}; ignored",
        )
