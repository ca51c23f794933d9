"""Source adapters: raw supplier documents in, cell grids out."""

from __future__ import annotations

import logging

from fabricsync.errors import SourceUnavailable
from fabricsync.models import SourceSpec
from fabricsync.sources.fetch import RawDocument, fetch_document, read_local_document
from fabricsync.sources.grid import (
    Grid,
    Sheet,
    SourceGrid,
    cell,
    ensure_has_data,
    grid_signature,
    has_data_rows,
    is_blank,
)
from fabricsync.sources.html import parse_html_tables
from fabricsync.sources.sheets import google_sheets_export_url
from fabricsync.sources.text import parse_text_list
from fabricsync.sources.workbook import XLS_MAGIC, read_workbook

logger = logging.getLogger(__name__)

__all__ = [
    "Grid",
    "RawDocument",
    "Sheet",
    "SourceGrid",
    "cell",
    "detect_format",
    "ensure_has_data",
    "fetch_document",
    "fetch_source",
    "grid_signature",
    "has_data_rows",
    "is_blank",
    "load_grid",
    "read_local_document",
]


def detect_format(document: RawDocument) -> str:
    """Guess the physical format from the content-type hint, then the bytes."""
    content_type = (document.content_type or "").lower()
    source = document.source.lower()

    if "html" in content_type:
        return "html"
    if any(t in content_type for t in ("spreadsheet", "excel", "ms-excel")):
        # Some suppliers export HTML tables with an .xls content type
        if document.content.lstrip()[:1] == b"<":
            return "html"
        return "workbook"
    if content_type.startswith("text/plain") or source.endswith((".txt", ".csv")):
        return "text"

    head = document.content[:8]
    if head.startswith(XLS_MAGIC) or head.startswith(b"PK\x03\x04"):
        return "workbook"
    if document.content.lstrip()[:1] == b"<":
        return "html"
    return "text"


def load_grid(document: RawDocument, spec: SourceSpec | None = None) -> SourceGrid:
    """Turn a raw document into grids with the adapter its format calls for.

    The declared source type wins over sniffing, except for workbooks that
    turn out to be HTML.
    """
    fmt = spec.type if spec is not None else detect_format(document)
    if fmt == "google_sheets":
        fmt = "workbook"
    if fmt == "workbook" and detect_format(document) == "html":
        logger.warning(f"{document.source}: workbook source served HTML, reading as table")
        fmt = "html"

    if fmt == "html":
        return parse_html_tables(
            document.text(),
            table_index=spec.table_index if spec else 0,
        )
    if fmt == "workbook":
        return read_workbook(
            document.content,
            source=document.source or "workbook",
            sheet_name=spec.sheet_name if spec else None,
        )
    return parse_text_list(document.text(), name=document.source or "text")


async def fetch_source(
    spec: SourceSpec,
    *,
    timeout: float,
    user_agent: str | None = None,
    transport=None,
) -> RawDocument:
    """Retrieve the document a supplier source points at."""
    if spec.path:
        document = read_local_document(spec.path, spec.content_type)
    elif spec.url:
        url = google_sheets_export_url(spec.url) if spec.type == "google_sheets" else spec.url
        document = await fetch_document(
            url, timeout=timeout, user_agent=user_agent, transport=transport
        )
    else:
        raise SourceUnavailable("<unset>", "source has neither url nor path")

    if spec.content_type:
        document.content_type = spec.content_type
    return document
