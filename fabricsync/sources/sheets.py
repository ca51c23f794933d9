"""Google Sheets published exports."""

from __future__ import annotations

import re

_SPREADSHEET_ID = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
_GID = re.compile(r"[#&?]gid=(\d+)")


def google_sheets_export_url(url: str, gid: str | None = None) -> str:
    """Turn a sharing link (or bare id) into an xlsx export URL.

    Example:
        >>> google_sheets_export_url("https://docs.google.com/spreadsheets/d/abc123/edit#gid=7")
        'https://docs.google.com/spreadsheets/d/abc123/export?format=xlsx&id=abc123&gid=7'
    """
    match = _SPREADSHEET_ID.search(url)
    sheet_id = match.group(1) if match else url.strip()

    if gid is None:
        gid_match = _GID.search(url)
        gid = gid_match.group(1) if gid_match else None

    export = (
        f"https://docs.google.com/spreadsheets/d/{sheet_id}/export"
        f"?format=xlsx&id={sheet_id}"
    )
    if gid:
        export += f"&gid={gid}"
    return export
