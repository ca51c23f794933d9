"""Unit tests for document retrieval."""

from __future__ import annotations

from datetime import datetime

import httpx
import pytest

from fabricsync.errors import SourceUnavailable
from fabricsync.models import SourceSpec
from fabricsync.sources import fetch_source
from fabricsync.sources.fetch import fetch_document, read_local_document


def _transport(handler):
    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_fetch_document_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["user_agent"] = request.headers.get("user-agent")
        return httpx.Response(
            200,
            content=b"<table><tr><td>Helena 01</td></tr></table>",
            headers={
                "content-type": "text/html; charset=utf-8",
                "last-modified": "Wed, 05 Mar 2025 10:30:00 GMT",
            },
        )

    document = await fetch_document(
        "https://supplier.example/stock",
        timeout=5,
        user_agent="fabricsync-test",
        transport=_transport(handler),
    )

    assert document.content.startswith(b"<table>")
    assert document.content_type.startswith("text/html")
    assert document.source == "https://supplier.example/stock"
    assert document.last_modified == datetime(2025, 3, 5, 10, 30)
    assert seen["user_agent"] == "fabricsync-test"


@pytest.mark.asyncio
async def test_fetch_document_http_error():
    transport = _transport(lambda request: httpx.Response(404))

    with pytest.raises(SourceUnavailable) as exc_info:
        await fetch_document("https://supplier.example/gone", timeout=5, transport=transport)

    assert "HTTP 404" in str(exc_info.value)


@pytest.mark.asyncio
async def test_fetch_document_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(SourceUnavailable) as exc_info:
        await fetch_document("https://supplier.example/slow", timeout=1, transport=_transport(handler))

    assert "timed out" in exc_info.value.reason


@pytest.mark.asyncio
async def test_fetch_source_google_sheets_uses_export_url():
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(200, content=b"PK\x03\x04")

    spec = SourceSpec(
        type="google_sheets", url="https://docs.google.com/spreadsheets/d/sheet42/edit#gid=3"
    )
    await fetch_source(spec, timeout=5, transport=_transport(handler))

    assert requested == [
        "https://docs.google.com/spreadsheets/d/sheet42/export?format=xlsx&id=sheet42&gid=3"
    ]


@pytest.mark.asyncio
async def test_fetch_source_content_type_override():
    transport = _transport(
        lambda request: httpx.Response(200, content=b"<table></table>", headers={"content-type": "text/html"})
    )
    spec = SourceSpec(
        type="html", url="https://supplier.example/", content_type="text/html; charset=windows-1251"
    )

    document = await fetch_source(spec, timeout=5, transport=transport)

    assert document.content_type == "text/html; charset=windows-1251"


def test_read_local_document(tmp_path):
    path = tmp_path / "stock.txt"
    path.write_text("Helena 01\t+", encoding="utf-8")

    document = read_local_document(path)

    assert document.content == "Helena 01\t+".encode("utf-8")
    assert document.content_type == "text/plain"
    assert document.source == str(path)
    assert document.last_modified is not None


def test_read_local_document_missing(tmp_path):
    with pytest.raises(SourceUnavailable) as exc_info:
        read_local_document(tmp_path / "missing.xlsx")

    assert "cannot read file" in exc_info.value.reason


def test_read_local_document_empty(tmp_path):
    path = tmp_path / "empty.xlsx"
    path.write_bytes(b"")

    with pytest.raises(SourceUnavailable) as exc_info:
        read_local_document(path)

    assert exc_info.value.reason == "file is empty"
