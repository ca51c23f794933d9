"""Pytest configuration and fixtures for FabricSync tests.

Provides sample bands, records and catalog rows, an in-test workbook writer
and a throwaway SQLite database for integration tests.
"""

from __future__ import annotations

import io
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Sequence

import pytest
import pytest_asyncio
from openpyxl import Workbook
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from fabricsync.config import AppConfig, DBConfig, reset_config
from fabricsync.db.models import Base
from fabricsync.models import PriceBand
from fabricsync.pipeline.types import CatalogRow, FabricRecord


def workbook_bytes(sheets: dict[str, Sequence[Sequence[Any]]]) -> bytes:
    """Build an .xlsx in memory, one worksheet per entry."""
    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets.items():
        sheet = workbook.create_sheet(title=title)
        for row in rows:
            sheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def write_workbook(path: Path, rows: Sequence[Sequence[Any]], title: str = "Остатки") -> Path:
    path.write_bytes(workbook_bytes({title: rows}))
    return path


@pytest.fixture
def bands() -> list[PriceBand]:
    """Three-band table used across reconciliation tests."""
    return [
        PriceBand(category=1, price=Decimal("1000")),
        PriceBand(category=2, price=Decimal("3000")),
        PriceBand(category=3, price=Decimal("5000")),
    ]


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 3, 1, 12, 0, 0)


@pytest.fixture
def sample_record() -> FabricRecord:
    return FabricRecord(
        collection="Verona",
        color_number="12",
        in_stock=True,
        meterage=85.6,
        price=Decimal("1500"),
        row_number=2,
    )


@pytest.fixture
def sample_catalog_row() -> CatalogRow:
    return CatalogRow(
        id="row-1",
        collection="Verona",
        color_number="12",
        in_stock=True,
        meterage=100.0,
        price=Decimal("1500"),
        price_per_meter=Decimal("15.00"),
        category=1,
        last_updated_at=datetime(2025, 2, 1),
    )


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    return AppConfig(db=DBConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'fabricsync.db'}"))


@pytest_asyncio.fixture()
async def session_factory(app_config: AppConfig):
    """Session factory over a fresh SQLite file database."""
    engine = create_async_engine(app_config.db.url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    reset_config()
    yield
    reset_config()


@pytest.fixture
def xlsx_bytes():
    """Factory: ``{sheet title: rows}`` -> workbook bytes."""
    return workbook_bytes


@pytest.fixture
def xlsx_file(tmp_path: Path):
    """Factory: rows -> path of a one-sheet workbook under tmp_path."""

    def _write(rows: Sequence[Sequence[Any]], name: str = "list.xlsx", title: str = "Остатки") -> Path:
        return write_workbook(tmp_path / name, rows, title)

    return _write
