"""Database layer for FabricSync with async SQLAlchemy."""

from fabricsync.db.connection import close_db, get_session, init_db
from fabricsync.db.models import (
    Base,
    FabricCategoryModel,
    FabricModel,
    ManualUploadModel,
    ParseRunLogModel,
    ParsingRuleModel,
    SupplierModel,
)
from fabricsync.db.repository import CatalogRepository

__all__ = [
    "Base",
    "CatalogRepository",
    "FabricCategoryModel",
    "FabricModel",
    "ManualUploadModel",
    "ParseRunLogModel",
    "ParsingRuleModel",
    "SupplierModel",
    "close_db",
    "get_session",
    "init_db",
]
