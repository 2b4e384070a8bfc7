"""
Database module for RepoWiki.

Exports:
- DatabaseManager: Database connection and session management
- get_database_manager: Factory function for DatabaseManager
- wait_for_db: Database availability checker with retry logic
- Models: Warehouse, Document, DocumentCatalog, DocumentFileItem, the i18n
  tables, DocumentCommitRecord, TranslationTask, MiniMap, WarehouseSyncRecord
- Base: SQLAlchemy declarative base
"""

from .db import DatabaseManager, get_database_manager, wait_for_db
from .models import (
    Base,
    Warehouse,
    Document,
    DocumentCatalog,
    DocumentFileItem,
    DocumentCatalogI18n,
    DocumentFileItemI18n,
    DocumentCommitRecord,
    TranslationTask,
    MiniMap,
    WarehouseSyncRecord,
)

__all__ = [
    # Database management
    "DatabaseManager",
    "get_database_manager",
    "wait_for_db",

    # ORM models
    "Base",
    "Warehouse",
    "Document",
    "DocumentCatalog",
    "DocumentFileItem",
    "DocumentCatalogI18n",
    "DocumentFileItemI18n",
    "DocumentCommitRecord",
    "TranslationTask",
    "MiniMap",
    "WarehouseSyncRecord",
]
