"""
SQLAlchemy ORM Models for RepoWiki

- Warehouse: a tracked source repository and its ingestion lease
- Document: the local working copy of a warehouse (1:1)
- DocumentCatalog: one node of the documentation tree (soft-deleted only)
- DocumentFileItem: generated body of a catalogue node
- DocumentCatalogI18n / DocumentFileItemI18n: per-language translations
- DocumentCommitRecord: changelog entries
- TranslationTask: trackable, cancellable translation work
- MiniMap: derived knowledge map, one per warehouse
- WarehouseSyncRecord: audit row per incremental update pass
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Boolean, Column, ForeignKey, Index, Integer, String, Text, TIMESTAMP,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def new_id() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Warehouse(Base):
    __tablename__ = "warehouses"

    id = Column(String(64), primary_key=True, default=new_id)
    organization_name = Column(String(255), nullable=False, default="")
    name = Column(String(255), nullable=False, default="")
    description = Column(Text, default="")
    address = Column(String(1024), nullable=False)
    type = Column(String(20), nullable=False, default="git")
    branch = Column(String(255), default="")
    version = Column(String(64), default="")
    status = Column(String(20), nullable=False, default="pending")
    error = Column(Text, default="")
    git_username = Column(String(255))
    git_password = Column(String(255))
    optimized_directory_structure = Column(Text, default="")
    enable_sync = Column(Boolean, nullable=False, default=True)

    # Ingestion lease
    claimed_by = Column(String(128))
    claimed_at = Column(TIMESTAMP)

    created_at = Column(TIMESTAMP, nullable=False, default=_utcnow)
    updated_at = Column(TIMESTAMP, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_warehouses_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<Warehouse(id={self.id}, name='{self.name}', status='{self.status}')>"


class Document(Base):
    __tablename__ = "documents"

    id = Column(String(64), primary_key=True, default=new_id)
    warehouse_id = Column(
        String(64), ForeignKey("warehouses.id"), nullable=False, unique=True
    )
    git_path = Column(String(1024), default="")
    status = Column(String(20), default="pending")
    last_update = Column(TIMESTAMP, nullable=False, default=_utcnow)
    created_at = Column(TIMESTAMP, nullable=False, default=_utcnow)


class DocumentCatalog(Base):
    __tablename__ = "document_catalogs"

    id = Column(String(255), primary_key=True, default=new_id)
    warehouse_id = Column(String(64), ForeignKey("warehouses.id"), nullable=False)
    document_id = Column(String(64), ForeignKey("documents.id"))
    parent_id = Column(String(255))
    name = Column(String(512), nullable=False, default="")
    url = Column(String(512), default="")
    description = Column(Text, default="")
    prompt = Column(Text, default="")
    order = Column(Integer, nullable=False, default=0)
    is_completed = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_time = Column(TIMESTAMP)
    created_at = Column(TIMESTAMP, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_catalogs_warehouse_deleted", "warehouse_id", "is_deleted"),
        Index("idx_catalogs_parent", "parent_id"),
    )


class DocumentFileItem(Base):
    __tablename__ = "document_file_items"

    id = Column(String(64), primary_key=True, default=new_id)
    document_catalog_id = Column(
        String(255), ForeignKey("document_catalogs.id"), nullable=False
    )
    title = Column(String(512), default="")
    description = Column(Text, default="")
    content = Column(Text, default="")
    created_at = Column(TIMESTAMP, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_file_items_catalog", "document_catalog_id"),
    )


class DocumentCatalogI18n(Base):
    __tablename__ = "document_catalog_i18n"

    id = Column(String(64), primary_key=True, default=new_id)
    document_catalog_id = Column(
        String(255), ForeignKey("document_catalogs.id"), nullable=False
    )
    language_code = Column(String(16), nullable=False)
    name = Column(String(512), default="")
    description = Column(Text, default="")
    created_at = Column(TIMESTAMP, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("document_catalog_id", "language_code", name="uq_catalog_i18n_language"),
    )


class DocumentFileItemI18n(Base):
    __tablename__ = "document_file_item_i18n"

    id = Column(String(64), primary_key=True, default=new_id)
    document_file_item_id = Column(
        String(64), ForeignKey("document_file_items.id"), nullable=False
    )
    language_code = Column(String(16), nullable=False)
    title = Column(String(512), default="")
    description = Column(Text, default="")
    content = Column(Text, default="")
    created_at = Column(TIMESTAMP, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("document_file_item_id", "language_code", name="uq_file_item_i18n_language"),
    )


class DocumentCommitRecord(Base):
    __tablename__ = "document_commit_records"

    id = Column(String(64), primary_key=True, default=new_id)
    warehouse_id = Column(String(64), ForeignKey("warehouses.id"), nullable=False)
    commit_id = Column(String(64), default="")
    author = Column(String(255), default="")
    title = Column(String(512), default="")
    commit_message = Column(Text, default="")
    last_update = Column(TIMESTAMP, nullable=False, default=_utcnow)
    created_at = Column(TIMESTAMP, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_commit_records_warehouse_last_update", "warehouse_id", "last_update"),
    )


class TranslationTask(Base):
    __tablename__ = "translation_tasks"

    id = Column(String(64), primary_key=True, default=new_id)
    warehouse_id = Column(String(64), ForeignKey("warehouses.id"), nullable=False)
    target_id = Column(String(255), nullable=False)
    target_language = Column(String(16), nullable=False)
    source_language = Column(String(16), nullable=False, default="en-US")
    task_type = Column(String(20), nullable=False, default="repository")
    status = Column(String(20), nullable=False, default="pending")
    catalogs_translated = Column(Integer, nullable=False, default=0)
    total_catalogs = Column(Integer, nullable=False, default=0)
    files_translated = Column(Integer, nullable=False, default=0)
    total_files = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    # Set while pending/running, NULL once terminal. Unique, so at most one
    # in-flight task exists per (warehouse, language, type, target).
    in_flight_key = Column(String(600), unique=True)
    started_at = Column(TIMESTAMP)
    completed_at = Column(TIMESTAMP)
    created_at = Column(TIMESTAMP, nullable=False, default=_utcnow)
    updated_at = Column(TIMESTAMP, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_translation_tasks_warehouse_language", "warehouse_id", "target_language"),
        Index("idx_translation_tasks_status", "status"),
    )

    @property
    def progress(self) -> int:
        total = (self.total_catalogs or 0) + (self.total_files or 0)
        if total == 0:
            return 0
        done = (self.catalogs_translated or 0) + (self.files_translated or 0)
        return int(done * 100 / total)


class MiniMap(Base):
    __tablename__ = "mini_maps"

    id = Column(String(64), primary_key=True, default=new_id)
    warehouse_id = Column(
        String(64), ForeignKey("warehouses.id"), nullable=False, unique=True
    )
    value = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP, nullable=False, default=_utcnow)


class WarehouseSyncRecord(Base):
    __tablename__ = "warehouse_sync_records"

    id = Column(String(64), primary_key=True, default=new_id)
    warehouse_id = Column(String(64), ForeignKey("warehouses.id"), nullable=False)
    status = Column(String(20), nullable=False, default="in_progress")
    from_version = Column(String(64), default="")
    to_version = Column(String(64), default="")
    error_message = Column(Text)
    added_count = Column(Integer, nullable=False, default=0)
    updated_count = Column(Integer, nullable=False, default=0)
    deleted_count = Column(Integer, nullable=False, default=0)
    trigger = Column(String(20), nullable=False, default="auto")
    start_time = Column(TIMESTAMP, nullable=False, default=_utcnow)
    end_time = Column(TIMESTAMP)

    __table_args__ = (
        Index("idx_sync_records_warehouse_start", "warehouse_id", "start_time"),
    )
