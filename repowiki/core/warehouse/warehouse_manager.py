"""Warehouse Manager for RepoWiki.

Read and submit operations on warehouses and their generated artefacts
(catalogue, pages, changelog, sync records, knowledge map) for the API.
Pipeline state transitions live in the ingestion and incremental workers.
"""

import json
import logging
from typing import Dict, List, Optional

from ..constants import (
    SYNC_IN_PROGRESS,
    WAREHOUSE_FAILED,
    WAREHOUSE_PENDING,
    WAREHOUSE_TYPE_FILE,
    WAREHOUSE_TYPE_GIT,
)
from ..db import DatabaseManager
from ..db.models import (
    DocumentCatalog,
    DocumentCatalogI18n,
    DocumentCommitRecord,
    DocumentFileItem,
    DocumentFileItemI18n,
    MiniMap,
    Warehouse,
    WarehouseSyncRecord,
)
from ..exceptions import UnsupportedWarehouseTypeError
from ..git import parse_repository_address

logger = logging.getLogger(__name__)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


class WarehouseManager:
    """Manages warehouse submissions and exposes their documentation."""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        logger.info("WarehouseManager initialized")

    # =========================================================================
    # Warehouses
    # =========================================================================

    def create_warehouse(
        self,
        address: str,
        type: str = WAREHOUSE_TYPE_GIT,
        branch: str = "",
        description: str = "",
        git_username: Optional[str] = None,
        git_password: Optional[str] = None,
        enable_sync: bool = True,
    ) -> Dict:
        """Submit a repository for ingestion (status ``pending``).

        A failed submission of the same address and branch is reset to
        pending instead of duplicated.
        """
        if type not in (WAREHOUSE_TYPE_GIT, WAREHOUSE_TYPE_FILE):
            raise UnsupportedWarehouseTypeError(type)

        address = address.strip()
        if type == WAREHOUSE_TYPE_GIT:
            organization, name = parse_repository_address(address)
        else:
            organization, name = "", address.rstrip("/").rsplit("/", 1)[-1]

        with self.db.get_session() as session:
            existing = session.query(Warehouse).filter(
                Warehouse.address == address,
                Warehouse.branch == branch,
            ).first()

            if existing and existing.status != WAREHOUSE_FAILED:
                raise ValueError(f"Warehouse for {address} ({branch or 'default'}) already exists")

            if existing:
                existing.status = WAREHOUSE_PENDING
                existing.error = ""
                existing.claimed_by = None
                existing.claimed_at = None
                session.flush()
                logger.info(f"Resubmitted failed warehouse: {existing.id} ({address})")
                return self._warehouse_to_dict(existing)

            warehouse = Warehouse(
                organization_name=organization,
                name=name,
                description=description,
                address=address,
                type=type,
                branch=branch,
                status=WAREHOUSE_PENDING,
                git_username=git_username,
                git_password=git_password,
                enable_sync=enable_sync,
            )
            session.add(warehouse)
            session.flush()

            logger.info(f"Created warehouse: {warehouse.id} ({address})")
            return self._warehouse_to_dict(warehouse)

    def get_warehouse(self, warehouse_id: str) -> Optional[Dict]:
        with self.db.get_session() as session:
            warehouse = session.get(Warehouse, warehouse_id)
            return self._warehouse_to_dict(warehouse) if warehouse else None

    def list_warehouses(self, status: Optional[str] = None) -> List[Dict]:
        """List warehouses, newest first."""
        with self.db.get_session() as session:
            query = session.query(Warehouse)
            if status:
                query = query.filter(Warehouse.status == status)
            return [self._warehouse_to_dict(w) for w in query.order_by(Warehouse.created_at.desc()).all()]

    # =========================================================================
    # Documentation
    # =========================================================================

    def get_catalogue(self, warehouse_id: str, language: Optional[str] = None) -> List[Dict]:
        """Current catalogue as a nested tree, siblings in ``order``.

        With ``language``, translated names and descriptions replace the
        source text where a translation exists.
        """
        with self.db.get_session() as session:
            rows = (
                session.query(DocumentCatalog)
                .filter(
                    DocumentCatalog.warehouse_id == warehouse_id,
                    DocumentCatalog.is_deleted.is_(False),
                )
                .order_by(DocumentCatalog.order, DocumentCatalog.created_at)
                .all()
            )

            translations = {}
            if language and rows:
                translations = {
                    t.document_catalog_id: t
                    for t in session.query(DocumentCatalogI18n).filter(
                        DocumentCatalogI18n.document_catalog_id.in_([r.id for r in rows]),
                        DocumentCatalogI18n.language_code == language,
                    )
                }

            nodes = {}
            for row in rows:
                translated = translations.get(row.id)
                nodes[row.id] = {
                    "id": row.id,
                    "parent_id": row.parent_id,
                    "name": translated.name if translated else row.name,
                    "url": row.url,
                    "description": translated.description if translated else row.description,
                    "order": row.order,
                    "is_completed": row.is_completed,
                    "children": [],
                }

        roots = []
        for node in nodes.values():
            parent = nodes.get(node["parent_id"]) if node["parent_id"] else None
            if parent is not None:
                parent["children"].append(node)
            else:
                roots.append(node)
        return roots

    def get_page(self, warehouse_id: str, catalog_id: str, language: Optional[str] = None) -> Optional[Dict]:
        """Generated page of a catalogue node, translated when available."""
        with self.db.get_session() as session:
            item = (
                session.query(DocumentFileItem)
                .join(DocumentCatalog, DocumentCatalog.id == DocumentFileItem.document_catalog_id)
                .filter(
                    DocumentCatalog.warehouse_id == warehouse_id,
                    DocumentFileItem.document_catalog_id == catalog_id,
                )
                .order_by(DocumentFileItem.created_at.desc())
                .first()
            )
            if item is None:
                return None

            page = {
                "id": item.id,
                "catalog_id": catalog_id,
                "title": item.title,
                "description": item.description,
                "content": item.content,
                "language": None,
                "created_at": _iso(item.created_at),
            }
            if language:
                translated = session.query(DocumentFileItemI18n).filter(
                    DocumentFileItemI18n.document_file_item_id == item.id,
                    DocumentFileItemI18n.language_code == language,
                ).first()
                if translated:
                    page.update({
                        "title": translated.title,
                        "description": translated.description,
                        "content": translated.content,
                        "language": language,
                    })
            return page

    def get_changelog(self, warehouse_id: str, limit: int = 50) -> List[Dict]:
        """Changelog entries, newest first."""
        with self.db.get_session() as session:
            records = (
                session.query(DocumentCommitRecord)
                .filter(DocumentCommitRecord.warehouse_id == warehouse_id)
                .order_by(DocumentCommitRecord.last_update.desc())
                .limit(limit)
                .all()
            )
            return [
                {
                    "id": r.id,
                    "commit_id": r.commit_id,
                    "author": r.author,
                    "title": r.title,
                    "description": r.commit_message,
                    "date": _iso(r.last_update),
                }
                for r in records
            ]

    def list_sync_records(self, warehouse_id: str, limit: int = 20) -> List[Dict]:
        with self.db.get_session() as session:
            records = (
                session.query(WarehouseSyncRecord)
                .filter(WarehouseSyncRecord.warehouse_id == warehouse_id)
                .order_by(WarehouseSyncRecord.start_time.desc())
                .limit(limit)
                .all()
            )
            return [
                {
                    "id": r.id,
                    "status": r.status,
                    "trigger": r.trigger,
                    "from_version": r.from_version,
                    "to_version": r.to_version,
                    "added_count": r.added_count,
                    "updated_count": r.updated_count,
                    "deleted_count": r.deleted_count,
                    "error_message": r.error_message,
                    "start_time": _iso(r.start_time),
                    "end_time": _iso(r.end_time),
                }
                for r in records
            ]

    def has_sync_in_progress(self, warehouse_id: str) -> bool:
        with self.db.get_session() as session:
            return session.query(WarehouseSyncRecord.id).filter(
                WarehouseSyncRecord.warehouse_id == warehouse_id,
                WarehouseSyncRecord.status == SYNC_IN_PROGRESS,
            ).first() is not None

    def get_minimap(self, warehouse_id: str) -> Optional[Dict]:
        with self.db.get_session() as session:
            minimap = session.query(MiniMap).filter(MiniMap.warehouse_id == warehouse_id).first()
            if minimap is None:
                return None
            return json.loads(minimap.value)

    @staticmethod
    def _warehouse_to_dict(warehouse: Warehouse) -> Dict:
        """Convert a Warehouse ORM object to a dict (credentials omitted)."""
        return {
            "id": warehouse.id,
            "organization_name": warehouse.organization_name or "",
            "name": warehouse.name or "",
            "description": warehouse.description or "",
            "address": warehouse.address,
            "type": warehouse.type,
            "branch": warehouse.branch or "",
            "version": warehouse.version or "",
            "status": warehouse.status,
            "error": warehouse.error or "",
            "enable_sync": bool(warehouse.enable_sync),
            "created_at": _iso(warehouse.created_at),
            "updated_at": _iso(warehouse.updated_at),
        }
