"""Background worker that builds one knowledge map per completed warehouse."""

import json
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import exists
from sqlalchemy.exc import IntegrityError

from ..constants import WAREHOUSE_COMPLETED
from ..db import DatabaseManager
from ..db.models import Document, MiniMap, Warehouse
from ..utils import utcnow
from ..workers import PollingWorker
from .builder import LLMMiniMapBuilder, MiniMapBuilder

logger = logging.getLogger(__name__)


class MiniMapWorker(PollingWorker):
    """Polls for completed warehouses without a MiniMap, oldest first.

    A failed build is logged and the warehouse is skipped for
    ``retry_cooldown`` seconds (one poll interval unless given) so it does
    not block the ones behind it.
    The warehouse itself is never marked failed.
    """

    name = "minimap-worker"

    def __init__(
        self,
        db_manager: DatabaseManager,
        builder: Optional[MiniMapBuilder] = None,
        poll_interval: float = 10.0,
        retry_cooldown: Optional[float] = None,
    ):
        super().__init__(poll_interval=poll_interval)
        self._db = db_manager
        self._builder = builder or LLMMiniMapBuilder()
        self.retry_cooldown = poll_interval if retry_cooldown is None else retry_cooldown
        self._retry_after: Dict[str, datetime] = {}

    def run_once(self) -> bool:
        candidate = self._next_candidate()
        if candidate is None:
            return False
        warehouse, repo_path = candidate

        try:
            minimap = self._builder.build(warehouse.optimized_directory_structure or "", warehouse, repo_path)
        except Exception as e:
            logger.error(f"Knowledge map for warehouse {warehouse.id} failed: {e}", exc_info=True)
            self._defer(warehouse.id)
            return False

        if minimap is None:
            logger.warning(f"Knowledge map for warehouse {warehouse.id} came back empty")
            self._defer(warehouse.id)
            return False

        self._store(warehouse.id, minimap)
        return True

    def _next_candidate(self):
        now = utcnow()
        self._retry_after = {wid: t for wid, t in self._retry_after.items() if t > now}

        with self._db.get_session() as session:
            has_minimap = exists().where(MiniMap.warehouse_id == Warehouse.id)
            query = (
                session.query(Warehouse, Document.git_path)
                .outerjoin(Document, Document.warehouse_id == Warehouse.id)
                .filter(Warehouse.status == WAREHOUSE_COMPLETED, ~has_minimap)
            )
            if self._retry_after:
                query = query.filter(Warehouse.id.notin_(list(self._retry_after)))
            row = query.order_by(Warehouse.created_at).first()
            if row is None:
                return None
            warehouse, git_path = row
            return warehouse, git_path or warehouse.address

    def _store(self, warehouse_id: str, minimap: dict):
        try:
            with self._db.get_session() as session:
                session.add(MiniMap(warehouse_id=warehouse_id, value=json.dumps(minimap, ensure_ascii=False)))
            logger.info(f"Stored knowledge map for warehouse {warehouse_id}")
        except IntegrityError:
            logger.info(f"Knowledge map for warehouse {warehouse_id} already stored by another worker")

    def _defer(self, warehouse_id: str):
        self._retry_after[warehouse_id] = utcnow() + timedelta(seconds=self.retry_cooldown)
