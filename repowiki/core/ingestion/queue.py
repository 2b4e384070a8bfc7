"""Warehouse work queue backed by the warehouses table.

A warehouse is claimable when it is ``pending``, or ``processing`` with a
lease (``claimed_at``) that is missing or older than ``stale_threshold``;
the latter recovers rows left behind by a crashed worker. Claiming is one
conditional UPDATE per candidate, so two workers never win the same row.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, case, or_

from ..constants import WAREHOUSE_PENDING, WAREHOUSE_PROCESSING
from ..db import DatabaseManager
from ..db.models import Warehouse
from ..utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class WarehouseJob:
    """A claimed warehouse, as seen at claim time."""
    warehouse_id: str
    address: str
    type: str
    branch: str
    git_username: Optional[str] = None
    git_password: Optional[str] = None
    reclaimed: bool = False


def _claimable(stale_cutoff: datetime):
    return or_(
        Warehouse.status == WAREHOUSE_PENDING,
        and_(
            Warehouse.status == WAREHOUSE_PROCESSING,
            or_(Warehouse.claimed_at.is_(None), Warehouse.claimed_at < stale_cutoff),
        ),
    )


class WarehouseQueue:
    """Dequeues warehouses for one ingestion worker."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        worker_id: str,
        stale_threshold: float = 120.0,
        batch_size: int = 5,
    ):
        self._db = db_manager
        self.worker_id = worker_id
        self.stale_threshold = stale_threshold
        self.batch_size = batch_size

    def dequeue(self) -> Optional[WarehouseJob]:
        """Claim the next warehouse, or return None when nothing is claimable.

        Reclaimed ``processing`` rows go first, then the oldest pending rows.
        """
        now = utcnow()
        stale_cutoff = now - timedelta(seconds=self.stale_threshold)

        with self._db.get_session() as session:
            candidates = (
                session.query(Warehouse)
                .filter(_claimable(stale_cutoff))
                .order_by(
                    case((Warehouse.status == WAREHOUSE_PROCESSING, 0), else_=1),
                    Warehouse.created_at,
                )
                .limit(self.batch_size)
                .all()
            )
            jobs = [
                WarehouseJob(
                    warehouse_id=w.id,
                    address=w.address,
                    type=w.type,
                    branch=w.branch or "",
                    git_username=w.git_username,
                    git_password=w.git_password,
                    reclaimed=w.status == WAREHOUSE_PROCESSING,
                )
                for w in candidates
            ]

        for job in jobs:
            if self._claim(job.warehouse_id, now, stale_cutoff):
                if job.reclaimed:
                    logger.warning(f"Reclaimed stale warehouse {job.warehouse_id}")
                logger.info(f"Worker {self.worker_id} claimed warehouse {job.warehouse_id}")
                return job
        return None

    def _claim(self, warehouse_id: str, now: datetime, stale_cutoff: datetime) -> bool:
        with self._db.get_session() as session:
            claimed = (
                session.query(Warehouse)
                .filter(Warehouse.id == warehouse_id, _claimable(stale_cutoff))
                .update(
                    {
                        Warehouse.status: WAREHOUSE_PROCESSING,
                        Warehouse.claimed_by: self.worker_id,
                        Warehouse.claimed_at: now,
                    },
                    synchronize_session=False,
                )
            )
        return claimed == 1

    def heartbeat(self) -> int:
        """Refresh the lease on every warehouse this worker holds."""
        with self._db.get_session() as session:
            return (
                session.query(Warehouse)
                .filter(
                    Warehouse.status == WAREHOUSE_PROCESSING,
                    Warehouse.claimed_by == self.worker_id,
                )
                .update({Warehouse.claimed_at: utcnow()}, synchronize_session=False)
            )
