"""Background worker that keeps completed warehouses in sync with their remotes.

Each cycle picks the completed, sync-enabled git warehouse whose document
is the most stale (``last_update`` older than the update interval) and
runs one incremental pass on it. The pick is an optimistic claim: the
document's ``last_update`` is bumped with a conditional update keyed on
the value just read, so two workers can never analyse the same warehouse
in one window, and ``last_update`` advances whatever the pass outcome.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..constants import (
    DEFAULT_UPDATE_INTERVAL_DAYS,
    SYNC_CANCELLED,
    SYNC_FAILED,
    SYNC_IN_PROGRESS,
    SYNC_NOOP,
    SYNC_SUCCESS,
    SYNC_TRIGGER_AUTO,
    SYNC_TRIGGER_MANUAL,
    WAREHOUSE_COMPLETED,
    WAREHOUSE_TYPE_GIT,
)
from ..db import DatabaseManager
from ..db.models import Document, Warehouse, WarehouseSyncRecord
from ..results import Cancelled, Failed, NoOp, Outcome, Success
from ..utils import utcnow
from ..workers import PollingWorker
from .engine import IncrementalAnalysisEngine

logger = logging.getLogger(__name__)


@dataclass
class SyncCandidate:
    warehouse_id: str
    document_id: str
    version: str


class IncrementalUpdateWorker(PollingWorker):
    """Polls for stale warehouses and drives IncrementalAnalysisEngine."""

    name = "incremental-update-worker"

    def __init__(
        self,
        db_manager: DatabaseManager,
        engine: IncrementalAnalysisEngine,
        enabled: bool = True,
        update_interval_days: int = DEFAULT_UPDATE_INTERVAL_DAYS,
        poll_interval: float = 60.0,
    ):
        super().__init__(poll_interval=poll_interval)
        self._db = db_manager
        self._engine = engine
        self.enabled = enabled
        self.update_interval_days = update_interval_days

    def start(self):
        if not self.enabled:
            logger.info("Incremental updates disabled, worker not started")
            return
        super().start()

    def run_once(self) -> bool:
        if not self.enabled:
            return False
        candidate = self._claim_stale_candidate()
        if candidate is None:
            return False
        self._run_pass(candidate, SYNC_TRIGGER_AUTO)
        return True

    def sync_now(self, warehouse_id: str) -> Optional[Outcome]:
        """Run a manual pass now. Returns None when another pass holds the warehouse."""
        candidate = self._claim_warehouse(warehouse_id)
        if candidate is None:
            return None
        return self._run_pass(candidate, SYNC_TRIGGER_MANUAL)

    # ── Claiming ────────────────────────────────────────────────────────

    def _claim_stale_candidate(self, batch: int = 5) -> Optional[SyncCandidate]:
        cutoff = utcnow() - timedelta(days=self.update_interval_days)
        with self._db.get_session() as session:
            rows = (
                session.query(Warehouse.id, Warehouse.version, Document.id, Document.last_update)
                .join(Document, Document.warehouse_id == Warehouse.id)
                .filter(
                    Warehouse.status == WAREHOUSE_COMPLETED,
                    Warehouse.type == WAREHOUSE_TYPE_GIT,
                    Warehouse.enable_sync.is_(True),
                    Document.last_update < cutoff,
                )
                .order_by(Document.last_update)
                .limit(batch)
                .all()
            )

        for warehouse_id, version, document_id, seen in rows:
            if self._bump_last_update(document_id, seen):
                return SyncCandidate(warehouse_id, document_id, version or "")
        return None

    def _claim_warehouse(self, warehouse_id: str) -> Optional[SyncCandidate]:
        with self._db.get_session() as session:
            row = (
                session.query(Warehouse.version, Document.id, Document.last_update)
                .join(Document, Document.warehouse_id == Warehouse.id)
                .filter(
                    Warehouse.id == warehouse_id,
                    Warehouse.status == WAREHOUSE_COMPLETED,
                    Warehouse.type == WAREHOUSE_TYPE_GIT,
                )
                .first()
            )
        if row is None:
            return None
        version, document_id, seen = row
        if not self._bump_last_update(document_id, seen):
            return None
        return SyncCandidate(warehouse_id, document_id, version or "")

    def _bump_last_update(self, document_id: str, seen: datetime) -> bool:
        with self._db.get_session() as session:
            claimed = (
                session.query(Document)
                .filter(Document.id == document_id, Document.last_update == seen)
                .update({Document.last_update: utcnow()}, synchronize_session=False)
            )
        return claimed == 1

    # ── Pass ────────────────────────────────────────────────────────────

    def _run_pass(self, candidate: SyncCandidate, trigger: str) -> Outcome:
        record_id = self._start_sync_record(candidate, trigger)
        logger.info(f"Incremental pass for warehouse {candidate.warehouse_id} ({trigger})")

        try:
            outcome = self._engine.analyse(candidate.warehouse_id, cancel_event=self.stop_event)
        except Exception as e:
            logger.error(
                f"Incremental pass failed for warehouse {candidate.warehouse_id}: {e}",
                exc_info=True,
            )
            outcome = Failed(f"{type(e).__name__}: {e}")

        if isinstance(outcome, Success):
            self._record_new_version(candidate, outcome.head)

        self._finish_sync_record(record_id, outcome)
        logger.info(f"Incremental pass for warehouse {candidate.warehouse_id}: {outcome}")
        return outcome

    def _record_new_version(self, candidate: SyncCandidate, head: str):
        with self._db.get_session() as session:
            updated = (
                session.query(Warehouse)
                .filter(
                    Warehouse.id == candidate.warehouse_id,
                    Warehouse.version == candidate.version,
                )
                .update({Warehouse.version: head}, synchronize_session=False)
            )
            session.query(Document).filter(Document.id == candidate.document_id).update(
                {Document.last_update: utcnow()}, synchronize_session=False
            )
        if updated != 1:
            logger.warning(
                f"Warehouse {candidate.warehouse_id} version changed during the pass; "
                f"kept the stored version instead of {head[:8]}"
            )

    def _start_sync_record(self, candidate: SyncCandidate, trigger: str) -> str:
        with self._db.get_session() as session:
            record = WarehouseSyncRecord(
                warehouse_id=candidate.warehouse_id,
                status=SYNC_IN_PROGRESS,
                from_version=candidate.version,
                trigger=trigger,
                start_time=utcnow(),
            )
            session.add(record)
            session.flush()
            return record.id

    def _finish_sync_record(self, record_id: str, outcome: Outcome):
        values = {WarehouseSyncRecord.end_time: utcnow()}
        if isinstance(outcome, Success):
            values.update({
                WarehouseSyncRecord.status: SYNC_SUCCESS,
                WarehouseSyncRecord.to_version: outcome.head,
                WarehouseSyncRecord.added_count: outcome.added,
                WarehouseSyncRecord.updated_count: outcome.replaced,
                WarehouseSyncRecord.deleted_count: outcome.deleted,
            })
        elif isinstance(outcome, NoOp):
            values.update({
                WarehouseSyncRecord.status: SYNC_NOOP,
                WarehouseSyncRecord.error_message: outcome.reason,
            })
        elif isinstance(outcome, Cancelled):
            values.update({
                WarehouseSyncRecord.status: SYNC_CANCELLED,
                WarehouseSyncRecord.error_message: outcome.reason,
            })
        else:
            values.update({
                WarehouseSyncRecord.status: SYNC_FAILED,
                WarehouseSyncRecord.error_message: outcome.reason,
            })

        with self._db.get_session() as session:
            session.query(WarehouseSyncRecord).filter(WarehouseSyncRecord.id == record_id).update(
                values, synchronize_session=False
            )
