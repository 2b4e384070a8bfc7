"""Ingestion coordinator: pending warehouse -> source checkout -> documentation.

State machine per warehouse: ``pending -> processing -> completed | failed``.

One pass:
1. Claim a warehouse from WarehouseQueue (nothing claimable -> idle wait)
2. Prepare the source: clone git repositories, use file paths as-is
3. Get or create the warehouse's Document
4. Hand off to the DocumentBuilder collaborator
5. Mark completed, or failed with the traceback, then cool down.
   A shutdown mid-build releases the lease and leaves the row processing.

All writes to the warehouse row are guarded by ``claimed_by``, so a worker
whose lease was reclaimed cannot overwrite the new owner's state.
"""

import logging
import traceback
from typing import Tuple
from uuid import uuid4

from sqlalchemy.exc import IntegrityError

from ..constants import (
    WAREHOUSE_COMPLETED,
    WAREHOUSE_FAILED,
    WAREHOUSE_PROCESSING,
    WAREHOUSE_TYPE_FILE,
    WAREHOUSE_TYPE_GIT,
)
from ..db import DatabaseManager
from ..db.models import Document, Warehouse
from ..documents.builder import DocumentBuilder
from ..documents.models import BuildContext
from ..exceptions import OperationCancelled, UnsupportedWarehouseTypeError
from ..git import GitService, build_directory_tree
from ..utils import utcnow
from ..workers import PollingWorker
from .queue import WarehouseJob, WarehouseQueue

logger = logging.getLogger(__name__)


class IngestionCoordinator(PollingWorker):
    """Background worker that drives one warehouse at a time through ingestion."""

    name = "ingestion-coordinator"

    def __init__(
        self,
        db_manager: DatabaseManager,
        git_service: GitService,
        builder: DocumentBuilder,
        poll_interval: float = 5.0,
        failure_backoff: float = 5.0,
        heartbeat_interval: float = 30.0,
        stale_threshold: float = 120.0,
    ):
        super().__init__(poll_interval=poll_interval, heartbeat_interval=heartbeat_interval)
        self._db = db_manager
        self._git = git_service
        self._builder = builder
        self.failure_backoff = failure_backoff
        self.worker_id = f"ingest-{uuid4()}"
        self.queue = WarehouseQueue(db_manager, self.worker_id, stale_threshold=stale_threshold)

    def heartbeat(self):
        self.queue.heartbeat()

    def run_once(self) -> bool:
        job = self.queue.dequeue()
        if job is None:
            return False
        self.process(job)
        return True

    def process(self, job: WarehouseJob) -> bool:
        """Run one claimed warehouse to a terminal state. Returns True on success."""
        logger.info(f"Processing warehouse {job.warehouse_id} ({job.type}: {job.address})")
        try:
            repo_path, directory_tree = self._prepare_source(job)
            document_id = self._get_or_create_document(job.warehouse_id, repo_path)

            self._builder.build(BuildContext(
                warehouse_id=job.warehouse_id,
                document_id=document_id,
                repo_path=repo_path,
                address=job.address,
                branch=job.branch,
                directory_tree=directory_tree,
                cancel_event=self.stop_event,
            ))

            if self.stop_event.is_set():
                raise OperationCancelled("Shutdown requested during build")

            self._complete(job.warehouse_id, document_id)
            logger.info(f"Warehouse {job.warehouse_id} completed")
            return True

        except OperationCancelled as e:
            logger.info(f"Warehouse {job.warehouse_id} interrupted ({e}); releasing it for the next run")
            self._release(job.warehouse_id)
            return False

        except Exception as e:
            logger.error(f"Warehouse {job.warehouse_id} failed: {e}", exc_info=True)
            self._fail(job.warehouse_id, f"{e}\n{traceback.format_exc()}")
            self.sleep(self.failure_backoff)
            return False

    # ── Steps ────────────────────────────────────────────────────────────

    def _prepare_source(self, job: WarehouseJob) -> Tuple[str, str]:
        """Returns the local checkout path and its rendered directory tree."""
        if job.type == WAREHOUSE_TYPE_GIT:
            info = self._git.clone(
                job.address,
                username=job.git_username,
                password=job.git_password,
                branch=job.branch or None,
            )
            directory_tree = build_directory_tree(info.local_path)
            self._update_owned(job.warehouse_id, {
                Warehouse.name: info.repository_name,
                Warehouse.organization_name: info.organization,
                Warehouse.branch: info.branch_name,
                Warehouse.version: info.version,
                Warehouse.optimized_directory_structure: directory_tree,
            })
            return info.local_path, directory_tree

        if job.type == WAREHOUSE_TYPE_FILE:
            directory_tree = build_directory_tree(job.address)
            self._update_owned(job.warehouse_id, {
                Warehouse.optimized_directory_structure: directory_tree,
            })
            return job.address, directory_tree

        raise UnsupportedWarehouseTypeError(job.type)

    def _get_or_create_document(self, warehouse_id: str, repo_path: str) -> str:
        with self._db.get_session() as session:
            document = session.query(Document).filter(Document.warehouse_id == warehouse_id).first()
            if document is not None:
                document.git_path = repo_path
                return document.id

        try:
            with self._db.get_session() as session:
                document = Document(warehouse_id=warehouse_id, git_path=repo_path, status=WAREHOUSE_PROCESSING)
                session.add(document)
                session.flush()
                return document.id
        except IntegrityError:
            # Another writer created it first
            with self._db.get_session() as session:
                return (
                    session.query(Document.id)
                    .filter(Document.warehouse_id == warehouse_id)
                    .scalar()
                )

    def _complete(self, warehouse_id: str, document_id: str):
        now = utcnow()
        with self._db.get_session() as session:
            owned = self._owned_query(session, warehouse_id).update(
                {
                    Warehouse.status: WAREHOUSE_COMPLETED,
                    Warehouse.error: "",
                    Warehouse.claimed_by: None,
                    Warehouse.claimed_at: None,
                },
                synchronize_session=False,
            )
            if owned != 1:
                logger.warning(f"Lost lease on warehouse {warehouse_id}; not marking completed")
                return
            session.query(Document).filter(Document.id == document_id).update(
                {Document.last_update: now, Document.status: WAREHOUSE_COMPLETED},
                synchronize_session=False,
            )

    def _fail(self, warehouse_id: str, error: str):
        with self._db.get_session() as session:
            owned = self._owned_query(session, warehouse_id).update(
                {
                    Warehouse.status: WAREHOUSE_FAILED,
                    Warehouse.error: error,
                    Warehouse.claimed_by: None,
                    Warehouse.claimed_at: None,
                },
                synchronize_session=False,
            )
        if owned != 1:
            logger.warning(f"Lost lease on warehouse {warehouse_id}; failure not recorded")

    def _release(self, warehouse_id: str):
        # Stays processing with no lease, so the next dequeue reclaims it
        self._update_owned(warehouse_id, {Warehouse.claimed_by: None, Warehouse.claimed_at: None})

    def _owned_query(self, session, warehouse_id: str):
        return session.query(Warehouse).filter(
            Warehouse.id == warehouse_id,
            Warehouse.status == WAREHOUSE_PROCESSING,
            Warehouse.claimed_by == self.worker_id,
        )

    def _update_owned(self, warehouse_id: str, values: dict) -> int:
        with self._db.get_session() as session:
            updated = self._owned_query(session, warehouse_id).update(values, synchronize_session=False)
        if updated != 1:
            logger.warning(f"Warehouse {warehouse_id} is no longer held by {self.worker_id}")
        return updated
