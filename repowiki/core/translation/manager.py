"""Translation task management: dedupe, progress, cancellation, recovery.

Task lifecycle: ``pending -> running -> completed | failed | cancelled``.

- At most one in-flight task per (warehouse, language, type, target). The
  unique ``in_flight_key`` column is set while a task is pending or running
  and cleared on any terminal status, so concurrent creates collapse onto
  one row.
- A runner checks its cancel event and the persisted status before every
  unit. A unit already in progress finishes; no new unit starts.
- Status transitions are conditional updates on an in-flight status, so a
  terminal task is never revived. Counter updates never touch status.
- Units that already have a translation row for the language are skipped,
  which makes re-running a task resume where the last one stopped.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError

from ..constants import (
    DEFAULT_LLM_TIMEOUT_SECONDS,
    DEFAULT_SOURCE_LANGUAGE,
    IN_FLIGHT_STATUSES,
    ORPHANED_TASK_MESSAGE,
    SUPPORTED_LANGUAGES,
    TASK_CANCELLED,
    TASK_COMPLETED,
    TASK_FAILED,
    TASK_RUNNING,
    TASK_TYPE_CATALOG,
    TASK_TYPE_REPOSITORY,
    TERMINAL_STATUSES,
)
from ..db import DatabaseManager
from ..db.models import (
    DocumentCatalog,
    DocumentCatalogI18n,
    DocumentFileItem,
    DocumentFileItemI18n,
    TranslationTask,
)
from ..exceptions import TaskNotFoundError
from ..utils import utcnow
from .models import LanguageStatus, TranslationResult
from .registry import CancellationRegistry
from .translator import Translator

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Translation task was cancelled"


def in_flight_key(warehouse_id: str, target_language: str, task_type: str, target_id: str) -> str:
    return f"{warehouse_id}|{target_language}|{task_type}|{target_id}"


class TranslationTaskManager:
    """Creates, runs and cancels translation tasks.

    Tasks run on a bounded thread pool (``max_concurrent``). The manager
    owns the cancellation registry; it is process-local, so tasks found
    in flight at start-up are orphans (see ``reconcile_orphans``).
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        translator: Optional[Translator] = None,
        llm=None,
        max_concurrent: int = 4,
        llm_timeout: float = DEFAULT_LLM_TIMEOUT_SECONDS,
    ):
        self._db = db_manager
        self._translator = translator or Translator(llm=llm, llm_timeout=llm_timeout)
        self._registry = CancellationRegistry()
        self._executor = ThreadPoolExecutor(max_workers=max_concurrent, thread_name_prefix="translation")
        self.max_concurrent = max_concurrent

    @property
    def registry(self) -> CancellationRegistry:
        return self._registry

    # ── Task records ────────────────────────────────────────────────────

    def get_running_task(
        self,
        warehouse_id: str,
        target_language: str,
        task_type: str = TASK_TYPE_REPOSITORY,
        target_id: Optional[str] = None,
    ) -> Optional[str]:
        """Id of the in-flight task for the key, if any."""
        key = in_flight_key(warehouse_id, target_language, task_type, target_id or warehouse_id)
        with self._db.get_session() as session:
            return (
                session.query(TranslationTask.id)
                .filter(TranslationTask.in_flight_key == key)
                .scalar()
            )

    def create_task(
        self,
        warehouse_id: str,
        target_language: str,
        source_language: str = DEFAULT_SOURCE_LANGUAGE,
        task_type: str = TASK_TYPE_REPOSITORY,
        target_id: Optional[str] = None,
    ) -> str:
        """Create a pending task, or return the in-flight one for the same key."""
        if task_type not in (TASK_TYPE_REPOSITORY, TASK_TYPE_CATALOG):
            raise ValueError(f"Unknown translation task type: {task_type}")
        if not self.is_supported_language(target_language):
            raise ValueError(f"Unsupported language: {target_language}")
        if task_type == TASK_TYPE_CATALOG and not target_id:
            raise ValueError("Catalog translation requires a target catalog id")

        target_id = target_id or warehouse_id
        existing = self.get_running_task(warehouse_id, target_language, task_type, target_id)
        if existing:
            logger.info(f"Reusing in-flight translation task {existing}")
            return existing

        try:
            with self._db.get_session() as session:
                task = TranslationTask(
                    warehouse_id=warehouse_id,
                    target_id=target_id,
                    target_language=target_language,
                    source_language=source_language,
                    task_type=task_type,
                    in_flight_key=in_flight_key(warehouse_id, target_language, task_type, target_id),
                )
                session.add(task)
                session.flush()
                task_id = task.id
        except IntegrityError:
            # Lost the race to a concurrent create for the same key
            existing = self.get_running_task(warehouse_id, target_language, task_type, target_id)
            if existing is None:
                raise
            return existing

        logger.info(
            f"Created {task_type} translation task {task_id}: "
            f"{warehouse_id} {source_language} -> {target_language}"
        )
        return task_id

    def update_task(
        self,
        task_id: str,
        status: Optional[str] = None,
        error_message: Optional[str] = None,
        catalogs_translated: Optional[int] = None,
        files_translated: Optional[int] = None,
        total_catalogs: Optional[int] = None,
        total_files: Optional[int] = None,
    ) -> bool:
        """Apply the given fields. Returns False when nothing was updated.

        A status change only applies to an in-flight task; a terminal status
        also clears ``in_flight_key`` and stamps ``completed_at``.
        """
        values = {}
        if error_message is not None:
            values[TranslationTask.error_message] = error_message
        if catalogs_translated is not None:
            values[TranslationTask.catalogs_translated] = catalogs_translated
        if files_translated is not None:
            values[TranslationTask.files_translated] = files_translated
        if total_catalogs is not None:
            values[TranslationTask.total_catalogs] = total_catalogs
        if total_files is not None:
            values[TranslationTask.total_files] = total_files

        with self._db.get_session() as session:
            query = session.query(TranslationTask).filter(TranslationTask.id == task_id)
            if status is not None:
                query = query.filter(TranslationTask.status.in_(IN_FLIGHT_STATUSES))
                values[TranslationTask.status] = status
                if status in TERMINAL_STATUSES:
                    values[TranslationTask.in_flight_key] = None
                    values[TranslationTask.completed_at] = utcnow()
                elif status == TASK_RUNNING:
                    values[TranslationTask.started_at] = utcnow()
            if not values:
                return False
            return query.update(values, synchronize_session=False) == 1

    def get_task(self, task_id: str) -> Optional[TranslationTask]:
        with self._db.get_session() as session:
            return session.get(TranslationTask, task_id)

    def list_tasks(self, warehouse_id: str, target_language: Optional[str] = None) -> List[TranslationTask]:
        with self._db.get_session() as session:
            query = session.query(TranslationTask).filter(TranslationTask.warehouse_id == warehouse_id)
            if target_language:
                query = query.filter(TranslationTask.target_language == target_language)
            return query.order_by(TranslationTask.created_at.desc()).all()

    def cancel_task(self, task_id: str) -> bool:
        """Cancel a pending or running task.

        Returns True when the task moved to cancelled, False when it was
        already terminal.

        Raises:
            TaskNotFoundError: no task with this id
        """
        if self.get_task(task_id) is None:
            raise TaskNotFoundError(task_id)

        self._registry.signal(task_id)
        cancelled = self.update_task(task_id, status=TASK_CANCELLED, error_message=CANCELLED_MESSAGE)
        if cancelled:
            logger.info(f"Translation task {task_id} cancelled")
        return cancelled

    def reconcile_orphans(self) -> int:
        """Fail tasks left pending or running by a previous process.

        Call once at start-up, before any task is submitted.
        """
        with self._db.get_session() as session:
            count = (
                session.query(TranslationTask)
                .filter(TranslationTask.status.in_(IN_FLIGHT_STATUSES))
                .update(
                    {
                        TranslationTask.status: TASK_FAILED,
                        TranslationTask.error_message: ORPHANED_TASK_MESSAGE,
                        TranslationTask.in_flight_key: None,
                        TranslationTask.completed_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
        if count:
            logger.warning(f"Marked {count} orphaned translation tasks as failed")
        return count

    # ── Execution ───────────────────────────────────────────────────────

    def submit(self, task_id: str) -> Optional[Future]:
        """Run a task on the pool. Returns None when it is already running here."""
        event = self._registry.register(task_id)
        if event is None:
            logger.warning(f"Translation task {task_id} already running")
            return None
        return self._executor.submit(self._execute, task_id, event)

    def run_task(self, task_id: str) -> TranslationResult:
        """Run a task on the calling thread."""
        event = self._registry.register(task_id)
        if event is None:
            task = self.get_task(task_id)
            return TranslationResult(
                target_id=task.target_id if task else task_id,
                target_language=task.target_language if task else "",
                source_language=task.source_language if task else "",
                error_message=f"Translation task {task_id} is already running",
            )
        return self._execute(task_id, event)

    def _execute(self, task_id: str, event: threading.Event) -> TranslationResult:
        try:
            task = self.get_task(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.task_type == TASK_TYPE_CATALOG:
                return self.run_catalog_task(task_id, event)
            return self.run_repository_task(task_id, event)
        except Exception as e:
            logger.error(f"Translation task {task_id} crashed: {e}", exc_info=True)
            self.update_task(task_id, status=TASK_FAILED, error_message=str(e))
            raise
        finally:
            self._registry.remove(task_id)

    def run_repository_task(self, task_id: str, cancel_event: Optional[threading.Event] = None) -> TranslationResult:
        """Translate every current catalogue node of a warehouse, then its pages."""
        task = self._require_task(task_id)
        with self._db.get_session() as session:
            catalog_ids = [
                row.id for row in (
                    session.query(DocumentCatalog.id)
                    .filter(
                        DocumentCatalog.warehouse_id == task.warehouse_id,
                        DocumentCatalog.is_deleted.is_(False),
                    )
                    .order_by(DocumentCatalog.parent_id, DocumentCatalog.order, DocumentCatalog.id)
                    .all()
                )
            ]
            file_item_ids = self._file_item_ids(session, catalog_ids)
        return self._run_units(task, catalog_ids, file_item_ids, cancel_event)

    def run_catalog_task(self, task_id: str, cancel_event: Optional[threading.Event] = None) -> TranslationResult:
        """Translate one catalogue node and its pages."""
        task = self._require_task(task_id)
        with self._db.get_session() as session:
            exists = session.query(DocumentCatalog.id).filter(DocumentCatalog.id == task.target_id).scalar()
            if exists is None:
                self.update_task(task_id, status=TASK_FAILED, error_message=f"Catalog {task.target_id} not found")
                return self._new_result(task, error_message=f"Catalog {task.target_id} not found")
            file_item_ids = self._file_item_ids(session, [task.target_id])
        return self._run_units(task, [task.target_id], file_item_ids, cancel_event)

    def _run_units(
        self,
        task: TranslationTask,
        catalog_ids: List[str],
        file_item_ids: List[str],
        cancel_event: Optional[threading.Event],
    ) -> TranslationResult:
        cancel_event = cancel_event or threading.Event()
        result = self._new_result(task)

        if not self.update_task(task.id, status=TASK_RUNNING):
            result.error_message = f"Translation task {task.id} is no longer active"
            return result
        self.update_task(task.id, total_catalogs=len(catalog_ids), total_files=len(file_item_ids))
        logger.info(
            f"Translation task {task.id}: {len(catalog_ids)} catalogues, "
            f"{len(file_item_ids)} pages -> {task.target_language}"
        )

        units = [
            (catalog_ids, self.translate_document_catalog, "catalogs_translated"),
            (file_item_ids, self.translate_document_file_item, "files_translated"),
        ]
        try:
            for ids, translate, counter in units:
                for unit_id in ids:
                    if self._should_stop(task.id, cancel_event):
                        return self._stop(task.id, result)
                    translate(unit_id, task.target_language, task.source_language)
                    self._advance(task.id, result, counter)
        except Exception as e:
            logger.error(f"Translation task {task.id} failed: {e}", exc_info=True)
            self.update_task(task.id, status=TASK_FAILED, error_message=str(e))
            result.error_message = str(e)
            result.completed_at = utcnow()
            return result

        if not self.update_task(task.id, status=TASK_COMPLETED):
            # Cancelled while the last unit was in progress
            return self._stop(task.id, result)

        result.success = True
        result.completed_at = utcnow()
        logger.info(
            f"Translation task {task.id} completed: {result.catalogs_translated} catalogues, "
            f"{result.files_translated} pages"
        )
        return result

    def _advance(self, task_id: str, result: TranslationResult, counter: str):
        value = getattr(result, counter) + 1
        setattr(result, counter, value)
        self.update_task(task_id, **{counter: value})

    def _should_stop(self, task_id: str, cancel_event: threading.Event) -> bool:
        if cancel_event.is_set():
            return True
        with self._db.get_session() as session:
            status = session.query(TranslationTask.status).filter(TranslationTask.id == task_id).scalar()
        return status != TASK_RUNNING

    def _stop(self, task_id: str, result: TranslationResult) -> TranslationResult:
        # Shutdown sets the event without touching the row
        self.update_task(task_id, status=TASK_CANCELLED, error_message=CANCELLED_MESSAGE)
        logger.info(
            f"Translation task {task_id} stopped after {result.catalogs_translated} catalogues, "
            f"{result.files_translated} pages"
        )
        result.success = False
        result.error_message = CANCELLED_MESSAGE
        result.completed_at = utcnow()
        return result

    # ── Units ───────────────────────────────────────────────────────────

    def translate_document_catalog(
        self,
        catalog_id: str,
        target_language: str,
        source_language: str = DEFAULT_SOURCE_LANGUAGE,
    ) -> bool:
        """Translate a catalogue node's name and description in one LLM pass.

        Returns False when a translation for the language already exists.
        """
        with self._db.get_session() as session:
            if self._has_row(session, DocumentCatalogI18n, DocumentCatalogI18n.document_catalog_id,
                             catalog_id, target_language):
                logger.debug(f"Catalog {catalog_id} already translated to {target_language}")
                return False
            catalog = session.get(DocumentCatalog, catalog_id)
            if catalog is None:
                raise LookupError(f"Catalog {catalog_id} not found")
            source = {"name": catalog.name or "", "description": catalog.description or ""}

        translated = self._translator.translate_fields(source, target_language, source_language)
        return self._insert_translation(lambda: DocumentCatalogI18n(
            document_catalog_id=catalog_id,
            language_code=target_language,
            name=translated["name"],
            description=translated["description"],
        ))

    def translate_document_file_item(
        self,
        file_item_id: str,
        target_language: str,
        source_language: str = DEFAULT_SOURCE_LANGUAGE,
    ) -> bool:
        """Translate a page's title, description and Markdown body."""
        with self._db.get_session() as session:
            if self._has_row(session, DocumentFileItemI18n, DocumentFileItemI18n.document_file_item_id,
                             file_item_id, target_language):
                logger.debug(f"File item {file_item_id} already translated to {target_language}")
                return False
            item = session.get(DocumentFileItem, file_item_id)
            if item is None:
                raise LookupError(f"File item {file_item_id} not found")
            source = {"title": item.title or "", "description": item.description or ""}
            content = item.content or ""

        translated = self._translator.translate_fields(source, target_language, source_language)
        translated_content = self._translator.translate_content(content, target_language, source_language)
        return self._insert_translation(lambda: DocumentFileItemI18n(
            document_file_item_id=file_item_id,
            language_code=target_language,
            title=translated["title"],
            description=translated["description"],
            content=translated_content,
        ))

    # ── Status ──────────────────────────────────────────────────────────

    def get_language_status(self, warehouse_id: str, language: str) -> LanguageStatus:
        """Summarise one language for a warehouse: none | generating | completed | failed."""
        with self._db.get_session() as session:
            base = session.query(TranslationTask).filter(
                TranslationTask.warehouse_id == warehouse_id,
                TranslationTask.target_language == language,
            )
            running = base.filter(TranslationTask.status.in_(IN_FLIGHT_STATUSES)).first()
            completed = (
                base.filter(TranslationTask.status == TASK_COMPLETED)
                .order_by(TranslationTask.completed_at.desc())
                .first()
            )
            failed = (
                base.filter(TranslationTask.status == TASK_FAILED)
                .order_by(TranslationTask.updated_at.desc())
                .first()
            )
            exists = (
                session.query(DocumentCatalogI18n.id)
                .join(DocumentCatalog, DocumentCatalog.id == DocumentCatalogI18n.document_catalog_id)
                .filter(
                    DocumentCatalog.warehouse_id == warehouse_id,
                    DocumentCatalogI18n.language_code == language,
                )
                .first()
                is not None
            )

            if running is not None:
                return LanguageStatus(language, "generating", exists, progress=running.progress)
            if completed is not None:
                return LanguageStatus(language, "completed", exists, last_generated=completed.completed_at)
            if failed is not None:
                return LanguageStatus(language, "failed", exists, last_generated=failed.updated_at)
            return LanguageStatus(language, "none", exists)

    @staticmethod
    def supported_languages() -> List[dict]:
        return [dict(language) for language in SUPPORTED_LANGUAGES]

    @staticmethod
    def is_supported_language(code: str) -> bool:
        return any(language["code"] == code for language in SUPPORTED_LANGUAGES)

    def shutdown(self, wait: bool = False):
        """Signal every running task and stop accepting new ones."""
        for task_id in self._registry.task_ids():
            self._registry.signal(task_id)
        self._executor.shutdown(wait=wait, cancel_futures=True)

    # ── Helpers ─────────────────────────────────────────────────────────

    def _require_task(self, task_id: str) -> TranslationTask:
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    @staticmethod
    def _new_result(task: TranslationTask, error_message: Optional[str] = None) -> TranslationResult:
        return TranslationResult(
            target_id=task.target_id,
            target_language=task.target_language,
            source_language=task.source_language,
            error_message=error_message,
        )

    @staticmethod
    def _file_item_ids(session, catalog_ids: List[str]) -> List[str]:
        if not catalog_ids:
            return []
        rows = (
            session.query(DocumentFileItem.id)
            .filter(DocumentFileItem.document_catalog_id.in_(catalog_ids))
            .order_by(DocumentFileItem.created_at, DocumentFileItem.id)
            .all()
        )
        return [row.id for row in rows]

    @staticmethod
    def _has_row(session, model, id_column, unit_id: str, language: str) -> bool:
        return (
            session.query(model.id)
            .filter(id_column == unit_id, model.language_code == language)
            .first()
            is not None
        )

    def _insert_translation(self, make_row: Callable) -> bool:
        try:
            with self._db.get_session() as session:
                session.add(make_row())
            return True
        except IntegrityError:
            # A concurrent runner stored the same unit first
            logger.debug("Translation row already exists, keeping the stored one")
            return False
