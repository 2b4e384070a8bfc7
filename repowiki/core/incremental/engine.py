"""Incremental analysis of new commits on a completed warehouse.

Pipeline per pass:
1. Pull; list commits since ``Warehouse.version`` (none -> NoOp)
2. Render each commit's message and changed files into one summary
3. Ask the model for a catalogue diff (call + parse retried 3x, 2s/4s)
4-6. Plan soft-deletes, Adds and Replaces against the current tree
7. Generate the changelog for the same commits (same retry policy)
8. Commit catalogue changes and changelog records in one transaction
9. Dispatch page generation for the drafts (best effort per node)

Both LLM steps run before any write, so a failing pass leaves the stored
catalogue untouched and the next pass starts from the same baseline.
Git and database errors are not retried; they propagate to the caller.
"""

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

from ..constants import DEFAULT_LLM_TIMEOUT_SECONDS, LLM_MAX_ATTEMPTS, LLM_RETRY_FACTOR_SECONDS
from ..changelog import ChangelogGenerator
from ..db import DatabaseManager
from ..db.models import Document, Warehouse
from ..documents.models import BuildContext, CatalogueDraft
from ..exceptions import OperationCancelled
from ..git import GitService, build_directory_tree
from ..results import Cancelled, Failed, NoOp, Outcome, Success
from ..utils import call_with_llm_retry, stream_text
from .prompts import build_catalogue_diff_prompt, render_commit_summary
from .reconciler import (
    CatalogueDiff,
    apply_plan,
    catalogue_to_prompt_json,
    load_current_catalogue,
    parse_catalogue_diff,
    plan_catalogue,
)

if TYPE_CHECKING:
    from ..documents.builder import ContentGenerator

logger = logging.getLogger(__name__)


@dataclass
class WarehouseSnapshot:
    """Fields of a warehouse + document read once at the start of a pass."""
    warehouse_id: str
    document_id: str
    address: str
    branch: str
    version: str
    git_path: str
    git_username: Optional[str] = None
    git_password: Optional[str] = None


class IncrementalAnalysisEngine:
    """Runs one incremental pass for a warehouse and reports an Outcome."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        git_service: GitService,
        changelog: Optional[ChangelogGenerator] = None,
        content_generator: Optional["ContentGenerator"] = None,
        llm=None,
        llm_timeout: float = DEFAULT_LLM_TIMEOUT_SECONDS,
        max_attempts: int = LLM_MAX_ATTEMPTS,
        retry_factor: float = LLM_RETRY_FACTOR_SECONDS,
    ):
        self._db = db_manager
        self._git = git_service
        self._llm = llm
        self._content = content_generator
        self.llm_timeout = llm_timeout
        self.max_attempts = max_attempts
        self.retry_factor = retry_factor
        self._changelog = changelog or ChangelogGenerator(
            db_manager, git_service, llm=llm, llm_timeout=llm_timeout,
            max_attempts=max_attempts, retry_factor=retry_factor,
        )

    def analyse(self, warehouse_id: str, cancel_event: Optional[threading.Event] = None) -> Outcome:
        snapshot = self._load_snapshot(warehouse_id)
        if snapshot is None:
            return Failed(f"Warehouse {warehouse_id} has no document to update")

        # Step 1: pull (resource errors propagate)
        pull = self._git.pull(
            snapshot.git_path,
            snapshot.version,
            branch=snapshot.branch,
            username=snapshot.git_username,
            password=snapshot.git_password,
            address=snapshot.address,
        )
        if not pull.commits:
            logger.info(f"Warehouse {warehouse_id}: no new commits since {snapshot.version or 'start'}")
            return NoOp()

        if cancel_event is not None and cancel_event.is_set():
            return Cancelled("Shutdown requested")

        logger.info(
            f"Warehouse {warehouse_id}: {len(pull.commits)} new commits "
            f"({snapshot.version[:8] if snapshot.version else 'start'}..{pull.head[:8]})"
        )

        # Step 2: commit summary
        commit_summary = render_commit_summary(pull.commits)
        directory_tree = build_directory_tree(snapshot.git_path)
        context = BuildContext(
            warehouse_id=warehouse_id,
            document_id=snapshot.document_id,
            repo_path=snapshot.git_path,
            address=snapshot.address,
            branch=snapshot.branch,
            directory_tree=directory_tree,
            cancel_event=cancel_event,
        )

        # Step 3: current tree + model diff
        with self._db.get_session() as session:
            current = load_current_catalogue(session, warehouse_id)
            existing_ids = [row.id for row in current]
            catalogue_json = catalogue_to_prompt_json(current)

        changelog_commits = self._changelog.pending_commits(warehouse_id, snapshot.git_path)

        try:
            diff = self._request_diff(context, catalogue_json, commit_summary)
            plan = plan_catalogue(diff, existing_ids)

            # Step 7 runs early: no writes until every model call has succeeded
            entries = self._changelog.summarize(
                warehouse_id,
                changelog_commits,
                repository_url=context.repository_url,
                branch=snapshot.branch,
                cancel_event=cancel_event,
            )
        except OperationCancelled as e:
            return Cancelled(str(e) or "Cancelled")
        except Exception as e:
            logger.error(f"Incremental analysis failed for warehouse {warehouse_id}: {e}")
            return Failed(f"{type(e).__name__}: {e}")

        # Steps 4-6 and 8: one transaction
        with self._db.get_session() as session:
            applied = apply_plan(session, warehouse_id, snapshot.document_id, plan)
            ChangelogGenerator.add_records(session, warehouse_id, entries, commit_id=pull.head)
            session.query(Warehouse).filter(Warehouse.id == warehouse_id).update(
                {Warehouse.optimized_directory_structure: directory_tree},
                synchronize_session=False,
            )

        # Step 9: page generation
        self._dispatch_content(plan.drafts, context)

        return Success(
            head=pull.head,
            deleted=applied.deleted,
            added=applied.added,
            replaced=applied.replaced,
            changelog_entries=len(entries),
        )

    # ── Steps ────────────────────────────────────────────────────────────

    def _load_snapshot(self, warehouse_id: str) -> Optional[WarehouseSnapshot]:
        with self._db.get_session() as session:
            row = (
                session.query(Warehouse, Document)
                .join(Document, Document.warehouse_id == Warehouse.id)
                .filter(Warehouse.id == warehouse_id)
                .first()
            )
            if row is None:
                return None
            warehouse, document = row
            return WarehouseSnapshot(
                warehouse_id=warehouse.id,
                document_id=document.id,
                address=warehouse.address,
                branch=warehouse.branch or "",
                version=warehouse.version or "",
                git_path=document.git_path,
                git_username=warehouse.git_username,
                git_password=warehouse.git_password,
            )

    def _request_diff(self, context: BuildContext, catalogue_json: list, commit_summary: str) -> CatalogueDiff:
        prompt = build_catalogue_diff_prompt(
            repository_url=context.repository_url,
            branch=context.branch,
            catalogue=catalogue_json,
            commit_summary=commit_summary,
            directory_tree=context.directory_tree,
        )

        def _call_and_parse() -> CatalogueDiff:
            raw = stream_text(
                self._llm, prompt, cancel_event=context.cancel_event,
                timeout=self.llm_timeout, purpose="catalogue",
            )
            return parse_catalogue_diff(raw)

        return call_with_llm_retry(
            _call_and_parse,
            label=f"catalogue-diff[{context.warehouse_id}]",
            max_tries=self.max_attempts,
            factor=self.retry_factor,
        )

    def _dispatch_content(self, drafts: List[CatalogueDraft], context: BuildContext):
        if not drafts or self._content is None:
            return
        try:
            written = self._content.generate(drafts, context)
            logger.info(f"Generated {written}/{len(drafts)} pages for warehouse {context.warehouse_id}")
        except Exception as e:
            # Catalogue is already committed; pages are regenerated on demand
            logger.error(f"Page generation failed for warehouse {context.warehouse_id}: {e}", exc_info=True)
