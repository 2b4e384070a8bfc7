"""Document-building collaborators.

``DocumentBuilder`` produces the first catalogue for a freshly ingested
warehouse; ``ContentGenerator`` writes the page body of each catalogue
draft. Both are protocols so deployments can plug in richer generators;
the LLM-backed defaults here keep the pipeline runnable end to end.
"""

import logging
from typing import List, Optional, Protocol

from ..constants import DEFAULT_LLM_TIMEOUT_SECONDS, LLM_MAX_ATTEMPTS, LLM_RETRY_FACTOR_SECONDS
from ..db import DatabaseManager
from ..db.models import DocumentCatalog, DocumentFileItem
from ..exceptions import OperationCancelled
from ..incremental.reconciler import (
    CatalogueDiff,
    ReconciliationPlan,
    apply_plan,
    load_current_catalogue,
    parse_catalogue_diff,
    plan_catalogue,
)
from ..utils import call_with_llm_retry, extract_block, stream_text
from .models import BuildContext, CatalogueDraft
from .prompts import build_catalogue_plan_prompt, build_page_prompt

logger = logging.getLogger(__name__)


class ContentGenerator(Protocol):
    def generate(self, drafts: List[CatalogueDraft], context: BuildContext) -> int:
        """Write bodies for the drafts; returns how many succeeded."""


class DocumentBuilder(Protocol):
    def build(self, context: BuildContext) -> None:
        """Produce the initial catalogue and pages for a warehouse."""


class LLMContentGenerator:
    """Writes one DocumentFileItem per draft from a single LLM call.

    A failing page is logged and skipped; the remaining drafts still run.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        llm=None,
        llm_timeout: float = DEFAULT_LLM_TIMEOUT_SECONDS,
    ):
        self._db = db_manager
        self._llm = llm
        self.llm_timeout = llm_timeout

    def generate(self, drafts: List[CatalogueDraft], context: BuildContext) -> int:
        written = 0
        for draft in drafts:
            if context.cancel_event is not None and context.cancel_event.is_set():
                logger.info(f"Content generation cancelled after {written}/{len(drafts)} pages")
                break
            try:
                self._generate_page(draft, context)
                written += 1
            except OperationCancelled:
                break
            except Exception as e:
                logger.error(f"Failed to generate page '{draft.name}' ({draft.id}): {e}", exc_info=True)
        return written

    def _generate_page(self, draft: CatalogueDraft, context: BuildContext):
        prompt = build_page_prompt(
            context.repository_url, draft.description or draft.name, draft.prompt, context.directory_tree
        )
        raw = stream_text(
            self._llm, prompt, cancel_event=context.cancel_event,
            timeout=self.llm_timeout, purpose="document",
        )
        content = extract_block(raw, tag="blog", unwrap_fence=False)

        with self._db.get_session() as session:
            session.add(DocumentFileItem(
                document_catalog_id=draft.id,
                title=draft.name,
                description=draft.description,
                content=content,
            ))
            session.query(DocumentCatalog).filter(DocumentCatalog.id == draft.id).update(
                {DocumentCatalog.is_completed: True}, synchronize_session=False
            )


class LLMDocumentBuilder:
    """Plans a catalogue from the directory tree, then fills its pages.

    Rebuilding a warehouse soft-deletes its previous catalogue first, so a
    retried ingestion does not duplicate nodes.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        content_generator: Optional[ContentGenerator] = None,
        llm=None,
        llm_timeout: float = DEFAULT_LLM_TIMEOUT_SECONDS,
        max_attempts: int = LLM_MAX_ATTEMPTS,
        retry_factor: float = LLM_RETRY_FACTOR_SECONDS,
    ):
        self._db = db_manager
        self._llm = llm
        self._content = content_generator or LLMContentGenerator(db_manager, llm, llm_timeout)
        self.llm_timeout = llm_timeout
        self.max_attempts = max_attempts
        self.retry_factor = retry_factor

    def build(self, context: BuildContext) -> None:
        prompt = build_catalogue_plan_prompt(
            context.repository_url, context.branch, context.directory_tree
        )

        def _call_and_parse() -> CatalogueDiff:
            raw = stream_text(
                self._llm, prompt, cancel_event=context.cancel_event,
                timeout=self.llm_timeout, purpose="catalogue",
            )
            return CatalogueDiff(items=parse_catalogue_diff(raw).items)

        diff = call_with_llm_retry(
            _call_and_parse,
            label=f"catalogue-plan[{context.warehouse_id}]",
            max_tries=self.max_attempts,
            factor=self.retry_factor,
        )

        with self._db.get_session() as session:
            previous = [row.id for row in load_current_catalogue(session, context.warehouse_id)]
            plan = plan_catalogue(diff, existing_ids=previous)
            plan = ReconciliationPlan(delete_ids=previous, drafts=plan.drafts)
            apply_plan(session, context.warehouse_id, context.document_id, plan)

        written = self._content.generate(plan.drafts, context)
        logger.info(
            f"Built catalogue for warehouse {context.warehouse_id}: "
            f"{len(plan.drafts)} nodes, {written} pages written"
        )
