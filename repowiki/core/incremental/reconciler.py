"""Catalogue reconciliation: model diff -> drafts -> soft-deletes + inserts.

The model answers with ``{"delete_id": [...], "items": [...]}`` where
``items`` is a tree of ``{id?, title, name, type: add|update, prompt,
children}``. Planning is pure; ``apply_plan`` writes the result inside the
caller's session so the whole reconciliation commits or rolls back as one.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from ..db.models import DocumentCatalog, new_id
from ..documents.models import CatalogueDraft, ChangeType
from ..exceptions import LLMOutputParseError
from ..utils import parse_json_block, utcnow

logger = logging.getLogger(__name__)

CATALOGUE_TAG = "document_structure"


@dataclass
class CatalogueDiff:
    delete_ids: List[str] = field(default_factory=list)
    items: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ReconciliationPlan:
    delete_ids: List[str]
    drafts: List[CatalogueDraft]

    @property
    def is_empty(self) -> bool:
        return not self.delete_ids and not self.drafts

    @property
    def added(self) -> int:
        return sum(1 for d in self.drafts if not d.is_replace)

    @property
    def replaced(self) -> int:
        return sum(1 for d in self.drafts if d.is_replace)


@dataclass
class ApplyResult:
    deleted: int = 0
    added: int = 0
    replaced: int = 0


# ── Parsing ──────────────────────────────────────────────────────────────


def _validate_items(items: Any, path: str = "items") -> List[Dict[str, Any]]:
    if not isinstance(items, list):
        raise LLMOutputParseError(f"'{path}' must be a list")
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise LLMOutputParseError(f"'{path}[{index}]' must be an object")
        if not (item.get("title") or item.get("name")):
            raise LLMOutputParseError(f"'{path}[{index}]' has neither title nor name")
        _validate_items(item.get("children") or [], f"{path}[{index}].children")
    return items


def parse_catalogue_diff(raw_output: str) -> CatalogueDiff:
    """Parse the model's catalogue diff, raising LLMOutputParseError on bad shape."""
    parsed = parse_json_block(raw_output, tag=CATALOGUE_TAG, expect=dict)

    delete_ids = parsed.get("delete_id", parsed.get("delete_ids", [])) or []
    if not isinstance(delete_ids, list):
        raise LLMOutputParseError("'delete_id' must be a list", raw_output)

    items = _validate_items(parsed.get("items") or [])
    return CatalogueDiff(
        delete_ids=[str(i) for i in delete_ids if i],
        items=items,
    )


# ── Planning ─────────────────────────────────────────────────────────────


def plan_catalogue(
    diff: CatalogueDiff,
    existing_ids: Iterable[str],
    id_factory: Callable[[], str] = new_id,
) -> ReconciliationPlan:
    """Turn a parsed diff into drafts.

    - Depth-first walk with a dense ``order`` counter per sibling group
    - ``type == "update"`` on a current, non-deleted id becomes
      ``Replace(old_id)`` with a fresh id; any other item is an ``Add``
    - Items without an id, or whose id is already taken, get a fresh id
    - A top-level item may name an existing ``parent_id`` to attach under it
    """
    existing = set(existing_ids)
    delete_ids = [i for i in dict.fromkeys(diff.delete_ids) if i in existing]
    deleted: Set[str] = set(delete_ids)
    used_ids: Set[str] = set(existing)
    drafts: List[CatalogueDraft] = []

    def walk(nodes: List[Dict[str, Any]], parent_id: Optional[str], top_level: bool):
        order = 0
        for node in nodes:
            title = str(node.get("title") or node.get("name") or "").strip()
            compact_title = title.replace(" ", "")
            item_id = node.get("id") or node.get("Id")
            item_id = str(item_id) if item_id else None
            kind = str(node.get("type") or "add").strip().lower()

            replaces = None
            if kind == "update" and item_id in existing and item_id not in deleted:
                replaces = item_id
                draft_id = id_factory()
            elif item_id and item_id not in used_ids:
                draft_id = item_id
            else:
                draft_id = id_factory()
            used_ids.add(draft_id)

            node_parent = parent_id
            if top_level:
                requested = node.get("parent_id") or node.get("parentId")
                if requested and requested in existing and requested not in deleted:
                    node_parent = str(requested)

            drafts.append(CatalogueDraft(
                id=draft_id,
                parent_id=node_parent,
                name=str(node.get("name") or compact_title),
                url=compact_title,
                description=title,
                prompt=str(node.get("prompt") or ""),
                order=order,
                change_type=ChangeType.REPLACE if replaces else ChangeType.ADD,
                replaces=replaces,
            ))
            order += 1
            walk(node.get("children") or [], draft_id, top_level=False)

    walk(diff.items, None, top_level=True)

    # Top-level items attached under a node replaced in this same pass
    replacement = {d.replaces: d.id for d in drafts if d.replaces}
    for draft in drafts:
        if draft.parent_id in replacement:
            draft.parent_id = replacement[draft.parent_id]

    return ReconciliationPlan(delete_ids=delete_ids, drafts=drafts)


# ── Store access ─────────────────────────────────────────────────────────


def load_current_catalogue(session: Session, warehouse_id: str) -> List[DocumentCatalog]:
    """Current tree: every non-deleted catalogue row, parents before order."""
    return (
        session.query(DocumentCatalog)
        .filter(
            DocumentCatalog.warehouse_id == warehouse_id,
            DocumentCatalog.is_deleted.is_(False),
        )
        .order_by(DocumentCatalog.parent_id, DocumentCatalog.order)
        .all()
    )


def catalogue_to_prompt_json(rows: List[DocumentCatalog]) -> List[Dict[str, Any]]:
    return [
        {
            "id": row.id,
            "parent_id": row.parent_id,
            "name": row.name,
            "title": row.description or row.url,
            "prompt": row.prompt,
        }
        for row in rows
    ]


def _soft_delete(session: Session, warehouse_id: str, ids: List[str], now: datetime) -> int:
    if not ids:
        return 0
    return (
        session.query(DocumentCatalog)
        .filter(
            DocumentCatalog.warehouse_id == warehouse_id,
            DocumentCatalog.id.in_(ids),
            DocumentCatalog.is_deleted.is_(False),
        )
        .update(
            {DocumentCatalog.is_deleted: True, DocumentCatalog.deleted_time: now},
            synchronize_session=False,
        )
    )


def apply_plan(
    session: Session,
    warehouse_id: str,
    document_id: str,
    plan: ReconciliationPlan,
    now: Optional[datetime] = None,
) -> ApplyResult:
    """Write a plan: soft-delete, replace (delete-then-insert), insert.

    Surviving children of a replaced node are re-pointed at its replacement
    so they stay reachable in the current tree.
    """
    now = now or utcnow()
    result = ApplyResult()

    result.deleted = _soft_delete(session, warehouse_id, plan.delete_ids, now)

    draft_ids = {d.id for d in plan.drafts}
    for draft in plan.drafts:
        if not draft.is_replace:
            continue
        if _soft_delete(session, warehouse_id, [draft.replaces], now):
            result.replaced += 1
        (
            session.query(DocumentCatalog)
            .filter(
                DocumentCatalog.warehouse_id == warehouse_id,
                DocumentCatalog.parent_id == draft.replaces,
                DocumentCatalog.is_deleted.is_(False),
                DocumentCatalog.id.notin_(draft_ids),
            )
            .update({DocumentCatalog.parent_id: draft.id}, synchronize_session=False)
        )

    for draft in plan.drafts:
        session.add(DocumentCatalog(
            id=draft.id,
            warehouse_id=warehouse_id,
            document_id=document_id,
            parent_id=draft.parent_id,
            name=draft.name,
            url=draft.url,
            description=draft.description,
            prompt=draft.prompt,
            order=draft.order,
            is_completed=False,
            is_deleted=False,
            created_at=now,
        ))
        if not draft.is_replace:
            result.added += 1

    session.flush()
    logger.info(
        f"Catalogue reconciled for warehouse {warehouse_id}: "
        f"{result.deleted} deleted, {result.replaced} replaced, {result.added} added"
    )
    return result
