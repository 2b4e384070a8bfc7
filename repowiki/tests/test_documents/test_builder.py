"""Unit tests for the LLM-backed document builder and content generator.

Tests cover:
- Initial catalogue planned from the directory tree
- Rebuilds soft-deleting the previous catalogue
- Page bodies stored with their Markdown code blocks intact
- A failing page not stopping the others, cancellation stopping all
"""

import json
import threading
from unittest.mock import MagicMock

import pytest

from repowiki.core.db import DatabaseManager
from repowiki.core.db.models import Document, DocumentCatalog, DocumentFileItem, Warehouse
from repowiki.core.documents.builder import LLMContentGenerator, LLMDocumentBuilder
from repowiki.core.documents.models import BuildContext, CatalogueDraft
from repowiki.core.exceptions import LLMOutputParseError


PLAN_OUTPUT = "<document_structure>" + json.dumps({"items": [
    {"title": "Overview", "prompt": "Describe the project", "children": [
        {"title": "Getting Started", "prompt": "Install and run"},
    ]},
    {"title": "Architecture", "prompt": "Main components"},
]}) + "</document_structure>"

PAGE_BODY = "# Getting started\n\n```bash\ngo run .\n```"


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def db():
    manager = DatabaseManager("sqlite://")
    manager.create_tables()
    with manager.get_session() as session:
        session.add(Warehouse(id="w1", address="https://github.com/acme/app.git", status="processing"))
        session.add(Document(id="d1", warehouse_id="w1", git_path="/repos/app"))
    yield manager
    manager.dispose()


def _context(cancel_event=None) -> BuildContext:
    return BuildContext(
        warehouse_id="w1", document_id="d1", repo_path="/repos/app",
        address="https://github.com/acme/app.git", branch="main",
        directory_tree="main.go\ngo.mod", cancel_event=cancel_event,
    )


def _draft(draft_id: str, name: str = "Page") -> CatalogueDraft:
    return CatalogueDraft(id=draft_id, parent_id=None, name=name, url=name, description=name, prompt="", order=0)


def _llm_returning(*outputs):
    llm = MagicMock()
    effects = [o if isinstance(o, Exception) else iter([MagicMock(delta=o)]) for o in outputs]
    llm.stream_complete.side_effect = effects
    return llm


def _current(db):
    with db.get_session() as session:
        return session.query(DocumentCatalog).filter(DocumentCatalog.is_deleted.is_(False)).all()


# ── Tests: Document builder ──


class TestLLMDocumentBuilder:
    def test_plans_catalogue_and_generates_pages(self, db):
        content = MagicMock()
        content.generate.return_value = 3
        builder = LLMDocumentBuilder(
            db, content_generator=content, llm=_llm_returning(PLAN_OUTPUT), llm_timeout=None, retry_factor=0,
        )

        builder.build(_context())

        rows = {row.description: row for row in _current(db)}
        assert set(rows) == {"Overview", "Getting Started", "Architecture"}
        assert rows["Getting Started"].parent_id == rows["Overview"].id
        assert rows["Architecture"].order == 1
        drafts, context = content.generate.call_args.args
        assert len(drafts) == 3
        assert context.warehouse_id == "w1"

    def test_rebuild_replaces_previous_catalogue(self, db):
        with db.get_session() as session:
            session.add(DocumentCatalog(id="stale", warehouse_id="w1", name="Stale"))
        builder = LLMDocumentBuilder(
            db, content_generator=MagicMock(), llm=_llm_returning(PLAN_OUTPUT), llm_timeout=None, retry_factor=0,
        )

        builder.build(_context())

        assert "stale" not in {row.id for row in _current(db)}
        with db.get_session() as session:
            assert session.get(DocumentCatalog, "stale").is_deleted is True

    def test_plan_failure_raises_after_retries(self, db):
        llm = _llm_returning("nope", "still nope", "never")
        builder = LLMDocumentBuilder(db, content_generator=MagicMock(), llm=llm, llm_timeout=None, retry_factor=0)

        with pytest.raises(LLMOutputParseError):
            builder.build(_context())
        assert llm.stream_complete.call_count == 3
        assert _current(db) == []


# ── Tests: Content generator ──


class TestLLMContentGenerator:
    def test_page_stored_with_code_blocks(self, db):
        with db.get_session() as session:
            session.add(DocumentCatalog(id="c1", warehouse_id="w1", name="Getting Started"))
        generator = LLMContentGenerator(db, llm=_llm_returning(f"Sure.\n<blog>\n{PAGE_BODY}\n</blog>"), llm_timeout=None)

        assert generator.generate([_draft("c1", "Getting Started")], _context()) == 1

        with db.get_session() as session:
            item = session.query(DocumentFileItem).one()
            assert item.content == PAGE_BODY
            assert item.title == "Getting Started"
            assert session.get(DocumentCatalog, "c1").is_completed is True

    def test_failing_page_skipped(self, db):
        generator = LLMContentGenerator(db, llm=_llm_returning(RuntimeError("boom"), PAGE_BODY), llm_timeout=None)
        assert generator.generate([_draft("c1"), _draft("c2")], _context()) == 1

    def test_cancelled_context_writes_nothing(self, db):
        event = threading.Event()
        event.set()
        llm = _llm_returning(PAGE_BODY)

        assert LLMContentGenerator(db, llm=llm).generate([_draft("c1")], _context(event)) == 0
        llm.stream_complete.assert_not_called()
