"""Unit tests for knowledge-map parsing, building and the MiniMap worker.

Tests cover:
- Heading outline -> node tree (nesting, title:url split, extra roots)
- Thinking blocks ignored, empty outlines rejected
- LLMMiniMapBuilder prompt inputs
- Worker: oldest completed warehouse first, one map per warehouse,
  failed builds deferred without blocking others
"""

import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from repowiki.core.db import DatabaseManager
from repowiki.core.db.models import Document, MiniMap, Warehouse
from repowiki.core.minimap import LLMMiniMapBuilder, MiniMapWorker, parse_minimap
from repowiki.core.utils import utcnow


OUTLINE = """<thinking>draft ideas</thinking>
# App:README.md
## Server:src/server
### Routes:src/server/routes.go
## Client:src/client
# Docs:docs
"""


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def db():
    manager = DatabaseManager("sqlite://")
    manager.create_tables()
    yield manager
    manager.dispose()


def _add(db, wid, status="completed", age_minutes=0, git_path=None):
    with db.get_session() as session:
        session.add(Warehouse(
            id=wid, name=wid, address=f"https://github.com/acme/{wid}.git", status=status,
            optimized_directory_structure="src/", created_at=utcnow() - timedelta(minutes=age_minutes),
        ))
        if git_path:
            session.add(Document(warehouse_id=wid, git_path=git_path))


def _stored(db):
    with db.get_session() as session:
        return {m.warehouse_id: json.loads(m.value) for m in session.query(MiniMap).all()}


# ── Tests: Parsing ──


class TestParseMinimap:
    def test_outline_to_tree(self):
        tree = parse_minimap(OUTLINE)

        assert (tree["title"], tree["url"]) == ("App", "README.md")
        assert [n["title"] for n in tree["nodes"]] == ["Server", "Client", "Docs"]
        server = tree["nodes"][0]
        assert server["url"] == "src/server"
        assert server["nodes"][0] == {"title": "Routes", "url": "src/server/routes.go", "nodes": []}

    def test_url_keeps_later_colons(self):
        tree = parse_minimap("# Site:https://example.com/docs")
        assert tree["url"] == "https://example.com/docs"

    def test_heading_without_url(self):
        assert parse_minimap("# Overview") == {"title": "Overview", "url": "", "nodes": []}

    def test_no_headings(self):
        assert parse_minimap("Just prose.\n- a list") is None
        assert parse_minimap("<thinking># Hidden:x</thinking>") is None


# ── Tests: Builder ──


class TestLLMMiniMapBuilder:
    def test_builds_from_model_output(self):
        llm = MagicMock()
        llm.stream_complete.return_value = iter([MagicMock(delta=OUTLINE)])
        warehouse = Warehouse(id="w1", address="https://github.com/acme/app.git", branch="main")

        tree = LLMMiniMapBuilder(llm=llm, llm_timeout=None).build("src/\n  main.go", warehouse, "/repos/app")

        assert tree["title"] == "App"
        prompt = llm.stream_complete.call_args.args[0]
        assert "https://github.com/acme/app" in prompt
        assert "main.go" in prompt


# ── Tests: Worker ──


class TestMiniMapWorker:
    def test_oldest_completed_first(self, db):
        _add(db, "young", age_minutes=1)
        _add(db, "old", age_minutes=30, git_path="/repos/old")
        _add(db, "pending", status="pending", age_minutes=60)
        builder = MagicMock()
        builder.build.return_value = {"title": "Old", "url": "", "nodes": []}

        assert MiniMapWorker(db, builder).run_once() is True

        directory_tree, warehouse, repo_path = builder.build.call_args.args
        assert warehouse.id == "old"
        assert directory_tree == "src/"
        assert repo_path == "/repos/old"
        assert _stored(db) == {"old": {"title": "Old", "url": "", "nodes": []}}

    def test_one_map_per_warehouse(self, db):
        _add(db, "w1")
        builder = MagicMock()
        builder.build.return_value = {"title": "W", "url": "", "nodes": []}
        worker = MiniMapWorker(db, builder)

        assert worker.run_once() is True
        assert worker.run_once() is False
        assert builder.build.call_count == 1

    def test_failed_build_deferred(self, db):
        _add(db, "broken", age_minutes=10)
        _add(db, "fine", age_minutes=1)
        builder = MagicMock()
        builder.build.side_effect = [RuntimeError("model down"), {"title": "Fine", "url": "", "nodes": []}]
        worker = MiniMapWorker(db, builder, retry_cooldown=300)

        assert worker.run_once() is False
        assert worker.run_once() is True

        assert list(_stored(db)) == ["fine"]
        with db.get_session() as session:
            assert session.get(Warehouse, "broken").status == "completed"

    def test_empty_map_deferred(self, db):
        _add(db, "w1")
        builder = MagicMock()
        builder.build.return_value = None
        worker = MiniMapWorker(db, builder)

        assert worker.run_once() is False
        assert worker.run_once() is False
        assert builder.build.call_count == 1
        assert _stored(db) == {}

    def test_cooldown_defaults_to_poll_interval(self, db):
        assert MiniMapWorker(db, MagicMock(), poll_interval=2.5).retry_cooldown == 2.5
        assert MiniMapWorker(db, MagicMock(), poll_interval=2.5, retry_cooldown=0).retry_cooldown == 0

    def test_retried_after_cooldown(self, db):
        _add(db, "w1")
        builder = MagicMock()
        builder.build.side_effect = [None, {"title": "W", "url": "", "nodes": []}]
        worker = MiniMapWorker(db, builder, retry_cooldown=0)

        worker.run_once()
        assert worker.run_once() is True
        assert "w1" in _stored(db)

    def test_repo_path_falls_back_to_address(self, db):
        _add(db, "w1")
        builder = MagicMock()
        builder.build.return_value = {"title": "W", "url": "", "nodes": []}

        MiniMapWorker(db, builder).run_once()

        assert builder.build.call_args.args[2] == "https://github.com/acme/w1.git"
