"""Unit tests for IncrementalAnalysisEngine.

Tests cover:
- NoOp when the pull brings no new commits (no model call)
- One successful pass: soft-delete, insert, changelog records, page dispatch
- The 3-attempt bound on a permanently failing catalogue call
- Malformed output retried like a transport error
- Cancellation before and during a pass
- Page generation failures not undoing the committed catalogue
"""

import json
import threading
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from repowiki.core.db import DatabaseManager
from repowiki.core.db.models import Document, DocumentCatalog, DocumentCommitRecord, Warehouse
from repowiki.core.git.models import CommitInfo, FileChange, PullResult
from repowiki.core.incremental.engine import IncrementalAnalysisEngine
from repowiki.core.results import Cancelled, Failed, NoOp, Success


# ── Fixtures ──────────────────────────────────────────────────────────────


def _commit(sha: str, path: str, minute: int) -> CommitInfo:
    return CommitInfo(
        sha=sha,
        author="dev",
        message=f"Change {path}",
        committed_at=datetime(2024, 5, 2, 10, minute),
        parents=["abc123"],
        files=[FileChange(path=path, change_kind="modified")],
    )


COMMITS = [_commit("c1", "src/a.go", 0), _commit("c2", "src/b.go", 5)]

DIFF_OUTPUT = "<document_structure>" + json.dumps({
    "delete_id": ["n1"],
    "items": [{"title": "New Feature", "type": "add", "children": []}],
}) + "</document_structure>"

CHANGELOG_OUTPUT = "<changelog>" + json.dumps([
    {"date": "2024-05-02 09:00:00", "title": "New feature", "description": "Adds a and b"},
]) + "</changelog>"


def _chunk(delta: str):
    chunk = MagicMock()
    chunk.delta = delta
    return chunk


def _mock_llm(*outputs):
    """LLM whose successive stream_complete calls yield ``outputs`` (or raise them)."""
    llm = MagicMock()
    side_effects = []
    for output in outputs:
        if isinstance(output, Exception):
            side_effects.append(output)
        else:
            side_effects.append(iter([_chunk(output)]))
    llm.stream_complete.side_effect = side_effects
    return llm


def _mock_git(commits=COMMITS, head="def456"):
    git = MagicMock()
    git.pull.return_value = PullResult(commits=list(commits), head=head)
    git.log.return_value = list(commits)
    return git


@pytest.fixture
def db():
    manager = DatabaseManager("sqlite://")
    manager.create_tables()
    with manager.get_session() as session:
        session.add(Warehouse(
            id="w1", address="https://github.com/acme/app.git", branch="main",
            version="abc123", status="completed",
        ))
        session.add(Document(id="d1", warehouse_id="w1", git_path="/repos/acme/app"))
        session.add(DocumentCatalog(id="n1", warehouse_id="w1", document_id="d1", name="Old", order=0))
        session.add(DocumentCatalog(id="n2", warehouse_id="w1", document_id="d1", name="Keep", order=1))
    yield manager
    manager.dispose()


def _engine(db, git, llm, content=None):
    return IncrementalAnalysisEngine(
        db, git, content_generator=content, llm=llm, llm_timeout=None, retry_factor=0,
    )


@pytest.fixture(autouse=True)
def _no_tree():
    with patch("repowiki.core.incremental.engine.build_directory_tree", return_value="src/\n  a.go\n  b.go"):
        yield


# ── Tests: No new commits ──


class TestNoOp:
    def test_no_commits_is_noop_without_llm_call(self, db):
        llm = _mock_llm()
        engine = _engine(db, _mock_git(commits=[], head="abc123"), llm)

        outcome = engine.analyse("w1")

        assert isinstance(outcome, NoOp)
        llm.stream_complete.assert_not_called()

    def test_unknown_warehouse_fails(self, db):
        outcome = _engine(db, _mock_git(), _mock_llm()).analyse("missing")
        assert isinstance(outcome, Failed)


# ── Tests: Successful pass ──


class TestSuccessfulPass:
    def test_delete_add_and_changelog(self, db):
        git = _mock_git()
        content = MagicMock()
        content.generate.return_value = 1
        engine = _engine(db, git, _mock_llm(DIFF_OUTPUT, CHANGELOG_OUTPUT), content)

        outcome = engine.analyse("w1")

        assert isinstance(outcome, Success)
        assert outcome.head == "def456"
        assert (outcome.deleted, outcome.added, outcome.replaced) == (1, 1, 0)
        assert outcome.changelog_entries == 1

        git.pull.assert_called_once()
        assert git.pull.call_args.args == ("/repos/acme/app", "abc123")

        with db.get_session() as session:
            assert session.get(DocumentCatalog, "n1").is_deleted is True
            new_rows = session.query(DocumentCatalog).filter(
                DocumentCatalog.id.notin_(["n1", "n2"])
            ).all()
            assert len(new_rows) == 1
            assert new_rows[0].order == 0
            assert new_rows[0].description == "New Feature"

            records = session.query(DocumentCommitRecord).all()
            assert len(records) == 1
            assert records[0].commit_id == "def456"
            # Same day as the newest commit: clamped up to it
            assert records[0].last_update == datetime(2024, 5, 2, 10, 5)

            warehouse = session.get(Warehouse, "w1")
            assert warehouse.optimized_directory_structure.startswith("src/")

        drafts, context = content.generate.call_args.args
        assert [d.description for d in drafts] == ["New Feature"]
        assert context.repository_url == "https://github.com/acme/app"

    def test_engine_leaves_version_to_caller(self, db):
        engine = _engine(db, _mock_git(), _mock_llm(DIFF_OUTPUT, CHANGELOG_OUTPUT))
        engine.analyse("w1")
        with db.get_session() as session:
            assert session.get(Warehouse, "w1").version == "abc123"

    def test_page_generation_failure_keeps_catalogue(self, db):
        content = MagicMock()
        content.generate.side_effect = RuntimeError("model down")
        engine = _engine(db, _mock_git(), _mock_llm(DIFF_OUTPUT, CHANGELOG_OUTPUT), content)

        outcome = engine.analyse("w1")

        assert isinstance(outcome, Success)
        with db.get_session() as session:
            assert session.get(DocumentCatalog, "n1").is_deleted is True


# ── Tests: Retry bound ──


class TestRetryBound:
    def test_permanent_failure_makes_exactly_three_attempts(self, db):
        llm = _mock_llm(*[ConnectionError("unreachable")] * 5)
        engine = _engine(db, _mock_git(), llm)

        outcome = engine.analyse("w1")

        assert isinstance(outcome, Failed)
        assert "ConnectionError" in outcome.reason
        assert llm.stream_complete.call_count == 3
        with db.get_session() as session:
            assert session.get(DocumentCatalog, "n1").is_deleted is False
            assert session.query(DocumentCommitRecord).count() == 0

    def test_malformed_output_is_retried(self, db):
        llm = _mock_llm("not json at all", DIFF_OUTPUT, CHANGELOG_OUTPUT)
        outcome = _engine(db, _mock_git(), llm).analyse("w1")

        assert isinstance(outcome, Success)
        assert llm.stream_complete.call_count == 3

    def test_changelog_failure_writes_nothing(self, db):
        llm = _mock_llm(DIFF_OUTPUT, *["[broken"] * 3)
        outcome = _engine(db, _mock_git(), llm).analyse("w1")

        assert isinstance(outcome, Failed)
        with db.get_session() as session:
            assert session.get(DocumentCatalog, "n1").is_deleted is False
            assert session.query(DocumentCatalog).count() == 2


# ── Tests: Cancellation ──


class TestCancellation:
    def test_cancelled_before_analysis(self, db):
        event = threading.Event()
        event.set()
        llm = _mock_llm()

        outcome = _engine(db, _mock_git(), llm).analyse("w1", cancel_event=event)

        assert isinstance(outcome, Cancelled)
        llm.stream_complete.assert_not_called()

    def test_cancelled_during_stream(self, db):
        event = threading.Event()

        def _stream(*args, **kwargs):
            event.set()
            yield _chunk("<document_structure>")

        llm = MagicMock()
        llm.stream_complete.side_effect = _stream

        outcome = _engine(db, _mock_git(), llm).analyse("w1", cancel_event=event)

        assert isinstance(outcome, Cancelled)
        assert llm.stream_complete.call_count == 1
