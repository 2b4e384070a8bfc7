"""Unit tests for ChangelogGenerator and changelog parsing.

Tests cover:
- Entry parsing (tagged arrays, wrapped objects, blank entries)
- Date handling: formats, same-day and future-date clamping, fallback to newest commit
- "since" cutoff from the latest recorded entry
- No commits -> no model call
- Retry on malformed output, records appended in the caller's session
"""

import json
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from repowiki.core.changelog import ChangelogEntry, ChangelogGenerator, parse_changelog
from repowiki.core.db import DatabaseManager
from repowiki.core.db.models import DocumentCommitRecord, Warehouse
from repowiki.core.exceptions import LLMOutputParseError
from repowiki.core.git.models import CommitInfo


NEWEST = datetime(2024, 5, 2, 15, 30)


# ── Fixtures ──────────────────────────────────────────────────────────────


def _commit(sha: str, when: datetime) -> CommitInfo:
    return CommitInfo(sha=sha, author="dev", message=f"commit {sha}", committed_at=when)


def _mock_llm(*outputs: str):
    llm = MagicMock()
    llm.stream_complete.side_effect = [iter([MagicMock(delta=o)]) for o in outputs]
    return llm


@pytest.fixture
def db():
    manager = DatabaseManager("sqlite://")
    manager.create_tables()
    with manager.get_session() as session:
        session.add(Warehouse(id="w1", address="https://github.com/acme/app.git"))
    yield manager
    manager.dispose()


# ── Tests: Parsing ──


class TestParseChangelog:
    def test_tagged_array(self):
        raw = "<changelog>" + json.dumps([
            {"date": "2024-04-30 08:00:00", "title": "Fix", "description": "Fixes a bug"},
        ]) + "</changelog>"
        [entry] = parse_changelog(raw, NEWEST)
        assert entry == ChangelogEntry(datetime(2024, 4, 30, 8, 0), "Fix", "Fixes a bug")

    def test_object_wrapper(self):
        raw = json.dumps({"changelog": [{"date": "2024-04-30", "title": "A", "description": ""}]})
        assert [e.title for e in parse_changelog(raw, NEWEST)] == ["A"]

    def test_blank_entries_skipped(self):
        raw = json.dumps([{"title": " ", "description": ""}, {"title": "Kept"}])
        assert [e.title for e in parse_changelog(raw, NEWEST)] == ["Kept"]

    def test_same_day_clamped_to_newest_commit(self):
        raw = json.dumps([{"date": "2024-05-02", "title": "Today"}])
        assert parse_changelog(raw, NEWEST)[0].date == NEWEST

    def test_iso_timestamp_accepted(self):
        raw = json.dumps([{"date": "2024-05-01T09:15:00Z", "title": "Earlier"}])
        assert parse_changelog(raw, NEWEST)[0].date == datetime(2024, 5, 1, 9, 15)

    def test_future_date_clamped_to_newest_commit(self):
        raw = json.dumps([
            {"date": "2099-01-01", "title": "Hallucinated"},
            {"date": "2024-05-02T18:00:00", "title": "Later today"},
        ])
        assert [e.date for e in parse_changelog(raw, NEWEST)] == [NEWEST, NEWEST]

    def test_unparseable_date_falls_back(self):
        raw = json.dumps([{"date": "last tuesday", "title": "Vague"}])
        assert parse_changelog(raw, NEWEST)[0].date == NEWEST

    def test_non_array_rejected(self):
        with pytest.raises(LLMOutputParseError):
            parse_changelog(json.dumps({"title": "nope"}), NEWEST)

    def test_non_object_entry_rejected(self):
        with pytest.raises(LLMOutputParseError):
            parse_changelog(json.dumps(["just text"]), NEWEST)


# ── Tests: Generator ──


class TestChangelogGenerator:
    def test_since_uses_latest_record(self, db):
        with db.get_session() as session:
            session.add(DocumentCommitRecord(warehouse_id="w1", title="old", last_update=datetime(2024, 1, 1)))
            session.add(DocumentCommitRecord(warehouse_id="w1", title="newer", last_update=datetime(2024, 3, 1)))
        git = MagicMock()
        git.log.return_value = []

        generator = ChangelogGenerator(db, git, llm=_mock_llm())
        generator.pending_commits("w1", "/repos/app")

        git.log.assert_called_once_with("/repos/app", since=datetime(2024, 3, 1))

    def test_no_records_means_full_history(self, db):
        git = MagicMock()
        git.log.return_value = []
        ChangelogGenerator(db, git).pending_commits("w1", "/repos/app")
        git.log.assert_called_once_with("/repos/app", since=None)

    def test_no_commits_no_llm_call(self, db):
        git = MagicMock()
        git.log.return_value = []
        llm = _mock_llm()

        entries = ChangelogGenerator(db, git, llm=llm).generate("w1", "/repos/app")

        assert entries == []
        llm.stream_complete.assert_not_called()

    def test_malformed_output_retried(self, db):
        git = MagicMock()
        git.log.return_value = [_commit("c1", datetime(2024, 5, 1, 9)), _commit("c2", NEWEST)]
        llm = _mock_llm("garbage", "<changelog>[{\"date\": \"2024-05-01\", \"title\": \"Ok\"}]</changelog>")

        generator = ChangelogGenerator(db, git, llm=llm, llm_timeout=None, retry_factor=0)
        entries = generator.generate("w1", "/repos/app", repository_url="https://github.com/acme/app")

        assert [e.title for e in entries] == ["Ok"]
        assert llm.stream_complete.call_count == 2
        prompt = llm.stream_complete.call_args.args[0]
        assert "commit c2" in prompt

    def test_add_records_appends(self, db):
        entries = [
            ChangelogEntry(datetime(2024, 5, 1), "One", "first"),
            ChangelogEntry(datetime(2024, 5, 2), "Two", "second"),
        ]
        with db.get_session() as session:
            ChangelogGenerator.add_records(session, "w1", entries, commit_id="c2")

        with db.get_session() as session:
            records = session.query(DocumentCommitRecord).order_by(DocumentCommitRecord.last_update).all()
        assert [(r.title, r.commit_message, r.commit_id) for r in records] == [
            ("One", "first", "c2"),
            ("Two", "second", "c2"),
        ]
