"""Unit tests for WarehouseQueue: atomic claims, stale reclaim, heartbeats.

Tests cover:
- Oldest pending warehouse claimed first
- No double claim between two workers
- Fresh leases left alone, stale and lease-less rows reclaimed first
- Heartbeat refreshes only the caller's leases
"""

from datetime import timedelta

import pytest

from repowiki.core.db import DatabaseManager
from repowiki.core.db.models import Warehouse
from repowiki.core.ingestion.queue import WarehouseQueue
from repowiki.core.utils import utcnow


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def db():
    manager = DatabaseManager("sqlite://")
    manager.create_tables()
    yield manager
    manager.dispose()


def _add(db, wid, status="pending", age_minutes=0, claimed_by=None, claimed_at=None):
    with db.get_session() as session:
        session.add(Warehouse(
            id=wid,
            address=f"https://github.com/acme/{wid}.git",
            branch="main",
            status=status,
            claimed_by=claimed_by,
            claimed_at=claimed_at,
            created_at=utcnow() - timedelta(minutes=age_minutes),
        ))


def _get(db, wid) -> Warehouse:
    with db.get_session() as session:
        return session.get(Warehouse, wid)


# ── Tests: Dequeue ──


class TestDequeue:
    def test_empty_queue(self, db):
        assert WarehouseQueue(db, "a").dequeue() is None

    def test_oldest_pending_first(self, db):
        _add(db, "new", age_minutes=1)
        _add(db, "old", age_minutes=10)

        job = WarehouseQueue(db, "a").dequeue()

        assert job.warehouse_id == "old"
        assert job.branch == "main"
        assert job.reclaimed is False
        row = _get(db, "old")
        assert row.status == "processing"
        assert row.claimed_by == "a"
        assert row.claimed_at is not None

    def test_no_double_claim(self, db):
        _add(db, "w1")
        first = WarehouseQueue(db, "a").dequeue()
        second = WarehouseQueue(db, "b").dequeue()

        assert first.warehouse_id == "w1"
        assert second is None
        assert _get(db, "w1").claimed_by == "a"

    def test_claim_is_conditional(self, db):
        _add(db, "w1")
        now = utcnow()
        cutoff = now - timedelta(seconds=120)

        assert WarehouseQueue(db, "a")._claim("w1", now, cutoff) is True
        assert WarehouseQueue(db, "b")._claim("w1", now, cutoff) is False
        assert _get(db, "w1").claimed_by == "a"

    def test_completed_and_failed_ignored(self, db):
        _add(db, "done", status="completed")
        _add(db, "broken", status="failed")
        assert WarehouseQueue(db, "a").dequeue() is None


# ── Tests: Stale reclaim ──


class TestStaleReclaim:
    def test_fresh_lease_not_reclaimed(self, db):
        _add(db, "w1", status="processing", claimed_by="dead", claimed_at=utcnow())
        assert WarehouseQueue(db, "a", stale_threshold=120).dequeue() is None

    def test_stale_lease_reclaimed_before_pending(self, db):
        _add(db, "pending", age_minutes=60)
        _add(db, "stale", status="processing", claimed_by="dead",
             claimed_at=utcnow() - timedelta(minutes=10))

        job = WarehouseQueue(db, "a", stale_threshold=120).dequeue()

        assert job.warehouse_id == "stale"
        assert job.reclaimed is True
        assert _get(db, "stale").claimed_by == "a"

    def test_processing_without_lease_reclaimed(self, db):
        _add(db, "legacy", status="processing")
        job = WarehouseQueue(db, "a").dequeue()
        assert job.warehouse_id == "legacy"


# ── Tests: Heartbeat ──


class TestHeartbeat:
    def test_refreshes_own_leases_only(self, db):
        old = utcnow() - timedelta(seconds=90)
        _add(db, "mine", status="processing", claimed_by="a", claimed_at=old)
        _add(db, "theirs", status="processing", claimed_by="b", claimed_at=old)

        assert WarehouseQueue(db, "a").heartbeat() == 1

        assert _get(db, "mine").claimed_at > old
        assert _get(db, "theirs").claimed_at == old

    def test_heartbeat_keeps_lease_from_reclaim(self, db):
        _add(db, "w1", status="processing", claimed_by="a",
             claimed_at=utcnow() - timedelta(minutes=10))
        WarehouseQueue(db, "a").heartbeat()
        assert WarehouseQueue(db, "b", stale_threshold=120).dequeue() is None
