"""
Tests for the SQLite checklist cache and pending-submission queue.

Run with: pytest tests/test_store.py -v
"""

import sqlite3
from datetime import timedelta

import pytest

from fieldscan.models import Checkpoint, CheckpointStatus, EquipmentCodeInfo
from fieldscan.store import OfflineStore
from fieldscan.utils import deserialize_results

from helpers import FakeClock, make_submission


class TestChecklistCache:
    """Tests for cache freshness and replacement."""

    def test_round_trip(self, store, checkpoints):
        store.cache_checklist("PU", checkpoints, ["Sjekk lager"])
        cached = store.get_cached_checklist("PU")
        assert cached.checkpoints == checkpoints
        assert cached.tips == ["Sjekk lager"]

    def test_valid_just_before_ttl(self, store, clock, checkpoints):
        store.cache_checklist("PU", checkpoints)
        clock.advance(seconds=86399)
        assert store.get_cached_checklist("PU") is not None

    def test_invalid_at_ttl(self, store, clock, checkpoints):
        store.cache_checklist("PU", checkpoints)
        clock.advance(seconds=86400)
        assert store.get_cached_checklist("PU") is None
        # Stale entries are not evicted by reads.
        assert store.cached_checklist_count("PU") == 1

    def test_caching_twice_keeps_one_entry(self, store, checkpoints):
        store.cache_checklist("PU", checkpoints)
        store.cache_checklist("PU", checkpoints[:1])
        assert store.cached_checklist_count("PU") == 1
        assert len(store.get_cached_checklist("PU").checkpoints) == 1

    def test_failed_recache_keeps_previous_entry(self, store, checkpoints):
        store.cache_checklist("PU", checkpoints, ["Sjekk lager"])
        broken = [Checkpoint(id=9, text=None, type="Sjekk")]
        with pytest.raises(sqlite3.IntegrityError):
            store.cache_checklist("PU", broken, ["Ny"])
        # A later write commits without persisting the half-done replacement.
        store.enqueue(make_submission())
        cached = store.get_cached_checklist("PU")
        assert cached.checkpoints == checkpoints
        assert cached.tips == ["Sjekk lager"]

    def test_recache_refreshes_timestamp(self, store, clock, checkpoints):
        store.cache_checklist("PU", checkpoints)
        clock.advance(hours=20)
        store.cache_checklist("PU", checkpoints)
        clock.advance(hours=20)
        assert store.get_cached_checklist("PU") is not None

    def test_missing_code(self, store):
        assert store.get_cached_checklist("VF") is None

    def test_evict_expired(self, store, clock, checkpoints):
        store.cache_checklist("PU", checkpoints)
        clock.advance(hours=12)
        store.cache_checklist("VF", checkpoints)
        clock.advance(hours=13)
        assert store.evict_expired() == 1
        assert store.cached_checklist_count() == 1
        assert store.get_cached_checklist("VF") is not None


class TestPendingQueue:
    """Tests for durable queue operations."""

    def test_enqueue_serializes_results(self, store):
        pending = store.enqueue(make_submission(status=CheckpointStatus.DEVIATION))
        results = deserialize_results(pending.results_blob)
        assert results[0].status is CheckpointStatus.DEVIATION
        assert store.count_pending() == 1

    def test_fifo_order(self, store, clock):
        first = store.enqueue(make_submission(code="PU"))
        clock.advance(seconds=1)
        second = store.enqueue(make_submission(code="VF"))
        assert [p.id for p in store.pending()] == [first.id, second.id]

    def test_mark_failed(self, store):
        pending = store.enqueue(make_submission())
        store.mark_failed(pending.id, "timeout")
        store.mark_failed(pending.id, "503")
        row = store.pending()[0]
        assert row.attempts == 2
        assert row.last_error == "503"

    def test_remove(self, store):
        pending = store.enqueue(make_submission())
        assert store.remove(pending.id)
        assert not store.remove(pending.id)
        assert store.count_pending() == 0

    def test_queue_survives_reopen(self, tmp_path):
        """Queued rows are durable across a process crash."""
        db_path = tmp_path / "fieldscan.db"
        first = OfflineStore(db_path, clock=FakeClock())
        for code in ("PU", "VF", "SL"):
            first.enqueue(make_submission(code=code))
        first.close()

        reopened = OfflineStore(db_path, clock=FakeClock())
        assert reopened.count_pending() == 3
        assert [p.code for p in reopened.pending()] == ["PU", "VF", "SL"]
        reopened.close()

    def test_queued_at_uses_clock(self, store, clock):
        pending = store.enqueue(make_submission())
        assert store.pending()[0].queued_at == clock.now
        clock.advance(days=3)
        assert store.pending()[0].queued_at == clock.now - timedelta(days=3)
        assert pending.queued_at == store.pending()[0].queued_at


class TestEquipmentCodes:
    def test_replace_and_sort(self, store):
        store.cache_equipment_codes([EquipmentCodeInfo("VF", "Vifte"), EquipmentCodeInfo("PU", "Pumpe")])
        store.cache_equipment_codes([EquipmentCodeInfo("VF", "Vifte", checkpoint_count=4), EquipmentCodeInfo("KA", "Kanal")])
        codes = store.get_cached_equipment_codes()
        assert [c.code for c in codes] == ["KA", "VF"]
        assert codes[1].checkpoint_count == 4
