"""
Tests for cache-first checklist access and queue draining.

Run with: pytest tests/test_offline.py -v
"""

import threading

import httpx

import pytest

from fieldscan.exceptions import (
    ChecklistUnavailableError,
    MalformedResponseError,
    NetworkError,
    ReauthenticationRequired,
    ServerError,
)
from fieldscan.models import ChecklistResponse, EquipmentCodeInfo, SubmissionResult, SubmitOutcome
from fieldscan.offline import OfflineCacheManager

from helpers import make_api, make_submission


class FakeApi:
    """Scripted stand-in for ApiClient."""

    def __init__(self, checkpoints=None):
        self.checkpoints = checkpoints or []
        self.checklist_error = None
        self.submit_outcomes = []
        self.submitted = []
        self.generate_calls = 0
        self.codes = []

    def generate_checklist(self, code, context=None, location=None):
        self.generate_calls += 1
        if self.checklist_error is not None:
            raise self.checklist_error
        return ChecklistResponse(checkpoints=self.checkpoints, tips=["Tips"], estimated_minutes=6)

    def submit_checklist(self, submission):
        self.submitted.append(submission)
        outcome = self.submit_outcomes.pop(0) if self.submit_outcomes else True
        if isinstance(outcome, Exception):
            raise outcome
        return SubmissionResult(success=outcome, job_id=len(self.submitted))

    def list_equipment_codes(self):
        if isinstance(self.codes, Exception):
            raise self.codes
        return self.codes


@pytest.fixture
def api(checkpoints):
    return FakeApi(checkpoints)


@pytest.fixture
def online():
    return {"value": True}


@pytest.fixture
def manager(store, api, online):
    return OfflineCacheManager(store, api, is_online=lambda: online["value"])


class TestChecklistFetch:
    """Tests for cache-first checklist access."""

    def test_network_result_is_cached(self, manager, api, store):
        response = manager.get_checklist("PU")
        assert response.source == "network"
        assert store.get_cached_checklist("PU").tips == ["Tips"]

    def test_cache_hit_skips_network(self, manager, api):
        manager.get_checklist("PU")
        response = manager.get_checklist("PU")
        assert response.source == "cache"
        assert api.generate_calls == 1

    def test_expired_cache_refetches(self, manager, api, clock):
        manager.get_checklist("PU")
        clock.advance(hours=24)
        assert manager.get_checklist("PU").source == "network"
        assert api.generate_calls == 2

    def test_offline_without_cache(self, manager, online):
        online["value"] = False
        with pytest.raises(ChecklistUnavailableError):
            manager.get_checklist("PU")

    @pytest.mark.parametrize("error", [NetworkError("down"), MalformedResponseError("bad json")])
    def test_failure_without_cache(self, manager, api, error):
        api.checklist_error = error
        with pytest.raises(ChecklistUnavailableError):
            manager.get_checklist("PU")

    def test_refresh_falls_back_to_cache(self, manager, api, checkpoints):
        manager.get_checklist("PU")
        api.checklist_error = ServerError("503", status_code=503)
        response = manager.get_checklist("PU", refresh=True)
        assert response.source == "cache"
        assert response.checkpoints == checkpoints

    def test_equipment_codes_fall_back_to_cache(self, manager, api):
        api.codes = [EquipmentCodeInfo("PU", "Pumpe")]
        assert manager.get_equipment_codes()[0].code == "PU"
        api.codes = NetworkError("down")
        assert [c.code for c in manager.get_equipment_codes()] == ["PU"]


class TestSubmit:
    """Tests for send-or-queue submission."""

    def test_sent_when_online(self, manager, store):
        assert manager.submit(make_submission()) is SubmitOutcome.SENT
        assert store.count_pending() == 0

    def test_queued_when_offline(self, manager, api, online):
        online["value"] = False
        assert manager.submit(make_submission()) is SubmitOutcome.QUEUED
        assert manager.pending_count == 1
        assert api.submitted == []

    def test_queued_on_network_error(self, manager, api):
        api.submit_outcomes = [NetworkError("timeout")]
        assert manager.submit(make_submission()) is SubmitOutcome.QUEUED
        assert manager.pending_count == 1

    def test_queued_when_not_confirmed(self, manager, api):
        api.submit_outcomes = [False]
        assert manager.submit(make_submission()) is SubmitOutcome.QUEUED

    def test_auth_failure_queues_then_raises(self, manager, api, store):
        api.submit_outcomes = [ReauthenticationRequired("sign in")]
        with pytest.raises(ReauthenticationRequired):
            manager.submit(make_submission())
        assert store.count_pending() == 1

    def test_listener_sees_counter(self, manager, online):
        states = []
        manager.add_listener(states.append)
        online["value"] = False
        manager.submit(make_submission())
        assert states[-1].pending_count == 1


class TestDrain:
    """Tests for queue draining."""

    def _queue(self, manager, online, count):
        online["value"] = False
        for index in range(count):
            manager.submit(make_submission(code=f"C{index}"))
        online["value"] = True

    def test_all_succeed(self, manager, api, store, online, clock):
        self._queue(manager, online, 3)
        report = manager.drain_queue()
        assert len(report.sent) == 3
        assert report.remaining == 0
        assert store.count_pending() == 0
        assert manager.pending_count == 0
        assert manager.last_sync_at == clock.now
        assert [s.code for s in api.submitted] == ["C0", "C1", "C2"]

    def test_one_failure_keeps_exactly_that_item(self, manager, api, store, online):
        self._queue(manager, online, 3)
        failing_id = store.pending()[1].id
        api.submit_outcomes = [True, ServerError("500", status_code=500), True]
        report = manager.drain_queue()
        assert report.failed == [failing_id]
        assert manager.pending_count == 1
        remaining = store.pending()
        assert [p.id for p in remaining] == [failing_id]
        assert remaining[0].attempts == 1
        assert remaining[0].last_error == "500"

    def test_queued_submission_keeps_results(self, manager, api, online):
        self._queue(manager, online, 1)
        manager.drain_queue()
        assert api.submitted[0].results[0].text == "Kontroller lager"
        assert api.submitted[0].performed_by == "Tekniker"

    def test_unreadable_payload_stays_queued(self, manager, store, online):
        self._queue(manager, online, 1)
        pending = store.pending()[0]
        store.conn.execute("UPDATE pending_submissions SET results = 'not json' WHERE id = ?", (pending.id,))
        store.conn.commit()
        report = manager.drain_queue()
        assert report.failed == [pending.id]
        assert store.count_pending() == 1

    def test_concurrent_drain_is_skipped(self, manager, api, online):
        self._queue(manager, online, 1)
        entered = threading.Event()
        release = threading.Event()
        original = api.submit_checklist

        def blocking_submit(submission):
            entered.set()
            release.wait(timeout=5)
            return original(submission)

        api.submit_checklist = blocking_submit
        worker = threading.Thread(target=manager.drain_queue)
        worker.start()
        assert entered.wait(timeout=5)
        assert manager.is_syncing
        second = manager.drain_queue()
        release.set()
        worker.join(timeout=5)
        assert second.skipped
        assert second.attempted == 0
        assert manager.pending_count == 0
        assert not manager.is_syncing

    def test_discard_and_clear(self, manager, store, online):
        self._queue(manager, online, 3)
        first_id = store.pending()[0].id
        assert manager.discard(first_id)
        assert manager.pending_count == 2
        assert manager.clear_queue() == 2
        assert manager.pending_count == 0


class TestUndecodableResponses:
    """Corrupt response bodies through the real client still queue and drain item by item."""

    @staticmethod
    def corrupt_first(count):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) <= count:
                return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not-gzip-at-all")
            return httpx.Response(200, json={"success": True, "job_id": len(calls)})

        handler.calls = calls
        return handler

    def test_submit_queues(self, store):
        manager = OfflineCacheManager(store, make_api(self.corrupt_first(1)))
        assert manager.submit(make_submission()) is SubmitOutcome.QUEUED
        assert store.count_pending() == 1

    def test_drain_continues_past_bad_item(self, store):
        handler = self.corrupt_first(1)
        manager = OfflineCacheManager(store, make_api(handler))
        for code in ("PU", "VF", "SL"):
            store.enqueue(make_submission(code=code))
        report = manager.drain_queue()
        assert report.attempted == 3
        assert len(report.sent) == 2
        assert report.remaining == 1
        assert store.pending()[0].code == "PU"
        assert "Undecodable" in store.pending()[0].last_error
