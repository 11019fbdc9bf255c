"""
End-to-end tests for the FieldScan orchestrator, reports and CLI.

Run with: pytest tests/test_pipeline.py -v
"""

import argparse
import json
import time
from types import SimpleNamespace

import httpx
import pytest

import main
from fieldscan.auth import MemoryCredentialStore
from fieldscan.config import Settings
from fieldscan.models import CheckpointStatus, ClassificationLabel, SubmitOutcome
from fieldscan.offline import SyncState
from fieldscan.pipeline import FieldScan
from fieldscan.reporting import checklist_report, queue_report, sync_status_text
from fieldscan.ui import ChecklistCard, build_detection_cards

from helpers import make_api, make_submission

CHECKLIST = {
    "checkpoints": [
        {"sjekkpunktid": 1, "oppgavetekst": "Kontroller lager", "type": "Sjekk", "kritikalitet": "Høy"},
        {"sjekkpunktid": 2, "oppgavetekst": "Mål trykk", "type": "Måling"},
    ],
    "ai_tips": ["Lytt etter støy"],
    "estimated_time_minutes": 4,
}


class Backend:
    """In-memory backend that can be switched offline."""

    def __init__(self):
        self.online = True
        self.submissions = []
        self.detections = []

    def __call__(self, request):
        if not self.online:
            raise httpx.ConnectError("offline", request=request)
        path = request.url.path
        if path == "/api/ios/generate-checklist":
            return httpx.Response(200, json=CHECKLIST)
        if path == "/api/ios/submit-checklist":
            self.submissions.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "job_id": len(self.submissions)})
        if path == "/api/ios/detect":
            return httpx.Response(200, json={"detected_objects": self.detections})
        if path == "/api/health":
            return httpx.Response(200)
        return httpx.Response(404)


@pytest.fixture
def backend():
    return Backend()


@pytest.fixture
def app(tmp_path, backend):
    settings = Settings(db_path=tmp_path / "fieldscan.db", performed_by="Tekniker")
    fieldscan = FieldScan(
        settings,
        credentials=MemoryCredentialStore(),
        api=make_api(backend, max_retries=1),
        probe=lambda: backend.online,
    )
    yield fieldscan
    fieldscan.close()


class TestFieldScan:
    """Tests for the wired services."""

    def test_inspection_round_trip(self, app, backend):
        app.start(background=False)
        match = app.classify_text(["=360.01-PU001"])[0]
        session, response = app.open_checklist(match)
        assert response.tips == ["Lytt etter støy"]
        hints = app.hints_for(session)
        assert "Tips: Lytt etter kavitasjonslyder" in [h.text for h in hints[1]]
        app.apply_voice(session, "ok")
        app.apply_voice(session, "trykk 2,4 bar, bra")
        assert session.results[2].value == "2.4"
        assert app.submit(session) is SubmitOutcome.SENT
        assert backend.submissions[0]["performed_by"] == "Tekniker"
        assert [r["status"] for r in backend.submissions[0]["results"]] == ["OK", "OK"]

    def test_offline_submission_drains_on_restore(self, app, backend):
        app.start(background=False)
        match = app.classify_text(["pump"])[0]
        session, _ = app.open_checklist(match)

        backend.online = False
        app.monitor.check_now()
        session.set_status(1, CheckpointStatus.DEVIATION)
        assert app.submit(session) is SubmitOutcome.QUEUED
        assert app.offline.pending_count == 1
        assert "1 venter på synkronisering" in app.sync_status_text()

        # Cached checklist is still available offline.
        _, cached = app.open_checklist(match)
        assert cached.source == "cache"

        backend.online = True
        app.monitor.check_now()
        app.wait_for_drain(timeout=5)
        assert app.offline.pending_count == 0
        assert backend.submissions[0]["results"][0]["status"] == "AVVIK"

    def test_server_detection_when_local_passes_find_nothing(self, app, backend):
        app.start(background=False)
        backend.detections = [
            {"ns3457_code": "VF", "suggested_name": "Vifte", "category": "hvac", "confidence": 0.75},
            {"ns3457_code": "PU", "suggested_name": "Pumpe", "category": "plumbing", "confidence": 0.2},
        ]
        matches = app.analyze_image(labels=[ClassificationLabel("guitar", 0.9)], image_bytes=b"img")
        assert [m.code for m in matches] == ["VF"]
        assert [m.code for m in app.aggregator.current()] == ["VF"]

    def test_drain_if_pending(self, app, backend):
        assert not app.drain_if_pending()
        app.offline.enqueue(make_submission())
        app.start(background=False)
        assert app.drain_if_pending()
        app.wait_for_drain(timeout=5)
        assert app.offline.pending_count == 0
        assert len(backend.submissions) == 1

    def test_drain_if_pending_waits_for_connectivity(self, app, backend):
        backend.online = False
        app.offline.enqueue(make_submission())
        app.start(background=False)
        assert not app.drain_if_pending()
        assert app.offline.pending_count == 1

    def test_local_labels_skip_server(self, app, backend):
        backend.online = False
        matches = app.analyze_image(labels=[ClassificationLabel("fan", 0.8)], image_bytes=b"img")
        assert [m.code for m in matches] == ["VF"]


class TestReports:
    def test_checklist_report(self, app):
        match = app.classify_text(["pump"])[0]
        session, _ = app.open_checklist(match)
        session.set_status(1, CheckpointStatus.DEVIATION)
        session.set_comment(1, "Støy fra lager")
        report = checklist_report("PU", session.results.values(), name="Pumpe").render_text()
        assert "1 av 2 sjekkpunkter fullført" in report
        assert "1 avvik registrert" in report
        assert "AVVIK Kontroller lager: Støy fra lager" in report

    def test_sync_status_offline(self):
        text = sync_status_text(SyncState(pending_count=2, is_syncing=False, last_sync_at=None), online=False)
        assert text == "Frakoblet - endringer lagres lokalt | 2 venter på synkronisering"

    def test_sync_status_all_sent(self):
        text = sync_status_text(SyncState(pending_count=0, is_syncing=False, last_sync_at=None), online=True)
        assert text == "Alt er synkronisert"

    def test_empty_queue_report(self):
        assert "Køen er tom." in queue_report([]).render_text()

    def test_cards(self, app):
        matches = app.classify_text(["pump", "=360.01-VF001"])
        cards = build_detection_cards(matches)
        assert cards[0].match.code == "VF"
        assert "Ventilasjon" in cards[0].render_text()
        session, response = app.open_checklist(matches[0])
        rendered = ChecklistCard(session=session, response=response, hints=app.hints_for(session)).render_text()
        assert "estimert tid: 4 min" in rendered
        assert "[IKKE_VURDERT] Kontroller lager" in rendered


class TestCommandLine:
    """Tests for the argparse entry point."""

    def test_classify(self, capsys, tmp_path, monkeypatch):
        monkeypatch.setenv("FIELDSCAN_DB_PATH", str(tmp_path / "cli.db"))
        assert main.main(["classify", "=360.01-PU001"]) == 0
        assert "[PU] Pumpe" in capsys.readouterr().out

    def test_voice(self, capsys, tmp_path, monkeypatch):
        monkeypatch.setenv("FIELDSCAN_DB_PATH", str(tmp_path / "cli.db"))
        assert main.main(["voice", "avvik på vifte, 3 bar"]) == 0
        out = capsys.readouterr().out
        assert "forslag: mark_deviation" in out
        assert "Registrer måling: 3" in out

    def test_pending_empty(self, capsys, tmp_path, monkeypatch):
        monkeypatch.setenv("FIELDSCAN_DB_PATH", str(tmp_path / "cli.db"))
        assert main.main(["pending"]) == 0
        assert "Køen er tom." in capsys.readouterr().out

    def test_match_for_code(self):
        assert main.match_for_code("=433.01-SL001").code == "SL"
        assert main.match_for_code("vf").name == "Vifte"
        assert main.match_for_code("qq").code == "QQ"

    def test_monitor_drains_queue_present_at_start(self, app, backend, monkeypatch, capsys):
        app.offline.enqueue(make_submission())
        app.start(background=False)
        assert app.monitor.is_reachable

        def interrupt(seconds):
            raise KeyboardInterrupt

        monkeypatch.setattr(main, "time", SimpleNamespace(strftime=time.strftime, sleep=interrupt))
        assert main.cmd_monitor(app, argparse.Namespace()) == 0
        app.wait_for_drain(timeout=5)
        assert app.offline.pending_count == 0
        assert backend.submissions[0]["ns3457_code"] == "PU"
        assert "Stopped monitoring." in capsys.readouterr().out
