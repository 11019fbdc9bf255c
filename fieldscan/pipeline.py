"""End-to-end orchestration for FieldScan."""

from __future__ import annotations

import base64
import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from .aggregator import DetectionAggregator
from .api import ApiClient
from .auth import AuthManager, CredentialStore, KeyringCredentialStore, TokenProvider
from .checklist import ChecklistSession
from .classifier import TextClassifier
from .config import Settings
from .connectivity import ConnectionStatus, ConnectivityMonitor, Probe, tcp_probe
from .exceptions import TRANSIENT_ERRORS
from .models import (
    CheckpointStatus,
    ChecklistResponse,
    ClassificationLabel,
    DeviationReport,
    EquipmentMatch,
    Job,
    JobTask,
    Severity,
    SubmitOutcome,
    TaskStatus,
)
from .ocr import TextRecognizer
from .offline import DrainReport, OfflineCacheManager
from .reporting import checklist_report, sync_status_text
from .scanner import ScanSession
from .store import OfflineStore
from .suggestions import DEFAULT_RULES, Hint, SuggestionEngine
from .voice import VoiceInput, VoiceIntentExtractor

logger = logging.getLogger(__name__)

_TASK_STATUS = {
    CheckpointStatus.OK: TaskStatus.OK,
    CheckpointStatus.DEVIATION: TaskStatus.DEVIATION,
    CheckpointStatus.NOT_ASSESSED: TaskStatus.SKIPPED,
}


class FieldScan:
    """Wires the recognition, checklist and offline services together."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: OfflineStore | None = None,
        credentials: CredentialStore | None = None,
        token_provider: TokenProvider | None = None,
        api: ApiClient | None = None,
        probe: Probe | None = None,
        recognizer: TextRecognizer | None = None,
        suggestion_engine: SuggestionEngine | None = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.store = store or OfflineStore(self.settings.db_path, ttl_seconds=self.settings.cache_ttl_seconds)
        self.auth = AuthManager(
            self.settings.api_base_url,
            store=credentials or KeyringCredentialStore(),
            token_provider=token_provider,
            timeout=self.settings.request_timeout,
        )
        self.api = api or ApiClient(
            self.settings.api_base_url,
            auth=self.auth,
            timeout=self.settings.request_timeout,
            max_retries=self.settings.max_retries,
        )
        self.monitor = ConnectivityMonitor(
            probe or self._default_probe,
            on_restored=self._on_connectivity_restored,
            interval=self.settings.connectivity_interval,
        )
        self.offline = OfflineCacheManager(self.store, self.api, is_online=self.is_online)
        self.classifier = TextClassifier(acceptance_threshold=self.settings.acceptance_threshold)
        self.aggregator = DetectionAggregator()
        self.voice = VoiceIntentExtractor()
        self.suggestions = suggestion_engine or SuggestionEngine(DEFAULT_RULES)
        self.scanner = ScanSession(recognizer, self.classifier, self.aggregator) if recognizer is not None else None
        self._drain_thread: Optional[threading.Thread] = None

    # Connectivity

    def _default_probe(self) -> bool:
        return self.api.health() or tcp_probe()

    def is_online(self) -> bool:
        # Until the first probe finishes a send is attempted and queued on failure.
        return self.monitor.info.status is not ConnectionStatus.DISCONNECTED

    def _on_connectivity_restored(self) -> None:
        if self._drain_thread is not None and self._drain_thread.is_alive():
            return
        self._drain_thread = threading.Thread(target=self.offline.drain_queue, name="queue-drain", daemon=True)
        self._drain_thread.start()

    def wait_for_drain(self, timeout: float | None = None) -> None:
        if self._drain_thread is not None:
            self._drain_thread.join(timeout)

    def start(self, *, background: bool = True) -> bool:
        """Validate the stored session and establish initial connectivity."""

        authenticated = self.auth.check_auth_status()
        self.monitor.check_now()
        if background:
            self.monitor.start()
            self.drain_if_pending()
        return authenticated

    def drain_if_pending(self) -> bool:
        """Start a background drain when items are queued and the backend is reachable."""

        if self.offline.pending_count and self.monitor.is_reachable:
            self._on_connectivity_restored()
            return True
        return False

    # Recognition

    def classify_text(self, texts: Iterable[str]) -> List[EquipmentMatch]:
        matches = [match for match in (self.classifier.classify(text) for text in texts) if match is not None]
        return self.aggregator.analyze_image(matches)

    def analyze_image(
        self,
        image=None,
        *,
        labels: Iterable[ClassificationLabel] = (),
        image_bytes: bytes | None = None,
    ) -> List[EquipmentMatch]:
        """Recognize equipment in a single photo.

        Server-side detection is only consulted when the local passes find
        nothing and raw image bytes are available.
        """

        labels = list(labels)
        if self.scanner is not None and image is not None:
            matches = self.scanner.analyze_image(image, labels)
        else:
            label_matches = [
                match
                for match in (
                    self.classifier.classify_label(label.identifier, label.confidence)
                    for label in labels
                    if label.confidence > self.classifier.acceptance_threshold
                )
                if match is not None
            ]
            matches = self.aggregator.analyze_image([], label_matches)
        if matches or image_bytes is None or not self.is_online():
            return matches
        try:
            detection = self.api.detect_equipment(image_bytes)
        except TRANSIENT_ERRORS as exc:
            logger.warning("Server-side detection failed: %s", exc)
            return matches
        remote = [match for match in detection.matches if match.confidence > self.classifier.acceptance_threshold]
        return self.aggregator.analyze_image(remote)

    # Checklists

    def open_checklist(
        self,
        match: EquipmentMatch,
        *,
        context: Optional[str] = None,
        location: Optional[str] = None,
        refresh: bool = False,
    ) -> Tuple[ChecklistSession, ChecklistResponse]:
        response = self.offline.get_checklist(match.code, context=context, location=location, refresh=refresh)
        return ChecklistSession(match, response.checkpoints), response

    def hints_for(self, session: ChecklistSession) -> Dict[int, List[Hint]]:
        return {
            checkpoint.id: self.suggestions.evaluate(checkpoint, session.match)
            for checkpoint in session.checkpoints
        }

    def apply_voice(self, session: ChecklistSession, transcript: str) -> Tuple[VoiceInput, Optional[int]]:
        voice_input = self.voice.to_input(transcript)
        return voice_input, session.apply_voice_input(voice_input)

    def submit(
        self,
        session: ChecklistSession,
        *,
        notes: Optional[str] = None,
        performed_by: Optional[str] = None,
    ) -> SubmitOutcome:
        submission = session.build_submission(performed_by or self.settings.performed_by, notes=notes)
        outcome = self.offline.submit(submission)
        logger.info("%s", checklist_report(session.match.code, submission.results).summary_lines[0])
        return outcome

    # Maintenance jobs, online only

    def my_jobs(self) -> List[Job]:
        return self.api.my_jobs()

    def run_job_action(self, job: Job, action: str) -> Job:
        if action not in job.available_actions:
            raise ValueError(f"Cannot {action} job {job.id} while it is {job.status.value}")
        transitions = {
            "start": self.api.start_job,
            "pause": self.api.pause_job,
            "resume": self.api.resume_job,
            "complete": self.api.complete_job,
        }
        return transitions[action](job.id)

    def complete_task_by_voice(self, task: JobTask, transcript: str) -> Optional[JobTask]:
        """Complete a job task from a spoken status and optional measurement."""

        voice_input = self.voice.to_input(transcript)
        if voice_input.status is None:
            return None
        status = _TASK_STATUS[voice_input.status]
        return self.api.complete_task(task.id, status, voice_input.measurement or task.measured_value)

    def report_deviation(
        self,
        task_id: int,
        description: str,
        *,
        severity: Severity = Severity.MEDIUM,
        photo: bytes | None = None,
    ) -> JobTask:
        """Register a deviation and mark the task as deviating."""

        report = DeviationReport(
            task_id=task_id,
            description=description,
            severity=severity,
            photo_base64=base64.b64encode(photo).decode("ascii") if photo else None,
        )
        self.api.register_deviation(report)
        return self.api.complete_task(task_id, TaskStatus.DEVIATION)

    def sync(self) -> DrainReport:
        return self.offline.drain_queue()

    def sync_status_text(self) -> str:
        return sync_status_text(self.offline.state(), online=self.monitor.is_reachable)

    def close(self) -> None:
        self.monitor.stop()
        self.wait_for_drain(timeout=5.0)
        if self.scanner is not None:
            self.scanner.close()
        self.api.close()
        self.auth.close()
        self.store.close()
