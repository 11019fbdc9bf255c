"""Cache-first checklist access and durable submission delivery."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from .api import ApiClient
from .exceptions import TRANSIENT_ERRORS, ChecklistUnavailableError, ReauthenticationRequired
from .models import (
    ChecklistResponse,
    EquipmentCodeInfo,
    PendingSubmission,
    Submission,
    SubmitOutcome,
)
from .store import OfflineStore
from .utils import deserialize_results

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SyncState:
    """Snapshot published to listeners whenever queue state changes."""

    pending_count: int
    is_syncing: bool
    last_sync_at: Optional[datetime]


@dataclass(slots=True)
class DrainReport:
    attempted: int = 0
    sent: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    skipped: bool = False
    remaining: int = 0


SyncListener = Callable[[SyncState], None]
OnlineCheck = Callable[[], bool]


class OfflineCacheManager:
    """Owns the checklist cache and the pending-submission queue.

    A submission is either confirmed by the backend or stays in the queue.
    Queue rows are removed one at a time, strictly after each confirmed
    send, so an interrupted drain never loses or double-removes work.
    """

    def __init__(
        self,
        store: OfflineStore,
        api: ApiClient,
        *,
        is_online: OnlineCheck | None = None,
    ) -> None:
        self.store = store
        self.api = api
        self.is_online = is_online or (lambda: True)
        self._state_lock = threading.Lock()
        self._is_syncing = False
        self._pending_count = store.count_pending()
        self._last_sync_at: Optional[datetime] = None
        self._listeners: List[SyncListener] = []

    # State

    @property
    def pending_count(self) -> int:
        return self._pending_count

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def last_sync_at(self) -> Optional[datetime]:
        return self._last_sync_at

    def state(self) -> SyncState:
        with self._state_lock:
            return SyncState(self._pending_count, self._is_syncing, self._last_sync_at)

    def add_listener(self, listener: SyncListener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        snapshot = self.state()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:  # pragma: no cover - listener safeguard
                logger.warning("Sync listener failed: %s", exc)

    # Checklists

    def get_checklist(
        self,
        code: str,
        *,
        context: Optional[str] = None,
        location: Optional[str] = None,
        refresh: bool = False,
    ) -> ChecklistResponse:
        """Return a checklist from cache, else from the backend.

        Raises ``ChecklistUnavailableError`` only when neither source works.
        """

        cached = self.store.get_cached_checklist(code)
        if cached is not None and not refresh:
            logger.debug("Checklist cache hit for %s", code)
            return ChecklistResponse(
                checkpoints=cached.checkpoints,
                tips=cached.tips or None,
                estimated_minutes=None,
                source="cache",
            )
        if not self.is_online():
            return self._cached_or_unavailable(code, cached, "offline")
        try:
            response = self.api.generate_checklist(code, context=context, location=location)
        except TRANSIENT_ERRORS as exc:
            logger.warning("Checklist fetch for %s failed: %s", code, exc)
            return self._cached_or_unavailable(code, cached, str(exc))
        self.store.cache_checklist(code, response.checkpoints, response.tips)
        return response

    @staticmethod
    def _cached_or_unavailable(code, cached, reason: str) -> ChecklistResponse:
        if cached is None:
            raise ChecklistUnavailableError(code, reason)
        return ChecklistResponse(
            checkpoints=cached.checkpoints,
            tips=cached.tips or None,
            source="cache",
        )

    def get_equipment_codes(self) -> List[EquipmentCodeInfo]:
        if self.is_online():
            try:
                codes = self.api.list_equipment_codes()
            except TRANSIENT_ERRORS as exc:
                logger.warning("Equipment code fetch failed, using cache: %s", exc)
            else:
                self.store.cache_equipment_codes(codes)
                return codes
        return self.store.get_cached_equipment_codes()

    # Submissions

    def submit(self, submission: Submission) -> SubmitOutcome:
        """Send now when online, otherwise queue for the next drain."""

        if not self.is_online():
            self.enqueue(submission)
            return SubmitOutcome.QUEUED
        try:
            result = self.api.submit_checklist(submission)
        except TRANSIENT_ERRORS as exc:
            logger.warning("Submission for %s failed, queuing: %s", submission.code, exc)
            self.enqueue(submission)
            return SubmitOutcome.QUEUED
        except ReauthenticationRequired:
            self.enqueue(submission)
            raise
        if not result.success:
            logger.warning("Backend did not confirm submission for %s: %s", submission.code, result.message)
            self.enqueue(submission)
            return SubmitOutcome.QUEUED
        logger.info("Submission for %s confirmed (job %s)", submission.code, result.job_id)
        return SubmitOutcome.SENT

    def enqueue(self, submission: Submission) -> PendingSubmission:
        pending = self.store.enqueue(submission)
        with self._state_lock:
            self._pending_count += 1
        self._notify()
        return pending

    def pending(self) -> List[PendingSubmission]:
        return self.store.pending()

    def drain_queue(self) -> DrainReport:
        """Try every queued submission once, in enqueue order.

        A call made while another drain is running returns immediately.
        """

        with self._state_lock:
            if self._is_syncing:
                return DrainReport(skipped=True, remaining=self._pending_count)
            self._is_syncing = True
        self._notify()
        report = DrainReport()
        try:
            for pending in self.store.pending():
                report.attempted += 1
                if self._send_pending(pending):
                    report.sent.append(pending.id)
                else:
                    report.failed.append(pending.id)
        finally:
            remaining = self.store.count_pending()
            with self._state_lock:
                self._pending_count = remaining
                self._is_syncing = False
                self._last_sync_at = self.store.clock()
            report.remaining = remaining
            self._notify()
        logger.info(
            "Drain finished: %d sent, %d failed, %d remaining",
            len(report.sent),
            len(report.failed),
            report.remaining,
        )
        return report

    def _send_pending(self, pending: PendingSubmission) -> bool:
        try:
            results = deserialize_results(pending.results_blob)
        except (ValueError, KeyError, TypeError) as exc:
            # Kept for manual inspection; only discard() removes it.
            logger.error("Queued submission %d has an unreadable payload: %s", pending.id, exc)
            self.store.mark_failed(pending.id, f"unreadable payload: {exc}")
            return False
        submission = Submission(
            code=pending.code,
            performed_by=pending.performed_by,
            results=results,
            completed_at=pending.queued_at,
            notes=pending.notes,
        )
        try:
            result = self.api.submit_checklist(submission)
        except (*TRANSIENT_ERRORS, ReauthenticationRequired) as exc:
            logger.warning("Queued submission %d failed: %s", pending.id, exc)
            self.store.mark_failed(pending.id, str(exc))
            return False
        if not result.success:
            self.store.mark_failed(pending.id, result.message or "not confirmed")
            return False
        self.store.remove(pending.id)
        return True

    def discard(self, pending_id: int) -> bool:
        """Administrative removal of a queued submission without sending it."""

        removed = self.store.remove(pending_id)
        if removed:
            logger.warning("Discarded queued submission %d without confirmation", pending_id)
            with self._state_lock:
                self._pending_count = self.store.count_pending()
            self._notify()
        return removed

    def clear_queue(self) -> int:
        removed = self.store.clear_pending()
        logger.warning("Cleared %d queued submissions without confirmation", removed)
        with self._state_lock:
            self._pending_count = 0
        self._notify()
        return removed
