"""Technician result entry for one equipment checklist."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from .models import Checkpoint, ChecklistResult, CheckpointStatus, EquipmentMatch, Submission
from .utils import utcnow
from .voice import VoiceInput


class ChecklistSession:
    """Holds mutable results until the checklist is submitted.

    ``build_submission`` freezes the session; later edits raise.
    """

    def __init__(self, match: EquipmentMatch, checkpoints: List[Checkpoint]) -> None:
        self.match = match
        self.checkpoints = list(checkpoints)
        self.results: Dict[int, ChecklistResult] = {
            checkpoint.id: ChecklistResult(checkpoint_id=checkpoint.id, text=checkpoint.text, type=checkpoint.type)
            for checkpoint in self.checkpoints
        }
        self.current_checkpoint_id: Optional[int] = None
        self.submitted = False

    def _result(self, checkpoint_id: int) -> ChecklistResult:
        if self.submitted:
            raise RuntimeError("Checklist already submitted")
        try:
            return self.results[checkpoint_id]
        except KeyError:
            raise KeyError(f"Unknown checkpoint {checkpoint_id}") from None

    def set_status(self, checkpoint_id: int, status: CheckpointStatus) -> None:
        self._result(checkpoint_id).status = status

    def set_value(self, checkpoint_id: int, value: str | None) -> None:
        self._result(checkpoint_id).value = value or None

    def set_comment(self, checkpoint_id: int, comment: str | None) -> None:
        self._result(checkpoint_id).comment = comment or None

    def add_photo(self, checkpoint_id: int, photo: str) -> None:
        self._result(checkpoint_id).photos.append(photo)

    @property
    def completed_count(self) -> int:
        return sum(1 for result in self.results.values() if result.status is not CheckpointStatus.NOT_ASSESSED)

    @property
    def deviation_count(self) -> int:
        return sum(1 for result in self.results.values() if result.status is CheckpointStatus.DEVIATION)

    @property
    def can_submit(self) -> bool:
        return self.completed_count > 0 and not self.submitted

    def first_unassessed(self) -> Optional[int]:
        for checkpoint in self.checkpoints:
            if self.results[checkpoint.id].status is CheckpointStatus.NOT_ASSESSED:
                return checkpoint.id
        return None

    def next_unassessed(self, after_id: int) -> Optional[int]:
        found = False
        for checkpoint in self.checkpoints:
            if found and self.results[checkpoint.id].status is CheckpointStatus.NOT_ASSESSED:
                return checkpoint.id
            if checkpoint.id == after_id:
                found = True
        return None

    def apply_voice_input(self, voice: VoiceInput) -> Optional[int]:
        """Apply a confirmed voice result and return the checkpoint it changed.

        Targets the current checkpoint, or the first unassessed one, and
        advances to the next unassessed checkpoint when a status was set.
        """

        target = self.current_checkpoint_id
        if target is None:
            target = self.first_unassessed()
        if target is None:
            return None
        if voice.status is not None:
            self.set_status(target, voice.status)
        if voice.measurement:
            self.set_value(target, voice.measurement)
        if voice.comment:
            self.set_comment(target, voice.comment)
        if voice.status is not None:
            self.current_checkpoint_id = self.next_unassessed(target)
        return target

    def build_submission(
        self,
        performed_by: str,
        *,
        notes: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> Submission:
        if not self.can_submit:
            raise ValueError("At least one checkpoint must be assessed before submitting")
        self.submitted = True
        return Submission(
            code=self.match.code,
            performed_by=performed_by,
            results=[self.results[checkpoint.id] for checkpoint in self.checkpoints],
            completed_at=completed_at or utcnow(),
            notes=notes,
        )
