"""Data models shared by the recognition, checklist and offline modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple


class EquipmentCategory(Enum):
    """Equipment categories used by the classification code table."""

    HVAC = "hvac"
    PLUMBING = "plumbing"
    ELECTRICAL = "electrical"
    FIRE = "fire"
    ACCESS = "access"
    HEATING = "heating"
    COOLING = "cooling"
    CONTROL = "control"
    OTHER = "other"

    @property
    def label(self) -> str:
        return _CATEGORY_LABELS[self]

    @classmethod
    def parse(cls, raw: str | None) -> "EquipmentCategory":
        if not raw:
            return cls.OTHER
        lowered = raw.strip().lower()
        for category in cls:
            if lowered in (category.value, category.label.lower()):
                return category
        return cls.OTHER


_CATEGORY_LABELS = {
    EquipmentCategory.HVAC: "Ventilasjon",
    EquipmentCategory.PLUMBING: "Rør/Sanitær",
    EquipmentCategory.ELECTRICAL: "Elektro",
    EquipmentCategory.FIRE: "Brann",
    EquipmentCategory.ACCESS: "Adgang",
    EquipmentCategory.HEATING: "Oppvarming",
    EquipmentCategory.COOLING: "Kjøling",
    EquipmentCategory.CONTROL: "Styring",
    EquipmentCategory.OTHER: "Annet",
}


@dataclass(slots=True, frozen=True)
class BoundingBox:
    """Region of a frame in normalized 0-1 coordinates."""

    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(slots=True)
class EquipmentMatch:
    """Result of classifying one recognized string or label."""

    code: str
    name: str
    category: EquipmentCategory
    confidence: float
    source_region: Optional[BoundingBox] = None
    detected_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(slots=True, frozen=True)
class RecognizedText:
    """One candidate string produced by the text recognizer."""

    text: str
    confidence: float
    bounding_box: Optional[BoundingBox] = None


@dataclass(slots=True, frozen=True)
class ClassificationLabel:
    """One label produced by a whole-image classifier."""

    identifier: str
    confidence: float


@dataclass(slots=True, frozen=True)
class Checkpoint:
    """Inspection point definition as delivered by the backend."""

    id: int
    text: str
    type: str
    description: Optional[str] = None
    criticality: Optional[str] = None
    can_auto_fetch: Optional[bool] = None

    def to_wire(self) -> dict:
        return {
            "sjekkpunktid": self.id,
            "oppgavetekst": self.text,
            "beskrivelse": self.description,
            "type": self.type,
            "kritikalitet": self.criticality,
            "kanHentesAutomatisk": self.can_auto_fetch,
        }

    @classmethod
    def from_wire(cls, payload: dict) -> "Checkpoint":
        return cls(
            id=int(payload["sjekkpunktid"]),
            text=str(payload["oppgavetekst"]),
            type=str(payload.get("type") or ""),
            description=payload.get("beskrivelse"),
            criticality=payload.get("kritikalitet"),
            can_auto_fetch=payload.get("kanHentesAutomatisk"),
        )


class CheckpointStatus(Enum):
    OK = "OK"
    DEVIATION = "AVVIK"
    NOT_ASSESSED = "IKKE_VURDERT"


@dataclass(slots=True)
class ChecklistResult:
    """Technician-entered outcome for a single checkpoint."""

    checkpoint_id: int
    text: str = ""
    type: str = ""
    status: CheckpointStatus = CheckpointStatus.NOT_ASSESSED
    value: Optional[str] = None
    comment: Optional[str] = None
    photos: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sjekkpunktId": self.checkpoint_id,
            "oppgaveTekst": self.text,
            "type": self.type,
            "value": self.value,
            "status": self.status.value,
            "comment": self.comment,
            "photos": list(self.photos),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "ChecklistResult":
        return cls(
            checkpoint_id=int(payload["sjekkpunktId"]),
            text=payload.get("oppgaveTekst", ""),
            type=payload.get("type", ""),
            status=CheckpointStatus(payload.get("status", CheckpointStatus.NOT_ASSESSED.value)),
            value=payload.get("value"),
            comment=payload.get("comment"),
            photos=list(payload.get("photos") or []),
        )


@dataclass(slots=True)
class Submission:
    """A completed checklist ready to be sent or queued."""

    code: str
    performed_by: str
    results: List[ChecklistResult]
    completed_at: datetime
    notes: Optional[str] = None
    equipment_id: Optional[str] = None
    location: Optional[str] = None


@dataclass(slots=True)
class CachedChecklist:
    code: str
    checkpoints: List[Checkpoint]
    tips: List[str]
    cached_at: datetime


@dataclass(slots=True)
class PendingSubmission:
    """Row of the durable pending-submission queue."""

    id: int
    code: str
    performed_by: str
    results_blob: str
    queued_at: datetime
    notes: Optional[str] = None
    attempts: int = 0
    last_error: Optional[str] = None


@dataclass(slots=True)
class ChecklistResponse:
    checkpoints: List[Checkpoint]
    tips: Optional[List[str]] = None
    estimated_minutes: Optional[int] = None
    source: str = "network"


@dataclass(slots=True)
class SubmissionResult:
    success: bool
    job_id: Optional[int] = None
    message: Optional[str] = None


@dataclass(slots=True)
class EquipmentCodeInfo:
    """Equipment code entry used for offline browsing."""

    code: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    checkpoint_count: int = 0


@dataclass(slots=True)
class DetectionResponse:
    """Server-side AI detection output."""

    matches: List[EquipmentMatch]
    suggested_codes: List[str] = field(default_factory=list)
    processing_time_ms: Optional[int] = None


class SuggestedAction(Enum):
    MARK_OK = "mark_ok"
    MARK_DEVIATION = "mark_deviation"
    SKIP_CHECKPOINT = "skip_checkpoint"
    ADD_COMMENT = "add_comment"


@dataclass(slots=True)
class VoiceAnalysis:
    """Intent extracted from a transcribed utterance."""

    transcript: str
    equipment_mentions: List[str]
    status_indicators: List[str]
    measurements: List[float]
    suggested_action: Optional[SuggestedAction]
    skip_requested: bool = False


class SubmitOutcome(Enum):
    SENT = "sent"
    QUEUED = "queued"


# Maintenance jobs assigned to the technician


class JobStatus(Enum):
    PLANNED = "PLANLAGT"
    STARTED = "PABEGYNT"
    DONE = "UTFORT"
    CANCELLED = "AVBRUTT"
    APPROVED = "GODKJENT"


class JobType(Enum):
    PREVENTIVE = "FOREBYGGENDE"
    URGENT = "AKUTT"
    INSPECTION = "INSPEKSJON"
    UPGRADE = "OPPGRADERING"
    STATUTORY = "LOVPALAGT"


class TaskStatus(Enum):
    OK = "OK"
    DEVIATION = "AVVIK"
    NOT_ASSESSED = "IKKE_VURDERT"
    SKIPPED = "HOPPET_OVER"


class Severity(Enum):
    LOW = "LAV"
    MEDIUM = "MEDIUM"
    HIGH = "HOY"
    CRITICAL = "KRITISK"


def parse_timestamp(raw: str | None) -> Optional[datetime]:
    if not raw:
        return None
    # fromisoformat() only accepts a trailing "Z" from Python 3.11.
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


@dataclass(slots=True)
class JobTask:
    """One task of a maintenance job, optionally backed by a sensor reading."""

    id: int
    job_id: int
    title: str
    status: TaskStatus
    description: Optional[str] = None
    requires_photo: bool = False
    sensor_ref: Optional[str] = None
    auto_value: Optional[float] = None
    auto_fetched: bool = False
    measured_value: Optional[str] = None

    @classmethod
    def from_wire(cls, payload: dict) -> "JobTask":
        auto_value = payload.get("auto_verdi")
        return cls(
            id=int(payload["id"]),
            job_id=int(payload["jobb_id"]),
            title=str(payload["tittel"]),
            status=TaskStatus(payload["status"]),
            description=payload.get("beskrivelse"),
            requires_photo=bool(payload.get("krever_bilde")),
            sensor_ref=payload.get("sensor_ref"),
            auto_value=None if auto_value is None else float(auto_value),
            auto_fetched=bool(payload.get("auto_hentet")),
            measured_value=payload.get("maale_verdi") or None,
        )


@dataclass(slots=True)
class Job:
    """Maintenance job from the technician's work list."""

    id: int
    title: str
    status: JobStatus
    type: JobType
    description: Optional[str] = None
    building_id: Optional[str] = None
    room_id: Optional[str] = None
    planned_start: Optional[datetime] = None
    due: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    tasks: List[JobTask] = field(default_factory=list)

    @property
    def open_tasks(self) -> List[JobTask]:
        return [task for task in self.tasks if task.status is TaskStatus.NOT_ASSESSED]

    @property
    def available_actions(self) -> Tuple[str, ...]:
        return _JOB_ACTIONS.get(self.status, ())

    @classmethod
    def from_wire(cls, payload: dict) -> "Job":
        return cls(
            id=int(payload["id"]),
            title=str(payload["tittel"]),
            status=JobStatus(payload["status"]),
            type=JobType(payload["type"]),
            description=payload.get("beskrivelse"),
            building_id=payload.get("bygning_id"),
            room_id=payload.get("rom_id"),
            planned_start=parse_timestamp(payload.get("planlagt_start")),
            due=parse_timestamp(payload.get("frist")),
            started_at=parse_timestamp(payload.get("faktisk_start")),
            finished_at=parse_timestamp(payload.get("faktisk_slutt")),
            tasks=[JobTask.from_wire(item) for item in payload.get("oppgaver") or []],
        )


_JOB_ACTIONS = {
    JobStatus.PLANNED: ("start",),
    JobStatus.CANCELLED: ("start", "resume"),
    JobStatus.STARTED: ("pause", "complete"),
}

@dataclass(slots=True)
class DeviationReport:
    """Deviation registered against a job task."""

    task_id: int
    description: str
    severity: Severity = Severity.MEDIUM
    photo_base64: Optional[str] = None
    source: str = "FieldScan"

    def to_wire(self) -> dict:
        return {
            "oppgaveId": self.task_id,
            "beskrivelse": self.description,
            "alvorlighet": self.severity.value,
            "bildeBase64": self.photo_base64,
            "kilde": self.source,
        }
