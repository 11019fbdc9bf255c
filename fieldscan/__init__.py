"""FieldScan core package: equipment recognition, checklists and offline delivery."""

from .checklist import ChecklistSession
from .classifier import TextClassifier
from .codes import lookup
from .config import Settings
from .models import (
    Checkpoint,
    CheckpointStatus,
    EquipmentCategory,
    EquipmentMatch,
    Submission,
    SubmitOutcome,
)
from .offline import OfflineCacheManager
from .pipeline import FieldScan
from .store import OfflineStore
from .tags import parse_tag_code
from .voice import VoiceIntentExtractor

__all__ = [
    "FieldScan",
    "Settings",
    "TextClassifier",
    "VoiceIntentExtractor",
    "ChecklistSession",
    "OfflineStore",
    "OfflineCacheManager",
    "lookup",
    "parse_tag_code",
    "Checkpoint",
    "CheckpointStatus",
    "EquipmentCategory",
    "EquipmentMatch",
    "Submission",
    "SubmitOutcome",
]
