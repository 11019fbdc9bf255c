"""Rule-based classifier turning recognized text into equipment matches."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .codes import CodeMapping, lookup
from .models import BoundingBox, EquipmentMatch, RecognizedText
from .tags import parse_tag_code

logger = logging.getLogger(__name__)

TAG_CONFIDENCE = 0.9
LOOKUP_CONFIDENCE = 0.85
KEYWORD_CONFIDENCE = 0.7

DEFAULT_ACCEPTANCE_THRESHOLD = 0.5

# Norwegian and English equipment nouns, scanned in this order.
EQUIPMENT_WORDS: List[str] = [
    "pumpe", "pump", "vifte", "fan", "ventil", "valve", "motor",
    "sensor", "måler", "meter", "brannslukker", "radiator",
    "kjøle", "varme", "heater", "cooler", "filter", "kompressor",
    "transformator", "tavle", "panel", "bryter", "switch",
]


def extract_keywords(text: str) -> List[str]:
    lowered = text.lower()
    return [word for word in EQUIPMENT_WORDS if word in lowered]


def _to_match(mapping: CodeMapping, confidence: float, region: Optional[BoundingBox]) -> EquipmentMatch:
    return EquipmentMatch(
        code=mapping.code,
        name=mapping.name,
        category=mapping.category,
        confidence=confidence,
        source_region=region,
    )


class TextClassifier:
    """Tries tag parsing, then direct lookup, then keyword lookup.

    Each tier reports a fixed confidence. The upstream recognizer's own
    score is only used by callers to filter candidates before they get here.
    """

    def __init__(self, *, acceptance_threshold: float = DEFAULT_ACCEPTANCE_THRESHOLD) -> None:
        self.acceptance_threshold = acceptance_threshold

    def classify(self, text: str, bounding_box: BoundingBox | None = None) -> EquipmentMatch | None:
        if not text or not text.strip():
            return None
        tagged = parse_tag_code(text.upper())
        if tagged is not None:
            return _to_match(tagged, TAG_CONFIDENCE, bounding_box)
        direct = lookup(text)
        if direct is not None:
            return _to_match(direct, LOOKUP_CONFIDENCE, bounding_box)
        keywords = extract_keywords(text)
        if keywords:
            mapping = lookup(keywords[0])
            if mapping is not None:
                return _to_match(mapping, KEYWORD_CONFIDENCE, bounding_box)
        return None

    def classify_label(self, identifier: str, confidence: float) -> EquipmentMatch | None:
        """Map a whole-image classification label, keeping its own confidence."""

        mapping = lookup(identifier)
        if mapping is None:
            return None
        return _to_match(mapping, confidence, None)

    def classify_recognized(self, candidates: Iterable[RecognizedText]) -> List[EquipmentMatch]:
        matches: List[EquipmentMatch] = []
        for candidate in candidates:
            if candidate.confidence <= self.acceptance_threshold:
                continue
            match = self.classify(candidate.text, candidate.bounding_box)
            if match is not None:
                logger.debug("Classified %r as %s (%.2f)", candidate.text, match.code, match.confidence)
                matches.append(match)
        return matches
