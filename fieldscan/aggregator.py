"""Merges per-pass equipment matches into the current detection set."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Iterable, List

from .models import EquipmentMatch

logger = logging.getLogger(__name__)

DetectionListener = Callable[[List[EquipmentMatch]], None]


def dedupe_by_code(*match_sets: Iterable[EquipmentMatch]) -> List[EquipmentMatch]:
    """Keep only the highest-confidence match for each code."""

    best: Dict[str, EquipmentMatch] = {}
    for matches in match_sets:
        for match in matches:
            current = best.get(match.code)
            if current is None or match.confidence > current.confidence:
                best[match.code] = match
    return list(best.values())


class DetectionAggregator:
    """Source of truth for what is currently detected.

    The live-frame pathway replaces the detection set on every frame. The
    single-image pathway merges its text and classification passes and then
    replaces the set once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current: List[EquipmentMatch] = []
        self._listeners: List[DetectionListener] = []

    def add_listener(self, listener: DetectionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: DetectionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def current(self) -> List[EquipmentMatch]:
        with self._lock:
            return list(self._current)

    def replace_frame(self, matches: Iterable[EquipmentMatch]) -> List[EquipmentMatch]:
        return self._publish(dedupe_by_code(matches))

    def analyze_image(
        self,
        text_matches: Iterable[EquipmentMatch],
        image_matches: Iterable[EquipmentMatch] = (),
    ) -> List[EquipmentMatch]:
        return self._publish(dedupe_by_code(text_matches, image_matches))

    def clear(self) -> None:
        self._publish([])

    def _publish(self, detections: List[EquipmentMatch]) -> List[EquipmentMatch]:
        with self._lock:
            self._current = list(detections)
        for listener in list(self._listeners):
            try:
                listener(list(detections))
            except Exception as exc:  # pragma: no cover - listener safeguard
                logger.warning("Detection listener failed: %s", exc)
        return detections
