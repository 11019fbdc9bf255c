"""Live scanning session feeding camera frames through recognition."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Iterable, List, Optional

from .aggregator import DetectionAggregator
from .classifier import TextClassifier
from .models import ClassificationLabel, EquipmentMatch
from .ocr import TextRecognizer

logger = logging.getLogger(__name__)


class ScanSession:
    """Runs recognition off the caller's thread, one frame at a time.

    Frames arriving while a previous frame is still being recognized are
    dropped. Every ``start``/``stop`` bumps a generation counter, and
    results from an older generation are discarded instead of published.
    """

    def __init__(
        self,
        recognizer: TextRecognizer,
        classifier: TextClassifier,
        aggregator: DetectionAggregator,
        *,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.recognizer = recognizer
        self.classifier = classifier
        self.aggregator = aggregator
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="recognition")
        self._owns_executor = executor is None
        self._lock = threading.RLock()
        self._generation = 0
        self._active = False
        self._in_flight: Optional[Future] = None
        self.dropped_frames = 0
        self.last_processing_time = 0.0

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_processing(self) -> bool:
        with self._lock:
            return self._in_flight is not None

    def start(self) -> int:
        with self._lock:
            self._generation += 1
            self._active = True
            self.dropped_frames = 0
            logger.info("Scan session %d started", self._generation)
            return self._generation

    def stop(self) -> None:
        with self._lock:
            if self._in_flight is not None:
                self._in_flight.cancel()
                self._in_flight = None
            self._generation += 1
            self._active = False
        self.aggregator.clear()
        logger.info("Scan session stopped")

    def submit_frame(self, frame) -> bool:
        """Queue ``frame`` for recognition; ``False`` when it was dropped."""

        with self._lock:
            if not self._active or self._in_flight is not None:
                self.dropped_frames += 1
                return False
            generation = self._generation
            future = self._executor.submit(self._recognize, frame)
            self._in_flight = future
        future.add_done_callback(lambda done: self._on_frame_done(done, generation))
        return True

    def wait_idle(self, timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while self.is_processing:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)
        return True

    def _recognize(self, frame) -> List[EquipmentMatch]:
        started = time.perf_counter()
        candidates = self.recognizer.recognize(frame)
        matches = self.classifier.classify_recognized(candidates)
        self.last_processing_time = time.perf_counter() - started
        return matches

    def _on_frame_done(self, future: Future, generation: int) -> None:
        with self._lock:
            if self._in_flight is future:
                self._in_flight = None
            if future.cancelled():
                return
            error = future.exception()
            if error is not None:
                logger.warning("Frame recognition failed: %s", error)
                return
            if generation != self._generation or not self._active:
                logger.debug("Discarding result from stale scan session %d", generation)
                return
            # Published under the lock so stop() cannot interleave.
            self.aggregator.replace_frame(future.result())

    def analyze_image(self, image, labels: Iterable[ClassificationLabel] = ()) -> List[EquipmentMatch]:
        """Single captured photo: text pass plus classification pass."""

        text_matches = self.classifier.classify_recognized(self.recognizer.recognize(image))
        image_matches = []
        for label in labels:
            if label.confidence <= self.classifier.acceptance_threshold:
                continue
            match = self.classifier.classify_label(label.identifier, label.confidence)
            if match is not None:
                image_matches.append(match)
        return self.aggregator.analyze_image(text_matches, image_matches)

    def close(self) -> None:
        self.stop()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
