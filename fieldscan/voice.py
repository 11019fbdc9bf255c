"""Intent extraction from transcribed technician utterances."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .models import CheckpointStatus, SuggestedAction, VoiceAnalysis

EQUIPMENT_KEYWORDS = frozenset({
    "pumpe", "vifte", "ventil", "motor", "sensor", "filter",
    "radiator", "kjølemaskin", "kompressor", "brannslukker",
    "lekkasje", "trykk", "temperatur", "lyd", "vibrasjon",
    "pump", "fan", "valve", "compressor", "leak", "pressure",
    "temperature", "noise", "vibration",
})

POSITIVE_WORDS = frozenset({"ok", "bra", "fint", "godkjent", "approved", "good", "fine"})
NEGATIVE_WORDS = frozenset({
    "avvik", "feil", "problem", "defekt", "ødelagt",
    "deviation", "broken", "fault", "defect", "damaged",
})
SKIP_PHRASES = ("hopp over", "ikke vurdert", "not assessed", "skip")

_TOKEN = re.compile(r"[^\W\d_]+", re.UNICODE)
_NUMBER = re.compile(r"\d+[,.]?\d*")

POSITIVE = "positive"
NEGATIVE = "negative"


def _contains_phrase(tokens: List[str], phrases: Tuple[str, ...]) -> bool:
    joined = f" {' '.join(tokens)} "
    return any(f" {phrase} " in joined for phrase in phrases)


def extract_numbers(text: str) -> List[float]:
    numbers: List[float] = []
    for raw in _NUMBER.findall(text):
        normalized = raw.replace(",", ".")
        if normalized.endswith("."):
            normalized = normalized[:-1]
        try:
            numbers.append(float(normalized))
        except ValueError:
            continue
    return numbers


def _format_number(value: float) -> str:
    return str(int(value)) if value.is_integer() else str(value)


@dataclass(slots=True)
class VoiceInput:
    """What a transcript would change on the current checkpoint."""

    transcript: str
    status: Optional[CheckpointStatus] = None
    measurement: Optional[str] = None
    comment: Optional[str] = None


class VoiceIntentExtractor:
    """Flags status words and measurements in a transcript.

    The output only feeds a suggestion list; nothing is applied until the
    technician confirms it.
    """

    def analyze(self, transcript: str) -> VoiceAnalysis:
        mentions: List[str] = []
        indicators: List[str] = []
        tokens = _TOKEN.findall(transcript.lower())
        for token in tokens:
            if token in EQUIPMENT_KEYWORDS:
                mentions.append(token)
            if token in POSITIVE_WORDS:
                indicators.append(POSITIVE)
            elif token in NEGATIVE_WORDS:
                indicators.append(NEGATIVE)
        skip_requested = _contains_phrase(tokens, SKIP_PHRASES)
        return VoiceAnalysis(
            transcript=transcript,
            equipment_mentions=mentions,
            status_indicators=indicators,
            measurements=extract_numbers(transcript),
            suggested_action=self._suggested_action(indicators, skip_requested),
            skip_requested=skip_requested,
        )

    @staticmethod
    def _suggested_action(indicators: List[str], skip_requested: bool) -> SuggestedAction | None:
        if NEGATIVE in indicators:
            return SuggestedAction.MARK_DEVIATION
        if POSITIVE in indicators:
            return SuggestedAction.MARK_OK
        if skip_requested:
            return SuggestedAction.SKIP_CHECKPOINT
        return None

    def to_input(self, transcript: str) -> VoiceInput:
        analysis = self.analyze(transcript)
        status = {
            SuggestedAction.MARK_OK: CheckpointStatus.OK,
            SuggestedAction.MARK_DEVIATION: CheckpointStatus.DEVIATION,
            SuggestedAction.SKIP_CHECKPOINT: CheckpointStatus.NOT_ASSESSED,
        }.get(analysis.suggested_action)
        measurement = _format_number(analysis.measurements[0]) if analysis.measurements else None
        # Free-form speech without a status word is kept as a comment.
        comment = transcript.strip() if not analysis.status_indicators and transcript.strip() else None
        return VoiceInput(transcript=transcript, status=status, measurement=measurement, comment=comment)

    def suggestions(self, transcript: str) -> List[str]:
        analysis = self.analyze(transcript)
        lines: List[str] = []
        if analysis.suggested_action is SuggestedAction.MARK_DEVIATION:
            lines.extend(["Sett status til AVVIK", "Legg til kommentar om avviket"])
        elif analysis.suggested_action is SuggestedAction.MARK_OK:
            lines.append("Sett status til OK")
        elif analysis.suggested_action is SuggestedAction.SKIP_CHECKPOINT:
            lines.append("Sett status til IKKE VURDERT")
        if "neste" in transcript.lower() or "next" in transcript.lower():
            lines.append("Gå til neste sjekkpunkt")
        if analysis.measurements:
            lines.append(f"Registrer måling: {_format_number(analysis.measurements[0])}")
        return lines
