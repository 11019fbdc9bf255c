"""Plain-text presentation of detections and checklists."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .checklist import ChecklistSession
from .models import ChecklistResponse, EquipmentMatch
from .suggestions import Hint


@dataclass(slots=True)
class DetectionCard:
    match: EquipmentMatch

    def render_text(self) -> str:
        lines = [
            f"[{self.match.code}] {self.match.name}",
            f"  category: {self.match.category.label}",
            f"  confidence: {self.match.confidence:.0%}",
        ]
        box = self.match.source_region
        if box is not None:
            lines.append(f"  region: x={box.x:.2f} y={box.y:.2f} w={box.width:.2f} h={box.height:.2f}")
        return "\n".join(lines)


@dataclass(slots=True)
class ChecklistCard:
    session: ChecklistSession
    response: ChecklistResponse
    hints: Dict[int, List[Hint]] = field(default_factory=dict)

    def render_text(self) -> str:
        match = self.session.match
        lines = [f"{match.code} {match.name} ({len(self.session.checkpoints)} sjekkpunkter)"]
        if self.response.source == "cache":
            lines.append("  (fra lokal hurtigbuffer)")
        if self.response.estimated_minutes:
            lines.append(f"  estimert tid: {self.response.estimated_minutes} min")
        for tip in self.response.tips or []:
            lines.append(f"  tips: {tip}")
        for checkpoint in self.session.checkpoints:
            result = self.session.results[checkpoint.id]
            marker = "*" if checkpoint.id == self.session.current_checkpoint_id else " "
            lines.append(f"{marker} {checkpoint.id:>4} [{result.status.value}] {checkpoint.text} ({checkpoint.type})")
            if result.value:
                lines.append(f"         verdi: {result.value}")
            if result.comment:
                lines.append(f"         kommentar: {result.comment}")
            for hint in self.hints.get(checkpoint.id, []):
                lines.append(f"         > {hint.text}")
        return "\n".join(lines)


def build_detection_cards(matches: Iterable[EquipmentMatch]) -> List[DetectionCard]:
    ordered = sorted(matches, key=lambda match: match.confidence, reverse=True)
    return [DetectionCard(match=match) for match in ordered]
