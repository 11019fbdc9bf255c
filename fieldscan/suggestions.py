"""Rule-based hints shown next to the active checkpoint."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List

from .models import Checkpoint, EquipmentMatch


class HintAction(Enum):
    NONE = "none"
    START_VOICE_INPUT = "start_voice_input"
    TAKE_PHOTO = "take_photo"


@dataclass(slots=True, frozen=True)
class Hint:
    """Suggestion produced by a hint rule."""

    text: str
    action: HintAction = HintAction.NONE
    source: str = ""


Rule = Callable[[Checkpoint, EquipmentMatch], Hint | None]


class SuggestionEngine:
    """Evaluates a checkpoint against the rule set, in rule order."""

    def __init__(self, rules: Iterable[Rule]) -> None:
        self.rules = list(rules)

    def evaluate(self, checkpoint: Checkpoint, match: EquipmentMatch) -> List[Hint]:
        hints: List[Hint] = []
        for rule in self.rules:
            hint = rule(checkpoint, match)
            if hint:
                hints.append(hint)
        return hints


def checkpoint_type_rule(checkpoint: Checkpoint, match: EquipmentMatch) -> Hint | None:
    if checkpoint.type == "Måling":
        return Hint("Bruk stemme for å registrere måling", HintAction.START_VOICE_INPUT, "rule:type")
    if checkpoint.type == "Inspeksjon":
        return Hint("Ta bilde for dokumentasjon", HintAction.TAKE_PHOTO, "rule:type")
    if checkpoint.type == "Sjekk":
        return Hint("Si 'OK' eller 'Avvik'", HintAction.START_VOICE_INPUT, "rule:type")
    return None


def criticality_rule(checkpoint: Checkpoint, match: EquipmentMatch) -> Hint | None:
    if (checkpoint.criticality or "").lower() != "høy":
        return None
    return Hint("Kritisk sjekkpunkt - dokumenter grundig", source="rule:criticality")


EQUIPMENT_TIPS = {
    "PU": "Tips: Lytt etter kavitasjonslyder",
    "VF": "Tips: Sjekk reimspenning",
    "SL": "Tips: Verifiser at plomben er intakt",
}


def equipment_tip_rule(checkpoint: Checkpoint, match: EquipmentMatch) -> Hint | None:
    tip = EQUIPMENT_TIPS.get(match.code)
    if tip is None:
        return None
    return Hint(tip, source="rule:equipment")


DEFAULT_RULES: List[Rule] = [
    checkpoint_type_rule,
    criticality_rule,
    equipment_tip_rule,
]
