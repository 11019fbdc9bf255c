"""Static lookup from equipment labels and synonyms to classification codes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from .models import EquipmentCategory


@dataclass(slots=True, frozen=True)
class CodeMapping:
    code: str
    name: str
    category: EquipmentCategory


def _m(code: str, name: str, category: EquipmentCategory) -> CodeMapping:
    return CodeMapping(code=code, name=name, category=category)


# Partial matches are resolved in insertion order.
CODE_MAPPINGS: Dict[str, CodeMapping] = {
    # Pumps
    "pump": _m("PU", "Pumpe", EquipmentCategory.PLUMBING),
    "water_pump": _m("PU", "Vannpumpe", EquipmentCategory.PLUMBING),
    "circulation_pump": _m("PU", "Sirkulasjonspumpe", EquipmentCategory.HEATING),
    # Fans and ventilation
    "fan": _m("VF", "Vifte", EquipmentCategory.HVAC),
    "ventilator": _m("VF", "Ventilator", EquipmentCategory.HVAC),
    "air_handler": _m("VF", "Luftbehandler", EquipmentCategory.HVAC),
    "duct": _m("KA", "Kanal", EquipmentCategory.HVAC),
    # Valves
    "valve": _m("VL", "Ventil", EquipmentCategory.PLUMBING),
    "gate_valve": _m("VL", "Sluseventil", EquipmentCategory.PLUMBING),
    "check_valve": _m("VL", "Tilbakeslagsventil", EquipmentCategory.PLUMBING),
    # Motors
    "motor": _m("MO", "Motor", EquipmentCategory.ELECTRICAL),
    "electric_motor": _m("MO", "Elektrisk motor", EquipmentCategory.ELECTRICAL),
    # Sensors
    "sensor": _m("SE", "Sensor", EquipmentCategory.CONTROL),
    "temperature_sensor": _m("SE", "Temperatursensor", EquipmentCategory.CONTROL),
    "pressure_sensor": _m("SE", "Trykksensor", EquipmentCategory.CONTROL),
    "flow_sensor": _m("SE", "Strømningsmåler", EquipmentCategory.CONTROL),
    # Fire safety
    "fire_extinguisher": _m("SL", "Brannslukker", EquipmentCategory.FIRE),
    "smoke_detector": _m("BR", "Røykvarsler", EquipmentCategory.FIRE),
    "sprinkler": _m("SP", "Sprinkler", EquipmentCategory.FIRE),
    # Heating
    "radiator": _m("RA", "Radiator", EquipmentCategory.HEATING),
    "heater": _m("VA", "Varmeapparat", EquipmentCategory.HEATING),
    "boiler": _m("KJ", "Kjele", EquipmentCategory.HEATING),
    # Cooling
    "air_conditioner": _m("KL", "Klimaanlegg", EquipmentCategory.COOLING),
    "chiller": _m("KL", "Kjølemaskin", EquipmentCategory.COOLING),
    "cooling_tower": _m("KT", "Kjøletårn", EquipmentCategory.COOLING),
    # Electrical
    "switch": _m("BR", "Bryter", EquipmentCategory.ELECTRICAL),
    "panel": _m("TA", "Tavle", EquipmentCategory.ELECTRICAL),
    "transformer": _m("TR", "Transformator", EquipmentCategory.ELECTRICAL),
    # Access
    "door": _m("DØ", "Dør", EquipmentCategory.ACCESS),
    "lock": _m("LÅ", "Lås", EquipmentCategory.ACCESS),
    "card_reader": _m("KO", "Kortleser", EquipmentCategory.ACCESS),
}


def normalize_label(label: str) -> str:
    return label.strip().lower().replace(" ", "_")


def lookup(label: str) -> Optional[CodeMapping]:
    """Resolve a free-text label to a code mapping.

    Exact key match wins. Otherwise the first key (in table order) that is
    contained in the label, or that contains the label, is returned.
    """

    normalized = normalize_label(label)
    if not normalized:
        return None
    exact = CODE_MAPPINGS.get(normalized)
    if exact is not None:
        return exact
    for key, mapping in CODE_MAPPINGS.items():
        if key in normalized or normalized in key:
            return mapping
    return None


def find_by_code(code: str) -> Optional[CodeMapping]:
    """Return the first mapping whose code field equals ``code``."""

    wanted = code.strip().upper()
    for mapping in CODE_MAPPINGS.values():
        if mapping.code == wanted:
            return mapping
    return None


def all_codes() -> List[CodeMapping]:
    seen: dict[str, CodeMapping] = {}
    for mapping in CODE_MAPPINGS.values():
        seen.setdefault(mapping.code, mapping)
    return list(seen.values())
