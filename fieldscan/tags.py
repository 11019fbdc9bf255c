"""Parser for structured equipment tags such as ``=360.01-PU001``."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .codes import CodeMapping, find_by_code
from .models import EquipmentCategory

# [=]DDD[.DD][-]AA[DDD]: system number, sub-number, component code, instance.
TAG_PATTERN = re.compile(r"=?(\d{3})\.?(\d{2})?-?([A-Z]{2})(\d{3})?")


@dataclass(slots=True, frozen=True)
class TagCode:
    system: str
    component: str
    sub_number: Optional[str] = None
    instance: Optional[str] = None

    def render(self) -> str:
        parts = [f"={self.system}"]
        if self.sub_number:
            parts.append(f".{self.sub_number}")
        parts.append(f"-{self.component}")
        if self.instance:
            parts.append(self.instance)
        return "".join(parts)


def parse_tag(text: str) -> Optional[TagCode]:
    """Return the first tag found in ``text`` or ``None``.

    The pattern is case sensitive; callers uppercase OCR output first.
    """

    match = TAG_PATTERN.search(text)
    if not match:
        return None
    system, sub_number, component, instance = match.groups()
    return TagCode(system=system, component=component, sub_number=sub_number, instance=instance)


def parse_tag_code(text: str) -> Optional[CodeMapping]:
    tag = parse_tag(text)
    if tag is None:
        return None
    mapping = find_by_code(tag.component)
    if mapping is not None:
        return mapping
    # A well-formed tag is kept even when the component code is unknown.
    return CodeMapping(
        code=tag.component,
        name=f"Ukjent komponent ({tag.component})",
        category=EquipmentCategory.OTHER,
    )
