"""Alias tables for shifts, specialties and units.

Normalization happens once, here; everything downstream compares the
resulting values by exact equality.
"""

from __future__ import annotations

import re
from typing import Any

from payroll_import.types import Shift

# Cells meaning "not applicable"; treated as blank wherever they appear.
NOT_APPLICABLE_MARKERS = frozenset({"N/P", "NP"})

SHIFT_ALIASES: dict[str, Shift] = {
    "M": Shift.MORNING,
    "MANHA": Shift.MORNING,
    "MANHÃ": Shift.MORNING,
    "T": Shift.AFTERNOON,
    "TARDE": Shift.AFTERNOON,
    "N": Shift.NIGHT,
    "NOITE": Shift.NIGHT,
    "I": Shift.FULL,
    "INTEGRAL": Shift.FULL,
    "COMPLETO": Shift.FULL,
}

# Shift annotations embedded in the name column, e.g. "Ana Souza (tarde)".
NAME_SHIFT_ANNOTATIONS: tuple[tuple[re.Pattern[str], Shift], ...] = (
    (re.compile(r"\s*\(tarde\)", re.IGNORECASE), Shift.AFTERNOON),
    (re.compile(r"\s*\(manh[aã]\)", re.IGNORECASE), Shift.MORNING),
    (re.compile(r"\s*\(noite\)", re.IGNORECASE), Shift.NIGHT),
    (re.compile(r"\s*\(integral\)", re.IGNORECASE), Shift.FULL),
)

SPECIALTY_ALIASES: dict[str, str] = {
    "Acup": "Acupuntura",
    "fisio pelv": "Fisioterapia Pélvica",
    "neuro": "Fisioterapia Neurológica",
    "SJAcup": "Acupuntura São José",
    "SJFisio": "Fisioterapia São José",
}

UNIT_ALIASES: dict[str, str] = {
    "ANEXO": "ANEXO",
    "MATRIZ": "MATRIZ",
    "SJ": "SÃO JOSÉ",
    "SAO JOSE": "SÃO JOSÉ",
    "SÃO JOSÉ": "SÃO JOSÉ",
    "SAOJOSE": "SÃO JOSÉ",
    "S.J": "SÃO JOSÉ",
    "S.JOSE": "SÃO JOSÉ",
}


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _clean_applicable(value: Any) -> str | None:
    text = _clean(value)
    if text is None or text.upper() in NOT_APPLICABLE_MARKERS:
        return None
    return text


def normalize_shift_code(value: Any) -> Shift:
    """Map an explicit shift code to a Shift; unknown codes are UNDEFINED."""
    code = _clean(value)
    if code is None:
        return Shift.UNDEFINED
    return SHIFT_ALIASES.get(code.upper(), Shift.UNDEFINED)


def shift_from_name(name: str) -> Shift | None:
    """Shift annotated in a display name, if any."""
    for pattern, shift in NAME_SHIFT_ANNOTATIONS:
        if pattern.search(name):
            return shift
    return None


def resolve_shift(shift_cell: Any, raw_name: str) -> Shift:
    """Explicit shift column first, then name annotation, else UNDEFINED.

    Never defaults to FULL.
    """
    if _clean(shift_cell) is not None:
        return normalize_shift_code(shift_cell)
    return shift_from_name(raw_name) or Shift.UNDEFINED


def strip_shift_annotations(name: str) -> str:
    """Remove trailing shift annotations from a display name."""
    cleaned = name
    for pattern, _ in NAME_SHIFT_ANNOTATIONS:
        cleaned = pattern.sub("", cleaned)
    return " ".join(cleaned.split())


def normalize_specialty(value: Any) -> str | None:
    text = _clean_applicable(value)
    if text is None:
        return None
    return SPECIALTY_ALIASES.get(text, text)


def normalize_unit(value: Any) -> str | None:
    text = _clean_applicable(value)
    if text is None:
        return None
    return UNIT_ALIASES.get(text.upper(), text)
