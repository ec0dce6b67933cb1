"""
================================================================================
CATEGORY DEFINITIONS - Centralized Label Sets for All Stratifying Variables
================================================================================
COVID-19 severity by vaccination status, line-listing of daily event counts

This module centralizes every raw label accepted from the line-listing and
maps it onto the closed enumerations in ``records``. Loaders must resolve
labels through ``parse_label`` -- no scattered string comparisons elsewhere
in the codebase.

NOTE: Age bands below 30 are known labels but are intentionally excluded
from the analytic population per study protocol.
================================================================================
"""

from __future__ import annotations

import re
from enum import Enum

import pandas as pd

from .errors import UnknownCategory
from .records import AgeBand, EventType, Sex, VaccineStatus

# ============================================================================
# STRATIFIERS
# ============================================================================

SEX_LABELS = {
    'name': 'Sex',
    'field': 'sex',
    'enum': Sex,
    'aliases': {
        'm': Sex.MALE,
        'man': Sex.MALE,
        'men': Sex.MALE,
        'f': Sex.FEMALE,
        'woman': Sex.FEMALE,
        'women': Sex.FEMALE,
        'u': Sex.UNKNOWN,
        'other': Sex.UNKNOWN,
        'not stated': Sex.UNKNOWN,
        'missing': Sex.UNKNOWN,
    },
    'description': 'Reported sex; missing/other values collapse to unknown',
}

AGE_BAND_LABELS = {
    'name': 'Age Band',
    'field': 'age_band',
    'enum': AgeBand,
    'aliases': {
        '30 - 39': AgeBand.AGE_30_39,
        '40 - 49': AgeBand.AGE_40_49,
        '50 - 59': AgeBand.AGE_50_59,
        '60 - 69': AgeBand.AGE_60_69,
        '70 - 79': AgeBand.AGE_70_79,
        '80 +': AgeBand.AGE_80_PLUS,
        '80 and over': AgeBand.AGE_80_PLUS,
        '80+ years': AgeBand.AGE_80_PLUS,
        '>=80': AgeBand.AGE_80_PLUS,
        '>80': AgeBand.AGE_80_PLUS,
    },
    'excluded': ('<30', 'under 30', '0-29'),
    'description': 'Ten-year age bands from 30; younger bands are excluded, not unknown',
}

# ============================================================================
# OUTCOME / EXPOSURE
# ============================================================================

EVENT_TYPE_LABELS = {
    'name': 'Event Type',
    'field': 'event_type',
    'enum': EventType,
    'aliases': {
        'cases': EventType.CASE,
        'confirmed': EventType.CASE,
        'confirmed case': EventType.CASE,
        'positive': EventType.CASE,
        'hospitalised': EventType.HOSPITALIZED,
        'hospitalization': EventType.HOSPITALIZED,
        'hospitalisation': EventType.HOSPITALIZED,
        'admitted': EventType.HOSPITALIZED,
        'icu': EventType.CRITICAL,
        'intensive care': EventType.CRITICAL,
        'critically ill': EventType.CRITICAL,
        'deaths': EventType.DEATH,
        'deceased': EventType.DEATH,
        'died': EventType.DEATH,
    },
    'description': 'Most severe event recorded for the stratum; anything but case counts as severe',
}

VACCINE_STATUS_LABELS = {
    'name': 'Vaccination Status',
    'field': 'vaccine_status',
    'enum': VaccineStatus,
    'aliases': {
        'unvaccinated': VaccineStatus.NONE,
        'not vaccinated': VaccineStatus.NONE,
        'no vaccine': VaccineStatus.NONE,
        'partially vaccinated': VaccineStatus.PARTIAL,
        'one dose': VaccineStatus.PARTIAL,
        '1 dose': VaccineStatus.PARTIAL,
        'first dose': VaccineStatus.PARTIAL,
        'fully vaccinated': VaccineStatus.FULL,
        'two doses': VaccineStatus.FULL,
        '2 doses': VaccineStatus.FULL,
        'complete': VaccineStatus.FULL,
    },
    'description': 'Vaccination status at event date',
}

CATEGORY_DEFINITIONS = {
    'sex': SEX_LABELS,
    'age_band': AGE_BAND_LABELS,
    'event_type': EVENT_TYPE_LABELS,
    'vaccine_status': VACCINE_STATUS_LABELS,
}

# numeric band such as "18-24" or "25 - 29"
_NUMERIC_BAND = re.compile(r'^(\d+)\s*-\s*(\d+)$')
MIN_ANALYTIC_AGE = 30


def _clean(raw) -> str:
    return ' '.join(str(raw).strip().lower().split())


def is_excluded_age_label(raw) -> bool:
    """True for age labels that are valid but fall below the analytic floor."""
    if raw is None or pd.isna(raw):
        return False
    label = _clean(raw)
    if label in AGE_BAND_LABELS['excluded']:
        return True
    match = _NUMERIC_BAND.match(label)
    return bool(match) and int(match.group(2)) < MIN_ANALYTIC_AGE


def parse_label(field: str, raw, *, position: int | None = None) -> Enum:
    """
    Resolve a raw label to its enum member.
    Matching is case- and whitespace-insensitive against canonical values
    first, then aliases. Anything else raises UnknownCategory.
    """
    definition = CATEGORY_DEFINITIONS[field]
    enum_cls = definition['enum']
    if raw is None or pd.isna(raw):
        raise UnknownCategory(field, raw, list(enum_cls), position=position)
    label = _clean(raw)
    for member in enum_cls:
        if label == member.value:
            return member
    member = definition['aliases'].get(label)
    if member is None:
        raise UnknownCategory(field, raw, list(enum_cls), position=position)
    return member


def get_category_inventory() -> pd.DataFrame:
    """Return a summary DataFrame of all category definitions."""
    rows = []
    for field, definition in CATEGORY_DEFINITIONS.items():
        rows.append({
            'field': field,
            'name': definition['name'],
            'levels': ', '.join(m.value for m in definition['enum']),
            'n_aliases': len(definition['aliases']),
            'excluded': ', '.join(definition.get('excluded', ())),
            'description': definition['description'],
        })
    return pd.DataFrame(rows)
