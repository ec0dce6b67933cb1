"""Typed observations for the severity analyses and the store that owns them."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator

import pandas as pd

from .errors import NegativeCountError


class Sex(Enum):
    MALE = "male"
    FEMALE = "female"
    UNKNOWN = "unknown"


class AgeBand(Enum):
    AGE_30_39 = "30-39"
    AGE_40_49 = "40-49"
    AGE_50_59 = "50-59"
    AGE_60_69 = "60-69"
    AGE_70_79 = "70-79"
    AGE_80_PLUS = "80+"

    @property
    def index(self) -> int:
        return AGE_BAND_INDEX[self]


# Ordinal position of each band; the source data carried younger bands ahead
# of these, so factor codes are not usable as an index.
AGE_BAND_INDEX = {
    AgeBand.AGE_30_39: 0,
    AgeBand.AGE_40_49: 1,
    AgeBand.AGE_50_59: 2,
    AgeBand.AGE_60_69: 3,
    AgeBand.AGE_70_79: 4,
    AgeBand.AGE_80_PLUS: 5,
}


class EventType(Enum):
    CASE = "case"
    HOSPITALIZED = "hospitalized"
    CRITICAL = "critical"
    DEATH = "death"


class VaccineStatus(Enum):
    NONE = "none"
    PARTIAL = "partial"
    FULL = "full"


FIELD_ENUMS: dict[str, type[Enum]] = {
    "sex": Sex,
    "age_band": AgeBand,
    "event_type": EventType,
    "vaccine_status": VaccineStatus,
}

OBSERVATION_COLUMNS = ["sex", "age_band", "date", "event_type", "vaccine_status", "count"]


def levels_for(field: str) -> list[str]:
    return [member.value for member in FIELD_ENUMS[field]]


@dataclass(frozen=True)
class Observation:
    sex: Sex
    age_band: AgeBand
    date: dt.date
    event_type: EventType
    vaccine_status: VaccineStatus
    count: int

    def __post_init__(self) -> None:
        if self.count < 0:
            raise NegativeCountError(self.count, record=self)


class RecordStore:
    """Immutable, ordered collection of cleaned observations."""

    def __init__(self, observations: Iterable[Observation] = ()):
        self._observations = tuple(observations)

    def __iter__(self) -> Iterator[Observation]:
        return iter(self._observations)

    def __len__(self) -> int:
        return len(self._observations)

    def __getitem__(self, idx: int) -> Observation:
        return self._observations[idx]

    @property
    def observations(self) -> tuple[Observation, ...]:
        return self._observations

    @property
    def total_count(self) -> int:
        return sum(obs.count for obs in self._observations)

    def within_window(self, start: dt.date, end: dt.date) -> "RecordStore":
        """Keep observations dated in ``[start, end]``, both bounds inclusive."""
        if start > end:
            raise ValueError(f"study window start {start} is after end {end}")
        kept = [obs for obs in self._observations if start <= obs.date <= end]
        dropped = len(self._observations) - len(kept)
        if dropped:
            logging.info("Study window %s..%s dropped %s rows", start, end, dropped)
        return RecordStore(kept)

    def to_frame(self) -> pd.DataFrame:
        data = {
            "sex": [obs.sex.value for obs in self._observations],
            "age_band": [obs.age_band.value for obs in self._observations],
            "date": pd.to_datetime([obs.date for obs in self._observations]),
            "event_type": [obs.event_type.value for obs in self._observations],
            "vaccine_status": [obs.vaccine_status.value for obs in self._observations],
            "count": [obs.count for obs in self._observations],
        }
        out = pd.DataFrame(data, columns=OBSERVATION_COLUMNS)
        for field in FIELD_ENUMS:
            out[field] = pd.Categorical(out[field], categories=levels_for(field))
        out["count"] = out["count"].astype("int64")
        return out
