"""Expansion of aggregated counts into one binary-outcome row per individual."""

from __future__ import annotations

import itertools
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator

import numpy as np
import pandas as pd

from .errors import NegativeCountError
from .records import AgeBand, EventType, Observation, Sex, VaccineStatus, levels_for

EXPANDED_COLUMNS = ["age_band", "vaccine_status", "sex", "severe"]


@dataclass(frozen=True)
class ExpandedRecord:
    age_band: AgeBand
    vaccine_status: VaccineStatus
    sex: Sex
    severe: bool


def is_severe(obs: Observation) -> bool:
    return obs.event_type is not EventType.CASE


class ExpandedRecords:
    """Lazy, restartable sequence of ``ExpandedRecord``.

    Each source observation with count k yields k identical records, in
    source order. Iterating twice gives the same sequence; nothing is
    materialised unless ``to_frame`` is called.
    """

    def __init__(self, observations: Iterable[Observation], severity: Callable[[Observation], bool] = is_severe):
        self._sources = tuple(observations)
        self._severity = severity
        for position, obs in enumerate(self._sources):
            if obs.count < 0:
                raise NegativeCountError(obs.count, position=position, record=obs)
        self._total = int(sum(obs.count for obs in self._sources))

    def __len__(self) -> int:
        return self._total

    def __iter__(self) -> Iterator[ExpandedRecord]:
        for obs in self._sources:
            if obs.count == 0:
                continue
            record = ExpandedRecord(
                age_band=obs.age_band,
                vaccine_status=obs.vaccine_status,
                sex=obs.sex,
                severe=bool(self._severity(obs)),
            )
            yield from itertools.repeat(record, obs.count)

    def to_frame(self) -> pd.DataFrame:
        base = pd.DataFrame(
            {
                "age_band": [obs.age_band.value for obs in self._sources],
                "vaccine_status": [obs.vaccine_status.value for obs in self._sources],
                "sex": [obs.sex.value for obs in self._sources],
                "severe": [int(bool(self._severity(obs))) for obs in self._sources],
            },
            columns=EXPANDED_COLUMNS,
        )
        repeats = np.array([obs.count for obs in self._sources], dtype=np.int64)
        out = base.loc[base.index.repeat(repeats)].reset_index(drop=True)
        for field in ["age_band", "vaccine_status", "sex"]:
            out[field] = pd.Categorical(out[field], categories=levels_for(field))
        out["severe"] = out["severe"].astype("int64")
        return out


def expand_observations(
    observations: Iterable[Observation],
    severity: Callable[[Observation], bool] = is_severe,
) -> ExpandedRecords:
    return ExpandedRecords(observations, severity=severity)


def covariate_pattern_weights(
    observations: Iterable[Observation],
    severity: Callable[[Observation], bool] = is_severe,
) -> pd.DataFrame:
    """Collapse observations to one row per covariate pattern and outcome.

    ``weight`` is the number of individuals sharing the pattern; using it as
    a frequency weight is equivalent to fitting the expanded rows.
    """
    weights: Counter[tuple[str, str, str, int]] = Counter()
    for position, obs in enumerate(observations):
        if obs.count < 0:
            raise NegativeCountError(obs.count, position=position, record=obs)
        if obs.count == 0:
            continue
        key = (obs.age_band.value, obs.vaccine_status.value, obs.sex.value, int(bool(severity(obs))))
        weights[key] += obs.count

    out = pd.DataFrame(list(weights), columns=EXPANDED_COLUMNS)
    out["weight"] = np.array(list(weights.values()), dtype=np.int64)
    for field in ["age_band", "vaccine_status", "sex"]:
        out[field] = pd.Categorical(out[field], categories=levels_for(field))
    out["severe"] = out["severe"].astype("int64")
    return out.sort_values(EXPANDED_COLUMNS).reset_index(drop=True)
