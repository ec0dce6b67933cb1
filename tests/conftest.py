"""
Pytest fixtures for the severity pipeline tests.
"""
from __future__ import annotations

import datetime as dt
import itertools

import numpy as np
import pandas as pd
import pytest

from covid_severity_pipeline.config import CONFIG
from covid_severity_pipeline.linelist import prepare_linelist
from covid_severity_pipeline.mock_data import generate_mock_linelist
from covid_severity_pipeline.records import AgeBand, EventType, Observation, RecordStore, Sex, VaccineStatus


@pytest.fixture
def config(tmp_path):
    """CONFIG with outputs redirected to a temporary directory."""
    return {**CONFIG, "output_dir": str(tmp_path / "outputs")}


@pytest.fixture
def make_obs():
    """Factory for observations with sensible defaults."""
    def _create(
        event_type: EventType = EventType.CASE,
        vaccine_status: VaccineStatus = VaccineStatus.NONE,
        age_band: AgeBand = AgeBand.AGE_30_39,
        sex: Sex = Sex.MALE,
        count: int = 1,
        date: dt.date = dt.date(2021, 6, 1),
    ) -> Observation:
        return Observation(
            sex=sex,
            age_band=age_band,
            date=date,
            event_type=event_type,
            vaccine_status=vaccine_status,
            count=count,
        )
    return _create


@pytest.fixture
def full_grid_store(make_obs):
    """One observation per sex x age x event x vaccine cell with varied counts."""
    rng = np.random.RandomState(11)
    observations = [
        make_obs(event_type=e, vaccine_status=v, age_band=a, sex=s, count=int(rng.randint(0, 20)))
        for s, a, e, v in itertools.product(Sex, AgeBand, EventType, VaccineStatus)
    ]
    return RecordStore(observations)


@pytest.fixture(scope="session")
def mock_linelist() -> pd.DataFrame:
    return generate_mock_linelist(seed=3, n_dates=7)


@pytest.fixture(scope="session")
def mock_data(mock_linelist):
    return prepare_linelist(mock_linelist, CONFIG)


@pytest.fixture
def binary_frame() -> pd.DataFrame:
    """Simulated individual-level data with a 3-level and a 2-level factor."""
    rng = np.random.RandomState(0)
    n = 2000
    group = rng.choice(["a", "b", "c"], size=n)
    exposed = rng.choice(["no", "yes"], size=n)
    eta = -1.0 + 0.5 * (group == "b") + 1.0 * (group == "c") - 0.7 * (exposed == "yes")
    p = 1.0 / (1.0 + np.exp(-eta))
    return pd.DataFrame({"group": group, "exposed": exposed, "y": rng.binomial(1, p)})
