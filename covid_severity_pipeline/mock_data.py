"""Synthetic line-listing with known severity gradients for mock runs and tests."""

from __future__ import annotations

import numpy as np
import pandas as pd

SEXES = ['Male', 'Female', 'Unknown']
SEX_MULT = {'Male': 1.0, 'Female': 1.05, 'Unknown': 0.05}

AGE_GROUPS = ['18-29', '30-39', '40-49', '50-59', '60-69', '70-79', '80+']
AGE_CASE_MULT = {'18-29': 1.3, '30-39': 1.2, '40-49': 1.1, '50-59': 1.0, '60-69': 0.8, '70-79': 0.6, '80+': 0.4}

VACCINE_GROUPS = ['Unvaccinated', 'Partially vaccinated', 'Fully vaccinated']
VACCINE_CASE_MULT = {'Unvaccinated': 1.0, 'Partially vaccinated': 0.5, 'Fully vaccinated': 0.7}
VACCINE_SEVERITY_MULT = {'Unvaccinated': 1.0, 'Partially vaccinated': 0.6, 'Fully vaccinated': 0.25}

STUDY_START = pd.Timestamp('2021-03-01')
STUDY_END = pd.Timestamp('2021-12-12')
OUT_OF_WINDOW_DATES = [pd.Timestamp('2021-02-20'), pd.Timestamp('2021-12-20')]


def generate_mock_linelist(
    seed: int = 42,
    n_dates: int = 21,
    base_cases: float = 40.0,
    include_young: bool = True,
    include_out_of_window: bool = True,
) -> pd.DataFrame:
    rng = np.random.RandomState(seed)

    n_days = (STUDY_END - STUDY_START).days + 1
    offsets = np.sort(rng.choice(n_days, size=n_dates, replace=False))
    dates = [STUDY_START + pd.Timedelta(days=int(x)) for x in offsets]
    if include_out_of_window:
        dates = dates + OUT_OF_WINDOW_DATES
    ages = AGE_GROUPS if include_young else AGE_GROUPS[1:]

    rows = []
    for date in dates:
        for sex in SEXES:
            for age in ages:
                # 30-39 is step 0 of the severity gradient
                age_index = AGE_GROUPS.index(age) - 1
                for vax in VACCINE_GROUPS:
                    case_rate = base_cases * SEX_MULT[sex] * AGE_CASE_MULT[age] * VACCINE_CASE_MULT[vax]
                    p_hosp = min(0.02 * np.exp(0.5 * age_index) * VACCINE_SEVERITY_MULT[vax], 0.9)
                    hosp_rate = case_rate * p_hosp
                    rates = {
                        'Case': case_rate,
                        'Hospitalized': hosp_rate,
                        'Critical': hosp_rate * 0.3,
                        'Death': hosp_rate * 0.2,
                    }
                    for event, rate in rates.items():
                        rows.append({
                            'sex': sex,
                            'age_group': age,
                            'date': date.strftime('%d/%m/%Y'),
                            'event': event,
                            'vaccination_status': vax,
                            'count': int(rng.poisson(rate)),
                        })

    return pd.DataFrame(rows, columns=['sex', 'age_group', 'date', 'event', 'vaccination_status', 'count'])
