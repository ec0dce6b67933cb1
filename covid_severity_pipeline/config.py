"""Configuration for the COVID-19 severity by vaccination status analyses."""

from __future__ import annotations

import os
from pathlib import Path

ASSUMPTIONS = [
    "Input is a line-listing of daily event counts stratified by sex, age band, event type and vaccination status.",
    "Study window is 2021-03-01 to 2021-12-12 with both bounds inclusive; the earlier OR-combined date filter admitted every date after the start and is not reproduced.",
    "Age bands below 30 are excluded from the analytic population; remaining bands are 30-39 through 80+.",
    "Severe disease means any event other than a confirmed case (hospitalized, critical or death).",
    "Each unit of count is one individual; binary models expand counts into one Bernoulli row per individual.",
    "Age-band ordinal positions come from an explicit table, not from factor codes.",
    "Declared category levels with no observations are left out of model design matrices.",
]

CONFIG = {
    "input_path": os.environ.get("COVID_LINELIST_PATH", "").strip(),
    "input_encoding": os.environ.get("COVID_LINELIST_ENCODING", "utf-8"),
    "input_columns": {
        "sex": "sex",
        "age_band": "age_group",
        "date": "date",
        "event_type": "event",
        "vaccine_status": "vaccination_status",
        "count": "count",
    },
    "date_format": "%d/%m/%Y",
    "study_start": "2021-03-01",
    "study_end": "2021-12-12",
    "reference_levels": {
        "sex": "male",
        "age_band": "30-39",
        "event_type": "case",
        "vaccine_status": "none",
    },
    "binary_predictors": ["age_band", "vaccine_status", "sex"],
    "multiway_predictors": ["event_type", "vaccine_status", "age_band", "sex"],
    "binary_links": ["logit", "probit", "cloglog"],
    "irls_tol": 1e-8,
    "irls_max_iter": 25,
    "alpha": 0.05,
    "small_expected_threshold": 5.0,
    "dispersion_under_threshold": 0.5,
    "dispersion_over_threshold": 1.5,
    "collapse_covariate_patterns": os.environ.get("COVID_COLLAPSE_PATTERNS", "0").strip() == "1",
    "parallel_link_fits": False,
    "max_workers": 3,
    "print_tables": False,
    "print_table_max_rows": 30,
    "log_level": os.environ.get("COVID_LOG_LEVEL", "INFO"),
    "output_dir": os.environ.get(
        "COVID_OUTPUT_DIR",
        str(Path(__file__).resolve().parents[1] / "covid_outputs"),
    ),
}

REQUIRED_OUTPUT_FILES = [
    "cleaning_flow.csv",
    "table_event_by_vaccine.csv",
    "table_event_by_age.csv",
    "expected_event_by_vaccine.csv",
    "expected_event_by_age.csv",
    "chi_square_tests.csv",
    "model_coefficients.csv",
    "model_comparison.csv",
    "odds_ratios.csv",
    "REPORT.md",
]

_FAMILY_LINKS = {"logit", "probit", "cloglog"}


def validate_config(config: dict | None = None) -> None:
    cfg = CONFIG if config is None else config
    if not cfg.get("input_path"):
        raise ValueError("COVID_LINELIST_PATH is empty. Set COVID_LINELIST_PATH before running.")
    if not Path(cfg["input_path"]).is_file():
        raise ValueError(f"Line-listing not found: {cfg['input_path']}")
    unknown_links = [x for x in cfg.get("binary_links", []) if x not in _FAMILY_LINKS]
    if unknown_links:
        raise ValueError(f"Unsupported binary links: {', '.join(unknown_links)}")
    if not cfg.get("binary_links"):
        raise ValueError("binary_links must name at least one link function.")
    if float(cfg["irls_tol"]) <= 0 or int(cfg["irls_max_iter"]) < 1:
        raise ValueError("irls_tol must be > 0 and irls_max_iter >= 1.")
    if not 0 < float(cfg["alpha"]) < 1:
        raise ValueError("alpha must lie in (0, 1).")


def ensure_output_dir(config: dict | None = None) -> Path:
    cfg = CONFIG if config is None else config
    out_dir = Path(cfg["output_dir"]).resolve()
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir
