"""Analysis modules for COVID-19 severity by vaccination status."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import pandas as pd

from .aggregation import ContingencyTable, event_by_age_table, event_by_vaccine_table, multiway_counts
from .comparison import ComparisonReport, compare_models
from .errors import AnalysisError
from .expansion import covariate_pattern_weights, expand_observations
from .glm import Factor, FittedModel, fit_frame
from .independence import IndependenceResult, chi_square_test
from .records import AGE_BAND_INDEX, RecordStore, levels_for

AGE_INDEX_BY_LABEL = {band.value: idx for band, idx in AGE_BAND_INDEX.items()}


@dataclass
class AnalysisBundle:
    cleaning_flow: pd.DataFrame | None = None
    tables: dict[str, ContingencyTable] = field(default_factory=dict)
    independence: dict[str, IndependenceResult] = field(default_factory=dict)
    poisson_models: dict[str, FittedModel] = field(default_factory=dict)
    severity_models: dict[str, FittedModel] = field(default_factory=dict)
    comparison: ComparisonReport | None = None
    coefficients: pd.DataFrame | None = None
    odds_ratios: pd.DataFrame | None = None
    n_expanded: int | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def models(self) -> list[FittedModel]:
        return [*self.poisson_models.values(), *self.severity_models.values()]

    def chi_square_summary(self) -> pd.DataFrame:
        rows = [result.as_row() for result in self.independence.values()]
        return pd.DataFrame(rows, columns=["table", "n", "chi2", "df", "p_value", "g2", "g2_p_value", "cramers_v", "min_expected"])


def _factor(name: str, config: dict) -> Factor:
    return Factor(name, tuple(levels_for(name)), str(config["reference_levels"][name]))


def _fit_kwargs(config: dict) -> dict[str, object]:
    return {"tol": float(config.get("irls_tol", 1e-8)), "max_iter": int(config.get("irls_max_iter", 25))}


def fit_loglinear_table(table: ContingencyTable, config: dict) -> FittedModel:
    """Poisson independence model ``count ~ row + col`` over a two-way table."""
    frame = table.to_long()
    factors = [_factor(table.row_field, config), _factor(table.col_field, config)]
    return fit_frame(frame, "count", factors, "poisson", "log", label=f"poisson_{table.label}", **_fit_kwargs(config))


def fit_multiway_poisson(store: RecordStore, config: dict) -> FittedModel:
    fields = list(config.get("multiway_predictors", ["event_type", "vaccine_status", "age_band", "sex"]))
    frame = multiway_counts(store, fields)
    # a level with zero total has no finite MLE; drop its cells
    for name in fields:
        totals = frame.groupby(name, observed=False)["count"].sum()
        empty = [str(level) for level, total in totals.items() if total == 0]
        if empty:
            logging.info("multiway table: %s levels with zero total dropped: %s", name, ", ".join(empty))
            frame = frame.loc[~frame[name].astype(str).isin(empty)]
    factors = [_factor(name, config) for name in fields]
    return fit_frame(frame, "count", factors, "poisson", "log", label="poisson_multiway_main_effects", **_fit_kwargs(config))


def fit_severity_models(
    expanded: pd.DataFrame,
    config: dict,
    *,
    weight_column: str | None = None,
) -> dict[str, FittedModel]:
    """One binomial model of ``severe`` per configured link, in link order.

    ``expanded`` is either one row per individual or, with ``weight_column``,
    one row per covariate pattern carrying its individual count.
    """
    factors = [_factor(name, config) for name in config.get("binary_predictors", ["age_band", "vaccine_status", "sex"])]
    links = list(config.get("binary_links", ["logit", "probit", "cloglog"]))
    fit_kwargs = _fit_kwargs(config)

    def _fit_one(link: str) -> FittedModel:
        return fit_frame(
            expanded,
            "severe",
            factors,
            "binomial",
            link,
            weight_column=weight_column,
            label=f"binomial_{link}",
            **fit_kwargs,
        )

    if config.get("parallel_link_fits") and len(links) > 1:
        workers = int(config.get("max_workers", len(links)))
        logging.info("Fitting %s binary links on %s worker threads", len(links), workers)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            fitted = list(pool.map(_fit_one, links))
    else:
        fitted = [_fit_one(link) for link in links]
    return dict(zip(links, fitted))


def fit_age_trend_model(expanded: pd.DataFrame, config: dict, *, weight_column: str | None = None) -> FittedModel:
    """Logit model with age as an ordinal score instead of band indicators."""
    frame = expanded.copy()
    frame["age_index"] = frame["age_band"].astype(str).map(AGE_INDEX_BY_LABEL).astype(float)
    others = [name for name in config.get("binary_predictors", ["age_band", "vaccine_status", "sex"]) if name != "age_band"]
    factors = [_factor(name, config) for name in others]
    return fit_frame(
        frame,
        "severe",
        factors,
        "binomial",
        "logit",
        numeric=["age_index"],
        weight_column=weight_column,
        label="binomial_logit_age_trend",
        **_fit_kwargs(config),
    )


def odds_ratio_table(model: FittedModel, alpha: float = 0.05) -> pd.DataFrame:
    if model.link != "logit":
        raise ValueError(f"{model.label}: odds ratios need the logit link, not {model.link}")
    tbl = model.coefficient_table(alpha=alpha)
    tbl = tbl.loc[tbl["term"] != "Intercept"]
    out = tbl[["term", "exp_coef", "exp_ci_low", "exp_ci_high", "p_value"]].rename(
        columns={"exp_coef": "odds_ratio", "exp_ci_low": "ci_low", "exp_ci_high": "ci_high"}
    )
    out.insert(0, "model", model.label)
    return out.reset_index(drop=True)


def _collect_notes(bundle: AnalysisBundle, config: dict) -> None:
    for model in bundle.models:
        for name, levels in model.dropped_levels.items():
            bundle.notes.append(f"{model.label}: {name} levels without observations left out of the design ({', '.join(levels)}).")
        for name, (declared, used) in model.reference_changes.items():
            bundle.notes.append(f"{model.label}: {name} reference {declared!r} has no observations; effects are relative to {used!r}.")
    if bundle.comparison is not None:
        tbl = bundle.comparison.table
        for _, row in tbl.loc[tbl["dispersion_flag"].isin(["under", "over"])].iterrows():
            bundle.notes.append(
                f"{row['model']}: {row['dispersion_flag']}-dispersion (deviance/df = {row['dispersion']:.3f}); "
                "nominal standard errors may be misleading."
            )
    threshold = float(config.get("small_expected_threshold", 5.0))
    for label, result in bundle.independence.items():
        if result.min_expected < threshold:
            bundle.notes.append(f"{label}: smallest expected count {result.min_expected:.2f} < {threshold:g}.")


def _run_stages(store: RecordStore, config: dict, bundle: AnalysisBundle) -> None:
    alpha = float(config.get("alpha", 0.05))
    small_expected = float(config.get("small_expected_threshold", 5.0))

    for table in (event_by_vaccine_table(store), event_by_age_table(store)):
        bundle.tables[table.label] = table

    for label, table in bundle.tables.items():
        bundle.independence[label] = chi_square_test(table, small_expected=small_expected)

    for label, table in bundle.tables.items():
        bundle.poisson_models[label] = fit_loglinear_table(table, config)
    bundle.poisson_models["multiway"] = fit_multiway_poisson(store, config)

    expanded_records = expand_observations(store)
    bundle.n_expanded = len(expanded_records)
    logging.info("Expanded %s observation rows into %s individual rows", len(store), bundle.n_expanded)
    if config.get("collapse_covariate_patterns"):
        expanded, weight_column = covariate_pattern_weights(store), "weight"
        logging.info("Fitting severity models on %s weighted covariate patterns", len(expanded))
    else:
        expanded, weight_column = expanded_records.to_frame(), None

    bundle.severity_models.update(fit_severity_models(expanded, config, weight_column=weight_column))
    bundle.severity_models["age_trend"] = fit_age_trend_model(expanded, config, weight_column=weight_column)

    bundle.comparison = compare_models(
        bundle.models,
        under=float(config.get("dispersion_under_threshold", 0.5)),
        over=float(config.get("dispersion_over_threshold", 1.5)),
    )
    bundle.coefficients = pd.concat(
        [model.coefficient_table(alpha=alpha) for model in bundle.models],
        ignore_index=True,
    )
    logit_models = [model for model in bundle.severity_models.values() if model.link == "logit"]
    bundle.odds_ratios = (
        pd.concat([odds_ratio_table(model, alpha=alpha) for model in logit_models], ignore_index=True)
        if logit_models
        else pd.DataFrame(columns=["model", "term", "odds_ratio", "ci_low", "ci_high", "p_value"])
    )
    _collect_notes(bundle, config)


def run_all_analyses(store: RecordStore, config: dict, cleaning_flow: pd.DataFrame | None = None) -> AnalysisBundle:
    """Run every stage in order; on failure the partial bundle rides on the error."""
    bundle = AnalysisBundle(cleaning_flow=cleaning_flow)
    logging.info("Running analyses on %s rows (%s events)", len(store), store.total_count)
    try:
        _run_stages(store, config, bundle)
    except AnalysisError as exc:
        logging.error("Analysis halted: %s", exc)
        exc.partial_results = bundle
        raise
    return bundle
