"""Generalized linear models fitted by iteratively reweighted least squares.

Supports exactly two families: Poisson with the log link and Binomial with
the logit, probit or complementary log-log link. Fitting is delegated to
statsmodels' GLM IRLS solver; the rank guard, the relative deviance stopping
rule and the typed failures live here so that a bad fit raises instead of
warning.
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy.stats import norm
from statsmodels.tools.sm_exceptions import PerfectSeparationError, PerfectSeparationWarning

from .errors import ConvergenceError, NegativeCountError, RankDeficiencyError, UnknownCategory

LINKS = {
    "log": sm.families.links.Log,
    "logit": sm.families.links.Logit,
    "probit": sm.families.links.Probit,
    "cloglog": sm.families.links.CLogLog,
}
FAMILY_LINKS = {
    "poisson": ("log",),
    "binomial": ("logit", "probit", "cloglog"),
}
# exp(coef) reads as a rate ratio, odds ratio or hazard ratio; probit has none
EFFECT_TYPES = {"log": "RR", "logit": "OR", "cloglog": "HR", "probit": None}

# additive floor of the relative stopping rule |dD| < tol * (|D| + 0.1)
DEVIANCE_FLOOR = 0.1


@dataclass(frozen=True)
class Factor:
    name: str
    levels: tuple[str, ...]
    reference: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "levels", tuple(self.levels))
        if self.reference not in self.levels:
            raise ValueError(f"reference level {self.reference!r} is not a level of {self.name}")


@dataclass(frozen=True)
class DesignMatrix:
    matrix: np.ndarray
    column_names: tuple[str, ...]
    dropped_levels: dict[str, tuple[str, ...]] = field(default_factory=dict)
    # factor -> (declared reference, reference actually used)
    reference_changes: dict[str, tuple[str, str]] = field(default_factory=dict)

    @property
    def shape(self) -> tuple[int, int]:
        return self.matrix.shape


def build_design(frame: pd.DataFrame, factors: Sequence[Factor], numeric: Sequence[str] = ()) -> DesignMatrix:
    """Intercept plus treatment-coded indicators, named like ``field[T.level]``.

    Declared levels that never occur in ``frame`` get no column. If the
    declared reference is one of them, the first present level in declared
    order becomes the reference instead.
    """
    n = len(frame)
    columns = [np.ones(n)]
    names = ["Intercept"]
    dropped: dict[str, tuple[str, ...]] = {}
    changes: dict[str, tuple[str, str]] = {}

    for factor in factors:
        series = frame[factor.name].astype(object)
        bad = ~series.isin(factor.levels).to_numpy()
        if bad.any():
            position = int(np.flatnonzero(bad)[0])
            raise UnknownCategory(factor.name, series.iloc[position], factor.levels, position=position)
        indicators = {level: (series == level).to_numpy(dtype=float) for level in factor.levels}
        present = [level for level in factor.levels if indicators[level].any()]
        missing = [level for level in factor.levels if level not in present]

        reference = factor.reference
        if present and reference not in present:
            reference = present[0]
            changes[factor.name] = (factor.reference, reference)
            logging.warning(
                "%s: reference level %r has no observations; using %r instead",
                factor.name,
                factor.reference,
                reference,
            )
        for level in present:
            if level == reference:
                continue
            columns.append(indicators[level])
            names.append(f"{factor.name}[T.{level}]")
        if missing:
            dropped[factor.name] = tuple(missing)
            logging.info("%s: levels absent from data, no indicator column: %s", factor.name, ", ".join(missing))

    for col in numeric:
        columns.append(pd.to_numeric(frame[col], errors="raise").to_numpy(dtype=float))
        names.append(col)

    return DesignMatrix(
        matrix=np.column_stack(columns),
        column_names=tuple(names),
        dropped_levels=dropped,
        reference_changes=changes,
    )


def make_family(family: str, link: str) -> sm.families.Family:
    if family not in FAMILY_LINKS:
        raise ValueError(f"unsupported family {family!r}; expected one of {sorted(FAMILY_LINKS)}")
    if link not in FAMILY_LINKS[family]:
        raise ValueError(f"unsupported link {link!r} for {family}; expected one of {FAMILY_LINKS[family]}")
    link_obj = LINKS[link]()
    if family == "poisson":
        return sm.families.Poisson(link=link_obj)
    return sm.families.Binomial(link=link_obj)


def _last_relative_change(history: dict) -> float:
    deviances = [d for d in history.get("deviance", []) if np.isfinite(d)]
    if len(deviances) < 2:
        return math.nan
    return abs(deviances[-1] - deviances[-2]) / (abs(deviances[-1]) + DEVIANCE_FLOOR)


@dataclass(frozen=True)
class FittedModel:
    label: str
    family: str
    link: str
    response: str
    coefficients: pd.Series
    standard_errors: pd.Series
    covariance: pd.DataFrame
    deviance: float
    null_deviance: float
    df_resid: float
    df_null: float
    rank: int
    nobs: float
    log_likelihood: float
    aic: float
    bic: float
    pearson_chi2: float
    iterations: int
    fitted_values: np.ndarray
    deviance_residuals: np.ndarray
    freq_weights: np.ndarray
    dropped_levels: dict[str, tuple[str, ...]] = field(default_factory=dict)
    reference_changes: dict[str, tuple[str, str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("fitted_values", "deviance_residuals", "freq_weights"):
            arr = np.array(getattr(self, name), dtype=float)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @property
    def terms(self) -> list[str]:
        return list(self.coefficients.index)

    @property
    def effect_type(self) -> str | None:
        return EFFECT_TYPES[self.link]

    def coefficient_table(self, alpha: float = 0.05) -> pd.DataFrame:
        coef = self.coefficients.to_numpy()
        se = self.standard_errors.to_numpy()
        z = coef / se
        crit = norm.ppf(1.0 - alpha / 2.0)
        ci_low = coef - crit * se
        ci_high = coef + crit * se
        effect_type = self.effect_type
        out = pd.DataFrame(
            {
                "term": self.coefficients.index,
                "coef": coef,
                "std_error": se,
                "z": z,
                "p_value": 2.0 * norm.sf(np.abs(z)),
                "ci_low": ci_low,
                "ci_high": ci_high,
                "exp_coef": np.exp(coef) if effect_type else np.nan,
                "exp_ci_low": np.exp(ci_low) if effect_type else np.nan,
                "exp_ci_high": np.exp(ci_high) if effect_type else np.nan,
                "model": self.label,
                "family": self.family,
                "link": self.link,
                "effect_type": effect_type,
                "effect_scale": self.link,
            }
        )
        return out


def fit_glm(
    y,
    design: DesignMatrix,
    family: str,
    link: str,
    *,
    freq_weights=None,
    tol: float = 1e-8,
    max_iter: int = 25,
    response: str = "y",
    label: str | None = None,
) -> FittedModel:
    label = label or f"{family}_{link}"
    fam = make_family(family, link)

    X = np.asarray(design.matrix, dtype=float)
    y = np.asarray(y, dtype=float)
    n, p = X.shape
    if y.shape != (n,):
        raise ValueError(f"{label}: response has shape {y.shape}, design has {n} rows")
    w = np.ones(n) if freq_weights is None else np.asarray(freq_weights, dtype=float)
    if w.shape != (n,):
        raise ValueError(f"{label}: freq_weights has shape {w.shape}, design has {n} rows")
    if (w < 0).any():
        position = int(np.flatnonzero(w < 0)[0])
        raise NegativeCountError(w[position], position=position)
    if family == "binomial" and ((y < 0) | (y > 1)).any():
        raise ValueError(f"{label}: binomial response must lie in [0, 1]")
    if family == "poisson" and (y < 0).any():
        position = int(np.flatnonzero(y < 0)[0])
        raise NegativeCountError(y[position], position=position)

    rank = int(np.linalg.matrix_rank(X[w > 0]))
    if rank < p:
        raise RankDeficiencyError(label, rank=rank, n_columns=p, column_names=design.column_names)

    model = sm.GLM(y, X, family=fam, freq_weights=w)
    try:
        with warnings.catch_warnings():
            if family == "binomial":
                warnings.filterwarnings("error", category=PerfectSeparationWarning)
            # np.allclose(D_prev, D, atol, rtol) is |dD| <= atol + rtol * |D|
            res = model.fit(method="IRLS", maxiter=max_iter, tol=tol * DEVIANCE_FLOOR, rtol=tol)
    except (
        PerfectSeparationError,
        PerfectSeparationWarning,
        np.linalg.LinAlgError,
        OverflowError,
        ValueError,
    ) as exc:  # non-finite IRLS weights surface as ValueError
        logging.error("%s: IRLS failed (%s)", label, exc)
        raise ConvergenceError(label, iterations=max_iter, deviance_change=math.nan) from exc

    iterations = int(res.fit_history["iteration"])
    change = _last_relative_change(res.fit_history)
    params = np.asarray(res.params, dtype=float)
    if not (res.converged and np.all(np.isfinite(params)) and np.isfinite(res.deviance)):
        raise ConvergenceError(label, iterations=iterations, deviance_change=change)
    logging.debug("%s: deviance history %s", label, res.fit_history["deviance"][1:])

    names = list(design.column_names)
    nobs = float(w.sum())
    log_likelihood = float(res.llf)

    fitted = FittedModel(
        label=label,
        family=family,
        link=link,
        response=response,
        coefficients=pd.Series(params, index=names, name="coef"),
        standard_errors=pd.Series(np.asarray(res.bse, dtype=float), index=names, name="std_error"),
        covariance=pd.DataFrame(np.asarray(res.cov_params(), dtype=float), index=names, columns=names),
        deviance=float(res.deviance),
        null_deviance=float(res.null_deviance),
        df_resid=nobs - rank,
        df_null=nobs - 1.0,
        rank=rank,
        nobs=nobs,
        log_likelihood=log_likelihood,
        aic=float(res.aic),
        bic=-2.0 * log_likelihood + rank * math.log(nobs),
        pearson_chi2=float(res.pearson_chi2),
        iterations=iterations,
        fitted_values=np.asarray(res.fittedvalues, dtype=float),
        deviance_residuals=np.asarray(res.resid_deviance, dtype=float),
        freq_weights=w,
        dropped_levels=dict(design.dropped_levels),
        reference_changes=dict(design.reference_changes),
    )
    logging.info(
        "%s: converged in %s iterations, deviance=%.4f, AIC=%.4f, n=%s",
        label,
        iterations,
        fitted.deviance,
        fitted.aic,
        int(nobs),
    )
    return fitted


def fit_frame(
    frame: pd.DataFrame,
    response: str,
    factors: Sequence[Factor],
    family: str,
    link: str,
    *,
    numeric: Sequence[str] = (),
    weight_column: str | None = None,
    tol: float = 1e-8,
    max_iter: int = 25,
    label: str | None = None,
) -> FittedModel:
    design = build_design(frame, factors, numeric=numeric)
    weights = frame[weight_column].to_numpy(dtype=float) if weight_column else None
    return fit_glm(
        frame[response].to_numpy(dtype=float),
        design,
        family,
        link,
        freq_weights=weights,
        tol=tol,
        max_iter=max_iter,
        response=response,
        label=label,
    )
