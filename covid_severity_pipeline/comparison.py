"""Goodness-of-fit and ranking across fitted models."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd

from .glm import FittedModel


def dispersion_statistic(model: FittedModel) -> float:
    """Sum of squared deviance residuals over residual degrees of freedom."""
    if model.df_resid <= 0:
        return float("nan")
    return float(np.sum(model.freq_weights * model.deviance_residuals**2) / model.df_resid)


def pearson_dispersion(model: FittedModel) -> float:
    if model.df_resid <= 0:
        return float("nan")
    return float(model.pearson_chi2 / model.df_resid)


def dispersion_flag(value: float, under: float = 0.5, over: float = 1.5) -> str:
    if not np.isfinite(value):
        return "undefined"
    if value < under:
        return "under"
    if value > over:
        return "over"
    return "nominal"


def _comparison_group(model: FittedModel) -> str:
    return f"{model.response}|{model.family}|n={int(model.nobs)}"


@dataclass(frozen=True)
class ComparisonReport:
    _table: pd.DataFrame

    @property
    def table(self) -> pd.DataFrame:
        return self._table.copy()

    @property
    def groups(self) -> list[str]:
        return list(dict.fromkeys(self._table["comparison_group"]))

    def best_by_aic(self, group: str | None = None) -> str:
        return self._best(group, "aic_rank")

    def best_by_loglik(self, group: str | None = None) -> str:
        return self._best(group, "loglik_rank")

    def _best(self, group: str | None, rank_col: str) -> str:
        tbl = self._table
        if group is None:
            if len(self.groups) != 1:
                raise ValueError(f"models span {len(self.groups)} comparison groups; name one of {self.groups}")
            group = self.groups[0]
        tbl = tbl.loc[tbl["comparison_group"] == group]
        if tbl.empty:
            raise KeyError(f"unknown comparison group {group!r}")
        return str(tbl.sort_values(rank_col).iloc[0]["model"])


def compare_models(models: Sequence[FittedModel], under: float = 0.5, over: float = 1.5) -> ComparisonReport:
    if not models:
        raise ValueError("compare_models needs at least one fitted model")
    labels = [m.label for m in models]
    if len(set(labels)) != len(labels):
        raise ValueError(f"model labels must be unique: {labels}")

    rows: list[dict[str, object]] = []
    for model in models:
        dispersion = dispersion_statistic(model)
        flag = dispersion_flag(dispersion, under=under, over=over)
        if flag in {"under", "over"}:
            logging.warning("%s: %s-dispersion relative to %s variance (%.3f)", model.label, flag, model.family, dispersion)
        rows.append(
            {
                "model": model.label,
                "comparison_group": _comparison_group(model),
                "response": model.response,
                "family": model.family,
                "link": model.link,
                "nobs": model.nobs,
                "n_parameters": model.rank,
                "df_resid": model.df_resid,
                "deviance": model.deviance,
                "null_deviance": model.null_deviance,
                "log_likelihood": model.log_likelihood,
                "aic": model.aic,
                "bic": model.bic,
                "dispersion": dispersion,
                "pearson_dispersion": pearson_dispersion(model),
                "dispersion_flag": flag,
            }
        )

    table = pd.DataFrame(rows)
    grouped = table.groupby("comparison_group", sort=False)
    table["aic_rank"] = grouped["aic"].rank(method="min", ascending=True).astype(int)
    table["loglik_rank"] = grouped["log_likelihood"].rank(method="min", ascending=False).astype(int)
    for group, tbl in table.groupby("comparison_group", sort=False):
        best = tbl.sort_values("aic_rank").iloc[0]
        logging.info("%s: best AIC %s (%.4f) among %s models", group, best["model"], best["aic"], len(tbl))
    return ComparisonReport(table)
