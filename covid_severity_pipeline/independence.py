"""Chi-square test of independence for contingency tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy.stats import chi2

from .aggregation import ContingencyTable
from .errors import DegenerateTableError


@dataclass(frozen=True)
class IndependenceResult:
    table_label: str
    statistic: float
    df: int
    p_value: float
    expected: pd.DataFrame
    g_statistic: float
    g_p_value: float
    cramers_v: float
    min_expected: float
    n: int

    def as_row(self) -> dict[str, object]:
        return {
            "table": self.table_label,
            "n": self.n,
            "chi2": self.statistic,
            "df": self.df,
            "p_value": self.p_value,
            "g2": self.g_statistic,
            "g2_p_value": self.g_p_value,
            "cramers_v": self.cramers_v,
            "min_expected": self.min_expected,
        }


def expected_counts(table: ContingencyTable) -> np.ndarray:
    """Expected cell counts under independence, R_r * C_c / N."""
    observed = table.counts.astype(float)
    if observed.shape[0] < 2 or observed.shape[1] < 2:
        raise DegenerateTableError(f"{table.label}: need at least a 2x2 table, got {observed.shape}")
    grand_total = observed.sum()
    if grand_total <= 0:
        raise DegenerateTableError(f"{table.label}: table is empty")

    row_totals = observed.sum(axis=1)
    col_totals = observed.sum(axis=0)
    zero_rows = [label for label, total in zip(table.row_labels, row_totals) if total == 0]
    zero_cols = [label for label, total in zip(table.col_labels, col_totals) if total == 0]
    if zero_rows or zero_cols:
        parts = []
        if zero_rows:
            parts.append(f"{table.row_field} rows {zero_rows}")
        if zero_cols:
            parts.append(f"{table.col_field} columns {zero_cols}")
        raise DegenerateTableError(
            f"{table.label}: zero marginal total for {' and '.join(parts)}",
            zero_rows=zero_rows,
            zero_cols=zero_cols,
        )
    return np.outer(row_totals, col_totals) / grand_total


def chi_square_test(table: ContingencyTable, *, small_expected: float = 5.0) -> IndependenceResult:
    expected = expected_counts(table)
    observed = table.counts.astype(float)
    n = int(observed.sum())

    statistic = float(np.sum((observed - expected) ** 2 / expected))
    dof = (observed.shape[0] - 1) * (observed.shape[1] - 1)
    p_value = float(chi2.sf(statistic, dof))

    # likelihood-ratio statistic; empty cells contribute zero
    positive = observed > 0
    g_statistic = float(2.0 * np.sum(observed[positive] * np.log(observed[positive] / expected[positive])))
    g_p_value = float(chi2.sf(g_statistic, dof))

    k = min(observed.shape) - 1
    cramers_v = float(np.sqrt(statistic / (n * k)))
    min_expected = float(expected.min())

    expected_df = pd.DataFrame(expected, index=list(table.row_labels), columns=list(table.col_labels))
    expected_df.index.name = table.row_field
    expected_df.columns.name = table.col_field

    logging.info("%s: chi2=%.4f df=%s p=%.4g", table.label, statistic, dof, p_value)
    logging.debug("%s expected counts under independence\n%s", table.label, expected_df)
    if min_expected < small_expected:
        n_small = int((expected < small_expected).sum())
        logging.warning(
            "%s: %s cells with expected count < %s (min %.2f); chi-square approximation may be poor",
            table.label,
            n_small,
            small_expected,
            min_expected,
        )

    return IndependenceResult(
        table_label=table.label,
        statistic=statistic,
        df=dof,
        p_value=p_value,
        expected=expected_df,
        g_statistic=g_statistic,
        g_p_value=g_p_value,
        cramers_v=cramers_v,
        min_expected=min_expected,
        n=n,
    )
