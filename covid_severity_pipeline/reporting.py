"""Report generation utilities for the severity analysis outputs."""

from __future__ import annotations

from pathlib import Path

import pandas as pd

from .analysis import AnalysisBundle
from .categories import get_category_inventory


def _fmt_p(x: float | None) -> str:
    if x is None or pd.isna(x):
        return "NA"
    if float(x) < 1e-4:
        return "<0.0001"
    return f"{float(x):.4f}"


def _fmt_num(x: float | None, digits: int = 3) -> str:
    if x is None or pd.isna(x):
        return "NA"
    return f"{float(x):.{digits}f}"


def write_report(
    *,
    output_dir: Path,
    assumptions: list[str],
    bundle: AnalysisBundle,
    generated_files: list[str],
    notes: list[str],
) -> Path:
    report_path = output_dir / "REPORT.md"

    lines: list[str] = []
    lines.append("# REPORT: COVID-19 Severity by Vaccination Status")
    lines.append("")

    lines.append("## Assumptions")
    for entry in assumptions:
        lines.append(f"- {entry}")
    lines.append("")

    lines.append("## Cleaning Flow")
    flow = bundle.cleaning_flow
    if flow is None or flow.empty:
        lines.append("- Cleaning flow unavailable.")
    else:
        for _, row in flow.iterrows():
            lines.append(f"- {row['step']}: {row['n_rows']} rows, {row['n_events']} events")
    lines.append("")

    lines.append("## Category Definitions")
    for _, row in get_category_inventory().iterrows():
        lines.append(f"- {row['name']} (`{row['field']}`): {row['levels']}")
    lines.append("")

    lines.append("## Independence Tests")
    if not bundle.independence:
        lines.append("- No independence tests were run.")
    for label, result in bundle.independence.items():
        lines.append(
            f"- `{label}`: chi2 = {_fmt_num(result.statistic, 4)}, df = {result.df}, "
            f"p = {_fmt_p(result.p_value)}, G2 = {_fmt_num(result.g_statistic, 4)}, "
            f"Cramer's V = {_fmt_num(result.cramers_v)}"
        )
    lines.append("")

    lines.append("## Model Comparison")
    if bundle.comparison is None:
        lines.append("- Model comparison unavailable.")
    else:
        tbl = bundle.comparison.table
        for group in bundle.comparison.groups:
            lines.append(f"### `{group}`")
            sub = tbl.loc[tbl["comparison_group"] == group].sort_values("aic_rank")
            for _, row in sub.iterrows():
                lines.append(
                    f"- {row['aic_rank']}. `{row['model']}`: AIC = {_fmt_num(row['aic'], 2)}, "
                    f"logLik = {_fmt_num(row['log_likelihood'], 2)}, "
                    f"deviance/df = {_fmt_num(row['dispersion'])} ({row['dispersion_flag']})"
                )
    lines.append("")

    lines.append("## Odds Ratios for Severe Disease")
    odds = bundle.odds_ratios
    if odds is None or odds.empty:
        lines.append("- No logit model was fitted.")
    else:
        for _, row in odds.iterrows():
            lines.append(
                f"- `{row['model']}` {row['term']}: OR = {_fmt_num(row['odds_ratio'])} "
                f"({_fmt_num(row['ci_low'])}-{_fmt_num(row['ci_high'])}), p = {_fmt_p(row['p_value'])}"
            )
    lines.append("")

    lines.append("## Generated Artifacts")
    for fp in sorted(generated_files):
        lines.append(f"- `{fp}`")
    lines.append("")

    lines.append("## Notes")
    if not notes:
        lines.append("- None.")
    else:
        for note in notes:
            lines.append(f"- {note}")
    lines.append("")

    lines.append("## Interpretation Guardrails")
    lines.append("- AIC and log-likelihood are compared only within a comparison group (same response, family and n).")
    lines.append("- Exponentiated coefficients are odds ratios only for the logit link; cloglog gives hazard-type ratios, probit none.")
    lines.append("- Counts are aggregate surveillance data; associations are not causal effects of vaccination.")

    report_path.write_text("\n".join(lines), encoding="utf-8")
    return report_path
